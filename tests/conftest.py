import json
import re
from decimal import Decimal

import pytest

from homewizard_p1.device import decode_reading
from homewizard_p1.models import ExternalSensor, GasReading, Reading

# /api/v1/data from an ISKRA meter with a gas meter and two external sensors
SAMPLE_JSON = """
{
    "wifi_ssid": "TestNetwork",
    "wifi_strength": 84,
    "smr_version": 50,
    "meter_model": "ISKRA 2M550T-1012",
    "unique_id": "3c39e7aabbccddee",
    "active_tariff": 1,
    "total_power_import_kwh": 1234.567,
    "total_power_import_t1_kwh": 800.123,
    "total_power_import_t2_kwh": 434.444,
    "total_power_export_kwh": 89.012,
    "total_power_export_t1_kwh": 60.789,
    "total_power_export_t2_kwh": 28.223,
    "active_power_w": 1500,
    "active_power_l1_w": 1500,
    "active_current_a": 6.8,
    "active_current_l1_a": 6.8,
    "voltage_sag_l1_count": 2,
    "voltage_swell_l1_count": 1,
    "any_power_fail_count": 5,
    "long_power_fail_count": 0,
    "total_gas_m3": 567.890,
    "gas_timestamp": 1234567890,
    "gas_unique_id": "aabbccddee112233",
    "external": [
        {
            "unique_id": "sensor456",
            "type": "water_meter",
            "timestamp": 1234567890,
            "value": 123.456,
            "unit": "m3"
        },
        {
            "unique_id": "sensor123",
            "type": "temperature",
            "timestamp": 1234567890,
            "value": 23.5,
            "unit": "°C"
        }
    ]
}
"""

GAS_KEYS = ("total_gas_m3", "gas_timestamp", "gas_unique_id")


@pytest.fixture
def payload_text():
    return SAMPLE_JSON


@pytest.fixture
def payload():
    return json.loads(SAMPLE_JSON, parse_float=Decimal)


@pytest.fixture
def electricity_only(payload):
    """A meter without gas meter or external sensors."""
    for key in GAS_KEYS:
        del payload[key]
    del payload["external"]
    return payload


@pytest.fixture
def reading(payload):
    return decode_reading(payload)


def make_generation_reading(gen: int) -> Reading:
    """A reading where every value and identity label carries the generation."""
    return Reading(
        meter_id=f"gen{gen}",
        meter_model=f"gen{gen}",
        smr_version=gen,
        wifi_ssid=f"gen{gen}",
        wifi_strength=gen,
        active_tariff=gen,
        power_import_kwh=gen,
        power_import_t1_kwh=gen,
        power_import_t2_kwh=gen,
        power_export_kwh=gen,
        power_export_t1_kwh=gen,
        power_export_t2_kwh=gen,
        active_power_w=gen,
        active_power_l1_w=gen,
        active_current_a=gen,
        active_current_l1_a=gen,
        voltage_sag_l1_count=gen,
        voltage_swell_l1_count=gen,
        any_power_fail_count=gen,
        long_power_fail_count=gen,
        gas=GasReading(total_m3=gen, timestamp=gen, unique_id=f"gen{gen}"),
        external=(ExternalSensor(unique_id=f"gen{gen}", type="water_meter", unit="m3", value=gen, timestamp=gen),),
    )


def find_generations(output: str) -> set[str]:
    """Collect every generation marker found in a rendering."""
    found = set(re.findall(r"gen(\d)", output))
    for line in output.splitlines():
        if line.startswith("#"):
            continue
        name = line.split("{", 1)[0].split(" ", 1)[0]
        if not name.endswith("_info"):
            found.add(line.rsplit(" ", 1)[1])
    return found


@pytest.fixture
def generation_reading():
    return make_generation_reading


@pytest.fixture
def generations():
    return find_generations
