"""Data models for HomeWizard P1 meter readings."""

from dataclasses import dataclass, field
from decimal import Decimal

# Device numbers keep their JSON spelling: integers stay int, fractions are Decimal
Number = int | Decimal


@dataclass(frozen=True)
class GasReading:
    """The gas meter block relayed by the P1 meter."""

    total_m3: Number
    timestamp: int  # device format, e.g. 210606140010 (YYMMDDhhmmss)
    unique_id: str


@dataclass(frozen=True)
class ExternalSensor:
    """An external meter (water, heat, gas) paired with the P1 meter."""

    unique_id: str
    type: str
    unit: str
    value: Number
    timestamp: int


@dataclass(frozen=True)
class Reading:
    """One successful poll of the P1 meter."""

    meter_id: str
    meter_model: str
    smr_version: int
    wifi_ssid: str
    wifi_strength: Number
    active_tariff: int

    power_import_kwh: Number
    power_import_t1_kwh: Number
    power_import_t2_kwh: Number
    power_export_kwh: Number
    power_export_t1_kwh: Number
    power_export_t2_kwh: Number

    active_power_w: Number
    active_power_l1_w: Number
    active_current_a: Number
    active_current_l1_a: Number

    voltage_sag_l1_count: Number
    voltage_swell_l1_count: Number
    any_power_fail_count: Number
    long_power_fail_count: Number

    gas: GasReading | None = None
    external: tuple[ExternalSensor, ...] = field(default_factory=tuple)
