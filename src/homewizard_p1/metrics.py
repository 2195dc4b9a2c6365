"""Prometheus metrics for the latest P1 meter reading.

The registry holds exactly one Reading, swapped wholesale on every successful
poll. Rendering derives the metric families from that single snapshot, so a
scrape never mixes values from two polls.
"""

import threading
from decimal import Decimal
from typing import Iterable

from prometheus_client.metrics_core import GaugeMetricFamily, Metric
from prometheus_client.utils import floatToGoString

from .models import Number, Reading

PREFIX = "homewizard_p1"

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _counter(name: str, documentation: str) -> Metric:
    # CounterMetricFamily would rename the samples to <name>_total
    return Metric(f"{PREFIX}_{name}", documentation, "counter")


def _gauge(name: str, documentation: str) -> Metric:
    return GaugeMetricFamily(f"{PREFIX}_{name}", documentation)


def _sample(metric: Metric, value: Number, **labels: str) -> Metric:
    metric.add_sample(metric.name, labels, value)
    return metric


def collect_families(reading: Reading | None) -> list[Metric]:
    """Derive the metric families for a reading, sorted by name.

    Returns an empty list when there is no reading yet.
    """
    if reading is None:
        return []

    families = [
        # Energy totals
        _sample(
            _counter("power_import_total_kwh", "Total power imported in kWh"),
            reading.power_import_kwh,
        ),
        _sample(
            _counter("power_export_total_kwh", "Total power exported in kWh"),
            reading.power_export_kwh,
        ),
        # Instantaneous values
        _sample(
            _gauge("active_power_watts", "Current active power in watts"),
            reading.active_power_w,
        ),
        _sample(
            _gauge("active_power_l1_watts", "Current active power L1 in watts"),
            reading.active_power_l1_w,
        ),
        _sample(
            _gauge("active_current_amperes", "Current active current in amperes"),
            reading.active_current_a,
        ),
        _sample(
            _gauge("active_current_l1_amperes", "Current active current L1 in amperes"),
            reading.active_current_l1_a,
        ),
        _sample(
            _gauge("active_tariff", "Currently active tariff (1 or 2)"),
            reading.active_tariff,
        ),
        _sample(
            _gauge("wifi_strength_percent", "WiFi signal strength percentage"),
            reading.wifi_strength,
        ),
        # Power quality, reported verbatim from the meter's own counters
        _sample(
            _counter("voltage_sag_count_total", "Total voltage sag events"),
            reading.voltage_sag_l1_count,
        ),
        _sample(
            _counter("voltage_swell_count_total", "Total voltage swell events"),
            reading.voltage_swell_l1_count,
        ),
        _sample(
            _counter("power_failures_any_total", "Total power failures (any duration)"),
            reading.any_power_fail_count,
        ),
        _sample(
            _counter("power_failures_long_total", "Total long power failures"),
            reading.long_power_fail_count,
        ),
        _sample(
            _gauge("meter_info", "Meter information"),
            1,
            meter_id=reading.meter_id,
            meter_model=reading.meter_model,
            smr_version=str(reading.smr_version),
            wifi_ssid=reading.wifi_ssid,
        ),
    ]

    import_tariff = _counter("power_import_tariff_kwh", "Power imported per tariff in kWh")
    _sample(import_tariff, reading.power_import_t1_kwh, tariff="1")
    _sample(import_tariff, reading.power_import_t2_kwh, tariff="2")

    export_tariff = _counter("power_export_tariff_kwh", "Power exported per tariff in kWh")
    _sample(export_tariff, reading.power_export_t1_kwh, tariff="1")
    _sample(export_tariff, reading.power_export_t2_kwh, tariff="2")

    families.extend([import_tariff, export_tariff])

    if reading.gas is not None:
        gas = reading.gas
        families.extend(
            [
                _sample(_counter("gas_total_m3", "Total gas consumption in m3"), gas.total_m3),
                _sample(_gauge("gas_timestamp", "Timestamp of last gas meter reading"), gas.timestamp),
                _sample(_gauge("gas_meter_info", "Gas meter information"), 1, unique_id=gas.unique_id),
            ]
        )

    if reading.external:
        sensor_value = _gauge("external_sensor_value", "External sensor value")
        sensor_timestamp = _gauge("external_sensor_timestamp", "External sensor timestamp")
        for sensor in reading.external:
            _sample(sensor_value, sensor.value, unique_id=sensor.unique_id, type=sensor.type, unit=sensor.unit)
            _sample(sensor_timestamp, sensor.timestamp, unique_id=sensor.unique_id, type=sensor.type)
        families.extend([sensor_value, sensor_timestamp])

    return sorted(families, key=lambda metric: metric.name)


def format_value(value: Number | float) -> str:
    """Format a sample value without losing the device's precision."""
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    return floatToGoString(value)


def _escape_label_value(value: str) -> str:
    return value.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def _sample_line(name: str, labels: dict[str, str], value: Number | float) -> str:
    if labels:
        labelstr = ",".join(f'{key}="{_escape_label_value(labels[key])}"' for key in sorted(labels))
        return f"{name}{{{labelstr}}} {format_value(value)}\n"
    return f"{name} {format_value(value)}\n"


def generate_text(families: Iterable[Metric]) -> str:
    """Encode metric families in the Prometheus text format (0.0.4).

    Unlike prometheus_client.generate_latest, family names are written exactly
    as given. Label names are sorted, and samples within a family are ordered
    by their labels.
    """
    output = []
    for metric in families:
        documentation = metric.documentation.replace("\\", r"\\").replace("\n", r"\n")
        output.append(f"# HELP {metric.name} {documentation}\n")
        output.append(f"# TYPE {metric.name} {metric.type}\n")
        for sample in sorted(metric.samples, key=lambda s: sorted(s.labels.items())):
            output.append(_sample_line(sample.name, sample.labels, sample.value))
    return "".join(output)


class MetricsRegistry:
    """Process-wide holder of the most recently accepted Reading.

    The poller is the only writer. Readers take the current reference under the
    lock and render outside it; a Reading is immutable once published.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._reading: Reading | None = None

    def update(self, reading: Reading) -> None:
        """Publish a new reading, replacing the previous one."""
        with self._lock:
            self._reading = reading

    def snapshot(self) -> Reading | None:
        with self._lock:
            return self._reading

    def render(self) -> str:
        """Render the current reading as exposition text ("" before the first poll)."""
        return generate_text(collect_families(self.snapshot()))
