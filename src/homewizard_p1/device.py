"""HomeWizard P1 meter local API client.

Fetches the current meter state from the device's local HTTP API (v1) and
decodes it into a Reading. The device must have the local API enabled in the
HomeWizard Energy app.

Endpoint: http://<host>/api/v1/data
"""

import json
import logging
import time
from decimal import Decimal
from typing import Any

import httpx

from .models import ExternalSensor, GasReading, Number, Reading

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
API_PATH = "/api/v1/data"

TARIFFS = (1, 2)


class DeviceError(Exception):
    """Base exception for P1 meter errors."""

    category = "device"


class TransportError(DeviceError):
    """The device could not be reached or answered with an error status."""

    category = "transport"


class DecodeError(DeviceError):
    """The device answered, but not with a payload we understand."""

    category = "decode"


def device_url(host: str) -> str:
    """Build the data endpoint URL for a device host or IP."""
    return f"http://{host}{API_PATH}"


def _require(payload: dict[str, Any], key: str) -> Any:
    if key not in payload or payload[key] is None:
        raise DecodeError(f"Missing required field '{key}'")
    return payload[key]


def _number(payload: dict[str, Any], key: str) -> Number:
    value = _require(payload, key)
    # bool is an int subclass, but true/false is never a measurement
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
        raise DecodeError(f"Field '{key}' must be a number, got {value!r}")
    if isinstance(value, Decimal) and not value.is_finite():
        raise DecodeError(f"Field '{key}' must be finite, got {value!r}")
    return value


def _integer(payload: dict[str, Any], key: str) -> int:
    value = _number(payload, key)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise DecodeError(f"Field '{key}' must be an integer, got {value}")
        return int(value)
    return value


def _string(payload: dict[str, Any], key: str) -> str:
    value = _require(payload, key)
    if not isinstance(value, str):
        raise DecodeError(f"Field '{key}' must be a string, got {value!r}")
    return value


def _decode_gas(payload: dict[str, Any]) -> GasReading | None:
    # Meters without a gas meter omit the block or report it as null
    if payload.get("total_gas_m3") is None:
        return None
    return GasReading(
        total_m3=_number(payload, "total_gas_m3"),
        timestamp=_integer(payload, "gas_timestamp"),
        unique_id=_string(payload, "gas_unique_id"),
    )


def _decode_external(payload: dict[str, Any]) -> tuple[ExternalSensor, ...]:
    entries = payload.get("external")
    if entries is None:
        return ()
    if not isinstance(entries, list):
        raise DecodeError(f"Field 'external' must be a list, got {entries!r}")

    sensors: dict[str, ExternalSensor] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise DecodeError(f"External sensor entry must be an object, got {entry!r}")
        unique_id = _string(entry, "unique_id")
        if unique_id in sensors:
            raise DecodeError(f"Duplicate external sensor '{unique_id}'")
        # Disconnected sensors are reported with a null value
        if entry.get("value") is None:
            logger.debug("Skipping external sensor %s without a value", unique_id)
            continue
        sensors[unique_id] = ExternalSensor(
            unique_id=unique_id,
            type=_string(entry, "type"),
            unit=_string(entry, "unit"),
            value=_number(entry, "value"),
            timestamp=_integer(entry, "timestamp"),
        )

    return tuple(sensors[key] for key in sorted(sensors))


def decode_reading(payload: Any) -> Reading:
    """Decode a /api/v1/data payload into a Reading.

    Args:
        payload: The JSON body, parsed with Decimal floats

    Returns:
        A fully populated Reading

    Raises:
        DecodeError: If a required field is missing or has the wrong shape
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"Expected a JSON object, got {type(payload).__name__}")

    active_tariff = _integer(payload, "active_tariff")
    if active_tariff not in TARIFFS:
        raise DecodeError(f"Field 'active_tariff' must be 1 or 2, got {active_tariff}")

    return Reading(
        meter_id=_string(payload, "unique_id"),
        meter_model=_string(payload, "meter_model"),
        smr_version=_integer(payload, "smr_version"),
        wifi_ssid=_string(payload, "wifi_ssid"),
        wifi_strength=_number(payload, "wifi_strength"),
        active_tariff=active_tariff,
        power_import_kwh=_number(payload, "total_power_import_kwh"),
        power_import_t1_kwh=_number(payload, "total_power_import_t1_kwh"),
        power_import_t2_kwh=_number(payload, "total_power_import_t2_kwh"),
        power_export_kwh=_number(payload, "total_power_export_kwh"),
        power_export_t1_kwh=_number(payload, "total_power_export_t1_kwh"),
        power_export_t2_kwh=_number(payload, "total_power_export_t2_kwh"),
        active_power_w=_number(payload, "active_power_w"),
        active_power_l1_w=_number(payload, "active_power_l1_w"),
        active_current_a=_number(payload, "active_current_a"),
        active_current_l1_a=_number(payload, "active_current_l1_a"),
        voltage_sag_l1_count=_number(payload, "voltage_sag_l1_count"),
        voltage_swell_l1_count=_number(payload, "voltage_swell_l1_count"),
        any_power_fail_count=_number(payload, "any_power_fail_count"),
        long_power_fail_count=_number(payload, "long_power_fail_count"),
        gas=_decode_gas(payload),
        external=_decode_external(payload),
    )


class DeviceClient:
    """Client for a single P1 meter.

    Holds one httpx.Client so connections are reused between polls. Each
    fetch() is independent of the previous one.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.timeout = timeout
        # The meter is on the local network, never route it through HTTP(S)_PROXY
        self._client = httpx.Client(timeout=timeout, transport=transport, trust_env=False)

    def __enter__(self) -> "DeviceClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def fetch(self) -> Reading:
        """Fetch and decode the current meter state.

        Raises:
            TransportError: On timeouts, connection failures and non-2xx responses
            DecodeError: If the body is not a valid P1 data payload
        """
        # httpx only bounds each connect/read separately, the deadline bounds the whole request
        deadline = time.monotonic() + self.timeout
        try:
            with self._client.stream("GET", self.url) as response:
                self._check_deadline(deadline)
                if not response.is_success:
                    raise TransportError(
                        f"HTTP error from P1 meter: {response.status_code} {response.reason_phrase}"
                    )
                chunks = []
                for chunk in response.iter_bytes():
                    self._check_deadline(deadline)
                    chunks.append(chunk)
                self._check_deadline(deadline)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out after {self.timeout}s fetching {self.url}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Could not connect to {self.url}: {e}") from e

        try:
            payload = json.loads(b"".join(chunks), parse_float=Decimal)
        except ValueError as e:
            raise DecodeError(f"Response from {self.url} is not valid JSON: {e}") from e

        return decode_reading(payload)

    def _check_deadline(self, deadline: float) -> None:
        if time.monotonic() > deadline:
            raise TransportError(f"Timed out after {self.timeout}s fetching {self.url}")
