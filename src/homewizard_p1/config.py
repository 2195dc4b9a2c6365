"""Exporter settings."""

from dataclasses import dataclass

from .device import DEFAULT_TIMEOUT, device_url
from .poller import DEFAULT_INTERVAL
from .server import DEFAULT_PATH, DEFAULT_PORT

LOG_LEVELS = ("trace", "debug", "info", "warn", "warning", "error", "critical")

MAX_HOSTNAME_LENGTH = 253


def validate_hostname(host: str) -> bool:
    """Basic hostname/IP validation: non-empty, reasonable length, no scheme or path."""
    host = host.strip()
    if not host or len(host) > MAX_HOSTNAME_LENGTH:
        return False
    return "/" not in host and " " not in host


@dataclass(frozen=True)
class Settings:
    """Resolved configuration for one exporter process."""

    host: str
    port: int = DEFAULT_PORT
    metrics_path: str = DEFAULT_PATH
    poll_interval: float = DEFAULT_INTERVAL
    http_timeout: float = DEFAULT_TIMEOUT
    log_level: str = "info"

    def __post_init__(self):
        errors = []
        if not validate_hostname(self.host):
            errors.append(f"invalid HomeWizard host {self.host!r}")
        if not 1 <= self.port <= 65535:
            errors.append(f"port must be between 1 and 65535, got {self.port}")
        if not self.metrics_path.startswith("/"):
            errors.append(f"metrics path must start with '/', got {self.metrics_path!r}")
        if self.poll_interval <= 0:
            errors.append(f"poll interval must be > 0, got {self.poll_interval}")
        if self.http_timeout <= 0:
            errors.append(f"HTTP timeout must be > 0, got {self.http_timeout}")
        if self.log_level.lower() not in LOG_LEVELS:
            errors.append(f"unknown log level {self.log_level!r}")
        if errors:
            raise ValueError("; ".join(errors))

    @property
    def device_url(self) -> str:
        return device_url(self.host.strip())

    @property
    def bind_address(self) -> tuple[str, int]:
        return ("0.0.0.0", self.port)

    @property
    def metrics_bind_address(self) -> str:
        return f"0.0.0.0:{self.port}"
