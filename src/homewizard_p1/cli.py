"""Command-line interface for the HomeWizard P1 Prometheus exporter."""

import logging
import signal
import threading

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import LOG_LEVELS, Settings
from .device import DEFAULT_TIMEOUT, DeviceClient, DeviceError
from .log import setup_logging
from .metrics import MetricsRegistry
from .models import Reading
from .poller import DEFAULT_INTERVAL, Poller
from .server import DEFAULT_PATH, DEFAULT_PORT, MetricsServer

# Load environment variables from .env file
load_dotenv()

console = Console()
logger = logging.getLogger(__name__)


def device_options(func):
    """Options shared by every command that talks to the meter."""
    func = click.option(
        "--log-level",
        envvar="LOG_LEVEL",
        type=click.Choice(LOG_LEVELS, case_sensitive=False),
        default="info",
        show_default=True,
        help="Log level",
    )(func)
    func = click.option(
        "--http-timeout",
        envvar="HTTP_TIMEOUT",
        type=click.FloatRange(min=0, min_open=True),
        default=DEFAULT_TIMEOUT,
        show_default=True,
        help="Timeout in seconds for requests to the meter",
    )(func)
    func = click.option(
        "--host",
        envvar="HOMEWIZARD_HOST",
        required=True,
        help="HomeWizard P1 meter IP address or hostname (or set HOMEWIZARD_HOST)",
    )(func)
    return func


def make_settings(**kwargs) -> Settings:
    try:
        return Settings(**kwargs)
    except ValueError as e:
        raise click.UsageError(f"Configuration error: {e}")


@click.group()
@click.version_option(package_name="homewizard-p1-exporter")
def cli():
    """Prometheus exporter for HomeWizard P1 smart meters."""
    pass


@cli.command()
@device_options
@click.option(
    "--port",
    envvar="METRICS_PORT",
    type=click.IntRange(1, 65535),
    default=DEFAULT_PORT,
    show_default=True,
    help="Port to expose Prometheus metrics on",
)
@click.option(
    "--metrics-path",
    envvar="METRICS_PATH",
    default=DEFAULT_PATH,
    show_default=True,
    help="HTTP path serving the metrics",
)
@click.option(
    "--poll-interval",
    envvar="POLL_INTERVAL",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_INTERVAL,
    show_default=True,
    help="Seconds between polls of the meter",
)
def serve(host, http_timeout, log_level, port, metrics_path, poll_interval):
    """Poll the meter and serve its readings to Prometheus.

    Runs until interrupted (SIGINT) or terminated (SIGTERM).
    """
    settings = make_settings(
        host=host,
        port=port,
        metrics_path=metrics_path,
        poll_interval=poll_interval,
        http_timeout=http_timeout,
        log_level=log_level,
    )
    setup_logging(settings.log_level)

    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    run_exporter(settings, shutdown)


def run_exporter(settings: Settings, shutdown: threading.Event) -> None:
    """Run the poller and metrics server until `shutdown` is set."""
    registry = MetricsRegistry()

    with DeviceClient(settings.device_url, timeout=settings.http_timeout) as client:
        poller = Poller(client, registry, interval=settings.poll_interval)
        host, port = settings.bind_address
        try:
            server = MetricsServer(registry, host, port, metrics_path=settings.metrics_path, poller=poller)
        except OSError as e:
            raise click.ClickException(f"Could not listen on {settings.metrics_bind_address}: {e}")

        server.start()
        poller.start()
        logger.info(
            "Exporter listening on %s%s, polling %s every %ss",
            settings.metrics_bind_address,
            settings.metrics_path,
            settings.device_url,
            settings.poll_interval,
        )

        try:
            while not shutdown.is_set():
                shutdown.wait(0.5)
        finally:
            logger.info("Shutting down HTTP server...")
            server.stop()
            # An in-flight fetch ends at most one read timeout past its deadline
            if poller.stop(timeout=settings.http_timeout * 3):
                logger.info("Poller finished cleanly")
            else:
                logger.warning("Poller did not finish in time")
            logger.info("Exporter shutdown complete")


def reading_table(reading: Reading) -> Table:
    table = Table(title=f"P1 Meter {reading.meter_id}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Model", reading.meter_model)
    table.add_row("SMR version", str(reading.smr_version))
    table.add_row("WiFi", f"{reading.wifi_ssid} ({reading.wifi_strength}%)")
    table.add_row("Active tariff", str(reading.active_tariff))
    table.add_row("Import total", f"{reading.power_import_kwh} kWh")
    table.add_row("  └ tariff 1", f"{reading.power_import_t1_kwh} kWh")
    table.add_row("  └ tariff 2", f"{reading.power_import_t2_kwh} kWh")
    table.add_row("Export total", f"{reading.power_export_kwh} kWh")
    table.add_row("  └ tariff 1", f"{reading.power_export_t1_kwh} kWh")
    table.add_row("  └ tariff 2", f"{reading.power_export_t2_kwh} kWh")
    table.add_row("Active power", f"{reading.active_power_w} W")
    table.add_row("  └ L1", f"{reading.active_power_l1_w} W")
    table.add_row("Active current", f"{reading.active_current_a} A")
    table.add_row("  └ L1", f"{reading.active_current_l1_a} A")
    table.add_row("Voltage sags / swells", f"{reading.voltage_sag_l1_count} / {reading.voltage_swell_l1_count}")
    table.add_row("Power failures (any / long)", f"{reading.any_power_fail_count} / {reading.long_power_fail_count}")

    if reading.gas is not None:
        table.add_row("Gas total", f"{reading.gas.total_m3} m³")
        table.add_row("  └ meter", reading.gas.unique_id)
        table.add_row("  └ timestamp", str(reading.gas.timestamp))

    for sensor in reading.external:
        table.add_row(f"{sensor.type} ({sensor.unique_id})", f"{sensor.value} {sensor.unit}")

    return table


@cli.command()
@device_options
@click.option("--metrics", "as_metrics", is_flag=True, help="Print the Prometheus exposition instead of a table")
@click.pass_context
def probe(ctx, host, http_timeout, log_level, as_metrics):
    """Fetch a single reading from the meter and print it."""
    settings = make_settings(host=host, http_timeout=http_timeout, log_level=log_level)
    setup_logging(settings.log_level)

    try:
        with DeviceClient(settings.device_url, timeout=settings.http_timeout) as client:
            reading = client.fetch()
    except DeviceError as e:
        console.print(f"[red]Failed to read P1 meter ({e.category}): {e}[/red]")
        ctx.exit(1)

    if as_metrics:
        registry = MetricsRegistry()
        registry.update(reading)
        click.echo(registry.render(), nl=False)
        return

    console.print(reading_table(reading))


if __name__ == "__main__":
    cli()
