"""HTTP endpoint serving the metrics registry to Prometheus."""

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from .metrics import CONTENT_TYPE, MetricsRegistry
from .poller import Poller

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9898
DEFAULT_PATH = "/metrics"

# The poller is unhealthy if its heartbeat is older than this many intervals
HEALTH_CHECK_MULTIPLIER = 3.0
MIN_HEALTH_CHECK_THRESHOLD = 30.0

LANDING_PAGE = """<html>
<head><title>HomeWizard P1 Exporter</title></head>
<body>
<h1>HomeWizard P1 Exporter</h1>
<p><a href="{path}">Metrics</a></p>
</body>
</html>
"""


class MetricsHandler(BaseHTTPRequestHandler):
    server: "MetricsServer"

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        if path == self.server.metrics_path:
            self.handle_metrics()
        elif path == "/health":
            self.handle_health()
        elif path == "/":
            self.respond(200, "text/html; charset=utf-8", LANDING_PAGE.format(path=self.server.metrics_path))
        else:
            self.respond(404, "text/plain; charset=utf-8", "Not Found\n")

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def respond(self, status: int, content_type: str, body: str) -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def handle_metrics(self):
        self.respond(200, CONTENT_TYPE, self.server.registry.render())

    def handle_health(self):
        """Exporter health means the poller thread is still ticking.

        It does NOT mean the meter is reachable.
        """
        poller = self.server.poller
        if poller is None:
            self.respond(200, "text/plain; charset=utf-8", "OK\n")
            return

        threshold = max(MIN_HEALTH_CHECK_THRESHOLD, poller.interval * HEALTH_CHECK_MULTIPLIER)
        heartbeat = poller.last_attempt
        if not poller.running or heartbeat is None or poller.clock() - heartbeat > threshold:
            self.respond(503, "text/plain; charset=utf-8", f"UNHEALTHY: poller heartbeat stale (last={heartbeat})\n")
        else:
            self.respond(200, "text/plain; charset=utf-8", "OK\n")


class MetricsServer(ThreadingHTTPServer):
    """Threaded HTTP server; every scrape is handled on its own thread."""

    daemon_threads = True

    def __init__(
        self,
        registry: MetricsRegistry,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        metrics_path: str = DEFAULT_PATH,
        poller: Poller | None = None,
    ):
        self.registry = registry
        self.metrics_path = metrics_path
        self.poller = poller
        self._thread: threading.Thread | None = None
        super().__init__((host, port), MetricsHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]

    def start(self) -> threading.Thread:
        """Serve requests in a background thread."""
        self._thread = threading.Thread(target=self.serve_forever, name="http-server", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        # shutdown() blocks until serve_forever returns, so only call it if serving
        if self._thread is not None:
            self.shutdown()
            self._thread.join()
        self.server_close()
