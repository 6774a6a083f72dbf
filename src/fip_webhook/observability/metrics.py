"""
Prometheus metrics for the FIP manager webhook.

This module provides metrics for admission decisions and the serving
certificate lifecycle, plus a small HTTP server exposing them.
"""

import logging

# aiohttp is provided by Kopf (required for its probes and webhook server)
from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

METRICS_REGISTRY = CollectorRegistry()

ADMISSION_REQUESTS = Counter(
    "fip_webhook_admission_requests_total",
    "Total number of admission reviews answered",
    ["resource", "allowed"],
    registry=METRICS_REGISTRY,
)

ADMISSION_DURATION = Histogram(
    "fip_webhook_admission_duration_seconds",
    "Time spent deciding an admission review",
    ["resource"],
    buckets=[0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=METRICS_REGISTRY,
)

CERTIFICATE_OPERATIONS = Counter(
    "fip_webhook_certificate_operations_total",
    "Total number of serving certificate issue and renew attempts",
    ["operation", "result"],
    registry=METRICS_REGISTRY,
)

CERTIFICATE_EXPIRY_TIMESTAMP = Gauge(
    "fip_webhook_certificate_expiry_timestamp_seconds",
    "Unix timestamp when the current serving certificate expires",
    registry=METRICS_REGISTRY,
)


def get_metrics_registry() -> CollectorRegistry:
    return METRICS_REGISTRY


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
            return Response(
                body=metrics_data,
                headers={"Content-Type": CONTENT_TYPE_LATEST},
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics available at http://{self.host}:{self.port}/metrics")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")
