"""
HTTPS server answering admission reviews.

The server decodes AdmissionReview envelopes, hands the embedded object to
the validators and always answers with a well-formed AdmissionReview: an
unanswered webhook call would block resource creation in the cluster.

It is stopped and started again by the renewal scheduler so that a renewed
serving certificate is picked up; every start builds a fresh application
and TLS context from the certificate files.
"""

import logging
import ssl
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import kopf
from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from pydantic import ValidationError

from fip_webhook.constants import (
    ADMISSION_API_VERSION,
    ADMISSION_KIND,
    INTERNAL_ERROR_MESSAGE,
    QUOTA_SETTLE_SECONDS,
    READINESS_PATH,
    VALIDATE_FLOATINGIP_PATH,
    VALIDATE_FLOATINGIPPOOL_PATH,
)
from fip_webhook.models.floatingip import FloatingIP, FloatingIPPool
from fip_webhook.observability.logging import (
    generate_correlation_id,
    set_correlation_id,
)
from fip_webhook.observability.metrics import ADMISSION_DURATION, ADMISSION_REQUESTS

from .resources import FloatingIPResourceReader
from .validation import validate_floating_ip, validate_floating_ip_pool

logger = logging.getLogger(__name__)

Decision = Callable[[dict[str, Any]], Awaitable[None]]


def build_review_response(
    review: dict[str, Any], uid: str, allowed: bool, message: str | None = None
) -> dict[str, Any]:
    """
    Build the AdmissionReview returned to the API server.

    Args:
        review: The decoded request envelope (may be empty)
        uid: UID of the admission request
        allowed: Whether the request is admitted
        message: Reason shown to the client when denied

    Returns:
        AdmissionReview dict with a populated ``response``
    """
    response: dict[str, Any] = {"uid": uid, "allowed": allowed}
    if not allowed:
        response["status"] = {"code": 403, "message": message or INTERNAL_ERROR_MESSAGE}

    return {
        **review,
        "apiVersion": review.get("apiVersion") or ADMISSION_API_VERSION,
        "kind": ADMISSION_KIND,
        "response": response,
    }


class AdmissionServer:
    """TLS admission server for FloatingIP and FloatingIPPool reviews."""

    def __init__(
        self,
        reader: FloatingIPResourceReader,
        certfile: Path,
        keyfile: Path,
        host: str = "0.0.0.0",
        port: int = 8443,
        quota_settle_seconds: float = QUOTA_SETTLE_SECONDS,
    ):
        """
        Initialize admission server.

        Args:
            reader: Lookups for pools and project quotas
            certfile: Path of the serving certificate
            keyfile: Path of the serving key
            host: Host interface to bind to
            port: Port to serve on
            quota_settle_seconds: Delay before the FloatingIP quota check
        """
        self.reader = reader
        self.certfile = Path(certfile)
        self.keyfile = Path(keyfile)
        self.host = host
        self.port = port
        self.quota_settle_seconds = quota_settle_seconds
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None

    def build_app(self) -> Application:
        app = Application()
        app.router.add_get(READINESS_PATH, self._readyz_handler)
        app.router.add_post(VALIDATE_FLOATINGIP_PATH, self._floating_ip_handler)
        app.router.add_post(
            VALIDATE_FLOATINGIPPOOL_PATH, self._floating_ip_pool_handler
        )
        return app

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.load_cert_chain(certfile=str(self.certfile), keyfile=str(self.keyfile))
        return context

    async def start(self) -> None:
        """
        Start serving over TLS with the current certificate files.

        Raises:
            OSError: If the certificate files cannot be loaded or the port
                cannot be bound
        """
        try:
            self.runner = AppRunner(self.build_app())
            await self.runner.setup()

            self.site = TCPSite(
                self.runner, self.host, self.port, ssl_context=self._ssl_context()
            )
            await self.site.start()
        except Exception as e:
            logger.error(f"Failed to start admission server: {e}")
            await self.stop()
            raise

        logger.info(f"Admission server listening on https://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the server, closing open connections."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Admission server stopped")

    async def _readyz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def _floating_ip_handler(self, request: Request) -> Response:
        return await self._review(request, "floatingip", self._decide_floating_ip)

    async def _floating_ip_pool_handler(self, request: Request) -> Response:
        return await self._review(
            request, "floatingippool", self._decide_floating_ip_pool
        )

    async def _decide_floating_ip(self, obj: dict[str, Any]) -> None:
        try:
            floating_ip = FloatingIP.model_validate(obj)
        except ValidationError as e:
            raise kopf.AdmissionError(f"invalid FloatingIP specification: {e}") from e

        await validate_floating_ip(
            self.reader.get_pool,
            self.reader.get_quota,
            floating_ip,
            quota_settle_seconds=self.quota_settle_seconds,
        )

    async def _decide_floating_ip_pool(self, obj: dict[str, Any]) -> None:
        try:
            pool = FloatingIPPool.model_validate(obj)
        except ValidationError as e:
            raise kopf.AdmissionError(
                f"invalid FloatingIPPool specification: {e}"
            ) from e

        validate_floating_ip_pool(pool)

    async def _review(self, request: Request, resource: str, decide: Decision) -> Response:
        try:
            review = await request.json()
            admission_request = review["request"]
            uid = admission_request.get("uid") or ""
            obj = admission_request.get("object") or {}
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"cannot decode AdmissionReview for {resource}: {e}")
            ADMISSION_REQUESTS.labels(resource=resource, allowed="false").inc()
            return json_response(
                build_review_response(
                    {}, "", False, f"{INTERNAL_ERROR_MESSAGE}: cannot decode AdmissionReview"
                )
            )

        set_correlation_id(uid or generate_correlation_id())
        started = time.monotonic()

        try:
            await decide(obj)
            allowed, message = True, None
        except kopf.AdmissionError as e:
            allowed, message = False, str(e)
            logger.warning(
                f"({resource}) request not allowed: {message}",
                extra={"resource_kind": resource, "allowed": False},
            )
        except Exception as e:
            logger.error(
                f"({resource}) validation failed with an internal error: {e}",
                exc_info=True,
                extra={"resource_kind": resource, "error_type": type(e).__name__},
            )
            allowed, message = False, INTERNAL_ERROR_MESSAGE

        ADMISSION_DURATION.labels(resource=resource).observe(time.monotonic() - started)
        ADMISSION_REQUESTS.labels(
            resource=resource, allowed=str(allowed).lower()
        ).inc()

        return json_response(build_review_response(review, uid, allowed, message))
