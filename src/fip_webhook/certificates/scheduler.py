"""
Certificate renewal scheduling.

The scheduler runs as a single background task owned by the process
lifecycle. Each iteration derives the next renewal point from the stored
certificate, sleeps until then, renews the certificate and restarts the
admission server so it serves the new certificate. Because the schedule is
derived from the persisted expiration, nothing needs to be stored across
restarts.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Protocol

from fip_webhook.constants import (
    MINIMUM_RENEWAL_INTERVAL_MINUTES,
    RESTART_SETTLE_SECONDS,
)
from fip_webhook.errors import CertificateUnavailable, KubernetesAPIError

from .manager import CertificateManager, minutes_until

logger = logging.getLogger(__name__)


class RestartableServer(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def next_interval_minutes(
    expiration: datetime, renewal_window_minutes: int, now: datetime | None = None
) -> int:
    """
    Compute the minutes to wait before the next renewal.

    One minute is added because a certificate with zero minutes left is still
    valid, and the result never drops below one minute.

    Args:
        expiration: Not-after timestamp of the current certificate
        renewal_window_minutes: Renewal lead time in minutes
        now: Reference time (default: current UTC time)

    Returns:
        Interval in whole minutes, at least 1
    """
    ticks = math.floor(minutes_until(expiration, now)) - renewal_window_minutes + 1
    return max(ticks, MINIMUM_RENEWAL_INTERVAL_MINUTES)


class CertificateRenewalScheduler:
    """Owns the renewal task and restarts the admission server after renewals."""

    def __init__(
        self,
        manager: CertificateManager,
        server: RestartableServer,
        renewal_window_minutes: int,
        restart_settle_seconds: float = RESTART_SETTLE_SECONDS,
    ):
        """
        Initialize the renewal scheduler.

        Args:
            manager: Certificate manager performing the renewal
            server: Admission server restarted after each renewal
            renewal_window_minutes: Renewal lead time in minutes
            restart_settle_seconds: Pause between stopping and starting the server
        """
        self.manager = manager
        self.server = server
        self.renewal_window_minutes = renewal_window_minutes
        self.restart_settle_seconds = restart_settle_seconds
        self._task: asyncio.Task | None = None
        self._restart: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """
        Start the renewal loop.

        Returns:
            The background task running the loop

        Raises:
            RuntimeError: If the scheduler is already running
        """
        if self.running:
            raise RuntimeError("Certificate renewal scheduler is already running")
        self._task = asyncio.create_task(self._run(), name="certificate-renewal")
        logger.info("Certificate renewal scheduler started")
        return self._task

    async def stop(self) -> None:
        """Cancel the renewal loop and wait for an in-flight restart to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        restart, self._restart = self._restart, None
        if restart is not None and not restart.done():
            logger.info("Waiting for the running certificate renewal to finish")
            await restart
        logger.info("Certificate renewal scheduler stopped")

    async def replace(self, renewal_window_minutes: int | None = None) -> asyncio.Task:
        """
        Restart the loop, recomputing the schedule from the stored certificate.

        Args:
            renewal_window_minutes: New renewal lead time (default: unchanged)

        Returns:
            The new background task
        """
        await self.stop()
        if renewal_window_minutes is not None:
            self.renewal_window_minutes = renewal_window_minutes
        return self.start()

    async def next_delay_seconds(self) -> float:
        """
        Derive the delay until the next renewal from the stored certificate.

        Raises:
            SystemExit: If the expiration cannot be read, since no safe
                schedule can be derived without it
        """
        try:
            expiration = await self.manager.get_expiration()
        except (CertificateUnavailable, KubernetesAPIError) as e:
            logger.critical(f"Cannot read certificate expiration, terminating: {e}")
            raise SystemExit(1) from e

        minutes = next_interval_minutes(expiration, self.renewal_window_minutes)
        logger.info(
            f"Next certificate renewal check in {minutes} minutes "
            f"(certificate expires at {expiration})"
        )
        return minutes * 60.0

    async def _run(self) -> None:
        while True:
            delay = await self.next_delay_seconds()
            await asyncio.sleep(delay)
            # The restart sequence must not be interrupted half-way
            self._restart = asyncio.create_task(
                self.renew_and_restart(), name="certificate-renewal-restart"
            )
            await asyncio.shield(self._restart)
            self._restart = None

    async def renew_and_restart(self) -> None:
        """Renew the certificate and restart the admission server."""
        logger.info("Certificate renewal period is reached, renewing certificate and secret")
        try:
            await self.manager.ensure_fresh(self.renewal_window_minutes)
        except Exception as e:
            logger.error(f"Certificate renewal failed unexpectedly: {e}", exc_info=True)

        try:
            await self.server.stop()
        except Exception as e:
            logger.error(f"Error stopping admission server during renewal: {e}")

        # Settle delay before the port is bound again
        await asyncio.sleep(self.restart_settle_seconds)

        try:
            await self.server.start()
        except Exception as e:
            logger.error(f"Error starting admission server after renewal: {e}")
