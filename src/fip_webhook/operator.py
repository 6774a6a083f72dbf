#!/usr/bin/env python3
"""
Rancher FIP manager webhook - main entry point.

The process validates FloatingIP and FloatingIPPool admission requests and
keeps its own serving certificate current:
- Issues or renews the serving certificate through the cluster CSR API
- Registers the ValidatingWebhookConfiguration on first start
- Serves admission reviews over HTTPS on the webhook port
- Renews the certificate before it expires and restarts the HTTPS server

Kopf runs the process lifecycle (startup, cleanup, liveness probes); the
admission server is owned by this module so it can be restarted after a
certificate renewal.

Usage:
    python -m fip_webhook.operator

Environment Variables:
    LOGLEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    CERTRENEWALPERIOD: Minutes before expiry at which the certificate is renewed
    KUBECONFIG / KUBECONTEXT: Optional kubeconfig file and context
"""

import logging
import sys

import kopf

from fip_webhook.certificates import CertificateManager, CertificateRenewalScheduler
from fip_webhook.errors import WebhookError
from fip_webhook.observability.logging import setup_structured_logging
from fip_webhook.observability.metrics import MetricsServer
from fip_webhook.settings import settings as webhook_settings
from fip_webhook.utils.kubernetes import load_kube_configuration
from fip_webhook.webhooks import (
    AdmissionServer,
    FloatingIPResourceReader,
    ensure_validating_webhook_configuration,
)

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure structured logging based on webhook_settings."""
    setup_structured_logging(
        log_level=webhook_settings.log_level.upper(),
        enable_json_formatting=webhook_settings.json_logs,
        correlation_id_enabled=webhook_settings.correlation_ids,
        log_health_probes=webhook_settings.log_health_probes,
    )


def _as_kopf_error(error: WebhookError) -> kopf.PermanentError | kopf.TemporaryError:
    if error.retryable:
        return kopf.TemporaryError(str(error), delay=10)
    return kopf.PermanentError(str(error))


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Bring the webhook into service.

    Order matters: the certificate must exist before the HTTPS server can
    load it, and the scheduler derives its first delay from the stored
    certificate.
    """
    logger.info("Starting Rancher FIP manager webhook...")

    # No resources are watched; peering and kopf's own admission server are unused
    settings.peering.standalone = True
    settings.admission.server = None

    manager = CertificateManager.for_service(
        name=webhook_settings.webhook_name,
        namespace=webhook_settings.webhook_namespace,
        cert_dir=webhook_settings.cert_directory,
    )
    try:
        load_kube_configuration(
            webhook_settings.kubeconfig_path, webhook_settings.kube_context
        )
        await manager.ensure_fresh(webhook_settings.cert_renewal_period, strict=True)
        await ensure_validating_webhook_configuration(
            webhook_settings.webhook_name,
            webhook_settings.webhook_namespace,
            webhook_settings.validating_webhook_config_name,
        )
    except WebhookError as e:
        logger.error(f"Webhook startup failed: {e}")
        raise _as_kopf_error(e) from e

    server = AdmissionServer(
        reader=FloatingIPResourceReader(),
        certfile=manager.secret_store.cert_path,
        keyfile=manager.secret_store.key_path,
        host=webhook_settings.webhook_host,
        port=webhook_settings.webhook_port,
    )
    await server.start()
    memo.admission_server = server

    try:
        metrics_server = MetricsServer(
            port=webhook_settings.metrics_port, host=webhook_settings.metrics_host
        )
        await metrics_server.start()
        memo.metrics_server = metrics_server
    except Exception as e:
        logger.error(f"Failed to start metrics server: {e}")
        # Don't fail webhook startup if metrics server fails
        logger.warning("Continuing without metrics server")

    scheduler = CertificateRenewalScheduler(
        manager=manager,
        server=server,
        renewal_window_minutes=webhook_settings.cert_renewal_period,
    )
    scheduler.start()
    memo.renewal_scheduler = scheduler

    logger.info(
        f"Webhook {webhook_settings.webhook_name}.{webhook_settings.webhook_namespace} "
        f"ready (renewal window: {webhook_settings.cert_renewal_period} minutes)"
    )


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """Stop the renewal scheduler and the HTTP servers."""
    logger.info("Shutting down Rancher FIP manager webhook...")

    scheduler = memo.get("renewal_scheduler")
    if scheduler:
        await scheduler.stop()

    for key in ("admission_server", "metrics_server"):
        server = memo.get(key)
        if server is None:
            continue
        try:
            await server.stop()
        except Exception as e:
            logger.error(f"Error stopping {key.replace('_', ' ')}: {e}")


@kopf.on.probe(id="admission")
async def admission_probe(memo: kopf.Memo, **_) -> dict[str, str]:
    """
    Liveness details for the admission side of the process.

    Returns:
        Dictionary with the admission server and scheduler state
    """
    server = memo.get("admission_server")
    scheduler = memo.get("renewal_scheduler")
    return {
        "server": "serving" if server is not None and server.site else "stopped",
        "renewal": "scheduled" if scheduler is not None and scheduler.running else "idle",
    }


def main() -> None:
    """
    Main entry point for the webhook.

    This function:
    1. Configures logging
    2. Disables kopf's own admission server and peering
    3. Runs kopf, which drives the startup and cleanup handlers
    """
    configure_logging()

    settings_obj = kopf.OperatorSettings()
    settings_obj.admission.server = None
    settings_obj.admission.managed = None
    settings_obj.peering.standalone = True

    try:
        kopf.run(
            clusterwide=True,
            liveness_endpoint=f"http://0.0.0.0:{webhook_settings.liveness_port}/healthz",
            settings=settings_obj,
        )
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Webhook failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
