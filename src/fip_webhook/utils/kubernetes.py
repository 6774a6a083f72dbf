"""
Kubernetes client configuration for the FIP manager webhook.

A kubeconfig file is preferred when one exists (local development against a
remote cluster); otherwise the in-cluster service account is used.
"""

import logging
from pathlib import Path

from kubernetes import config

from fip_webhook.errors import ConfigurationError

logger = logging.getLogger(__name__)


def load_kube_configuration(kubeconfig_path: Path, context: str = "") -> None:
    """
    Load the Kubernetes client configuration.

    Args:
        kubeconfig_path: Kubeconfig file used when it exists
        context: Optional kubeconfig context to select

    Raises:
        ConfigurationError: If neither configuration source can be loaded
    """
    if kubeconfig_path.is_file():
        try:
            config.load_kube_config(
                config_file=str(kubeconfig_path), context=context or None
            )
            logger.debug(f"Loaded kubeconfig from {kubeconfig_path}")
            return
        except config.ConfigException as e:
            raise ConfigurationError(
                f"Failed to load kubeconfig {kubeconfig_path}: {e}",
                user_action="Check KUBECONFIG and KUBECONTEXT",
            ) from e

    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException as e:
        raise ConfigurationError(
            f"Failed to load Kubernetes configuration: {e}",
            user_action="Run inside a cluster or point KUBECONFIG at a kubeconfig file",
        ) from e

