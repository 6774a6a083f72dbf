"""
Read access to the floating IP custom resources.

The admission validators receive these lookups as plain callables, so the
cluster API stays out of the decision logic and tests can pass in fakes.
"""

import asyncio
import logging
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from fip_webhook.constants import (
    FIP_API_GROUP,
    FIP_API_VERSION,
    FLOATINGIPPOOL_PLURAL,
    FLOATINGIPPROJECTQUOTA_PLURAL,
)
from fip_webhook.errors import KubernetesAPIError
from fip_webhook.models.floatingip import FloatingIPPool, FloatingIPProjectQuota

logger = logging.getLogger(__name__)


class FloatingIPResourceReader:
    """Reads cluster-scoped FloatingIPPool and FloatingIPProjectQuota objects."""

    def __init__(self, k8s_client: client.ApiClient | None = None):
        """
        Initialize resource reader.

        Args:
            k8s_client: Optional Kubernetes API client
        """
        self.k8s_client = k8s_client
        self._custom_api: client.CustomObjectsApi | None = None

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        """Get CustomObjectsApi client."""
        if self._custom_api is None:
            if self.k8s_client:
                self._custom_api = client.CustomObjectsApi(self.k8s_client)
            else:
                self._custom_api = client.CustomObjectsApi()
        return self._custom_api

    async def _get_cluster_object(self, plural: str, name: str) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(
                self.custom_api.get_cluster_custom_object,
                group=FIP_API_GROUP,
                version=FIP_API_VERSION,
                plural=plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"{plural}/{name} not found")
                return None
            raise KubernetesAPIError(
                f"Failed to read {plural}/{name}: {e.reason}", reason=e.reason
            ) from e
        except HTTPError as e:
            raise KubernetesAPIError(f"Failed to read {plural}/{name}: {e}") from e

    async def get_pool(self, name: str) -> FloatingIPPool | None:
        """
        Retrieve a FloatingIPPool.

        Args:
            name: Pool name

        Returns:
            Parsed pool, or None if it does not exist

        Raises:
            KubernetesAPIError: If the read fails for reasons other than 404
            pydantic.ValidationError: If the stored object cannot be parsed
        """
        obj = await self._get_cluster_object(FLOATINGIPPOOL_PLURAL, name)
        if obj is None:
            return None
        return FloatingIPPool.model_validate(obj)

    async def get_quota(self, project: str) -> FloatingIPProjectQuota | None:
        """
        Retrieve the FloatingIPProjectQuota of a project.

        Args:
            project: Project identifier (the quota object's name)

        Returns:
            Parsed quota, or None if the project has no quota object

        Raises:
            KubernetesAPIError: If the read fails for reasons other than 404
            pydantic.ValidationError: If the stored object cannot be parsed
        """
        if not project:
            return None
        obj = await self._get_cluster_object(FLOATINGIPPROJECTQUOTA_PLURAL, project)
        if obj is None:
            return None
        return FloatingIPProjectQuota.model_validate(obj)
