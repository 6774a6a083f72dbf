"""Unit tests for reading floating IP custom resources."""

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException
from pydantic import ValidationError
from urllib3.exceptions import MaxRetryError

from fip_webhook.errors import KubernetesAPIError
from fip_webhook.webhooks.resources import FloatingIPResourceReader
from tests.fixtures.floatingip_resources import TEST_POOL, TEST_QUOTA


@pytest.fixture
def reader():
    reader = FloatingIPResourceReader()
    reader._custom_api = MagicMock()
    return reader


class TestFloatingIPResourceReader:
    """Test pool and quota lookups."""

    def test_custom_api_property_creates_client(self):
        reader = FloatingIPResourceReader()

        with patch("fip_webhook.webhooks.resources.client.CustomObjectsApi") as mock_api:
            _ = reader.custom_api
            mock_api.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_pool(self, reader):
        reader._custom_api.get_cluster_custom_object.return_value = TEST_POOL

        pool = await reader.get_pool("test-pool")

        assert pool.spec.ip_config.subnet == "192.168.1.0/24"
        assert pool.status.allocated == {"192.168.1.102": "default/existing-fip"}
        reader._custom_api.get_cluster_custom_object.assert_called_once_with(
            group="rancher.k8s.binbash.org",
            version="v1beta1",
            plural="floatingippools",
            name="test-pool",
        )

    @pytest.mark.asyncio
    async def test_missing_pool(self, reader):
        reader._custom_api.get_cluster_custom_object.side_effect = ApiException(status=404)
        assert await reader.get_pool("absent") is None

    @pytest.mark.asyncio
    async def test_pool_read_error(self, reader):
        reader._custom_api.get_cluster_custom_object.side_effect = ApiException(
            status=500, reason="Internal"
        )
        with pytest.raises(KubernetesAPIError):
            await reader.get_pool("test-pool")

    @pytest.mark.asyncio
    async def test_malformed_pool(self, reader):
        reader._custom_api.get_cluster_custom_object.return_value = {
            "metadata": {"name": "broken"},
            "spec": {},
        }
        with pytest.raises(ValidationError):
            await reader.get_pool("broken")

    @pytest.mark.asyncio
    async def test_get_quota(self, reader):
        reader._custom_api.get_cluster_custom_object.return_value = TEST_QUOTA

        quota = await reader.get_quota("test-project")

        assert quota.spec.floating_ip_quota["test-pool"] == 1
        assert quota.used_in_pool("test-pool") == 0
        assert quota.used_in_pool("unknown") == 0
        assert (
            reader._custom_api.get_cluster_custom_object.call_args.kwargs["plural"]
            == "floatingipprojectquotas"
        )

    @pytest.mark.asyncio
    async def test_quota_for_empty_project(self, reader):
        assert await reader.get_quota("") is None
        reader._custom_api.get_cluster_custom_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_pool_read_connection_refused(self, reader):
        reader._custom_api.get_cluster_custom_object.side_effect = MaxRetryError(
            None, "/apis/rancher.k8s.binbash.org/v1beta1", reason="refused"
        )
        with pytest.raises(KubernetesAPIError, match="Failed to read floatingippools/test-pool"):
            await reader.get_pool("test-pool")

    @pytest.mark.asyncio
    async def test_concurrent_lookups_do_not_block_each_other(self, reader):
        # Both reads must be in flight at once for the barrier to open
        barrier = threading.Barrier(2, timeout=5)

        def blocking_read(**kwargs):
            barrier.wait()
            return TEST_POOL if kwargs["plural"] == "floatingippools" else TEST_QUOTA

        reader._custom_api.get_cluster_custom_object.side_effect = blocking_read

        pool, quota = await asyncio.gather(
            reader.get_pool("test-pool"), reader.get_quota("test-project")
        )

        assert pool.metadata.name == "test-pool"
        assert quota.used_in_pool("test-pool") == 0
