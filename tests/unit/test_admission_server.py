"""
Unit tests for the admission HTTP server.

Uses ``aiohttp.test_utils`` to drive the server's aiohttp application over
plain HTTP; TLS loading is covered separately.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from fip_webhook.errors import KubernetesAPIError
from fip_webhook.models.floatingip import FloatingIPPool, FloatingIPProjectQuota
from fip_webhook.webhooks.server import AdmissionServer, build_review_response
from tests.fixtures.floatingip_resources import (
    TEST_POOL,
    TEST_QUOTA,
    admission_review,
    make_floating_ip,
    make_pool,
)

UID = "705ab4f5-6393-11e8-b7cc-42010a800002"


@pytest.fixture
def reader():
    reader = MagicMock()
    reader.get_pool = AsyncMock(return_value=FloatingIPPool.model_validate(TEST_POOL))
    reader.get_quota = AsyncMock(
        return_value=FloatingIPProjectQuota.model_validate(TEST_QUOTA)
    )
    return reader


@pytest.fixture
def admission_server(reader, tmp_path):
    return AdmissionServer(
        reader,
        certfile=tmp_path / "tls.crt",
        keyfile=tmp_path / "tls.key",
        port=0,
        quota_settle_seconds=0,
    )


@pytest.fixture
async def client(admission_server):
    server = TestServer(admission_server.build_app())
    async with TestClient(server) as cli:
        yield cli


class TestReviewResponse:
    """Tests for the AdmissionReview response envelope."""

    def test_allowed_response(self):
        review = build_review_response({"apiVersion": "admission.k8s.io/v1"}, UID, True)
        assert review["kind"] == "AdmissionReview"
        assert review["response"] == {"uid": UID, "allowed": True}

    def test_denied_response_carries_reason(self):
        review = build_review_response({}, UID, False, "nope")
        assert review["apiVersion"] == "admission.k8s.io/v1"
        assert review["response"]["status"] == {"code": 403, "message": "nope"}


class TestReadiness:
    """Tests for ``GET /readyz``."""

    @pytest.mark.asyncio
    async def test_readyz_returns_ok(self, client):
        resp = await client.get("/readyz")
        assert resp.status == 200
        assert await resp.text() == "ok"


class TestFloatingIPEndpoint:
    """Tests for ``POST /validate-floatingip``."""

    @pytest.mark.asyncio
    async def test_allows_valid_request(self, client):
        resp = await client.post(
            "/validate-floatingip",
            json=admission_review(make_floating_ip(ip_addr="192.168.1.50")),
        )
        assert resp.status == 200
        body = await resp.json()
        assert body["kind"] == "AdmissionReview"
        assert body["response"]["uid"] == UID
        assert body["response"]["allowed"] is True

    @pytest.mark.asyncio
    async def test_denies_with_reason(self, client):
        resp = await client.post(
            "/validate-floatingip",
            json=admission_review(make_floating_ip(ip_addr="192.168.1.101")),
        )
        body = await resp.json()
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["message"] == (
            "requested IP 192.168.1.101 is in the exclude list"
        )

    @pytest.mark.asyncio
    async def test_missing_pool(self, client, reader):
        reader.get_pool.return_value = None
        resp = await client.post(
            "/validate-floatingip", json=admission_review(make_floating_ip())
        )
        body = await resp.json()
        assert body["response"]["status"]["message"] == (
            "the specified floatingippool test-pool does not exist"
        )

    @pytest.mark.asyncio
    async def test_lookup_failure_is_internal(self, client, reader):
        reader.get_pool.side_effect = KubernetesAPIError("down")
        resp = await client.post(
            "/validate-floatingip", json=admission_review(make_floating_ip())
        )
        body = await resp.json()
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["message"].startswith("internal server error")

    @pytest.mark.asyncio
    async def test_invalid_object(self, client):
        obj = make_floating_ip()
        del obj["spec"]["floatingIPPool"]
        resp = await client.post("/validate-floatingip", json=admission_review(obj))
        body = await resp.json()
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["message"].startswith(
            "invalid FloatingIP specification"
        )

    @pytest.mark.asyncio
    async def test_undecodable_body(self, client):
        resp = await client.post("/validate-floatingip", data=b"{not json")
        assert resp.status == 200
        body = await resp.json()
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["message"].startswith("internal server error")

    @pytest.mark.asyncio
    async def test_review_without_request(self, client):
        resp = await client.post(
            "/validate-floatingip",
            json={"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview"},
        )
        body = await resp.json()
        assert body["response"]["allowed"] is False

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, client):
        with patch(
            "fip_webhook.webhooks.server.validate_floating_ip",
            side_effect=RuntimeError("boom"),
        ):
            resp = await client.post(
                "/validate-floatingip", json=admission_review(make_floating_ip())
            )
        body = await resp.json()
        assert body["response"]["status"]["message"] == "internal server error"


class TestFloatingIPPoolEndpoint:
    """Tests for ``POST /validate-floatingippool``."""

    @pytest.mark.asyncio
    async def test_allows_valid_pool(self, client):
        resp = await client.post(
            "/validate-floatingippool", json=admission_review(TEST_POOL)
        )
        body = await resp.json()
        assert body["response"]["allowed"] is True

    @pytest.mark.asyncio
    async def test_denies_reversed_range(self, client):
        pool = make_pool(start="192.168.1.200", end="192.168.1.10")
        resp = await client.post("/validate-floatingippool", json=admission_review(pool))
        body = await resp.json()
        assert body["response"]["allowed"] is False
        assert "must be less than or equal to" in body["response"]["status"]["message"]

    @pytest.mark.asyncio
    async def test_pool_without_ip_config(self, client):
        pool = make_pool()
        del pool["spec"]["ipConfig"]
        resp = await client.post("/validate-floatingippool", json=admission_review(pool))
        body = await resp.json()
        assert body["response"]["status"]["message"].startswith(
            "invalid FloatingIPPool specification"
        )


class TestServerLifecycle:
    """Tests for starting and stopping the TLS server."""

    @pytest.mark.asyncio
    async def test_start_fails_without_certificate_files(self, admission_server):
        with pytest.raises(OSError):
            await admission_server.start()
        assert admission_server.runner is None

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, admission_server):
        await admission_server.stop()
        assert admission_server.site is None
