"""Unit tests for FloatingIP and FloatingIPPool admission validation."""

import ipaddress
from unittest.mock import AsyncMock, patch

import kopf
import pytest

from fip_webhook.constants import QUOTA_SETTLE_SECONDS
from fip_webhook.errors import KubernetesAPIError
from fip_webhook.models.floatingip import (
    FloatingIP,
    FloatingIPPool,
    FloatingIPProjectQuota,
)
from fip_webhook.webhooks.validation import (
    compare_ips,
    parse_ip,
    parse_subnet,
    validate_floating_ip,
    validate_floating_ip_pool,
)
from tests.fixtures.floatingip_resources import (
    IPV6_POOL,
    TEST_POOL,
    TEST_QUOTA,
    make_floating_ip,
    make_pool,
    make_quota,
)


def pool_lookup(*pools):
    by_name = {p["metadata"]["name"]: FloatingIPPool.model_validate(p) for p in pools}

    async def get_pool(name):
        return by_name.get(name)

    return get_pool


def quota_lookup(quota=TEST_QUOTA):
    async def get_quota(project):
        if quota is None or project != quota["metadata"]["name"]:
            return None
        return FloatingIPProjectQuota.model_validate(quota)

    return get_quota


async def run_fip_validation(fip, pools=(TEST_POOL,), quota=TEST_QUOTA):
    await validate_floating_ip(
        pool_lookup(*pools),
        quota_lookup(quota),
        FloatingIP.model_validate(fip),
        quota_settle_seconds=0,
    )


async def denial(fip, pools=(TEST_POOL,), quota=TEST_QUOTA) -> str:
    with pytest.raises(kopf.AdmissionError) as exc_info:
        await run_fip_validation(fip, pools, quota)
    return str(exc_info.value)


def pool_denial(pool) -> str:
    with pytest.raises(kopf.AdmissionError) as exc_info:
        validate_floating_ip_pool(FloatingIPPool.model_validate(pool))
    return str(exc_info.value)


class TestAddressHelpers:
    """Test IP parsing and ordering helpers."""

    def test_parse_ip_folds_ipv4_mapped(self):
        assert parse_ip("::ffff:192.168.1.5") == ipaddress.IPv4Address("192.168.1.5")

    def test_parse_ip_rejects_invalid_and_zoned(self):
        assert parse_ip("256.1.1.1") is None
        assert parse_ip("not-an-ip") is None
        assert parse_ip("fe80::1%eth0") is None

    def test_parse_subnet_requires_prefix(self):
        assert parse_subnet("192.168.1.0") is None
        assert parse_subnet("192.168.1.0/33") is None

    def test_parse_subnet_allows_host_bits(self):
        assert parse_subnet("192.168.1.5/24") == ipaddress.ip_network("192.168.1.0/24")

    def test_compare_ips_non_decreasing(self):
        a, b, c = (ipaddress.ip_address(x) for x in ("10.0.0.1", "10.0.0.1", "10.0.0.9"))
        assert compare_ips(a, b, c)
        assert not compare_ips(c, a)

    def test_compare_ips_mixed_families(self):
        v4 = ipaddress.ip_address("10.0.0.1")
        v6 = ipaddress.ip_address("2001:db8::1")
        # IPv4 addresses map into ::ffff:0:0/96, which sorts below 2001:db8::
        assert compare_ips(v4, v6)
        assert not compare_ips(v6, v4)


class TestFloatingIPValidation:
    """Test FloatingIP admission decisions."""

    @pytest.mark.asyncio
    async def test_allows_free_address_within_quota(self):
        await run_fip_validation(make_floating_ip(ip_addr="192.168.1.50"))

    @pytest.mark.asyncio
    async def test_allows_request_without_address(self):
        await run_fip_validation(make_floating_ip())

    @pytest.mark.asyncio
    async def test_allows_free_address_in_test_pool(self):
        # test-pool excludes .101 and has .102 allocated; .100 is free and the
        # project has 1 of 1 addresses left
        await run_fip_validation(
            make_floating_ip(pool="test-pool", ip_addr="192.168.1.100"),
            quota=make_quota(quota=1, used=0),
        )

    @pytest.mark.asyncio
    async def test_denies_missing_pool(self):
        message = await denial(make_floating_ip(pool="absent-pool"))
        assert message == "the specified floatingippool absent-pool does not exist"

    @pytest.mark.asyncio
    async def test_pool_lookup_error_is_internal(self):
        async def failing_pool(name):
            raise KubernetesAPIError("boom")

        with pytest.raises(kopf.AdmissionError) as exc_info:
            await validate_floating_ip(
                failing_pool,
                quota_lookup(),
                FloatingIP.model_validate(make_floating_ip()),
                quota_settle_seconds=0,
            )
        assert str(exc_info.value) == (
            "internal server error: failed to process floatingippool test-pool"
        )

    @pytest.mark.asyncio
    async def test_denies_invalid_address(self):
        message = await denial(make_floating_ip(ip_addr="192.168.1.300"))
        assert message == "invalid IP address format: 192.168.1.300"

    @pytest.mark.asyncio
    async def test_denies_address_outside_subnet(self):
        message = await denial(make_floating_ip(ip_addr="10.0.0.1"))
        assert message == "requested IP 10.0.0.1 is not in the subnet range 192.168.1.0/24"

    @pytest.mark.asyncio
    async def test_denies_address_outside_range(self):
        message = await denial(make_floating_ip(ip_addr="192.168.1.5"))
        assert message == (
            "requested IP 192.168.1.5 is not in the pool range "
            "[192.168.1.10, 192.168.1.200]"
        )

    @pytest.mark.asyncio
    async def test_range_bounds_are_inclusive(self):
        await run_fip_validation(make_floating_ip(ip_addr="192.168.1.10"))
        await run_fip_validation(make_floating_ip(ip_addr="192.168.1.200"))

    @pytest.mark.asyncio
    async def test_denies_excluded_address(self):
        message = await denial(make_floating_ip(ip_addr="192.168.1.101"))
        assert message == "requested IP 192.168.1.101 is in the exclude list"

    @pytest.mark.asyncio
    async def test_denies_allocated_address(self):
        message = await denial(make_floating_ip(ip_addr="192.168.1.102"))
        assert message == "requested IP 192.168.1.102 is already allocated"

    @pytest.mark.asyncio
    async def test_denies_exhausted_pool_without_address(self):
        pool = make_pool()
        pool["status"]["available"] = 0
        message = await denial(make_floating_ip(), pools=(pool,))
        assert message == "no available IPs in floatingippool test-pool"

    @pytest.mark.asyncio
    async def test_requested_address_skips_availability_check(self):
        pool = make_pool()
        pool["status"]["available"] = 0
        await run_fip_validation(make_floating_ip(ip_addr="192.168.1.50"), pools=(pool,))

    @pytest.mark.asyncio
    async def test_invalid_pool_subnet_is_internal(self):
        pool = make_pool(subnet="192.168.1.0")
        message = await denial(make_floating_ip(ip_addr="192.168.1.50"), pools=(pool,))
        assert message == (
            "internal server error: invalid subnet configuration in floatingippool"
        )

    @pytest.mark.asyncio
    async def test_invalid_pool_start_is_internal(self):
        pool = make_pool(start="bogus")
        message = await denial(make_floating_ip(ip_addr="192.168.1.50"), pools=(pool,))
        assert message == (
            "internal server error: invalid start ip configuration in floatingippool test-pool"
        )

    @pytest.mark.asyncio
    async def test_denies_when_quota_exhausted(self):
        message = await denial(make_floating_ip(ip_addr="192.168.1.50"), quota=make_quota(1, 1))
        assert message == (
            "quota exceeded for floatingippool test-pool in project test-project. "
            "Quota: 1, Used: 1"
        )

    @pytest.mark.asyncio
    async def test_unrecorded_usage_counts_as_zero(self):
        await run_fip_validation(make_floating_ip(), quota=make_quota(1, None))

    @pytest.mark.asyncio
    async def test_denies_missing_quota_object(self):
        message = await denial(make_floating_ip(), quota=None)
        assert message == "no floatingipprojectquota found for project test-project"

    @pytest.mark.asyncio
    async def test_denies_missing_project_label(self):
        message = await denial(make_floating_ip(project=None))
        assert message == "no floatingipprojectquota found for project "

    @pytest.mark.asyncio
    async def test_denies_pool_without_quota_entry(self):
        message = await denial(make_floating_ip(), quota=make_quota(3, 0, pool="other-pool"))
        assert message == (
            "no quota defined for floatingippool test-pool in project test-project"
        )

    @pytest.mark.asyncio
    async def test_quota_lookup_error_is_internal(self):
        async def failing_quota(project):
            raise KubernetesAPIError("boom")

        with pytest.raises(kopf.AdmissionError) as exc_info:
            await validate_floating_ip(
                pool_lookup(TEST_POOL),
                failing_quota,
                FloatingIP.model_validate(make_floating_ip()),
                quota_settle_seconds=0,
            )
        assert str(exc_info.value) == (
            "internal server error: failed to process floatingipprojectquota"
        )

    @pytest.mark.asyncio
    async def test_ipv6_request(self):
        await run_fip_validation(
            make_floating_ip(pool="v6-pool", ip_addr="2001:db8::20"), pools=(IPV6_POOL,)
        )
        message = await denial(
            make_floating_ip(pool="v6-pool", ip_addr="2001:db8::1"), pools=(IPV6_POOL,)
        )
        assert "is not in the pool range" in message


class TestQuotaSettleDelay:
    """Test the pause taken before the project quota is read."""

    @pytest.mark.asyncio
    async def test_default_delay_precedes_quota_lookup(self):
        calls = []
        get_quota = quota_lookup()

        async def recording_quota(project):
            calls.append(("quota", project))
            return await get_quota(project)

        sleep = AsyncMock(side_effect=lambda seconds: calls.append(("sleep", seconds)))
        with patch("fip_webhook.webhooks.validation.asyncio.sleep", sleep):
            await validate_floating_ip(
                pool_lookup(TEST_POOL),
                recording_quota,
                FloatingIP.model_validate(make_floating_ip(ip_addr="192.168.1.100")),
            )

        sleep.assert_awaited_once_with(QUOTA_SETTLE_SECONDS)
        assert QUOTA_SETTLE_SECONDS == 2.0
        assert calls == [("sleep", 2.0), ("quota", "test-project")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fip",
        [
            make_floating_ip(pool="absent-pool"),
            make_floating_ip(ip_addr="192.168.1.101"),
            make_floating_ip(ip_addr="192.168.1.102"),
            make_floating_ip(ip_addr="10.0.0.1"),
        ],
    )
    async def test_pool_and_address_denials_do_not_wait(self, fip):
        sleep = AsyncMock()
        with patch("fip_webhook.webhooks.validation.asyncio.sleep", sleep):
            with pytest.raises(kopf.AdmissionError):
                await validate_floating_ip(
                    pool_lookup(TEST_POOL),
                    quota_lookup(),
                    FloatingIP.model_validate(fip),
                )

        sleep.assert_not_awaited()


class TestFloatingIPPoolValidation:
    """Test FloatingIPPool admission decisions."""

    def test_accepts_valid_pool(self):
        validate_floating_ip_pool(FloatingIPPool.model_validate(TEST_POOL))

    def test_accepts_single_address_pool(self):
        pool = make_pool(start="192.168.1.10", end="192.168.1.10")
        validate_floating_ip_pool(FloatingIPPool.model_validate(pool))

    def test_accepts_ipv6_pool(self):
        validate_floating_ip_pool(FloatingIPPool.model_validate(IPV6_POOL))

    def test_rejects_subnet_without_prefix(self):
        assert pool_denial(make_pool(subnet="192.168.1.0")) == (
            "invalid subnet format: 192.168.1.0"
        )

    def test_rejects_invalid_start(self):
        assert pool_denial(make_pool(start="192.168.1")) == (
            "invalid start IP address format: 192.168.1"
        )

    def test_rejects_start_outside_subnet(self):
        assert pool_denial(make_pool(start="10.0.0.1")) == (
            "start IP address 10.0.0.1 is not within the subnet 192.168.1.0/24"
        )

    def test_rejects_invalid_end(self):
        assert pool_denial(make_pool(end="")) == "invalid end IP address format: "

    def test_rejects_end_outside_subnet(self):
        assert pool_denial(make_pool(end="192.168.2.1")) == (
            "end IP address 192.168.2.1 is not within the subnet 192.168.1.0/24"
        )

    def test_rejects_start_after_end(self):
        assert pool_denial(make_pool(start="192.168.1.200", end="192.168.1.10")) == (
            "start IP address 192.168.1.200 must be less than or equal to "
            "end IP address 192.168.1.10"
        )

    def test_rejects_invalid_exclude(self):
        assert pool_denial(make_pool(exclude=["nope"])) == (
            "invalid excluded IP address format: nope"
        )

    def test_rejects_exclude_outside_subnet(self):
        assert pool_denial(make_pool(exclude=["10.1.1.1"])) == (
            "excluded IP address 10.1.1.1 is not within the subnet 192.168.1.0/24"
        )

    def test_rejects_exclude_outside_range(self):
        assert pool_denial(make_pool(exclude=["192.168.1.250"])) == (
            "excluded IP address 192.168.1.250 is not within the pool range "
            "[192.168.1.10, 192.168.1.200]"
        )

    def test_first_failing_check_is_reported(self):
        # Both start and exclude are invalid; start is checked first
        pool = make_pool(start="bad", exclude=["also-bad"])
        assert pool_denial(pool) == "invalid start IP address format: bad"
