"""
Admission validation for FloatingIP and FloatingIPPool resources.

This module holds the decision logic of the webhook. Both validators are
stateless: they read pool and quota state through the lookups they are given
and deny a request by raising ``kopf.AdmissionError`` with a human-readable
reason. Returning normally means the request is allowed.

Checks run in a fixed order and the first failing check is reported.
"""

import asyncio
import ipaddress
import logging
from collections.abc import Awaitable, Callable

import kopf
from pydantic import ValidationError

from fip_webhook.constants import INTERNAL_ERROR_MESSAGE, QUOTA_SETTLE_SECONDS
from fip_webhook.errors import KubernetesAPIError
from fip_webhook.models.floatingip import (
    FloatingIP,
    FloatingIPPool,
    FloatingIPProjectQuota,
)

logger = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

PoolLookup = Callable[[str], Awaitable[FloatingIPPool | None]]
QuotaLookup = Callable[[str], Awaitable[FloatingIPProjectQuota | None]]

# Prefix of an IPv4-mapped IPv6 address (::ffff:0:0/96)
_V4_MAPPED_PREFIX = b"\x00" * 10 + b"\xff\xff"


def parse_ip(value: str) -> IPAddress | None:
    """
    Parse an IP literal.

    IPv4-mapped IPv6 literals are folded to their IPv4 form so they compare
    and match subnets the same way as the plain IPv4 literal. Zoned IPv6
    literals are rejected.

    Args:
        value: Address literal

    Returns:
        Parsed address, or None if the literal is not a valid IP address
    """
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return None

    if isinstance(ip, ipaddress.IPv6Address):
        if ip.scope_id:
            return None
        if ip.ipv4_mapped is not None:
            return ip.ipv4_mapped
    return ip


def parse_subnet(value: str) -> IPNetwork | None:
    """
    Parse a subnet in CIDR notation.

    Host bits may be set (``192.168.1.5/24`` is the 192.168.1.0/24 subnet),
    but the prefix length is mandatory.

    Returns:
        Parsed network, or None if the value is not valid CIDR notation
    """
    if "/" not in value:
        return None
    try:
        return ipaddress.ip_network(value, strict=False)
    except ValueError:
        return None


def _packed(ip: IPAddress, as_ipv6: bool) -> bytes:
    if as_ipv6 and ip.version == 4:
        return _V4_MAPPED_PREFIX + ip.packed
    return ip.packed


def compare_ips(first: IPAddress, second: IPAddress, *others: IPAddress) -> bool:
    """
    Check that addresses are in non-decreasing byte order.

    When every operand is IPv4 the 4-byte forms are compared, otherwise all
    operands are compared in their 16-byte form with IPv4 addresses mapped
    into ::ffff:0:0/96.

    Returns:
        True if ``first <= second <= others...``
    """
    ips = (first, second, *others)
    as_ipv6 = any(ip.version == 6 for ip in ips)
    keys = [_packed(ip, as_ipv6) for ip in ips]
    return all(a <= b for a, b in zip(keys, keys[1:]))


def _deny(message: str) -> kopf.AdmissionError:
    return kopf.AdmissionError(message)


async def validate_floating_ip(
    get_pool: PoolLookup,
    get_quota: QuotaLookup,
    floating_ip: FloatingIP,
    quota_settle_seconds: float = QUOTA_SETTLE_SECONDS,
) -> None:
    """
    Validate a FloatingIP request against its pool and project quota.

    Validates, in order:
    - The referenced FloatingIPPool exists
    - A requested IP is valid, inside the subnet and pool range, not excluded
      and not allocated; without a requested IP the pool has addresses left
    - The project quota for the pool is not exhausted

    The quota check waits ``quota_settle_seconds`` first so that usage
    recorded for a FloatingIP admitted just before is more likely to be
    visible. This narrows, but does not close, the window in which two
    concurrent requests can both pass the quota check.

    Args:
        get_pool: Lookup returning a FloatingIPPool by name, or None
        get_quota: Lookup returning a FloatingIPProjectQuota by project, or None
        floating_ip: The FloatingIP under validation
        quota_settle_seconds: Delay before the quota is read

    Raises:
        kopf.AdmissionError: If the request must be denied
    """
    pool_name = floating_ip.spec.floating_ip_pool

    try:
        pool = await get_pool(pool_name)
    except (KubernetesAPIError, ValidationError) as e:
        logger.error(f"Failed to read floatingippool {pool_name}: {e}")
        raise _deny(
            f"{INTERNAL_ERROR_MESSAGE}: failed to process floatingippool {pool_name}"
        ) from e

    if pool is None:
        raise _deny(f"the specified floatingippool {pool_name} does not exist")

    if floating_ip.spec.ip_addr is not None:
        _check_requested_ip(pool_name, pool, floating_ip.spec.ip_addr)
    elif pool.status.available <= 0:
        raise _deny(f"no available IPs in floatingippool {pool_name}")

    await asyncio.sleep(quota_settle_seconds)

    await _check_project_quota(get_quota, pool_name, floating_ip.project)


def _check_requested_ip(pool_name: str, pool: FloatingIPPool, ip_addr: str) -> None:
    ip_config = pool.spec.ip_config

    requested = parse_ip(ip_addr)
    if requested is None:
        raise _deny(f"invalid IP address format: {ip_addr}")

    subnet = parse_subnet(ip_config.subnet)
    if subnet is None:
        logger.error(
            f"Failed to parse subnet {ip_config.subnet} of floatingippool {pool_name}"
        )
        raise _deny(
            f"{INTERNAL_ERROR_MESSAGE}: invalid subnet configuration in floatingippool"
        )
    if requested not in subnet:
        raise _deny(
            f"requested IP {ip_addr} is not in the subnet range {ip_config.subnet}"
        )

    start = parse_ip(ip_config.pool.start)
    if start is None:
        logger.error(
            f"Failed to parse start IP {ip_config.pool.start} from floatingippool {pool_name}"
        )
        raise _deny(
            f"{INTERNAL_ERROR_MESSAGE}: invalid start ip configuration in floatingippool {pool_name}"
        )

    end = parse_ip(ip_config.pool.end)
    if end is None:
        logger.error(
            f"Failed to parse end IP {ip_config.pool.end} from floatingippool {pool_name}"
        )
        raise _deny(
            f"{INTERNAL_ERROR_MESSAGE}: invalid end ip configuration in floatingippool {pool_name}"
        )

    if not compare_ips(start, requested, end):
        raise _deny(
            f"requested IP {ip_addr} is not in the pool range "
            f"[{ip_config.pool.start}, {ip_config.pool.end}]"
        )

    if ip_addr in ip_config.pool.exclude:
        raise _deny(f"requested IP {ip_addr} is in the exclude list")

    if ip_addr in pool.status.allocated:
        raise _deny(f"requested IP {ip_addr} is already allocated")


async def _check_project_quota(
    get_quota: QuotaLookup, pool_name: str, project: str
) -> None:
    try:
        quota_obj = await get_quota(project)
    except (KubernetesAPIError, ValidationError) as e:
        logger.error(f"Failed to read floatingipprojectquota for project {project}: {e}")
        raise _deny(
            f"{INTERNAL_ERROR_MESSAGE}: failed to process floatingipprojectquota"
        ) from e

    if quota_obj is None:
        raise _deny(f"no floatingipprojectquota found for project {project}")

    quota = quota_obj.spec.floating_ip_quota.get(pool_name)
    if quota is None:
        raise _deny(
            f"no quota defined for floatingippool {pool_name} in project {project}"
        )

    used = quota_obj.used_in_pool(pool_name)
    logger.debug(f"Quota check for {project}/{pool_name}: used={used}, quota={quota}")

    if used >= quota:
        raise _deny(
            f"quota exceeded for floatingippool {pool_name} in project {project}. "
            f"Quota: {quota}, Used: {used}"
        )


def validate_floating_ip_pool(pool: FloatingIPPool) -> None:
    """
    Validate the internal consistency of a FloatingIPPool definition.

    Validates:
    - The subnet is valid CIDR notation
    - Start and end addresses are valid and inside the subnet
    - Start is lower than or equal to end (a single-address pool is valid)
    - Every excluded address is valid, inside the subnet and inside the range

    Args:
        pool: The FloatingIPPool under validation

    Raises:
        kopf.AdmissionError: If the pool definition is invalid
    """
    ip_config = pool.spec.ip_config
    start_str = ip_config.pool.start
    end_str = ip_config.pool.end

    subnet = parse_subnet(ip_config.subnet)
    if subnet is None:
        raise _deny(f"invalid subnet format: {ip_config.subnet}")

    start = parse_ip(start_str)
    if start is None:
        raise _deny(f"invalid start IP address format: {start_str}")
    if start not in subnet:
        raise _deny(
            f"start IP address {start_str} is not within the subnet {ip_config.subnet}"
        )

    end = parse_ip(end_str)
    if end is None:
        raise _deny(f"invalid end IP address format: {end_str}")
    if end not in subnet:
        raise _deny(
            f"end IP address {end_str} is not within the subnet {ip_config.subnet}"
        )

    if not compare_ips(start, end):
        raise _deny(
            f"start IP address {start_str} must be less than or equal to "
            f"end IP address {end_str}"
        )

    for excluded_str in ip_config.pool.exclude:
        excluded = parse_ip(excluded_str)
        if excluded is None:
            raise _deny(f"invalid excluded IP address format: {excluded_str}")
        if excluded not in subnet:
            raise _deny(
                f"excluded IP address {excluded_str} is not within the subnet "
                f"{ip_config.subnet}"
            )
        if not compare_ips(start, excluded, end):
            raise _deny(
                f"excluded IP address {excluded_str} is not within the pool range "
                f"[{start_str}, {end_str}]"
            )
