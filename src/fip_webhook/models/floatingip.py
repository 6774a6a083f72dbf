"""
Pydantic models for the floating IP custom resources.

This module defines typed views of the rancher.k8s.binbash.org/v1beta1
FloatingIP, FloatingIPPool and FloatingIPProjectQuota resources. The webhook
only reads these objects; allocation bookkeeping is done by the FIP manager
controller.
"""

from pydantic import BaseModel, Field

from fip_webhook.constants import PROJECT_LABEL_KEY


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the webhook."""

    model_config = {"populate_by_name": True}

    name: str = Field("", description="Resource name")
    namespace: str | None = Field(None, description="Resource namespace")
    uid: str | None = Field(None, description="Resource UID")
    labels: dict[str, str] = Field(default_factory=dict, description="Labels")


class Pool(BaseModel):
    """Inclusive address range handed out by a pool."""

    model_config = {"populate_by_name": True}

    start: str = Field("", description="First assignable IP address")
    end: str = Field("", description="Last assignable IP address")
    exclude: list[str] = Field(
        default_factory=list, description="Addresses never handed out"
    )


class IPConfig(BaseModel):
    """Subnet and range configuration of a pool."""

    model_config = {"populate_by_name": True}

    subnet: str = Field(..., description="Subnet in CIDR notation")
    pool: Pool = Field(default_factory=Pool, description="Assignable range")


class FloatingIPPoolSpec(BaseModel):
    model_config = {"populate_by_name": True}

    ip_config: IPConfig = Field(..., alias="ipConfig")


class FloatingIPPoolStatus(BaseModel):
    model_config = {"populate_by_name": True}

    allocated: dict[str, str] = Field(
        default_factory=dict, description="Allocated IP address to owner"
    )
    available: int = Field(0, description="Number of unallocated addresses")


class FloatingIPPool(BaseModel):
    """Cluster-scoped FloatingIPPool resource."""

    model_config = {"populate_by_name": True}

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: FloatingIPPoolSpec
    status: FloatingIPPoolStatus = Field(default_factory=FloatingIPPoolStatus)


class FipInfo(BaseModel):
    model_config = {"populate_by_name": True}

    used: int = Field(0, description="Floating IPs in use from the pool")


class FloatingIPProjectQuotaSpec(BaseModel):
    model_config = {"populate_by_name": True}

    floating_ip_quota: dict[str, int] = Field(
        default_factory=dict,
        alias="floatingIPQuota",
        description="Maximum floating IPs per pool",
    )


class FloatingIPProjectQuotaStatus(BaseModel):
    model_config = {"populate_by_name": True}

    floating_ips: dict[str, FipInfo] = Field(
        default_factory=dict,
        alias="floatingIPs",
        description="Usage per pool",
    )


class FloatingIPProjectQuota(BaseModel):
    """Cluster-scoped per-project quota, named after the project."""

    model_config = {"populate_by_name": True}

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: FloatingIPProjectQuotaSpec = Field(
        default_factory=FloatingIPProjectQuotaSpec
    )
    status: FloatingIPProjectQuotaStatus = Field(
        default_factory=FloatingIPProjectQuotaStatus
    )

    def used_in_pool(self, pool_name: str) -> int:
        """Current usage for a pool, 0 when nothing was recorded yet."""
        info = self.status.floating_ips.get(pool_name)
        return info.used if info is not None else 0


class FloatingIPSpec(BaseModel):
    model_config = {"populate_by_name": True}

    floating_ip_pool: str = Field(..., alias="floatingIPPool")
    ip_addr: str | None = Field(
        None, alias="ipAddr", description="Specific address requested, if any"
    )


class FloatingIP(BaseModel):
    """Namespaced FloatingIP request under validation."""

    model_config = {"populate_by_name": True}

    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: FloatingIPSpec

    @property
    def project(self) -> str:
        """Project the request is accounted against."""
        return self.metadata.labels.get(PROJECT_LABEL_KEY, "")
