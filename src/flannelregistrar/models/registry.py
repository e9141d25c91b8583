"""
Pydantic models for documents exchanged through etcd and HTTP.

Model Categories:
    - Subnet leases: values flannel writes under ``<prefix>/subnets/``
    - Health documents: status published by this host
"""

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Subnet Lease Models
# =============================================================================


class BackendData(BaseModel):
    """VXLAN backend data attached to a flannel lease."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    vtep_mac: str = Field(default="", alias="VtepMAC")


class SubnetLease(BaseModel):
    """
    Value of a flannel subnet key.

    Only ``PublicIP`` is required; everything else is optional metadata.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    public_ip: str = Field(..., alias="PublicIP")
    backend_type: str = Field(default="", alias="BackendType")
    backend_data: BackendData | None = Field(default=None, alias="BackendData")
    hostname: str = Field(default="", alias="Hostname")

    @property
    def vtep_mac(self) -> str:
        if self.backend_data is None:
            return ""
        return self.backend_data.vtep_mac


# =============================================================================
# Health Models
# =============================================================================


class HealthDocument(BaseModel):
    """Periodic health status document published by a host."""

    status: str = Field(..., description="healthy|degraded|critical|unknown")
    last_check: int = Field(..., description="Unix timestamp of the check")
    message: str = Field(default="", description="Human readable summary")
    hostname: str = Field(..., description="Reporting host")
    issues: list[str] = Field(
        default_factory=list,
        description="One line per unhealthy component",
    )
