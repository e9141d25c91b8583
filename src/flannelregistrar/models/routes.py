"""Route reconciliation data models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from flannelregistrar.models.enums import RouteClass


@dataclass(frozen=True)
class SubnetRecord:
    """
    One subnet lease registered in etcd.

    Read-only from the registrar's perspective. Records are re-read on every
    pass because peers mutate them concurrently.
    """

    subnet: str  # "10.5.40.0/24"
    public_ip: str
    key: str = ""
    hostname: str = ""
    vtep_mac: str = ""


@dataclass(frozen=True)
class DesiredRoute:
    """
    A route the registrar wants present in the kernel table.

    Exactly one shape is applied:
        - ``device`` set, ``via`` empty: scope-link route bound to a bridge
        - ``via`` set: route via a gateway (or the owner IP for direct routes)
    """

    destination: str
    via: str = ""
    device: str = ""
    classification: RouteClass = RouteClass.DIRECT

    @property
    def is_scope_link(self) -> bool:
        return bool(self.device) and not self.via


@dataclass(frozen=True)
class GatewayMapping:
    """Operator supplied ``remote host or network -> gateway`` mapping."""

    host: str  # IP or CIDR
    gateway: str


@dataclass(frozen=True)
class ExtraRoute:
    """Operator supplied static route from ``subnet:gateway[:interface]``."""

    subnet: str
    gateway: str
    interface: str = ""


@dataclass(frozen=True)
class RouteBackupEntry:
    """One route captured in the route backup file."""

    subnet: str
    via: str = ""
    dev: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RouteBackupEntry":
        return cls(
            subnet=str(data.get("subnet", "")),
            via=str(data.get("via") or ""),
            dev=str(data.get("dev") or ""),
        )


@dataclass
class ReconcileResult:
    """Counters reported by one reconciliation pass."""

    added: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    bridge_direct: int = 0
    overlay_skipped: int = 0
    failed: int = 0
    rejected_keys: int = 0
    ran: bool = True
    failed_subnets: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.added} added, {self.updated} updated, "
            f"{self.unchanged} unchanged, {self.skipped} skipped, "
            f"{self.bridge_direct} direct bridge routes, "
            f"{self.overlay_skipped} flannel routes skipped, "
            f"{self.failed} failed"
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class VerifyResult:
    """Outcome of comparing the desired route set with the live table."""

    expected: int = 0
    missing: list[str] = field(default_factory=list)
    reconciled: ReconcileResult | None = None
    still_missing: list[str] = field(default_factory=list)

    @property
    def unresolved(self) -> list[str]:
        """Subnets still without a route once any forced pass has run."""
        if self.reconciled is not None:
            return self.still_missing
        return self.missing

    @property
    def ok(self) -> bool:
        return not self.unresolved


@dataclass
class RestoreResult:
    """Outcome of restoring routes from the backup file."""

    restored: int = 0
    total: int = 0
    skipped: int = 0
    reason: str = ""
