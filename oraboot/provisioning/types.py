"""Shared data types for provisioning and bootstrap."""

from dataclasses import dataclass, field
from enum import Enum

STAGE_OK = "ok"
STAGE_FAILED = "failed"
STAGE_SKIPPED = "skipped"


class LifecycleState(str, Enum):
    """Instance lifecycle, collapsed from the provider's richer state set."""

    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    TERMINATING = "TERMINATING"
    TERMINATED = "TERMINATED"
    FAILED = "FAILED"


# OCI lifecycle_state -> LifecycleState
_OCI_STATES = {
    "PROVISIONING": LifecycleState.PROVISIONING,
    "STARTING": LifecycleState.PROVISIONING,
    "MOVING": LifecycleState.PROVISIONING,
    "CREATING_IMAGE": LifecycleState.PROVISIONING,
    "RUNNING": LifecycleState.RUNNING,
    "STOPPING": LifecycleState.TERMINATING,
    "STOPPED": LifecycleState.TERMINATING,
    "TERMINATING": LifecycleState.TERMINATING,
    "TERMINATED": LifecycleState.TERMINATED,
}


def collapse_state(provider_state) -> LifecycleState:
    """Map a provider lifecycle string onto LifecycleState (unknown -> FAILED)."""
    return _OCI_STATES.get(str(provider_state or "").upper(), LifecycleState.FAILED)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded polling: at most ``attempts`` tries, ``delay`` seconds apart."""

    attempts: int
    delay: float

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"RetryPolicy.attempts must be >= 1 (got {self.attempts})")
        if self.delay < 0:
            raise ValueError(f"RetryPolicy.delay must be >= 0 (got {self.delay})")

    @property
    def max_wait(self) -> float:
        """Total sleep before the loop gives up."""
        return (self.attempts - 1) * self.delay


@dataclass(frozen=True)
class InstanceSpec:
    """Launch request for a single compute instance."""

    image_id: str
    shape: str
    availability_domain: str
    ssh_public_key: str
    subnet_id: str
    display_name: str
    ocpus: float = 1
    memory_in_gbs: float = 8


@dataclass(frozen=True)
class InstanceRecord:
    """Read-only snapshot of a provider instance."""

    id: str
    state: LifecycleState
    provider_state: str = ""
    public_ip: str | None = None


@dataclass(frozen=True)
class RemoteSessionConfig:
    """Connection details for ssh/scp. Every command opens a fresh connection."""

    host: str
    username: str
    ssh_key: str | None = None
    port: int = 22
    connect_timeout: int = 10
    keepalive_interval: int = 60
    keepalive_count: int = 5
    strict_host_key_checking: bool = False
    command_timeout: int = 3600

    @property
    def address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.username}@{self.host}" if self.username else self.host


@dataclass
class StageResult:
    name: str
    status: str
    elapsed: float
    detail: str = ""


@dataclass
class BootstrapOutcome:
    """Ordered per-stage record of a bootstrap run. Reporting only."""

    stages: list[StageResult] = field(default_factory=list)

    def record(self, name, status, elapsed, detail=""):
        self.stages.append(StageResult(name=name, status=status, elapsed=max(0.0, elapsed), detail=detail))

    @property
    def ok(self) -> bool:
        return bool(self.stages) and all(s.status != STAGE_FAILED for s in self.stages)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "stages": [
                {"name": s.name, "status": s.status, "elapsed": round(s.elapsed, 3), "detail": s.detail}
                for s in self.stages
            ],
        }

    def format_table(self) -> str:
        lines = [f"{'Stage':<20} {'Status':<8} {'Elapsed':>9}"]
        for s in self.stages:
            lines.append(f"{s.name:<20} {s.status:<8} {s.elapsed:>8.1f}s")
        return "\n".join(lines)


@dataclass(frozen=True)
class PublishedName:
    """DNS record written once per run. Never reconciled or deleted."""

    name: str
    address: str
    ttl: int = 1
    proxied: bool = True
    record_id: str | None = None


@dataclass
class ProvisionResult:
    """Everything a successful run produced, for the JSON report."""

    instance: InstanceRecord
    public_ip: str
    published_name: PublishedName | None
    outcome: BootstrapOutcome

    def to_dict(self) -> dict:
        published = None
        if self.published_name is not None:
            published = {
                "name": self.published_name.name,
                "address": self.published_name.address,
                "ttl": self.published_name.ttl,
                "proxied": self.published_name.proxied,
                "record_id": self.published_name.record_id,
            }
        return {
            "instance_id": self.instance.id,
            "state": self.instance.state.value,
            "public_ip": self.public_ip,
            "dns": published,
            "bootstrap": self.outcome.to_dict(),
        }
