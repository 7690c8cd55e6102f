"""Value types shared by the deployers and the backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from src.modules.deploy.errors import ConfigurationError

VALID_CAPABILITIES = frozenset(
    {"CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"}
)

STACK_SUCCESS_STATUSES = frozenset({"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"})

REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"

# Terminal operation states for StackSet operations
OPERATION_TERMINAL_STATUSES = frozenset({"SUCCEEDED", "FAILED", "STOPPED"})


@dataclass(frozen=True)
class StackHandle:
    """Identifies a deployed stack by name, region and account."""

    name: str
    region: str
    account: str = ""


@dataclass(frozen=True)
class StackDescription:
    """Snapshot of a stack as reported by CloudFormation."""

    name: str
    status: str
    status_reason: str = ""
    outputs: dict[str, str] = field(default_factory=dict)

    @property
    def in_progress(self) -> bool:
        """Whether the stack is still converging.

        REVIEW_IN_PROGRESS waits for a change set to be executed and never
        settles by itself.
        """
        return self.status.endswith("_IN_PROGRESS") and self.status != REVIEW_IN_PROGRESS

    @property
    def succeeded(self) -> bool:
        """Whether the stack settled in a healthy state."""
        return self.status in STACK_SUCCESS_STATUSES

    @property
    def failure_reason(self) -> str:
        """Reason to report when the stack settled in a failed state."""
        return self.status_reason or self.status


@dataclass(frozen=True)
class OperationPreferences:
    """StackSet operation preferences, passed through to CloudFormation.

    Attributes:
        failure_tolerance_count: Per-target failures tolerated before the
            whole operation is marked failed (0 aborts on the first failure).
        max_concurrent_count: Maximum targets deployed simultaneously.
    """

    failure_tolerance_count: int = 0
    max_concurrent_count: int = 1

    def __post_init__(self) -> None:
        if self.failure_tolerance_count < 0:
            raise ConfigurationError("failure_tolerance_count must be >= 0")
        if self.max_concurrent_count < 1:
            raise ConfigurationError("max_concurrent_count must be >= 1")

    def to_api(self) -> dict[str, int]:
        """Render the preferences in CloudFormation API shape."""
        return {
            "FailureToleranceCount": self.failure_tolerance_count,
            "MaxConcurrentCount": self.max_concurrent_count,
        }


@dataclass(frozen=True)
class Target:
    """One (account, region) pair a StackSet instantiates into."""

    account: str
    region: str


@dataclass(frozen=True)
class StackInstance:
    """An existing StackSet instance."""

    account: str
    region: str
    status: str = "CURRENT"
    status_reason: str = ""

    @property
    def target(self) -> Target:
        return Target(self.account, self.region)


@dataclass(frozen=True)
class OperationResult:
    """Per-target outcome of a StackSet operation."""

    account: str
    region: str
    status: str
    status_reason: str = ""

    @property
    def failed(self) -> bool:
        return self.status in {"FAILED", "CANCELLED"}


@dataclass(frozen=True)
class OperationStatus:
    """Status of a StackSet operation."""

    operation_id: str
    status: str
    status_reason: str = ""

    @property
    def terminal(self) -> bool:
        return self.status in OPERATION_TERMINAL_STATUSES


class StackSetPresence(Enum):
    """Outcome of the StackSet existence probe."""

    ABSENT = "absent"
    PRESENT = "present"


@dataclass(frozen=True)
class StackSpec:
    """Everything needed to upsert a single stack."""

    name: str
    template: str
    region: str
    parameters: dict[str, str] = field(default_factory=dict)
    capabilities: tuple[str, ...] = ()
    account: str = ""

    @property
    def handle(self) -> StackHandle:
        return StackHandle(self.name, self.region, self.account)


@dataclass(frozen=True)
class StackSetSpec:
    """Everything needed to upsert a StackSet and its instances."""

    name: str
    template: str
    region: str
    targets: tuple[Target, ...]
    administration_role_arn: str
    execution_role_name: str
    parameters: dict[str, str] = field(default_factory=dict)
    capabilities: tuple[str, ...] = ()
    preferences: OperationPreferences = field(default_factory=OperationPreferences)


@dataclass
class StackResult:
    """Outcome of a stack deployment."""

    handle: StackHandle
    outputs: dict[str, str] = field(default_factory=dict)
    changed: bool = True


@dataclass
class StackSetResult:
    """Outcome of a StackSet deployment."""

    name: str
    presence: StackSetPresence
    operation_ids: list[str] = field(default_factory=list)
    created_targets: list[Target] = field(default_factory=list)
    updated_targets: list[Target] = field(default_factory=list)
    orphaned_targets: list[Target] = field(default_factory=list)


def validate_capabilities(capabilities: tuple[str, ...] | list[str]) -> None:
    """Reject capability names CloudFormation would not recognise.

    Raises:
        ConfigurationError: If any capability is unknown.
    """
    unknown = sorted(set(capabilities) - VALID_CAPABILITIES)
    if unknown:
        raise ConfigurationError(f"Unknown capabilities: {', '.join(unknown)}")
