"""Stage descriptors for the orchestration sequencer.

A pipeline is a list of Stage objects processed in order. Stages are
plain data so the production backend and test doubles share one driver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from src.modules.deploy.types import OperationPreferences, Target


class StageAction(Enum):
    """What a stage does to its target."""

    DEPLOY_STACK = "deploy_stack"
    DEPLOY_STACK_SET = "deploy_stack_set"
    RESOLVE_OUTPUTS = "resolve_outputs"  # Read outputs of an existing stack
    DELETE_STACK = "delete_stack"
    DELETE_STACK_SET = "delete_stack_set"


@dataclass(frozen=True)
class OutputRef:
    """Placeholder for an output of an earlier stage, resolved at run time.

    Attributes:
        stage: Name of the stage that produced the output.
        output_key: Output key on that stage's stack.
    """

    stage: str
    output_key: str

    def __str__(self) -> str:
        return f"${{{self.stage}.{self.output_key}}}"


ParameterValue = Union[str, OutputRef]


@dataclass(frozen=True)
class Stage:
    """One ordered unit of work.

    Attributes:
        name: Unique stage name (e.g., 'hub-vpc').
        action: What the stage does.
        target: Stack or StackSet name.
        region: Region the target is administered from.
        template: Template path (deploy actions only).
        parameters: Parameter bindings, literal or OutputRef.
        capabilities: Capabilities to acknowledge.
        account: Account that owns the stack.
        targets: StackSet target set (StackSet actions only).
        preferences: StackSet operation preferences.
        administration_role_arn: StackSet administration role.
        execution_role_name: StackSet execution role in target accounts.
        required_outputs: Outputs that must exist once the stage succeeds.
        depends_on: Stages that must succeed first, beyond those implied
            by OutputRef bindings.
    """

    name: str
    action: StageAction
    target: str
    region: str
    template: str = ""
    parameters: dict[str, ParameterValue] = field(default_factory=dict)
    capabilities: tuple[str, ...] = ()
    account: str = ""
    targets: tuple[Target, ...] = ()
    preferences: OperationPreferences = field(default_factory=OperationPreferences)
    administration_role_arn: str = ""
    execution_role_name: str = ""
    required_outputs: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()

    @property
    def dependencies(self) -> tuple[str, ...]:
        """Every stage this one depends on, explicit or via bindings."""
        refs = [v.stage for v in self.parameters.values() if isinstance(v, OutputRef)]
        return tuple(dict.fromkeys([*self.depends_on, *refs]))
