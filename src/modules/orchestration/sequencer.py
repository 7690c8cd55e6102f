"""Orchestration Sequencer - runs deployment stages in dependency order.

Threads outputs of earlier stages into later stages' parameters and halts
on the first failure. Applied stages are never rolled back automatically;
teardown is a separate, explicit pipeline.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from src.modules.deploy.errors import (
    ConfigurationError,
    DeploymentError,
    DeploymentFailure,
    OutputNotFound,
)
from src.modules.deploy.outputs import OutputResolver
from src.modules.deploy.stack import StackDeployer
from src.modules.deploy.stackset import StackSetDeployer
from src.modules.deploy.types import StackHandle, StackSetSpec, StackSpec, validate_capabilities
from src.modules.orchestration.stages import OutputRef, Stage, StageAction
from src.shared.logger import get_logger

logger = get_logger(__name__)

# Actions whose stage owns a stack that later stages can read outputs from
_OUTPUT_PRODUCERS = frozenset({StageAction.DEPLOY_STACK, StageAction.RESOLVE_OUTPUTS})
_DEPLOY_ACTIONS = frozenset({StageAction.DEPLOY_STACK, StageAction.DEPLOY_STACK_SET})


class RunStatus(Enum):
    """Sequencer lifecycle."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RunState:
    """Current sequencer state.

    ``stage_index`` is set while RUNNING and on FAILED; ``cause`` only on FAILED.
    """

    status: RunStatus
    stage_index: int | None = None
    stage_name: str | None = None
    cause: str | None = None


@dataclass
class PipelineResult:
    """Outcome of a pipeline run."""

    state: RunState
    outputs: dict[str, dict[str, str]] = field(default_factory=dict)
    completed: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state.status is RunStatus.SUCCEEDED


@dataclass
class _StageOutcome:
    handle: StackHandle | None
    outputs: dict[str, str]


class Sequencer:
    """Drives a list of stages through the deployers.

    Stages run one at a time in list order. With ``parallel=True``,
    consecutive stages whose dependencies are already satisfied run
    together; no new stage starts once one has failed.
    """

    def __init__(
        self,
        stack_deployer: StackDeployer,
        stack_set_deployer: StackSetDeployer,
        resolver: OutputResolver,
        parallel: bool = False,
        max_workers: int = 4,
    ) -> None:
        """Initialize Sequencer.

        Args:
            stack_deployer: Deployer for single stacks.
            stack_set_deployer: Deployer for StackSets.
            resolver: Resolver for cross-stage outputs.
            parallel: Run independent consecutive stages concurrently.
            max_workers: Thread pool size when parallel.
        """
        self._stacks = stack_deployer
        self._stack_sets = stack_set_deployer
        self._resolver = resolver
        self._parallel = parallel
        self._max_workers = max_workers
        self._handles: dict[str, StackHandle] = {}
        self._actions: dict[StageAction, Callable[[Stage], _StageOutcome]] = {
            StageAction.DEPLOY_STACK: self._deploy_stack,
            StageAction.DEPLOY_STACK_SET: self._deploy_stack_set,
            StageAction.RESOLVE_OUTPUTS: self._resolve_outputs,
            StageAction.DELETE_STACK: self._delete_stack,
            StageAction.DELETE_STACK_SET: self._delete_stack_set,
        }
        self.state = RunState(RunStatus.NOT_STARTED)
        self.history: list[RunState] = [self.state]

    def _transition(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)

    @staticmethod
    def validate(stages: list[Stage]) -> None:
        """Check a pipeline before any remote call is made.

        Raises:
            ConfigurationError: On duplicate names, forward or unknown
                references, empty parameters or incomplete stage definitions.
        """
        seen: dict[str, Stage] = {}
        for stage in stages:
            if stage.name in seen:
                raise ConfigurationError(f"Duplicate stage name {stage.name!r}")
            if not stage.target or not stage.region:
                raise ConfigurationError(f"Stage {stage.name!r} needs a target and a region")

            for dependency in stage.dependencies:
                if dependency not in seen:
                    raise ConfigurationError(
                        f"Stage {stage.name!r} depends on {dependency!r}, "
                        "which does not precede it"
                    )

            for key, value in stage.parameters.items():
                if isinstance(value, OutputRef):
                    if seen[value.stage].action not in _OUTPUT_PRODUCERS:
                        raise ConfigurationError(
                            f"Parameter {key} of {stage.name!r} references {value.stage!r}, "
                            "which exposes no stack outputs"
                        )
                elif not isinstance(value, str) or value == "":
                    raise ConfigurationError(
                        f"Parameter {key} of stage {stage.name!r} is missing a value"
                    )

            if stage.action in _DEPLOY_ACTIONS and not stage.template:
                raise ConfigurationError(f"Stage {stage.name!r} has no template")
            if stage.action is StageAction.DEPLOY_STACK_SET:
                if not stage.targets:
                    raise ConfigurationError(f"StackSet stage {stage.name!r} has no targets")
                if not stage.administration_role_arn or not stage.execution_role_name:
                    raise ConfigurationError(
                        f"StackSet stage {stage.name!r} needs administration and execution roles"
                    )
            validate_capabilities(stage.capabilities)

            seen[stage.name] = stage

    def run(self, stages: list[Stage]) -> PipelineResult:
        """Run every stage, halting on the first failure.

        Args:
            stages: Stages in dependency order.

        Returns:
            PipelineResult with the final state and per-stage outputs.

        Raises:
            ConfigurationError: If the pipeline fails validation. Nothing
                is deployed in that case.
        """
        self.state = RunState(RunStatus.NOT_STARTED)
        self.history = [self.state]
        self._handles = {}
        self.validate(stages)
        result = PipelineResult(state=self.state)

        index_of = {stage.name: i for i, stage in enumerate(stages)}
        for wave in self._waves(stages):
            first = index_of[wave[0].name]
            self._transition(RunState(RunStatus.RUNNING, first, wave[0].name))

            failure = self._run_wave(wave, index_of, result)
            if failure is not None:
                self._transition(failure)
                result.state = failure
                logger.error(
                    f"Pipeline failed at stage {failure.stage_name}: {failure.cause}",
                    extra={"stage": failure.stage_name, "stage_index": failure.stage_index},
                )
                return result

        self._transition(RunState(RunStatus.SUCCEEDED))
        result.state = self.state
        logger.info("Pipeline succeeded", extra={"stages": result.completed})
        return result

    def _waves(self, stages: list[Stage]) -> list[list[Stage]]:
        """Group stages into batches that may run together."""
        if not self._parallel:
            return [[stage] for stage in stages]

        waves: list[list[Stage]] = []
        done: set[str] = set()
        current: list[Stage] = []
        for stage in stages:
            if current and not set(stage.dependencies) <= done:
                waves.append(current)
                done.update(s.name for s in current)
                current = []
            current.append(stage)
        if current:
            waves.append(current)
        return waves

    def _run_wave(
        self,
        wave: list[Stage],
        index_of: dict[str, int],
        result: PipelineResult,
    ) -> RunState | None:
        """Run a batch of stages; return a FAILED state if any failed."""
        if len(wave) == 1:
            outcomes = {wave[0].name: self._attempt(wave[0])}
        else:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(wave))) as pool:
                futures = {stage.name: pool.submit(self._attempt, stage) for stage in wave}
                outcomes = {name: future.result() for name, future in futures.items()}

        failure: RunState | None = None
        for stage in wave:
            outcome = outcomes[stage.name]
            if isinstance(outcome, DeploymentError):
                if failure is None:
                    failure = RunState(
                        RunStatus.FAILED,
                        index_of[stage.name],
                        stage.name,
                        _cause(outcome),
                    )
                continue
            if outcome.handle is not None:
                self._handles[stage.name] = outcome.handle
            result.outputs[stage.name] = outcome.outputs
            result.completed.append(stage.name)
        return failure

    def _attempt(self, stage: Stage) -> _StageOutcome | DeploymentError:
        logger.info(
            f"Running stage {stage.name}",
            extra={"stage": stage.name, "action": stage.action.value, "target": stage.target},
        )
        try:
            outcome = self._actions[stage.action](stage)
        except DeploymentError as e:
            logger.error(
                f"Stage {stage.name} failed: {e}",
                extra={"stage": stage.name, "error": type(e).__name__},
            )
            return e

        for key in stage.required_outputs:
            if key not in outcome.outputs:
                return OutputNotFound(stage.target, key)

        logger.info(f"Stage {stage.name} complete", extra={"stage": stage.name})
        return outcome

    def _bind(self, stage: Stage) -> dict[str, str]:
        """Resolve every parameter binding of a stage to a string."""
        bound: dict[str, str] = {}
        for key, value in stage.parameters.items():
            if isinstance(value, OutputRef):
                handle = self._handles.get(value.stage)
                if handle is None:
                    raise ConfigurationError(
                        f"Parameter {key} of {stage.name!r} is unresolved: "
                        f"stage {value.stage!r} has not run"
                    )
                bound[key] = self._resolver.resolve(handle, value.output_key)
            else:
                bound[key] = value
        return bound

    def _deploy_stack(self, stage: Stage) -> _StageOutcome:
        spec = StackSpec(
            name=stage.target,
            template=stage.template,
            region=stage.region,
            parameters=self._bind(stage),
            capabilities=stage.capabilities,
            account=stage.account,
        )
        deployed = self._stacks.deploy(spec)
        return _StageOutcome(deployed.handle, deployed.outputs)

    def _deploy_stack_set(self, stage: Stage) -> _StageOutcome:
        spec = StackSetSpec(
            name=stage.target,
            template=stage.template,
            region=stage.region,
            targets=stage.targets,
            administration_role_arn=stage.administration_role_arn,
            execution_role_name=stage.execution_role_name,
            parameters=self._bind(stage),
            capabilities=stage.capabilities,
            preferences=stage.preferences,
        )
        self._stack_sets.deploy(spec)
        return _StageOutcome(None, {})

    def _resolve_outputs(self, stage: Stage) -> _StageOutcome:
        handle = StackHandle(stage.target, stage.region, stage.account)
        outputs = self._resolver.resolve_all(handle, required=stage.required_outputs)
        return _StageOutcome(handle, outputs)

    def _delete_stack(self, stage: Stage) -> _StageOutcome:
        self._stacks.delete(StackHandle(stage.target, stage.region, stage.account))
        return _StageOutcome(None, {})

    def _delete_stack_set(self, stage: Stage) -> _StageOutcome:
        self._stack_sets.delete(stage.target, stage.region, stage.preferences)
        return _StageOutcome(None, {})


def _cause(error: DeploymentError) -> str:
    """Verbatim failure reason for the run state."""
    if isinstance(error, DeploymentFailure):
        return error.reason
    return str(error)
