"""StackSet Deployer - create-or-update of a multi-account StackSet.

Probes for the StackSet, dispatches to the create or update path, then
waits for every resulting operation. Per-target failures are collected
into a single StackSetOperationFailure and never retried: a target that
failed for lack of an execution role fails again until the role exists.
"""

import time
from functools import partial
from typing import Callable, TypeVar

from src.modules.deploy.errors import StackSetOperationFailure, TargetDeploymentFailure
from src.modules.deploy.protocols import DeploymentBackend
from src.modules.deploy.retry import ExponentialBackoff, call_with_backoff
from src.modules.deploy.types import (
    OperationPreferences,
    OperationStatus,
    StackSetPresence,
    StackSetResult,
    StackSetSpec,
    Target,
    validate_capabilities,
)
from src.shared.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ADMINISTRATION_ROLE_NAME = "AWSCloudFormationStackSetAdministrationRole"
EXECUTION_ROLE_NAME = "AWSCloudFormationStackSetExecutionRole"


def administration_role_arn(hub_account_id: str) -> str:
    """Return the ARN of the StackSet administration role in the hub account."""
    return f"arn:aws:iam::{hub_account_id}:role/{ADMINISTRATION_ROLE_NAME}"


def _by_region(targets: list[Target]) -> list[list[Target]]:
    """Group targets by region, keeping first-seen order."""
    groups: dict[str, list[Target]] = {}
    for target in targets:
        groups.setdefault(target.region, []).append(target)
    return list(groups.values())


class StackSetDeployer:
    """Deploys a StackSet and its instances across target accounts.

    ABSENT path:  create StackSet -> create instances on every target.
    PRESENT path: create instances on newly added targets -> update the
    StackSet on every desired target. Existing instances outside the target
    set are reported as orphans and only deleted when pruning is on.

    CloudFormation deploys the cross product of the Accounts and Regions it
    is given, so each operation covers the targets of a single region.
    """

    def __init__(
        self,
        backend: DeploymentBackend,
        backoff: ExponentialBackoff | None = None,
        poll_interval: float = 15.0,
        prune_orphans: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize StackSetDeployer.

        Args:
            backend: Deployment backend.
            backoff: Retry policy for throttled calls.
            poll_interval: Seconds between operation status polls.
            prune_orphans: Delete instances no longer in the target set.
            sleep: Sleep function (injectable for tests).
        """
        self._backend = backend
        self._backoff = backoff or ExponentialBackoff()
        self._poll_interval = poll_interval
        self._prune_orphans = prune_orphans
        self._sleep = sleep
        self._paths: dict[StackSetPresence, Callable[[StackSetSpec, StackSetResult], None]] = {
            StackSetPresence.ABSENT: self._create,
            StackSetPresence.PRESENT: self._update,
        }

    def _retry(self, func: Callable[[], T]) -> T:
        return call_with_backoff(func, self._backoff, sleep=self._sleep)

    def probe(self, name: str, region: str) -> StackSetPresence:
        """Check whether a StackSet exists in the administering region."""
        exists = self._retry(lambda: self._backend.describe_stack_set(name, region))
        return StackSetPresence.PRESENT if exists else StackSetPresence.ABSENT

    def deploy(self, spec: StackSetSpec) -> StackSetResult:
        """Create or update a StackSet and instantiate it in every target.

        Args:
            spec: StackSet definition, target set and operation preferences.

        Returns:
            StackSetResult describing which path ran and which targets changed.

        Raises:
            ConfigurationError: If the definition is invalid.
            StackSetOperationFailure: If any operation fails beyond tolerance.
            ThrottlingError: If throttling outlasts the retry policy.
        """
        validate_capabilities(spec.capabilities)

        presence = self.probe(spec.name, spec.region)
        logger.info(
            f"StackSet {spec.name} is {presence.value}",
            extra={"stack_set": spec.name, "targets": len(spec.targets)},
        )

        result = StackSetResult(name=spec.name, presence=presence)
        self._paths[presence](spec, result)
        return result

    def delete(self, name: str, region: str, preferences: OperationPreferences) -> bool:
        """Delete every instance of a StackSet, then the StackSet itself.

        Returns:
            True if a StackSet was deleted, False if it did not exist.
        """
        if self.probe(name, region) is StackSetPresence.ABSENT:
            logger.info(f"StackSet {name} does not exist, skipping delete")
            return False

        instances = self._retry(lambda: self._backend.list_stack_instances(name, region))
        if instances:
            targets = [instance.target for instance in instances]
            logger.info(
                f"Deleting {len(targets)} instances of {name}",
                extra={"stack_set": name},
            )
            for group in _by_region(targets):
                operation_id = self._retry(
                    partial(
                        self._backend.delete_stack_instances,
                        name,
                        region,
                        group,
                        preferences.to_api(),
                    )
                )
                self._await_operation(name, region, operation_id, preferences)

        self._retry(lambda: self._backend.delete_stack_set(name, region))
        logger.info(f"StackSet {name} deleted", extra={"stack_set": name})
        return True

    def _create(self, spec: StackSetSpec, result: StackSetResult) -> None:
        logger.info(f"Creating StackSet {spec.name}", extra={"stack_set": spec.name})
        self._retry(
            lambda: self._backend.create_stack_set(
                spec.name,
                spec.region,
                spec.template,
                spec.parameters,
                spec.capabilities,
                spec.administration_role_arn,
                spec.execution_role_name,
            )
        )
        self._create_instances(spec, list(spec.targets), result)

    def _update(self, spec: StackSetSpec, result: StackSetResult) -> None:
        existing = [
            instance.target
            for instance in self._retry(
                lambda: self._backend.list_stack_instances(spec.name, spec.region)
            )
        ]
        desired = list(spec.targets)
        kept = [t for t in existing if t in desired]
        added = [t for t in desired if t not in existing]
        orphaned = [t for t in existing if t not in desired]

        logger.info(
            f"Updating StackSet {spec.name}",
            extra={
                "stack_set": spec.name,
                "kept": len(kept),
                "added": len(added),
                "orphaned": len(orphaned),
            },
        )

        # Added instances start on the previous template and are updated with
        # the kept ones. Explicit targets keep orphans out of the update.
        self._create_instances(spec, added, result)

        for group in _by_region(kept + added):
            operation_id = self._retry(
                partial(
                    self._backend.update_stack_set,
                    spec.name,
                    spec.region,
                    spec.template,
                    spec.parameters,
                    spec.capabilities,
                    group,
                    spec.preferences.to_api(),
                )
            )
            result.operation_ids.append(operation_id)
            self._await_operation(spec.name, spec.region, operation_id, spec.preferences)
        result.updated_targets.extend(kept)

        if orphaned:
            result.orphaned_targets.extend(orphaned)
            self._handle_orphans(spec, orphaned, result)

    def _create_instances(
        self, spec: StackSetSpec, targets: list[Target], result: StackSetResult
    ) -> None:
        for group in _by_region(targets):
            logger.info(
                f"Creating stack instances for {spec.name}",
                extra={
                    "stack_set": spec.name,
                    "accounts": [t.account for t in group],
                    "region": group[0].region,
                },
            )
            operation_id = self._retry(
                partial(
                    self._backend.create_stack_instances,
                    spec.name,
                    spec.region,
                    group,
                    spec.preferences.to_api(),
                )
            )
            result.operation_ids.append(operation_id)
            self._await_operation(spec.name, spec.region, operation_id, spec.preferences)
            result.created_targets.extend(group)

    def _handle_orphans(
        self, spec: StackSetSpec, orphaned: list[Target], result: StackSetResult
    ) -> None:
        accounts = [f"{t.account}/{t.region}" for t in orphaned]
        if not self._prune_orphans:
            logger.warning(
                f"StackSet {spec.name} has instances outside the target set",
                extra={"stack_set": spec.name, "orphaned": accounts},
            )
            return

        logger.info(
            f"Pruning orphaned instances of {spec.name}",
            extra={"stack_set": spec.name, "orphaned": accounts},
        )
        for group in _by_region(orphaned):
            operation_id = self._retry(
                partial(
                    self._backend.delete_stack_instances,
                    spec.name,
                    spec.region,
                    group,
                    spec.preferences.to_api(),
                )
            )
            result.operation_ids.append(operation_id)
            self._await_operation(spec.name, spec.region, operation_id, spec.preferences)

    def _await_operation(
        self,
        name: str,
        region: str,
        operation_id: str,
        preferences: OperationPreferences,
    ) -> OperationStatus:
        """Poll an operation to completion and check per-target results.

        Raises:
            StackSetOperationFailure: If the operation did not succeed or more
                targets failed than the tolerance allows.
        """
        while True:
            status = self._retry(
                lambda: self._backend.describe_stack_set_operation(name, region, operation_id)
            )
            if status.terminal:
                break
            logger.debug(
                f"Waiting for StackSet operation {operation_id}",
                extra={"stack_set": name, "status": status.status},
            )
            self._sleep(self._poll_interval)

        results = self._retry(
            lambda: self._backend.list_stack_set_operation_results(name, region, operation_id)
        )
        failures = [
            TargetDeploymentFailure(r.account, r.region, r.status_reason or r.status)
            for r in results
            if r.failed
        ]
        for failure in failures:
            logger.error(
                f"StackSet target failed: {failure.reason}",
                extra={
                    "stack_set": name,
                    "account": failure.account,
                    "region": failure.region,
                },
            )

        if status.status != "SUCCEEDED":
            reason = status.status_reason or f"operation {status.status.lower()}"
            raise StackSetOperationFailure(name, operation_id, reason, failures)
        if len(failures) > preferences.failure_tolerance_count:
            reason = (
                f"failure tolerance exceeded: {len(failures)} failed targets, "
                f"{preferences.failure_tolerance_count} tolerated"
            )
            raise StackSetOperationFailure(name, operation_id, reason, failures)

        logger.info(
            f"StackSet operation {operation_id} succeeded",
            extra={"stack_set": name, "tolerated_failures": len(failures)},
        )
        return status
