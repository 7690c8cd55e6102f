"""Stack Deployer - idempotent create-or-update of a single stack.

Blocks until the stack reaches a terminal state. An empty changeset is
a successful no-op.
"""

import time
from typing import Callable, TypeVar

from src.modules.deploy.errors import DeploymentFailure
from src.modules.deploy.protocols import DeploymentBackend
from src.modules.deploy.retry import ExponentialBackoff, call_with_backoff
from src.modules.deploy.types import (
    REVIEW_IN_PROGRESS,
    StackDescription,
    StackHandle,
    StackResult,
    StackSpec,
    validate_capabilities,
)
from src.shared.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# These stacks cannot be updated, only deleted
UNRECOVERABLE_STATUSES = frozenset(
    {"ROLLBACK_COMPLETE", "ROLLBACK_FAILED", "DELETE_FAILED", REVIEW_IN_PROGRESS}
)


class StackDeployer:
    """Upserts a stack and waits for it to converge.

    Flow:
        1. Validate capabilities locally (fail fast, no remote call)
        2. Describe the stack
        3. Absent -> create; present -> update (empty changeset is a no-op)
        4. Poll until the stack settles, then return its outputs
    """

    def __init__(
        self,
        backend: DeploymentBackend,
        backoff: ExponentialBackoff | None = None,
        poll_interval: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize StackDeployer.

        Args:
            backend: Deployment backend.
            backoff: Retry policy for throttled calls.
            poll_interval: Seconds between status polls.
            sleep: Sleep function (injectable for tests).
        """
        self._backend = backend
        self._backoff = backoff or ExponentialBackoff()
        self._poll_interval = poll_interval
        self._sleep = sleep

    def _retry(self, func: Callable[[], T]) -> T:
        return call_with_backoff(func, self._backoff, sleep=self._sleep)

    def deploy(self, spec: StackSpec) -> StackResult:
        """Create or update a stack and wait for it to converge.

        Args:
            spec: Stack name, template, parameters, capabilities and region.

        Returns:
            StackResult with the stack's current outputs.

        Raises:
            ConfigurationError: If capabilities are invalid or insufficient.
            DeploymentFailure: If the stack settles in a failed state.
            ThrottlingError: If throttling outlasts the retry policy.
        """
        validate_capabilities(spec.capabilities)

        current = self._describe(spec.name, spec.region)
        if current is not None and current.in_progress:
            logger.info(
                f"Stack {spec.name} is busy, waiting for it to settle",
                extra={"stack": spec.name, "status": current.status},
            )
            current = self._wait(spec.name, spec.region)

        if current is None:
            logger.info(f"Creating stack {spec.name}", extra={"stack": spec.name})
            self._retry(
                lambda: self._backend.create_stack(
                    spec.name, spec.region, spec.template, spec.parameters, spec.capabilities
                )
            )
        else:
            if current.status in UNRECOVERABLE_STATUSES:
                raise DeploymentFailure(
                    spec.name,
                    f"stack is in {current.status} state and must be deleted before redeploying",
                )
            logger.info(f"Updating stack {spec.name}", extra={"stack": spec.name})
            changed = self._retry(
                lambda: self._backend.update_stack(
                    spec.name, spec.region, spec.template, spec.parameters, spec.capabilities
                )
            )
            if not changed:
                logger.info(f"No changes to deploy for {spec.name}", extra={"stack": spec.name})
                return StackResult(handle=spec.handle, outputs=dict(current.outputs), changed=False)

        final = self._wait(spec.name, spec.region)
        if final is None:
            raise DeploymentFailure(spec.name, "stack disappeared while deploying")
        if not final.succeeded:
            raise DeploymentFailure(spec.name, final.failure_reason)

        logger.info(
            f"Stack {spec.name} deployed",
            extra={"stack": spec.name, "status": final.status},
        )
        return StackResult(handle=spec.handle, outputs=dict(final.outputs), changed=True)

    def delete(self, handle: StackHandle) -> bool:
        """Delete a stack and wait for the deletion to finish.

        Args:
            handle: Stack to delete.

        Returns:
            True if a stack was deleted, False if it did not exist.

        Raises:
            DeploymentFailure: If the deletion fails.
        """
        current = self._describe(handle.name, handle.region)
        if current is None or current.status == "DELETE_COMPLETE":
            logger.info(f"Stack {handle.name} does not exist, skipping delete")
            return False

        logger.info(f"Deleting stack {handle.name}", extra={"stack": handle.name})
        self._retry(lambda: self._backend.delete_stack(handle.name, handle.region))

        final = self._wait(handle.name, handle.region)
        if final is not None and final.status != "DELETE_COMPLETE":
            raise DeploymentFailure(handle.name, final.failure_reason)
        return True

    def _describe(self, name: str, region: str) -> StackDescription | None:
        return self._retry(lambda: self._backend.describe_stack(name, region))

    def _wait(self, name: str, region: str) -> StackDescription | None:
        """Poll until the stack leaves every *_IN_PROGRESS state.

        Returns:
            Final description, or None if the stack no longer exists.
        """
        while True:
            description = self._describe(name, region)
            if description is None or not description.in_progress:
                return description
            logger.debug(
                f"Waiting for {name}",
                extra={"stack": name, "status": description.status},
            )
            self._sleep(self._poll_interval)
