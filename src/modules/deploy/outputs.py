"""Output Resolver - reads outputs of previously deployed stacks."""

import time
from typing import Callable

from src.modules.deploy.errors import OutputNotFound
from src.modules.deploy.protocols import DeploymentBackend
from src.modules.deploy.retry import ExponentialBackoff, call_with_backoff
from src.modules.deploy.types import StackHandle
from src.shared.logger import get_logger

logger = get_logger(__name__)


class OutputResolver:
    """Resolves named outputs of deployed stacks.

    A missing stack or key raises OutputNotFound, which is fatal. Throttling
    is retried here and surfaces as ThrottlingError only once exhausted, so
    callers can tell a transient lookup failure from a missing output.
    """

    def __init__(
        self,
        backend: DeploymentBackend,
        backoff: ExponentialBackoff | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backend = backend
        self._backoff = backoff or ExponentialBackoff()
        self._sleep = sleep

    def resolve_all(self, handle: StackHandle, required: tuple[str, ...] = ()) -> dict[str, str]:
        """Return every output of a stack.

        Args:
            handle: Stack that owns the outputs.
            required: Output keys that must be present.

        Raises:
            OutputNotFound: If the stack does not exist or lacks a required key.
        """
        description = call_with_backoff(
            lambda: self._backend.describe_stack(handle.name, handle.region),
            self._backoff,
            sleep=self._sleep,
        )
        outputs = dict(description.outputs) if description is not None else {}
        for key in required:
            if key not in outputs:
                raise OutputNotFound(handle.name, key)
        if description is None:
            raise OutputNotFound(handle.name, ", ".join(required) or "<any>")
        return outputs

    def resolve(self, handle: StackHandle, output_key: str) -> str:
        """Return a single output value.

        Args:
            handle: Stack that owns the output.
            output_key: Output key (e.g., 'TransitGatewayId').

        Returns:
            The output value.

        Raises:
            OutputNotFound: If the stack or key does not exist.
        """
        value = self.resolve_all(handle, required=(output_key,))[output_key]
        logger.info(
            f"Resolved {handle.name}.{output_key}",
            extra={"stack": handle.name, "output": output_key, "value": value},
        )
        return value
