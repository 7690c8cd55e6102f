"""Deployment error taxonomy.

Only ThrottlingError is eligible for automatic retry. Everything else
propagates to the sequencer and halts the pipeline.
"""


class DeploymentError(Exception):
    """Base class for every error raised while deploying."""


class ConfigurationError(DeploymentError, ValueError):
    """Malformed or missing parameter detected before any remote call."""


class DeploymentFailure(DeploymentError):
    """A stack operation reached a terminal failure state."""

    def __init__(self, stack_name: str, reason: str) -> None:
        """Initialize DeploymentFailure.

        Args:
            stack_name: Stack or StackSet that failed.
            reason: Failure reason reported by CloudFormation, verbatim.
        """
        self.stack_name = stack_name
        self.reason = reason
        super().__init__(f"[{stack_name}] Deployment failed: {reason}")


class OutputNotFound(DeploymentError):
    """A required cross-stage output is missing from a converged stack."""

    def __init__(self, stack_name: str, output_key: str) -> None:
        """Initialize OutputNotFound.

        Args:
            stack_name: Stack that was expected to expose the output.
            output_key: Output key that could not be found.
        """
        self.stack_name = stack_name
        self.output_key = output_key
        super().__init__(f"[{stack_name}] Output {output_key!r} not found")


class TargetDeploymentFailure(DeploymentError):
    """A single StackSet target (account, region) failed to deploy."""

    def __init__(self, account: str, region: str, reason: str) -> None:
        """Initialize TargetDeploymentFailure.

        Args:
            account: Target account id.
            region: Target region.
            reason: Per-target status reason, verbatim.
        """
        self.account = account
        self.region = region
        self.reason = reason
        super().__init__(f"[{account}/{region}] {reason}")


class StackSetOperationFailure(DeploymentFailure):
    """A StackSet operation failed; aggregates the per-target failures."""

    def __init__(
        self,
        stack_set_name: str,
        operation_id: str,
        reason: str,
        targets: list[TargetDeploymentFailure] | None = None,
    ) -> None:
        """Initialize StackSetOperationFailure.

        Args:
            stack_set_name: StackSet whose operation failed.
            operation_id: CloudFormation operation id.
            reason: Overall failure reason.
            targets: Failures for individual targets.
        """
        self.operation_id = operation_id
        self.targets = list(targets or [])
        detail = reason
        if self.targets:
            detail = f"{reason}; " + "; ".join(str(t) for t in self.targets)
        super().__init__(stack_set_name, detail)


class ThrottlingError(DeploymentError):
    """Transient rate-limit response from the CloudFormation API."""

    def __init__(self, operation: str, message: str) -> None:
        """Initialize ThrottlingError.

        Args:
            operation: API operation that was throttled.
            message: Error message from the service.
        """
        self.operation = operation
        super().__init__(f"{operation} throttled: {message}")
