"""Deployment Backend Protocol.

Defines the interface the deployers use to talk to CloudFormation.
The production implementation is CloudFormationBackend; tests use an
in-memory fake that records call order and status transitions.
"""

from typing import Protocol

from src.modules.deploy.types import (
    OperationResult,
    OperationStatus,
    StackDescription,
    StackInstance,
    Target,
)


class DeploymentBackend(Protocol):
    """Protocol for the remote infrastructure control plane.

    Every method may raise ThrottlingError on rate limiting. Missing
    resources are reported as None (describe calls) rather than errors.
    """

    def describe_stack(self, name: str, region: str) -> StackDescription | None:
        """Describe a stack.

        Args:
            name: Stack name.
            region: Region the stack lives in.

        Returns:
            Current description, or None if the stack does not exist.
        """
        ...

    def create_stack(
        self,
        name: str,
        region: str,
        template: str,
        parameters: dict[str, str],
        capabilities: tuple[str, ...],
    ) -> None:
        """Start creating a stack. Returns once the request is accepted.

        Raises:
            ConfigurationError: If CloudFormation rejects the request
                (e.g., missing IAM capability acknowledgment).
        """
        ...

    def update_stack(
        self,
        name: str,
        region: str,
        template: str,
        parameters: dict[str, str],
        capabilities: tuple[str, ...],
    ) -> bool:
        """Start updating a stack.

        Returns:
            False when there is nothing to change (empty changeset),
            True when an update was started.
        """
        ...

    def delete_stack(self, name: str, region: str) -> None:
        """Start deleting a stack."""
        ...

    def describe_stack_set(self, name: str, region: str) -> bool:
        """Return whether a StackSet with this name exists."""
        ...

    def create_stack_set(
        self,
        name: str,
        region: str,
        template: str,
        parameters: dict[str, str],
        capabilities: tuple[str, ...],
        administration_role_arn: str,
        execution_role_name: str,
    ) -> None:
        """Create an empty StackSet (no instances)."""
        ...

    def update_stack_set(
        self,
        name: str,
        region: str,
        template: str,
        parameters: dict[str, str],
        capabilities: tuple[str, ...],
        targets: list[Target],
        preferences: dict[str, int],
    ) -> str:
        """Update a StackSet and the instances in ``targets``.

        Returns:
            Operation id.
        """
        ...

    def delete_stack_set(self, name: str, region: str) -> None:
        """Delete an empty StackSet."""
        ...

    def list_stack_instances(self, name: str, region: str) -> list[StackInstance]:
        """List the instances of a StackSet."""
        ...

    def create_stack_instances(
        self,
        name: str,
        region: str,
        targets: list[Target],
        preferences: dict[str, int],
    ) -> str:
        """Create StackSet instances in ``targets``.

        Returns:
            Operation id.
        """
        ...

    def delete_stack_instances(
        self,
        name: str,
        region: str,
        targets: list[Target],
        preferences: dict[str, int],
    ) -> str:
        """Delete StackSet instances in ``targets``.

        Returns:
            Operation id.
        """
        ...

    def describe_stack_set_operation(
        self, name: str, region: str, operation_id: str
    ) -> OperationStatus:
        """Describe a StackSet operation."""
        ...

    def list_stack_set_operation_results(
        self, name: str, region: str, operation_id: str
    ) -> list[OperationResult]:
        """List the per-target results of a StackSet operation."""
        ...
