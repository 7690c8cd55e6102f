"""CloudFormation Backend - boto3 implementation of DeploymentBackend.

Translates botocore ClientErrors into the deployment error taxonomy at
this boundary so nothing above it has to inspect AWS error codes.
"""

from pathlib import Path
from typing import Any, Callable, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from src.modules.deploy.errors import (
    ConfigurationError,
    DeploymentFailure,
    ThrottlingError,
)
from src.modules.deploy.types import (
    OperationResult,
    OperationStatus,
    StackDescription,
    StackInstance,
    Target,
)
from src.shared.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

THROTTLING_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "TooManyRequestsException",
    }
)

NO_UPDATES_MESSAGE = "No updates are to be performed"
STACK_MISSING_MESSAGE = "does not exist"
STACK_SET_NOT_FOUND = "StackSetNotFoundException"


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _error_message(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Message", str(error)))


def _api_parameters(parameters: dict[str, str]) -> list[dict[str, str]]:
    """Render a parameter mapping in CloudFormation API shape, preserving order."""
    return [{"ParameterKey": key, "ParameterValue": value} for key, value in parameters.items()]


def _split_targets(targets: list[Target]) -> tuple[list[str], list[str]]:
    """Split targets into the Accounts and Regions lists the API expects.

    CloudFormation applies every account to every region, so the targets
    must form exactly that cross product.

    Raises:
        ConfigurationError: If targets are empty or not a full cross product.
    """
    accounts = list(dict.fromkeys(t.account for t in targets))
    regions = list(dict.fromkeys(t.region for t in targets))
    if not targets:
        raise ConfigurationError("StackSet operation needs at least one target")
    if len(accounts) * len(regions) != len(set(targets)):
        pairs = ", ".join(f"{t.account}/{t.region}" for t in targets)
        raise ConfigurationError(
            f"Targets {pairs} are not every account in every region; "
            "issue one operation per region"
        )
    return accounts, regions


class CloudFormationBackend:
    """DeploymentBackend backed by the CloudFormation API.

    One boto3 client is created lazily per region.
    """

    def __init__(
        self,
        cloudformation_client: Any | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        """Initialize CloudFormationBackend.

        Args:
            cloudformation_client: Optional boto3 client (for testing). Used
                for every region when provided.
            endpoint_url: Optional endpoint URL (e.g., LocalStack).
        """
        self._shared_client = cloudformation_client
        self._endpoint_url = endpoint_url
        self._clients: dict[str, Any] = {}

    def _client(self, region: str) -> Any:
        if self._shared_client is not None:
            return self._shared_client
        if region not in self._clients:
            kwargs: dict[str, Any] = {"region_name": region}
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            self._clients[region] = boto3.client("cloudformation", **kwargs)
        return self._clients[region]

    def _call(
        self,
        operation: str,
        resource: str,
        func: Callable[[], T],
        expected: str | None = None,
    ) -> T:
        """Invoke an API call, translating ClientErrors.

        Args:
            operation: API operation name, for errors and logs.
            resource: Stack or StackSet name.
            func: Zero-argument callable issuing the request.
            expected: Error code or message fragment of a benign error. Such errors are
                re-raised untranslated for the caller to interpret.
        """
        try:
            return func()
        except ClientError as e:
            code = _error_code(e)
            message = _error_message(e)
            if expected and (expected == code or expected in message):
                raise
            if code in THROTTLING_CODES:
                raise ThrottlingError(operation, message) from e
            if code == "InsufficientCapabilitiesException" or "Requires capabilities" in message:
                raise ConfigurationError(f"[{resource}] {message}") from e
            logger.error(
                f"{operation} failed: {message}",
                extra={"resource": resource, "code": code},
            )
            raise DeploymentFailure(resource, message) from e
        except BotoCoreError as e:
            # Credentials, endpoint and transport problems
            logger.error(f"{operation} failed: {e}", extra={"resource": resource})
            raise DeploymentFailure(resource, str(e)) from e

    @staticmethod
    def _read_template(template: str) -> str:
        path = Path(template)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read template {template}: {e}") from e

    # --- Stacks ---

    def describe_stack(self, name: str, region: str) -> StackDescription | None:
        """Describe a stack, or return None if it does not exist."""
        client = self._client(region)
        try:
            response = self._call(
                "DescribeStacks",
                name,
                lambda: client.describe_stacks(StackName=name),
                expected=STACK_MISSING_MESSAGE,
            )
        except ClientError:
            return None

        stacks = response.get("Stacks", [])
        if not stacks:
            return None

        stack = stacks[0]
        outputs = {
            output["OutputKey"]: output.get("OutputValue", "")
            for output in stack.get("Outputs", [])
        }
        return StackDescription(
            name=stack.get("StackName", name),
            status=stack["StackStatus"],
            status_reason=stack.get("StackStatusReason", ""),
            outputs=outputs,
        )

    def create_stack(
        self,
        name: str,
        region: str,
        template: str,
        parameters: dict[str, str],
        capabilities: tuple[str, ...],
    ) -> None:
        """Start creating a stack."""
        body = self._read_template(template)
        client = self._client(region)
        self._call(
            "CreateStack",
            name,
            lambda: client.create_stack(
                StackName=name,
                TemplateBody=body,
                Parameters=_api_parameters(parameters),
                Capabilities=list(capabilities),
            ),
        )

    def update_stack(
        self,
        name: str,
        region: str,
        template: str,
        parameters: dict[str, str],
        capabilities: tuple[str, ...],
    ) -> bool:
        """Start updating a stack; False means the changeset is empty."""
        body = self._read_template(template)
        client = self._client(region)
        try:
            self._call(
                "UpdateStack",
                name,
                lambda: client.update_stack(
                    StackName=name,
                    TemplateBody=body,
                    Parameters=_api_parameters(parameters),
                    Capabilities=list(capabilities),
                ),
                expected=NO_UPDATES_MESSAGE,
            )
        except ClientError:
            return False
        return True

    def delete_stack(self, name: str, region: str) -> None:
        """Start deleting a stack."""
        client = self._client(region)
        self._call("DeleteStack", name, lambda: client.delete_stack(StackName=name))

    # --- StackSets ---

    def describe_stack_set(self, name: str, region: str) -> bool:
        """Return whether the StackSet exists."""
        client = self._client(region)
        try:
            self._call(
                "DescribeStackSet",
                name,
                lambda: client.describe_stack_set(StackSetName=name),
                expected=STACK_SET_NOT_FOUND,
            )
        except ClientError:
            return False
        return True

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
        """Create an empty StackSet."""
        body = self._read_template(template)
        client = self._client(region)
        self._call(
            "CreateStackSet",
            name,
            lambda: client.create_stack_set(
                StackSetName=name,
                TemplateBody=body,
                Parameters=_api_parameters(parameters),
                Capabilities=list(capabilities),
                AdministrationRoleARN=administration_role_arn,
                ExecutionRoleName=execution_role_name,
            ),
        )

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
        """Update a StackSet and its instances in ``targets``.

        Targets are required: an update without Accounts and Regions would
        reach every instance of the StackSet.
        """
        accounts, regions = _split_targets(targets)
        body = self._read_template(template)
        client = self._client(region)
        response = self._call(
            "UpdateStackSet",
            name,
            lambda: client.update_stack_set(
                StackSetName=name,
                TemplateBody=body,
                Parameters=_api_parameters(parameters),
                Capabilities=list(capabilities),
                Accounts=accounts,
                Regions=regions,
                OperationPreferences=preferences,
            ),
        )
        return str(response["OperationId"])

    def delete_stack_set(self, name: str, region: str) -> None:
        """Delete an empty StackSet."""
        client = self._client(region)
        self._call("DeleteStackSet", name, lambda: client.delete_stack_set(StackSetName=name))

    def list_stack_instances(self, name: str, region: str) -> list[StackInstance]:
        """List all instances of a StackSet."""
        client = self._client(region)
        paginator = client.get_paginator("list_stack_instances")

        def _collect() -> list[StackInstance]:
            return [
                StackInstance(
                    account=summary["Account"],
                    region=summary["Region"],
                    status=summary.get("Status", ""),
                    status_reason=summary.get("StatusReason", ""),
                )
                for page in paginator.paginate(StackSetName=name)
                for summary in page.get("Summaries", [])
            ]

        return self._call("ListStackInstances", name, _collect)

    def create_stack_instances(
        self,
        name: str,
        region: str,
        targets: list[Target],
        preferences: dict[str, int],
    ) -> str:
        """Create StackSet instances."""
        accounts, regions = _split_targets(targets)
        client = self._client(region)
        response = self._call(
            "CreateStackInstances",
            name,
            lambda: client.create_stack_instances(
                StackSetName=name,
                Accounts=accounts,
                Regions=regions,
                OperationPreferences=preferences,
            ),
        )
        return str(response["OperationId"])

    def delete_stack_instances(
        self,
        name: str,
        region: str,
        targets: list[Target],
        preferences: dict[str, int],
    ) -> str:
        """Delete StackSet instances along with their stacks."""
        accounts, regions = _split_targets(targets)
        client = self._client(region)
        response = self._call(
            "DeleteStackInstances",
            name,
            lambda: client.delete_stack_instances(
                StackSetName=name,
                Accounts=accounts,
                Regions=regions,
                OperationPreferences=preferences,
                RetainStacks=False,
            ),
        )
        return str(response["OperationId"])

    def describe_stack_set_operation(
        self, name: str, region: str, operation_id: str
    ) -> OperationStatus:
        """Describe a StackSet operation."""
        client = self._client(region)
        response = self._call(
            "DescribeStackSetOperation",
            name,
            lambda: client.describe_stack_set_operation(
                StackSetName=name, OperationId=operation_id
            ),
        )
        operation = response["StackSetOperation"]
        return OperationStatus(
            operation_id=operation.get("OperationId", operation_id),
            status=operation["Status"],
            status_reason=operation.get("StatusReason", ""),
        )

    def list_stack_set_operation_results(
        self, name: str, region: str, operation_id: str
    ) -> list[OperationResult]:
        """List per-target results of a StackSet operation."""
        client = self._client(region)
        paginator = client.get_paginator("list_stack_set_operation_results")

        def _collect() -> list[OperationResult]:
            return [
                OperationResult(
                    account=summary["Account"],
                    region=summary["Region"],
                    status=summary.get("Status", ""),
                    status_reason=summary.get("StatusReason", ""),
                )
                for page in paginator.paginate(StackSetName=name, OperationId=operation_id)
                for summary in page.get("Summaries", [])
            ]

        return self._call("ListStackSetOperationResults", name, _collect)
