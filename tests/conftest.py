"""Shared fixtures and an in-memory deployment backend."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import pytest

from src.modules.deploy.errors import ConfigurationError, ThrottlingError
from src.modules.deploy.retry import ExponentialBackoff
from src.modules.deploy.types import (
    OperationResult,
    OperationStatus,
    StackDescription,
    StackInstance,
    Target,
)
from src.shared.config import Config


@dataclass
class StackPlan:
    """Scripted behaviour for one stack in the fake backend."""

    outputs: dict[str, str] = field(default_factory=dict)
    fail_reason: str | None = None
    required_capability: str | None = None
    polls: int = 1


@dataclass
class _FakeStack:
    status: str
    reason: str = ""
    outputs: dict[str, str] = field(default_factory=dict)
    template: str = ""
    parameters: dict[str, str] = field(default_factory=dict)
    pending: list[tuple[str, str]] = field(default_factory=list)


class FakeBackend:
    """In-memory DeploymentBackend.

    Records every call in ``calls`` as (method, resource) and every stack
    status change in ``transitions`` as (stack, status).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.transitions: list[tuple[str, str]] = []
        self.plans: dict[str, StackPlan] = {}
        self.stacks: dict[str, _FakeStack] = {}
        self.stack_sets: dict[str, dict[str, Any]] = {}
        self.operations: dict[str, dict[str, Any]] = {}
        self.failing_accounts: dict[str, str] = {}
        self.throttles: dict[str, int] = {}
        self._operation_counter = 0
        self._lock = threading.Lock()

    # --- helpers ---

    def _record(self, method: str, resource: str) -> None:
        self.calls.append((method, resource))
        remaining = self.throttles.get(method, 0)
        if remaining:
            self.throttles[method] = remaining - 1
            raise ThrottlingError(method, "Rate exceeded")

    def _set_status(self, stack: _FakeStack, name: str, status: str) -> None:
        stack.status = status
        self.transitions.append((name, status))

    def calls_for(self, resource: str) -> list[str]:
        return [method for method, name in self.calls if name == resource]

    def seed_stack(
        self,
        name: str,
        status: str = "CREATE_COMPLETE",
        outputs: dict[str, str] | None = None,
        template: str = "",
        parameters: dict[str, str] | None = None,
    ) -> None:
        self.stacks[name] = _FakeStack(
            status=status,
            outputs=dict(outputs or {}),
            template=template,
            parameters=dict(parameters or {}),
        )

    def seed_stack_set(self, name: str, targets: list[Target]) -> None:
        self.stack_sets[name] = {"instances": list(targets), "parameters": {}}

    # --- stacks ---

    def describe_stack(self, name: str, region: str) -> StackDescription | None:
        self._record("describe_stack", name)
        stack = self.stacks.get(name)
        if stack is None:
            return None
        if stack.pending:
            status, reason = stack.pending.pop(0)
            stack.reason = reason
            self._set_status(stack, name, status)
            if status == "DELETE_COMPLETE":
                del self.stacks[name]
                return None
        return StackDescription(name, stack.status, stack.reason, dict(stack.outputs))

    def _schedule(self, name: str, stack: _FakeStack, operation: str, plan: StackPlan) -> None:
        in_progress = f"{operation}_IN_PROGRESS"
        self._set_status(stack, name, in_progress)
        stack.pending = [(in_progress, "")] * (plan.polls - 1)
        if plan.fail_reason is None:
            stack.outputs = dict(plan.outputs)
            stack.pending.append((f"{operation}_COMPLETE", ""))
        elif operation == "CREATE":
            stack.pending.append(("ROLLBACK_COMPLETE", plan.fail_reason))
        else:
            stack.pending.append(("UPDATE_ROLLBACK_COMPLETE", plan.fail_reason))

    def _check_capabilities(self, name: str, capabilities: tuple[str, ...]) -> StackPlan:
        plan = self.plans.get(name, StackPlan())
        if plan.required_capability and plan.required_capability not in capabilities:
            raise ConfigurationError(f"[{name}] Requires capabilities : [{plan.required_capability}]")
        return plan

    def create_stack(self, name, region, template, parameters, capabilities) -> None:
        self._record("create_stack", name)
        plan = self._check_capabilities(name, capabilities)
        stack = _FakeStack(status="", template=template, parameters=dict(parameters))
        self.stacks[name] = stack
        self._schedule(name, stack, "CREATE", plan)

    def update_stack(self, name, region, template, parameters, capabilities) -> bool:
        self._record("update_stack", name)
        plan = self._check_capabilities(name, capabilities)
        stack = self.stacks[name]
        if stack.template == template and stack.parameters == dict(parameters):
            return False
        stack.template = template
        stack.parameters = dict(parameters)
        self._schedule(name, stack, "UPDATE", plan)
        return True

    def delete_stack(self, name, region) -> None:
        self._record("delete_stack", name)
        stack = self.stacks[name]
        self._set_status(stack, name, "DELETE_IN_PROGRESS")
        stack.pending = [("DELETE_COMPLETE", "")]

    # --- stack sets ---

    def describe_stack_set(self, name, region) -> bool:
        self._record("describe_stack_set", name)
        return name in self.stack_sets

    def create_stack_set(
        self,
        name,
        region,
        template,
        parameters,
        capabilities,
        administration_role_arn,
        execution_role_name,
    ) -> None:
        self._record("create_stack_set", name)
        self.stack_sets[name] = {
            "instances": [],
            "parameters": dict(parameters),
            "administration_role_arn": administration_role_arn,
            "execution_role_name": execution_role_name,
        }

    def _run_operation(
        self, name: str, targets: list[Target], preferences: dict[str, int], apply: Any
    ) -> str:
        accounts = {t.account for t in targets}
        regions = {t.region for t in targets}
        if not targets or len(accounts) * len(regions) != len(set(targets)):
            raise ConfigurationError(f"[{name}] targets must be every account in every region")
        tolerance = preferences["FailureToleranceCount"]
        results: list[OperationResult] = []
        failures = 0
        for target in targets:
            if failures > tolerance:
                results.append(OperationResult(target.account, target.region, "CANCELLED"))
                continue
            reason = self.failing_accounts.get(target.account)
            if reason is not None:
                failures += 1
                results.append(OperationResult(target.account, target.region, "FAILED", reason))
                continue
            apply(target)
            results.append(OperationResult(target.account, target.region, "SUCCEEDED"))

        with self._lock:
            self._operation_counter += 1
            operation_id = f"op-{self._operation_counter}"
        self.operations[operation_id] = {
            "name": name,
            "status": "FAILED" if failures > tolerance else "SUCCEEDED",
            "results": results,
            "polls": 1,
            "preferences": dict(preferences),
            "targets": list(targets),
        }
        return operation_id

    def update_stack_set(
        self, name, region, template, parameters, capabilities, targets, preferences
    ) -> str:
        self._record("update_stack_set", name)
        stack_set = self.stack_sets[name]
        stack_set["parameters"] = dict(parameters)
        return self._run_operation(name, list(targets), preferences, lambda target: None)

    def delete_stack_set(self, name, region) -> None:
        self._record("delete_stack_set", name)
        del self.stack_sets[name]

    def list_stack_instances(self, name, region) -> list[StackInstance]:
        self._record("list_stack_instances", name)
        return [StackInstance(t.account, t.region) for t in self.stack_sets[name]["instances"]]

    def create_stack_instances(self, name, region, targets, preferences) -> str:
        self._record("create_stack_instances", name)
        instances = self.stack_sets[name]["instances"]
        return self._run_operation(name, list(targets), preferences, instances.append)

    def delete_stack_instances(self, name, region, targets, preferences) -> str:
        self._record("delete_stack_instances", name)
        instances = self.stack_sets[name]["instances"]
        return self._run_operation(name, list(targets), preferences, instances.remove)

    def describe_stack_set_operation(self, name, region, operation_id) -> OperationStatus:
        self._record("describe_stack_set_operation", name)
        operation = self.operations[operation_id]
        if operation["polls"] > 0:
            operation["polls"] -= 1
            return OperationStatus(operation_id, "RUNNING")
        return OperationStatus(operation_id, operation["status"])

    def list_stack_set_operation_results(self, name, region, operation_id) -> list[OperationResult]:
        self._record("list_stack_set_operation_results", name)
        return list(self.operations[operation_id]["results"])


@pytest.fixture
def backend() -> FakeBackend:
    """Create an empty in-memory backend."""
    return FakeBackend()


@pytest.fixture
def no_backoff() -> ExponentialBackoff:
    """Retry policy without jitter."""
    return ExponentialBackoff(initial_interval=1.0, randomization_factor=0.0, max_retries=3)


@pytest.fixture
def sleeps() -> list[float]:
    """Collects requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def config() -> Config:
    """Create test configuration."""
    return Config(
        aws_region="us-east-1",
        hub_account_id="000000000000",
        spoke_a_account_id="111111111111",
        spoke_b_account_id="222222222222",
        github_org="test-org",
        github_repo="test-repo",
        template_dir="cloudformation",
        failure_tolerance_count=0,
        max_concurrent_count=1,
        prune_stack_instances=False,
        poll_interval_seconds=0.0,
        throttle_max_retries=3,
        log_level="INFO",
    )
