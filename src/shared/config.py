"""Configuration loader for the network deployer.

Loads configuration from environment variables with sensible defaults.
Values are read once at startup and never re-read mid-run.
"""

import os
import re
from dataclasses import dataclass

from src.modules.deploy.errors import ConfigurationError

ACCOUNT_ID_PATTERN = re.compile(r"^\d{12}$")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Config:
    """Deployment configuration loaded from environment variables.

    Attributes:
        aws_region: Region every stack and StackSet is administered from.
        hub_account_id: Account hosting the Transit Gateway.
        spoke_a_account_id: First spoke account.
        spoke_b_account_id: Second spoke account.
        github_org: GitHub organization trusted by the deployment role.
        github_repo: GitHub repository trusted by the deployment role.
        template_dir: Directory holding the CloudFormation templates.
        failure_tolerance_count: StackSet per-target failures tolerated.
        max_concurrent_count: StackSet targets deployed in parallel.
        prune_stack_instances: Delete StackSet instances outside the target set.
        poll_interval_seconds: Delay between convergence polls.
        throttle_max_retries: Retries on throttling before giving up.
        log_level: Logging level name.
    """

    aws_region: str
    hub_account_id: str
    spoke_a_account_id: str
    spoke_b_account_id: str
    github_org: str
    github_repo: str
    template_dir: str
    failure_tolerance_count: int
    max_concurrent_count: int
    prune_stack_instances: bool
    poll_interval_seconds: float
    throttle_max_retries: int
    log_level: str


def load_config() -> Config:
    """Load configuration from environment variables.

    Returns:
        Config object with all settings.

    Raises:
        ConfigurationError: If a variable is set to a malformed value.
    """
    return Config(
        aws_region=os.getenv("AWS_REGION", "us-east-1"),
        hub_account_id=_get_account("HUB_ACCOUNT_ID", "000000000000"),
        spoke_a_account_id=_get_account("SPOKE_A_ACCOUNT_ID", "111111111111"),
        spoke_b_account_id=_get_account("SPOKE_B_ACCOUNT_ID", "222222222222"),
        github_org=os.getenv("GITHUB_ORG", "your-github-org"),
        github_repo=os.getenv("GITHUB_REPO", "centralized-networking"),
        template_dir=os.getenv("TEMPLATE_DIR", "cloudformation"),
        failure_tolerance_count=_get_int("STACKSET_FAILURE_TOLERANCE", 0, minimum=0),
        max_concurrent_count=_get_int("STACKSET_MAX_CONCURRENT", 1, minimum=1),
        prune_stack_instances=_get_bool("PRUNE_STACK_INSTANCES", default=False),
        poll_interval_seconds=_get_float("POLL_INTERVAL_SECONDS", 15.0),
        throttle_max_retries=_get_int("THROTTLE_MAX_RETRIES", 5, minimum=0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def _get_account(name: str, default: str) -> str:
    """Read a 12-digit AWS account id."""
    value = os.getenv(name, default).strip()
    if not ACCOUNT_ID_PATTERN.match(value):
        raise ConfigurationError(f"{name} must be a 12-digit account id, got {value!r}")
    return value


def _get_int(name: str, default: int, *, minimum: int) -> int:
    """Read an integer with a lower bound."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(name: str, default: float) -> float:
    """Read a non-negative float."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0, got {value}")
    return value


def _get_bool(name: str, *, default: bool) -> bool:
    """Read a boolean flag such as 'true' or '0'."""
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")
