"""Deploy the hub-and-spoke network.

Usage:
    python -m scripts.deploy hub
    python -m scripts.deploy spokes --parallel
    python -m scripts.deploy all
    python -m scripts.deploy teardown --yes
    python -m scripts.deploy hub --dry-run
    python -m scripts.deploy hub --endpoint-url http://localhost:4566  # LocalStack

Installed console scripts: deploy-hub, deploy-spokes, deploy-teardown.
Configuration comes from environment variables (see src/shared/config.py).
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from typing import Callable

from src.modules.deploy.cloudformation import CloudFormationBackend
from src.modules.deploy.errors import ConfigurationError
from src.modules.deploy.outputs import OutputResolver
from src.modules.deploy.protocols import DeploymentBackend
from src.modules.deploy.retry import ExponentialBackoff
from src.modules.deploy.stack import StackDeployer
from src.modules.deploy.stackset import StackSetDeployer
from src.modules.orchestration.pipelines import (
    RESOLVE_TGW_STAGE,
    TRANSIT_GATEWAY_ID_OUTPUT,
    full_pipeline,
    hub_pipeline,
    spoke_pipeline,
    teardown_pipeline,
)
from src.modules.orchestration.sequencer import PipelineResult, Sequencer
from src.modules.orchestration.stages import Stage
from src.shared.config import Config, load_config
from src.shared.logger import get_logger, set_level

logger = get_logger(__name__)

PIPELINES: dict[str, Callable[[Config], list[Stage]]] = {
    "hub": hub_pipeline,
    "spokes": spoke_pipeline,
    "all": full_pipeline,
    "teardown": teardown_pipeline,
}

NEXT_STEPS: dict[str, list[str]] = {
    "hub": [
        "Deploy StackSet Execution Roles in spoke accounts",
        "Run deploy-spokes to deploy spoke infrastructure",
    ],
    "spokes": [
        "Verify Transit Gateway attachments are 'available'",
        "Deploy test instances for connectivity verification",
    ],
    "all": [
        "Verify Transit Gateway attachments are 'available'",
        "Deploy test instances for connectivity verification",
    ],
    "teardown": [],
}


def build_sequencer(
    config: Config,
    backend: DeploymentBackend,
    parallel: bool = False,
) -> Sequencer:
    """Wire the deployers and resolver around one backend.

    Args:
        config: Deployment configuration.
        backend: Deployment backend.
        parallel: Run independent stages concurrently.

    Returns:
        Ready-to-run Sequencer.
    """
    backoff = ExponentialBackoff(max_retries=config.throttle_max_retries)
    return Sequencer(
        stack_deployer=StackDeployer(
            backend, backoff=backoff, poll_interval=config.poll_interval_seconds
        ),
        stack_set_deployer=StackSetDeployer(
            backend,
            backoff=backoff,
            poll_interval=config.poll_interval_seconds,
            prune_orphans=config.prune_stack_instances,
        ),
        resolver=OutputResolver(backend, backoff=backoff),
        parallel=parallel,
    )


def _print_banner(title: str, config: Config) -> None:
    print("==========================================")
    print(title)
    print("==========================================")
    print(f"Region: {config.aws_region}")
    print(f"Hub Account: {config.hub_account_id}")
    print(f"Spoke A Account: {config.spoke_a_account_id}")
    print(f"Spoke B Account: {config.spoke_b_account_id}")
    print("")


def _print_plan(stages: list[Stage]) -> None:
    for index, stage in enumerate(stages, start=1):
        print(f"Step {index}/{len(stages)}: {stage.name} ({stage.action.value} {stage.target})")
        for key, value in stage.parameters.items():
            print(f"    {key}={value}")


def _print_summary(pipeline: str, result: PipelineResult) -> None:
    print("==========================================")
    if not result.succeeded:
        state = result.state
        print(f"Deployment failed at stage {state.stage_name} (step {(state.stage_index or 0) + 1})")
        print(f"Reason: {state.cause}")
        print("==========================================")
        return

    print(f"Deployment complete: {', '.join(result.completed)}")
    tgw_id = result.outputs.get(RESOLVE_TGW_STAGE, {}).get(TRANSIT_GATEWAY_ID_OUTPUT)
    if tgw_id:
        print(f"Transit Gateway ID: {tgw_id}")
    steps = NEXT_STEPS.get(pipeline, [])
    if steps:
        print("")
        print("Next Steps:")
        for number, step in enumerate(steps, start=1):
            print(f"{number}. {step}")
    print("==========================================")


def run_pipeline(
    pipeline: str,
    config: Config,
    backend: DeploymentBackend | None = None,
    parallel: bool = False,
    dry_run: bool = False,
    endpoint_url: str | None = None,
) -> int:
    """Run a named pipeline.

    Args:
        pipeline: One of 'hub', 'spokes', 'all', 'teardown'.
        config: Deployment configuration.
        backend: Optional backend (for testing).
        parallel: Run independent stages concurrently.
        dry_run: Validate and print the plan without calling AWS.
        endpoint_url: Optional CloudFormation endpoint URL.

    Returns:
        Process exit code: 0 on success, 1 on any failure.
    """
    stages = PIPELINES[pipeline](config)
    _print_banner(f"Network Deployment: {pipeline}", config)

    try:
        Sequencer.validate(stages)
    except ConfigurationError as e:
        logger.error(f"Invalid pipeline: {e}")
        return 1

    if dry_run:
        _print_plan(stages)
        return 0

    backend = backend or CloudFormationBackend(endpoint_url=endpoint_url)
    sequencer = build_sequencer(config, backend, parallel=parallel)
    result = sequencer.run(stages)
    _print_summary(pipeline, result)
    return 0 if result.succeeded else 1


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deploy the hub-and-spoke network")
    parser.add_argument("pipeline", choices=sorted(PIPELINES), help="Pipeline to run")
    _add_common_arguments(parser)
    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--region", default=None, help="AWS region (default: $AWS_REGION)")
    parser.add_argument(
        "--template-dir",
        default=None,
        help="CloudFormation template directory (default: $TEMPLATE_DIR)",
    )
    parser.add_argument(
        "--endpoint-url",
        default=None,
        help="Custom endpoint URL (e.g., http://localhost:4566 for LocalStack)",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Deploy independent stages (the spokes) concurrently",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and print the plan without calling AWS",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm teardown",
    )


def main(argv: list[str] | None = None, pipeline: str | None = None) -> int:
    """CLI entry point."""
    if pipeline is None:
        args = _parser().parse_args(argv)
        pipeline = args.pipeline
    else:
        parser = argparse.ArgumentParser(description=f"Run the {pipeline} pipeline")
        _add_common_arguments(parser)
        args = parser.parse_args(argv)

    try:
        config = load_config()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    overrides = {}
    if args.region:
        overrides["aws_region"] = args.region
    if args.template_dir:
        overrides["template_dir"] = args.template_dir
    if overrides:
        config = replace(config, **overrides)

    set_level(config.log_level)

    if pipeline == "teardown" and not (args.yes or args.dry_run):
        logger.error("Refusing to tear down without --yes")
        return 1

    return run_pipeline(
        pipeline,
        config,
        parallel=args.parallel,
        dry_run=args.dry_run,
        endpoint_url=args.endpoint_url,
    )


def deploy_hub() -> int:
    """Console script: deploy-hub."""
    return main(sys.argv[1:], pipeline="hub")


def deploy_spokes() -> int:
    """Console script: deploy-spokes."""
    return main(sys.argv[1:], pipeline="spokes")


def teardown() -> int:
    """Console script: deploy-teardown."""
    return main(sys.argv[1:], pipeline="teardown")


if __name__ == "__main__":
    sys.exit(main())
