"""Pipeline definitions for the hub-and-spoke network.

Hub:      IAM roles -> hub VPC -> Transit Gateway -> resolve TGW outputs
Spokes:   resolve TGW outputs -> spoke A StackSet -> spoke B StackSet
Teardown: the deployment order reversed, as deletions
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

from src.modules.deploy.stackset import EXECUTION_ROLE_NAME, administration_role_arn
from src.modules.deploy.types import OperationPreferences, Target
from src.modules.orchestration.stages import OutputRef, Stage, StageAction
from src.shared.config import Config

IAM_ROLES_STACK = "hub-iam-roles"
HUB_VPC_STACK = "hub-vpc"
TRANSIT_GATEWAY_STACK = "hub-transit-gateway"

TRANSIT_GATEWAY_ID_OUTPUT = "TransitGatewayId"
RESOLVE_TGW_STAGE = "resolve-transit-gateway"

HUB_VPC_CIDR = "10.0.0.0/16"


@dataclass(frozen=True)
class SpokeNetwork:
    """Addressing for one spoke VPC.

    Attributes:
        stage: Stage name.
        stack_set: StackSet name.
        environment: EnvironmentName tag value.
        vpc_cidr: Spoke VPC CIDR.
        public_subnet_cidr: Public subnet CIDR.
        private_subnet_cidr: Private subnet CIDR.
        other_spoke_cidr: CIDR of the other spoke, routed through the TGW.
    """

    stage: str
    stack_set: str
    environment: str
    vpc_cidr: str
    public_subnet_cidr: str
    private_subnet_cidr: str
    other_spoke_cidr: str


SPOKE_A = SpokeNetwork(
    stage="spoke-a",
    stack_set="spoke-a-vpc",
    environment="SpokeA",
    vpc_cidr="10.1.0.0/16",
    public_subnet_cidr="10.1.1.0/24",
    private_subnet_cidr="10.1.11.0/24",
    other_spoke_cidr="10.2.0.0/16",
)

SPOKE_B = SpokeNetwork(
    stage="spoke-b",
    stack_set="spoke-b-vpc",
    environment="SpokeB",
    vpc_cidr="10.2.0.0/16",
    public_subnet_cidr="10.2.1.0/24",
    private_subnet_cidr="10.2.11.0/24",
    other_spoke_cidr="10.1.0.0/16",
)


def _template(config: Config, *parts: str) -> str:
    return str(Path(config.template_dir, *parts))


def _preferences(config: Config) -> OperationPreferences:
    return OperationPreferences(
        failure_tolerance_count=config.failure_tolerance_count,
        max_concurrent_count=config.max_concurrent_count,
    )


def _resolve_transit_gateway(config: Config, depends_on: tuple[str, ...] = ()) -> Stage:
    return Stage(
        name=RESOLVE_TGW_STAGE,
        action=StageAction.RESOLVE_OUTPUTS,
        target=TRANSIT_GATEWAY_STACK,
        region=config.aws_region,
        account=config.hub_account_id,
        required_outputs=(TRANSIT_GATEWAY_ID_OUTPUT,),
        depends_on=depends_on,
    )


def hub_pipeline(config: Config) -> list[Stage]:
    """Build the hub account stages.

    Args:
        config: Deployment configuration.

    Returns:
        Stages in deployment order.
    """
    return [
        Stage(
            name="iam-roles",
            action=StageAction.DEPLOY_STACK,
            target=IAM_ROLES_STACK,
            region=config.aws_region,
            account=config.hub_account_id,
            template=_template(config, "hub", "03-iam-roles.yaml"),
            parameters={
                "SpokeAccountAId": config.spoke_a_account_id,
                "SpokeAccountBId": config.spoke_b_account_id,
                "GitHubOrg": config.github_org,
                "GitHubRepo": config.github_repo,
            },
            capabilities=("CAPABILITY_NAMED_IAM",),
        ),
        Stage(
            name="hub-vpc",
            action=StageAction.DEPLOY_STACK,
            target=HUB_VPC_STACK,
            region=config.aws_region,
            account=config.hub_account_id,
            template=_template(config, "hub", "01-vpc.yaml"),
            parameters={
                "EnvironmentName": "Hub",
                "VpcCIDR": HUB_VPC_CIDR,
                "PublicSubnet1CIDR": "10.0.1.0/24",
                "PublicSubnet2CIDR": "10.0.2.0/24",
                "PrivateSubnet1CIDR": "10.0.11.0/24",
                "PrivateSubnet2CIDR": "10.0.12.0/24",
            },
            depends_on=("iam-roles",),
        ),
        Stage(
            name="transit-gateway",
            action=StageAction.DEPLOY_STACK,
            target=TRANSIT_GATEWAY_STACK,
            region=config.aws_region,
            account=config.hub_account_id,
            template=_template(config, "hub", "02-transit-gateway.yaml"),
            parameters={
                "EnvironmentName": "Hub",
                "TransitGatewayDescription": "Central Transit Gateway for multi-account networking",
            },
            required_outputs=(TRANSIT_GATEWAY_ID_OUTPUT,),
            depends_on=("hub-vpc",),
        ),
        _resolve_transit_gateway(config, depends_on=("transit-gateway",)),
    ]


def _spoke_stage(config: Config, spoke: SpokeNetwork, account_id: str) -> Stage:
    return Stage(
        name=spoke.stage,
        action=StageAction.DEPLOY_STACK_SET,
        target=spoke.stack_set,
        region=config.aws_region,
        account=config.hub_account_id,
        template=_template(config, "spoke", "vpc.yaml"),
        parameters={
            "EnvironmentName": spoke.environment,
            "VpcCIDR": spoke.vpc_cidr,
            "PublicSubnetCIDR": spoke.public_subnet_cidr,
            "PrivateSubnetCIDR": spoke.private_subnet_cidr,
            "TransitGatewayId": OutputRef(RESOLVE_TGW_STAGE, TRANSIT_GATEWAY_ID_OUTPUT),
            "HubVpcCIDR": HUB_VPC_CIDR,
            "OtherSpokeCIDR": spoke.other_spoke_cidr,
        },
        capabilities=("CAPABILITY_IAM",),
        targets=(Target(account_id, config.aws_region),),
        preferences=_preferences(config),
        administration_role_arn=administration_role_arn(config.hub_account_id),
        execution_role_name=EXECUTION_ROLE_NAME,
    )


def spoke_pipeline(config: Config) -> list[Stage]:
    """Build the spoke StackSet stages.

    The Transit Gateway id is read from the already deployed hub stack.
    """
    return [
        _resolve_transit_gateway(config),
        _spoke_stage(config, SPOKE_A, config.spoke_a_account_id),
        _spoke_stage(config, SPOKE_B, config.spoke_b_account_id),
    ]


def full_pipeline(config: Config) -> list[Stage]:
    """Hub stages followed by the spoke stages."""
    return hub_pipeline(config) + spoke_pipeline(config)[1:]


def teardown_pipeline(config: Config) -> list[Stage]:
    """Build deletion stages in exact reverse deployment order."""
    preferences = _preferences(config)
    spoke_deletions = [
        Stage(
            name=f"delete-{spoke.stage}",
            action=StageAction.DELETE_STACK_SET,
            target=spoke.stack_set,
            region=config.aws_region,
            account=config.hub_account_id,
            preferences=preferences,
        )
        for spoke in (SPOKE_B, SPOKE_A)
    ]
    stack_deletions = [
        Stage(
            name=f"delete-{stack}",
            action=StageAction.DELETE_STACK,
            target=stack,
            region=config.aws_region,
            account=config.hub_account_id,
        )
        for stack in (TRANSIT_GATEWAY_STACK, HUB_VPC_STACK, IAM_ROLES_STACK)
    ]
    stages = spoke_deletions + stack_deletions
    # Each deletion waits for the previous one, also when run with --parallel
    return [stages[0]] + [
        replace(stage, depends_on=(previous.name,))
        for previous, stage in zip(stages, stages[1:])
    ]
