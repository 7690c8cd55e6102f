"""Tests for pipeline definitions."""

from src.modules.deploy.types import Target
from src.modules.orchestration.pipelines import (
    RESOLVE_TGW_STAGE,
    full_pipeline,
    hub_pipeline,
    spoke_pipeline,
    teardown_pipeline,
)
from src.modules.orchestration.sequencer import Sequencer
from src.modules.orchestration.stages import OutputRef, StageAction
from src.shared.config import Config


class TestHubPipeline:
    """Tests for hub_pipeline."""

    def test_stage_order(self, config: Config) -> None:
        """Test IAM roles precede the VPC, which precedes the TGW."""
        stages = hub_pipeline(config)

        assert [s.name for s in stages] == [
            "iam-roles",
            "hub-vpc",
            "transit-gateway",
            RESOLVE_TGW_STAGE,
        ]
        assert [s.target for s in stages] == [
            "hub-iam-roles",
            "hub-vpc",
            "hub-transit-gateway",
            "hub-transit-gateway",
        ]

    def test_iam_roles_parameters(self, config: Config) -> None:
        """Test IAM roles trust the spoke accounts and the GitHub repo."""
        iam = hub_pipeline(config)[0]

        assert iam.template == "cloudformation/hub/03-iam-roles.yaml"
        assert iam.capabilities == ("CAPABILITY_NAMED_IAM",)
        assert iam.parameters == {
            "SpokeAccountAId": "111111111111",
            "SpokeAccountBId": "222222222222",
            "GitHubOrg": "test-org",
            "GitHubRepo": "test-repo",
        }

    def test_hub_vpc_addressing(self, config: Config) -> None:
        """Test hub VPC CIDR layout."""
        vpc = hub_pipeline(config)[1]

        assert vpc.parameters["VpcCIDR"] == "10.0.0.0/16"
        assert vpc.parameters["PrivateSubnet2CIDR"] == "10.0.12.0/24"
        assert vpc.capabilities == ()

    def test_transit_gateway_requires_id_output(self, config: Config) -> None:
        """Test the TGW stage must expose TransitGatewayId."""
        tgw = hub_pipeline(config)[2]

        assert tgw.required_outputs == ("TransitGatewayId",)
        assert tgw.dependencies == ("hub-vpc",)

    def test_resolve_waits_for_transit_gateway(self, config: Config) -> None:
        """Test the hub's resolve stage depends on the TGW stage, even in parallel."""
        resolve = hub_pipeline(config)[3]

        assert resolve.dependencies == ("transit-gateway",)
        assert spoke_pipeline(config)[0].dependencies == ()

    def test_is_valid(self, config: Config) -> None:
        """Test the pipeline passes static validation."""
        Sequencer.validate(hub_pipeline(config))


class TestSpokePipeline:
    """Tests for spoke_pipeline."""

    def test_spokes_reference_resolved_tgw(self, config: Config) -> None:
        """Test each spoke consumes the TGW id from the resolve stage."""
        resolve, spoke_a, spoke_b = spoke_pipeline(config)

        assert resolve.action == StageAction.RESOLVE_OUTPUTS
        for spoke in (spoke_a, spoke_b):
            assert spoke.action == StageAction.DEPLOY_STACK_SET
            assert spoke.parameters["TransitGatewayId"] == OutputRef(
                RESOLVE_TGW_STAGE, "TransitGatewayId"
            )
            assert RESOLVE_TGW_STAGE in spoke.dependencies

    def test_spoke_addressing_is_mirrored(self, config: Config) -> None:
        """Test each spoke routes to the other spoke's CIDR."""
        _, spoke_a, spoke_b = spoke_pipeline(config)

        assert spoke_a.parameters["VpcCIDR"] == "10.1.0.0/16"
        assert spoke_a.parameters["OtherSpokeCIDR"] == "10.2.0.0/16"
        assert spoke_b.parameters["VpcCIDR"] == "10.2.0.0/16"
        assert spoke_b.parameters["OtherSpokeCIDR"] == "10.1.0.0/16"
        assert spoke_a.parameters["HubVpcCIDR"] == "10.0.0.0/16"

    def test_spoke_targets_and_roles(self, config: Config) -> None:
        """Test each StackSet targets one spoke account with the standard roles."""
        _, spoke_a, spoke_b = spoke_pipeline(config)

        assert spoke_a.targets == (Target("111111111111", "us-east-1"),)
        assert spoke_b.targets == (Target("222222222222", "us-east-1"),)
        assert spoke_a.administration_role_arn == (
            "arn:aws:iam::000000000000:role/AWSCloudFormationStackSetAdministrationRole"
        )
        assert spoke_a.execution_role_name == "AWSCloudFormationStackSetExecutionRole"
        assert spoke_a.capabilities == ("CAPABILITY_IAM",)

    def test_preferences_follow_config(self, config: Config) -> None:
        """Test operation preferences come from configuration."""
        _, spoke_a, _ = spoke_pipeline(config)

        assert spoke_a.preferences.failure_tolerance_count == 0
        assert spoke_a.preferences.max_concurrent_count == 1


class TestFullPipeline:
    """Tests for full_pipeline."""

    def test_resolve_stage_appears_once(self, config: Config) -> None:
        """Test the hub's resolve stage feeds the spokes."""
        names = [s.name for s in full_pipeline(config)]

        assert names.count(RESOLVE_TGW_STAGE) == 1
        assert names[-2:] == ["spoke-a", "spoke-b"]
        Sequencer.validate(full_pipeline(config))


class TestTeardownPipeline:
    """Tests for teardown_pipeline."""

    def test_reverse_deployment_order(self, config: Config) -> None:
        """Test spokes are deleted before the hub, and the hub in reverse."""
        stages = teardown_pipeline(config)

        assert [(s.action, s.target) for s in stages] == [
            (StageAction.DELETE_STACK_SET, "spoke-b-vpc"),
            (StageAction.DELETE_STACK_SET, "spoke-a-vpc"),
            (StageAction.DELETE_STACK, "hub-transit-gateway"),
            (StageAction.DELETE_STACK, "hub-vpc"),
            (StageAction.DELETE_STACK, "hub-iam-roles"),
        ]
        Sequencer.validate(stages)

    def test_each_deletion_waits_for_the_previous(self, config: Config) -> None:
        """Test teardown stages form a dependency chain."""
        stages = teardown_pipeline(config)

        assert stages[0].dependencies == ()
        for previous, stage in zip(stages, stages[1:]):
            assert stage.dependencies == (previous.name,)
