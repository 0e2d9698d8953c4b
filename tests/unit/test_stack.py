"""Tests for the Pulumi program, run against the Pulumi mock engine.

The program body runs once at import time, after mocks and stack config are
installed, the same way `pulumi up` runs `__main__.py`. Resource inputs are
recorded by the mocks as they are registered, so checks on them wait for the
resources' URNs first.
"""

import base64

import pulumi
import pytest

PROJECT = "asg-stress-lab"
ALB_ARN = (
    "arn:aws:elasticloadbalancing:us-east-1:123456789012:"
    "loadbalancer/app/web-alb/50dc6c495c0c9188"
)
ALB_DIMENSION = "app/web-alb/50dc6c495c0c9188"
ALB_DNS_NAME = "web-alb-1234567890.us-east-1.elb.amazonaws.com"
AMI_ID = "ami-0123456789abcdef0"
ZONES = ["us-east-1a", "us-east-1b", "us-east-1c"]
SSH_CIDR = "203.0.113.0/24"
MOCK_ARN_PREFIX = "arn:aws:mock:us-east-1:123456789012:"

STACK_CONFIG = {
    "instanceType": "t3.small",
    "maxSize": "4",
    "availabilityZones": "3",
    "sshCidr": SSH_CIDR,
}


class LabMocks(pulumi.runtime.Mocks):
    """Echo inputs back as state and record every registration and invoke."""

    def __init__(self):
        self.resources: dict[str, tuple[str, dict]] = {}
        self.calls: dict[str, dict] = {}

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        self.resources[args.name] = (args.typ, dict(args.inputs))
        outputs = dict(args.inputs)
        outputs.setdefault("name", args.name)
        if args.typ == "aws:lb/loadBalancer:LoadBalancer":
            outputs["arn"] = ALB_ARN
            outputs["dnsName"] = ALB_DNS_NAME
        else:
            outputs["arn"] = f"{MOCK_ARN_PREFIX}{args.name}"
        return [f"{args.name}-id", outputs]

    def call(self, args: pulumi.runtime.MockCallArgs):
        self.calls[args.token] = dict(args.args)
        if args.token == "aws:index/getAvailabilityZones:getAvailabilityZones":
            return {"names": ZONES, "zoneIds": ["use1-az1", "use1-az2", "use1-az4"]}
        if args.token == "aws:ec2/getAmi:getAmi":
            return {"id": AMI_ID, "imageId": AMI_ID}
        return {}


MOCKS = LabMocks()
pulumi.runtime.set_mocks(MOCKS, project=PROJECT, preview=False)
pulumi.runtime.set_all_config({f"{PROJECT}:{key}": value for key, value in STACK_CONFIG.items()})

from asglab import names  # noqa: E402
from asglab.config import ConfigError, StackSettings  # noqa: E402
from asglab.graph import build_stack_graph  # noqa: E402
from asglab.stack import build_stack, run  # noqa: E402

STACK = run()
ROOT = pulumi.runtime.get_root_resource()


def after_registration(resources, check):
    """Run check once every given resource has been registered with the mocks."""
    return pulumi.Output.all(*(r.urn for r in resources)).apply(lambda _: check())


def inputs_of(name: str) -> dict:
    return MOCKS.resources[name][1]


def referenced_names(value, declared: set[str]) -> set[str]:
    """Resource names a recorded input value refers to through mocked ids and ARNs."""
    if isinstance(value, dict):
        return set().union(*(referenced_names(v, declared) for v in value.values()))
    if isinstance(value, list):
        return set().union(*(referenced_names(v, declared) for v in value))
    if not isinstance(value, str):
        return set()
    if value in (ALB_ARN, ALB_DIMENSION):
        return {names.LOAD_BALANCER}
    candidate = value.removesuffix("-id").removeprefix(MOCK_ARN_PREFIX)
    return {candidate} if candidate in declared else set()


class TestProgram:
    """Tests for config loading and stack outputs."""

    def test_settings_read_from_stack_config(self):
        settings = STACK.settings
        assert settings.instance_type == "t3.small"
        assert settings.max_size == 4
        assert settings.availability_zones == 3
        assert settings.ssh_cidr == SSH_CIDR
        assert settings.min_size == 1

    @pulumi.runtime.test
    def test_exported_outputs(self):
        assert set(ROOT.outputs) == {
            "albDnsName",
            "autoScalingGroupName",
            "vpcId",
            "launchTemplateId",
        }

        def check(args):
            dns_name, group_name, vpc_id, template_id = args
            assert dns_name == ALB_DNS_NAME
            assert group_name == names.AUTOSCALING_GROUP
            assert vpc_id == f"{names.VPC}-id"
            assert template_id == f"{names.LAUNCH_TEMPLATE}-id"

        return pulumi.Output.all(
            ROOT.outputs["albDnsName"],
            ROOT.outputs["autoScalingGroupName"],
            ROOT.outputs["vpcId"],
            ROOT.outputs["launchTemplateId"],
        ).apply(check)

    def test_invalid_settings_rejected(self):
        with pytest.raises(ConfigError, match="desiredCapacity"):
            build_stack(StackSettings(min_size=5))


class TestNetwork:
    @pulumi.runtime.test
    def test_security_group_rules(self):
        def check():
            group = inputs_of(names.SECURITY_GROUP)
            assert group["vpcId"] == f"{names.VPC}-id"
            rules = {rule["fromPort"]: rule for rule in group["ingress"]}
            assert set(rules) == {80, 22}
            assert rules[80]["cidrBlocks"] == ["0.0.0.0/0"]
            assert rules[22]["cidrBlocks"] == [SSH_CIDR]
            assert all(rule["protocol"] == "tcp" for rule in rules.values())
            assert group["egress"][0]["protocol"] == "-1"
            assert group["egress"][0]["cidrBlocks"] == ["0.0.0.0/0"]

        return after_registration([STACK.security_group], check)

    @pulumi.runtime.test
    def test_subnets_spread_over_zones(self):
        subnets = STACK.network.public_subnets + STACK.network.private_subnets

        def check(zones):
            assert zones == ZONES * 2

        return pulumi.Output.all(*(s.availability_zone for s in subnets)).apply(check)

    def test_zone_lookup(self):
        request = MOCKS.calls["aws:index/getAvailabilityZones:getAvailabilityZones"]
        assert request["state"] == "available"


class TestCompute:
    """Tests for the launch template and autoscaling group."""

    @pulumi.runtime.test
    def test_group_capacity(self):
        group = STACK.compute.autoscaling_group

        def check(args):
            min_size, desired, max_size = args
            assert (min_size, desired, max_size) == (1, 1, 4)
            assert min_size <= desired <= max_size

        return pulumi.Output.all(group.min_size, group.desired_capacity, group.max_size).apply(
            check
        )

    @pulumi.runtime.test
    def test_group_settings(self):
        def check():
            group = inputs_of(names.AUTOSCALING_GROUP)
            assert group["healthCheckType"] == "EC2"
            assert group["healthCheckGracePeriod"] == 300
            assert group["launchTemplate"] == {
                "id": f"{names.LAUNCH_TEMPLATE}-id",
                "version": "$Latest",
            }
            assert group["vpcZoneIdentifiers"] == [
                f"{names.private_subnet(i)}-id" for i in range(len(ZONES))
            ]
            tags = {tag["key"]: tag for tag in group["tags"]}
            assert tags["Name"]["value"] == names.INSTANCE_NAME
            assert tags["Name"]["propagateAtLaunch"] is True

        return after_registration([STACK.compute.autoscaling_group], check)

    @pulumi.runtime.test
    def test_launch_template(self):
        template = STACK.compute.launch_template

        def check(args):
            image_id, instance_type, user_data = args
            assert image_id == AMI_ID
            assert instance_type == "t3.small"
            script = base64.b64decode(user_data).decode("utf-8")
            assert script.startswith("#!/bin/bash")
            assert "stress --cpu 4 --timeout 180s" in script

        return pulumi.Output.all(
            template.image_id, template.instance_type, template.user_data
        ).apply(check)

    @pulumi.runtime.test
    def test_launch_template_devices_and_tags(self):
        def check():
            template = inputs_of(names.LAUNCH_TEMPLATE)
            assert template["vpcSecurityGroupIds"] == [f"{names.SECURITY_GROUP}-id"]
            assert "keyName" not in template
            (device,) = template["blockDeviceMappings"]
            assert device["deviceName"] == "/dev/xvda"
            assert device["ebs"] == {
                "volumeSize": 8,
                "volumeType": "gp2",
                "deleteOnTermination": "true",
            }
            (tag_spec,) = template["tagSpecifications"]
            assert tag_spec["resourceType"] == "instance"
            assert tag_spec["tags"] == {
                "Name": names.INSTANCE_NAME,
                "Environment": "test",
                "ManagedBy": "pulumi",
            }

        return after_registration([STACK.compute.launch_template], check)

    @pulumi.runtime.test
    def test_ami_lookup(self):
        def check():
            request = MOCKS.calls["aws:ec2/getAmi:getAmi"]
            assert request["owners"] == ["amazon"]
            assert request["mostRecent"] is True
            assert request["filters"] == [
                {"name": "name", "values": ["amzn2-ami-hvm-2.0.*-x86_64-gp2"]}
            ]

        return after_registration([STACK.compute.launch_template], check)


class TestLoadBalancing:
    """Tests for the target group, load balancer, listener and attachment."""

    @pulumi.runtime.test
    def test_target_group_health_check(self):
        def check():
            target_group = inputs_of(names.TARGET_GROUP)
            assert (target_group["port"], target_group["protocol"]) == (80, "HTTP")
            assert target_group["targetType"] == "instance"
            health = target_group["healthCheck"]
            assert health["enabled"] is True
            assert health["path"] == "/"
            assert (health["port"], health["protocol"]) == ("80", "HTTP")
            assert (health["healthyThreshold"], health["unhealthyThreshold"]) == (2, 2)
            assert (health["timeout"], health["interval"]) == (3, 30)

        return after_registration([STACK.load_balancing.target_group], check)

    @pulumi.runtime.test
    def test_load_balancer_in_public_subnets(self):
        def check():
            alb = inputs_of(names.LOAD_BALANCER)
            assert alb["internal"] is False
            assert alb["loadBalancerType"] == "application"
            assert alb["securityGroups"] == [f"{names.SECURITY_GROUP}-id"]
            assert alb["subnets"] == [f"{names.public_subnet(i)}-id" for i in range(len(ZONES))]

        return after_registration([STACK.load_balancing.load_balancer], check)

    @pulumi.runtime.test
    def test_listener_and_attachment_wiring(self):
        lb = STACK.load_balancing

        def check(args):
            listener_lb, attachment_tg, tg_arn, group_name = args
            assert listener_lb == ALB_ARN
            assert attachment_tg == tg_arn
            assert group_name == names.AUTOSCALING_GROUP
            listener = inputs_of(names.LISTENER)
            assert (listener["port"], listener["protocol"]) == (80, "HTTP")
            assert listener["defaultActions"] == [{"type": "forward", "targetGroupArn": tg_arn}]

        return pulumi.Output.all(
            lb.listener.load_balancer_arn,
            lb.attachment.lb_target_group_arn,
            lb.target_group.arn,
            lb.attachment.autoscaling_group_name,
        ).apply(check)


class TestScaling:
    """Tests for the policies and request-count alarms."""

    @pulumi.runtime.test
    def test_alarm_dimension_derived_from_arn(self):
        scaling = STACK.scaling

        def check(args):
            shared, high, low = args
            assert shared == ALB_DIMENSION
            assert high == {"LoadBalancer": ALB_DIMENSION}
            assert low == {"LoadBalancer": ALB_DIMENSION}

        return pulumi.Output.all(
            scaling.load_balancer_dimension,
            scaling.high_request_alarm.dimensions,
            scaling.low_request_alarm.dimensions,
        ).apply(check)

    @pulumi.runtime.test
    def test_alarm_definitions(self):
        scaling = STACK.scaling

        def check():
            high = inputs_of(names.HIGH_REQUEST_ALARM)
            low = inputs_of(names.LOW_REQUEST_ALARM)
            for alarm in (high, low):
                assert alarm["namespace"] == "AWS/ApplicationELB"
                assert alarm["metricName"] == "RequestCount"
                assert alarm["statistic"] == "Sum"
            assert high["comparisonOperator"] == "GreaterThanThreshold"
            assert low["comparisonOperator"] == "LessThanThreshold"
            assert (high["threshold"], high["period"], high["evaluationPeriods"]) == (30, 60, 1)
            assert (low["threshold"], low["period"], low["evaluationPeriods"]) == (10, 120, 3)
            assert high["threshold"] > low["threshold"]
            assert high["alarmActions"] == [f"{MOCK_ARN_PREFIX}{names.SCALE_UP_POLICY}"]
            assert low["alarmActions"] == [f"{MOCK_ARN_PREFIX}{names.SCALE_DOWN_POLICY}"]

        return after_registration([scaling.high_request_alarm, scaling.low_request_alarm], check)

    @pulumi.runtime.test
    def test_policies(self):
        scaling = STACK.scaling

        def check():
            up = inputs_of(names.SCALE_UP_POLICY)
            down = inputs_of(names.SCALE_DOWN_POLICY)
            for policy in (up, down):
                assert policy["adjustmentType"] == "ChangeInCapacity"
                assert policy["cooldown"] == 300
                assert policy["autoscalingGroupName"] == names.AUTOSCALING_GROUP
            assert (up["scalingAdjustment"], down["scalingAdjustment"]) == (1, -1)

        return after_registration([scaling.scale_up_policy, scaling.scale_down_policy], check)


class TestReferences:
    """Tests that the declared stack matches its dependency model."""

    @pulumi.runtime.test
    def test_every_modelled_resource_is_declared(self):
        graph = build_stack_graph(STACK.settings)

        def check():
            declared = {
                name: typ
                for name, (typ, _) in MOCKS.resources.items()
                if not typ.startswith("pulumi:")
            }
            assert set(declared) == set(graph.names())
            for node in graph.nodes:
                assert declared[node.name] == node.kind.value

        return after_registration(STACK.all_resources(), check)

    @pulumi.runtime.test
    def test_modelled_dependencies_match_inputs(self):
        graph = build_stack_graph(STACK.settings)
        # Ordering-only edges that no input carries
        explicit = {names.NAT_EIP: {names.INTERNET_GATEWAY}}

        def check():
            declared = set(graph.names())
            for node in graph.nodes:
                inputs = {
                    key: value
                    for key, value in inputs_of(node.name).items()
                    if key not in ("tags", "tagSpecifications")
                }
                referenced = referenced_names(inputs, declared) - {node.name}
                referenced |= explicit.get(node.name, set())
                assert referenced == set(node.dependencies), node.name

        return after_registration(STACK.all_resources(), check)
