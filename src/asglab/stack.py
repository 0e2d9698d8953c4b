"""Assembly of the lab stack.

Declares every tier in dependency order and exports the outputs operators
need: the load balancer's DNS name to generate traffic against, and the
identifiers of the group, VPC and launch template for inspection.
"""

import logging
from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from asglab.compute import ComputeResources, create_compute
from asglab.config import ConfigError, StackSettings
from asglab.load_balancer import LoadBalancerResources, create_load_balancer
from asglab.network import NetworkResources, create_network, create_security_group
from asglab.scaling import ScalingResources, create_scaling
from asglab.tagging import generate_stack_tags

logger = logging.getLogger(__name__)


@dataclass
class StackResources:
    """Everything the lab stack declares."""

    settings: StackSettings
    network: NetworkResources
    security_group: aws.ec2.SecurityGroup
    compute: ComputeResources
    load_balancing: LoadBalancerResources
    scaling: ScalingResources

    def all_resources(self) -> list[pulumi.Resource]:
        """Every resource the stack declares, in declaration order."""
        return [
            self.network.vpc,
            self.network.internet_gateway,
            *self.network.public_subnets,
            *self.network.private_subnets,
            self.network.nat_eip,
            self.network.nat_gateway,
            self.network.public_route_table,
            self.network.private_route_table,
            *self.network.route_table_associations,
            self.security_group,
            self.compute.launch_template,
            self.compute.autoscaling_group,
            self.load_balancing.target_group,
            self.load_balancing.load_balancer,
            self.load_balancing.listener,
            self.load_balancing.attachment,
            self.scaling.scale_up_policy,
            self.scaling.scale_down_policy,
            self.scaling.high_request_alarm,
            self.scaling.low_request_alarm,
        ]


def build_stack(settings: StackSettings) -> StackResources:
    """Declare the lab resources.

    Raises:
        ConfigError: If the settings are inconsistent; nothing is declared then
    """
    settings.validate()
    logger.debug(f"Declaring lab stack: {settings.summary()}")
    tags = generate_stack_tags(settings.environment)

    network = create_network(settings, tags)
    security_group = create_security_group(network, settings, tags)
    compute = create_compute(settings, network, security_group, tags)
    load_balancing = create_load_balancer(
        network, security_group, compute.autoscaling_group, tags
    )
    scaling = create_scaling(
        settings, compute.autoscaling_group, load_balancing.load_balancer, tags
    )

    return StackResources(
        settings=settings,
        network=network,
        security_group=security_group,
        compute=compute,
        load_balancing=load_balancing,
        scaling=scaling,
    )


def export_outputs(resources: StackResources) -> None:
    pulumi.export("albDnsName", resources.load_balancing.load_balancer.dns_name)
    pulumi.export("autoScalingGroupName", resources.compute.autoscaling_group.name)
    pulumi.export("vpcId", resources.network.vpc.id)
    pulumi.export("launchTemplateId", resources.compute.launch_template.id)


def run() -> StackResources:
    """Pulumi program body: load settings, declare resources, export outputs."""
    settings = StackSettings.from_pulumi_config()
    pulumi.log.info(f"Autoscaling lab: {settings.summary()}")
    try:
        resources = build_stack(settings)
    except ConfigError as e:
        pulumi.log.error(str(e))
        raise
    export_outputs(resources)
    return resources
