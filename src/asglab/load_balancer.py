"""Load balancing tier: target group, application load balancer, listener."""

from dataclasses import dataclass

import pulumi_aws as aws

from asglab import names
from asglab.network import HTTP_PORT, NetworkResources
from asglab.tagging import StackTags, with_name


@dataclass
class LoadBalancerResources:
    """Load balancing tier resources."""

    target_group: aws.lb.TargetGroup
    load_balancer: aws.lb.LoadBalancer
    listener: aws.lb.Listener
    attachment: aws.autoscaling.Attachment


def create_target_group(network: NetworkResources, tags: StackTags) -> aws.lb.TargetGroup:
    return aws.lb.TargetGroup(
        names.TARGET_GROUP,
        port=HTTP_PORT,
        protocol="HTTP",
        vpc_id=network.vpc.id,
        target_type="instance",
        health_check=aws.lb.TargetGroupHealthCheckArgs(
            enabled=True,
            path="/",
            port=str(HTTP_PORT),
            protocol="HTTP",
            healthy_threshold=2,
            unhealthy_threshold=2,
            timeout=3,
            interval=30,
        ),
        tags=with_name(tags, names.TARGET_GROUP),
    )


def create_load_balancer(
    network: NetworkResources,
    security_group: aws.ec2.SecurityGroup,
    autoscaling_group: aws.autoscaling.Group,
    tags: StackTags,
) -> LoadBalancerResources:
    """Internet-facing ALB forwarding HTTP to the autoscaling group's instances."""
    target_group = create_target_group(network, tags)

    alb = aws.lb.LoadBalancer(
        names.LOAD_BALANCER,
        internal=False,
        load_balancer_type="application",
        security_groups=[security_group.id],
        subnets=network.public_subnet_ids,
        tags=with_name(tags, names.LOAD_BALANCER),
    )

    listener = aws.lb.Listener(
        names.LISTENER,
        load_balancer_arn=alb.arn,
        port=HTTP_PORT,
        protocol="HTTP",
        default_actions=[
            aws.lb.ListenerDefaultActionArgs(
                type="forward",
                target_group_arn=target_group.arn,
            )
        ],
    )

    # Registers every instance the group launches with the target group
    attachment = aws.autoscaling.Attachment(
        names.ATTACHMENT,
        autoscaling_group_name=autoscaling_group.name,
        lb_target_group_arn=target_group.arn,
    )

    return LoadBalancerResources(
        target_group=target_group,
        load_balancer=alb,
        listener=listener,
        attachment=attachment,
    )
