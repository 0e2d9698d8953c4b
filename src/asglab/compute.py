"""Compute tier: AMI lookup, launch template and autoscaling group."""

import logging
from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from asglab import names
from asglab.config import StackSettings
from asglab.network import NetworkResources
from asglab.tagging import StackTags, asg_tags, with_name
from asglab.user_data import encode_user_data, render_user_data

logger = logging.getLogger(__name__)

AMI_OWNER = "amazon"
AMI_NAME_PATTERN = "amzn2-ami-hvm-2.0.*-x86_64-gp2"
ROOT_DEVICE_NAME = "/dev/xvda"
ROOT_VOLUME_TYPE = "gp2"
LATEST_VERSION = "$Latest"
HEALTH_CHECK_TYPE = "EC2"


@dataclass
class ComputeResources:
    """Compute tier resources."""

    launch_template: aws.ec2.LaunchTemplate
    autoscaling_group: aws.autoscaling.Group


def lookup_ami() -> pulumi.Output[str]:
    """ID of the most recent Amazon Linux 2 HVM gp2 x86_64 image."""
    return aws.ec2.get_ami_output(
        owners=[AMI_OWNER],
        most_recent=True,
        filters=[
            aws.ec2.GetAmiFilterArgs(name="name", values=[AMI_NAME_PATTERN]),
        ],
    ).id


def create_launch_template(
    settings: StackSettings,
    security_group: aws.ec2.SecurityGroup,
    tags: StackTags,
    image_id: pulumi.Input[str] | None = None,
) -> aws.ec2.LaunchTemplate:
    """Launch template for lab instances. No key pair is attached.

    Args:
        settings: Stack settings (instance type, volume size, stress schedule)
        security_group: Group attached to each instance
        tags: Common tags; instances additionally get a Name tag
        image_id: AMI to launch; looked up if not given
    """
    image_id = image_id if image_id is not None else lookup_ami()
    user_data = encode_user_data(render_user_data(settings))

    instance_tags = {
        "Name": names.INSTANCE_NAME,
        "Environment": tags["Environment"],
        "ManagedBy": tags["ManagedBy"],
    }

    return aws.ec2.LaunchTemplate(
        names.LAUNCH_TEMPLATE,
        image_id=image_id,
        instance_type=settings.instance_type,
        vpc_security_group_ids=[security_group.id],
        user_data=user_data,
        block_device_mappings=[
            aws.ec2.LaunchTemplateBlockDeviceMappingArgs(
                device_name=ROOT_DEVICE_NAME,
                ebs=aws.ec2.LaunchTemplateBlockDeviceMappingEbsArgs(
                    volume_size=settings.volume_size,
                    volume_type=ROOT_VOLUME_TYPE,
                    delete_on_termination="true",
                ),
            )
        ],
        tag_specifications=[
            aws.ec2.LaunchTemplateTagSpecificationArgs(
                resource_type="instance",
                tags=instance_tags,
            )
        ],
        tags=with_name(tags, names.LAUNCH_TEMPLATE),
    )


def create_autoscaling_group(
    settings: StackSettings,
    launch_template: aws.ec2.LaunchTemplate,
    network: NetworkResources,
    tags: StackTags,
) -> aws.autoscaling.Group:
    """Autoscaling group spanning the private subnets."""
    logger.debug(
        f"Autoscaling group capacity: min={settings.min_size} "
        f"desired={settings.desired_capacity} max={settings.max_size}"
    )
    return aws.autoscaling.Group(
        names.AUTOSCALING_GROUP,
        launch_template=aws.autoscaling.GroupLaunchTemplateArgs(
            id=launch_template.id,
            version=LATEST_VERSION,
        ),
        vpc_zone_identifiers=network.private_subnet_ids,
        min_size=settings.min_size,
        max_size=settings.max_size,
        desired_capacity=settings.desired_capacity,
        health_check_type=HEALTH_CHECK_TYPE,
        health_check_grace_period=settings.health_check_grace_period,
        tags=asg_tags(tags),
    )


def create_compute(
    settings: StackSettings,
    network: NetworkResources,
    security_group: aws.ec2.SecurityGroup,
    tags: StackTags,
) -> ComputeResources:
    """Create the launch template and the autoscaling group that uses it."""
    launch_template = create_launch_template(settings, security_group, tags)
    group = create_autoscaling_group(settings, launch_template, network, tags)
    return ComputeResources(launch_template=launch_template, autoscaling_group=group)
