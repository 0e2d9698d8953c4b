"""Resource tagging utilities."""

from typing import TypedDict

import pulumi_aws as aws

from asglab import names

MANAGED_BY = "pulumi"


class StackTags(TypedDict):
    """Tags applied to every taggable lab resource."""

    Environment: str
    ManagedBy: str
    Project: str


def generate_stack_tags(environment: str, project: str = names.PROJECT_TAG) -> StackTags:
    """Generate the standard tags for lab resources.

    Args:
        environment: Environment tag value (e.g. "test")
        project: Project tag value

    Returns:
        Dictionary of tags to apply to resources
    """
    return StackTags(Environment=environment, ManagedBy=MANAGED_BY, Project=project)


def with_name(tags: StackTags, name: str) -> dict[str, str]:
    """Copy of tags with a Name tag added."""
    return {**tags, "Name": name}


def asg_tags(
    tags: StackTags, instance_name: str = names.INSTANCE_NAME
) -> list[aws.autoscaling.GroupTagArgs]:
    """Build the autoscaling group tag list.

    Name and Project are propagated to launched instances; the remaining tags
    only label the group itself.
    """
    propagated = {"Name": instance_name, "Project": tags["Project"]}
    group_only = {k: v for k, v in tags.items() if k not in propagated}

    result = [
        aws.autoscaling.GroupTagArgs(key=key, value=value, propagate_at_launch=True)
        for key, value in propagated.items()
    ]
    result.extend(
        aws.autoscaling.GroupTagArgs(key=key, value=value, propagate_at_launch=False)
        for key, value in group_only.items()
    )
    return result


def format_tags(tags: dict[str, str]) -> str:
    """Format tags as space-separated key=value pairs for display."""
    return " ".join(f"{k}={v}" for k, v in tags.items())
