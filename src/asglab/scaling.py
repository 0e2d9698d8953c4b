"""Scaling tier: step policies and the request-count alarms that trigger them.

The cloud provider evaluates the alarms and applies the policies; this module
only declares them. Both alarms watch the same load balancer's RequestCount,
so the ARN-derived dimension is resolved once and shared.
"""

import logging
from dataclasses import dataclass

import pulumi
import pulumi_aws as aws

from asglab import names
from asglab.arn import load_balancer_dimension
from asglab.config import StackSettings
from asglab.tagging import StackTags, with_name

logger = logging.getLogger(__name__)

ADJUSTMENT_TYPE = "ChangeInCapacity"
METRIC_NAMESPACE = "AWS/ApplicationELB"
METRIC_NAME = "RequestCount"
METRIC_STATISTIC = "Sum"


@dataclass(frozen=True)
class AlarmSpec:
    """One RequestCount alarm and the capacity change it triggers."""

    name: str
    policy_name: str
    comparison_operator: str
    threshold: int
    period: int
    evaluation_periods: int
    adjustment: int
    description: str


@dataclass
class ScalingResources:
    """Scaling tier resources."""

    scale_up_policy: aws.autoscaling.Policy
    scale_down_policy: aws.autoscaling.Policy
    high_request_alarm: aws.cloudwatch.MetricAlarm
    low_request_alarm: aws.cloudwatch.MetricAlarm
    load_balancer_dimension: pulumi.Output[str]


def alarm_specs(settings: StackSettings) -> tuple[AlarmSpec, AlarmSpec]:
    """Scale-up and scale-down alarm descriptions for the given settings."""
    scale_up = AlarmSpec(
        name=names.HIGH_REQUEST_ALARM,
        policy_name=names.SCALE_UP_POLICY,
        comparison_operator="GreaterThanThreshold",
        threshold=settings.scale_up_threshold,
        period=settings.scale_up_period,
        evaluation_periods=settings.scale_up_evaluation_periods,
        adjustment=1,
        description="Scale up",
    )
    scale_down = AlarmSpec(
        name=names.LOW_REQUEST_ALARM,
        policy_name=names.SCALE_DOWN_POLICY,
        comparison_operator="LessThanThreshold",
        threshold=settings.scale_down_threshold,
        period=settings.scale_down_period,
        evaluation_periods=settings.scale_down_evaluation_periods,
        adjustment=-1,
        description="Scale down",
    )
    return scale_up, scale_down


def create_policy(
    spec: AlarmSpec, autoscaling_group: aws.autoscaling.Group, cooldown: int
) -> aws.autoscaling.Policy:
    return aws.autoscaling.Policy(
        spec.policy_name,
        autoscaling_group_name=autoscaling_group.name,
        adjustment_type=ADJUSTMENT_TYPE,
        scaling_adjustment=spec.adjustment,
        cooldown=cooldown,
    )


def create_alarm(
    spec: AlarmSpec,
    policy: aws.autoscaling.Policy,
    dimension: pulumi.Input[str],
    tags: StackTags,
) -> aws.cloudwatch.MetricAlarm:
    return aws.cloudwatch.MetricAlarm(
        spec.name,
        comparison_operator=spec.comparison_operator,
        evaluation_periods=spec.evaluation_periods,
        metric_name=METRIC_NAME,
        namespace=METRIC_NAMESPACE,
        period=spec.period,
        statistic=METRIC_STATISTIC,
        threshold=spec.threshold,
        alarm_description=spec.description,
        alarm_actions=[policy.arn],
        dimensions={"LoadBalancer": dimension},
        tags=with_name(tags, spec.name),
    )


def create_scaling(
    settings: StackSettings,
    autoscaling_group: aws.autoscaling.Group,
    load_balancer: aws.lb.LoadBalancer,
    tags: StackTags,
) -> ScalingResources:
    """Create the +1/-1 policies and the alarms that invoke them."""
    scale_up, scale_down = alarm_specs(settings)
    logger.debug(
        f"Alarms: > {scale_up.threshold} over {scale_up.evaluation_periods}x{scale_up.period}s, "
        f"< {scale_down.threshold} over {scale_down.evaluation_periods}x{scale_down.period}s"
    )

    up_policy = create_policy(scale_up, autoscaling_group, settings.scaling_cooldown)
    down_policy = create_policy(scale_down, autoscaling_group, settings.scaling_cooldown)

    dimension = load_balancer.arn.apply(load_balancer_dimension)

    return ScalingResources(
        scale_up_policy=up_policy,
        scale_down_policy=down_policy,
        high_request_alarm=create_alarm(scale_up, up_policy, dimension, tags),
        low_request_alarm=create_alarm(scale_down, down_policy, dimension, tags),
        load_balancer_dimension=dimension,
    )
