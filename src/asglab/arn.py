"""ARN parsing helpers.

CloudWatch's AWS/ApplicationELB metrics are keyed by a `LoadBalancer`
dimension that is the tail of the load balancer ARN:

    arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/web-alb/50dc6c495c0c9188
                                                                  -> app/web-alb/50dc6c495c0c9188
"""

from dataclasses import dataclass

LOAD_BALANCER_RESOURCE_PREFIX = "loadbalancer/"

# app = application, net = network, gwy = gateway load balancers
LOAD_BALANCER_TYPES = ("app", "net", "gwy")


class ArnError(ValueError):
    """Raised when a string is not the ARN it was expected to be."""

    pass


@dataclass(frozen=True)
class Arn:
    """Components of an Amazon Resource Name."""

    partition: str
    service: str
    region: str
    account: str
    resource: str

    def __str__(self) -> str:
        return f"arn:{self.partition}:{self.service}:{self.region}:{self.account}:{self.resource}"


def parse_arn(value: str) -> Arn:
    """Split an ARN into its components.

    The resource part may itself contain ':' or '/' and is kept whole.

    Raises:
        ArnError: If the value does not have the arn:partition:service:region:account:resource shape
    """
    parts = value.split(":", 5)
    if len(parts) != 6 or parts[0] != "arn":
        raise ArnError(f"Not an ARN: {value!r}")
    _, partition, service, region, account, resource = parts
    if not partition or not service or not resource:
        raise ArnError(f"Incomplete ARN: {value!r}")
    return Arn(partition, service, region, account, resource)


def _is_dimension(value: str) -> bool:
    segments = value.split("/")
    return len(segments) == 3 and segments[0] in LOAD_BALANCER_TYPES and all(segments)


def load_balancer_dimension(value: str) -> str:
    """Return the CloudWatch `LoadBalancer` dimension for a load balancer.

    Accepts either the load balancer ARN or an already-derived dimension, so
    applying it twice gives the same result.

    Args:
        value: Load balancer ARN or dimension value

    Returns:
        Dimension value of the form app/<name>/<id>

    Raises:
        ArnError: If value is neither a load balancer ARN nor a dimension
    """
    if _is_dimension(value):
        return value

    arn = parse_arn(value)
    if arn.service != "elasticloadbalancing":
        raise ArnError(f"Not an Elastic Load Balancing ARN: {value!r}")
    if not arn.resource.startswith(LOAD_BALANCER_RESOURCE_PREFIX):
        raise ArnError(f"Not a load balancer ARN: {value!r}")

    dimension = arn.resource.removeprefix(LOAD_BALANCER_RESOURCE_PREFIX)
    if not _is_dimension(dimension):
        raise ArnError(f"Unexpected load balancer resource in ARN: {arn.resource!r}")
    return dimension
