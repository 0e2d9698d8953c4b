"""Logical resource names of the lab stack.

Pulumi derives URNs (and, where no explicit name is given, physical names)
from these, so they must stay stable across deployments.
"""

VPC = "autoscaling-vpc"
INTERNET_GATEWAY = f"{VPC}-igw"
NAT_EIP = f"{VPC}-nat-eip"
NAT_GATEWAY = f"{VPC}-nat"
PUBLIC_ROUTE_TABLE = f"{VPC}-public-rt"
PRIVATE_ROUTE_TABLE = f"{VPC}-private-rt"

SECURITY_GROUP = "web-sg"
LAUNCH_TEMPLATE = "autoscaling-lt"
AUTOSCALING_GROUP = "autoscaling-group"
TARGET_GROUP = "web-tg"
LOAD_BALANCER = "web-alb"
LISTENER = "web-listener"
ATTACHMENT = "asg-alb-attachment"
SCALE_UP_POLICY = "scale-up-policy"
SCALE_DOWN_POLICY = "scale-down-policy"
HIGH_REQUEST_ALARM = "high-request-alarm"
LOW_REQUEST_ALARM = "low-request-alarm"

INSTANCE_NAME = "autoscaling-instance"
PROJECT_TAG = "autoscaling-stress-test"


def public_subnet(index: int) -> str:
    return f"{VPC}-public-{index + 1}"


def private_subnet(index: int) -> str:
    return f"{VPC}-private-{index + 1}"


def public_route_association(index: int) -> str:
    return f"{VPC}-public-rta-{index + 1}"


def private_route_association(index: int) -> str:
    return f"{VPC}-private-rta-{index + 1}"
