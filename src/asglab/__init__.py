"""asglab - autoscaling stress lab on AWS

A Pulumi program that stands up a small web tier (VPC, ALB, autoscaling group)
whose instances periodically stress themselves, plus the scaling policies and
request-count alarms that grow and shrink the group in response.

The asglab CLI inspects a stack's settings and dependency plan without needing
cloud credentials; `pulumi up` remains the provisioning entry point.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
