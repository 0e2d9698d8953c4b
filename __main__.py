"""Pulumi program for the autoscaling stress lab (see asglab.stack)."""

from asglab.stack import run

run()
