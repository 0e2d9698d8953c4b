"""Resource dependency model of the lab stack.

The provisioning engine resolves the real dependency graph from Output
references at deploy time. This module keeps a declarative copy of that graph
so referential integrity (every input refers to a declared resource) and
declaration order can be checked offline, and so the CLI can print a plan.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from asglab import names
from asglab.config import StackSettings

logger = logging.getLogger(__name__)


class GraphError(Exception):
    """Raised when the resource graph is inconsistent."""

    pass


class ResourceKind(Enum):
    """AWS resource types declared by the lab (Pulumi type tokens)."""

    VPC = "aws:ec2/vpc:Vpc"
    INTERNET_GATEWAY = "aws:ec2/internetGateway:InternetGateway"
    SUBNET = "aws:ec2/subnet:Subnet"
    ELASTIC_IP = "aws:ec2/eip:Eip"
    NAT_GATEWAY = "aws:ec2/natGateway:NatGateway"
    ROUTE_TABLE = "aws:ec2/routeTable:RouteTable"
    ROUTE_TABLE_ASSOCIATION = "aws:ec2/routeTableAssociation:RouteTableAssociation"
    SECURITY_GROUP = "aws:ec2/securityGroup:SecurityGroup"
    LAUNCH_TEMPLATE = "aws:ec2/launchTemplate:LaunchTemplate"
    AUTOSCALING_GROUP = "aws:autoscaling/group:Group"
    TARGET_GROUP = "aws:lb/targetGroup:TargetGroup"
    LOAD_BALANCER = "aws:lb/loadBalancer:LoadBalancer"
    LISTENER = "aws:lb/listener:Listener"
    AUTOSCALING_ATTACHMENT = "aws:autoscaling/attachment:Attachment"
    SCALING_POLICY = "aws:autoscaling/policy:Policy"
    METRIC_ALARM = "aws:cloudwatch/metricAlarm:MetricAlarm"

    @property
    def short_name(self) -> str:
        """Type name without the provider module, e.g. 'LoadBalancer'."""
        return self.value.rsplit(":", 1)[-1]


@dataclass
class ResourceNode:
    """A declared resource and the resources whose outputs it consumes."""

    name: str
    kind: ResourceKind
    dependencies: list[str] = field(default_factory=list)
    level: int = 0  # Filled in by ResourceGraph.levels()


@dataclass
class ResourceGraph:
    """Resources in declaration order with their dependency edges."""

    nodes: list[ResourceNode] = field(default_factory=list)

    def add(self, name: str, kind: ResourceKind, *dependencies: str) -> ResourceNode:
        """Declare a resource.

        Raises:
            GraphError: If a resource with the same name is already declared
        """
        if self.get(name) is not None:
            raise GraphError(f"Duplicate resource name: {name}")
        node = ResourceNode(name=name, kind=kind, dependencies=list(dependencies))
        self.nodes.append(node)
        return node

    def get(self, name: str) -> ResourceNode | None:
        """Get node by name."""
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def names(self) -> list[str]:
        return [node.name for node in self.nodes]

    def dependents(self, name: str) -> list[ResourceNode]:
        """Nodes that consume the named resource."""
        return [node for node in self.nodes if name in node.dependencies]

    def dangling_references(self) -> list[tuple[str, str]]:
        """Return (resource, missing dependency) pairs."""
        declared = set(self.names())
        return [
            (node.name, dep)
            for node in self.nodes
            for dep in node.dependencies
            if dep not in declared
        ]

    def levels(self) -> list[list[ResourceNode]]:
        """Group nodes into dependency levels (level 0 = no dependencies).

        Within a level, nodes keep declaration order.

        Raises:
            GraphError: On dangling references or cycles
        """
        dangling = self.dangling_references()
        if dangling:
            details = ", ".join(f"{src} -> {dep}" for src, dep in dangling)
            raise GraphError(f"Dangling references: {details}")

        remaining = {node.name: set(node.dependencies) for node in self.nodes}
        result: list[list[ResourceNode]] = []
        while remaining:
            ready = [
                node for node in self.nodes if node.name in remaining and not remaining[node.name]
            ]
            if not ready:
                raise GraphError(f"Dependency cycle among: {', '.join(sorted(remaining))}")
            for node in ready:
                node.level = len(result)
                del remaining[node.name]
            for deps in remaining.values():
                deps.difference_update(node.name for node in ready)
            result.append(ready)
        return result

    def order(self) -> list[ResourceNode]:
        """Topological order, stable with respect to declaration order."""
        indegree = {node.name: len(set(node.dependencies)) for node in self.nodes}
        queue = deque(node for node in self.nodes if indegree[node.name] == 0)
        ordered: list[ResourceNode] = []
        while queue:
            node = queue.popleft()
            ordered.append(node)
            for dependent in self.dependents(node.name):
                indegree[dependent.name] -= 1
                if indegree[dependent.name] == 0:
                    queue.append(dependent)
        if len(ordered) != len(self.nodes):
            stuck = sorted(set(self.names()) - {node.name for node in ordered})
            raise GraphError(f"Dependency cycle among: {', '.join(stuck)}")
        return ordered

    def validate(self) -> None:
        """Check referential integrity and declaration order.

        Raises:
            GraphError: On dangling references, cycles, or a resource declared
                before one of its dependencies
        """
        self.levels()
        seen: set[str] = set()
        for node in self.nodes:
            early = [dep for dep in node.dependencies if dep not in seen]
            if early:
                raise GraphError(
                    f"{node.name} is declared before its dependencies: {', '.join(early)}"
                )
            seen.add(node.name)
        logger.debug(f"Resource graph valid: {len(self.nodes)} resources")


def build_stack_graph(settings: StackSettings | None = None) -> ResourceGraph:
    """Declare the lab stack's resources and their references.

    Mirrors the builders in asglab.network, asglab.compute,
    asglab.load_balancer and asglab.scaling.
    """
    settings = settings or StackSettings()
    graph = ResourceGraph()
    zones = range(settings.availability_zones)

    # Network
    graph.add(names.VPC, ResourceKind.VPC)
    graph.add(names.INTERNET_GATEWAY, ResourceKind.INTERNET_GATEWAY, names.VPC)
    for i in zones:
        graph.add(names.public_subnet(i), ResourceKind.SUBNET, names.VPC)
    for i in zones:
        graph.add(names.private_subnet(i), ResourceKind.SUBNET, names.VPC)
    graph.add(names.NAT_EIP, ResourceKind.ELASTIC_IP, names.INTERNET_GATEWAY)
    graph.add(names.NAT_GATEWAY, ResourceKind.NAT_GATEWAY, names.NAT_EIP, names.public_subnet(0))
    graph.add(names.PUBLIC_ROUTE_TABLE, ResourceKind.ROUTE_TABLE, names.VPC, names.INTERNET_GATEWAY)
    graph.add(names.PRIVATE_ROUTE_TABLE, ResourceKind.ROUTE_TABLE, names.VPC, names.NAT_GATEWAY)
    for i in zones:
        graph.add(
            names.public_route_association(i),
            ResourceKind.ROUTE_TABLE_ASSOCIATION,
            names.public_subnet(i),
            names.PUBLIC_ROUTE_TABLE,
        )
    for i in zones:
        graph.add(
            names.private_route_association(i),
            ResourceKind.ROUTE_TABLE_ASSOCIATION,
            names.private_subnet(i),
            names.PRIVATE_ROUTE_TABLE,
        )
    graph.add(names.SECURITY_GROUP, ResourceKind.SECURITY_GROUP, names.VPC)

    # Compute
    graph.add(names.LAUNCH_TEMPLATE, ResourceKind.LAUNCH_TEMPLATE, names.SECURITY_GROUP)
    graph.add(
        names.AUTOSCALING_GROUP,
        ResourceKind.AUTOSCALING_GROUP,
        names.LAUNCH_TEMPLATE,
        *(names.private_subnet(i) for i in zones),
    )

    # Load balancing
    graph.add(names.TARGET_GROUP, ResourceKind.TARGET_GROUP, names.VPC)
    graph.add(
        names.LOAD_BALANCER,
        ResourceKind.LOAD_BALANCER,
        names.SECURITY_GROUP,
        *(names.public_subnet(i) for i in zones),
    )
    graph.add(names.LISTENER, ResourceKind.LISTENER, names.LOAD_BALANCER, names.TARGET_GROUP)
    graph.add(
        names.ATTACHMENT,
        ResourceKind.AUTOSCALING_ATTACHMENT,
        names.AUTOSCALING_GROUP,
        names.TARGET_GROUP,
    )

    # Scaling
    graph.add(names.SCALE_UP_POLICY, ResourceKind.SCALING_POLICY, names.AUTOSCALING_GROUP)
    graph.add(names.SCALE_DOWN_POLICY, ResourceKind.SCALING_POLICY, names.AUTOSCALING_GROUP)
    graph.add(
        names.HIGH_REQUEST_ALARM,
        ResourceKind.METRIC_ALARM,
        names.SCALE_UP_POLICY,
        names.LOAD_BALANCER,
    )
    graph.add(
        names.LOW_REQUEST_ALARM,
        ResourceKind.METRIC_ALARM,
        names.SCALE_DOWN_POLICY,
        names.LOAD_BALANCER,
    )

    return graph
