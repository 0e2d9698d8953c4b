"""Network tier: VPC, subnets, routing and the web security group.

Instances live in private subnets behind a single NAT gateway; the load
balancer lives in the public subnets. One public and one private subnet is
created per availability zone.
"""

import ipaddress
import logging
from dataclasses import dataclass
from itertools import islice

import pulumi
import pulumi_aws as aws

from asglab import names
from asglab.config import SUBNET_PREFIX_LENGTH, ConfigError, StackSettings
from asglab.tagging import StackTags, with_name

logger = logging.getLogger(__name__)

ANYWHERE = "0.0.0.0/0"
HTTP_PORT = 80
SSH_PORT = 22


@dataclass
class SubnetLayout:
    """CIDR blocks for the per-AZ subnets."""

    public: list[str]
    private: list[str]


@dataclass
class NetworkResources:
    """Network tier resources."""

    vpc: aws.ec2.Vpc
    internet_gateway: aws.ec2.InternetGateway
    public_subnets: list[aws.ec2.Subnet]
    private_subnets: list[aws.ec2.Subnet]
    nat_eip: aws.ec2.Eip
    nat_gateway: aws.ec2.NatGateway
    public_route_table: aws.ec2.RouteTable
    private_route_table: aws.ec2.RouteTable
    route_table_associations: list[aws.ec2.RouteTableAssociation]

    @property
    def public_subnet_ids(self) -> list[pulumi.Output[str]]:
        return [subnet.id for subnet in self.public_subnets]

    @property
    def private_subnet_ids(self) -> list[pulumi.Output[str]]:
        return [subnet.id for subnet in self.private_subnets]


def subnet_layout(vpc_cidr: str, az_count: int) -> SubnetLayout:
    """Carve the VPC block into /20 subnets: public ones first, then private.

    Raises:
        ConfigError: If the block is invalid or too small for 2 * az_count subnets
    """
    needed = 2 * az_count
    try:
        vpc = ipaddress.IPv4Network(vpc_cidr)
        # subnets() is lazy, so a bad prefix only fails on the first block
        blocks = vpc.subnets(new_prefix=SUBNET_PREFIX_LENGTH)
        cidrs = [str(block) for block in islice(blocks, needed)]
    except ValueError as e:
        raise ConfigError(
            f"Cannot split {vpc_cidr} into /{SUBNET_PREFIX_LENGTH} subnets: {e}"
        ) from e

    if len(cidrs) < needed:
        raise ConfigError(f"{vpc_cidr} is too small for {needed} subnets")

    return SubnetLayout(public=cidrs[:az_count], private=cidrs[az_count:])


def available_zones(count: int) -> list[str]:
    """Names of the first `count` available AZs in the provider's region."""
    zones = aws.get_availability_zones(state="available").names
    if len(zones) < count:
        raise ConfigError(f"Region has {len(zones)} available AZs, {count} requested")
    return list(zones[:count])


def create_network(settings: StackSettings, tags: StackTags) -> NetworkResources:
    """Create the VPC with public/private subnets and a single NAT gateway."""
    zones = available_zones(settings.availability_zones)
    layout = subnet_layout(settings.vpc_cidr, settings.availability_zones)
    logger.debug(f"Subnet layout across {zones}: public={layout.public} private={layout.private}")

    vpc = aws.ec2.Vpc(
        names.VPC,
        cidr_block=settings.vpc_cidr,
        enable_dns_hostnames=True,
        enable_dns_support=True,
        tags=with_name(tags, names.VPC),
    )

    igw = aws.ec2.InternetGateway(
        names.INTERNET_GATEWAY,
        vpc_id=vpc.id,
        tags=with_name(tags, names.INTERNET_GATEWAY),
    )

    public_subnets = [
        aws.ec2.Subnet(
            names.public_subnet(i),
            vpc_id=vpc.id,
            cidr_block=cidr,
            availability_zone=zone,
            map_public_ip_on_launch=True,
            tags=with_name(tags, names.public_subnet(i)),
        )
        for i, (zone, cidr) in enumerate(zip(zones, layout.public))
    ]
    private_subnets = [
        aws.ec2.Subnet(
            names.private_subnet(i),
            vpc_id=vpc.id,
            cidr_block=cidr,
            availability_zone=zone,
            tags=with_name(tags, names.private_subnet(i)),
        )
        for i, (zone, cidr) in enumerate(zip(zones, layout.private))
    ]

    # The EIP can only be associated once the VPC has an internet gateway
    nat_eip = aws.ec2.Eip(
        names.NAT_EIP,
        domain="vpc",
        tags=with_name(tags, names.NAT_EIP),
        opts=pulumi.ResourceOptions(depends_on=[igw]),
    )
    nat_gateway = aws.ec2.NatGateway(
        names.NAT_GATEWAY,
        allocation_id=nat_eip.id,
        subnet_id=public_subnets[0].id,
        tags=with_name(tags, names.NAT_GATEWAY),
    )

    public_route_table = aws.ec2.RouteTable(
        names.PUBLIC_ROUTE_TABLE,
        vpc_id=vpc.id,
        routes=[aws.ec2.RouteTableRouteArgs(cidr_block=ANYWHERE, gateway_id=igw.id)],
        tags=with_name(tags, names.PUBLIC_ROUTE_TABLE),
    )
    private_route_table = aws.ec2.RouteTable(
        names.PRIVATE_ROUTE_TABLE,
        vpc_id=vpc.id,
        routes=[aws.ec2.RouteTableRouteArgs(cidr_block=ANYWHERE, nat_gateway_id=nat_gateway.id)],
        tags=with_name(tags, names.PRIVATE_ROUTE_TABLE),
    )

    associations = [
        aws.ec2.RouteTableAssociation(
            names.public_route_association(i),
            subnet_id=subnet.id,
            route_table_id=public_route_table.id,
        )
        for i, subnet in enumerate(public_subnets)
    ]
    associations.extend(
        aws.ec2.RouteTableAssociation(
            names.private_route_association(i),
            subnet_id=subnet.id,
            route_table_id=private_route_table.id,
        )
        for i, subnet in enumerate(private_subnets)
    )

    return NetworkResources(
        vpc=vpc,
        internet_gateway=igw,
        public_subnets=public_subnets,
        private_subnets=private_subnets,
        nat_eip=nat_eip,
        nat_gateway=nat_gateway,
        public_route_table=public_route_table,
        private_route_table=private_route_table,
        route_table_associations=associations,
    )


def create_security_group(
    network: NetworkResources, settings: StackSettings, tags: StackTags
) -> aws.ec2.SecurityGroup:
    """Security group shared by the load balancer and the instances.

    Allows HTTP from anywhere, SSH from the configured CIDR, all egress.
    """
    return aws.ec2.SecurityGroup(
        names.SECURITY_GROUP,
        vpc_id=network.vpc.id,
        description="Security group for web instances",
        ingress=[
            aws.ec2.SecurityGroupIngressArgs(
                protocol="tcp",
                from_port=HTTP_PORT,
                to_port=HTTP_PORT,
                cidr_blocks=[ANYWHERE],
            ),
            aws.ec2.SecurityGroupIngressArgs(
                protocol="tcp",
                from_port=SSH_PORT,
                to_port=SSH_PORT,
                cidr_blocks=[settings.ssh_cidr],
            ),
        ],
        egress=[
            aws.ec2.SecurityGroupEgressArgs(
                protocol="-1",
                from_port=0,
                to_port=0,
                cidr_blocks=[ANYWHERE],
            ),
        ],
        tags=with_name(tags, names.SECURITY_GROUP),
    )
