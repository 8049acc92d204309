"""
VPC Module Functions
Creates VPC, public and private subnets, NAT gateways, route tables,
and security groups for EKS
"""

import pulumi
import pulumi_aws as aws
from typing import Dict, List, Any


def create_vpc(name: str, cidr: str, enable_dns_hostnames: bool = True,
               enable_dns_support: bool = True, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create VPC with DNS settings

    Args:
        name: VPC name
        cidr: VPC CIDR block
        enable_dns_hostnames: Enable DNS hostnames in VPC
        enable_dns_support: Enable DNS support in VPC
        tags: Additional tags

    Returns:
        Dict with vpc resource and outputs
    """
    tags = tags or {}

    vpc = aws.ec2.Vpc(
        f"{name}-vpc",
        cidr_block=cidr,
        enable_dns_hostnames=enable_dns_hostnames,
        enable_dns_support=enable_dns_support,
        tags={
            **tags,
            "Name": f"{name}-vpc",
            f"kubernetes.io/cluster/{name}": "shared",
            "Module": "vpc"
        }
    )

    return {
        "vpc": vpc,
        "vpc_id": vpc.id,
        "vpc_cidr_block": vpc.cidr_block
    }


def create_internet_gateway(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    tags = tags or {}

    igw = aws.ec2.InternetGateway(
        f"{name}-igw",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-igw",
            "Module": "vpc"
        }
    )

    return {
        "igw": igw,
        "igw_id": igw.id
    }


def create_subnets(name: str, tier: str, vpc_id: pulumi.Output[str], subnet_cidrs: List[str],
                   availability_zones: List[str], map_public_ip_on_launch: bool = False,
                   tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one subnet per CIDR, spread round-robin over availability zones

    Public subnets are tagged for internet-facing load balancers, private
    subnets for internal ones.

    Args:
        name: Resource name prefix
        tier: "public" or "private"
        vpc_id: VPC ID
        subnet_cidrs: List of CIDR blocks for subnets
        availability_zones: List of availability zones
        map_public_ip_on_launch: Auto-assign public IPs to instances
        tags: Additional tags

    Returns:
        Dict with subnet resources and outputs
    """
    tags = tags or {}
    elb_role = "kubernetes.io/role/elb" if tier == "public" else "kubernetes.io/role/internal-elb"

    subnets = []
    zones = []
    for i, cidr in enumerate(subnet_cidrs):
        zone = availability_zones[i % len(availability_zones)]
        subnet = aws.ec2.Subnet(
            f"{name}-{tier}-subnet-{i+1}",
            vpc_id=vpc_id,
            cidr_block=cidr,
            availability_zone=zone,
            map_public_ip_on_launch=map_public_ip_on_launch,
            tags={
                **tags,
                "Name": f"{name}-{tier}-subnet-{i+1}",
                "Type": tier,
                f"kubernetes.io/cluster/{name}": "shared",
                elb_role: "1",
                "Module": "vpc"
            }
        )
        subnets.append(subnet)
        zones.append(zone)

    return {
        "subnets": subnets,
        "subnet_ids": [subnet.id for subnet in subnets],
        "availability_zones": zones
    }


def create_nat_gateways(name: str, public_subnet_ids: List[pulumi.Output[str]], single_nat_gateway: bool = True,
                        igw=None, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create NAT gateways with elastic IPs in the public subnets

    Args:
        name: Resource name prefix
        public_subnet_ids: Public subnet IDs, one per availability zone
        single_nat_gateway: Share one NAT gateway across all zones
        igw: Internet gateway the NAT gateways depend on
        tags: Additional tags

    Returns:
        Dict with NAT gateway resources and outputs
    """
    tags = tags or {}
    subnet_ids = public_subnet_ids[:1] if single_nat_gateway else public_subnet_ids
    opts = pulumi.ResourceOptions(depends_on=[igw]) if igw else None

    eips = []
    nat_gateways = []
    for i, subnet_id in enumerate(subnet_ids):
        eip = aws.ec2.Eip(
            f"{name}-nat-eip-{i+1}",
            domain="vpc",
            tags={
                **tags,
                "Name": f"{name}-nat-eip-{i+1}",
                "Module": "vpc"
            },
            opts=opts
        )
        nat_gateway = aws.ec2.NatGateway(
            f"{name}-nat-{i+1}",
            allocation_id=eip.id,
            subnet_id=subnet_id,
            tags={
                **tags,
                "Name": f"{name}-nat-{i+1}",
                "Module": "vpc"
            },
            opts=opts
        )
        eips.append(eip)
        nat_gateways.append(nat_gateway)

    return {
        "eips": eips,
        "nat_gateways": nat_gateways,
        "nat_gateway_ids": [nat_gateway.id for nat_gateway in nat_gateways],
        "nat_public_ips": [eip.public_ip for eip in eips]
    }


def create_public_route_table(name: str, vpc_id: pulumi.Output[str], igw_id: pulumi.Output[str],
                              subnet_ids: List[pulumi.Output[str]], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create route table for public subnets

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        igw_id: Internet Gateway ID
        subnet_ids: List of subnet IDs to associate
        tags: Additional tags

    Returns:
        Dict with route table resources and outputs
    """
    tags = tags or {}

    route_table = aws.ec2.RouteTable(
        f"{name}-public-rt",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-public-rt",
            "Module": "vpc"
        }
    )

    route = aws.ec2.Route(
        f"{name}-public-route",
        route_table_id=route_table.id,
        destination_cidr_block="0.0.0.0/0",
        gateway_id=igw_id
    )

    associations = []
    for i, subnet_id in enumerate(subnet_ids):
        association = aws.ec2.RouteTableAssociation(
            f"{name}-public-rta-{i+1}",
            subnet_id=subnet_id,
            route_table_id=route_table.id
        )
        associations.append(association)

    return {
        "route_table": route_table,
        "route": route,
        "associations": associations,
        "route_table_id": route_table.id
    }


def create_private_route_tables(name: str, vpc_id: pulumi.Output[str], subnet_ids: List[pulumi.Output[str]],
                                nat_gateway_ids: List[pulumi.Output[str]],
                                tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create one route table per private subnet, default route via NAT

    Subnet i uses NAT gateway i, falling back to the shared gateway when
    there are fewer gateways than subnets. Without NAT gateways the
    tables only carry the local route.

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        subnet_ids: Private subnet IDs
        nat_gateway_ids: NAT gateway IDs (may be empty)
        tags: Additional tags

    Returns:
        Dict with route table resources and outputs
    """
    tags = tags or {}

    route_tables = []
    routes = []
    associations = []
    for i, subnet_id in enumerate(subnet_ids):
        route_table = aws.ec2.RouteTable(
            f"{name}-private-rt-{i+1}",
            vpc_id=vpc_id,
            tags={
                **tags,
                "Name": f"{name}-private-rt-{i+1}",
                "Module": "vpc"
            }
        )
        route_tables.append(route_table)

        if nat_gateway_ids:
            routes.append(aws.ec2.Route(
                f"{name}-private-route-{i+1}",
                route_table_id=route_table.id,
                destination_cidr_block="0.0.0.0/0",
                nat_gateway_id=nat_gateway_ids[min(i, len(nat_gateway_ids) - 1)]
            ))

        associations.append(aws.ec2.RouteTableAssociation(
            f"{name}-private-rta-{i+1}",
            subnet_id=subnet_id,
            route_table_id=route_table.id
        ))

    return {
        "route_tables": route_tables,
        "routes": routes,
        "associations": associations,
        "route_table_ids": [route_table.id for route_table in route_tables]
    }


def create_cluster_security_group(name: str, vpc_id: pulumi.Output[str], tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group for EKS cluster

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-cluster-sg",
        name_prefix=f"{name}-cluster-",
        description=f"EKS control plane security group for {name}",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-cluster-sg",
            "Module": "vpc"
        }
    )

    egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-egress",
        type="egress",
        from_port=0,
        to_port=0,
        protocol="-1",
        cidr_blocks=["0.0.0.0/0"],
        security_group_id=security_group.id
    )

    return {
        "security_group": security_group,
        "egress_rule": egress_rule,
        "security_group_id": security_group.id
    }


def create_node_security_group(name: str, vpc_id: pulumi.Output[str], cluster_sg_id: pulumi.Output[str],
                               tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create security group for EKS worker nodes

    Managed node groups without a launch template only get the cluster
    security group; attach this one to self-managed nodes or extra ENIs.

    Args:
        name: Resource name prefix
        vpc_id: VPC ID
        cluster_sg_id: Cluster security group ID
        tags: Additional tags

    Returns:
        Dict with security group resources and outputs
    """
    tags = tags or {}

    security_group = aws.ec2.SecurityGroup(
        f"{name}-node-sg",
        name_prefix=f"{name}-node-",
        description=f"EKS worker node security group for {name}",
        vpc_id=vpc_id,
        tags={
            **tags,
            "Name": f"{name}-node-sg",
            f"kubernetes.io/cluster/{name}": "owned",
            "Module": "vpc"
        }
    )

    # Node to node
    node_ingress_self = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-self",
        type="ingress",
        from_port=0,
        to_port=0,
        protocol="-1",
        self=True,
        security_group_id=security_group.id
    )

    # Control plane to kubelet and pods
    node_ingress_cluster = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-cluster",
        type="ingress",
        from_port=1025,
        to_port=65535,
        protocol="tcp",
        source_security_group_id=cluster_sg_id,
        security_group_id=security_group.id
    )

    # Control plane to webhooks served on 443
    node_ingress_cluster_https = aws.ec2.SecurityGroupRule(
        f"{name}-node-ingress-cluster-https",
        type="ingress",
        from_port=443,
        to_port=443,
        protocol="tcp",
        source_security_group_id=cluster_sg_id,
        security_group_id=security_group.id
    )

    node_egress_rule = aws.ec2.SecurityGroupRule(
        f"{name}-node-egress",
        type="egress",
        from_port=0,
        to_port=0,
        protocol="-1",
        cidr_blocks=["0.0.0.0/0"],
        security_group_id=security_group.id
    )

    # Nodes to the API server
    cluster_ingress_node = aws.ec2.SecurityGroupRule(
        f"{name}-cluster-ingress-node",
        type="ingress",
        from_port=443,
        to_port=443,
        protocol="tcp",
        source_security_group_id=security_group.id,
        security_group_id=cluster_sg_id
    )

    return {
        "security_group": security_group,
        "node_ingress_self": node_ingress_self,
        "node_ingress_cluster": node_ingress_cluster,
        "node_ingress_cluster_https": node_ingress_cluster_https,
        "node_egress_rule": node_egress_rule,
        "cluster_ingress_node": cluster_ingress_node,
        "security_group_id": security_group.id
    }


def create_vpc_resources(cluster_name: str, vpc_cidr: str, public_subnet_cidrs: List[str],
                         private_subnet_cidrs: List[str] = None,
                         enable_nat_gateway: bool = True, single_nat_gateway: bool = True,
                         enable_dns_hostnames: bool = True, enable_dns_support: bool = True,
                         map_public_ip_on_launch: bool = True, tags: Dict[str, str] = None) -> Dict[str, Any]:
    """
    Create complete VPC infrastructure for EKS

    Args:
        cluster_name: EKS cluster name
        vpc_cidr: VPC CIDR block
        public_subnet_cidrs: List of public subnet CIDR blocks
        private_subnet_cidrs: List of private subnet CIDR blocks
        enable_nat_gateway: Give private subnets outbound access through NAT
        single_nat_gateway: One shared NAT gateway instead of one per zone
        enable_dns_hostnames: Enable DNS hostnames in VPC
        enable_dns_support: Enable DNS support in VPC
        map_public_ip_on_launch: Auto-assign public IPs in public subnets
        tags: Additional tags for all resources

    Returns:
        Dict with all VPC resources and outputs
    """
    tags = tags or {}
    private_subnet_cidrs = private_subnet_cidrs or []

    azs = aws.get_availability_zones(state="available")

    vpc_result = create_vpc(cluster_name, vpc_cidr, enable_dns_hostnames, enable_dns_support, tags)

    igw_result = create_internet_gateway(cluster_name, vpc_result["vpc_id"], tags)

    public_result = create_subnets(
        cluster_name,
        "public",
        vpc_result["vpc_id"],
        public_subnet_cidrs,
        azs.names,
        map_public_ip_on_launch,
        tags
    )

    public_rt_result = create_public_route_table(
        cluster_name,
        vpc_result["vpc_id"],
        igw_result["igw_id"],
        public_result["subnet_ids"],
        tags
    )

    private_result = create_subnets(
        cluster_name,
        "private",
        vpc_result["vpc_id"],
        private_subnet_cidrs,
        azs.names,
        False,
        tags
    )

    nat_result = {"nat_gateways": [], "nat_gateway_ids": [], "nat_public_ips": []}
    if private_subnet_cidrs and enable_nat_gateway:
        nat_result = create_nat_gateways(
            cluster_name,
            public_result["subnet_ids"],
            single_nat_gateway,
            igw_result["igw"],
            tags
        )

    private_rt_result = create_private_route_tables(
        cluster_name,
        vpc_result["vpc_id"],
        private_result["subnet_ids"],
        nat_result["nat_gateway_ids"],
        tags
    )

    cluster_sg_result = create_cluster_security_group(cluster_name, vpc_result["vpc_id"], tags)

    node_sg_result = create_node_security_group(
        cluster_name,
        vpc_result["vpc_id"],
        cluster_sg_result["security_group_id"],
        tags
    )

    return {
        "vpc_id": vpc_result["vpc_id"],
        "vpc_cidr_block": vpc_result["vpc_cidr_block"],
        "public_subnet_ids": public_result["subnet_ids"],
        "private_subnet_ids": private_result["subnet_ids"],
        "availability_zones": public_result["availability_zones"],
        "nat_gateway_ids": nat_result["nat_gateway_ids"],
        "nat_public_ips": nat_result["nat_public_ips"],
        "cluster_security_group_id": cluster_sg_result["security_group_id"],
        "node_group_security_group_id": node_sg_result["security_group_id"],
        # Keep references to all resources for dependencies
        "_vpc": vpc_result["vpc"],
        "_igw": igw_result["igw"],
        "_public_subnets": public_result["subnets"],
        "_private_subnets": private_result["subnets"],
        "_nat_gateways": nat_result["nat_gateways"],
        "_public_route_table": public_rt_result["route_table"],
        "_private_route_tables": private_rt_result["route_tables"],
        "_cluster_sg": cluster_sg_result["security_group"],
        "_node_sg": node_sg_result["security_group"]
    }
