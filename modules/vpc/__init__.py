"""
VPC Module for EKS
Creates VPC, public/private subnets, NAT, route tables and security groups
"""

from .functions import (
    create_vpc_resources,
    create_subnets,
    create_nat_gateways,
)

__all__ = ["create_vpc_resources", "create_subnets", "create_nat_gateways"]
