"""
Configuration management for the EKS foundation stack
"""

import ipaddress
import pulumi
from typing import Dict, Any, List

CAPACITY_TYPES = ("ON_DEMAND", "SPOT")
SUBNET_TIERS = ("private", "public")

DEFAULT_NODE_GROUP = {
    "name": "general",
    "instance_types": ["t3.large"],
    "capacity_type": "ON_DEMAND",
    "ami_type": "AL2023_x86_64_STANDARD",
    "disk_size": 50,
    "min_size": 1,
    "desired_size": 2,
    "max_size": 3,
    "labels": {},
    "taints": [],
    "subnet_tier": "private",
}


class ConfigError(ValueError):
    """Raised when stack configuration is inconsistent"""


def validate_node_group(spec: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill defaults for one node group block and check it

    Args:
        spec: Node group block from stack configuration

    Returns:
        Node group block with every field present

    Raises:
        ConfigError: invalid scaling bounds, capacity type or subnet tier
    """
    node_group = {**DEFAULT_NODE_GROUP, **spec}
    name = node_group["name"]

    try:
        min_size = int(node_group["min_size"])
        desired_size = int(node_group["desired_size"])
        max_size = int(node_group["max_size"])
    except (TypeError, ValueError):
        raise ConfigError(f"node group {name}: sizes must be integers")

    if max_size < 1:
        raise ConfigError(f"node group {name}: max_size must be at least 1")
    if not 0 <= min_size <= desired_size <= max_size:
        raise ConfigError(
            f"node group {name}: expected 0 <= min_size <= desired_size <= max_size, "
            f"got {min_size}/{desired_size}/{max_size}"
        )
    if node_group["capacity_type"] not in CAPACITY_TYPES:
        raise ConfigError(f"node group {name}: capacity_type must be one of {', '.join(CAPACITY_TYPES)}")
    if node_group["subnet_tier"] not in SUBNET_TIERS:
        raise ConfigError(f"node group {name}: subnet_tier must be one of {', '.join(SUBNET_TIERS)}")
    if not node_group["instance_types"]:
        raise ConfigError(f"node group {name}: at least one instance type is required")

    node_group.update(min_size=min_size, desired_size=desired_size, max_size=max_size)
    return node_group


def validate_subnets(vpc_cidr: str, tiers: Dict[str, List[str]]) -> None:
    """
    Check subnet CIDRs fit inside the VPC and do not overlap

    Args:
        vpc_cidr: VPC CIDR block
        tiers: Subnet CIDR lists keyed by tier name

    Raises:
        ConfigError: malformed, out-of-range or overlapping CIDRs
    """
    try:
        vpc = ipaddress.ip_network(vpc_cidr)
    except ValueError as e:
        raise ConfigError(f"invalid vpc_cidr {vpc_cidr}: {e}")

    seen = []
    for tier, cidrs in tiers.items():
        if cidrs and len(cidrs) < 2:
            raise ConfigError(f"{tier} subnets must span at least two availability zones")
        for cidr in cidrs:
            try:
                network = ipaddress.ip_network(cidr)
            except ValueError as e:
                raise ConfigError(f"invalid {tier} subnet {cidr}: {e}")
            if network.version != vpc.version:
                raise ConfigError(f"{tier} subnet {cidr} is IPv{network.version} "
                                  f"but the VPC CIDR {vpc_cidr} is IPv{vpc.version}")
            if not network.subnet_of(vpc):
                raise ConfigError(f"{tier} subnet {cidr} is outside the VPC CIDR {vpc_cidr}")
            for other_tier, other in seen:
                if network.overlaps(other):
                    raise ConfigError(f"{tier} subnet {cidr} overlaps {other_tier} subnet {other}")
            seen.append((tier, network))


class Config:
    """Centralized configuration management for the EKS deployment"""

    def __init__(self):
        self.config = pulumi.Config()
        aws_config = pulumi.Config("aws")

        # AWS Configuration
        self.aws_region = aws_config.get("region") or "af-south-1"

        # Cluster Configuration
        self.cluster_name = self.config.get("cluster_name") or "eks-foundation"
        self.cluster_version = self.config.get("cluster_version") or "1.33"
        self.authentication_mode = self.config.get("authentication_mode") or "API_AND_CONFIG_MAP"
        self.endpoint_private_access = self._get_bool("endpoint_private_access", True)
        self.endpoint_public_access = self._get_bool("endpoint_public_access", True)
        self.public_access_cidrs = self.config.get_object("public_access_cidrs") or ["0.0.0.0/0"]
        self.admin_role_arn = self.config.get("admin_role_arn") or ""

        # VPC Configuration
        self.vpc_cidr = self.config.get("vpc_cidr") or "10.0.0.0/16"
        self.public_subnet_cidrs = self._get_object("public_subnet_cidrs", ["10.0.0.0/22", "10.0.4.0/22"])
        self.private_subnet_cidrs = self._get_object("private_subnet_cidrs", ["10.0.32.0/19", "10.0.64.0/19"])
        self.enable_nat_gateway = self._get_bool("enable_nat_gateway", True)
        self.single_nat_gateway = self._get_bool("single_nat_gateway", True)

        # Node groups
        self.raw_node_groups = self.config.get_object("node_groups") or [DEFAULT_NODE_GROUP]

        # Resource Management
        self.use_existing_cluster_role = self._get_bool("use_existing_cluster_role", False)
        self.existing_cluster_role_name = self.config.get("existing_cluster_role_name") or ""
        self.use_existing_node_role = self._get_bool("use_existing_node_role", False)
        self.existing_node_role_name = self.config.get("existing_node_role_name") or ""
        self.use_existing_kms_key = self._get_bool("use_existing_kms_key", False)
        self.existing_kms_key_arn = self.config.get("existing_kms_key_arn") or ""

        # Logging Configuration
        self.cluster_enabled_log_types = self.config.get_object("cluster_enabled_log_types") or ["api", "audit", "authenticator"]
        self.cloudwatch_log_group_retention_in_days = self.config.get_int("cloudwatch_log_group_retention_in_days") or 30

        # EKS Addons
        self.enable_vpc_cni_addon = self._get_bool("enable_vpc_cni_addon", True)
        self.enable_coredns_addon = self._get_bool("enable_coredns_addon", True)
        self.enable_kube_proxy_addon = self._get_bool("enable_kube_proxy_addon", True)
        self.enable_metrics_server = self._get_bool("enable_metrics_server", False)

        # Additional tags
        self.additional_tags = self.config.get_object("tags") or {}

    def _get_bool(self, key: str, default: bool) -> bool:
        # `get_bool(...) or True` would turn an explicit false into true
        value = self.config.get_bool(key)
        return default if value is None else value

    def _get_object(self, key: str, default: Any) -> Any:
        value = self.config.get_object(key)
        return default if value is None else value

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "Project": "eks-foundation",
            "Cluster": self.cluster_name,
            "ManagedBy": "pulumi",
        }
        base_tags.update(self.additional_tags)
        return base_tags

    @property
    def node_group_specs(self) -> List[Dict[str, Any]]:
        """Validated node group blocks"""
        specs = [validate_node_group(spec) for spec in self.raw_node_groups]
        names = [spec["name"] for spec in specs]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError(f"duplicate node group name(s): {', '.join(duplicates)}")
        if not self.private_subnet_cidrs and any(spec["subnet_tier"] == "private" for spec in specs):
            raise ConfigError("private node groups need private_subnet_cidrs")
        return specs

    def validate(self) -> None:
        """Check the whole configuration; raises ConfigError"""
        if not self.endpoint_private_access and not self.endpoint_public_access:
            raise ConfigError("at least one of endpoint_private_access or endpoint_public_access must be true")
        if self.private_subnet_cidrs and not self.enable_nat_gateway:
            pulumi.log.warn("private subnets without a NAT gateway have no outbound internet access")
        validate_subnets(self.vpc_cidr, {
            "public": self.public_subnet_cidrs,
            "private": self.private_subnet_cidrs,
        })
        if len(self.public_subnet_cidrs) < 2:
            raise ConfigError("public subnets must span at least two availability zones")
        specs = self.node_group_specs
        pulumi.log.info(f"{len(specs)} node group(s) configured for {self.cluster_name}")


def get_config() -> Config:
    """Get the validated configuration instance"""
    config = Config()
    config.validate()
    return config
