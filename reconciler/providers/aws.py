"""
AWS resource schemas
Networking, IAM and EKS types used by the cluster declarations
"""

import base64
from typing import Any, Dict, Optional

from .base import ResourceSchema

CAPACITY_TYPES = ("ON_DEMAND", "SPOT")
AUTHENTICATION_MODES = ("API", "API_AND_CONFIG_MAP", "CONFIG_MAP")


def validate_scaling_config(inputs: Dict[str, Any]) -> Optional[str]:
    """0 <= min_size <= desired_size <= max_size and max_size >= 1"""
    scaling = inputs.get("scaling_config") or {}
    try:
        min_size = int(scaling["min_size"])
        desired_size = int(scaling["desired_size"])
        max_size = int(scaling["max_size"])
    except (KeyError, TypeError, ValueError):
        return "scaling_config needs integer min_size, desired_size and max_size"
    if max_size < 1:
        return f"scaling_config.max_size must be at least 1, got {max_size}"
    if not 0 <= min_size <= desired_size <= max_size:
        return (f"scaling_config must satisfy 0 <= min_size <= desired_size <= max_size, "
                f"got {min_size}/{desired_size}/{max_size}")
    return None


def validate_capacity_type(inputs: Dict[str, Any]) -> Optional[str]:
    capacity_type = inputs.get("capacity_type", "ON_DEMAND")
    if capacity_type not in CAPACITY_TYPES:
        return f"capacity_type must be one of {', '.join(CAPACITY_TYPES)}, got {capacity_type}"
    return None


def validate_subnet_count(inputs: Dict[str, Any]) -> Optional[str]:
    subnet_ids = (inputs.get("vpc_config") or {}).get("subnet_ids") or []
    if len(subnet_ids) < 2:
        return "vpc_config.subnet_ids needs subnets in at least two availability zones"
    return None


def validate_endpoint_access(inputs: Dict[str, Any]) -> Optional[str]:
    vpc_config = inputs.get("vpc_config") or {}
    if not vpc_config.get("endpoint_public_access", True) and not vpc_config.get("endpoint_private_access", False):
        return "at least one of endpoint_public_access or endpoint_private_access must be enabled"
    return None


def validate_authentication_mode(inputs: Dict[str, Any]) -> Optional[str]:
    mode = (inputs.get("access_config") or {}).get("authentication_mode", "API_AND_CONFIG_MAP")
    if mode not in AUTHENTICATION_MODES:
        return f"access_config.authentication_mode must be one of {', '.join(AUTHENTICATION_MODES)}"
    return None


def _cluster_endpoint(resource_id: str, outputs: Dict[str, Any]) -> str:
    return f"https://{resource_id.upper()}.gr7.eks.amazonaws.com"


def _cluster_ca(resource_id: str, outputs: Dict[str, Any]) -> Dict[str, str]:
    pem = f"-----BEGIN CERTIFICATE-----\n{resource_id}\n-----END CERTIFICATE-----\n"
    return {"data": base64.b64encode(pem.encode()).decode()}


def _oidc_issuer(resource_id: str, outputs: Dict[str, Any]) -> list:
    return [{"oidc": [{"issuer": f"https://oidc.eks.amazonaws.com/id/{resource_id.upper()}"}]}]


AWS_SCHEMAS: Dict[str, ResourceSchema] = {
    schema.type: schema
    for schema in [
        ResourceSchema(
            type="aws_vpc",
            required=["cidr_block"],
            optional=["enable_dns_hostnames", "enable_dns_support", "tags"],
            force_new=["cidr_block"],
            defaults={"enable_dns_hostnames": False, "enable_dns_support": True, "tags": {}},
            id_prefix="vpc-",
        ),
        ResourceSchema(
            type="aws_internet_gateway",
            optional=["vpc_id", "tags"],
            defaults={"tags": {}},
            id_prefix="igw-",
        ),
        ResourceSchema(
            type="aws_subnet",
            required=["vpc_id", "cidr_block"],
            optional=["availability_zone", "map_public_ip_on_launch", "tags"],
            force_new=["vpc_id", "cidr_block", "availability_zone"],
            defaults={"map_public_ip_on_launch": False, "tags": {}},
            id_prefix="subnet-",
        ),
        ResourceSchema(
            type="aws_eip",
            optional=["domain", "tags"],
            defaults={"domain": "vpc", "tags": {}},
            computed={"public_ip": lambda resource_id, outputs: "203.0.113.%d" % (int(resource_id[-2:], 16) % 254 + 1)},
            id_prefix="eipalloc-",
        ),
        ResourceSchema(
            type="aws_nat_gateway",
            required=["subnet_id"],
            optional=["allocation_id", "connectivity_type", "tags"],
            force_new=["subnet_id", "allocation_id", "connectivity_type"],
            defaults={"connectivity_type": "public", "tags": {}},
            id_prefix="nat-",
        ),
        ResourceSchema(
            type="aws_route_table",
            required=["vpc_id"],
            optional=["tags"],
            force_new=["vpc_id"],
            defaults={"tags": {}},
            id_prefix="rtb-",
        ),
        ResourceSchema(
            type="aws_route",
            required=["route_table_id", "destination_cidr_block"],
            optional=["gateway_id", "nat_gateway_id"],
            force_new=["route_table_id", "destination_cidr_block"],
            id_prefix="r-",
        ),
        ResourceSchema(
            type="aws_route_table_association",
            required=["subnet_id", "route_table_id"],
            force_new=["subnet_id"],
            id_prefix="rtbassoc-",
        ),
        ResourceSchema(
            type="aws_security_group",
            required=["vpc_id"],
            optional=["name_prefix", "description", "tags"],
            force_new=["vpc_id", "name_prefix", "description"],
            defaults={"description": "Managed by reconciler", "tags": {}},
            id_prefix="sg-",
        ),
        ResourceSchema(
            type="aws_security_group_rule",
            required=["security_group_id", "type", "from_port", "to_port", "protocol"],
            optional=["cidr_blocks", "source_security_group_id", "self", "description"],
            force_new=["security_group_id", "type", "from_port", "to_port", "protocol",
                       "cidr_blocks", "source_security_group_id", "self"],
            id_prefix="sgrule-",
        ),
        ResourceSchema(
            type="aws_iam_role",
            required=["name", "assume_role_policy"],
            optional=["tags"],
            force_new=["name"],
            defaults={"tags": {}},
            id_prefix="role-",
        ),
        ResourceSchema(
            type="aws_iam_role_policy_attachment",
            required=["role", "policy_arn"],
            force_new=["role", "policy_arn"],
            id_prefix="attach-",
        ),
        ResourceSchema(
            type="aws_cloudwatch_log_group",
            required=["name"],
            optional=["retention_in_days", "tags"],
            force_new=["name"],
            defaults={"retention_in_days": 0, "tags": {}},
            id_prefix="lg-",
        ),
        ResourceSchema(
            type="aws_kms_key",
            optional=["description", "enable_key_rotation", "tags"],
            defaults={"enable_key_rotation": True, "tags": {}},
            id_prefix="key-",
        ),
        ResourceSchema(
            type="aws_eks_cluster",
            required=["name", "role_arn", "vpc_config"],
            optional=["version", "access_config", "enabled_cluster_log_types",
                      "encryption_config", "tags"],
            force_new=["name", "role_arn", "vpc_config.subnet_ids", "encryption_config"],
            defaults={"version": "1.33", "enabled_cluster_log_types": [], "tags": {}},
            computed={
                "endpoint": _cluster_endpoint,
                "certificate_authority": _cluster_ca,
                "identities": _oidc_issuer,
                "status": lambda resource_id, outputs: "ACTIVE",
            },
            validators=[validate_subnet_count, validate_endpoint_access, validate_authentication_mode],
            id_prefix="eks-",
        ),
        ResourceSchema(
            type="aws_eks_node_group",
            required=["cluster_name", "node_group_name", "node_role_arn", "subnet_ids", "scaling_config"],
            optional=["instance_types", "capacity_type", "ami_type", "disk_size", "labels",
                      "taints", "update_config", "tags"],
            force_new=["cluster_name", "node_group_name", "node_role_arn", "subnet_ids",
                       "instance_types", "capacity_type", "ami_type", "disk_size"],
            defaults={"capacity_type": "ON_DEMAND", "ami_type": "AL2023_x86_64_STANDARD",
                      "disk_size": 20, "labels": {}, "taints": [], "tags": {}},
            computed={"status": lambda resource_id, outputs: "ACTIVE"},
            validators=[validate_scaling_config, validate_capacity_type],
            id_prefix="ng-",
        ),
        ResourceSchema(
            type="aws_eks_addon",
            required=["cluster_name", "addon_name"],
            optional=["addon_version", "resolve_conflicts_on_create", "resolve_conflicts_on_update", "tags"],
            force_new=["cluster_name", "addon_name"],
            defaults={"tags": {}},
            id_prefix="addon-",
        ),
    ]
}
