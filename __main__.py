"""
EKS Foundation
VPC, IAM, EKS control plane, managed node groups and add-ons
"""
import pulumi
from config import get_config
from modules import (
    create_vpc_resources,
    create_iam_resources,
    create_eks_resources,
    create_addons_resources,
)

config = get_config()
tags = config.common_tags
node_groups = config.node_group_specs

# 1. Network
vpc = create_vpc_resources(
    cluster_name=config.cluster_name,
    vpc_cidr=config.vpc_cidr,
    public_subnet_cidrs=config.public_subnet_cidrs,
    private_subnet_cidrs=config.private_subnet_cidrs,
    enable_nat_gateway=config.enable_nat_gateway,
    single_nat_gateway=config.single_nat_gateway,
    tags=tags
)

# 2. IAM
iam = create_iam_resources(
    cluster_name=config.cluster_name,
    use_existing_cluster_role=config.use_existing_cluster_role,
    existing_cluster_role_name=config.existing_cluster_role_name,
    use_existing_node_role=config.use_existing_node_role,
    existing_node_role_name=config.existing_node_role_name,
    tags=tags
)

# 3. Cluster and node groups
eks = create_eks_resources(
    cluster_name=config.cluster_name,
    cluster_version=config.cluster_version,
    cluster_role_arn=iam["cluster_role_arn"],
    node_group_role_arn=iam["node_group_role_arn"],
    public_subnet_ids=vpc["public_subnet_ids"],
    private_subnet_ids=vpc["private_subnet_ids"],
    cluster_security_group_id=vpc["cluster_security_group_id"],
    node_groups=node_groups,
    cluster_enabled_log_types=config.cluster_enabled_log_types,
    cloudwatch_log_group_retention_in_days=config.cloudwatch_log_group_retention_in_days,
    use_existing_kms_key=config.use_existing_kms_key,
    existing_kms_key_arn=config.existing_kms_key_arn,
    enable_vpc_cni_addon=config.enable_vpc_cni_addon,
    enable_coredns_addon=config.enable_coredns_addon,
    enable_kube_proxy_addon=config.enable_kube_proxy_addon,
    endpoint_private_access=config.endpoint_private_access,
    endpoint_public_access=config.endpoint_public_access,
    public_access_cidrs=config.public_access_cidrs,
    authentication_mode=config.authentication_mode,
    admin_role_arn=config.admin_role_arn,
    cluster_dependencies=iam["_cluster_policy_attachments"],
    node_dependencies=iam["_node_policy_attachments"] + vpc["_nat_gateways"],
    tags=tags
)

# 4. Kubernetes add-ons
addons = create_addons_resources(
    cluster_name=config.cluster_name,
    cluster=eks["cluster_name"],
    cluster_endpoint=eks["cluster_endpoint"],
    cluster_ca_data=eks["cluster_certificate_authority_data"],
    region=config.aws_region,
    enable_metrics_server=config.enable_metrics_server,
    node_groups=eks["_node_groups"]
)

# Exports
pulumi.export("cluster_name", eks["cluster_name"])
pulumi.export("cluster_endpoint", eks["cluster_endpoint"])
pulumi.export("cluster_oidc_issuer", eks["cluster_oidc_issuer"])
pulumi.export("vpc_id", vpc["vpc_id"])
pulumi.export("public_subnet_ids", vpc["public_subnet_ids"])
pulumi.export("private_subnet_ids", vpc["private_subnet_ids"])
pulumi.export("node_group_names", eks["node_group_names"])
pulumi.export("metrics_server_enabled", addons["metrics_server_enabled"])
pulumi.export("kubeconfig_command",
    pulumi.Output.concat(
        "aws eks update-kubeconfig --region ", config.aws_region, " --name ",
        eks["cluster_name"]
    ))
