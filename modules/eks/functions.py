"""
EKS Module Functions
Creates the EKS control plane, managed node groups and managed add-ons
"""

import pulumi
import pulumi_aws as aws
from typing import Any, Dict, List, Optional

TAINT_EFFECTS = {
    "NoSchedule": "NO_SCHEDULE",
    "NoExecute": "NO_EXECUTE",
    "PreferNoSchedule": "PREFER_NO_SCHEDULE",
}


def create_cloudwatch_log_group(name: str, retention_days: int = 30, tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create CloudWatch log group for EKS control plane logs

    EKS writes to /aws/eks/<cluster>/cluster; creating it first lets us
    own its retention.

    Args:
        name: Cluster name
        retention_days: Log retention in days
        tags: Additional tags

    Returns:
        Dict with log group resource and outputs
    """
    tags = tags or {}

    log_group = aws.cloudwatch.LogGroup(
        f"{name}-eks-log-group",
        name=f"/aws/eks/{name}/cluster",
        retention_in_days=retention_days,
        tags={
            **tags,
            "Name": f"{name}-eks-log-group",
            "Module": "eks"
        }
    )

    return {
        "log_group": log_group,
        "log_group_name": log_group.name
    }


def create_kms_key(name: str, existing_key_arn: str = "", tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create or use existing KMS key for Kubernetes secrets encryption

    Args:
        name: Cluster name
        existing_key_arn: ARN of existing KMS key
        tags: Additional tags

    Returns:
        Dict with key resource (None when reusing a key) and its ARN
    """
    if existing_key_arn:
        return {"kms_key": None, "kms_key_arn": existing_key_arn}

    tags = tags or {}

    kms_key = aws.kms.Key(
        f"{name}-eks-kms-key",
        description=f"EKS Secret Encryption Key for {name}",
        enable_key_rotation=True,
        deletion_window_in_days=7,
        tags={
            **tags,
            "Name": f"{name}-eks-kms-key",
            "Module": "eks"
        }
    )

    aws.kms.Alias(
        f"{name}-eks-kms-alias",
        name=f"alias/{name}-eks",
        target_key_id=kms_key.key_id
    )

    return {"kms_key": kms_key, "kms_key_arn": kms_key.arn}


def create_eks_cluster(name: str, version: str, role_arn: pulumi.Output[str],
                       subnet_ids: List[pulumi.Output[str]], security_group_ids: List[pulumi.Output[str]],
                       kms_key_arn: Any,
                       enabled_log_types: List[str] = None,
                       endpoint_private_access: bool = True,
                       endpoint_public_access: bool = True,
                       public_access_cidrs: List[str] = None,
                       authentication_mode: str = "API_AND_CONFIG_MAP",
                       depends_on: List[pulumi.Resource] = None,
                       tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create EKS cluster

    Args:
        name: Cluster name
        version: Kubernetes version
        role_arn: IAM role ARN for cluster
        subnet_ids: Subnets for the control plane ENIs
        security_group_ids: List of security group IDs
        kms_key_arn: KMS key ARN for secrets encryption
        enabled_log_types: List of enabled log types
        endpoint_private_access: Enable private API endpoint
        endpoint_public_access: Enable public API endpoint
        public_access_cidrs: List of CIDRs for public access
        authentication_mode: API, API_AND_CONFIG_MAP or CONFIG_MAP
        depends_on: Resources that must exist first (log group, role policies)
        tags: Additional tags

    Returns:
        Dict with cluster resource and outputs
    """
    tags = tags or {}
    enabled_log_types = enabled_log_types or ["api", "audit", "authenticator"]
    public_access_cidrs = public_access_cidrs or ["0.0.0.0/0"]

    cluster = aws.eks.Cluster(
        f"{name}-cluster",
        name=name,
        version=version,
        role_arn=role_arn,
        vpc_config=aws.eks.ClusterVpcConfigArgs(
            subnet_ids=subnet_ids,
            endpoint_private_access=endpoint_private_access,
            endpoint_public_access=endpoint_public_access,
            public_access_cidrs=public_access_cidrs if endpoint_public_access else None,
            security_group_ids=security_group_ids
        ),
        access_config=aws.eks.ClusterAccessConfigArgs(
            authentication_mode=authentication_mode,
            bootstrap_cluster_creator_admin_permissions=True
        ),
        enabled_cluster_log_types=enabled_log_types,
        encryption_config=aws.eks.ClusterEncryptionConfigArgs(
            provider=aws.eks.ClusterEncryptionConfigProviderArgs(
                key_arn=kms_key_arn
            ),
            resources=["secrets"]
        ),
        tags={
            **tags,
            "Name": f"{name}-cluster",
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(depends_on=[r for r in (depends_on or []) if r is not None])
    )

    return {
        "cluster": cluster,
        "cluster_id": cluster.id,
        "cluster_arn": cluster.arn,
        "cluster_name": cluster.name,
        "cluster_endpoint": cluster.endpoint,
        "cluster_version": cluster.version,
        "cluster_certificate_authority_data": cluster.certificate_authority.data,
        "cluster_oidc_issuer": cluster.identities[0].oidcs[0].issuer
    }


def create_admin_access(name: str, cluster_name: pulumi.Output[str], principal_arn: str) -> Dict[str, any]:
    """
    Grant an IAM principal cluster-admin through an EKS access entry

    Args:
        name: Resource name prefix
        cluster_name: EKS cluster name
        principal_arn: IAM role or user ARN

    Returns:
        Dict with access entry and policy association
    """
    access_entry = aws.eks.AccessEntry(
        f"{name}-admin-access",
        cluster_name=cluster_name,
        principal_arn=principal_arn,
        type="STANDARD"
    )

    association = aws.eks.AccessPolicyAssociation(
        f"{name}-admin-policy",
        cluster_name=cluster_name,
        principal_arn=principal_arn,
        policy_arn="arn:aws:eks::aws:cluster-access-policy/AmazonEKSClusterAdminPolicy",
        access_scope=aws.eks.AccessPolicyAssociationAccessScopeArgs(type="cluster"),
        opts=pulumi.ResourceOptions(depends_on=[access_entry])
    )

    return {
        "access_entry": access_entry,
        "policy_association": association
    }


def node_group_taints(taints: List[Dict[str, str]]) -> List[aws.eks.NodeGroupTaintArgs]:
    """Convert Kubernetes-style taints ({key, value, effect}) to EKS taint args"""
    result = []
    for taint in taints or []:
        effect = TAINT_EFFECTS.get(taint.get("effect", "NoSchedule"), taint.get("effect"))
        result.append(aws.eks.NodeGroupTaintArgs(
            key=taint["key"],
            value=taint.get("value"),
            effect=effect
        ))
    return result


def create_node_group(cluster_name: str, cluster: pulumi.Output[str], spec: Dict[str, Any],
                      role_arn: pulumi.Output[str], subnet_ids: List[pulumi.Output[str]],
                      depends_on: List[pulumi.Resource] = None,
                      tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create EKS managed node group

    Args:
        cluster_name: Cluster name, used for resource naming
        cluster: EKS cluster name output
        spec: Validated node group block (see config.validate_node_group)
        role_arn: IAM role ARN for the nodes
        subnet_ids: Subnets the nodes are launched in
        depends_on: Resources that must exist first (node role policies)
        tags: Additional tags

    Returns:
        Dict with node group resource and outputs
    """
    tags = tags or {}
    group_name = f"{cluster_name}-{spec['name']}"

    node_group = aws.eks.NodeGroup(
        f"{group_name}-node-group",
        cluster_name=cluster,
        node_group_name=group_name,
        node_role_arn=role_arn,
        subnet_ids=subnet_ids,
        capacity_type=spec["capacity_type"],
        instance_types=spec["instance_types"],
        ami_type=spec["ami_type"],
        disk_size=spec["disk_size"],
        scaling_config=aws.eks.NodeGroupScalingConfigArgs(
            desired_size=spec["desired_size"],
            max_size=spec["max_size"],
            min_size=spec["min_size"]
        ),
        update_config=aws.eks.NodeGroupUpdateConfigArgs(
            max_unavailable_percentage=25
        ),
        labels={
            **spec["labels"],
            "node-group": spec["name"]
        },
        taints=node_group_taints(spec["taints"]),
        tags={
            **tags,
            "Name": group_name,
            "Module": "eks"
        },
        opts=pulumi.ResourceOptions(depends_on=[r for r in (depends_on or []) if r is not None])
    )

    return {
        "node_group": node_group,
        "node_group_name": group_name,
        "node_group_arn": node_group.arn,
        "node_group_status": node_group.status
    }


def create_eks_addons(name: str, cluster_name: pulumi.Output[str],
                      enable_vpc_cni: bool = True,
                      enable_coredns: bool = True,
                      enable_kube_proxy: bool = True,
                      node_groups: Optional[List[pulumi.Resource]] = None,
                      tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create EKS managed add-ons

    CoreDNS needs somewhere to schedule, so it waits for the node groups.

    Args:
        name: Cluster name
        cluster_name: EKS cluster name
        enable_vpc_cni: Enable VPC CNI addon
        enable_coredns: Enable CoreDNS addon
        enable_kube_proxy: Enable kube-proxy addon
        node_groups: Node groups CoreDNS depends on
        tags: Additional tags

    Returns:
        Dict with addon resources
    """
    tags = tags or {}
    wanted = [
        ("vpc_cni", "vpc-cni", enable_vpc_cni, None),
        ("coredns", "coredns", enable_coredns, node_groups),
        ("kube_proxy", "kube-proxy", enable_kube_proxy, None),
    ]

    addons = {}
    for key, addon_name, enabled, depends_on in wanted:
        if not enabled:
            continue
        addons[key] = aws.eks.Addon(
            f"{name}-{addon_name}-addon",
            cluster_name=cluster_name,
            addon_name=addon_name,
            resolve_conflicts_on_create="OVERWRITE",
            resolve_conflicts_on_update="OVERWRITE",
            tags={
                **tags,
                "Name": f"{name}-{addon_name}-addon",
                "Module": "eks"
            },
            opts=pulumi.ResourceOptions(depends_on=depends_on) if depends_on else None
        )

    return {"addons": addons}


def create_eks_resources(cluster_name: str, cluster_version: str,
                         cluster_role_arn: pulumi.Output[str], node_group_role_arn: pulumi.Output[str],
                         public_subnet_ids: List[pulumi.Output[str]],
                         private_subnet_ids: List[pulumi.Output[str]],
                         cluster_security_group_id: pulumi.Output[str],
                         node_groups: List[Dict[str, Any]],
                         cluster_enabled_log_types: List[str] = None,
                         cloudwatch_log_group_retention_in_days: int = 30,
                         use_existing_kms_key: bool = False,
                         existing_kms_key_arn: str = "",
                         enable_vpc_cni_addon: bool = True,
                         enable_coredns_addon: bool = True,
                         enable_kube_proxy_addon: bool = True,
                         endpoint_private_access: bool = True,
                         endpoint_public_access: bool = True,
                         public_access_cidrs: List[str] = None,
                         authentication_mode: str = "API_AND_CONFIG_MAP",
                         admin_role_arn: str = "",
                         cluster_dependencies: List[pulumi.Resource] = None,
                         node_dependencies: List[pulumi.Resource] = None,
                         tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create complete EKS infrastructure

    Args:
        cluster_name: EKS cluster name
        cluster_version: Kubernetes version
        cluster_role_arn: IAM role ARN for cluster
        node_group_role_arn: IAM role ARN for node groups
        public_subnet_ids: Public subnet IDs
        private_subnet_ids: Private subnet IDs
        cluster_security_group_id: Cluster security group ID
        node_groups: Validated node group blocks
        cluster_enabled_log_types: List of enabled log types
        cloudwatch_log_group_retention_in_days: Log retention in days
        use_existing_kms_key: Use existing KMS key
        existing_kms_key_arn: ARN of existing KMS key
        enable_vpc_cni_addon: Enable VPC CNI addon
        enable_coredns_addon: Enable CoreDNS addon
        enable_kube_proxy_addon: Enable kube-proxy addon
        endpoint_private_access: Enable private API endpoint
        endpoint_public_access: Enable public API endpoint
        public_access_cidrs: List of CIDRs for public access
        authentication_mode: Cluster authentication mode
        admin_role_arn: IAM principal granted cluster-admin (optional)
        cluster_dependencies: Resources the cluster waits for
        node_dependencies: Resources the node groups wait for
        tags: Additional tags

    Returns:
        Dict with all EKS resources and outputs
    """
    tags = tags or {}

    log_group_result = create_cloudwatch_log_group(
        cluster_name,
        cloudwatch_log_group_retention_in_days,
        tags
    )

    kms_result = create_kms_key(
        cluster_name,
        existing_kms_key_arn if use_existing_kms_key else "",
        tags
    )

    # Control plane ENIs go in private subnets when there are any
    control_plane_subnets = list(private_subnet_ids) or list(public_subnet_ids)

    cluster_result = create_eks_cluster(
        name=cluster_name,
        version=cluster_version,
        role_arn=cluster_role_arn,
        subnet_ids=control_plane_subnets,
        security_group_ids=[cluster_security_group_id],
        kms_key_arn=kms_result["kms_key_arn"],
        enabled_log_types=cluster_enabled_log_types,
        endpoint_private_access=endpoint_private_access,
        endpoint_public_access=endpoint_public_access,
        public_access_cidrs=public_access_cidrs,
        authentication_mode=authentication_mode,
        depends_on=[log_group_result["log_group"], *(cluster_dependencies or [])],
        tags=tags
    )

    admin_result = None
    if admin_role_arn:
        admin_result = create_admin_access(cluster_name, cluster_result["cluster_name"], admin_role_arn)

    node_group_results = []
    for spec in node_groups:
        subnets = private_subnet_ids if spec["subnet_tier"] == "private" else public_subnet_ids
        node_group_results.append(create_node_group(
            cluster_name=cluster_name,
            cluster=cluster_result["cluster_name"],
            spec=spec,
            role_arn=node_group_role_arn,
            subnet_ids=subnets,
            depends_on=node_dependencies,
            tags=tags
        ))

    addons_result = create_eks_addons(
        name=cluster_name,
        cluster_name=cluster_result["cluster_name"],
        enable_vpc_cni=enable_vpc_cni_addon,
        enable_coredns=enable_coredns_addon,
        enable_kube_proxy=enable_kube_proxy_addon,
        node_groups=[result["node_group"] for result in node_group_results],
        tags=tags
    )

    return {
        "cluster_id": cluster_result["cluster_id"],
        "cluster_arn": cluster_result["cluster_arn"],
        "cluster_name": cluster_result["cluster_name"],
        "cluster_endpoint": cluster_result["cluster_endpoint"],
        "cluster_version_output": cluster_result["cluster_version"],
        "cluster_certificate_authority_data": cluster_result["cluster_certificate_authority_data"],
        "cluster_oidc_issuer": cluster_result["cluster_oidc_issuer"],
        "node_group_names": [result["node_group_name"] for result in node_group_results],
        "node_group_arns": [result["node_group_arn"] for result in node_group_results],
        # Keep references to resources for dependencies
        "_log_group": log_group_result["log_group"],
        "_kms_key": kms_result["kms_key"],
        "_cluster": cluster_result["cluster"],
        "_admin_access": admin_result,
        "_node_groups": [result["node_group"] for result in node_group_results],
        "_addons": addons_result["addons"]
    }
