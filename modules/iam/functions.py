"""
IAM Module Functions
Creates IAM roles and policy attachments for the EKS control plane
and its managed node groups
"""

import json
import pulumi
import pulumi_aws as aws
from typing import Dict, List, Tuple

CLUSTER_POLICIES: List[Tuple[str, str]] = [
    ("cluster", "arn:aws:iam::aws:policy/AmazonEKSClusterPolicy"),
    ("vpc-resource-controller", "arn:aws:iam::aws:policy/AmazonEKSVPCResourceController"),
]

NODE_POLICIES: List[Tuple[str, str]] = [
    ("worker", "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy"),
    ("cni", "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy"),
    ("registry", "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly"),
    ("ssm", "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"),
]


def assume_role_policy(service: str) -> str:
    """Trust policy letting an AWS service assume the role"""
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Action": "sts:AssumeRole",
            "Effect": "Allow",
            "Principal": {"Service": service}
        }]
    })


def create_role(name: str, role_name: str, service: str, policies: List[Tuple[str, str]],
                tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create an IAM role trusted by a service and attach managed policies

    Args:
        name: Resource name prefix
        role_name: IAM role name
        service: Service principal allowed to assume the role
        policies: (short name, policy ARN) pairs to attach
        tags: Additional tags

    Returns:
        Dict with role resource, attachments and outputs
    """
    tags = tags or {}

    role = aws.iam.Role(
        role_name,
        name=role_name,
        assume_role_policy=assume_role_policy(service),
        tags={
            **tags,
            "Name": role_name,
            "Module": "iam"
        }
    )

    policy_attachments = {}
    for policy_name, policy_arn in policies:
        policy_attachments[policy_name] = aws.iam.RolePolicyAttachment(
            f"{role_name}-{policy_name}-policy",
            policy_arn=policy_arn,
            role=role.name
        )

    return {
        "role": role,
        "policy_attachments": policy_attachments,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_cluster_role(name: str, tags: Dict[str, str] = None) -> Dict[str, any]:
    return create_role(name, f"{name}-cluster-role", "eks.amazonaws.com", CLUSTER_POLICIES, tags)


def create_node_group_role(name: str, tags: Dict[str, str] = None) -> Dict[str, any]:
    return create_role(name, f"{name}-node-role", "ec2.amazonaws.com", NODE_POLICIES, tags)


def get_existing_role(role_name: str) -> Dict[str, any]:
    """
    Get existing IAM role

    Args:
        role_name: Name of existing role

    Returns:
        Dict with role information
    """
    role = aws.iam.get_role(name=role_name)

    return {
        "role": None,
        "policy_attachments": {},
        "role_arn": pulumi.Output.from_input(role.arn),
        "role_name": pulumi.Output.from_input(role.name)
    }


def create_iam_resources(cluster_name: str,
                         use_existing_cluster_role: bool = False,
                         existing_cluster_role_name: str = "",
                         use_existing_node_role: bool = False,
                         existing_node_role_name: str = "",
                         tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create or reference IAM resources for EKS

    Args:
        cluster_name: EKS cluster name
        use_existing_cluster_role: Use existing cluster role
        existing_cluster_role_name: Name of existing cluster role
        use_existing_node_role: Use existing node role
        existing_node_role_name: Name of existing node role
        tags: Additional tags

    Returns:
        Dict with all IAM resources and outputs
    """
    tags = tags or {}

    if use_existing_cluster_role and existing_cluster_role_name:
        pulumi.log.info(f"Using existing cluster role {existing_cluster_role_name}")
        cluster_role_result = get_existing_role(existing_cluster_role_name)
    else:
        cluster_role_result = create_cluster_role(cluster_name, tags)

    if use_existing_node_role and existing_node_role_name:
        pulumi.log.info(f"Using existing node role {existing_node_role_name}")
        node_role_result = get_existing_role(existing_node_role_name)
    else:
        node_role_result = create_node_group_role(cluster_name, tags)

    return {
        "cluster_role_arn": cluster_role_result["role_arn"],
        "cluster_role_name": cluster_role_result["role_name"],
        "node_group_role_arn": node_role_result["role_arn"],
        "node_group_role_name": node_role_result["role_name"],
        # Keep references to resources for dependencies
        "_cluster_role": cluster_role_result["role"],
        "_node_role": node_role_result["role"],
        "_cluster_policy_attachments": list(cluster_role_result["policy_attachments"].values()),
        "_node_policy_attachments": list(node_role_result["policy_attachments"].values())
    }
