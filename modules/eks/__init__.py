"""
EKS Module
Creates the EKS cluster, managed node groups and managed add-ons
"""

from .functions import create_eks_resources, create_node_group

__all__ = ["create_eks_resources", "create_node_group"]
