"""
IAM Module for EKS
Creates IAM roles and policies for the EKS cluster and node groups
"""

from .functions import create_iam_resources, create_role

__all__ = ["create_iam_resources", "create_role"]
