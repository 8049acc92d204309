"""
Addons Module
Kubernetes add-ons installed through the cluster's API
"""

from .functions import create_addons_resources

__all__ = ["create_addons_resources"]
