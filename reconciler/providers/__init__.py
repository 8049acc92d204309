"""
Providers for the reconciler
"""

from typing import Optional

from .aws import AWS_SCHEMAS
from .base import Provider, ProviderRegistry, ResourceSchema
from .simulated import SimulatedProvider


def simulated_aws(path: Optional[str] = None, region: str = "af-south-1") -> SimulatedProvider:
    """Simulated provider that understands the AWS networking and EKS types"""
    return SimulatedProvider("aws", AWS_SCHEMAS, path=path, region=region)


__all__ = [
    "AWS_SCHEMAS",
    "Provider",
    "ProviderRegistry",
    "ResourceSchema",
    "SimulatedProvider",
    "simulated_aws",
]
