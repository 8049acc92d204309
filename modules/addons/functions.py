"""
Addons Module Functions
Kubernetes add-ons installed on the EKS cluster after it is up
"""

import json
import pulumi
import pulumi_kubernetes as k8s
from typing import Dict, List, Optional

METRICS_SERVER_REPO = "https://kubernetes-sigs.github.io/metrics-server/"


def create_kubernetes_provider(name: str, cluster_name: 'pulumi.Output[str]',
                               cluster_endpoint: 'pulumi.Output[str]',
                               cluster_ca_data: 'pulumi.Output[str]',
                               region: str) -> k8s.Provider:
    """
    Create Kubernetes provider for EKS cluster

    Authenticates with `aws eks get-token`, so the caller's AWS
    credentials must map to a cluster principal.

    Args:
        name: Provider name prefix
        cluster_name: EKS cluster name
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data (base64)
        region: AWS region of the cluster

    Returns:
        Kubernetes provider instance
    """
    kubeconfig = pulumi.Output.all(cluster_name, cluster_endpoint, cluster_ca_data).apply(
        lambda args: json.dumps(kubeconfig_document(args[0], args[1], args[2], region))
    )

    return k8s.Provider(
        f"{name}-k8s-provider",
        kubeconfig=kubeconfig
    )


def kubeconfig_document(cluster_name: str, endpoint: str, ca_data: str, region: str) -> Dict[str, any]:
    """Kubeconfig using the aws CLI exec credential plugin"""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": cluster_name,
            "cluster": {
                "server": endpoint,
                "certificate-authority-data": ca_data
            }
        }],
        "contexts": [{
            "name": cluster_name,
            "context": {"cluster": cluster_name, "user": cluster_name}
        }],
        "current-context": cluster_name,
        "users": [{
            "name": cluster_name,
            "user": {
                "exec": {
                    "apiVersion": "client.authentication.k8s.io/v1beta1",
                    "command": "aws",
                    "args": ["eks", "get-token", "--cluster-name", cluster_name, "--region", region]
                }
            }
        }]
    }


def deploy_metrics_server(name: str, provider: k8s.Provider,
                          depends_on: Optional[List[pulumi.Resource]] = None) -> Dict[str, any]:
    """
    Deploy metrics server using Helm

    Args:
        name: Release name prefix
        provider: Kubernetes provider
        depends_on: Resources that must exist first (node groups)

    Returns:
        Dict with metrics server release
    """
    metrics_server = k8s.helm.v3.Release(
        f"{name}-metrics-server",
        repository_opts=k8s.helm.v3.RepositoryOptsArgs(
            repo=METRICS_SERVER_REPO
        ),
        chart="metrics-server",
        name="metrics-server",
        namespace="kube-system",
        values={
            "args": [
                "--kubelet-preferred-address-types=InternalIP,ExternalIP,Hostname",
                "--kubelet-use-node-status-port",
                "--metric-resolution=15s"
            ]
        },
        opts=pulumi.ResourceOptions(provider=provider, depends_on=depends_on or [])
    )

    return {"metrics_server": metrics_server}


def create_addons_resources(cluster_name: str,
                            cluster: 'pulumi.Output[str]',
                            cluster_endpoint: 'pulumi.Output[str]',
                            cluster_ca_data: 'pulumi.Output[str]',
                            region: str,
                            enable_metrics_server: bool = False,
                            node_groups: Optional[List[pulumi.Resource]] = None) -> Dict[str, any]:
    """
    Create Kubernetes addons for EKS cluster

    Args:
        cluster_name: Cluster name, used for resource naming
        cluster: EKS cluster name output
        cluster_endpoint: EKS cluster endpoint
        cluster_ca_data: EKS cluster CA certificate data
        region: AWS region
        enable_metrics_server: Deploy metrics server
        node_groups: Node groups the add-ons are scheduled on

    Returns:
        Dict with addon status and resources
    """
    k8s_provider = create_kubernetes_provider(cluster_name, cluster, cluster_endpoint, cluster_ca_data, region)

    metrics_server_result = None
    if enable_metrics_server:
        metrics_server_result = deploy_metrics_server(cluster_name, k8s_provider, node_groups)
    else:
        pulumi.log.info("metrics-server disabled")

    return {
        "metrics_server_enabled": metrics_server_result is not None,
        # Keep references to resources for dependencies
        "_k8s_provider": k8s_provider,
        "_metrics_server": metrics_server_result["metrics_server"] if metrics_server_result else None
    }
