from __future__ import annotations
from kubernetes import client as k8s_client
from ..config import AppConfig, ClusterConfig
from ..kube.client import StackClient, load_kubeconfig, configure_from_credentials

def get_cluster_cfg(app_cfg: AppConfig, name: str | None) -> ClusterConfig:
    if name is None:
        if len(app_cfg.clusters) == 1:
            return app_cfg.clusters[0]
        raise ValueError('Multiple clusters configured; specify one')
    for c in app_cfg.clusters:
        if c.name == name:
            return c
    raise ValueError(f'Cluster {name} not found in config')

def build_api_client(cluster: ClusterConfig) -> k8s_client.ApiClient:
    if cluster.kubeconfig:
        load_kubeconfig(cluster.kubeconfig, cluster.context)
        return k8s_client.ApiClient()
    if cluster.credentials:
        return k8s_client.ApiClient(configuration=configure_from_credentials(cluster.credentials))
    raise ValueError(f'Cluster {cluster.name} has no kubeconfig or credentials configured')

def open_stack_client(app_cfg: AppConfig, name: str | None) -> StackClient:
    cluster = get_cluster_cfg(app_cfg, name)
    return StackClient(build_api_client(cluster), parallelism=cluster.parallelism)
