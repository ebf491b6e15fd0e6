"""
Kubernetes connection settings for tsuru clusters.

tsuru describes each cluster either with an embedded kubeconfig or with a
list of API addresses plus certificates and credentials. Both forms are
turned into a single-context kubeconfig dict, which is what ResolvedTarget
carries and what the kubernetes client can load directly.
"""

import random
from typing import Any

from kubernetes import client, config

from aclapi.directory import ClusterInfo
from aclapi.errors import ResolutionError
from aclapi.schema import ResolvedTarget

TOKEN_CLUSTER_KEY = "token"
USER_CLUSTER_KEY = "username"
PASSWORD_CLUSTER_KEY = "password"


def kube_config_for_cluster(cluster: ClusterInfo) -> dict[str, Any]:
    """
    Build a kubeconfig dict with one context named after the cluster.

    Args:
        cluster: Cluster as returned by the directory

    Returns:
        Kubeconfig-shaped dict

    Raises:
        ResolutionError: If the cluster has neither a kubeconfig nor addresses
    """
    if cluster.kube_config is not None:
        cluster_section = dict(cluster.kube_config.cluster)
        user_section = dict(cluster.kube_config.user)
    else:
        if not cluster.addresses:
            raise ResolutionError(endpoint=cluster.name, message="no addresses for cluster")
        cluster_section = {"server": random.choice(cluster.addresses)}
        if cluster.ca_cert:
            cluster_section["certificate-authority-data"] = cluster.ca_cert

        user_section = {}
        if cluster.client_cert:
            user_section["client-certificate-data"] = cluster.client_cert
        if cluster.client_key:
            user_section["client-key-data"] = cluster.client_key
        username = cluster.custom_data.get(USER_CLUSTER_KEY, "")
        password = cluster.custom_data.get(PASSWORD_CLUSTER_KEY, "")
        token = cluster.custom_data.get(TOKEN_CLUSTER_KEY, "")
        if username and password:
            user_section["username"] = username
            user_section["password"] = password
        elif token:
            user_section["token"] = token

    name = cluster.name
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": name,
        "clusters": [{"name": name, "cluster": cluster_section}],
        "users": [{"name": name, "user": user_section}],
        "contexts": [{"name": name, "context": {"cluster": name, "user": name}}],
    }


def new_api_client(target: ResolvedTarget) -> client.ApiClient:
    """Create a kubernetes ApiClient for the cluster of a resolved target."""
    return config.new_client_from_config_dict(
        target.kube_config,
        context=target.cluster_name,
        persist_config=False,
    )
