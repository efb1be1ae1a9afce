#!/usr/bin/env python3
"""
Kubernetes client setup and autoscaler listing
"""

from typing import Any, List, Optional

from kubernetes import client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException

from hpa_exporter.config.settings import KubernetesSettings
from hpa_exporter.core.logging_config import get_logger
from hpa_exporter.exceptions import ConfigurationError, FetchError

logger = get_logger(__name__)


def load_kubernetes_config(settings: KubernetesSettings) -> None:
    """
    Load client configuration for the Kubernetes API

    With ``in_cluster`` unset the service account config is tried first and
    the kubeconfig file is used when not running inside a pod.

    Raises:
        ConfigurationError: if no usable configuration was found
    """
    try:
        if settings.in_cluster:
            logger.info("Loading in-cluster config")
            k8s_config.load_incluster_config()
            return

        if settings.in_cluster is None:
            try:
                k8s_config.load_incluster_config()
                logger.info("Loaded in-cluster config")
                return
            except ConfigException:
                logger.debug("Not running in a cluster, falling back to kubeconfig")

        logger.info(f"Loading kubeconfig from: {settings.kubeconfig_path or 'default location'}")
        k8s_config.load_kube_config(config_file=settings.kubeconfig_path)
        logger.info("Kubeconfig loaded successfully")
    except (ConfigException, OSError) as e:
        raise ConfigurationError(f"Failed to load Kubernetes configuration: {e}") from e


class AutoscalerFetcher:
    """Lists HorizontalPodAutoscalers across all namespaces for one API version"""

    def __init__(self, api_version: str = "v2", api: Optional[Any] = None):
        """
        Args:
            api_version: ``v1`` or ``v2``; selects the autoscaling API group version
            api: Pre-built autoscaling API client, mainly for tests
        """
        if api_version not in ("v1", "v2"):
            raise ConfigurationError(f"Unsupported autoscaling API version: {api_version}")
        self.api_version = api_version
        if api is None:
            api = client.AutoscalingV1Api() if api_version == "v1" else client.AutoscalingV2Api()
        self.api = api

    def list_autoscalers(self) -> List[Any]:
        """
        Fetch every autoscaler in the cluster

        Raises:
            FetchError: if the API call fails for any reason
        """
        try:
            result = self.api.list_horizontal_pod_autoscaler_for_all_namespaces()
        except Exception as e:
            raise FetchError(f"Failed to list autoscaling/{self.api_version} autoscalers: {e}") from e

        items = list(result.items or [])
        logger.debug(f"Fetched {len(items)} autoscalers (autoscaling/{self.api_version})")
        return items
