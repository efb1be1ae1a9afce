"""
Shared fixtures and kubernetes object factories
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from kubernetes import client
from prometheus_client import CollectorRegistry

from hpa_exporter.core.fetcher import AutoscalerFetcher
from hpa_exporter.core.registry import MetricRegistry

LAST_SCALE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class MockAutoscalingApi:
    """Mock autoscaling API client for testing"""

    def __init__(self, items: Optional[List[Any]] = None):
        self.items = list(items or [])
        self.error: Optional[Exception] = None
        self.call_count = 0

    def list_horizontal_pod_autoscaler_for_all_namespaces(self, **kwargs):
        self.call_count += 1
        if self.error is not None:
            raise self.error
        return Mock(items=list(self.items))


def base_labels(name: str = "web", namespace: str = "default", kind: str = "Deployment",
                ref_name: Optional[str] = None) -> Dict[str, str]:
    return {
        "hpa_name": name,
        "hpa_namespace": namespace,
        "ref_kind": kind,
        "ref_name": ref_name or name,
        "ref_apiversion": "apps/v1",
    }


def v2_condition(type_: str, status: str, reason: str = "", message: str = ""):
    return client.V2HorizontalPodAutoscalerCondition(
        type=type_,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=LAST_SCALE_TIME,
    )


def v2_resource_spec(name: str = "cpu", utilization: Optional[int] = None, average_value: Optional[str] = None):
    target_type = "Utilization" if utilization is not None else "AverageValue"
    return client.V2MetricSpec(
        type="Resource",
        resource=client.V2ResourceMetricSource(
            name=name,
            target=client.V2MetricTarget(
                type=target_type,
                average_utilization=utilization,
                average_value=average_value,
            ),
        ),
    )


def v2_resource_status(name: str = "cpu", utilization: Optional[int] = None, average_value: Optional[str] = None):
    return client.V2MetricStatus(
        type="Resource",
        resource=client.V2ResourceMetricStatus(
            name=name,
            current=client.V2MetricValueStatus(
                average_utilization=utilization,
                average_value=average_value,
            ),
        ),
    )


def v2_object_ref(kind: str = "Service", name: str = "frontend"):
    return client.V2CrossVersionObjectReference(kind=kind, name=name, api_version="v1")


def make_v2_hpa(
    name: str = "web",
    namespace: str = "default",
    current_replicas: int = 3,
    desired_replicas: int = 5,
    min_replicas: Optional[int] = 2,
    max_replicas: int = 10,
    metrics: Optional[List[Any]] = None,
    current_metrics: Optional[List[Any]] = None,
    conditions: Optional[List[Any]] = None,
    last_scale_time: Optional[datetime] = None,
    target_kind: str = "Deployment",
):
    return client.V2HorizontalPodAutoscaler(
        api_version="autoscaling/v2",
        kind="HorizontalPodAutoscaler",
        metadata=client.V1ObjectMeta(name=name, namespace=namespace),
        spec=client.V2HorizontalPodAutoscalerSpec(
            scale_target_ref=client.V2CrossVersionObjectReference(
                kind=target_kind, name=name, api_version="apps/v1"
            ),
            min_replicas=min_replicas,
            max_replicas=max_replicas,
            metrics=metrics,
        ),
        status=client.V2HorizontalPodAutoscalerStatus(
            current_replicas=current_replicas,
            desired_replicas=desired_replicas,
            current_metrics=current_metrics,
            conditions=conditions,
            last_scale_time=last_scale_time,
        ),
    )


def make_v1_hpa(
    name: str = "web",
    namespace: str = "default",
    current_replicas: int = 3,
    desired_replicas: int = 5,
    min_replicas: Optional[int] = 2,
    max_replicas: int = 10,
    target_cpu: Optional[int] = 80,
    current_cpu: Optional[int] = 72,
    current_metrics: Any = None,
    target_metrics: Any = None,
    conditions: Any = None,
    last_scale_time: Optional[datetime] = None,
):
    """Build a v1 autoscaler; list arguments are JSON encoded into the alpha annotations, strings are used as-is"""
    annotations = {}
    for key, value in (
        ("autoscaling.alpha.kubernetes.io/current-metrics", current_metrics),
        ("autoscaling.alpha.kubernetes.io/metrics", target_metrics),
        ("autoscaling.alpha.kubernetes.io/conditions", conditions),
    ):
        if value is not None:
            annotations[key] = value if isinstance(value, str) else json.dumps(value)

    return client.V1HorizontalPodAutoscaler(
        api_version="autoscaling/v1",
        kind="HorizontalPodAutoscaler",
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, annotations=annotations or None),
        spec=client.V1HorizontalPodAutoscalerSpec(
            scale_target_ref=client.V1CrossVersionObjectReference(
                kind="Deployment", name=name, api_version="apps/v1"
            ),
            min_replicas=min_replicas,
            max_replicas=max_replicas,
            target_cpu_utilization_percentage=target_cpu,
        ),
        status=client.V1HorizontalPodAutoscalerStatus(
            current_replicas=current_replicas,
            desired_replicas=desired_replicas,
            current_cpu_utilization_percentage=current_cpu,
            last_scale_time=last_scale_time,
        ),
    )


@pytest.fixture
def registry():
    """Metric registry backed by a fresh CollectorRegistry"""
    return MetricRegistry(CollectorRegistry())


@pytest.fixture
def sample(registry):
    """Read one sample value from the test registry"""
    def _sample(family: str, labels: Dict[str, str]):
        return registry.registry.get_sample_value(family, labels)
    return _sample


@pytest.fixture
def autoscaling_api():
    return MockAutoscalingApi()


@pytest.fixture
def v2_fetcher(autoscaling_api):
    return AutoscalerFetcher("v2", api=autoscaling_api)


@pytest.fixture
def v1_fetcher(autoscaling_api):
    return AutoscalerFetcher("v1", api=autoscaling_api)
