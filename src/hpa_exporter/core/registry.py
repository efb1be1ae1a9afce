#!/usr/bin/env python3
"""
Prometheus gauge families published by the exporter
"""

import threading
from typing import Dict, List, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from hpa_exporter.models.hpa import (
    BASE_LABELS,
    CONDITION_LABELS,
    METRIC_LABELS,
    CONDITION_ABLE_TO_SCALE,
    CONDITION_SCALING_ACTIVE,
    CONDITION_SCALING_LIMITED,
)

LabelSet = Dict[str, str]

CURRENT_PODS = "hpa_current_pods_num"
DESIRED_PODS = "hpa_desired_pods_num"
MIN_PODS = "hpa_min_pods_num"
MAX_PODS = "hpa_max_pods_num"
LAST_SCALE_SECOND = "hpa_last_scale_second"
CURRENT_METRICS_VALUE = "hpa_current_metrics_value"
TARGET_METRICS_VALUE = "hpa_target_metrics_value"
CURRENT_CPU_VALUE = "hpa_current_cpu_value"
CURRENT_CPU_PERCENTAGE = "hpa_current_cpu_percentage"
TARGET_CPU_PERCENTAGE = "hpa_target_cpu_percentage"
ABLE_TO_SCALE = "hpa_able_to_scale"
SCALING_ACTIVE = "hpa_scaling_active"
SCALING_LIMITED = "hpa_scaling_limited"

# name -> (help, label names)
FAMILIES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    CURRENT_PODS: ("Number of current pods by status.", BASE_LABELS),
    DESIRED_PODS: ("Number of desired pods by status.", BASE_LABELS),
    MIN_PODS: ("Number of min pods by spec.", BASE_LABELS),
    MAX_PODS: ("Number of max pods by spec.", BASE_LABELS),
    LAST_SCALE_SECOND: ("Time the scale was last executed.", BASE_LABELS),
    CURRENT_METRICS_VALUE: ("Current metric value observed by HPA.", BASE_LABELS + METRIC_LABELS),
    TARGET_METRICS_VALUE: ("Target metric value set for HPA.", BASE_LABELS + METRIC_LABELS),
    CURRENT_CPU_VALUE: ("Current cpu usage value.", BASE_LABELS),
    CURRENT_CPU_PERCENTAGE: ("Current cpu utilization calculated by HPA.", BASE_LABELS),
    TARGET_CPU_PERCENTAGE: ("Target CPU utilization set for HPA.", BASE_LABELS),
    ABLE_TO_SCALE: ("Status of the AbleToScale condition.", BASE_LABELS + CONDITION_LABELS),
    SCALING_ACTIVE: ("Status of the ScalingActive condition.", BASE_LABELS + CONDITION_LABELS),
    SCALING_LIMITED: ("Status of the ScalingLimited condition.", BASE_LABELS + CONDITION_LABELS),
}

CONDITION_FAMILIES = {
    CONDITION_ABLE_TO_SCALE: ABLE_TO_SCALE,
    CONDITION_SCALING_ACTIVE: SCALING_ACTIVE,
    CONDITION_SCALING_LIMITED: SCALING_LIMITED,
}


class MetricRegistry:
    """
    Owns the gauge families and the CollectorRegistry they are exposed from

    Series are addressed by family name plus a label set. Setting and deleting
    are safe to call from the poll threads while the scrape endpoint reads.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        self._gauges: Dict[str, Gauge] = {}
        for name, (documentation, labelnames) in FAMILIES.items():
            self._gauges[name] = Gauge(name, documentation, labelnames=labelnames, registry=self.registry)

    def _label_values(self, family: str, labels: LabelSet) -> Tuple[str, ...]:
        _, labelnames = FAMILIES[family]
        return tuple(str(labels[name]) for name in labelnames)

    def set(self, family: str, labels: LabelSet, value: float) -> None:
        """Set the series identified by ``labels`` in ``family``"""
        values = self._label_values(family, labels)
        with self._lock:
            self._gauges[family].labels(*values).set(value)

    def delete(self, family: str, labels: LabelSet) -> None:
        """Remove one series; deleting a series that was never set is a no-op"""
        values = self._label_values(family, labels)
        with self._lock:
            try:
                self._gauges[family].remove(*values)
            except KeyError:
                # Older prometheus_client releases raise for absent children
                pass

    def reset(self) -> None:
        """Drop every series of every family"""
        with self._lock:
            for gauge in self._gauges.values():
                gauge.clear()

    def series(self, family: str) -> List[Tuple[LabelSet, float]]:
        """Current (labels, value) pairs of one family"""
        result = []
        for metric in self._gauges[family].collect():
            for sample in metric.samples:
                result.append((dict(sample.labels), sample.value))
        return result

    def exposition(self) -> bytes:
        """Text exposition of every family"""
        return generate_latest(self.registry)
