#!/usr/bin/env python3
"""
Pydantic models for normalized autoscaler snapshots
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Metric kinds understood by the normalizer; anything else is dropped
METRIC_KIND_OBJECT = "Object"
METRIC_KIND_PODS = "Pods"
METRIC_KIND_RESOURCE = "Resource"
METRIC_KIND_EXTERNAL = "External"

# Placeholder used for label values that do not apply to a metric kind
NO_VALUE = "-"

CONDITION_ABLE_TO_SCALE = "AbleToScale"
CONDITION_SCALING_ACTIVE = "ScalingActive"
CONDITION_SCALING_LIMITED = "ScalingLimited"

CONDITION_STATUS_TRUE = "True"
CONDITION_STATUS_FALSE = "False"

BASE_LABELS = ("hpa_name", "hpa_namespace", "ref_kind", "ref_name", "ref_apiversion")
METRIC_LABELS = ("metric_kind", "metric_name", "metric_target_kind", "metric_target_name")
CONDITION_LABELS = ("cond_status", "cond_reason", "cond_message")


class ScaleTargetRef(BaseModel):
    """Workload an autoscaler scales"""
    kind: str = Field(..., description="Kind of the scale target, e.g. Deployment")
    name: str = Field(..., description="Name of the scale target")
    api_version: str = Field("", description="API version of the scale target")


class MetricDescriptor(BaseModel):
    """One target or current metric value of an autoscaler, already converted to decimal"""
    kind: str = Field(..., description="Object, Pods, Resource or External")
    target_kind: str = Field(NO_VALUE, description="Kind of the described object, or a synthetic kind")
    target_name: str = Field(NO_VALUE, description="Described object or resource name")
    metric_name: str = Field(NO_VALUE, description="Metric name from the metric source")
    value: float = Field(..., description="Numeric value")

    def labels(self) -> Dict[str, str]:
        return {
            "metric_kind": self.kind,
            "metric_name": self.metric_name,
            "metric_target_kind": self.target_kind,
            "metric_target_name": self.target_name,
        }


class Condition(BaseModel):
    """Autoscaler condition"""
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None


class AutoscalerSnapshot(BaseModel):
    """Normalized view of one autoscaler for one poll tick"""
    name: str
    namespace: str
    scale_target: ScaleTargetRef

    current_replicas: int = Field(0, ge=0)
    desired_replicas: int = Field(0, ge=0)
    min_replicas: Optional[int] = Field(None, ge=0)
    max_replicas: int = Field(..., ge=0)
    last_scale_time: Optional[datetime] = None

    target_metrics: List[MetricDescriptor] = Field(default_factory=list)
    current_metrics: List[MetricDescriptor] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)

    # Only populated by the autoscaling/v1 parser
    current_cpu_utilization: Optional[int] = None
    target_cpu_utilization: Optional[int] = None
    current_cpu_value: Optional[float] = None

    # Conditions as the API serialized them, for the condition log
    raw_conditions: List[Dict[str, Any]] = Field(default_factory=list)

    def base_labels(self) -> Dict[str, str]:
        return {
            "hpa_name": self.name,
            "hpa_namespace": self.namespace,
            "ref_kind": self.scale_target.kind,
            "ref_name": self.scale_target.name,
            "ref_apiversion": self.scale_target.api_version,
        }


class ConditionLogRecord(BaseModel):
    """Record written by the condition logger, one per autoscaler per tick"""
    name: str
    conditions: List[Dict[str, Any]] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json()
