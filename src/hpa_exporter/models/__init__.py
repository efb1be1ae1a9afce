"""
Models package for normalized autoscaler data
"""

from .hpa import (
    AutoscalerSnapshot,
    Condition,
    ConditionLogRecord,
    MetricDescriptor,
    ScaleTargetRef,
)

__all__ = [
    "AutoscalerSnapshot",
    "Condition",
    "ConditionLogRecord",
    "MetricDescriptor",
    "ScaleTargetRef",
]
