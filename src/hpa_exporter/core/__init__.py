"""
Core exporter modules
"""

from .fetcher import AutoscalerFetcher
from .normalizer import get_parser
from .poller import ConditionLogPoller, MetricsPoller
from .registry import MetricRegistry
from .relabeler import ConditionRelabeler

__all__ = [
    "AutoscalerFetcher",
    "get_parser",
    "ConditionLogPoller",
    "MetricsPoller",
    "MetricRegistry",
    "ConditionRelabeler",
]
