#!/usr/bin/env python3
"""
Condition relabeling and stale series retirement
"""

from typing import Dict, List, Optional, Tuple

from hpa_exporter.core.logging_config import get_logger
from hpa_exporter.core.registry import CONDITION_FAMILIES, LabelSet, MetricRegistry
from hpa_exporter.models.hpa import Condition, CONDITION_STATUS_FALSE, CONDITION_STATUS_TRUE

logger = get_logger(__name__)

# (namespace, name, condition type)
CacheKey = Tuple[str, str, str]


def negate_status(status: str) -> str:
    """
    Status used for the inactive series of a condition

    Only "True" negates to "False"; every other value, "Unknown" included,
    negates to "True".
    """
    return CONDITION_STATUS_FALSE if status == CONDITION_STATUS_TRUE else CONDITION_STATUS_TRUE


def condition_labels(condition: Condition) -> Tuple[LabelSet, LabelSet]:
    """Return the (active, inactive) condition label pairs for ``condition``"""
    active = {
        "cond_status": condition.status,
        "cond_reason": condition.reason,
        "cond_message": condition.message,
    }
    inactive = {
        "cond_status": negate_status(condition.status),
        "cond_reason": "",
        "cond_message": "",
    }
    return active, inactive


class ConditionRelabeler:
    """
    Publishes condition series without leaking old label combinations

    For every autoscaler and condition type the label sets last set as active
    (value 1) and inactive (value 0) are remembered. On the next observation
    both are deleted before the new pair is set, so a changed reason, message
    or status replaces the old series instead of leaving it stuck at 1.

    Entries are never evicted: an autoscaler that is deleted from the cluster
    keeps its cache entry, and its series stay published until restart.

    Not thread-safe; owned by a single metrics poller.
    """

    def __init__(self, registry: MetricRegistry):
        self.registry = registry
        self._emitted: Dict[CacheKey, Tuple[LabelSet, LabelSet]] = {}

    def apply(self, namespace: str, name: str, base_labels: LabelSet, condition: Condition) -> bool:
        """
        Publish one observed condition

        Returns:
            False if the condition type has no family and was skipped
        """
        family = CONDITION_FAMILIES.get(condition.type)
        if family is None:
            logger.debug(f"Ignoring condition type {condition.type} on {namespace}/{name}")
            return False

        key = (namespace, name, condition.type)
        previous = self._emitted.get(key)
        if previous is not None:
            old_active, old_inactive = previous
            self.registry.delete(family, old_active)
            self.registry.delete(family, old_inactive)

        active, inactive = condition_labels(condition)
        active = {**base_labels, **active}
        inactive = {**base_labels, **inactive}

        self.registry.set(family, active, 1)
        self.registry.set(family, inactive, 0)
        self._emitted[key] = (active, inactive)
        return True

    def emitted(self, namespace: str, name: str, condition_type: str) -> Optional[Tuple[LabelSet, LabelSet]]:
        """Label sets currently published for one autoscaler condition, if any"""
        return self._emitted.get((namespace, name, condition_type))

    def __len__(self) -> int:
        return len(self._emitted)


# (family, label items sorted by label name)
SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _series_key(family: str, labels: LabelSet) -> SeriesKey:
    return family, tuple(sorted(labels.items()))


class PublishedSeries:
    """
    Retires the value series an autoscaler stopped reporting

    Remembers, per (namespace, name), every non-condition series set on the
    last publish. ``replace`` deletes the ones missing from the new set, so a
    metric that leaves the status, a renamed target or a removed optional
    field no longer lingers with its last value. Autoscalers that are not
    published again keep their series, like the condition cache.
    """

    def __init__(self, registry: MetricRegistry):
        self.registry = registry
        self._published: Dict[Tuple[str, str], Dict[SeriesKey, LabelSet]] = {}

    def replace(self, namespace: str, name: str, series: List[Tuple[str, LabelSet]]) -> int:
        """
        Record the series just set for one autoscaler and delete the stale ones

        Returns:
            Number of series deleted
        """
        current = {_series_key(family, labels): labels for family, labels in series}
        previous = self._published.get((namespace, name), {})

        retired = 0
        for key, labels in previous.items():
            if key not in current:
                self.registry.delete(key[0], labels)
                retired += 1
        if retired:
            logger.debug(f"Retired {retired} stale series of {namespace}/{name}")

        self._published[(namespace, name)] = current
        return retired

    def __len__(self) -> int:
        return len(self._published)
