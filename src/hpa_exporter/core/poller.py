#!/usr/bin/env python3
"""
Periodic poll loops: metrics publishing and condition logging
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from hpa_exporter.core.condition_log import ConditionSink
from hpa_exporter.core.fetcher import AutoscalerFetcher
from hpa_exporter.core.logging_config import get_logger
from hpa_exporter.core.normalizer import AutoscalerParser
from hpa_exporter.core.registry import (
    LabelSet,
    MetricRegistry,
    CURRENT_PODS,
    DESIRED_PODS,
    MIN_PODS,
    MAX_PODS,
    LAST_SCALE_SECOND,
    CURRENT_METRICS_VALUE,
    TARGET_METRICS_VALUE,
    CURRENT_CPU_VALUE,
    CURRENT_CPU_PERCENTAGE,
    TARGET_CPU_PERCENTAGE,
)
from hpa_exporter.core.relabeler import ConditionRelabeler, PublishedSeries
from hpa_exporter.exceptions import FetchError, LogSinkError, PayloadError
from hpa_exporter.models.hpa import AutoscalerSnapshot, ConditionLogRecord

logger = get_logger(__name__)


def _epoch_seconds(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return float(int(value.timestamp()))


class PeriodicTask:
    """
    Runs ``tick`` immediately and then once per ``interval`` seconds until stopped

    Ticks run in a worker thread because the Kubernetes and AWS clients block.
    A tick that raises is logged and the loop carries on with the next one.
    A stopped task does not start again.
    """

    name = "task"

    def __init__(self, interval: float):
        self.interval = interval
        self.running = False
        self.tick_count = 0
        self._stop_event = asyncio.Event()

    def tick(self) -> Any:
        raise NotImplementedError

    async def start(self):
        """Start the loop; returns once ``stop`` is called"""
        if self.running:
            logger.warning(f"{self.name} already running")
            return

        self.running = True
        logger.info(f"Starting {self.name} (interval={self.interval}s)")

        while not self._stop_event.is_set():
            try:
                await asyncio.to_thread(self.tick)
            except Exception as e:
                logger.error(f"Unexpected error in {self.name} loop: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        self.running = False
        logger.info(f"{self.name} stopped")

    async def stop(self):
        """Stop the loop after the current tick"""
        self._stop_event.set()
        logger.info(f"Stopping {self.name}")


class MetricsPoller(PeriodicTask):
    """
    Fetches every autoscaler and republishes its spec/status as gauges

    A failed fetch leaves every published series untouched until the next
    successful tick.
    """

    name = "metrics poller"

    def __init__(
        self,
        fetcher: AutoscalerFetcher,
        parser: AutoscalerParser,
        registry: MetricRegistry,
        interval: float = 30
    ):
        super().__init__(interval)
        self.fetcher = fetcher
        self.parser = parser
        self.registry = registry
        self.relabeler = ConditionRelabeler(registry)
        self.published = PublishedSeries(registry)

        self.last_success: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.last_published = 0
        self.last_skipped = 0

    def tick(self) -> Optional[int]:
        """
        Run one fetch/normalize/publish cycle

        Returns:
            Number of autoscalers published, or None if the fetch failed
        """
        self.tick_count += 1
        try:
            items = self.fetcher.list_autoscalers()
        except FetchError as e:
            self.last_error = str(e)
            logger.error(f"Metrics tick #{self.tick_count} skipped: {e}")
            return None

        published = 0
        skipped = 0
        for hpa in items:
            try:
                snapshot = self.parser.parse(hpa)
            except PayloadError as e:
                skipped += 1
                logger.error(f"Skipping autoscaler {e}")
                continue
            self.publish(snapshot)
            published += 1

        self.last_success = datetime.now(timezone.utc)
        self.last_error = None
        self.last_published = published
        self.last_skipped = skipped
        logger.info(f"Metrics tick #{self.tick_count}: published {published} autoscalers, skipped {skipped}")
        return published

    def publish(self, snapshot: AutoscalerSnapshot) -> None:
        """
        Set every series of one autoscaler

        Absent optional fields are not published, and series this autoscaler
        published on its previous tick but not on this one are deleted.
        """
        labels = snapshot.base_labels()
        published: List[Tuple[str, LabelSet]] = []

        def set_series(family: str, series_labels: LabelSet, value: float):
            self.registry.set(family, series_labels, value)
            published.append((family, series_labels))

        set_series(CURRENT_PODS, labels, snapshot.current_replicas)
        set_series(DESIRED_PODS, labels, snapshot.desired_replicas)
        if snapshot.min_replicas is not None:
            set_series(MIN_PODS, labels, snapshot.min_replicas)
        set_series(MAX_PODS, labels, snapshot.max_replicas)
        if snapshot.last_scale_time is not None:
            set_series(LAST_SCALE_SECOND, labels, _epoch_seconds(snapshot.last_scale_time))

        for descriptor in snapshot.current_metrics:
            set_series(CURRENT_METRICS_VALUE, {**labels, **descriptor.labels()}, descriptor.value)
        for descriptor in snapshot.target_metrics:
            set_series(TARGET_METRICS_VALUE, {**labels, **descriptor.labels()}, descriptor.value)

        if snapshot.current_cpu_value is not None:
            set_series(CURRENT_CPU_VALUE, labels, snapshot.current_cpu_value)
        if snapshot.current_cpu_utilization is not None:
            set_series(CURRENT_CPU_PERCENTAGE, labels, snapshot.current_cpu_utilization)
        if snapshot.target_cpu_utilization is not None:
            set_series(TARGET_CPU_PERCENTAGE, labels, snapshot.target_cpu_utilization)

        self.published.replace(snapshot.namespace, snapshot.name, published)

        for condition in snapshot.conditions:
            self.relabeler.apply(snapshot.namespace, snapshot.name, labels, condition)

    def status(self) -> Dict[str, Any]:
        return {
            "ticks": self.tick_count,
            "interval": self.interval,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
            "autoscalers": self.last_published,
            "skipped": self.last_skipped,
        }


class ConditionLogPoller(PeriodicTask):
    """Fetches every autoscaler and hands its conditions to a sink"""

    name = "condition logger"

    def __init__(
        self,
        fetcher: AutoscalerFetcher,
        parser: AutoscalerParser,
        sink: ConditionSink,
        interval: float = 60
    ):
        super().__init__(interval)
        self.fetcher = fetcher
        self.parser = parser
        self.sink = sink

    def collect(self, items: List[Any]) -> List[ConditionLogRecord]:
        records = []
        for hpa in items:
            try:
                conditions = self.parser.raw_conditions(hpa)
            except PayloadError as e:
                logger.error(f"Skipping conditions of autoscaler {e}")
                continue
            records.append(ConditionLogRecord(name=hpa.metadata.name, conditions=conditions))
        return records

    def tick(self) -> Optional[int]:
        """
        Returns:
            Number of records emitted, or None if the fetch or the sink failed
        """
        self.tick_count += 1
        try:
            items = self.fetcher.list_autoscalers()
        except FetchError as e:
            logger.error(f"Condition logging tick #{self.tick_count} skipped: {e}")
            return None

        records = self.collect(items)
        try:
            self.sink.emit(records)
        except LogSinkError as e:
            logger.error(f"Condition logging tick #{self.tick_count} failed: {e}")
            return None
        return len(records)
