"""
Tests for the metrics and condition logging poll loops
"""

import asyncio
from unittest.mock import Mock

import pytest

from conftest import (
    LAST_SCALE_TIME,
    base_labels,
    make_v1_hpa,
    make_v2_hpa,
    v2_condition,
    v2_resource_spec,
    v2_resource_status,
)
from hpa_exporter.core.condition_log import ConditionSink
from hpa_exporter.core.normalizer import V1AutoscalerParser, V2AutoscalerParser
from hpa_exporter.core.poller import ConditionLogPoller, MetricsPoller, PeriodicTask
from hpa_exporter.core.registry import (
    ABLE_TO_SCALE,
    CURRENT_CPU_PERCENTAGE,
    CURRENT_CPU_VALUE,
    CURRENT_METRICS_VALUE,
    CURRENT_PODS,
    DESIRED_PODS,
    LAST_SCALE_SECOND,
    MAX_PODS,
    MIN_PODS,
    SCALING_LIMITED,
    TARGET_CPU_PERCENTAGE,
    TARGET_METRICS_VALUE,
)
from hpa_exporter.exceptions import LogSinkError

CPU_LABELS = {
    "metric_kind": "Resource",
    "metric_name": "-",
    "metric_target_kind": "Resource",
    "metric_target_name": "cpu",
}


def web_hpa(**overrides):
    params = dict(
        metrics=[v2_resource_spec(utilization=80)],
        current_metrics=[v2_resource_status(utilization=72)],
        conditions=[
            v2_condition("AbleToScale", "True", "ReadyForNewScale", "recommended size matches current size"),
            v2_condition("ScalingLimited", "False", "DesiredWithinRange", "within range"),
        ],
        last_scale_time=LAST_SCALE_TIME,
    )
    params.update(overrides)
    return make_v2_hpa(**params)


class RecordingSink(ConditionSink):
    def __init__(self):
        self.batches = []

    def emit(self, records):
        self.batches.append(list(records))


class TestMetricsPoller:
    """One fetch/normalize/publish cycle"""

    @pytest.fixture
    def poller(self, v2_fetcher, registry):
        return MetricsPoller(v2_fetcher, V2AutoscalerParser(), registry, interval=30)

    def test_publishes_autoscaler(self, poller, autoscaling_api, sample):
        autoscaling_api.items = [web_hpa()]

        assert poller.tick() == 1

        labels = base_labels()
        assert sample(CURRENT_PODS, labels) == 3.0
        assert sample(DESIRED_PODS, labels) == 5.0
        assert sample(MIN_PODS, labels) == 2.0
        assert sample(MAX_PODS, labels) == 10.0
        assert sample(LAST_SCALE_SECOND, labels) == LAST_SCALE_TIME.timestamp()
        assert sample(TARGET_METRICS_VALUE, {**labels, **CPU_LABELS}) == 80.0
        assert sample(CURRENT_METRICS_VALUE, {**labels, **CPU_LABELS}) == 72.0

        assert sample(ABLE_TO_SCALE, {
            **labels,
            "cond_status": "True",
            "cond_reason": "ReadyForNewScale",
            "cond_message": "recommended size matches current size",
        }) == 1.0
        assert sample(ABLE_TO_SCALE, {**labels, "cond_status": "False", "cond_reason": "", "cond_message": ""}) == 0.0
        assert sample(SCALING_LIMITED, {
            **labels,
            "cond_status": "False",
            "cond_reason": "DesiredWithinRange",
            "cond_message": "within range",
        }) == 1.0
        assert sample(SCALING_LIMITED, {**labels, "cond_status": "True", "cond_reason": "", "cond_message": ""}) == 0.0

    def test_v2_does_not_publish_cpu_families(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [web_hpa()]
        poller.tick()

        assert registry.series(CURRENT_CPU_VALUE) == []
        assert registry.series(CURRENT_CPU_PERCENTAGE) == []
        assert registry.series(TARGET_CPU_PERCENTAGE) == []

    def test_absent_optional_fields_are_not_published(self, poller, autoscaling_api, registry, sample):
        autoscaling_api.items = [web_hpa(min_replicas=None, last_scale_time=None)]
        poller.tick()

        assert registry.series(MIN_PODS) == []
        assert registry.series(LAST_SCALE_SECOND) == []
        assert sample(MAX_PODS, base_labels()) == 10.0

    def test_fetch_error_leaves_series_untouched(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [web_hpa()]
        poller.tick()
        before = registry.exposition()

        autoscaling_api.error = RuntimeError("connection refused")
        assert poller.tick() is None

        assert registry.exposition() == before
        assert "connection refused" in poller.last_error
        assert poller.status()["last_error"] == poller.last_error

    def test_success_clears_last_error(self, poller, autoscaling_api):
        autoscaling_api.error = RuntimeError("boom")
        poller.tick()

        autoscaling_api.error = None
        autoscaling_api.items = [web_hpa()]
        poller.tick()

        status = poller.status()
        assert status["last_error"] is None
        assert status["last_success"] is not None
        assert status["ticks"] == 2
        assert status["autoscalers"] == 1

    def test_payload_error_skips_only_that_autoscaler(self, poller, autoscaling_api, sample):
        broken = make_v2_hpa(name="broken", metrics=[v2_resource_spec(average_value="not-a-quantity")])
        autoscaling_api.items = [broken, web_hpa()]

        assert poller.tick() == 1
        assert poller.last_skipped == 1
        assert sample(CURRENT_PODS, base_labels(name="broken")) is None
        assert sample(CURRENT_PODS, base_labels()) == 3.0

    def test_unchanged_snapshot_is_idempotent(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [web_hpa()]
        poller.tick()
        before = registry.exposition()

        poller.tick()

        assert registry.exposition() == before

    def test_vanished_autoscaler_series_remain(self, poller, autoscaling_api, sample):
        autoscaling_api.items = [web_hpa()]
        poller.tick()
        autoscaling_api.items = []
        poller.tick()

        assert sample(CURRENT_PODS, base_labels()) == 3.0
        assert sample(CURRENT_METRICS_VALUE, {**base_labels(), **CPU_LABELS}) == 72.0
        assert len(poller.relabeler) == 2
        assert len(poller.published) == 1

    def test_dropped_metric_and_min_replicas_are_retired(self, poller, autoscaling_api, registry, sample):
        autoscaling_api.items = [web_hpa()]
        poller.tick()
        assert sample(CURRENT_METRICS_VALUE, {**base_labels(), **CPU_LABELS}) == 72.0

        autoscaling_api.items = [web_hpa(current_metrics=[], min_replicas=None, last_scale_time=None)]
        poller.tick()

        assert registry.series(CURRENT_METRICS_VALUE) == []
        assert registry.series(MIN_PODS) == []
        assert registry.series(LAST_SCALE_SECOND) == []
        assert sample(TARGET_METRICS_VALUE, {**base_labels(), **CPU_LABELS}) == 80.0
        assert sample(MAX_PODS, base_labels()) == 10.0

    def test_renamed_metric_replaces_old_series(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [web_hpa(metrics=[v2_resource_spec(name="cpu", utilization=80)])]
        poller.tick()
        autoscaling_api.items = [web_hpa(metrics=[v2_resource_spec(name="memory", utilization=70)])]
        poller.tick()

        [(labels, value)] = registry.series(TARGET_METRICS_VALUE)
        assert labels["metric_target_name"] == "memory"
        assert value == 70.0

    def test_retirement_is_per_autoscaler(self, poller, autoscaling_api, sample):
        autoscaling_api.items = [web_hpa(), web_hpa(name="api")]
        poller.tick()
        autoscaling_api.items = [web_hpa(current_metrics=[]), web_hpa(name="api")]
        poller.tick()

        assert sample(CURRENT_METRICS_VALUE, {**base_labels(), **CPU_LABELS}) is None
        assert sample(CURRENT_METRICS_VALUE, {**base_labels(name="api"), **CPU_LABELS}) == 72.0

    def test_fetch_error_does_not_retire_series(self, poller, autoscaling_api, sample):
        autoscaling_api.items = [web_hpa()]
        poller.tick()
        autoscaling_api.error = RuntimeError("timeout")
        poller.tick()

        assert sample(MIN_PODS, base_labels()) == 2.0
        assert sample(CURRENT_METRICS_VALUE, {**base_labels(), **CPU_LABELS}) == 72.0

    def test_invalid_object_skips_only_that_autoscaler(self, poller, autoscaling_api, sample):
        autoscaling_api.items = [make_v2_hpa(name="broken", max_replicas=-1), web_hpa()]

        assert poller.tick() == 1
        assert poller.last_skipped == 1
        assert sample(CURRENT_PODS, base_labels()) == 3.0

    def test_changed_condition_reason_does_not_leak(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [web_hpa()]
        poller.tick()
        autoscaling_api.items = [web_hpa(conditions=[
            v2_condition("AbleToScale", "True", "SucceededRescale", "the HPA controller was able to update"),
        ])]
        poller.tick()

        reasons = sorted(labels["cond_reason"] for labels, _ in registry.series(ABLE_TO_SCALE))
        assert reasons == ["", "SucceededRescale"]


class TestMetricsPollerV1:
    """autoscaling/v1 publishing"""

    @pytest.fixture
    def poller(self, v1_fetcher, registry):
        return MetricsPoller(v1_fetcher, V1AutoscalerParser(), registry)

    def test_publishes_cpu_families(self, poller, autoscaling_api, sample):
        autoscaling_api.items = [make_v1_hpa(current_metrics=[
            {"type": "Resource", "resource": {"name": "cpu", "currentAverageUtilization": 72,
                                              "currentAverageValue": "250m"}},
        ])]
        poller.tick()

        labels = base_labels()
        assert sample(TARGET_CPU_PERCENTAGE, labels) == 80.0
        assert sample(CURRENT_CPU_PERCENTAGE, labels) == 72.0
        assert sample(CURRENT_CPU_VALUE, labels) == 0.25
        assert sample(TARGET_METRICS_VALUE, {**labels, **CPU_LABELS}) == 80.0

    def test_absent_cpu_fields_are_not_published(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [make_v1_hpa(current_cpu=None)]
        poller.tick()

        assert registry.series(CURRENT_CPU_PERCENTAGE) == []
        assert registry.series(CURRENT_CPU_VALUE) == []

    def test_malformed_annotation_skips_autoscaler(self, poller, autoscaling_api, registry):
        autoscaling_api.items = [make_v1_hpa(current_metrics="{oops")]

        assert poller.tick() == 0
        assert registry.series(CURRENT_PODS) == []


class TestConditionLogPoller:
    """Condition logging cycle"""

    @pytest.fixture
    def sink(self):
        return RecordingSink()

    @pytest.fixture
    def poller(self, v2_fetcher, sink):
        return ConditionLogPoller(v2_fetcher, V2AutoscalerParser(), sink, interval=60)

    def test_emits_one_record_per_autoscaler(self, poller, autoscaling_api, sink):
        autoscaling_api.items = [web_hpa(), make_v2_hpa(name="api")]

        assert poller.tick() == 2

        [batch] = sink.batches
        assert [record.name for record in batch] == ["web", "api"]
        assert batch[0].conditions[0]["type"] == "AbleToScale"
        assert batch[0].conditions[0]["lastTransitionTime"] == "2024-05-01T12:00:00Z"
        assert batch[1].conditions == []

    def test_fetch_error_skips_tick(self, poller, autoscaling_api, sink):
        autoscaling_api.error = RuntimeError("forbidden")

        assert poller.tick() is None
        assert sink.batches == []

    def test_sink_error_is_contained(self, v2_fetcher, autoscaling_api):
        sink = Mock(spec=ConditionSink)
        sink.emit.side_effect = LogSinkError("throttled")
        poller = ConditionLogPoller(v2_fetcher, V2AutoscalerParser(), sink)
        autoscaling_api.items = [web_hpa()]

        assert poller.tick() is None
        sink.emit.assert_called_once()

    def test_malformed_conditions_are_skipped(self, v1_fetcher, autoscaling_api, sink):
        poller = ConditionLogPoller(v1_fetcher, V1AutoscalerParser(), sink)
        autoscaling_api.items = [
            make_v1_hpa(name="broken", conditions="not json"),
            make_v1_hpa(conditions=[{"type": "AbleToScale", "status": "True"}]),
        ]

        assert poller.tick() == 1
        assert sink.batches[0][0].name == "web"


class CountingTask(PeriodicTask):
    name = "counting task"

    def __init__(self, interval, fail=False):
        super().__init__(interval)
        self.fail = fail

    def tick(self):
        self.tick_count += 1
        if self.fail:
            raise RuntimeError("tick failed")


async def run_until(task, ticks):
    runner = asyncio.create_task(task.start())
    while task.tick_count < ticks:
        await asyncio.sleep(0.01)
    await task.stop()
    await asyncio.wait_for(runner, timeout=2)


class TestPeriodicTask:
    """Loop lifecycle"""

    def test_ticks_immediately_and_stops(self):
        task = CountingTask(interval=60)

        asyncio.run(run_until(task, 1))

        assert task.tick_count == 1
        assert not task.running

    def test_failing_tick_does_not_stop_loop(self):
        task = CountingTask(interval=0.01, fail=True)

        asyncio.run(run_until(task, 3))

        assert task.tick_count >= 3

    def test_poller_runs_in_loop(self, v2_fetcher, autoscaling_api, registry, sample):
        autoscaling_api.items = [web_hpa()]
        poller = MetricsPoller(v2_fetcher, V2AutoscalerParser(), registry, interval=60)

        asyncio.run(run_until(poller, 1))

        assert sample(CURRENT_PODS, base_labels()) == 3.0
