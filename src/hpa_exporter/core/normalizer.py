#!/usr/bin/env python3
"""
Normalizes autoscaling/v1 and autoscaling/v2 HorizontalPodAutoscaler objects
into AutoscalerSnapshot models.

Both API shapes end up with the same label space. Per metric kind:

    Object    target kind/name from the described object, metric name from the source
    Pods      synthetic target ("Pod", "-"), per-pod average value
    Resource  synthetic target ("Resource", <resource name>), metric name "-",
              utilization percentage if present, otherwise the average value
    External  synthetic target ("External", "-"), per-pod average value if present,
              otherwise the plain value

Quantities are converted from milli-units to decimal. Unknown metric kinds are
skipped, and a descriptor whose value is absent is not emitted.
"""

import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kubernetes.utils import parse_quantity
from pydantic import ValidationError

from hpa_exporter.core.logging_config import get_logger
from hpa_exporter.exceptions import PayloadError
from hpa_exporter.models.hpa import (
    AutoscalerSnapshot,
    Condition,
    MetricDescriptor,
    ScaleTargetRef,
    METRIC_KIND_EXTERNAL,
    METRIC_KIND_OBJECT,
    METRIC_KIND_PODS,
    METRIC_KIND_RESOURCE,
    NO_VALUE,
)

logger = get_logger(__name__)

CURRENT_METRICS_ANNOTATION = "autoscaling.alpha.kubernetes.io/current-metrics"
TARGET_METRICS_ANNOTATION = "autoscaling.alpha.kubernetes.io/metrics"
CONDITIONS_ANNOTATION = "autoscaling.alpha.kubernetes.io/conditions"

MILLI = 1000


def milli_to_decimal(quantity: Any) -> float:
    """
    Convert a Kubernetes quantity ("2500m", "1.5", "100Mi", 3) to a decimal number

    The value goes through its milli representation, rounded up, the same way
    the API machinery's MilliValue does.

    Raises:
        ValueError: if the quantity cannot be parsed
    """
    return math.ceil(parse_quantity(quantity) * MILLI) / MILLI


def _first_present(*values):
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _descriptor(kind: str, target_kind: str, target_name: Optional[str], metric_name: Optional[str],
                quantity: Any = None, utilization: Optional[int] = None) -> Optional[MetricDescriptor]:
    if utilization is not None:
        value = float(utilization)
    elif quantity is not None:
        value = milli_to_decimal(quantity)
    else:
        return None
    return MetricDescriptor(
        kind=kind,
        target_kind=target_kind or NO_VALUE,
        target_name=target_name or NO_VALUE,
        metric_name=metric_name or NO_VALUE,
        value=value,
    )


def _format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class AutoscalerParser:
    """Base class for the per-API-version normalizers"""

    api_version: str = ""

    def parse(self, hpa: Any) -> AutoscalerSnapshot:
        """
        Build a snapshot from one autoscaler object

        Raises:
            PayloadError: if the object carries malformed annotations or quantities
        """
        raise NotImplementedError

    def raw_conditions(self, hpa: Any) -> List[Dict[str, Any]]:
        """Conditions in API (camelCase) form for the condition log"""
        raise NotImplementedError

    @staticmethod
    def _identity(hpa: Any):
        meta = hpa.metadata
        return meta.namespace or "", meta.name or ""

    @staticmethod
    def _scale_target(ref: Any) -> ScaleTargetRef:
        return ScaleTargetRef(kind=ref.kind, name=ref.name, api_version=ref.api_version or "")

    @staticmethod
    def _describe(metric: Any, side: str) -> Optional[MetricDescriptor]:
        raise NotImplementedError

    def _describe_all(self, metrics: Optional[List[Any]], side: str) -> List[MetricDescriptor]:
        descriptors = []
        for metric in metrics or []:
            descriptor = self._describe(metric, side)
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors


class V2AutoscalerParser(AutoscalerParser):
    """Normalizer for typed autoscaling/v2 objects"""

    api_version = "v2"

    def parse(self, hpa: Any) -> AutoscalerSnapshot:
        namespace, name = self._identity(hpa)
        spec = hpa.spec
        status = hpa.status

        # ValidationError is a ValueError
        try:
            target_metrics = self._describe_all(spec.metrics, "target")
            current_metrics = self._describe_all(status.current_metrics if status else None, "current")
            conditions = self._conditions(status)

            return AutoscalerSnapshot(
                name=name,
                namespace=namespace,
                scale_target=self._scale_target(spec.scale_target_ref),
                current_replicas=(status.current_replicas if status else None) or 0,
                desired_replicas=(status.desired_replicas if status else None) or 0,
                min_replicas=spec.min_replicas,
                max_replicas=spec.max_replicas,
                last_scale_time=status.last_scale_time if status else None,
                target_metrics=target_metrics,
                current_metrics=current_metrics,
                conditions=conditions,
                raw_conditions=[self._condition_dict(c) for c in conditions],
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise PayloadError(namespace, name, f"invalid autoscaler: {e}") from e

    def raw_conditions(self, hpa: Any) -> List[Dict[str, Any]]:
        namespace, name = self._identity(hpa)
        try:
            return [self._condition_dict(c) for c in self._conditions(hpa.status)]
        except ValueError as e:
            raise PayloadError(namespace, name, f"invalid autoscaler condition: {e}") from e

    @staticmethod
    def _conditions(status: Any) -> List[Condition]:
        return [
            Condition(
                type=c.type,
                status=c.status,
                reason=c.reason or "",
                message=c.message or "",
                last_transition_time=c.last_transition_time,
            )
            for c in ((status.conditions if status else None) or [])
        ]

    @staticmethod
    def _condition_dict(condition: Condition) -> Dict[str, Any]:
        return {
            "type": condition.type,
            "status": condition.status,
            "lastTransitionTime": _format_time(condition.last_transition_time),
            "reason": condition.reason,
            "message": condition.message,
        }

    @staticmethod
    def _describe(metric: Any, side: str) -> Optional[MetricDescriptor]:
        """
        Describe one MetricSpec (side="target") or MetricStatus (side="current")

        V2MetricTarget and V2MetricValueStatus share their value fields, so both
        sides read the same attributes off a different holder.
        """
        kind = metric.type
        if kind == METRIC_KIND_OBJECT and metric.object is not None:
            source = metric.object
            values = getattr(source, side)
            ref = source.described_object
            return _descriptor(kind, ref.kind, ref.name, source.metric.name,
                               quantity=_first_present(values.value, values.average_value))
        if kind == METRIC_KIND_PODS and metric.pods is not None:
            source = metric.pods
            values = getattr(source, side)
            return _descriptor(kind, "Pod", NO_VALUE, source.metric.name, quantity=values.average_value)
        if kind == METRIC_KIND_RESOURCE and metric.resource is not None:
            source = metric.resource
            values = getattr(source, side)
            return _descriptor(kind, "Resource", source.name, NO_VALUE,
                               quantity=values.average_value, utilization=values.average_utilization)
        if kind == METRIC_KIND_EXTERNAL and metric.external is not None:
            source = metric.external
            values = getattr(source, side)
            return _descriptor(kind, "External", NO_VALUE, source.metric.name,
                               quantity=_first_present(values.average_value, values.value))

        logger.debug(f"Skipping unsupported {side} metric kind: {kind}")
        return None


# Value field names of the v2beta1 JSON schema carried in the v1 annotations
_ANNOTATION_FIELDS = {
    "target": {
        METRIC_KIND_OBJECT: ("targetValue", "averageValue"),
        METRIC_KIND_PODS: ("targetAverageValue",),
        METRIC_KIND_RESOURCE: ("targetAverageUtilization", "targetAverageValue"),
        METRIC_KIND_EXTERNAL: ("targetAverageValue", "targetValue"),
    },
    "current": {
        METRIC_KIND_OBJECT: ("currentValue", "averageValue"),
        METRIC_KIND_PODS: ("currentAverageValue",),
        METRIC_KIND_RESOURCE: ("currentAverageUtilization", "currentAverageValue"),
        METRIC_KIND_EXTERNAL: ("currentAverageValue", "currentValue"),
    },
}


class V1AutoscalerParser(AutoscalerParser):
    """
    Normalizer for autoscaling/v1 objects

    autoscaling/v1 only models CPU utilization directly; everything else travels
    in the alpha annotations as JSON in the v2beta1 schema.
    """

    api_version = "v1"

    def parse(self, hpa: Any) -> AutoscalerSnapshot:
        namespace, name = self._identity(hpa)
        spec = hpa.spec
        status = hpa.status
        annotations = hpa.metadata.annotations or {}

        try:
            current_json = self._load_annotation(annotations, CURRENT_METRICS_ANNOTATION)
            target_json = self._load_annotation(annotations, TARGET_METRICS_ANNOTATION)
            condition_json = self._load_annotation(annotations, CONDITIONS_ANNOTATION)

            target_metrics = []
            if spec.target_cpu_utilization_percentage is not None:
                target_metrics.append(_descriptor(METRIC_KIND_RESOURCE, "Resource", "cpu", NO_VALUE,
                                                  utilization=spec.target_cpu_utilization_percentage))
            target_metrics.extend(self._describe_all(target_json, "target"))
            current_metrics = self._describe_all(current_json, "current")
            current_cpu_value = self._current_cpu_value(current_json)

            conditions = [
                Condition(
                    type=c["type"],
                    status=c["status"],
                    reason=c.get("reason") or "",
                    message=c.get("message") or "",
                    last_transition_time=c.get("lastTransitionTime"),
                )
                for c in condition_json
            ]

            return AutoscalerSnapshot(
                name=name,
                namespace=namespace,
                scale_target=self._scale_target(spec.scale_target_ref),
                current_replicas=(status.current_replicas if status else None) or 0,
                desired_replicas=(status.desired_replicas if status else None) or 0,
                min_replicas=spec.min_replicas,
                max_replicas=spec.max_replicas,
                last_scale_time=status.last_scale_time if status else None,
                target_metrics=target_metrics,
                current_metrics=current_metrics,
                conditions=conditions,
                current_cpu_utilization=status.current_cpu_utilization_percentage if status else None,
                target_cpu_utilization=spec.target_cpu_utilization_percentage,
                current_cpu_value=current_cpu_value,
                raw_conditions=condition_json,
            )
        except (KeyError, TypeError, AttributeError, ValueError, ValidationError) as e:
            raise PayloadError(namespace, name, f"malformed autoscaler: {e}") from e

    def raw_conditions(self, hpa: Any) -> List[Dict[str, Any]]:
        namespace, name = self._identity(hpa)
        try:
            return self._load_annotation(hpa.metadata.annotations or {}, CONDITIONS_ANNOTATION)
        except ValueError as e:
            raise PayloadError(namespace, name, f"malformed conditions annotation: {e}") from e

    @staticmethod
    def _load_annotation(annotations: Dict[str, str], key: str) -> List[Dict[str, Any]]:
        raw = annotations.get(key)
        if not raw:
            return []
        data = json.loads(raw)
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            raise ValueError(f"annotation {key} is not a list of objects")
        return data

    @staticmethod
    def _describe(metric: Dict[str, Any], side: str) -> Optional[MetricDescriptor]:
        kind = metric.get("type")
        fields = _ANNOTATION_FIELDS[side].get(kind)
        if fields is None:
            logger.debug(f"Skipping unsupported {side} metric kind: {kind}")
            return None

        source = metric.get(kind[0].lower() + kind[1:]) or {}
        if kind == METRIC_KIND_OBJECT:
            ref = source.get("target") or {}
            return _descriptor(kind, ref.get("kind"), ref.get("name"), source.get("metricName"),
                               quantity=_first_present(*(source.get(f) for f in fields)))
        if kind == METRIC_KIND_PODS:
            return _descriptor(kind, "Pod", NO_VALUE, source.get("metricName"),
                               quantity=source.get(fields[0]))
        if kind == METRIC_KIND_RESOURCE:
            return _descriptor(kind, "Resource", source.get("name"), NO_VALUE,
                               quantity=source.get(fields[1]), utilization=source.get(fields[0]))
        return _descriptor(kind, "External", NO_VALUE, source.get("metricName"),
                           quantity=_first_present(*(source.get(f) for f in fields)))

    @staticmethod
    def _current_cpu_value(current_json: List[Dict[str, Any]]) -> Optional[float]:
        for metric in current_json:
            resource = metric.get("resource") or {}
            if metric.get("type") == METRIC_KIND_RESOURCE and resource.get("name") == "cpu":
                value = resource.get("currentAverageValue")
                return milli_to_decimal(value) if value else None
        return None


_PARSERS = {
    "v1": V1AutoscalerParser,
    "v2": V2AutoscalerParser,
}


def get_parser(api_version: str) -> AutoscalerParser:
    """Return the normalizer for an autoscaling API version (``v1`` or ``v2``)"""
    try:
        return _PARSERS[api_version]()
    except KeyError:
        raise ValueError(f"Unsupported autoscaling API version: {api_version}") from None
