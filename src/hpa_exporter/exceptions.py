#!/usr/bin/env python3
"""
Exception hierarchy for the HPA exporter
"""


class HPAExporterError(Exception):
    """Base class for all exporter errors"""


class ConfigurationError(HPAExporterError):
    """Settings could not be built or failed validation"""


class FetchError(HPAExporterError):
    """Listing autoscalers from the Kubernetes API failed"""


class PayloadError(HPAExporterError):
    """A single autoscaler carried malformed annotation or quantity data"""

    def __init__(self, namespace: str, name: str, message: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f"{namespace}/{name}: {message}")


class LogSinkError(HPAExporterError):
    """The remote condition log sink could not be provisioned or written"""
