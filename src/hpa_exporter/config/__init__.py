"""
Configuration module for exporter settings
"""

from .settings import (
    Settings,
    ServerSettings,
    ExporterSettings,
    KubernetesSettings,
    AWSSettings,
    LoggingSettings,
    parse_listen_address,
)

__all__ = [
    "Settings",
    "ServerSettings",
    "ExporterSettings",
    "KubernetesSettings",
    "AWSSettings",
    "LoggingSettings",
    "parse_listen_address",
]
