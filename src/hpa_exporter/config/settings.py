#!/usr/bin/env python3
"""
Configuration settings using Pydantic for environment variable loading
"""

import os
from typing import Optional, Dict, Any, Tuple, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_LISTEN_ADDRESS = ":9296"


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Split a ``host:port`` listen address; an empty host binds all interfaces"""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address `{address}`, expected [host]:port")
    port_num = int(port)
    if not 0 < port_num < 65536:
        raise ValueError(f"invalid port {port_num} in listen address `{address}`")
    return (host.strip("[]") or "0.0.0.0"), port_num


class ServerSettings(BaseSettings):
    """HTTP surface configuration settings"""
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    metrics_path: str = "/metrics"

    model_config = SettingsConfigDict(env_prefix="HPA_EXPORTER_", extra="ignore")

    @field_validator("listen_address")
    @classmethod
    def _check_listen_address(cls, value: str) -> str:
        parse_listen_address(value)
        return value

    @field_validator("metrics_path")
    @classmethod
    def _check_metrics_path(cls, value: str) -> str:
        if not value.startswith("/") or value == "/":
            raise ValueError("metrics path must start with `/` and must not be the root path")
        return value

    @property
    def host(self) -> str:
        return parse_listen_address(self.listen_address)[0]

    @property
    def port(self) -> int:
        return parse_listen_address(self.listen_address)[1]


class ExporterSettings(BaseSettings):
    """Polling and condition logging settings"""
    api_version: Literal["v1", "v2"] = "v2"
    metrics_interval: int = Field(30, ge=1)

    # Condition logging
    condition_logging: bool = False
    logging_interval: int = Field(60, ge=1)
    logging_to: Literal["stdout", "cwlogs"] = "stdout"
    cw_log_group: str = Field("hpa-exporter", min_length=1)
    cw_log_stream: str = Field("condition-log", min_length=1)

    model_config = SettingsConfigDict(env_prefix="HPA_EXPORTER_", extra="ignore")


class KubernetesSettings(BaseSettings):
    """Kubernetes configuration settings"""
    # None means try in-cluster config first and fall back to kubeconfig
    in_cluster: Optional[bool] = None
    kubeconfig_path: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="KUBERNETES_", extra="ignore")


class AWSSettings(BaseSettings):
    """AWS settings for the CloudWatch Logs condition sink"""
    region: str = Field(
        "us-east-1",
        validation_alias=AliasChoices("AWS_REGION", "AWS_DEFAULT_REGION"),
    )
    endpoint_url: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("AWS_ENDPOINT_URL"),
    )

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    def to_boto3_kwargs(self) -> Dict[str, Any]:
        """Build kwargs suitable for ``boto3.client``"""
        kwargs: Dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        return kwargs


class LoggingSettings(BaseSettings):
    """Logging configuration settings"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    colors: bool = True

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level `{value}`")
        return value


class Settings(BaseSettings):
    """Main settings class that includes all sub-settings"""
    debug: bool = False

    # Component settings
    server: ServerSettings = Field(default_factory=ServerSettings)
    exporter: ExporterSettings = Field(default_factory=ExporterSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="HPA_EXPORTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def load_from_yaml_with_env_override(cls, yaml_path: str) -> "Settings":
        """Load settings from YAML file, substituting ${VAR} references from the environment"""
        import yaml

        yaml_config: Dict[str, Any] = {}
        if os.path.exists(yaml_path):
            with open(yaml_path, 'r') as f:
                yaml_content = f.read()
                for key, value in os.environ.items():
                    yaml_content = yaml_content.replace(f"${{{key}}}", value)
                yaml_config = yaml.safe_load(yaml_content) or {}

        return cls(
            debug=yaml_config.get("debug", False),
            server=ServerSettings(**(yaml_config.get("server") or {})),
            exporter=ExporterSettings(**(yaml_config.get("exporter") or {})),
            kubernetes=KubernetesSettings(**(yaml_config.get("kubernetes") or {})),
            aws=AWSSettings(**(yaml_config.get("aws") or {})),
            logging=LoggingSettings(**(yaml_config.get("logging") or {})),
        )
