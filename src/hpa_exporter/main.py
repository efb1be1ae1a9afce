#!/usr/bin/env python3
"""
HPA Exporter - Main Entry Point
Publishes HorizontalPodAutoscaler spec/status as Prometheus metrics and optionally
logs autoscaler conditions to stdout or CloudWatch Logs
"""

import argparse
import asyncio
import os
import sys
import threading
from typing import List, Optional

from pydantic import ValidationError

from hpa_exporter.api.server import APIServer
from hpa_exporter.config import Settings
from hpa_exporter.core.condition_log import ConditionSink, build_condition_sink
from hpa_exporter.core.fetcher import AutoscalerFetcher, load_kubernetes_config
from hpa_exporter.core.logging_config import setup_logging, get_logger
from hpa_exporter.core.normalizer import get_parser
from hpa_exporter.core.poller import ConditionLogPoller, MetricsPoller, PeriodicTask
from hpa_exporter.core.registry import MetricRegistry
from hpa_exporter.exceptions import ConfigurationError, LogSinkError


class ExporterService:
    """Main exporter service that wires the pollers, registry and HTTP server"""

    def __init__(self, settings: Settings, registry: Optional[MetricRegistry] = None):
        self.settings = settings

        setup_logging(
            level=settings.logging.level,
            log_file=settings.logging.file,
            enable_colors=settings.logging.colors,
            console_format=settings.logging.format
        )
        self.logger = get_logger(__name__)

        self.registry = registry if registry is not None else MetricRegistry()
        self.parser = get_parser(settings.exporter.api_version)

        self.metrics_poller: Optional[MetricsPoller] = None
        self.condition_poller: Optional[ConditionLogPoller] = None
        self.condition_sink: Optional[ConditionSink] = None
        self.api_server: Optional[APIServer] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._background_thread: Optional[threading.Thread] = None

        if settings.debug:
            self.logger.info(f"Debug mode enabled. Settings: {settings.model_dump()}")

    def initialize(self):
        """
        Load cluster credentials, build the pollers and provision the log sink

        Raises:
            ConfigurationError: if no Kubernetes configuration could be loaded
            LogSinkError: if the CloudWatch log group cannot be provisioned
        """
        exporter = self.settings.exporter
        load_kubernetes_config(self.settings.kubernetes)

        self.metrics_poller = MetricsPoller(
            fetcher=AutoscalerFetcher(exporter.api_version),
            parser=self.parser,
            registry=self.registry,
            interval=exporter.metrics_interval
        )

        if exporter.condition_logging:
            self.condition_sink = build_condition_sink(exporter, self.settings.aws)
            self.condition_sink.provision()
            self.condition_poller = ConditionLogPoller(
                fetcher=AutoscalerFetcher(exporter.api_version),
                parser=self.parser,
                sink=self.condition_sink,
                interval=exporter.logging_interval
            )
            self.logger.info(f"Condition logging to {exporter.logging_to} every {exporter.logging_interval}s")

        self.api_server = APIServer(self.registry, self.settings.server, poller=self.metrics_poller)
        self.logger.info(f"HPA exporter initialized (autoscaling/{exporter.api_version})")

    @property
    def pollers(self) -> List[PeriodicTask]:
        return [p for p in (self.metrics_poller, self.condition_poller) if p is not None]

    def _run_pollers(self, loop: asyncio.AbstractEventLoop):
        async def run_all():
            await asyncio.gather(*(poller.start() for poller in self.pollers))

        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(run_all())
        finally:
            loop.close()

    def start_background(self):
        """Start the poll loops on their own event loop thread"""
        self._loop = asyncio.new_event_loop()
        self._background_thread = threading.Thread(
            target=self._run_pollers, args=(self._loop,), name="hpa-pollers"
        )
        self._background_thread.daemon = True
        self._background_thread.start()
        self.logger.info("Background pollers started")

    def run(self):
        """Start the pollers and serve HTTP until interrupted"""
        self.logger.info("Starting HPA exporter...")
        self.start_background()
        self.api_server.run()

    def shutdown(self, timeout: float = 5.0):
        """Stop the poll loops"""
        # Stops queued before the loop runs are picked up once it does
        if self._loop is not None and not self._loop.is_closed():
            for poller in self.pollers:
                asyncio.run_coroutine_threadsafe(poller.stop(), self._loop)
        if self._background_thread is not None:
            self._background_thread.join(timeout)
        self.logger.info("HPA exporter stopped")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Prometheus exporter for HorizontalPodAutoscalers')
    parser.add_argument(
        '--config',
        default=os.getenv('CONFIG_PATH'),
        help='Path to YAML configuration file'
    )
    parser.add_argument('--listen-address', help='The address to listen on for HTTP requests')
    parser.add_argument('--api-version', choices=['v1', 'v2'], help='autoscaling API version to poll')
    parser.add_argument('--metrics-interval', type=int, help='Interval in seconds to scrape HPA status')
    parser.add_argument(
        '--condition-logging',
        action='store_true',
        default=None,
        help='Log HPA conditions'
    )
    parser.add_argument('--logging-interval', type=int, help='Interval in seconds to log HPA conditions')
    parser.add_argument('--logging-to', choices=['stdout', 'cwlogs'], help='Where to log conditions')
    parser.add_argument('--cw-log-group', help='Name of the CloudWatch log group')
    parser.add_argument('--cw-log-stream', help='Name of the CloudWatch log stream')
    parser.add_argument('--log-level', help='Logging level')
    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    """
    Build settings from the environment, an optional YAML file and CLI overrides

    Raises:
        ConfigurationError: if the file is missing or any value is invalid
    """
    try:
        if args.config:
            if not os.path.exists(args.config):
                raise ConfigurationError(f"Configuration file not found: {args.config}")
            settings = Settings.load_from_yaml_with_env_override(args.config)
        else:
            settings = Settings()

        overrides = {
            "server": {"listen_address": args.listen_address},
            "exporter": {
                "api_version": args.api_version,
                "metrics_interval": args.metrics_interval,
                "condition_logging": args.condition_logging,
                "logging_interval": args.logging_interval,
                "logging_to": args.logging_to,
                "cw_log_group": args.cw_log_group,
                "cw_log_stream": args.cw_log_stream,
            },
            "logging": {"level": args.log_level},
        }
        for group, values in overrides.items():
            values = {key: value for key, value in values.items() if value is not None}
            if values:
                current = getattr(settings, group)
                setattr(settings, group, type(current)(**{**current.model_dump(), **values}))
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e

    return settings


def main(argv: Optional[List[str]] = None):
    """Entry point"""
    args = build_arg_parser().parse_args(argv)

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        setup_logging(enable_colors=False)
        get_logger(__name__).error(f"Invalid configuration: {e}")
        sys.exit(2)

    service = ExporterService(settings)
    try:
        service.initialize()
    except (ConfigurationError, LogSinkError) as e:
        service.logger.error(f"Startup failed: {e}")
        sys.exit(1)

    try:
        service.run()
    except KeyboardInterrupt:
        service.logger.info("Received keyboard interrupt")
    finally:
        service.shutdown()


if __name__ == "__main__":
    main()
