#!/usr/bin/env python3
"""
Destinations for autoscaler condition records
"""

import logging
import time
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from hpa_exporter.config.settings import AWSSettings, ExporterSettings
from hpa_exporter.core.logging_config import CONDITION_LOGGER_NAME, get_logger
from hpa_exporter.exceptions import LogSinkError
from hpa_exporter.models.hpa import ConditionLogRecord

logger = get_logger(__name__)


class ConditionSink:
    """Receives the condition records of one logging tick"""

    def provision(self) -> None:
        """Prepare the destination at startup; failures are fatal"""

    def emit(self, records: List[ConditionLogRecord]) -> None:
        raise NotImplementedError


class StdoutConditionSink(ConditionSink):
    """Writes one JSON line per autoscaler through the logging system"""

    def __init__(self, record_logger: Optional[logging.Logger] = None):
        self.record_logger = record_logger or get_logger(CONDITION_LOGGER_NAME)

    def emit(self, records: List[ConditionLogRecord]) -> None:
        for record in records:
            self.record_logger.info(record.to_json())


class CloudWatchConditionSink(ConditionSink):
    """
    Ships condition records to a CloudWatch Logs stream

    Each tick becomes a single PutLogEvents batch with one event per autoscaler,
    all stamped with the tick time. The stream is created on demand and its
    upload sequence token is passed along when CloudWatch still returns one.
    """

    def __init__(self, log_group: str, log_stream: str, client: Optional[Any] = None,
                 aws_settings: Optional[AWSSettings] = None):
        self.log_group = log_group
        self.log_stream = log_stream
        if client is None:
            aws_settings = aws_settings or AWSSettings()
            client = boto3.client("logs", **aws_settings.to_boto3_kwargs())
        self.client = client

    def provision(self) -> None:
        """
        Make sure the log group exists

        Raises:
            LogSinkError: if the group cannot be described or created
        """
        try:
            response = self.client.describe_log_groups(logGroupNamePrefix=self.log_group)
            names = [group.get("logGroupName") for group in response.get("logGroups", [])]
            if self.log_group not in names:
                logger.info(f"Creating CloudWatch log group {self.log_group}")
                self.client.create_log_group(logGroupName=self.log_group)
        except (BotoCoreError, ClientError) as e:
            raise LogSinkError(f"Failed to provision log group {self.log_group}: {e}") from e

    def _sequence_token(self) -> Optional[str]:
        response = self.client.describe_log_streams(
            logGroupName=self.log_group,
            logStreamNamePrefix=self.log_stream,
        )
        for stream in response.get("logStreams", []):
            if stream.get("logStreamName") == self.log_stream:
                return stream.get("uploadSequenceToken")

        logger.info(f"Creating CloudWatch log stream {self.log_group}/{self.log_stream}")
        self.client.create_log_stream(logGroupName=self.log_group, logStreamName=self.log_stream)
        return None

    def emit(self, records: List[ConditionLogRecord]) -> None:
        """
        Raises:
            LogSinkError: if the stream lookup or the put fails
        """
        if not records:
            return

        timestamp = int(time.time() * 1000)
        request = {
            "logGroupName": self.log_group,
            "logStreamName": self.log_stream,
            "logEvents": [{"timestamp": timestamp, "message": record.to_json()} for record in records],
        }
        try:
            token = self._sequence_token()
            if token:
                request["sequenceToken"] = token
            self.client.put_log_events(**request)
        except (BotoCoreError, ClientError) as e:
            raise LogSinkError(f"Failed to put condition events to {self.log_group}/{self.log_stream}: {e}") from e

        logger.debug(f"Put {len(records)} condition events to {self.log_group}/{self.log_stream}")


def build_condition_sink(exporter: ExporterSettings, aws: AWSSettings) -> ConditionSink:
    """Create the sink selected by ``exporter.logging_to``"""
    if exporter.logging_to == "cwlogs":
        return CloudWatchConditionSink(exporter.cw_log_group, exporter.cw_log_stream, aws_settings=aws)
    return StdoutConditionSink()
