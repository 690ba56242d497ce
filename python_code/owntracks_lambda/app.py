"""
AWS Lambda handlers for the Owntracks ingestion pipeline.

This module is the entry point and orchestrator for the three functions
deployed from this package:
  - `http_handler`: API Gateway proxy target; authenticates a check-in and
    enqueues it.
  - `processor_handler`: scheduled every ten minutes; drains the queue, runs
    the message processors and deletes the drained messages.
  - `reducer_handler`: scheduled independently; consolidates past days'
    archive objects into the weekly gzip archive.

Configuration and clients are created on first use and cached for the
lifetime of the execution environment. All business logic lives in `core`,
`processors`, `reducer` and `ingest`, which receive their dependencies from
here.
"""

import json
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import requests
from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext
from mypy_boto3_s3 import S3Client
from mypy_boto3_sqs import SQSClient

from . import clients, core, ingest, reducer
from .config import LOG_LEVEL, IngestConfig, ProcessorConfig, ReducerConfig
from .model import ApiGatewayResponse
from .processors import (
    ElasticsearchMessageProcessor,
    MessageProcessor,
    S3StoreMessageProcessor,
)

logger = Logger(service="owntracks", level=LOG_LEVEL)

S3: Optional[S3Client] = None
SQS: Optional[SQSClient] = None
HTTP_SESSION: Optional[requests.Session] = None


@lru_cache(maxsize=None)
def get_processor_config() -> ProcessorConfig:
    return ProcessorConfig.from_env()


@lru_cache(maxsize=None)
def get_reducer_config() -> ReducerConfig:
    return ReducerConfig.from_env()


@lru_cache(maxsize=None)
def get_ingest_config() -> IngestConfig:
    return IngestConfig.from_env()


def get_clients() -> Tuple[S3Client, SQSClient]:
    """Returns the cached boto3 clients, creating them on first use."""
    global S3, SQS
    if S3 is None or SQS is None:
        S3, SQS = clients.get_boto_clients()
    return S3, SQS


def get_http_session() -> requests.Session:
    global HTTP_SESSION
    if HTTP_SESSION is None:
        HTTP_SESSION = clients.get_http_session()
    return HTTP_SESSION


def get_processors(
    config: ProcessorConfig, s3_client: S3Client
) -> List[MessageProcessor]:
    """
    Builds the processors every drained batch is handed to.

    New processors are added to this list; they only need a
    `process(messages)` method.
    """
    return [
        S3StoreMessageProcessor(s3_client, config.bucket, logger),
        ElasticsearchMessageProcessor(
            config.elastic_host, config.elastic_auth, logger, get_http_session()
        ),
    ]


def _latency_ms(start_time: datetime) -> int:
    return int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)


def _fail(environment: str, start_time: datetime, e: Exception) -> None:
    error_payload = {
        "error_type": type(e).__name__,
        "error_message": str(e),
        "latency_ms": _latency_ms(start_time),
    }
    core.emit_metrics(environment, "Failure", error_payload, logger)
    logger.error(f"Processing failed: {json.dumps(error_payload)}", exc_info=True)


# --- LAMBDA HANDLERS ---

@logger.inject_lambda_context
def http_handler(event: Dict[str, Any], context: LambdaContext) -> ApiGatewayResponse:
    config = get_ingest_config()
    _, sqs_client = get_clients()
    return ingest.handle_location(
        event, sqs_client, config.queue_name, config.basic_auth, logger
    )


@logger.inject_lambda_context
def processor_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Runs one drain cycle.

    This function follows these steps:
    1. Drains up to 250 messages from the queue.
    2. Hands the whole batch to every processor; failures are logged only.
    3. Deletes every drained message, whatever the processors reported.
    4. Emits success or failure metrics.

    Queue errors are re-raised so the invocation is reported as failed.
    """
    start_time = datetime.now(timezone.utc)
    config = get_processor_config()
    s3_client, sqs_client = get_clients()
    logger.info("Got input", extra={"input": event})

    try:
        queue_url = core.get_queue_url(sqs_client, config.queue_name)
        messages = core.receive_messages(sqs_client, queue_url)
        if not messages:
            logger.info("No messages in queue, exiting")
            return {"messages": 0}

        processors = get_processors(config, s3_client)
        logger.info(
            f"Going to process {len(messages)} messages "
            f"with {len(processors)} processors"
        )
        results = core.run_processors(processors, messages, logger)
        summary = core.delete_messages(sqs_client, queue_url, messages, logger)

        payload = {
            "messages": len(messages),
            "processor_failures": sum(1 for r in results if not r.succeeded),
            "failed_processors": [r.name for r in results if not r.succeeded],
            "delete_failures": summary.failed,
            "latency_ms": _latency_ms(start_time),
        }
        core.emit_metrics(config.environment, "Success", payload, logger)
        return payload

    except Exception as e:
        _fail(config.environment, start_time, e)
        raise


@logger.inject_lambda_context
def reducer_handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    start_time = datetime.now(timezone.utc)
    config = get_reducer_config()
    s3_client, _ = get_clients()

    try:
        result = reducer.reduce(s3_client, config.bucket, logger)
        if result.archive_key is None:
            return {"objects_reduced": 0}

        payload = {
            "output_key": result.archive_key,
            "objects_reduced": len(result.source_keys),
            "object_delete_failures": len(result.errors),
            "latency_ms": _latency_ms(start_time),
        }
        core.emit_metrics(config.environment, "Success", payload, logger)
        return payload

    except Exception as e:
        _fail(config.environment, start_time, e)
        raise
