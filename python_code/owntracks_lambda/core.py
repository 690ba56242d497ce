"""
Core business logic for the Owntracks queue-draining function.

These functions contain no global state and construct no clients. They
receive the SQS client and the Powertools logger from the handler in app.py,
allowing them to be unit-tested in isolation with fakes.

The delivery contract is at-least-once on the way in (a message can be
redelivered when its visibility timeout expires before cleanup) and
at-most-once per processor: messages are deleted after the fan-out whether
or not every processor succeeded.
"""

import json
from datetime import datetime, timezone
from typing import Dict, List, Sequence, TypeVar

from aws_lambda_powertools import Logger
from mypy_boto3_sqs.client import SQSClient
from mypy_boto3_sqs.type_defs import (
    DeleteMessageBatchRequestEntryTypeDef,
    MessageTypeDef,
)

from .model import DeleteSummary, ProcessorResult
from .processors import MessageProcessor

T = TypeVar("T")

# SQS returns at most 10 messages per receive call and accepts at most 10
# entries per delete call.
MAX_MESSAGES = 10
FETCH_TOTAL_MESSAGES = 250
DELETE_BATCH_SIZE = 10


def partition(items: Sequence[T], partition_size: int) -> List[List[T]]:
    """
    Splits a sequence into consecutive chunks of `partition_size` items.

    The last chunk holds the remainder and is never empty; an empty input
    yields no chunks.

    Raises:
        ValueError: If `partition_size` is not positive.
    """
    if partition_size < 1:
        raise ValueError("partition_size must be positive")
    return [
        list(items[i : i + partition_size])
        for i in range(0, len(items), partition_size)
    ]


def get_queue_url(sqs_client: SQSClient, queue_name: str) -> str:
    return sqs_client.get_queue_url(QueueName=queue_name)["QueueUrl"]


def receive_message_batch(
    sqs_client: SQSClient, queue_url: str
) -> List[MessageTypeDef]:
    response = sqs_client.receive_message(
        QueueUrl=queue_url, MaxNumberOfMessages=MAX_MESSAGES
    )
    return response.get("Messages") or []


def receive_messages(sqs_client: SQSClient, queue_url: str) -> List[MessageTypeDef]:
    """
    Drains the queue in batches of up to MAX_MESSAGES.

    Fetching continues while each call returns a full batch and fewer than
    FETCH_TOTAL_MESSAGES have been collected. A short batch means the queue
    is most likely empty. Messages are not acknowledged here.

    Args:
        sqs_client: The boto3 SQS client.
        queue_url: The URL of the queue to drain.

    Returns:
        Every message received, in arrival order. May be empty.
    """
    messages: List[MessageTypeDef] = []
    while True:
        batch = receive_message_batch(sqs_client, queue_url)
        messages.extend(batch)
        if len(batch) != MAX_MESSAGES or len(messages) >= FETCH_TOTAL_MESSAGES:
            return messages


def run_processors(
    processors: Sequence[MessageProcessor],
    messages: List[MessageTypeDef],
    logger: Logger,
) -> List[ProcessorResult]:
    """
    Runs every processor against the full batch, one after the other.

    A processor that raises is logged with its traceback and recorded as
    failed; the remaining processors still run and nothing is re-raised.

    Returns:
        One ProcessorResult per processor, in invocation order.
    """
    results: List[ProcessorResult] = []
    for processor in processors:
        name = type(processor).__name__
        try:
            processor.process(messages)
            results.append(ProcessorResult(name=name))
        except Exception as e:
            logger.exception(
                "Processor threw exception, continuing", extra={"processor": name}
            )
            results.append(ProcessorResult(name=name, succeeded=False, error=e))
    return results


def delete_messages(
    sqs_client: SQSClient,
    queue_url: str,
    messages: List[MessageTypeDef],
    logger: Logger,
) -> DeleteSummary:
    """
    Deletes messages from the queue in batches of DELETE_BATCH_SIZE.

    Each entry Id is a running ordinal over the whole batch, paired with the
    message's receipt handle. Failed entries are logged and counted but not
    retried; a client error from SQS propagates to the caller.

    Args:
        sqs_client: The boto3 SQS client.
        queue_url: The URL of the queue.
        messages: The messages to acknowledge.
        logger: The Powertools Logger instance for structured logging.

    Returns:
        The successful and failed counts reported by SQS.
    """
    summary = DeleteSummary()
    ordinal = 0
    for chunk in partition(messages, DELETE_BATCH_SIZE):
        entries: List[DeleteMessageBatchRequestEntryTypeDef] = []
        for message in chunk:
            entries.append(
                {"Id": str(ordinal), "ReceiptHandle": message["ReceiptHandle"]}
            )
            ordinal += 1

        response = sqs_client.delete_message_batch(QueueUrl=queue_url, Entries=entries)
        if response is None:
            logger.warning(
                "Deletion of message batch returned no response",
                extra={"entries": len(entries)},
            )
            summary.missing_responses += 1
            continue

        successful = len(response.get("Successful") or [])
        failed = response.get("Failed") or []
        summary.successful += successful
        summary.failed += len(failed)
        if failed:
            logger.warning(
                f"Batch deletion of messages: {successful} successful, "
                f"{len(failed)} failed",
                extra={"failed_messages": failed},
            )
        else:
            logger.info(
                f"Batch deletion of messages: {successful} successful, 0 failed"
            )

    return summary


# Payload keys reported as metrics, by metric name. Only keys present in a
# payload are emitted, so each job reports its own counters.
METRIC_KEYS = {
    "MessagesReceived": "messages",
    "ProcessorFailures": "processor_failures",
    "DeleteFailures": "delete_failures",
    "ObjectsReduced": "objects_reduced",
    "ObjectDeleteFailures": "object_delete_failures",
    "ProcessingLatencyMs": "latency_ms",
}


def emit_metrics(environment: str, status: str, payload: Dict, logger: Logger) -> None:
    """
    Formats and logs metrics in CloudWatch Embedded Metric Format (EMF).

    Dashboards and alarms should filter/group by the 'Environment' dimension.
    """
    counters = {
        name: payload[key] for name, key in METRIC_KEYS.items() if key in payload
    }

    emf_payload = {
        "_aws": {
            "Timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
            "CloudWatchMetrics": [
                {
                    "Namespace": "OwntracksPipeline",
                    "Dimensions": [["Environment"]],
                    "Metrics": [
                        {
                            "Name": k,
                            "Unit": "Milliseconds" if "Latency" in k else "Count",
                        }
                        for k in counters
                    ],
                }
            ],
        },
        "Environment": environment,
        "Status": status,
        **counters,
        **payload,
    }
    logger.info(json.dumps(emf_payload, default=str))
