"""
Data models for the Owntracks ingestion pipeline.

This module defines the data structures passed between the handlers, the
queue-draining core, the message processors and the object-store reducer.
Messages themselves are the plain dictionaries returned by boto3's
`receive_message` call and are typed with the `MessageTypeDef` stub.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TypedDict


class ApiGatewayResponse(TypedDict):
    """
    The response shape API Gateway expects from a Lambda proxy integration.

    API Gateway reads the flag as `isBase64Encoded`, so the key is spelled
    exactly that way.
    """

    statusCode: int
    body: str
    headers: Dict[str, str]
    isBase64Encoded: bool


@dataclass
class ProcessorResult:
    """
    Outcome of running a single message processor against a drained batch.

    The fan-out runner collects one of these per processor. Failures are
    logged and kept here for the caller's metrics; they never propagate.

    Attributes:
        name: The class name of the processor that ran.
        succeeded: False if the processor raised.
        error: The exception raised by the processor, if any.
    """

    name: str
    succeeded: bool = True
    error: Optional[BaseException] = None


@dataclass
class DeleteSummary:
    """Counts reported by the queue backend across all deletion chunks."""

    successful: int = 0
    failed: int = 0
    missing_responses: int = 0


@dataclass
class ReduceResult:
    """
    Outcome of one reducer run.

    Attributes:
        archive_key: The key of the consolidated archive, or None when there
                     was nothing to reduce.
        source_keys: The keys that were consolidated, in archive order.
        deleted: Number of source keys the store reported as deleted.
        errors: The per-key error entries the store reported.
    """

    archive_key: Optional[str] = None
    source_keys: List[str] = field(default_factory=list)
    deleted: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
