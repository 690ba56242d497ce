"""
HTTP entry point logic: authenticates an Owntracks check-in and enqueues it.

The Owntracks app posts its location record through API Gateway using basic
authentication. Recorder-style `x-limit-u` / `x-limit-d` headers carry the
user and device names and are copied into the record before it is queued.
"""

import hmac
import json
from typing import Any, Dict, Mapping, Optional

from aws_lambda_powertools import Logger
from mypy_boto3_sqs import SQSClient

from .core import get_queue_url
from .model import ApiGatewayResponse

AUTH_REQUIRED_HEADERS = {"WWW-Authenticate": 'Basic realm="Owntracks realm"'}
HEADER_FIELDS = {"x-limit-u": "user", "x-limit-d": "device"}


def _build_response(
    status_code: int, body: str, headers: Optional[Dict[str, str]] = None
) -> ApiGatewayResponse:
    return {
        "statusCode": status_code,
        "body": body,
        "headers": headers or {},
        "isBase64Encoded": False,
    }


def _credentials_match(header: Any, basic_auth: str) -> bool:
    expected = f"Basic {basic_auth}".encode("utf-8")
    return hmac.compare_digest(str(header).encode("utf-8"), expected)


def _auth_required() -> ApiGatewayResponse:
    return _build_response(403, "Please authenticate", dict(AUTH_REQUIRED_HEADERS))


def handle_location(
    event: Mapping[str, Any],
    sqs_client: SQSClient,
    queue_name: str,
    basic_auth: str,
    logger: Logger,
) -> ApiGatewayResponse:
    """
    Validates an API Gateway proxy event and sends its body to the queue.

    Returns:
        403 when the basic-auth header is missing or wrong, 400 when there is
        no body, 200 with an empty JSON list once the message is queued.

    Raises:
        ValueError: If the body is not a JSON object.
        botocore.exceptions.ClientError: If the queue cannot be reached.
    """
    headers = event.get("headers")
    if not isinstance(headers, Mapping):
        logger.info("No headers included, no auth header")
        return _auth_required()

    if "Authorization" not in headers:
        logger.info("No authorization header included")
        return _auth_required()

    if not _credentials_match(headers["Authorization"], basic_auth):
        logger.info("Authorization header did not match")
        return _auth_required()

    body = event.get("body")
    if not body:
        return _build_response(400, "Please provide body")

    record = json.loads(body)
    if not isinstance(record, dict):
        raise ValueError("Location payload must be a JSON object")
    for header, field_name in HEADER_FIELDS.items():
        if header in headers:
            record[field_name] = headers[header]

    output = json.dumps(record)
    logger.debug("Write JSON data to SQS", extra={"record": record})
    queue_url = get_queue_url(sqs_client, queue_name)
    response = sqs_client.send_message(QueueUrl=queue_url, MessageBody=output)
    message_id = response["MessageId"]
    logger.info(f"Sent message with id {message_id}")
    return _build_response(200, "[]")
