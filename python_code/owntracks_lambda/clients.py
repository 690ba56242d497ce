"""
A factory module for creating boto3 clients and the HTTP session.

The handlers in app.py obtain their collaborators here and pass them down
into the core functions, which never construct clients themselves. Tests
either hand the core functions in-memory fakes or run under `moto`, which
intercepts the boto3 calls made by the clients created here.
"""

import logging
import os
from typing import Tuple

import boto3
import botocore.config
import requests
from requests.adapters import HTTPAdapter

from mypy_boto3_s3 import S3Client
from mypy_boto3_sqs import SQSClient

logger = logging.getLogger(__name__)

# The core performs no retries of its own; the SDK's standard retry mode
# covers transient throttling on queue and object-store calls.
BOTO_CONFIG = botocore.config.Config(retries={"max_attempts": 3, "mode": "standard"})

# Connect and read timeouts, in seconds, for the indexing backend.
HTTP_TIMEOUT = (10, 10)


def get_boto_clients() -> Tuple[S3Client, SQSClient]:
    """
    Returns the object-store and queue clients.

    The AWS region is explicitly read from the environment to ensure consistent
    and predictable behavior across both clients.

    Returns:
        A tuple of (s3_client, sqs_client).
    """
    aws_region = os.environ.get("AWS_REGION")
    if not aws_region:
        logger.warning("AWS_REGION not set, boto3 will attempt to resolve it.")

    if os.environ.get("USE_MOTO"):
        logger.info("MOTO ENABLED: Returning mocked AWS clients.")

    s3_client: S3Client = boto3.client(
        "s3", region_name=aws_region, config=BOTO_CONFIG
    )
    sqs_client: SQSClient = boto3.client(
        "sqs", region_name=aws_region, config=BOTO_CONFIG
    )
    return s3_client, sqs_client


def get_http_session() -> requests.Session:
    """
    Returns a session for the indexing backend.

    The connection pool does not block when exhausted, so acquiring a
    connection never waits; the connect and read phases are bounded by
    HTTP_TIMEOUT on each request.
    """
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=1, pool_maxsize=1, pool_block=False, max_retries=0
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
