"""
Message processors run by the queue-draining function.

A processor is anything with a `process(messages)` method. The drain cycle
hands every processor the same list of SQS messages; processors must not
mutate it or share state with each other.

  - S3StoreMessageProcessor archives the raw message bodies to S3.
  - ElasticsearchMessageProcessor indexes the transformed records with a
    single bulk request.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests
from aws_lambda_powertools import Logger
from mypy_boto3_s3 import S3Client
from mypy_boto3_sqs.type_defs import MessageTypeDef

from .clients import HTTP_TIMEOUT

# Decodes to /<owntracks-{now/d{YYYY}}>/location/_bulk. Elasticsearch resolves
# the date math so documents land in owntracks-<current year>.
BULK_PATH = "/%3Cowntracks-%7Bnow%2Fd%7BYYYY%7D%7D%3E/location/_bulk"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
ARCHIVE_KEY_FORMAT = "/data/%Y/%m/%d/%H:%M.json"


class MessageProcessor(Protocol):
    def process(self, messages: List[MessageTypeDef]) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class S3StoreMessageProcessor:
    """Writes the raw message bodies, one per line, to a per-minute S3 object."""

    def __init__(
        self,
        s3_client: S3Client,
        bucket: str,
        logger: Logger,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._s3 = s3_client
        self._bucket = bucket
        self._logger = logger
        self._clock = clock

    def process(self, messages: List[MessageTypeDef]) -> None:
        key = self.get_key(self._clock())
        self._s3.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=self.get_data(messages),
            ACL="private",
            ContentType="text/json",
        )
        self._logger.info(f"Stored {len(messages)} messages in file {key}")

    @staticmethod
    def get_data(messages: List[MessageTypeDef]) -> bytes:
        return "".join(m["Body"] + "\n" for m in messages).encode("utf-8")

    @staticmethod
    def get_key(date: datetime) -> str:
        return date.strftime(ARCHIVE_KEY_FORMAT)


def format_timestamp(epoch_seconds: int) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def transform_record(body: str) -> Dict[str, Any]:
    """
    Turns an Owntracks location record into the document that gets indexed.

    - A single leading underscore is stripped from field names (`_type`
      becomes `type`), since Elasticsearch reserves those names.
    - `lat` and `lon` are replaced by a `location` geo point.
    - The epoch seconds in `tst` are kept and copied into `timestamp` as a
      UTC ISO-8601 string.

    Raises:
        ValueError: If the body is not JSON.
        KeyError: If `lat`, `lon` or `tst` is missing.
    """
    record = json.loads(body)
    document = {(k[1:] if k.startswith("_") else k): v for k, v in record.items()}

    lon = document.pop("lon")
    lat = document.pop("lat")
    document["location"] = {"lon": lon, "lat": lat}
    document["timestamp"] = format_timestamp(int(document["tst"]))
    return document


def build_bulk_body(messages: List[MessageTypeDef]) -> str:
    """
    Builds a newline-delimited bulk body of action/document pairs.

    The message id is used as the document id, so indexing the same message
    twice overwrites rather than duplicates.
    """
    lines = []
    for message in messages:
        lines.append(json.dumps({"index": {"_id": message["MessageId"]}}))
        lines.append(json.dumps(transform_record(message["Body"])))
    return "\n".join(lines) + "\n"


class ElasticsearchMessageProcessor:
    """
    Sends a batch to Elasticsearch as one bulk request.

    The processor is disabled when either the host or the credential is
    empty; `process` then returns without doing anything.
    """

    def __init__(
        self,
        host: str,
        authorization: str,
        logger: Logger,
        session: Optional[requests.Session] = None,
    ):
        self.enabled = bool(host) and bool(authorization)
        self._url = f"{host.rstrip('/')}{BULK_PATH}"
        self._authorization = authorization
        self._logger = logger
        self._session = session if session is not None else requests.Session()

    def process(self, messages: List[MessageTypeDef]) -> None:
        if not self.enabled:
            return

        response = self._session.put(
            self._url,
            data=build_bulk_body(messages).encode("utf-8"),
            headers={
                "Authorization": f"Basic {self._authorization}",
                "Content-Type": "application/x-ndjson",
            },
            timeout=HTTP_TIMEOUT,
        )
        self._logger.info(
            f"Response from sending bulk to elastic cluster: {response.status_code}"
        )

        if not response.ok:
            self._logger.error(
                f"Bulk request was rejected, logging whole response: {response.text}"
            )
            response.raise_for_status()

        payload = response.json()
        if payload.get("errors"):
            self._logger.error(
                f"Response returned errors, logging whole response: {response.text}"
            )
