"""Shared pytest fixtures and in-memory AWS fakes for the Owntracks tests.

The fakes mirror the boto3 response shapes closely enough for the core
functions, and record every call so tests can assert on call counts.
"""

import io
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from aws_lambda_powertools import Logger
from botocore.exceptions import ClientError
from botocore.response import StreamingBody


def make_message(
    body: str = '{ "foo" : "bar" }',
    message_id: str = "myID",
    receipt_handle: str = "baz",
) -> Dict[str, Any]:
    return {"MessageId": message_id, "ReceiptHandle": receipt_handle, "Body": body}


def make_messages(count: int, prefix: str = "") -> List[Dict[str, Any]]:
    return [
        make_message(message_id=f"{prefix}id-{i}", receipt_handle=f"{prefix}rh-{i}")
        for i in range(count)
    ]


class FakeSQSClient:
    """Serves the configured batches in order, then empty receives."""

    def __init__(self, batches: Optional[List[List[Dict[str, Any]]]] = None):
        self.batches = batches or []
        self.receive_calls = 0
        self.delete_calls: List[List[Dict[str, str]]] = []
        self.sent: List[Dict[str, str]] = []

    def get_queue_url(self, QueueName: str) -> Dict[str, str]:
        return {"QueueUrl": f"https://sqs.local/{QueueName}"}

    def receive_message(
        self, QueueUrl: str, MaxNumberOfMessages: int
    ) -> Dict[str, Any]:
        assert MaxNumberOfMessages == 10
        index = self.receive_calls
        self.receive_calls += 1
        if index >= len(self.batches) or not self.batches[index]:
            return {}
        return {"Messages": list(self.batches[index])}

    def delete_message_batch(
        self, QueueUrl: str, Entries: List[Dict[str, str]]
    ) -> Dict[str, Any]:
        self.delete_calls.append(list(Entries))
        return {"Successful": [{"Id": e["Id"]} for e in Entries], "Failed": []}

    def send_message(self, QueueUrl: str, MessageBody: str) -> Dict[str, str]:
        self.sent.append({"QueueUrl": QueueUrl, "MessageBody": MessageBody})
        return {"MessageId": "my-message-id"}

    @property
    def deleted_receipt_handles(self) -> List[str]:
        return [e["ReceiptHandle"] for call in self.delete_calls for e in call]


class FakeS3Client:
    """A single-bucket key/value store with paged, sorted listings."""

    def __init__(self, page_size: int = 1000):
        self.objects: Dict[str, bytes] = {}
        self.put_calls: List[Dict[str, Any]] = []
        self.list_calls: List[Dict[str, Any]] = []
        self.get_calls: List[Dict[str, str]] = []
        self.delete_calls: List[List[str]] = []
        self.page_size = page_size

    def put_object(
        self, Bucket: str, Key: str, Body: Any, **kwargs: Any
    ) -> Dict[str, Any]:
        data = Body.read() if hasattr(Body, "read") else Body
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.objects[Key] = data
        self.put_calls.append({"Bucket": Bucket, "Key": Key, **kwargs})
        return {}

    def get_object(self, Bucket: str, Key: str) -> Dict[str, Any]:
        self.get_calls.append({"Bucket": Bucket, "Key": Key})
        if Key not in self.objects:
            error = {"Error": {"Code": "NoSuchKey", "Message": "missing"}}
            raise ClientError(error, "GetObject")
        data = self.objects[Key]
        body = StreamingBody(io.BytesIO(data), len(data))
        return {"Body": body, "ContentLength": len(data)}

    def list_objects_v2(
        self, Bucket: str, Prefix: str, ContinuationToken: Optional[str] = None
    ) -> Dict[str, Any]:
        self.list_calls.append(
            {"Prefix": Prefix, "ContinuationToken": ContinuationToken}
        )
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        start = int(ContinuationToken or 0)
        page = keys[start : start + self.page_size]
        response: Dict[str, Any] = {
            "IsTruncated": start + self.page_size < len(keys),
            "KeyCount": len(page),
        }
        if page:
            response["Contents"] = [
                {"Key": k, "Size": len(self.objects[k])} for k in page
            ]
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def delete_objects(self, Bucket: str, Delete: Dict[str, Any]) -> Dict[str, Any]:
        keys = [o["Key"] for o in Delete["Objects"]]
        self.delete_calls.append(keys)
        for key in keys:
            self.objects.pop(key, None)
        return {"Deleted": [{"Key": k} for k in keys]}


@dataclass
class FakeLambdaContext:
    function_name: str = "owntracks-test"
    memory_limit_in_mb: int = 128
    invoked_function_arn: str = (
        "arn:aws:lambda:eu-west-1:123456789012:function:owntracks-test"
    )
    aws_request_id: str = "52fdfc07-2182-154f-163f-5f0f9a621d72"


@pytest.fixture
def logger() -> MagicMock:
    return MagicMock(spec=Logger)


@pytest.fixture
def lambda_context() -> FakeLambdaContext:
    return FakeLambdaContext()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so moto never touches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("USE_MOTO", "1")
