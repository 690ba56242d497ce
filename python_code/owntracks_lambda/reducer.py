"""
Consolidates the per-minute archive objects into one gzip archive per week.

A run lists everything under the data prefix except today's objects, writes
their contents in key order into a single gzip object under `/archives/`,
and then deletes the originals. The steps are not atomic: if the run dies
after the upload but before the delete, the next run picks the same objects
up again. Only one reducer run may be active at a time; the schedule is
expected to guarantee that.
"""

import gzip
from contextlib import closing
from datetime import datetime, timezone
from tempfile import SpooledTemporaryFile
from typing import List, Optional

from aws_lambda_powertools import Logger
from mypy_boto3_s3 import S3Client
from mypy_boto3_s3.type_defs import ObjectIdentifierTypeDef, ObjectTypeDef

from .core import partition
from .model import ReduceResult

DATA_PREFIX = "/data/"
MAX_FILES = 5000
# DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000
CHUNK_SIZE = 64 * 1024
SPOOL_MAX_MEMORY_BYTES = 64 * 1024 * 1024


def get_archive_key(date: datetime) -> str:
    year, week, _ = date.isocalendar()
    return f"/archives/{year}-{week}.json.gz"


def list_objects(
    s3_client: S3Client, bucket: str, today: datetime
) -> List[ObjectTypeDef]:
    """
    Lists all objects under DATA_PREFIX that were not written today.

    Pages are followed until S3 reports no more, or until more than
    MAX_FILES objects have been collected.

    Returns:
        The retained objects sorted by key, which is chronological order.
    """
    today_component = today.strftime("%Y/%m/%d")
    objects: List[ObjectTypeDef] = []
    continuation_token: Optional[str] = None
    while True:
        if continuation_token:
            response = s3_client.list_objects_v2(
                Bucket=bucket, Prefix=DATA_PREFIX, ContinuationToken=continuation_token
            )
        else:
            response = s3_client.list_objects_v2(Bucket=bucket, Prefix=DATA_PREFIX)

        contents = response.get("Contents")
        if not contents:
            break
        objects.extend(o for o in contents if today_component not in o["Key"])

        continuation_token = response.get("NextContinuationToken")
        if (
            not response.get("IsTruncated")
            or not continuation_token
            or len(objects) > MAX_FILES
        ):
            break

    return sorted(objects, key=lambda o: o["Key"])


def reduce_objects_to_one(
    s3_client: S3Client,
    bucket: str,
    keys: List[str],
    archive_key: str,
    logger: Logger,
) -> None:
    """
    Streams the given objects, in order, through gzip into one new object.

    The compressed stream is buffered in a SpooledTemporaryFile that only
    spills to disk for unusually large weeks. An existing archive under the
    same key is replaced.
    """
    with SpooledTemporaryFile(
        max_size=SPOOL_MAX_MEMORY_BYTES, mode="w+b"
    ) as spool_file:
        with gzip.GzipFile(fileobj=spool_file, mode="wb") as gz:
            for key in keys:
                body = s3_client.get_object(Bucket=bucket, Key=key)["Body"]
                with closing(body):
                    for chunk in body.iter_chunks(chunk_size=CHUNK_SIZE):
                        gz.write(chunk)

        spool_file.seek(0)
        s3_client.put_object(
            Bucket=bucket, Key=archive_key, Body=spool_file, ACL="private"
        )
        logger.info(f"Wrote s3 file {archive_key}", extra={"source_objects": len(keys)})


def delete_objects(
    s3_client: S3Client,
    bucket: str,
    keys: List[str],
    logger: Logger,
    result: ReduceResult,
) -> None:
    for chunk in partition(keys, DELETE_BATCH_SIZE):
        identifiers: List[ObjectIdentifierTypeDef] = [{"Key": k} for k in chunk]
        response = s3_client.delete_objects(
            Bucket=bucket, Delete={"Objects": identifiers}
        )
        deleted = len(response.get("Deleted") or [])
        errors = response.get("Errors") or []
        result.deleted += deleted
        result.errors.extend(errors)
        if errors:
            logger.error(
                f"Deleted {deleted} files, but had errors", extra={"errors": errors}
            )
        else:
            logger.info(f"Deleted {deleted} files")


def reduce(
    s3_client: S3Client,
    bucket: str,
    logger: Logger,
    now: Optional[datetime] = None,
) -> ReduceResult:
    """
    Runs one consolidation pass over the bucket.

    Args:
        s3_client: The boto3 S3 client.
        bucket: The bucket holding both the data and the archives.
        logger: The Powertools Logger instance for structured logging.
        now: The current time; defaults to the wall clock in UTC. Decides
             which day is excluded and which week the archive is named after.

    Returns:
        A ReduceResult; its `archive_key` is None when nothing was reduced.
    """
    now = now or datetime.now(timezone.utc)
    result = ReduceResult()

    objects = list_objects(s3_client, bucket, now)
    if not objects:
        logger.info("No s3 files to process, exiting")
        return result

    result.source_keys = [o["Key"] for o in objects]
    result.archive_key = get_archive_key(now)
    reduce_objects_to_one(
        s3_client, bucket, result.source_keys, result.archive_key, logger
    )
    delete_objects(s3_client, bucket, result.source_keys, logger, result)
    return result
