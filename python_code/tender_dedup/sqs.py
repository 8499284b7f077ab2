"""
SQS adapter used by the router and orchestrator.

Wraps the boto3 SQS client with the batching rules the SQS API imposes
(at most 10 entries per call) and with FIFO-specific attributes on send.
"""

import json
import random
import time
import uuid
from typing import Iterator, List, Sequence, TypeVar, cast

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError
from mypy_boto3_sqs.client import SQSClient
from mypy_boto3_sqs.type_defs import (
    DeleteMessageBatchRequestEntryTypeDef,
    SendMessageBatchRequestEntryTypeDef,
)

from .model import AckEntry, BatchFailure, BatchResult, SQSEventRecord

# Hard limit imposed by SendMessageBatch, DeleteMessageBatch and ReceiveMessage.
MAX_BATCH_SIZE = 10
DEFAULT_MESSAGE_GROUP = "DefaultGroup"
DELETE_ATTEMPTS = 3

T = TypeVar("T")


def chunked(items: Sequence[T], size: int = MAX_BATCH_SIZE) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def is_fifo_queue(queue_url: str) -> bool:
    return queue_url.endswith(".fifo")


def message_group_for(body: str) -> str:
    """
    Picks the FIFO MessageGroupId for a payload: its `source` field, or the
    default group if the body is not a JSON object with a non-blank source.
    """
    try:
        source = json.loads(body).get("source")
    except (ValueError, AttributeError):
        return DEFAULT_MESSAGE_GROUP
    if isinstance(source, str) and source.strip():
        return source
    return DEFAULT_MESSAGE_GROUP


def _failures(response) -> List[BatchFailure]:
    return [
        BatchFailure(
            id=f["Id"],
            code=f.get("Code", ""),
            message=f.get("Message", ""),
            sender_fault=bool(f.get("SenderFault", False)),
        )
        for f in response.get("Failed", [])
    ]


class SqsQueueClient:
    """Receives, sends and deletes SQS messages in API-sized batches."""

    def __init__(self, sqs_client: SQSClient, logger: Logger):
        self._sqs = sqs_client
        self._logger = logger

    def receive_batch(
        self,
        queue_url: str,
        max_count: int = MAX_BATCH_SIZE,
        wait_seconds: int = 2,
        visibility_timeout: int = 300,
    ) -> List[SQSEventRecord]:
        """
        Receives up to `max_count` messages, waiting at most `wait_seconds`.

        Returns an empty list if the queue has nothing to deliver.
        """
        response = self._sqs.receive_message(
            QueueUrl=queue_url,
            MaxNumberOfMessages=min(max_count, MAX_BATCH_SIZE),
            WaitTimeSeconds=wait_seconds,
            VisibilityTimeout=visibility_timeout,
        )
        return [
            SQSEventRecord(
                messageId=m["MessageId"],
                receiptHandle=m["ReceiptHandle"],
                body=m.get("Body", ""),
            )
            for m in response.get("Messages", [])
        ]

    def send_batch(self, queue_url: str, payloads: Sequence[str]) -> BatchResult:
        """
        Sends payloads to `queue_url` in chunks of 10.

        For FIFO queues every entry gets a fresh MessageDeduplicationId and a
        MessageGroupId taken from the payload's `source`. Per-entry failures are
        logged and returned; transport errors (ClientError) propagate.
        """
        result = BatchResult()
        if not payloads:
            self._logger.debug("No messages provided for batch send.", extra={"queue_url": queue_url})
            return result

        self._logger.info(
            f"Starting batch send of {len(payloads)} messages.", extra={"queue_url": queue_url}
        )
        fifo = is_fifo_queue(queue_url)

        for offset, chunk in enumerate(chunked(payloads)):
            entries: List[SendMessageBatchRequestEntryTypeDef] = []
            for index, body in enumerate(chunk):
                entry = cast(
                    SendMessageBatchRequestEntryTypeDef,
                    {"Id": f"msg_{offset * MAX_BATCH_SIZE + index}", "MessageBody": body},
                )
                if fifo:
                    # Must be unique per message within the 5-minute dedup window.
                    entry["MessageDeduplicationId"] = str(uuid.uuid4())
                    entry["MessageGroupId"] = message_group_for(body)
                entries.append(entry)

            try:
                response = self._sqs.send_message_batch(QueueUrl=queue_url, Entries=entries)
            except ClientError:
                self._logger.exception(
                    "Exception while sending message batch.", extra={"queue_url": queue_url}
                )
                raise

            failures = _failures(response)
            for failure in failures:
                self._logger.error(
                    f"Failed to send message {failure.id}.",
                    extra={"queue_url": queue_url, "code": failure.code, "reason": failure.message},
                )
            result.failed.extend(failures)
            result.succeeded.extend(s["Id"] for s in response.get("Successful", []))

        if result.ok:
            self._logger.info(
                f"Successfully sent {len(result.succeeded)} messages.", extra={"queue_url": queue_url}
            )
        return result

    def delete_batch(self, queue_url: str, messages: Sequence[AckEntry]) -> BatchResult:
        """
        Deletes messages in batches of 10, retrying failures with exponential backoff.

        Never raises for SQS or transport errors: a message that cannot be deleted
        will simply be redelivered, which is safe because routing has already
        completed.
        Entries still failing after all attempts are returned in `failed`.
        """
        result = BatchResult()
        if not messages:
            return result

        # Keyed by message ID, so a message delivered twice is only deleted once.
        handles = dict(messages)
        ids = list(handles)

        for batch_ids in chunked(ids):
            entries = cast(
                List[DeleteMessageBatchRequestEntryTypeDef],
                [{"Id": msg_id, "ReceiptHandle": handles[msg_id]} for msg_id in batch_ids],
            )
            last_failures: List[BatchFailure] = []

            for attempt in range(DELETE_ATTEMPTS):
                try:
                    response = self._sqs.delete_message_batch(QueueUrl=queue_url, Entries=entries)
                except (ClientError, BotoCoreError) as e:
                    self._logger.error(
                        f"{type(e).__name__} on SQS delete_message_batch.",
                        extra={"error": str(e), "attempt": attempt + 1, "queue_url": queue_url},
                    )
                    code = (
                        e.response.get("Error", {}).get("Code", "ClientError")
                        if isinstance(e, ClientError)
                        else type(e).__name__
                    )
                    last_failures = [BatchFailure(id=entry["Id"], code=code, message=str(e)) for entry in entries]
                else:
                    result.succeeded.extend(s["Id"] for s in response.get("Successful", []))
                    last_failures = _failures(response)
                    if not last_failures:
                        entries = []
                        break
                    self._logger.warning(
                        "Partial failure in SQS delete batch.",
                        extra={"attempt": attempt + 1, "failed_messages": [f.id for f in last_failures]},
                    )
                    failed_ids = {f.id for f in last_failures}
                    entries = [e for e in entries if e["Id"] in failed_ids]

                if attempt + 1 < DELETE_ATTEMPTS:
                    # Exponential backoff with jitter: 0.2s, 0.4s + random jitter
                    wait_time = (0.2 * (2**attempt)) + random.uniform(0.0, 0.1)
                    self._logger.info(f"Waiting {wait_time:.2f}s before SQS delete retry.")
                    time.sleep(wait_time)

            if entries:
                self._logger.critical(
                    f"{len(entries)} messages failed to be deleted after all retries. They may be reprocessed.",
                    extra={"failed_ids": [e["Id"] for e in entries], "queue_url": queue_url},
                )
                result.failed.extend(last_failures)

        return result

