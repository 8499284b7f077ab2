"""
Core business logic for the Tender Deduplication Lambda.

These functions contain no direct AWS SDK calls and no global state. They
receive all dependencies, including the Powertools logger, the dedup cache and
the queue client, from the orchestrator, allowing them to be unit-tested in
isolation.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, Optional, Sequence, Tuple

from aws_lambda_powertools import Logger
from aws_lambda_powertools.metrics import MetricUnit, single_metric

from .cache import TenderDedupCache
from .exceptions import MalformedMessageError, MessageRoutingError
from .model import BatchCounters, ClassifiedBatch, MessageOutcome, SQSEventRecord
from .sqs import SqsQueueClient
from .validation import validate_tender

FAILURE_REASON_FIELD = "failureReason"


def annotate_failure(body: str, reason: str) -> str:
    """
    Adds a `failureReason` field to a JSON object body.

    Never raises. If the body is not a JSON object, or re-serialising it fails
    for any reason, the original body is returned unchanged.
    """
    try:
        payload = json.loads(body)
        if not isinstance(payload, dict):
            return body
        payload[FAILURE_REASON_FIELD] = reason
        return json.dumps(payload, ensure_ascii=False)
    except Exception:
        return body


def _parse_tender(body: str) -> Dict[str, Any]:
    """Decodes a message body, raising ValueError if it is not a JSON object."""
    tender = json.loads(body)
    if not isinstance(tender, dict):
        raise MalformedMessageError(f"Expected a JSON object, got {type(tender).__name__}.")
    return tender


def _text_field(tender: Dict[str, Any], name: str) -> Optional[str]:
    value = tender.get(name)
    if isinstance(value, str) and value.strip():
        return value
    return None


def classify_message(
    msg: SQSEventRecord,
    cache: TenderDedupCache,
    logger: Logger,
    now: Optional[datetime] = None,
) -> Tuple[MessageOutcome, str]:
    """
    Decides where a single message goes.

    Returns the outcome and the payload to forward (the original body, or the
    body annotated with a failure reason). A RETRY outcome carries the original
    body and must not be forwarded or acknowledged.
    """
    msg_id = msg.get("messageId", "")
    body = msg.get("body", "")
    try:
        try:
            tender = _parse_tender(body)
        except ValueError as e:
            logger.error(
                "Failed to parse message body. Sending to duplicate/error queue.",
                extra={"messageId": msg_id, "error": str(e)},
            )
            return MessageOutcome.REJECTED, body

        outcome = validate_tender(tender, now=now, logger=logger)
        if not outcome.is_valid:
            reason = outcome.reason or "Tender failed validation."
            logger.info(
                f"Rejecting tender: {reason}",
                extra={"messageId": msg_id, "tenderNumber": tender.get("tenderNumber")},
            )
            return MessageOutcome.REJECTED, annotate_failure(body, reason)

        source = _text_field(tender, "source")
        tender_number = _text_field(tender, "tenderNumber")
        if source is None or tender_number is None:
            logger.warning(
                "Message is missing 'tenderNumber' or 'source'. Treating as unique to avoid data loss.",
                extra={"messageId": msg_id},
            )
            return MessageOutcome.ACCEPTED, body

        if cache.is_duplicate(source, tender_number):
            logger.info(
                f"Duplicate found for source '{source}' with tender number '{tender_number}'.",
                extra={"messageId": msg_id},
            )
            return MessageOutcome.DUPLICATE, body

        return MessageOutcome.ACCEPTED, body
    except Exception:
        logger.exception(
            "Unexpected error processing message. It will be retried after visibility timeout.",
            extra={"messageId": msg_id},
        )
        return MessageOutcome.RETRY, body


def classify_batch(
    messages: Sequence[SQSEventRecord],
    cache: TenderDedupCache,
    logger: Logger,
    now: Optional[datetime] = None,
) -> Tuple[ClassifiedBatch, BatchCounters]:
    """
    Splits a batch into accepted payloads, rejected payloads and messages to delete.

    Parse failures and validation failures count as rejected; duplicates count
    as duplicates. Both land in the rejected payload stream. Messages that hit
    an unexpected error are left out of every list and every counter.
    """
    batch = ClassifiedBatch()
    counters = BatchCounters()

    for msg in messages:
        outcome, payload = classify_message(msg, cache, logger, now=now)

        if outcome is MessageOutcome.ACCEPTED:
            batch.accepted_payloads.append(payload)
        elif outcome is MessageOutcome.DUPLICATE:
            batch.rejected_payloads.append(payload)
            counters.duplicate_count += 1
        elif outcome is MessageOutcome.REJECTED:
            batch.rejected_payloads.append(payload)
            counters.rejected_count += 1

        if outcome.is_terminal:
            batch.acknowledgeable.append((msg["messageId"], msg["receiptHandle"]))
            counters.processed_count += 1

    return batch, counters


def route_batch(
    queue_client: SqsQueueClient,
    batch: ClassifiedBatch,
    source_queue_url: str,
    accepted_queue_url: str,
    rejected_queue_url: str,
    logger: Logger,
) -> None:
    """
    Sends both payload streams concurrently, then deletes processed messages.

    The delete only runs once both sends have completed without any failure.
    A failed send raises, leaving every message of the batch on the source
    queue to be redelivered; downstream may then see some payloads twice.

    Raises:
        MessageRoutingError: If SQS rejected any entry of either send.
        botocore.exceptions.ClientError: If a send call failed outright.
    """
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="route") as executor:
        futures = {
            executor.submit(queue_client.send_batch, url, payloads): (url, payloads)
            for url, payloads in [
                (accepted_queue_url, batch.accepted_payloads),
                (rejected_queue_url, batch.rejected_payloads),
            ]
        }

    for future, (url, payloads) in futures.items():
        # Re-raises a transport error from either send.
        result = future.result()
        if not result.ok:
            raise MessageRoutingError(url, len(result.failed), len(payloads))

    if batch.acknowledgeable:
        delete_result = queue_client.delete_batch(source_queue_url, batch.acknowledgeable)
        if not delete_result.ok:
            logger.error(
                f"{len(delete_result.failed)} messages could not be deleted after successful routing.",
                extra={"failed_ids": [f.id for f in delete_result.failed]},
            )

    logger.info(
        "Batch processed.",
        extra={
            "unique": len(batch.accepted_payloads),
            "rejected": len(batch.rejected_payloads),
            "deleted": len(batch.acknowledgeable),
        },
    )


def process_batch(
    messages: Sequence[SQSEventRecord],
    cache: TenderDedupCache,
    queue_client: SqsQueueClient,
    source_queue_url: str,
    accepted_queue_url: str,
    rejected_queue_url: str,
    logger: Logger,
    now: Optional[datetime] = None,
) -> Tuple[ClassifiedBatch, BatchCounters]:
    """Classifies and routes one batch, returning what was decided and the counters."""
    batch, counters = classify_batch(messages, cache, logger, now=now)
    route_batch(queue_client, batch, source_queue_url, accepted_queue_url, rejected_queue_url, logger)
    return batch, counters


def emit_metrics(namespace: str, environment: str, status: str, metrics: Dict[str, float]) -> None:
    """
    Emits each value as a CloudWatch EMF metric, flushed immediately.

    Args:
        namespace: The CloudWatch metrics namespace.
        environment: Deployment environment, added as a dimension.
        status: "Success" or "Failure", added as a dimension.
        metrics: Metric name -> value. Names ending in "Ms" are recorded in milliseconds.
    """
    for name, value in metrics.items():
        unit = MetricUnit.Milliseconds if name.endswith("Ms") else MetricUnit.Count
        with single_metric(name=name, unit=unit, value=value, namespace=namespace) as metric:
            metric.add_dimension(name="Environment", value=environment)
            metric.add_dimension(name="Status", value=status)
