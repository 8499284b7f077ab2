"""
Main AWS Lambda handler for the Tender Deduplication pipeline.

This module serves as the primary entry point for the function.
Its responsibilities include:
  - Loading and validating configuration from environment variables.
  - Initializing and caching stateful collaborators (SQS client, database
    engine and the process-lifetime tender cache).
  - Receiving events from the SQS trigger and handing them to the orchestrator.
  - Managing the overall success/failure state and emitting the final metrics.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger

from . import clients, core
from .cache import TenderDedupCache
from .config import load_settings
from .model import SQSEventRecord
from .orchestrator import InvocationOrchestrator
from .repository import SOURCE_TABLES, TenderRepository
from .sqs import SqsQueueClient

# --- Global Setup ---
logger = Logger(
    service=os.environ.get("POWERTOOLS_SERVICE_NAME", "tender-dedup"),
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
)

# Built on the first invocation and reused while the execution environment is warm.
ORCHESTRATOR: Optional[InvocationOrchestrator] = None


def get_orchestrator() -> InvocationOrchestrator:
    """
    Returns the cached orchestrator, wiring it up on first use.

    Configuration is validated before any client is created, so a missing
    environment variable fails the invocation without touching SQS or the
    database.

    Raises:
        ConfigurationError: If a required environment variable is not set.
    """
    global ORCHESTRATOR
    if ORCHESTRATOR is not None:
        return ORCHESTRATOR

    settings = load_settings()
    logger.setLevel(settings.log_level)

    # One pooled connection per source, so cache population never shares one.
    engine = clients.get_db_engine(settings.db_connection_string, pool_size=len(SOURCE_TABLES))
    cache = TenderDedupCache(TenderRepository(engine), logger)
    queue_client = SqsQueueClient(clients.get_sqs_client(), logger)

    ORCHESTRATOR = InvocationOrchestrator(settings, cache, queue_client, logger)
    logger.info("Lambda function initialized successfully.")
    return ORCHESTRATOR


def _event_records(event: Dict) -> List[SQSEventRecord]:
    return [
        SQSEventRecord(
            messageId=r["messageId"],
            receiptHandle=r["receiptHandle"],
            body=r.get("body", ""),
        )
        for r in event.get("Records", [])
    ]


def handler(event: Dict, context: Any) -> str:
    """
    Main Lambda entry point.

    Processes the SQS messages delivered with the event, then keeps polling the
    source queue for more until it is empty or fewer than the safety margin's
    worth of seconds remain. Returns a human-readable status line. Exceptions
    are re-raised so the invocation is marked failed and SQS redelivers any
    messages that were not deleted.
    """
    start_time = datetime.now(timezone.utc)
    orchestrator = get_orchestrator()
    settings = orchestrator.settings

    try:
        summary = orchestrator.run(_event_records(event), context.get_remaining_time_in_millis)
    except Exception as e:
        latency_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        core.emit_metrics(
            settings.metrics_namespace,
            settings.environment,
            "Failure",
            {"InvocationFailed": 1, "LatencyMs": latency_ms},
        )
        logger.error(
            "Processing failed.",
            extra={"error_type": type(e).__name__, "error_message": str(e), "latency_ms": latency_ms},
        )
        raise

    core.emit_metrics(
        settings.metrics_namespace,
        settings.environment,
        "Success",
        {
            "Batches": summary.batch_count,
            "MessagesProcessed": summary.counters.processed_count,
            "DuplicatesFound": summary.counters.duplicate_count,
            "MessagesRejected": summary.counters.rejected_count,
            "LatencyMs": summary.duration_ms,
        },
    )
    return summary.status_line()
