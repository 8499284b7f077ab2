"""
Drives a single Lambda invocation: load the cache, process the trigger batch,
then keep polling the source queue until it is drained or time runs out.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Sequence

from aws_lambda_powertools import Logger

from . import core
from .cache import TenderDedupCache
from .config import Settings
from .model import BatchCounters, InvocationSummary, SQSEventRecord
from .sqs import MAX_BATCH_SIZE, SqsQueueClient


class InvocationOrchestrator:
    """
    Runs the init / seed batch / poll loop phases of one invocation.

    There is no cancellation inside a batch: the only point at which the
    orchestrator stops is the remaining-time check before each poll.
    """

    def __init__(
        self,
        settings: Settings,
        cache: TenderDedupCache,
        queue_client: SqsQueueClient,
        logger: Logger,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._settings = settings
        self._cache = cache
        self._queue = queue_client
        self._logger = logger
        self._sleep = sleep

    @property
    def settings(self) -> Settings:
        return self._settings

    def run(
        self,
        records: Sequence[SQSEventRecord],
        remaining_time_ms: Callable[[], int],
    ) -> InvocationSummary:
        """
        Processes the trigger batch and then polls until done.

        Args:
            records: Messages delivered with the triggering event (may be empty).
            remaining_time_ms: Returns the milliseconds left before the Lambda
                               times out, i.e. `context.get_remaining_time_in_millis`.

        Returns:
            The invocation summary.

        Raises:
            Any exception from cache population or routing. Nothing is swallowed:
            undeleted messages are redelivered by SQS on the next attempt.
        """
        start_time = datetime.now(timezone.utc)
        totals = BatchCounters()
        batch_count = 0

        self._logger.info(f"Lambda invocation started. Initial message count: {len(records)}")

        try:
            self._cache.ensure_loaded()

            if records:
                batch_count += 1
                self._logger.info(f"Processing initial SQS event batch #{batch_count}")
                totals += self._process(records)

            margin_ms = self._settings.poll_safety_margin_seconds * 1000
            while remaining_time_ms() > margin_ms:
                messages = self._queue.receive_batch(
                    self._settings.source_queue_url,
                    max_count=MAX_BATCH_SIZE,
                    wait_seconds=self._settings.poll_wait_seconds,
                    visibility_timeout=self._settings.poll_visibility_timeout_seconds,
                )
                if not messages:
                    self._logger.info("Queue polling complete. No more messages found.")
                    break

                batch_count += 1
                self._logger.info(
                    f"Processing polled batch #{batch_count}. Message count: {len(messages)}"
                )
                totals += self._process(messages)

                # Small delay to prevent aggressive polling
                self._sleep(self._settings.poll_delay_seconds)
            else:
                self._logger.info("Stopping polling: remaining execution time is within the safety margin.")

        except Exception:
            self._logger.exception("Lambda execution failed unexpectedly.")
            raise

        duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        summary = InvocationSummary(batch_count=batch_count, counters=totals, duration_ms=duration_ms)
        self._logger.info(f"Lambda execution finished. {summary.status_line()}")
        return summary

    def _process(self, messages: Sequence[SQSEventRecord]) -> BatchCounters:
        _, counters = core.process_batch(
            messages,
            self._cache,
            self._queue,
            source_queue_url=self._settings.source_queue_url,
            accepted_queue_url=self._settings.ai_queue_url,
            rejected_queue_url=self._settings.duplicate_queue_url,
            logger=self._logger,
        )
        return counters
