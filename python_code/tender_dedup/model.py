"""
Data models for the Tender Deduplication Lambda.

This module defines the core data structures used to pass information between
the cache, validator, router and orchestrator. Using dataclasses, enums and
TypedDicts keeps the data contracts explicit and statically checked by mypy.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, TypedDict


class SQSEventRecord(TypedDict):
    """
    Represents a single SQS message, whether it arrived in the Lambda event or
    was fetched by polling the source queue.

    Attributes:
        messageId: The SQS message ID, used as the batch entry ID on delete.
        receiptHandle: The handle required to delete the message.
        body: The raw message body, expected to be a JSON tender record.
    """

    messageId: str
    receiptHandle: str
    body: str


# An (Id, ReceiptHandle) pair for a message that can be deleted from the source queue.
AckEntry = Tuple[str, str]


@dataclass(frozen=True)
class ValidationOutcome:
    """
    The result of validating a single tender.

    Use the `valid()` and `invalid(reason)` constructors rather than building
    instances directly. The reason is a human-readable sentence that is echoed
    into the outgoing payload as `failureReason`.
    """

    is_valid: bool
    reason: Optional[str] = None

    @classmethod
    def valid(cls) -> "ValidationOutcome":
        return _VALID

    @classmethod
    def invalid(cls, reason: str) -> "ValidationOutcome":
        return cls(is_valid=False, reason=reason)


_VALID = ValidationOutcome(is_valid=True)


class MessageOutcome(Enum):
    """Terminal (or non-terminal) classification of one source message."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"
    RETRY = "retry"

    @property
    def is_terminal(self) -> bool:
        """Terminal outcomes are acknowledged (deleted) from the source queue."""
        return self is not MessageOutcome.RETRY


@dataclass
class BatchCounters:
    """
    Counters accumulated across every batch of a single invocation.

    Attributes:
        processed_count: Messages that reached a terminal classification.
        duplicate_count: Messages matching a tender already in the store.
        rejected_count: Messages that failed to parse or failed validation.
    """

    processed_count: int = 0
    duplicate_count: int = 0
    rejected_count: int = 0

    def __add__(self, other: "BatchCounters") -> "BatchCounters":
        return BatchCounters(
            processed_count=self.processed_count + other.processed_count,
            duplicate_count=self.duplicate_count + other.duplicate_count,
            rejected_count=self.rejected_count + other.rejected_count,
        )


@dataclass
class ClassifiedBatch:
    """
    The outcome of classifying one batch of source messages.

    The three lists are disjoint views of the input batch. Messages whose
    processing raised an unexpected error appear in none of them, so SQS will
    redeliver them once their visibility timeout expires.

    Attributes:
        accepted_payloads: Bodies to forward to the accepted (AI) queue.
        rejected_payloads: Bodies to forward to the duplicate/rejected queue,
                           annotated with a `failureReason` where applicable.
        acknowledgeable: (messageId, receiptHandle) pairs for every message that
                         reached a terminal classification.
    """

    accepted_payloads: List[str] = field(default_factory=list)
    rejected_payloads: List[str] = field(default_factory=list)
    acknowledgeable: List[AckEntry] = field(default_factory=list)


@dataclass(frozen=True)
class BatchFailure:
    """A single entry the SQS batch API reported as failed."""

    id: str
    code: str
    message: str = ""
    sender_fault: bool = False


@dataclass
class BatchResult:
    """
    Per-item outcome of a chunked send or delete against one queue.

    Per-item failures are reported here rather than raised; it is up to the
    caller to decide whether they are fatal.
    """

    succeeded: List[str] = field(default_factory=list)
    failed: List[BatchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class InvocationSummary:
    """Aggregated result of one Lambda invocation."""

    batch_count: int
    counters: BatchCounters
    duration_ms: int

    def status_line(self) -> str:
        return (
            f"Success. Batches: {self.batch_count}, "
            f"Total Processed: {self.counters.processed_count}, "
            f"Duplicates Found: {self.counters.duplicate_count}, "
            f"Duration: {self.duration_ms}ms"
        )
