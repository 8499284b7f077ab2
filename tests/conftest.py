"""Shared fixtures: Powertools logger, fake collaborators and moto-backed SQS."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence

import boto3
import pytest
from aws_lambda_powertools import Logger
from moto import mock_aws

from tender_dedup.cache import TenderDedupCache
from tender_dedup.config import Settings
from tender_dedup.model import BatchFailure, BatchResult, SQSEventRecord

REGION = "af-south-1"


class FakeTenderRepository:
    """In-memory stand-in for TenderRepository that counts queries."""

    def __init__(self, numbers: Dict[str, List[str]], failing_sources: Sequence[str] = ()):
        self.numbers = numbers
        self.failing_sources = set(failing_sources)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def known_sources(self) -> List[str]:
        return list(self.numbers)

    def list_known_tender_numbers(self, source: str) -> List[str]:
        with self._lock:
            self.calls.append(source)
        if source in self.failing_sources:
            raise ConnectionError(f"database unavailable while loading {source}")
        return list(self.numbers[source])


class FakeQueueClient:
    """Records sends/deletes and replays scripted receive results."""

    def __init__(self, polled_batches: Optional[List[List[SQSEventRecord]]] = None):
        self.polled_batches = list(polled_batches or [])
        self.receive_calls: List[dict] = []
        self.sent: Dict[str, List[str]] = {}
        self.deleted: Dict[str, List[tuple]] = {}
        self.fail_send_to: Optional[str] = None
        self.events: List[str] = []
        self._lock = threading.Lock()

    def receive_batch(self, queue_url, max_count=10, wait_seconds=2, visibility_timeout=300):
        self.receive_calls.append(
            {"queue_url": queue_url, "max_count": max_count, "wait_seconds": wait_seconds,
             "visibility_timeout": visibility_timeout}
        )
        if self.polled_batches:
            return self.polled_batches.pop(0)
        return []

    def send_batch(self, queue_url: str, payloads: Sequence[str]) -> BatchResult:
        with self._lock:
            self.events.append(f"send:{queue_url}")
            self.sent.setdefault(queue_url, []).extend(payloads)
        result = BatchResult()
        ids = [f"msg_{i}" for i in range(len(payloads))]
        if queue_url == self.fail_send_to and payloads:
            result.failed.extend(BatchFailure(id=i, code="InternalError") for i in ids)
        else:
            result.succeeded.extend(ids)
        return result

    def delete_batch(self, queue_url: str, messages) -> BatchResult:
        with self._lock:
            self.events.append(f"delete:{queue_url}")
            self.deleted.setdefault(queue_url, []).extend(messages)
        return BatchResult(succeeded=[m[0] for m in messages])


def make_record(message_id: str, body: str) -> SQSEventRecord:
    return SQSEventRecord(messageId=message_id, receiptHandle=f"handle-{message_id}", body=body)


@pytest.fixture
def logger() -> Logger:
    return Logger(service="tender-dedup-test", level="DEBUG")


@pytest.fixture
def repository() -> FakeTenderRepository:
    return FakeTenderRepository(
        {
            "SARS": ["RFQ-001", "rfq-002"],
            "eTenders": ["ET-100"],
            "Eskom": [],
            "Transnet": ["TN/2024/7"],
            "SANRAL": ["N.001-2024"],
        }
    )


@pytest.fixture
def loaded_cache(repository, logger) -> TenderDedupCache:
    cache = TenderDedupCache(repository, logger)
    cache.ensure_loaded()
    return cache


@pytest.fixture
def settings() -> Settings:
    return Settings(
        source_queue_url="https://sqs.af-south-1.amazonaws.com/123456789012/tenders-in",
        ai_queue_url="https://sqs.af-south-1.amazonaws.com/123456789012/tenders-ai.fifo",
        duplicate_queue_url="https://sqs.af-south-1.amazonaws.com/123456789012/tenders-duplicate",
        db_connection_string="sqlite://",
        poll_delay_seconds=0,
    )


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_REGION", REGION)
    monkeypatch.setenv("USE_MOTO", "1")


@pytest.fixture
def sqs(aws_credentials):
    with mock_aws():
        yield boto3.client("sqs", region_name=REGION)


@pytest.fixture
def queues(sqs) -> Dict[str, str]:
    """Creates the source queue and both output queues; returns their URLs."""
    return {
        "source": sqs.create_queue(QueueName="tenders-in")["QueueUrl"],
        "ai": sqs.create_queue(
            QueueName="tenders-ai.fifo",
            Attributes={"FifoQueue": "true"},
        )["QueueUrl"],
        "duplicate": sqs.create_queue(QueueName="tenders-duplicate")["QueueUrl"],
    }


def drain(sqs_client, queue_url: str) -> List[dict]:
    """Reads every message currently visible on a queue."""
    messages: List[dict] = []
    while True:
        response = sqs_client.receive_message(
            QueueUrl=queue_url,
            MaxNumberOfMessages=10,
            WaitTimeSeconds=0,
            AttributeNames=["All"],
        )
        batch = response.get("Messages", [])
        if not batch:
            return messages
        messages.extend(batch)
        sqs_client.delete_message_batch(
            QueueUrl=queue_url,
            Entries=[{"Id": str(i), "ReceiptHandle": m["ReceiptHandle"]} for i, m in enumerate(batch)],
        )


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def fake_queue() -> FakeQueueClient:
    return FakeQueueClient()


@pytest.fixture
def fake_repository():
    return FakeTenderRepository


@pytest.fixture
def drain_queue(sqs):
    return lambda queue_url: drain(sqs, queue_url)
