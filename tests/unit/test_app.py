"""Tests for the Lambda handler, wired against moto SQS and a SQLite tender store."""

import json
import uuid
from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError
from sqlalchemy import create_engine, insert

from tender_dedup import app, clients
from tender_dedup.exceptions import ConfigurationError
from tender_dedup.repository import SOURCE_TABLES, base_tender, metadata


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tenders.db'}",
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    with engine.begin() as conn:
        tender_id = str(uuid.uuid4())
        conn.execute(insert(base_tender).values(TenderID=tender_id, Source="SARS"))
        conn.execute(insert(SOURCE_TABLES["SARS"]).values(TenderID=tender_id, TenderNumber="RFQ-2025-001"))
    yield engine
    engine.dispose()


@pytest.fixture
def lambda_env(monkeypatch, queues, engine, tmp_path):
    monkeypatch.setattr(app, "ORCHESTRATOR", None)
    monkeypatch.setattr(clients, "get_db_engine", lambda url, pool_size=5: engine)
    monkeypatch.setenv("SOURCE_QUEUE_URL", queues["source"])
    monkeypatch.setenv("AI_QUEUE_URL", queues["ai"])
    monkeypatch.setenv("DUPLICATE_QUEUE_URL", queues["duplicate"])
    monkeypatch.setenv("DB_CONNECTION_STRING", f"sqlite:///{tmp_path / 'tenders.db'}")
    monkeypatch.setenv("POLL_WAIT_SECONDS", "0")
    monkeypatch.setenv("POLL_DELAY_SECONDS", "0")
    monkeypatch.setenv("ENVIRONMENT", "test")
    return queues


def _context(remaining_ms: int = 600_000):
    return SimpleNamespace(get_remaining_time_in_millis=lambda: remaining_ms, aws_request_id="req-1")


def _trigger_event(sqs, queue_url, bodies):
    """Puts bodies on the queue and receives them back, like the SQS trigger would."""
    for body in bodies:
        sqs.send_message(QueueUrl=queue_url, MessageBody=body)
    messages = sqs.receive_message(QueueUrl=queue_url, MaxNumberOfMessages=10, VisibilityTimeout=300)["Messages"]
    return {
        "Records": [
            {"messageId": m["MessageId"], "receiptHandle": m["ReceiptHandle"], "body": m["Body"]}
            for m in messages
        ]
    }


def test_handler_routes_trigger_batch_and_drains_queue(sqs, lambda_env, drain_queue):
    event = _trigger_event(
        sqs,
        lambda_env["source"],
        [
            json.dumps({"source": "SARS", "tenderNumber": "rfq-2025-001"}),
            json.dumps({"source": "SARS", "tenderNumber": "RFQ-2025-002", "closingDate": "2099-01-31"}),
        ],
    )
    # Arrives after the trigger fired, so it is picked up by polling.
    sqs.send_message(QueueUrl=lambda_env["source"], MessageBody=json.dumps({"source": "Eskom", "tenderNumber": "E-7"}))

    result = app.handler(event, _context())

    assert result.startswith("Success. Batches: 2, Total Processed: 3, Duplicates Found: 1, Duration: ")
    accepted = sorted(json.loads(m["Body"])["tenderNumber"] for m in drain_queue(lambda_env["ai"]))
    assert accepted == ["E-7", "RFQ-2025-002"]
    duplicates = [json.loads(m["Body"])["tenderNumber"] for m in drain_queue(lambda_env["duplicate"])]
    assert duplicates == ["rfq-2025-001"]
    assert drain_queue(lambda_env["source"]) == []


def test_handler_reuses_wiring_between_invocations(sqs, lambda_env):
    app.handler({"Records": []}, _context())
    first = app.ORCHESTRATOR

    app.handler({"Records": []}, _context())

    assert app.ORCHESTRATOR is first


def test_missing_configuration_fails_before_any_work(monkeypatch, lambda_env):
    monkeypatch.delenv("DUPLICATE_QUEUE_URL")

    with pytest.raises(ConfigurationError):
        app.handler({"Records": []}, _context())
    assert app.ORCHESTRATOR is None


def test_handler_reraises_processing_failures(sqs, lambda_env, monkeypatch, capsys):
    monkeypatch.setenv("AI_QUEUE_URL", lambda_env["ai"].replace("tenders-ai", "does-not-exist"))
    event = _trigger_event(sqs, lambda_env["source"], [json.dumps({"source": "Transnet", "tenderNumber": "T-1"})])

    with pytest.raises(ClientError):
        app.handler(event, _context(remaining_ms=10_000))

    assert "InvocationFailed" in capsys.readouterr().out
