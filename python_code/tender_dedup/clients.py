"""
A factory module for creating the external clients used by the Lambda.

This module is the core of the Dependency Injection (DI) pattern for the
application. It allows the main handler to receive either real AWS clients
or mocked clients during testing, based on the presence of an environment
variable. The relational store is reached through a SQLAlchemy engine whose
connection pool hands each concurrent query its own connection.
"""

import logging
import os

import boto3
import botocore.config
from mypy_boto3_sqs import SQSClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# A shared, robust retry configuration for boto3 clients that need to be
# resilient to transient network or server-side errors.
BOTO_CONFIG_RETRYABLE = botocore.config.Config(
    retries={"max_attempts": 5, "mode": "adaptive"}
)


def get_sqs_client() -> SQSClient:
    """
    Returns the SQS client used for receiving, sending and deleting messages.

    The AWS region is explicitly read from the environment to ensure consistent
    and predictable behavior. When `USE_MOTO` is set, `moto` is assumed to be
    active and will intercept the `boto3` calls.
    """
    aws_region = os.environ.get("AWS_REGION")
    if not aws_region:
        # This should ideally not happen in a real Lambda environment.
        logger.warning("AWS_REGION not set, boto3 will attempt to resolve it.")

    if os.environ.get("USE_MOTO"):
        logger.info("MOTO ENABLED: Returning mocked SQS client.")

    sqs_client: SQSClient = boto3.client(
        "sqs", region_name=aws_region, config=BOTO_CONFIG_RETRYABLE
    )
    return sqs_client


def get_db_engine(connection_string: str, pool_size: int = 5) -> Engine:
    """
    Creates the SQLAlchemy engine for the tender store.

    The pool must hold at least one connection per known source, because the
    dedup cache issues its per-source queries concurrently.

    Args:
        connection_string: A SQLAlchemy URL, e.g. `mssql+pyodbc://...`.
        pool_size: Number of pooled connections kept open between invocations.
    """
    return create_engine(
        connection_string,
        pool_size=pool_size,
        pool_pre_ping=True,
        pool_recycle=1800,
    )
