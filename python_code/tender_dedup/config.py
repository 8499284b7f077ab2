"""
Configuration for the Tender Deduplication Lambda.

All settings come from environment variables and are loaded once at cold
start. The queue URLs and database connection string are required; a missing
value fails the cold start rather than allowing a partial run.
"""

import os
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigurationError


def get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Gets an environment variable or raises a ConfigurationError for fast-failure.

    Args:
        name: The name of the environment variable.
        default: An optional default value. If not provided, the variable is required.

    Returns:
        The value of the environment variable.

    Raises:
        ConfigurationError: If the required environment variable is not set or is blank.
    """
    value = os.environ.get(name, default)
    if value is None or not value.strip():
        raise ConfigurationError(f"FATAL: Environment variable '{name}' is not set.")
    return value.strip()


def _get_float(name: str, default: str) -> float:
    raw = get_env_var(name, default)
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"FATAL: Environment variable '{name}' must be numeric, got '{raw}'.") from e


@dataclass(frozen=True)
class Settings:
    source_queue_url: str
    ai_queue_url: str
    duplicate_queue_url: str
    db_connection_string: str
    environment: str = "dev"
    log_level: str = "INFO"
    metrics_namespace: str = "TenderDeduplication"
    # Stop polling once the Lambda has this much time (or less) left.
    poll_safety_margin_seconds: float = 30.0
    poll_wait_seconds: int = 2
    # Long enough that SQS does not redeliver a message we are still processing.
    poll_visibility_timeout_seconds: int = 300
    poll_delay_seconds: float = 0.1


def load_settings() -> Settings:
    """Builds Settings from the environment, raising ConfigurationError on any missing value."""
    return Settings(
        source_queue_url=get_env_var("SOURCE_QUEUE_URL"),
        ai_queue_url=get_env_var("AI_QUEUE_URL"),
        duplicate_queue_url=get_env_var("DUPLICATE_QUEUE_URL"),
        db_connection_string=get_env_var("DB_CONNECTION_STRING"),
        environment=get_env_var("ENVIRONMENT", "dev"),
        log_level=get_env_var("LOG_LEVEL", "INFO").upper(),
        metrics_namespace=get_env_var("METRICS_NAMESPACE", "TenderDeduplication"),
        poll_safety_margin_seconds=_get_float("POLL_SAFETY_MARGIN_SECONDS", "30"),
        poll_wait_seconds=int(_get_float("POLL_WAIT_SECONDS", "2")),
        poll_visibility_timeout_seconds=int(_get_float("POLL_VISIBILITY_TIMEOUT_SECONDS", "300")),
        poll_delay_seconds=_get_float("POLL_DELAY_SECONDS", "0.1"),
    )
