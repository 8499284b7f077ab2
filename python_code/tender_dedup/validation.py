"""
Closing-date validation for tender records.

A tender whose closing date (as a UTC calendar date) is before today's UTC date
is rejected. Anything that cannot be checked confidently passes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from aws_lambda_powertools import Logger

from .model import ValidationOutcome

# South Africa Standard Time. Fixed offset, no daylight saving.
SAST = timezone(timedelta(hours=2), "SAST")

CLOSING_DATE_FIELD = "closingDate"


def parse_closing_date(value: Any, logger: Optional[Logger] = None) -> Optional[datetime]:
    """
    Parses an ISO-8601 date or date-time into an aware UTC datetime.

    Naive values (no offset) are taken to be SAST. Returns None if the value is
    not a string, cannot be parsed, or falls outside the representable range
    once converted to UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None

    try:
        if parsed.tzinfo is None or parsed.utcoffset() is None:
            if logger:
                logger.warning(
                    "Closing date has no UTC offset. Assuming South African Standard Time.",
                    extra={"closingDate": value},
                )
            parsed = parsed.replace(tzinfo=SAST)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def validate_tender(
    tender: Mapping[str, Any],
    now: Optional[datetime] = None,
    logger: Optional[Logger] = None,
) -> ValidationOutcome:
    """
    Checks whether the tender's closing date has passed.

    Args:
        tender: The decoded tender record.
        now: The current instant. Defaults to `datetime.now(timezone.utc)`; a
             naive value is treated as UTC.
        logger: Optional logger for warnings about closing dates that cannot be checked.

    Returns:
        ValidationOutcome.invalid(reason) if the closing date is strictly
        before today (both in UTC), otherwise ValidationOutcome.valid().
    """
    raw = tender.get(CLOSING_DATE_FIELD)
    if raw is None:
        return ValidationOutcome.valid()

    closing_utc = parse_closing_date(raw, logger)
    if closing_utc is None:
        if logger:
            logger.warning(
                "Could not parse closing date. Skipping closing date validation.",
                extra={"closingDate": str(raw)},
            )
        return ValidationOutcome.valid()

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(timezone.utc).date()
    closing_day = closing_utc.date()

    if closing_day < today:
        reason = (
            f"Tender is closed. The closing date ({closing_day:%Y-%m-%d} UTC) "
            f"is before today's date ({today:%Y-%m-%d} UTC)."
        )
        return ValidationOutcome.invalid(reason)

    return ValidationOutcome.valid()
