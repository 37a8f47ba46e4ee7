"""
Normalization helpers shared by all carrier adapters.

Carriers describe delivery estimates and charges in their own formats. These
helpers turn them into comparable values:
- a guaranteed number of days becomes a concrete date (today + days)
- no guarantee becomes the sentinel date, so the rate sorts last
- scheduled delivery times are canonicalized to 12-hour AM/PM form,
  and a missing time becomes the 11:59:00 PM sentinel
- monetary totals become non-negative Decimals
"""
import logging
import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

logger = logging.getLogger(__name__)

# No guaranteed delivery date: largest representable date, sorts after everything
DELIVERY_DATE_SENTINEL: date = datetime.max.date()

# No scheduled delivery time: end of day keeps same-day comparisons stable
DELIVERY_TIME_SENTINEL: time = time(23, 59, 0)

_MERIDIEM_VARIANTS = (
    (re.compile(r"\bnoon\b", re.IGNORECASE), "PM"),
    (re.compile(r"\bp\.\s*m\.?", re.IGNORECASE), "PM"),
    (re.compile(r"\ba\.\s*m\.?", re.IGNORECASE), "AM"),
    (re.compile(r"\bpm\b", re.IGNORECASE), "PM"),
    (re.compile(r"\bam\b", re.IGNORECASE), "AM"),
)

_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%I:%M:%S %p", "%I %p", "%H:%M", "%H:%M:%S")


def canonicalize_delivery_time(value: Optional[str]) -> Optional[str]:
    """
    Rewrite a carrier time string into "HH:MM AM/PM" text.

    "10:30 A.M." -> "10:30 AM", "12:00 Noon" -> "12:00 PM".
    Returns None for blank input.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    for pattern, replacement in _MERIDIEM_VARIANTS:
        text = pattern.sub(replacement, text)
    return " ".join(text.split())


def parse_delivery_time(value: Optional[str]) -> time:
    """Parse a carrier time string, falling back to the 11:59 PM sentinel."""
    text = canonicalize_delivery_time(value)
    if text is None:
        return DELIVERY_TIME_SENTINEL

    for fmt in _TIME_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue

    logger.debug(f"Unrecognized delivery time {value!r}, using end-of-day sentinel")
    return DELIVERY_TIME_SENTINEL


def estimate_delivery_date(
    guaranteed_days: Optional[Union[int, str]],
    scheduled_time: Optional[str] = None,
    today: Optional[date] = None,
) -> datetime:
    """
    Build the estimated delivery date-time for one rate line.

    Args:
        guaranteed_days: Days to delivery guaranteed by the carrier, or None/""
        scheduled_time: Carrier's scheduled delivery time text, if any
        today: Reference date (defaults to the current local date)

    Returns:
        Naive datetime. Rates without a guarantee get DELIVERY_DATE_SENTINEL.
    """
    delivery_day = DELIVERY_DATE_SENTINEL
    days = _parse_days(guaranteed_days)
    if days is not None:
        try:
            delivery_day = (today or date.today()) + timedelta(days=days)
        except OverflowError:
            logger.warning(f"Guaranteed days {guaranteed_days!r} out of range, treating as no guarantee")

    return datetime.combine(delivery_day, parse_delivery_time(scheduled_time))


def parse_delivery_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 delivery commitment ("2030-03-04T10:30:00").

    Returns a naive datetime in the carrier's local time, or None when the
    value is missing or unparseable.
    """
    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        logger.debug(f"Unrecognized delivery timestamp {value!r}, treating as no guarantee")
        return None
    return parsed.replace(tzinfo=None)


def is_sentinel_date(value: datetime) -> bool:
    return value.date() == DELIVERY_DATE_SENTINEL


def parse_charges(value: Optional[str]) -> Decimal:
    """
    Parse a carrier monetary total.

    Raises:
        ValueError: if the value is missing, not numeric, or negative
    """
    if value is None or not str(value).strip():
        raise ValueError("missing total charges")
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"unparseable total charges {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"invalid total charges {value!r}")
    return amount


def _parse_days(value: Optional[Union[int, str]]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    text = value.strip()
    if not text:
        return None
    try:
        days = int(Decimal(text))
    except (InvalidOperation, ValueError, OverflowError):
        logger.debug(f"Unrecognized guaranteed days {value!r}, treating as no guarantee")
        return None
    return days if days >= 0 else None
