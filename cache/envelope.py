"""
TTL envelope for durable cache records.

A record is stored as ``{"payload": ..., "writtenAt": ..., "ttlMs": ...}``.
``writtenAt`` is written as an ISO-8601 UTC string; epoch milliseconds are
accepted on read.
"""
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

Clock = Callable[[], float]

PAYLOAD_FIELD = "payload"
WRITTEN_AT_FIELD = "writtenAt"
TTL_FIELD = "ttlMs"


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


def format_timestamp(epoch_ms: float) -> str:
    """Format epoch milliseconds as an ISO-8601 UTC string."""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[float]:
    """
    Parse a stored ``writtenAt`` value into epoch milliseconds.

    Args:
        value: ISO-8601 string or epoch milliseconds

    Returns:
        Epoch milliseconds, or None if the value is missing or malformed
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000


def wrap(payload: Any, ttl_ms: int, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Wrap a payload with its write time and intended lifetime.

    Args:
        payload: Value to cache (must be JSON serializable)
        ttl_ms: Lifetime in milliseconds
        now: Write time in epoch milliseconds, defaults to the current time

    Returns:
        Envelope dictionary ready to be persisted
    """
    written_at = now_ms() if now is None else now
    return {
        PAYLOAD_FIELD: payload,
        WRITTEN_AT_FIELD: format_timestamp(written_at),
        TTL_FIELD: int(ttl_ms),
    }


def is_expired(envelope: Any, ttl_ms_override: Optional[int] = None,
               now: Optional[float] = None) -> bool:
    """
    Decide whether an envelope has outlived its duration.

    The caller-supplied duration wins over the stored one. A missing or
    malformed ``writtenAt``, or no usable duration at all, counts as expired.

    Args:
        envelope: Envelope as read from the durable store
        ttl_ms_override: Duration to apply instead of the stored ``ttlMs``
        now: Current time in epoch milliseconds

    Returns:
        True if the envelope must not be served
    """
    if not isinstance(envelope, dict):
        return True

    written_at = parse_timestamp(envelope.get(WRITTEN_AT_FIELD))
    if written_at is None:
        return True

    duration = ttl_ms_override if ttl_ms_override is not None else envelope.get(TTL_FIELD)
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        return True

    current = now_ms() if now is None else now
    return current - written_at > duration


def unwrap(envelope: Dict[str, Any]) -> Any:
    """Return the payload stored in an envelope."""
    return envelope.get(PAYLOAD_FIELD)
