import time
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import hmac
from typing import Any, Optional


NAME_MAX_LENGTH = 100


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def normalize_email(email: str) -> str:
    return email.strip().lower()


def email_domain(email: str) -> str:
    return normalize_email(email).rsplit("@", 1)[-1]


def sanitize_name(value: Optional[str], limit: int = NAME_MAX_LENGTH) -> str:
    if not value:
        return ""
    return value.replace("<", "").replace(">", "").strip()[:limit]


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Turn any stored date shape into an aware UTC datetime.

    Accepted shapes:
      - datetime (naive values are taken as UTC)
      - {"seconds": n} / {"_seconds": n} timestamp wrappers
      - int/float epoch seconds
      - ISO-8601 strings (a trailing "Z" is accepted)

    Returns None when the value cannot be understood.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, dict):
        secs = value.get("seconds", value.get("_seconds"))
        if not isinstance(secs, (int, float)) or isinstance(secs, bool):
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        return datetime.fromtimestamp(secs + nanos / 1e9, tz=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
        return parse_instant(parsed)
    return None


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return d


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1")))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))
