import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.models.equipment_request import RequestRecord, TokenOutcome, as_utc

TOKEN_BYTES = 32
DEFAULT_TOKEN_TTL = timedelta(days=7)


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def token_expiry(issued_at: datetime, ttl: timedelta = DEFAULT_TOKEN_TTL) -> datetime:
    return as_utc(issued_at) + ttl


def validate_token(
    record: Optional[RequestRecord],
    presented_token: Optional[str],
    now: Optional[datetime] = None,
) -> TokenOutcome:
    """Decide whether ``presented_token`` may authorize a decision on ``record``.

    Checks run in a fixed order and the first failure wins, so an empty token
    is reported as missing even when the record does not exist, and a used
    token is reported as used even after it has expired.
    """
    if not presented_token or not presented_token.strip():
        return TokenOutcome.MISSING
    if record is None:
        return TokenOutcome.NOT_FOUND

    expected = (record.approval_token or "").encode("utf-8")
    if not hmac.compare_digest(expected, presented_token.strip().encode("utf-8")):
        return TokenOutcome.INVALID
    if record.token_used:
        return TokenOutcome.USED

    current = as_utc(now) if now is not None else datetime.now(timezone.utc)
    if record.token_expires_at is not None and current > record.token_expires_at:
        return TokenOutcome.EXPIRED
    return TokenOutcome.VALID
