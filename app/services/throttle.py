from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Mapping, Optional

from app.core.config import settings
from app.db.connection import execute, fetch_one

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"

_IP_HEADERS = ("x-forwarded-for", "x-vercel-forwarded-for", "cf-connecting-ip", "x-real-ip")


def get_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    for header in _IP_HEADERS:
        value = headers.get(header)
        if value:
            # proxies append, so the first hop is the client
            return value.split(",")[0].strip()
    return peer or UNKNOWN_CLIENT


def _window_start() -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=settings.throttle_window_minutes)


def _recent_failures(client_id: str) -> int:
    row = fetch_one(
        """
        SELECT COUNT(*) AS total
        FROM failed_payment_attempts
        WHERE client_id = %s AND attempted_at >= %s
        """,
        (client_id, _window_start()),
    )
    return int(row["total"]) if row else 0


def is_blocked(client_id: str) -> bool:
    if client_id == UNKNOWN_CLIENT:
        return False
    row = fetch_one(
        """
        SELECT id, expires_at
        FROM blocked_clients
        WHERE client_id = %s AND is_active = true
        LIMIT 1
        """,
        (client_id,),
    )
    if not row:
        return False
    expires_at = row.get("expires_at")
    if expires_at and datetime.now(timezone.utc) > expires_at:
        execute("UPDATE blocked_clients SET is_active = false WHERE id = %s", (row["id"],))
        return False
    return True


def block_client(client_id: str, reason: str, failed_attempts: int = 0) -> None:
    expires_at = None
    if settings.throttle_block_hours:
        expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.throttle_block_hours)
    execute(
        """
        INSERT INTO blocked_clients (client_id, reason, failed_attempts, expires_at, is_active)
        VALUES (%s, %s, %s, %s, true)
        ON CONFLICT (client_id) DO UPDATE
        SET reason = EXCLUDED.reason,
            failed_attempts = EXCLUDED.failed_attempts,
            blocked_at = now(),
            expires_at = EXCLUDED.expires_at,
            is_active = true
        """,
        (client_id, reason, failed_attempts, expires_at),
    )
    logger.warning("Blocked client %s: %s", client_id, reason)


def record_failure(
    client_id: str, card_last_four: Optional[str] = None, decline_reason: Optional[str] = None
) -> dict:
    if client_id == UNKNOWN_CLIENT:
        return {"blocked": False, "attempt_count": 0}
    execute(
        """
        INSERT INTO failed_payment_attempts (client_id, card_last_four, decline_reason)
        VALUES (%s, %s, %s)
        """,
        (client_id, card_last_four, decline_reason),
    )
    attempt_count = _recent_failures(client_id)
    max_attempts = settings.throttle_max_failed_attempts
    if attempt_count >= max_attempts:
        block_client(client_id, f"Exceeded {max_attempts} failed payment attempts", attempt_count)
        return {"blocked": True, "attempt_count": attempt_count}
    return {"blocked": False, "attempt_count": attempt_count}


def remaining_attempts(client_id: str) -> int:
    if client_id == UNKNOWN_CLIENT:
        return settings.throttle_max_failed_attempts
    return max(0, settings.throttle_max_failed_attempts - _recent_failures(client_id))
