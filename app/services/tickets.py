from __future__ import annotations

import logging

from fastapi import HTTPException

from app.db.connection import fetch_all, fetch_one, run_transaction

logger = logging.getLogger(__name__)

TICKET_STATES = ("available", "reserved", "sold")
MAX_POOL_SIZE = 100000
# pg_advisory_xact_lock key serialising concurrent pool initialisations
_INIT_LOCK_KEY = 7_310_001

CLEARED_COLUMNS = """
    state = 'available',
    buyer_name = NULL,
    buyer_email = NULL,
    buyer_phone = NULL,
    reservation_id = NULL,
    reserved_at = NULL
"""


def _check_state(state: str) -> str:
    if state not in TICKET_STATES:
        raise ValueError(f"Unknown ticket state: {state}")
    return state


def count_by_state(state: str) -> int:
    """Advisory, unlocked count; may be stale by the time it is read."""
    row = fetch_one(
        "SELECT COUNT(*) AS total FROM tickets WHERE state = %s",
        (_check_state(state),),
    )
    return int(row["total"]) if row else 0


def count_all() -> int:
    row = fetch_one("SELECT COUNT(*) AS total FROM tickets")
    return int(row["total"]) if row else 0


def state_counts() -> dict[str, int]:
    rows = fetch_all("SELECT state, COUNT(*) AS total FROM tickets GROUP BY state")
    counts = {state: 0 for state in TICKET_STATES}
    for row in rows:
        counts[row["state"]] = int(row["total"])
    return counts


def initialize_pool(size: int) -> dict:
    if size <= 0 or size > MAX_POOL_SIZE:
        raise HTTPException(status_code=400, detail=f"Pool size must be between 1 and {MAX_POOL_SIZE}")

    def _handler(conn):
        cur = conn.cursor()
        cur.execute("SELECT pg_advisory_xact_lock(%s)", (_INIT_LOCK_KEY,))
        cur.execute("SELECT COUNT(*) FROM tickets")
        existing = int(cur.fetchone()[0])
        if existing > 0:
            cur.close()
            return {"already_initialized": True, "count": existing}
        cur.execute(
            """
            INSERT INTO tickets (number, state)
            SELECT n, 'available'
            FROM generate_series(1, %s::int) AS n
            """,
            (size,),
        )
        cur.close()
        return {"already_initialized": False, "count": size}

    result = run_transaction(_handler)
    if result["already_initialized"]:
        logger.info("Ticket pool already initialized with %s tickets", result["count"])
        result["message"] = "Ticket pool already initialized"
    else:
        logger.info("Initialized ticket pool with %s tickets", size)
        result["message"] = f"Successfully initialized {size} tickets"
    return result


def list_all() -> list[dict]:
    rows = fetch_all("SELECT number, state FROM tickets ORDER BY number ASC")
    return [{"number": row["number"], "state": row["state"]} for row in rows]


def board() -> dict:
    counts = state_counts()
    return {
        "tickets": list_all(),
        "stats": {
            "total": sum(counts.values()),
            "sold": counts["sold"],
            "reserved": counts["reserved"],
            "available": counts["available"],
        },
    }


def release_stale_reservations(max_age_minutes: int) -> list[int]:
    """Return reservations older than ``max_age_minutes`` to the pool.

    Rows currently locked by an in-flight allocation are skipped. A payment
    still running for a released reservation will fail to finalise because
    the coordinator matches on its reservation id.
    """
    if max_age_minutes <= 0:
        return []

    def _handler(conn):
        cur = conn.cursor()
        cur.execute(
            f"""
            WITH stale AS (
                SELECT id
                FROM tickets
                WHERE state = 'reserved'
                  AND reserved_at < now() - make_interval(mins => %s)
                FOR UPDATE SKIP LOCKED
            )
            UPDATE tickets AS t
            SET {CLEARED_COLUMNS}
            FROM stale
            WHERE t.id = stale.id
            RETURNING t.number
            """,
            (max_age_minutes,),
        )
        numbers = sorted(row[0] for row in cur.fetchall())
        cur.close()
        return numbers

    released = run_transaction(_handler)
    if released:
        logger.warning("Released %s stale reservations: %s", len(released), released)
    return released
