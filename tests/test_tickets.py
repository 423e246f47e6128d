import uuid

from fastapi import HTTPException
import pg8000.dbapi as pgapi
import pytest

from app.services import raffle, tickets
from fakes import FakeConn, FakeCursor


def _inline_transaction(conn, calls=None):
    def _run(handler, isolation=None):
        if calls is not None:
            calls.append(isolation)
        return handler(conn)

    return _run


def test_count_by_state_reads_without_locking(monkeypatch):
    captured = {}

    def fake_fetch_one(sql, params=()):
        captured["sql"] = " ".join(sql.split())
        captured["params"] = params
        return {"total": 42}

    monkeypatch.setattr(tickets, "fetch_one", fake_fetch_one)

    assert tickets.count_by_state("available") == 42
    assert captured["params"] == ("available",)
    assert "FOR UPDATE" not in captured["sql"]


def test_count_all_counts_every_state(monkeypatch):
    captured = {}

    def fake_fetch_one(sql, params=()):
        captured["sql"] = " ".join(sql.split())
        return {"total": 7}

    monkeypatch.setattr(tickets, "fetch_one", fake_fetch_one)

    assert tickets.count_all() == 7
    assert captured["sql"] == "SELECT COUNT(*) AS total FROM tickets"


def test_count_by_state_rejects_unknown_state():
    with pytest.raises(ValueError):
        tickets.count_by_state("refunded")


def test_initialize_pool_inserts_numbered_rows_once(monkeypatch):
    conn = FakeConn(FakeCursor(results=[(0,)]))
    monkeypatch.setattr(tickets, "run_transaction", _inline_transaction(conn))

    result = tickets.initialize_pool(100)

    assert result == {
        "already_initialized": False,
        "count": 100,
        "message": "Successfully initialized 100 tickets",
    }
    statements = [sql for sql, _ in conn.cur.executed]
    assert statements[0].startswith("SELECT pg_advisory_xact_lock")
    assert "generate_series(1, %s::int)" in statements[2]
    assert conn.cur.executed[2][1] == (100,)


def test_initialize_pool_is_a_no_op_when_rows_exist(monkeypatch):
    conn = FakeConn(FakeCursor(results=[(100,)]))
    monkeypatch.setattr(tickets, "run_transaction", _inline_transaction(conn))

    result = tickets.initialize_pool(100)

    assert result["already_initialized"] is True
    assert result["count"] == 100
    assert not any(sql.startswith("INSERT") for sql, _ in conn.cur.executed)


@pytest.mark.parametrize("size", [0, -5, tickets.MAX_POOL_SIZE + 1])
def test_initialize_pool_rejects_bad_sizes(size):
    with pytest.raises(HTTPException) as excinfo:
        tickets.initialize_pool(size)
    assert excinfo.value.status_code == 400


def test_board_orders_tickets_and_totals_states(monkeypatch):
    def fake_fetch_all(sql, params=()):
        if "GROUP BY" in sql:
            return [{"state": "sold", "total": 1}, {"state": "available", "total": 2}]
        assert "ORDER BY number ASC" in sql
        return [
            {"number": 1, "state": "available"},
            {"number": 2, "state": "sold"},
            {"number": 3, "state": "available"},
        ]

    monkeypatch.setattr(tickets, "fetch_all", fake_fetch_all)

    board = tickets.board()

    assert [ticket["number"] for ticket in board["tickets"]] == [1, 2, 3]
    assert board["stats"] == {"total": 3, "sold": 1, "reserved": 0, "available": 2}


def test_release_stale_reservations_skips_locked_rows(monkeypatch):
    conn = FakeConn(FakeCursor(results=[[(9,), (4,)]]))
    monkeypatch.setattr(tickets, "run_transaction", _inline_transaction(conn))

    released = tickets.release_stale_reservations(15)

    assert released == [4, 9]
    sql, params = conn.cur.executed[0]
    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "state = 'available'" in sql
    assert "buyer_email = NULL" in sql
    assert params == (15,)


def test_release_stale_reservations_disabled_at_zero(monkeypatch):
    def _unexpected(*_args, **_kwargs):
        raise AssertionError("sweep should not open a transaction")

    monkeypatch.setattr(tickets, "run_transaction", _unexpected)

    assert tickets.release_stale_reservations(0) == []


def test_allocate_ticket_locks_one_random_row_and_skips_locked(monkeypatch, buyer):
    conn = FakeConn(FakeCursor(results=[(17, 23)]))
    isolations = []
    monkeypatch.setattr(raffle, "run_transaction", _inline_transaction(conn, isolations))

    reservation = raffle.allocate_ticket(buyer)

    assert reservation.ticket_id == 17
    assert reservation.number == 23
    assert isinstance(reservation.reservation_id, uuid.UUID)
    assert isolations == [raffle.settings.allocation_isolation]
    select_sql, _ = conn.cur.executed[0]
    assert "WHERE state = 'available'" in select_sql
    assert "ORDER BY random() LIMIT 1 FOR UPDATE SKIP LOCKED" in select_sql
    update_sql, update_params = conn.cur.executed[1]
    assert "SET state = 'reserved'" in update_sql
    assert update_params == (
        "Ada Lovelace",
        "ada@example.com",
        "5551234567",
        reservation.reservation_id,
        17,
    )


def test_allocate_ticket_returns_none_when_nothing_lockable(monkeypatch, buyer):
    conn = FakeConn(FakeCursor(results=[None]))
    monkeypatch.setattr(raffle, "run_transaction", _inline_transaction(conn))

    assert raffle.allocate_ticket(buyer) is None
    assert len(conn.cur.executed) == 1


def test_allocate_ticket_requires_the_reserving_update_to_match(monkeypatch, buyer):
    conn = FakeConn(FakeCursor(results=[(17, 23)], rowcount=0))
    monkeypatch.setattr(raffle, "run_transaction", _inline_transaction(conn))

    assert raffle.allocate_ticket(buyer) is None
    assert len(conn.cur.executed) == 2


def test_allocate_ticket_treats_serialization_failure_as_contention(monkeypatch, buyer):
    def _conflict(handler, isolation=None):
        raise pgapi.DatabaseError({"C": "40001", "M": "could not serialize access"})

    monkeypatch.setattr(raffle, "run_transaction", _conflict)

    assert raffle.allocate_ticket(buyer) is None


def test_allocate_ticket_propagates_other_database_errors(monkeypatch, buyer):
    def _broken(handler, isolation=None):
        raise pgapi.DatabaseError({"C": "42P01", "M": 'relation "tickets" does not exist'})

    monkeypatch.setattr(raffle, "run_transaction", _broken)

    with pytest.raises(pgapi.DatabaseError):
        raffle.allocate_ticket(buyer)


def test_finalize_and_release_match_the_reservation(monkeypatch):
    executed = []

    def fake_execute(sql, params=()):
        executed.append((" ".join(sql.split()), params))
        return 1

    monkeypatch.setattr(raffle, "execute", fake_execute)
    reservation = raffle.Reservation(ticket_id=5, number=8, reservation_id=uuid.uuid4())

    assert raffle.finalize_sale(reservation, "ref-1") is True
    assert raffle.release_reservation(reservation) is True

    sold_sql, sold_params = executed[0]
    assert "amount_charged = number" in sold_sql
    assert "WHERE id = %s AND reservation_id = %s AND state = 'reserved'" in sold_sql
    assert sold_params == ("ref-1", 5, reservation.reservation_id)
    release_sql, release_params = executed[1]
    assert "buyer_name = NULL" in release_sql
    assert "reserved_at = NULL" in release_sql
    assert release_params == (5, reservation.reservation_id)


def test_release_reports_when_reservation_already_gone(monkeypatch):
    monkeypatch.setattr(raffle, "execute", lambda sql, params=(): 0)
    reservation = raffle.Reservation(ticket_id=5, number=8, reservation_id=uuid.uuid4())

    assert raffle.release_reservation(reservation) is False
