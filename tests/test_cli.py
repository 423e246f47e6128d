import json

import raffle_cli.pool as pool_cli


def test_init_command_prints_result(monkeypatch, capsys):
    monkeypatch.setattr(pool_cli, "db_configured", lambda: True)
    monkeypatch.setattr(
        pool_cli.tickets,
        "initialize_pool",
        lambda size: {"already_initialized": False, "count": size, "message": "ok"},
    )

    assert pool_cli.main(["init", "--size", "12"]) == 0

    assert json.loads(capsys.readouterr().out) == {
        "already_initialized": False,
        "count": 12,
        "message": "ok",
    }


def test_board_stats_only(monkeypatch, capsys):
    monkeypatch.setattr(pool_cli, "db_configured", lambda: True)
    monkeypatch.setattr(
        pool_cli.tickets,
        "board",
        lambda: {"tickets": [], "stats": {"total": 0, "sold": 0, "reserved": 0, "available": 0}},
    )

    assert pool_cli.main(["board", "--stats-only"]) == 0

    assert json.loads(capsys.readouterr().out) == {"total": 0, "sold": 0, "reserved": 0, "available": 0}


def test_sweep_command(monkeypatch, capsys):
    monkeypatch.setattr(pool_cli, "db_configured", lambda: True)
    monkeypatch.setattr(pool_cli.tickets, "release_stale_reservations", lambda minutes: [minutes])

    assert pool_cli.main(["sweep", "--minutes", "30"]) == 0

    assert json.loads(capsys.readouterr().out) == {"released": [30]}


def test_missing_database_configuration(monkeypatch, capsys):
    monkeypatch.setattr(pool_cli, "db_configured", lambda: False)

    assert pool_cli.main(["board"]) == 2
    assert "Database configuration is missing" in capsys.readouterr().err
