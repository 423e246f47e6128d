from __future__ import annotations

import argparse
import json
import sys

from app.core.config import db_configured, settings
from app.core.logging import configure_logging
from app.services import tickets


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _cmd_init(args: argparse.Namespace) -> int:
    _print(tickets.initialize_pool(args.size))
    return 0


def _cmd_board(args: argparse.Namespace) -> int:
    board = tickets.board()
    if args.stats_only:
        _print(board["stats"])
    else:
        _print(board)
    return 0


def _cmd_sweep(args: argparse.Namespace) -> int:
    released = tickets.release_stale_reservations(args.minutes)
    _print({"released": released})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="raffle-pool", description="Manage the raffle ticket pool.")
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Create the ticket pool if it is empty")
    init.add_argument("--size", type=int, default=settings.pool_size)
    init.set_defaults(func=_cmd_init)

    board = commands.add_parser("board", help="Show every ticket and the state counts")
    board.add_argument("--stats-only", action="store_true")
    board.set_defaults(func=_cmd_board)

    sweep = commands.add_parser("sweep", help="Release reservations older than --minutes")
    sweep.add_argument("--minutes", type=int, default=settings.reservation_timeout_minutes)
    sweep.set_defaults(func=_cmd_sweep)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    if not db_configured():
        print("Database configuration is missing (DB_HOST, DB_NAME, DB_USER, DB_PASSWORD)", file=sys.stderr)
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
