#!/usr/bin/env python3
"""
bracketry/cli.py - Command line interface for Bracketry

Usage:
    bracketry serve [--host HOST] [--port PORT] [--db PATH]
    bracketry show <tournament-id> [--db PATH]
    bracketry payout <tournament-id> [--db PATH]
"""

import argparse
import logging
import sys

from .config import apply_env_overrides, load_config
from .errors import BracketError
from .models import SIDES, Bracket, Match

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _format_slot(team_id: str | None, score: float | None) -> str:
    name = team_id or "TBD"
    if score is None:
        return name
    return f"{name} ({score:g})"


def format_match(match: Match) -> str:
    line = f"{match.id:<14} {_format_slot(match.team1_id, match.score1)} vs {_format_slot(match.team2_id, match.score2)}"
    if match.is_completed:
        line += f"  -> {match.winner_id}"
    return line


def format_bracket(bracket: Bracket) -> str:
    """Plain-text rendering, one match per line."""
    lines = [f"Tournament {bracket.tournament_id} ({bracket.kind} elimination)"]
    for side in SIDES:
        rounds = bracket.rounds(side)
        if not rounds:
            continue
        lines.append("")
        lines.append(side.capitalize())
        for rnd in rounds:
            lines.append(f"  Round {rnd.round}")
            for match in rnd.matches:
                lines.append(f"    {format_match(match)}")
    return "\n".join(lines)


def _open_service(args):
    from hub.db import BracketDB
    from hub.service import TournamentService

    config = apply_env_overrides(load_config())
    db_path = args.db or config.server.db_path
    return TournamentService(BracketDB(db_path), split=config.payout.split)


def cmd_serve(args):
    """Start the bracket HTTP server."""
    try:
        import uvicorn
    except ImportError:
        logger.error("Serving requires uvicorn: pip install uvicorn")
        return 1

    from hub.server import app

    config = apply_env_overrides(load_config())
    host = args.host or config.server.host
    port = args.port or config.server.port
    db_path = args.db or config.server.db_path

    # Set DB path on app state so lifespan picks it up
    app.state.db_path = db_path
    logger.info(f"Starting bracket server on {host}:{port} (db: {db_path})")
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    return 0


def cmd_show(args):
    """Print a tournament's bracket."""
    service = _open_service(args)
    bracket = service.get_bracket(args.tournament)
    if bracket is None:
        logger.error(f"No bracket for tournament {args.tournament}")
        return 1
    print(format_bracket(bracket))
    return 0


def cmd_payout(args):
    """Settle a tournament and print the awards."""
    service = _open_service(args)
    try:
        payout = service.end_tournament(args.tournament)
    except BracketError as e:
        logger.error(f"Cannot settle {args.tournament}: {e}")
        return 1

    print(f"Total: {payout.total:.2f}")
    for award in payout.awards:
        print(f"  {award.place}. {award.team_id:<20} {award.amount:>10.2f}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="bracketry",
        description="Elimination brackets, results and payouts",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the bracket server")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: from config)")
    serve_parser.add_argument("--port", "-p", type=int, default=None, help="Server port (default: 8000)")
    serve_parser.add_argument("--db", default=None, help="SQLite database path (default: brackets.db)")
    serve_parser.set_defaults(func=cmd_serve)

    # show command
    show_parser = subparsers.add_parser("show", help="Print a tournament's bracket")
    show_parser.add_argument("tournament", help="Tournament id")
    show_parser.add_argument("--db", default=None, help="SQLite database path")
    show_parser.set_defaults(func=cmd_show)

    # payout command
    payout_parser = subparsers.add_parser("payout", help="End a tournament and pay out")
    payout_parser.add_argument("tournament", help="Tournament id")
    payout_parser.add_argument("--db", default=None, help="SQLite database path")
    payout_parser.set_defaults(func=cmd_payout)

    args = parser.parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        level = apply_env_overrides(load_config()).log_level
        logging.getLogger().setLevel(getattr(logging, level, logging.INFO))
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
