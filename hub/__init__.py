"""
hub - HTTP service around the bracket engine

Stores tournaments and brackets in SQLite, serializes writes per tournament,
and streams bracket snapshots to live viewers.
"""

from .server import app
from .db import BracketDB
from .service import TournamentService

__all__ = ["app", "BracketDB", "TournamentService"]
