"""Board activity log: append-only, newest first."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from .models import ActivityEntry, Board, now_utc


def record(board: Board, text: str, at: Optional[datetime] = None) -> ActivityEntry:
    entry = ActivityEntry(text=text, date=at or now_utc())
    board.activity.insert(0, entry)
    return entry


def page(board: Board, offset: int = 0, limit: Optional[int] = None) -> List[ActivityEntry]:
    """Slice of the log, newest first."""
    offset = max(offset, 0)
    if limit is None:
        return list(board.activity[offset:])
    return list(board.activity[offset : offset + max(limit, 0)])


# === Entry text ===


def board_created(name: str) -> str:
    return f"{name} created this board"


def board_renamed(name: str, old_title: str) -> str:
    return f"{name} renamed this board (from '{old_title}')"


def member_joined_board(name: str) -> str:
    return f"{name} joined this board"


def list_added(name: str, title: str) -> str:
    return f"{name} added '{title}' to this board"


def list_renamed(name: str, title: str, old_title: str) -> str:
    return f"{name} renamed list '{title}' (from '{old_title}')"


def list_archived(name: str, title: str, archived: bool) -> str:
    verb = "archived" if archived else "restored"
    return f"{name} {verb} list '{title}'"


def list_moved(name: str, title: str, index: int) -> str:
    return f"{name} moved list '{title}' to index {index}"


def card_added(name: str, title: str, list_title: str) -> str:
    return f"{name} added '{title}' to '{list_title}'"


def card_archived(name: str, title: str, archived: bool) -> str:
    verb = "archived" if archived else "restored"
    return f"{name} {verb} card '{title}'"


def card_moved(name: str, title: str, from_title: str, to_title: str) -> str:
    return f"{name} moved '{title}' from '{from_title}' to '{to_title}'"


def card_member_changed(name: str, title: str, joined: bool) -> str:
    verb = "joined" if joined else "left"
    return f"{name} {verb} '{title}'"


def card_deleted(name: str, title: str, list_title: str) -> str:
    return f"{name} deleted '{title}' from '{list_title}'"
