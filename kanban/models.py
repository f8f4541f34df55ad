from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


ADMIN = "admin"
NORMAL = "normal"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# === Value objects ===


@dataclass
class Member:
    user: str
    name: str
    role: str = NORMAL


@dataclass
class ChecklistItem:
    text: str
    complete: bool = False
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class ActivityEntry:
    text: str
    date: datetime


# === Aggregates ===
#
# Aggregates refer to each other by id only, so each one can be loaded and
# saved on its own. ``version`` is bumped by the store on every save.


@dataclass
class User:
    id: str
    name: str
    email: str
    avatar: Optional[str] = None
    boards: List[str] = field(default_factory=list)
    version: int = 0


@dataclass
class Board:
    id: str
    title: str
    background: Optional[str] = None
    lists: List[str] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    activity: List[ActivityEntry] = field(default_factory=list)
    created_at: datetime = field(default_factory=now_utc)
    version: int = 0


@dataclass
class BoardList:
    id: str
    title: str
    cards: List[str] = field(default_factory=list)
    archived: bool = False
    version: int = 0


@dataclass
class Card:
    id: str
    title: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    checklist: List[ChecklistItem] = field(default_factory=list)
    archived: bool = False
    version: int = 0

    def checklist_item(self, item_id: str) -> Optional[ChecklistItem]:
        for item in self.checklist:
            if item.id == item_id:
                return item
        return None


AGGREGATES = (User, Board, BoardList, Card)
