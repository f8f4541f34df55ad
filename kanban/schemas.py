from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str


# === Users ===


class UserIn(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=320)


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    avatar: Optional[str] = None
    boards: list[str]


# === Boards ===


class MemberOut(BaseModel):
    user: str
    name: str
    role: str


class ActivityOut(BaseModel):
    text: str
    date: datetime


class BoardIn(BaseModel):
    title: str = Field(min_length=1, max_length=140)
    backgroundURL: Optional[str] = Field(default=None, max_length=2000)


class BoardPatch(BaseModel):
    title: str = Field(min_length=1, max_length=140)


class BoardOut(BaseModel):
    id: str
    title: str
    backgroundURL: Optional[str]
    lists: list[str]
    members: list[MemberOut]
    activity: list[ActivityOut]
    createdAt: datetime
    version: int


class ActivityPage(BaseModel):
    activity: list[ActivityOut]
    offset: int
    limit: int
    total: int


# === Lists ===


class ListIn(BaseModel):
    title: str = Field(min_length=1, max_length=140)


class ListPatch(BaseModel):
    title: str = Field(min_length=1, max_length=140)


class ListMove(BaseModel):
    toIndex: Optional[int] = None


class ListOut(BaseModel):
    id: str
    title: str
    cards: list[str]
    archived: bool
    version: int


# === Cards ===


class ChecklistItemOut(BaseModel):
    id: str
    text: str
    complete: bool


class CardIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)


class CardPatch(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    tags: Optional[list[str]] = None


class CardMove(BaseModel):
    fromId: str
    toId: str
    toIndex: Optional[int] = None


class CardOut(BaseModel):
    id: str
    title: str
    description: str
    tags: list[str]
    members: list[MemberOut]
    checklist: list[ChecklistItemOut]
    archived: bool
    version: int


class CardMoveOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cardId: str
    source: ListOut = Field(alias="from")
    target: ListOut = Field(alias="to")


class CardDeleted(BaseModel):
    cardId: str


# === Checklists ===


class ChecklistItemIn(BaseModel):
    text: str = Field(min_length=1, max_length=500)


class ChecklistItemPatch(BaseModel):
    text: str = Field(min_length=1, max_length=500)
