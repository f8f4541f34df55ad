"""Identity lookup and board membership checks. Nothing here mutates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import UnauthorizedError
from .models import Board, Member, User
from .storage import Store


@dataclass(frozen=True)
class Identity:
    id: str
    name: str


class IdentityProvider(Protocol):
    def resolve_user(self, user_id: str) -> Identity:
        """Raise ``NotFoundError`` when the user does not exist."""
        ...


class StoreIdentityProvider:
    """Resolves identities from the User aggregates in a store."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def resolve_user(self, user_id: str) -> Identity:
        user = self.store.load(User, user_id)
        return Identity(id=user.id, name=user.name)


def find_member(board: Board, user_id: Optional[str]) -> Optional[Member]:
    for member in board.members:
        if member.user == user_id:
            return member
    return None


def is_member(board: Board, user_id: Optional[str]) -> bool:
    return find_member(board, user_id) is not None


def require_member(board: Board, user_id: Optional[str]) -> Member:
    member = find_member(board, user_id)
    if member is None:
        raise UnauthorizedError()
    return member
