"""Mutation engine: every structural change to a board goes through here.

Each mutation runs load -> authorize -> mutate -> log -> persist while holding
the board's lock, so writers on the same board are serialized and writers on
different boards never contend. Aggregates are loaded as copies and written
with a single ``save`` at the end, so a failed check leaves the store
untouched. A ``VersionConflictError`` from the store (another process got
there first) restarts the whole unit of work.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from . import activity
from .errors import BadRequestError, NotFoundError, VersionConflictError
from .membership import Identity, IdentityProvider, StoreIdentityProvider, is_member, require_member
from .models import (
    ADMIN,
    NORMAL,
    ActivityEntry,
    Board,
    BoardList,
    Card,
    ChecklistItem,
    Member,
    User,
    new_id,
    now_utc,
)
from .observability import MutationEvent, Observer, log_observer
from .ordering import append, insert_at, move_to_index, remove_by_value
from .storage import LockRegistry, Store, board_key, user_key

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass
class MoveCardResult:
    card_id: str
    from_list: BoardList
    to_list: BoardList


def gravatar_url(email: str) -> str:
    digest = hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()
    return f"https://www.gravatar.com/avatar/{digest}?s=200&r=pg&d=mm"


def _required(value: Optional[str], field: str, label: str) -> str:
    if value is None or not value.strip():
        raise BadRequestError(f"{label} is required", [field])
    return value.strip()


class MutationEngine:
    def __init__(
        self,
        store: Store,
        identity: Optional[IdentityProvider] = None,
        *,
        locks: Optional[LockRegistry] = None,
        observer: Optional[Observer] = None,
        clock: Callable[[], datetime] = now_utc,
        max_attempts: int = 3,
    ) -> None:
        self.store = store
        self.identity = identity or StoreIdentityProvider(store)
        self.locks = locks or LockRegistry()
        self.observer = observer or log_observer(logger)
        self.clock = clock
        self.max_attempts = max(1, max_attempts)

    # === Unit of work ===
    def _run(
        self,
        operation: str,
        board_id: Optional[str],
        user_id: Optional[str],
        body: Callable[[], Tuple[R, Optional[str]]],
        locks: Sequence[Tuple[str, str]] = (),
    ) -> R:
        keys = ([board_key(board_id)] if board_id else []) + list(locks)
        with self.locks.hold(*keys):
            attempt = 1
            while True:
                try:
                    result, text = body()
                    break
                except VersionConflictError as exc:
                    event = MutationEvent(operation, board_id, user_id, attempts=attempt)
                    if attempt >= self.max_attempts:
                        logger.error(
                            "%s gave up after %d attempts: %s",
                            operation,
                            attempt,
                            exc.message,
                            extra={"mutation": event},
                        )
                        raise
                    logger.warning(
                        "%s conflicted, retrying: %s",
                        operation,
                        exc.message,
                        extra={"mutation": event},
                    )
                    attempt += 1
        self.observer(MutationEvent(operation, board_id, user_id, text, attempt))
        return result

    def _log(self, board: Board, text: str) -> str:
        activity.record(board, text, self.clock())
        return text

    def _member_board(self, board_id: str, user_id: str) -> Tuple[Board, Identity]:
        board = self.store.load(Board, board_id)
        require_member(board, user_id)
        return board, self.identity.resolve_user(user_id)

    def _board_list(self, board: Board, list_id: str) -> BoardList:
        if list_id not in board.lists:
            raise NotFoundError("List", list_id)
        return self.store.load(BoardList, list_id)

    def _board_card(self, board: Board, card_id: str) -> Tuple[Card, BoardList]:
        for list_id in board.lists:
            lst = self.store.load(BoardList, list_id)
            if card_id in lst.cards:
                return self.store.load(Card, card_id), lst
        raise NotFoundError("Card", card_id)

    # === Users ===
    def register(self, name: str, email: str) -> User:
        name = _required(name, "name", "Name")
        email = _required(email, "email", "Email")
        if "@" not in email:
            raise BadRequestError("Please include a valid email", ["email"])

        def body():
            if self.store.find_user_by_email(email) is not None:
                raise BadRequestError("User already exists", ["email"])
            user = User(id=new_id(), name=name, email=email, avatar=gravatar_url(email))
            self.store.save(user)
            return user, None

        return self._run("register", None, None, body, [("email", email.lower())])

    # === Boards ===
    def add_board(self, user_id: str, title: str, background: Optional[str] = None) -> Board:
        title = _required(title, "title", "Title")

        def body():
            user = self.store.load(User, user_id)
            board = Board(
                id=new_id(),
                title=title,
                background=background,
                members=[Member(user=user.id, name=user.name, role=ADMIN)],
                created_at=self.clock(),
            )
            insert_at(user.boards, board.id, 0)
            text = self._log(board, activity.board_created(user.name))
            self.store.save(board, user)
            return board, text

        return self._run("add_board", None, user_id, body, [user_key(user_id)])

    def rename_board(self, board_id: str, user_id: str, title: str) -> Board:
        title = _required(title, "title", "Title")

        def body():
            board, actor = self._member_board(board_id, user_id)
            if title == board.title:
                return board, None
            text = self._log(board, activity.board_renamed(actor.name, board.title))
            board.title = title
            self.store.save(board)
            return board, text

        return self._run("rename_board", board_id, user_id, body)

    def add_member(self, board_id: str, user_id: str, new_member_id: str) -> Board:
        """Add ``new_member_id`` to the board as a normal member.

        ``user_id`` is the member doing the inviting.
        """

        def body():
            board = self.store.load(Board, board_id)
            require_member(board, user_id)
            user = self.store.load(User, new_member_id)
            if is_member(board, user.id):
                raise BadRequestError("Already member of board", ["userId"])
            board.members.append(Member(user=user.id, name=user.name, role=NORMAL))
            if board.id not in user.boards:
                insert_at(user.boards, board.id, 0)
            text = self._log(board, activity.member_joined_board(user.name))
            self.store.save(board, user)
            return board, text

        return self._run("add_member", board_id, user_id, body, [user_key(new_member_id)])

    # === Lists ===
    def add_list(self, board_id: str, user_id: str, title: str) -> BoardList:
        title = _required(title, "title", "Title")

        def body():
            board, actor = self._member_board(board_id, user_id)
            lst = BoardList(id=new_id(), title=title)
            append(board.lists, lst.id)
            text = self._log(board, activity.list_added(actor.name, title))
            self.store.save(lst, board)
            return lst, text

        return self._run("add_list", board_id, user_id, body)

    def rename_list(self, board_id: str, list_id: str, user_id: str, title: str) -> BoardList:
        title = _required(title, "title", "Title")

        def body():
            board, actor = self._member_board(board_id, user_id)
            lst = self._board_list(board, list_id)
            if title == lst.title:
                return lst, None
            text = self._log(board, activity.list_renamed(actor.name, title, lst.title))
            lst.title = title
            self.store.save(lst, board)
            return lst, text

        return self._run("rename_list", board_id, user_id, body)

    def archive_list(self, board_id: str, list_id: str, user_id: str, archive: bool) -> BoardList:
        def body():
            board, actor = self._member_board(board_id, user_id)
            lst = self._board_list(board, list_id)
            lst.archived = archive
            text = self._log(board, activity.list_archived(actor.name, lst.title, archive))
            self.store.save(lst, board)
            return lst, text

        return self._run("archive_list", board_id, user_id, body)

    def move_list(
        self, board_id: str, list_id: str, user_id: str, to_index: Optional[int] = None
    ) -> Board:
        def body():
            board, actor = self._member_board(board_id, user_id)
            lst = self._board_list(board, list_id)
            position = move_to_index(list_id, board.lists, board.lists, to_index)
            text = self._log(board, activity.list_moved(actor.name, lst.title, position))
            self.store.save(board)
            return board, text

        return self._run("move_list", board_id, user_id, body)

    # === Cards ===
    def add_card(self, board_id: str, list_id: str, user_id: str, title: str) -> Card:
        title = _required(title, "title", "Title")

        def body():
            board, actor = self._member_board(board_id, user_id)
            lst = self._board_list(board, list_id)
            card = Card(id=new_id(), title=title)
            append(lst.cards, card.id)
            text = self._log(board, activity.card_added(actor.name, title, lst.title))
            self.store.save(card, lst, board)
            return card, text

        return self._run("add_card", board_id, user_id, body)

    def edit_card(
        self,
        board_id: str,
        card_id: str,
        user_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Card:
        """Partial update; ``None`` leaves a field as it is. Not logged."""
        if title is not None:
            title = _required(title, "title", "Title")

        def body():
            board, _ = self._member_board(board_id, user_id)
            card, _ = self._board_card(board, card_id)
            if title is not None:
                card.title = title
            if description is not None:
                card.description = description
            if tags is not None:
                card.tags = list(tags)
            self.store.save(card)
            return card, None

        return self._run("edit_card", board_id, user_id, body)

    def archive_card(self, board_id: str, card_id: str, user_id: str, archive: bool) -> Card:
        def body():
            board, actor = self._member_board(board_id, user_id)
            card, _ = self._board_card(board, card_id)
            card.archived = archive
            text = self._log(board, activity.card_archived(actor.name, card.title, archive))
            self.store.save(card, board)
            return card, text

        return self._run("archive_card", board_id, user_id, body)

    def move_card(
        self,
        board_id: str,
        card_id: str,
        user_id: str,
        from_id: str,
        to_id: str,
        to_index: Optional[int] = None,
    ) -> MoveCardResult:
        def body():
            board, actor = self._member_board(board_id, user_id)
            source = self._board_list(board, from_id)
            target = source if from_id == to_id else self._board_list(board, to_id)
            card = self.store.load(Card, card_id)
            was_in_source = card_id in source.cards
            if not was_in_source and card_id not in target.cards:
                raise BadRequestError("Card is not in the source list", ["fromId"])

            if source is target:
                move_to_index(card_id, source.cards, source.cards, to_index)
                self.store.save(source)
                return MoveCardResult(card_id, source, source), None

            if not was_in_source:
                # already moved
                return MoveCardResult(card_id, source, target), None
            move_to_index(card_id, source.cards, target.cards, to_index)
            text = self._log(
                board, activity.card_moved(actor.name, card.title, source.title, target.title)
            )
            self.store.save(source, target, board)
            return MoveCardResult(card_id, source, target), text

        return self._run("move_card", board_id, user_id, body)

    def add_remove_card_member(
        self, board_id: str, card_id: str, user_id: str, member_id: str, add: bool
    ) -> Card:
        """Put ``member_id`` on the card or take them off.

        Already being in the requested state is a no-op and is not logged.
        """

        def body():
            board = self.store.load(Board, board_id)
            require_member(board, user_id)
            card, _ = self._board_card(board, card_id)
            target = self.identity.resolve_user(member_id)
            current = [m.user for m in card.members]
            if add == (target.id in current):
                return card, None
            if add:
                if not is_member(board, target.id):
                    raise BadRequestError("User is not a member of this board", ["userId"])
                card.members.append(Member(user=target.id, name=target.name))
            else:
                del card.members[current.index(target.id)]
            text = self._log(board, activity.card_member_changed(target.name, card.title, add))
            self.store.save(card, board)
            return card, text

        return self._run("add_remove_card_member", board_id, user_id, body)

    def delete_card(self, board_id: str, list_id: str, card_id: str, user_id: str) -> str:
        def body():
            board, actor = self._member_board(board_id, user_id)
            lst = self._board_list(board, list_id)
            card = self.store.load(Card, card_id)
            if not remove_by_value(lst.cards, card_id):
                raise NotFoundError("Card", card_id)
            text = self._log(board, activity.card_deleted(actor.name, card.title, lst.title))
            self.store.save(lst, board, deleted=[(Card, card_id)])
            return card_id, text

        return self._run("delete_card", board_id, user_id, body)

    # === Checklists ===
    def _checklist_op(self, operation, board_id, card_id, user_id, change: Callable[[Card], None]) -> Card:
        def body():
            board = self.store.load(Board, board_id)
            require_member(board, user_id)
            card, _ = self._board_card(board, card_id)
            change(card)
            self.store.save(card)
            return card, None

        return self._run(operation, board_id, user_id, body)

    @staticmethod
    def _item(card: Card, item_id: str) -> ChecklistItem:
        item = card.checklist_item(item_id)
        if item is None:
            raise NotFoundError("Checklist item", item_id)
        return item

    def add_checklist(self, board_id: str, card_id: str, user_id: str, text: str) -> Card:
        text = _required(text, "text", "Text")
        return self._checklist_op(
            "add_checklist", board_id, card_id, user_id,
            lambda card: append(card.checklist, ChecklistItem(text=text)),
        )

    def edit_checklist(
        self, board_id: str, card_id: str, user_id: str, item_id: str, text: str
    ) -> Card:
        text = _required(text, "text", "Text")

        def change(card: Card) -> None:
            self._item(card, item_id).text = text

        return self._checklist_op("edit_checklist", board_id, card_id, user_id, change)

    def complete_checklist(
        self, board_id: str, card_id: str, user_id: str, item_id: str, complete: bool
    ) -> Card:
        def change(card: Card) -> None:
            self._item(card, item_id).complete = complete

        return self._checklist_op("complete_checklist", board_id, card_id, user_id, change)

    def delete_checklist(self, board_id: str, card_id: str, user_id: str, item_id: str) -> Card:
        def change(card: Card) -> None:
            remove_by_value(card.checklist, self._item(card, item_id))

        return self._checklist_op("delete_checklist", board_id, card_id, user_id, change)

    # === Queries ===
    #
    # Reads that span several aggregates hold the board lock so they never see
    # a card move or list move half applied.

    def get_user(self, user_id: str) -> User:
        return self.store.load(User, user_id)

    def list_users(self) -> List[User]:
        return self.store.list_users()

    def get_user_boards(self, user_id: str) -> List[Board]:
        with self.locks.hold(user_key(user_id)):
            user = self.store.load(User, user_id)
            return self.store.load_many(Board, user.boards)

    def get_board(self, board_id: str) -> Board:
        return self.store.load(Board, board_id)

    def get_board_activity(
        self, board_id: str, offset: int = 0, limit: Optional[int] = None
    ) -> Tuple[List[ActivityEntry], int]:
        """One page of the board's log, newest first, and the log's full length."""
        board = self.store.load(Board, board_id)
        return activity.page(board, offset, limit), len(board.activity)

    def get_board_lists(self, board_id: str) -> List[BoardList]:
        with self.locks.hold(board_key(board_id)):
            board = self.store.load(Board, board_id)
            return self.store.load_many(BoardList, board.lists)

    def get_list(self, board_id: str, list_id: str) -> BoardList:
        with self.locks.hold(board_key(board_id)):
            return self._board_list(self.store.load(Board, board_id), list_id)

    def get_list_cards(self, board_id: str, list_id: str) -> List[Card]:
        with self.locks.hold(board_key(board_id)):
            lst = self._board_list(self.store.load(Board, board_id), list_id)
            return self.store.load_many(Card, lst.cards)

    def get_card(self, board_id: str, card_id: str) -> Card:
        with self.locks.hold(board_key(board_id)):
            card, _ = self._board_card(self.store.load(Board, board_id), card_id)
            return card
