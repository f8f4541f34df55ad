import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth import get_current_user
from .config import get_settings
from .db import SqlStore
from .engine import MutationEngine
from .errors import ErrorKind, KanbanError
from .models import Board, BoardList, Card, User
from .observability import setup_logging
from .schemas import (
    ActivityOut,
    ActivityPage,
    BoardIn,
    BoardOut,
    BoardPatch,
    CardDeleted,
    CardIn,
    CardMove,
    CardMoveOut,
    CardOut,
    CardPatch,
    ChecklistItemIn,
    ChecklistItemOut,
    ChecklistItemPatch,
    Health,
    ListIn,
    ListMove,
    ListOut,
    ListPatch,
    MemberOut,
    UserIn,
    UserOut,
    Version,
)
from .storage import MemoryStore

logger = logging.getLogger(__name__)

settings = get_settings()

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@lru_cache
def get_engine() -> MutationEngine:
    if settings.storage_backend == "sql":
        store = SqlStore(settings.database_url)
        store.init_db()
    else:
        store = MemoryStore()
    return MutationEngine(store, max_attempts=settings.mutation_max_attempts)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)
    logger.info("%s started (storage=%s)", settings.app_name, settings.storage_backend)
    yield
    logger.info("%s shutting down", settings.app_name)


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
router = APIRouter(prefix=settings.api_prefix)


# === Error handlers ===


@app.exception_handler(KanbanError)
async def kanban_error_handler(request: Request, exc: KanbanError):
    level = logging.ERROR if exc.kind == ErrorKind.INTERNAL else logging.INFO
    logger.log(level, "%s: %s", exc.code, exc.message, extra={"error": exc})
    return JSONResponse(status_code=STATUS_BY_KIND[exc.kind], content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "validation_error",
                "message": "Invalid request data",
                "kind": ErrorKind.BAD_REQUEST.value,
                "fields": [".".join(str(loc) for loc in e["loc"]) for e in exc.errors()],
            }
        },
    )


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "kind": ErrorKind.INTERNAL.value,
                "fields": [],
            }
        },
    )


# === Helpers ===


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        avatar=user.avatar,
        boards=list(user.boards),
    )


def board_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        title=board.title,
        backgroundURL=board.background,
        lists=list(board.lists),
        members=[MemberOut(user=m.user, name=m.name, role=m.role) for m in board.members],
        activity=[ActivityOut(text=e.text, date=e.date) for e in board.activity],
        createdAt=board.created_at,
        version=board.version,
    )


def list_out(lst: BoardList) -> ListOut:
    return ListOut(
        id=lst.id,
        title=lst.title,
        cards=list(lst.cards),
        archived=lst.archived,
        version=lst.version,
    )


def card_out(card: Card) -> CardOut:
    return CardOut(
        id=card.id,
        title=card.title,
        description=card.description,
        tags=list(card.tags),
        members=[MemberOut(user=m.user, name=m.name, role=m.role) for m in card.members],
        checklist=[
            ChecklistItemOut(id=i.id, text=i.text, complete=i.complete) for i in card.checklist
        ],
        archived=card.archived,
        version=card.version,
    )


# === Health & metadata ===


@router.get("/health", response_model=Health)
def health() -> Health:
    return Health()


@router.get("/version", response_model=Version)
def version() -> Version:
    return Version(version=settings.version)


# === Users ===


@router.post("/users", response_model=UserOut, status_code=201)
def register(payload: UserIn, engine: MutationEngine = Depends(get_engine)):
    return user_out(engine.register(payload.name, payload.email))


@router.get("/users", response_model=list[UserOut])
def list_users(
    user: str = Depends(get_current_user), engine: MutationEngine = Depends(get_engine)
):
    return [user_out(u) for u in engine.list_users()]


@router.get("/users/me", response_model=UserOut)
def get_authenticated_user(
    user: str = Depends(get_current_user), engine: MutationEngine = Depends(get_engine)
):
    return user_out(engine.get_user(user))


# === Boards ===


@router.post("/boards", response_model=BoardOut, status_code=201)
def add_board(
    payload: BoardIn,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return board_out(engine.add_board(user, payload.title, payload.backgroundURL))


@router.get("/boards", response_model=list[BoardOut])
def get_user_boards(
    user: str = Depends(get_current_user), engine: MutationEngine = Depends(get_engine)
):
    return [board_out(b) for b in engine.get_user_boards(user)]


@router.get("/boards/{board_id}", response_model=BoardOut)
def get_board(
    board_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return board_out(engine.get_board(board_id))


@router.get("/boards/{board_id}/activity", response_model=ActivityPage)
def get_board_activity(
    board_id: str,
    offset: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    limit = min(limit or settings.activity_page_size, settings.activity_max_page_size)
    entries, total = engine.get_board_activity(board_id, offset, limit)
    return ActivityPage(
        activity=[ActivityOut(text=e.text, date=e.date) for e in entries],
        offset=offset,
        limit=limit,
        total=total,
    )


@router.patch("/boards/{board_id}", response_model=BoardOut)
def rename_board(
    board_id: str,
    payload: BoardPatch,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return board_out(engine.rename_board(board_id, user, payload.title))


@router.put("/boards/{board_id}/members/{member_id}", response_model=BoardOut)
def add_member(
    board_id: str,
    member_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return board_out(engine.add_member(board_id, user, member_id))


# === Lists ===


@router.post("/boards/{board_id}/lists", response_model=ListOut, status_code=201)
def add_list(
    board_id: str,
    payload: ListIn,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return list_out(engine.add_list(board_id, user, payload.title))


@router.get("/boards/{board_id}/lists", response_model=list[ListOut])
def get_board_lists(
    board_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return [list_out(lst) for lst in engine.get_board_lists(board_id)]


@router.get("/boards/{board_id}/lists/{list_id}", response_model=ListOut)
def get_list(
    board_id: str,
    list_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return list_out(engine.get_list(board_id, list_id))


@router.patch("/boards/{board_id}/lists/{list_id}", response_model=ListOut)
def rename_list(
    board_id: str,
    list_id: str,
    payload: ListPatch,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return list_out(engine.rename_list(board_id, list_id, user, payload.title))


@router.post("/boards/{board_id}/lists/{list_id}:archive", response_model=ListOut)
def archive_list(
    board_id: str,
    list_id: str,
    archive: bool = True,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return list_out(engine.archive_list(board_id, list_id, user, archive))


@router.post("/boards/{board_id}/lists/{list_id}:move", response_model=BoardOut)
def move_list(
    board_id: str,
    list_id: str,
    payload: ListMove,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return board_out(engine.move_list(board_id, list_id, user, payload.toIndex))


# === Cards ===


@router.post("/boards/{board_id}/lists/{list_id}/cards", response_model=CardOut, status_code=201)
def add_card(
    board_id: str,
    list_id: str,
    payload: CardIn,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.add_card(board_id, list_id, user, payload.title))


@router.get("/boards/{board_id}/lists/{list_id}/cards", response_model=list[CardOut])
def get_list_cards(
    board_id: str,
    list_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return [card_out(c) for c in engine.get_list_cards(board_id, list_id)]


@router.delete("/boards/{board_id}/lists/{list_id}/cards/{card_id}", response_model=CardDeleted)
def delete_card(
    board_id: str,
    list_id: str,
    card_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return CardDeleted(cardId=engine.delete_card(board_id, list_id, card_id, user))


@router.get("/boards/{board_id}/cards/{card_id}", response_model=CardOut)
def get_card(
    board_id: str,
    card_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.get_card(board_id, card_id))


@router.patch("/boards/{board_id}/cards/{card_id}", response_model=CardOut)
def edit_card(
    board_id: str,
    card_id: str,
    payload: CardPatch,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    card = engine.edit_card(
        board_id,
        card_id,
        user,
        title=payload.title,
        description=payload.description,
        tags=payload.tags,
    )
    return card_out(card)


@router.post("/boards/{board_id}/cards/{card_id}:archive", response_model=CardOut)
def archive_card(
    board_id: str,
    card_id: str,
    archive: bool = True,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.archive_card(board_id, card_id, user, archive))


@router.post("/boards/{board_id}/cards/{card_id}:move", response_model=CardMoveOut)
def move_card(
    board_id: str,
    card_id: str,
    payload: CardMove,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    result = engine.move_card(board_id, card_id, user, payload.fromId, payload.toId, payload.toIndex)
    return CardMoveOut(
        cardId=result.card_id,
        source=list_out(result.from_list),
        target=list_out(result.to_list),
    )


@router.put("/boards/{board_id}/cards/{card_id}/members/{member_id}", response_model=CardOut)
def add_card_member(
    board_id: str,
    card_id: str,
    member_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.add_remove_card_member(board_id, card_id, user, member_id, True))


@router.delete("/boards/{board_id}/cards/{card_id}/members/{member_id}", response_model=CardOut)
def remove_card_member(
    board_id: str,
    card_id: str,
    member_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.add_remove_card_member(board_id, card_id, user, member_id, False))


# === Checklists ===


@router.post("/boards/{board_id}/cards/{card_id}/checklist", response_model=CardOut, status_code=201)
def add_checklist(
    board_id: str,
    card_id: str,
    payload: ChecklistItemIn,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.add_checklist(board_id, card_id, user, payload.text))


@router.patch("/boards/{board_id}/cards/{card_id}/checklist/{item_id}", response_model=CardOut)
def edit_checklist(
    board_id: str,
    card_id: str,
    item_id: str,
    payload: ChecklistItemPatch,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.edit_checklist(board_id, card_id, user, item_id, payload.text))


@router.post(
    "/boards/{board_id}/cards/{card_id}/checklist/{item_id}:complete", response_model=CardOut
)
def complete_checklist(
    board_id: str,
    card_id: str,
    item_id: str,
    complete: bool = True,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.complete_checklist(board_id, card_id, user, item_id, complete))


@router.delete("/boards/{board_id}/cards/{card_id}/checklist/{item_id}", response_model=CardOut)
def delete_checklist(
    board_id: str,
    card_id: str,
    item_id: str,
    user: str = Depends(get_current_user),
    engine: MutationEngine = Depends(get_engine),
):
    return card_out(engine.delete_checklist(board_id, card_id, user, item_id))


app.include_router(router)
