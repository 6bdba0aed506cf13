import logging
from contextlib import asynccontextmanager
from typing import Iterator, List

from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from . import db
from .auth import get_current_user
from .boards import BoardService
from .config import settings
from .errors import (
    ChainboardError,
    NotFound,
    PermissionDenied,
    StoreConnectionError,
    TransactionError,
    ValidationError,
)
from .log import configure_logging
from .models import Attachment, RequestContext
from .schemas import (
    AttachmentIn,
    AttachmentOut,
    AttachmentPatch,
    BoardIn,
    BoardOut,
    BoardPatch,
    BoardsPage,
    BoardView,
    CardCover,
    CardIn,
    CardLabel,
    CardListIn,
    CardListMove,
    CardListOut,
    CardListPatch,
    CardListView,
    CardMove,
    CardOut,
    CardPatch,
    ErrorEnvelope,
    Health,
    LabelOut,
    LabelPatch,
    PermissionIn,
    PermissionOut,
    Version,
)
from .uow import UnitOfWork

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    yield


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)


# === Errors ===

STATUS_BY_ERROR = {
    ValidationError: (400, "invalid_argument"),
    PermissionDenied: (403, "forbidden"),
    NotFound: (404, "not_found"),
    StoreConnectionError: (503, "store_unavailable"),
    TransactionError: (500, "transaction_failed"),
}


@app.exception_handler(ChainboardError)
async def chainboard_error_handler(request: Request, exc: ChainboardError) -> JSONResponse:
    status, code = 500, "internal_error"
    for kind, mapped in STATUS_BY_ERROR.items():
        if isinstance(exc, kind):
            status, code = mapped
            break
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    details = {"operation": exc.operation} if isinstance(exc, PermissionDenied) and exc.operation else None
    body = ErrorEnvelope(code=code, message=str(exc), details=details)
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


# === Dependencies ===


def get_uow() -> Iterator[UnitOfWork]:
    uow = UnitOfWork(db.engine)
    try:
        yield uow
    finally:
        uow.close()


def discard_attachment_files(removed: List[Attachment]) -> None:
    for attachment in removed:
        logger.info("Attachment %s (%s) is no longer referenced", attachment.guid, attachment.name)


def get_service(uow: UnitOfWork = Depends(get_uow)) -> BoardService:
    return BoardService(uow, on_attachments_deleted=discard_attachment_files)


# === Health & metadata ===


@app.get("/v1/health", response_model=Health)
def health() -> Health:
    return Health()


@app.get("/v1/version", response_model=Version)
def version() -> Version:
    return Version(version=settings.APP_VERSION)


# === Board endpoints ===


@app.post("/v1/boards", response_model=BoardOut, status_code=201)
def create_board(
    payload: BoardIn,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return BoardOut.of(service.create_board(user, payload.title))


@app.get("/v1/boards", response_model=BoardsPage)
def list_boards(
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return BoardsPage(boards=[BoardOut.of(board) for board in service.list_boards(user)])


@app.get("/v1/boards/{board_id}", response_model=BoardView)
def get_board(
    board_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    view = service.view(user, board_id)
    lists = [
        CardListView(
            **CardListOut.of(card_list).model_dump(),
            cards=[CardOut.of(card) for card in view.cards.get(card_list.id, [])],
        )
        for card_list in view.lists
    ]
    return BoardView(board=BoardOut.of(view.board), lists=lists)


@app.patch("/v1/boards/{board_id}", response_model=BoardOut)
def update_board(
    board_id: int,
    payload: BoardPatch,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return BoardOut.of(service.update_board(user, board_id, title=payload.title, closed=payload.closed))


@app.delete("/v1/boards/{board_id}", status_code=204)
def delete_board(
    board_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    service.delete_board(user, board_id)
    return Response(status_code=204)


# === Label endpoints ===


@app.post("/v1/boards/{board_id}/labels", response_model=LabelOut, status_code=201)
def create_label(
    board_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return LabelOut.of(service.create_label(user, board_id))


@app.patch("/v1/boards/{board_id}/labels/{index}", response_model=LabelOut)
def update_label(
    board_id: int,
    index: int,
    payload: LabelPatch,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return LabelOut.of(service.update_label(user, board_id, index, payload.name, payload.color))


@app.delete("/v1/boards/{board_id}/labels/{index}", status_code=204)
def delete_label(
    board_id: int,
    index: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    service.delete_label(user, board_id, index)
    return Response(status_code=204)


# === List endpoints ===


@app.post("/v1/boards/{board_id}/lists", response_model=CardListOut, status_code=201)
def create_list(
    board_id: int,
    payload: CardListIn,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardListOut.of(service.add_list(user, board_id, payload.afterListId, payload.name))


@app.patch("/v1/boards/{board_id}/lists/{list_id}", response_model=CardListOut)
def rename_list(
    board_id: int,
    list_id: int,
    payload: CardListPatch,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardListOut.of(service.rename_list(user, board_id, list_id, payload.name))


@app.post("/v1/boards/{board_id}/lists/{list_id}:move", response_model=CardListOut)
def move_list(
    board_id: int,
    list_id: int,
    payload: CardListMove,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardListOut.of(service.move_list(user, board_id, list_id, payload.afterListId))


@app.delete("/v1/boards/{board_id}/lists/{list_id}", status_code=204)
def delete_list(
    board_id: int,
    list_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    service.delete_list(user, board_id, list_id)
    return Response(status_code=204)


# === Card endpoints ===


@app.post("/v1/boards/{board_id}/lists/{list_id}/cards", response_model=CardOut, status_code=201)
def create_card(
    board_id: int,
    list_id: int,
    payload: CardIn,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    card = service.add_card(user, board_id, list_id, payload.title, after_id=payload.afterCardId, content=payload.content)
    return CardOut.of(card)


@app.get("/v1/boards/{board_id}/cards/{card_id}", response_model=CardOut)
def open_card(
    board_id: int,
    card_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardOut.of(service.open_card(user, board_id, card_id))


@app.patch("/v1/boards/{board_id}/cards/{card_id}", response_model=CardOut)
def update_card(
    board_id: int,
    card_id: int,
    payload: CardPatch,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    card = service.update_card(
        user, board_id, card_id, title=payload.title, content=payload.content, locked=payload.locked
    )
    return CardOut.of(card)


@app.put("/v1/boards/{board_id}/cards/{card_id}/labels/{index}", response_model=CardOut)
def set_card_label(
    board_id: int,
    card_id: int,
    index: int,
    payload: CardLabel,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardOut.of(service.set_card_label(user, board_id, card_id, index, payload.active))


@app.post("/v1/boards/{board_id}/cards/{card_id}:move", response_model=CardOut)
def move_card(
    board_id: int,
    card_id: int,
    payload: CardMove,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardOut.of(service.move_card(user, board_id, card_id, payload.toListId, payload.afterCardId))


@app.delete("/v1/boards/{board_id}/cards/{card_id}", status_code=204)
def delete_card(
    board_id: int,
    card_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    service.delete_card(user, board_id, card_id)
    return Response(status_code=204)


@app.put("/v1/boards/{board_id}/cards/{card_id}/cover", response_model=CardOut)
def set_card_cover(
    board_id: int,
    card_id: int,
    payload: CardCover,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return CardOut.of(service.set_card_cover(user, board_id, card_id, payload.attachmentId))


# === Attachment endpoints ===


@app.post("/v1/boards/{board_id}/cards/{card_id}/attachments", response_model=AttachmentOut, status_code=201)
def add_attachment(
    board_id: int,
    card_id: int,
    payload: AttachmentIn,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    attachment = service.add_attachment(user, board_id, card_id, payload.name, payload.extension, payload.guid)
    return AttachmentOut.of(attachment)


@app.patch("/v1/boards/{board_id}/attachments/{attachment_id}", response_model=AttachmentOut)
def rename_attachment(
    board_id: int,
    attachment_id: int,
    payload: AttachmentPatch,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return AttachmentOut.of(service.rename_attachment(user, board_id, attachment_id, payload.name))


@app.delete("/v1/boards/{board_id}/attachments/{attachment_id}", status_code=204)
def delete_attachment(
    board_id: int,
    attachment_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    service.delete_attachment(user, board_id, attachment_id)
    return Response(status_code=204)


# === Permission endpoints ===


@app.get("/v1/boards/{board_id}/permissions", response_model=list[PermissionOut])
def list_permissions(
    board_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return [PermissionOut.of(p) for p in service.board_permissions(user, board_id)]


@app.put("/v1/boards/{board_id}/permissions/{user_id}", response_model=PermissionOut)
def set_permission(
    board_id: int,
    user_id: int,
    payload: PermissionIn,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return PermissionOut.of(service.set_user_permission(user, board_id, user_id, payload.userType))


@app.post("/v1/boards/{board_id}/access-requests", response_model=PermissionOut, status_code=201)
def request_access(
    board_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return PermissionOut.of(service.request_access(user, board_id))


@app.post("/v1/users/{user_id}/registration", response_model=list[PermissionOut])
def register_user(
    user_id: int,
    user: RequestContext = Depends(get_current_user),
    service: BoardService = Depends(get_service),
):
    return [PermissionOut.of(p) for p in service.register_user(user, user_id)]
