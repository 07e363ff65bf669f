from __future__ import annotations

import base64
import binascii
import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Set

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from dotenv import load_dotenv

from .admin import AdminService, UploadRejected
from .backend import ChatService, GenerativeBackend, ThrottledBackend, create_backend
from .catalog_store import CatalogStore, Product
from .config import Settings, load_settings
from .errors import IngestionError
from .history import HistoryStore, create_history_store
from .matcher import MatchPolicy
from .models import (
    AuditEntryOut,
    ButtonEventIn,
    CatalogInfoOut,
    ChoiceOut,
    EventResponse,
    FileEventIn,
    HistoryEntryOut,
    HistoryOut,
    OutgoingMessageOut,
    ProductOut,
    TextEventIn,
    UploadResult,
)
from .orchestrator import Orchestrator
from .session_store import SessionStore
from .transport import ButtonEvent, Contact, FileEvent, Location, OutboxTransport, OutgoingMessage, TextEvent

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("shopbot").setLevel(log_level)
logger = logging.getLogger("shopbot.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

app = FastAPI(title="Shopbot Retail Assistant")


@dataclass
class Services:
    """Everything one running assistant needs, built once per process."""
    settings: Settings
    history: HistoryStore
    catalog: CatalogStore
    backend: ThrottledBackend
    chat: ChatService
    sessions: SessionStore
    admin: AdminService
    transport: OutboxTransport
    orchestrator: Orchestrator


def build_services(settings: Settings, backend: Optional[GenerativeBackend] = None) -> Services:
    """Purpose: Wire stores, backend policy and the orchestrator from settings.
    Inputs/Outputs: Inputs are Settings and an optional inner backend; returns Services.
    Side Effects / State: Opens the history database and configures the Gemini SDK
        when no backend is injected.
    Dependencies: create_history_store, create_backend, SessionStore, AdminService.
    Failure Modes: ValueError when no backend is injected and GEMINI_API_KEY is empty.
    If Removed: The HTTP layer has nothing to route events to.
    Testing Notes: Pass a scripted backend and an empty CHAT_DB_PATH for in-memory runs.
    """
    # Stores first, then the throttled backend, then the services that use them.
    history = create_history_store(settings.history_db_path, settings.max_context_size)
    catalog = CatalogStore(
        MatchPolicy(
            qualify_score=settings.match_qualify_score,
            keep_score=settings.match_keep_score,
            numeric_window=settings.match_numeric_window,
            fallback_cap=settings.match_fallback_cap,
        )
    )
    throttled = create_backend(settings, inner=backend)
    chat = ChatService(throttled, history, catalog, history_window=settings.history_window)
    sessions = SessionStore(idle_ttl=settings.session_idle_ttl, correlation_ttl=settings.correlation_ttl)
    admin = AdminService(
        catalog,
        history,
        password=settings.admin_password,
        session_ttl=settings.admin_session_ttl,
        max_upload_bytes=settings.max_upload_bytes,
    )
    transport = OutboxTransport()
    orchestrator = Orchestrator(settings, transport, sessions, catalog, chat, admin, history)
    logger.info(
        "services ready model=%s history=%s staff_chat=%s",
        settings.gemini_model,
        settings.history_db_path or "memory",
        bool(settings.staff_chat_id),
    )
    return Services(
        settings=settings,
        history=history,
        catalog=catalog,
        backend=throttled,
        chat=chat,
        sessions=sessions,
        admin=admin,
        transport=transport,
        orchestrator=orchestrator,
    )


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    global _services
    with _services_lock:
        if _services is None:
            _services = build_services(load_settings())
        return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    with _services_lock:
        _services = services


def require_admin(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
    services: Services = Depends(get_services),
) -> None:
    if not services.admin.check_key(x_admin_key or ""):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def _message_out(message: OutgoingMessage) -> OutgoingMessageOut:
    return OutgoingMessageOut(
        message_id=message.message_id,
        chat_id=message.chat_id,
        text=message.text,
        kind=message.kind,
        choices=[ChoiceOut(id=choice.id, label=choice.label) for choice in message.choices],
        filename=message.filename,
        edited_id=message.edited_id,
    )


def _channel_chats(settings: Settings) -> Set[str]:
    return {chat for chat in (settings.staff_chat_id, settings.orders_chat_id) if chat}


def _run_event(services: Services, chat_id: str, handle: Callable[[], None]) -> EventResponse:
    """Purpose: Run one event handler and collect the reply for its chat only.
    Inputs/Outputs: Inputs are the services, the event's chat and the bound handler call;
        returns the EventResponse for that chat.
    Side Effects / State: Drains messages queued earlier for the chat unless it is a
        staff or orders channel; output for other chats stays in the outbox.
    Dependencies: OutboxTransport.capture, OutboxTransport.drain.
    Failure Modes: Handler exceptions propagate as 500; captured messages are dropped.
    If Removed: Concurrent events would read each other's output from the shared outbox.
    Testing Notes: Hold one user's backend call open while another user posts /start.
    """
    # Channel chats are read only through the admin outbox endpoint.
    with services.transport.capture(chat_id) as produced:
        handle()
    queued = [] if chat_id in _channel_chats(services.settings) else services.transport.drain(chat_id)
    return EventResponse(chat_id=chat_id, messages=[_message_out(message) for message in queued + produced])


def _product_out(product: Product) -> ProductOut:
    return ProductOut(
        name=product.name,
        price=product.price,
        category=product.category,
        description=product.description,
        stock=product.stock,
        specs=dict(product.specs),
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/api/events/text", response_model=EventResponse)
def text_event(payload: TextEventIn, services: Services = Depends(get_services)) -> EventResponse:
    """Purpose: Feed one chat message into the orchestrator.
    Inputs/Outputs: Input is TextEventIn; output is the messages produced for it.
    Side Effects / State: May change sessions, history and pending offers.
    Dependencies: Orchestrator.handle_text, OutboxTransport.
    Failure Modes: Unexpected errors propagate as 500; backend failures become chat replies.
    If Removed: Clients cannot talk to the assistant.
    Testing Notes: Post "/start" and check the welcome text in messages.
    """
    # chat_id defaults to the user's private chat.
    chat_id = payload.chat_id or payload.user_id
    event = TextEvent(
        user_id=payload.user_id,
        chat_id=chat_id,
        text=payload.text,
        username=payload.username,
        contact=Contact(**payload.contact.dict()) if payload.contact else None,
        location=Location(**payload.location.dict()) if payload.location else None,
        reply_to_message_id=payload.reply_to_message_id,
        message_id=payload.message_id,
    )
    return _run_event(services, chat_id, lambda: services.orchestrator.handle_text(event))


@app.post("/api/events/button", response_model=EventResponse)
def button_event(payload: ButtonEventIn, services: Services = Depends(get_services)) -> EventResponse:
    chat_id = payload.chat_id or payload.user_id
    event = ButtonEvent(
        user_id=payload.user_id,
        chat_id=chat_id,
        choice_id=payload.choice_id,
        username=payload.username,
        message_id=payload.message_id,
    )
    return _run_event(services, chat_id, lambda: services.orchestrator.handle_button(event))


@app.post("/api/events/file", response_model=EventResponse)
def file_event(payload: FileEventIn, services: Services = Depends(get_services)) -> EventResponse:
    chat_id = payload.chat_id or payload.user_id
    try:
        data = base64.b64decode(payload.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="content_base64 is not valid base64")
    event = FileEvent(
        user_id=payload.user_id,
        chat_id=chat_id,
        data=data,
        filename=payload.filename,
        username=payload.username,
    )
    return _run_event(services, chat_id, lambda: services.orchestrator.handle_file(event))


@app.post("/api/admin/catalog", response_model=UploadResult, dependencies=[Depends(require_admin)])
async def upload_catalog(
    request: Request,
    filename: str = Query(...),
    services: Services = Depends(get_services),
) -> UploadResult:
    """Raw workbook body; the catalog is replaced only when the whole file parses."""
    data = await request.body()
    try:
        count = services.admin.import_catalog("api", data, filename)
    except UploadRejected as exc:
        raise HTTPException(status_code=exc.status, detail=str(exc))
    except IngestionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return UploadResult(filename=filename, count=count)


@app.get("/api/catalog", response_model=CatalogInfoOut)
def catalog_info(services: Services = Depends(get_services)) -> CatalogInfoOut:
    info = services.catalog.info()
    return CatalogInfoOut(
        source=info.source,
        updated_at=info.updated_at,
        total=info.total,
        categories=dict(info.categories),
    )


@app.get("/api/catalog/products", response_model=List[ProductOut])
def catalog_products(q: str = "", services: Services = Depends(get_services)) -> List[ProductOut]:
    products = services.catalog.search(q) if q.strip() else services.catalog.all()
    return [_product_out(product) for product in products]


@app.get("/api/history/{user_id}", response_model=HistoryOut, dependencies=[Depends(require_admin)])
def user_history(user_id: str, services: Services = Depends(get_services)) -> HistoryOut:
    records = services.history.recent(user_id, 0)
    return HistoryOut(
        user_id=user_id,
        messages=[
            HistoryEntryOut(
                id=record.id,
                user_id=record.user_id,
                username=record.username,
                text=record.text,
                response=record.response,
                ts=record.ts,
            )
            for record in records
        ],
    )


@app.get("/api/admin/audit", response_model=List[AuditEntryOut], dependencies=[Depends(require_admin)])
def audit_log(services: Services = Depends(get_services)) -> List[AuditEntryOut]:
    return [
        AuditEntryOut(user_id=entry.user_id, action=entry.action, details=entry.details, ts=entry.ts)
        for entry in services.admin.audit_log()
    ]


@app.get("/api/admin/outbox/{chat_id}", response_model=List[OutgoingMessageOut], dependencies=[Depends(require_admin)])
def drain_outbox(chat_id: str, services: Services = Depends(get_services)) -> List[OutgoingMessageOut]:
    """Queued messages for one chat, removed as they are returned; staff and orders read here."""
    return [_message_out(message) for message in services.transport.drain(chat_id)]


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("shopbot.app:app", host="0.0.0.0", port=port, reload=False)
