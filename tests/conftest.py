from __future__ import annotations

import dataclasses
import io
import threading
from typing import Callable, List, Optional, Sequence

import pytest
from openpyxl import Workbook

from shopbot.admin import AdminService
from shopbot.backend import ChatService, ThrottledBackend
from shopbot.catalog_store import CatalogStore, Product
from shopbot.config import Settings, load_settings
from shopbot.history import MemoryHistoryStore
from shopbot.orchestrator import Orchestrator
from shopbot.session_store import SessionStore
from shopbot.transport import OutboxTransport


class ScriptedBackend:
    """Backend double: returns queued replies (or raises queued errors) and records prompts."""

    def __init__(self, replies: Optional[Sequence[object]] = None, default: str = "OK") -> None:
        self.replies: List[object] = list(replies or [])
        self.default = default
        self.prompts: List[str] = []
        self.histories: List[list] = []
        self._lock = threading.Lock()

    def generate(self, prompt, history):
        with self._lock:
            self.prompts.append(prompt)
            self.histories.append(list(history))
            reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


def make_settings(**overrides) -> Settings:
    base = load_settings()
    values = dict(
        gemini_api_key="",
        history_db_path="",
        admin_password="secret",
        staff_chat_id="staff",
        orders_chat_id="orders",
        backend_min_interval=0.0,
        backend_timeout=5.0,
        session_idle_ttl=0.0,
        correlation_ttl=0.0,
    )
    values.update(overrides)
    return dataclasses.replace(base, **values)


def workbook_bytes(rows: Sequence[Sequence[object]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(list(row))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


SAMPLE_PRODUCTS = [
    Product(name="NVIDIA GeForce RTX 4090", price=1800, category="GPU", stock=2),
    Product(name="NVIDIA GeForce RTX 3060", price=320, category="GPU", stock=5),
    Product(name="AMD Ryzen 5 7600", price=210, category="CPU"),
    Product(name="Kingston Fury 16GB DDR5", price=60, category="RAM"),
    Product(name="Samsung 990 Pro 1TB NVMe", price=120, category="Storage"),
    Product(name="Gaming Laptop RTX 4060", price=1100, category="Laptop"),
]


@dataclasses.dataclass
class Harness:
    settings: Settings
    backend: ScriptedBackend
    transport: OutboxTransport
    sessions: SessionStore
    catalog: CatalogStore
    history: MemoryHistoryStore
    chat: ChatService
    admin: AdminService
    orchestrator: Orchestrator


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def harness_factory() -> Callable[..., Harness]:
    created: List[ThrottledBackend] = []

    def build(backend: Optional[ScriptedBackend] = None, products=None, **overrides) -> Harness:
        settings = make_settings(**overrides)
        backend = backend or ScriptedBackend()
        history = MemoryHistoryStore(max_per_user=settings.max_context_size)
        catalog = CatalogStore()
        if products is not None:
            catalog.replace(products, source="fixture.xlsx")
        throttled = ThrottledBackend(backend, max_concurrency=2, min_interval=0.0, timeout=settings.backend_timeout)
        created.append(throttled)
        chat = ChatService(throttled, history, catalog, history_window=settings.history_window)
        sessions = SessionStore(idle_ttl=settings.session_idle_ttl, correlation_ttl=settings.correlation_ttl)
        admin = AdminService(catalog, history, password=settings.admin_password)
        transport = OutboxTransport()
        orchestrator = Orchestrator(settings, transport, sessions, catalog, chat, admin, history)
        return Harness(settings, backend, transport, sessions, catalog, history, chat, admin, orchestrator)

    yield build
    for throttled in created:
        throttled.shutdown()


@pytest.fixture
def harness(harness_factory) -> Harness:
    return harness_factory(products=SAMPLE_PRODUCTS)
