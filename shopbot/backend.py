from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional, Protocol, Sequence

from .catalog_store import CatalogStore
from .config import Settings
from .errors import BackendError, BackendQuotaExceeded, BackendTimeout, BackendUnavailable
from .history import HistoryStore, MessageRecord
from .rules import is_quota_message

logger = logging.getLogger("shopbot.backend")

CATALOG_ANSWER_RULES = """Answering rules:
- Offer only products from the catalog above, with their exact names and prices.
- Respect the customer's budget; say so when nothing fits it.
- If a product is not in the catalog, say it is not available.
- For PC builds list: CPU, motherboard, RAM, storage, GPU, PSU, case, then the total."""


class GenerativeBackend(Protocol):
    def generate(self, prompt: str, history: Sequence[MessageRecord]) -> str:
        ...


def classify_error(exc: BaseException) -> BackendError:
    """Map any backend failure onto the three user-visible classes."""
    if isinstance(exc, BackendError):
        return exc
    message = str(exc)
    if is_quota_message(message):
        return BackendQuotaExceeded(message)
    return BackendUnavailable(message or exc.__class__.__name__)


class ThrottledBackend:
    """Concurrency limit, start spacing and a hard timeout around any backend."""

    def __init__(
        self,
        inner: GenerativeBackend,
        max_concurrency: int = 3,
        min_interval: float = 0.35,
        timeout: float = 20.0,
    ) -> None:
        """Purpose: Wrap a backend with the call policy.
        Inputs/Outputs: Inputs are the wrapped backend and the three limits; no return.
        Side Effects / State: Creates a semaphore, a spacing lock and a worker pool.
        Dependencies: threading, concurrent.futures.ThreadPoolExecutor.
        Failure Modes: None at init.
        If Removed: Bursts of users hit upstream quotas and slow calls hang handlers.
        Testing Notes: A slow fake must raise BackendTimeout; quota text maps to quota.
        """
        # Callers above the limit wait on the semaphore instead of failing.
        self._inner = inner
        self._timeout = timeout
        self._min_interval = min_interval
        self._slots = threading.BoundedSemaphore(max(1, max_concurrency))
        self._spacing_lock = threading.Lock()
        self._last_start = 0.0
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_concurrency), thread_name_prefix="backend")

    def _wait_turn(self) -> None:
        with self._spacing_lock:
            delay = self._last_start + self._min_interval - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            self._last_start = time.monotonic()

    def generate(self, prompt: str, history: Sequence[MessageRecord]) -> str:
        """Purpose: Run one backend call under the concurrency, spacing and timeout policy.
        Inputs/Outputs: Same as GenerativeBackend.generate.
        Side Effects / State: Blocks for a slot and for the minimum start spacing.
        Dependencies: classify_error.
        Failure Modes: Raises BackendTimeout, BackendQuotaExceeded or BackendUnavailable.
        If Removed: Errors from the SDK would reach users unclassified.
        Testing Notes: Delays, not retries; a failing call is never repeated here.
        """
        # The slot is held until the worker finishes, even after a timeout.
        self._slots.acquire()
        released = False
        try:
            self._wait_turn()
            future = self._pool.submit(self._inner.generate, prompt, list(history))
            future.add_done_callback(lambda _: self._slots.release())
            released = True
            try:
                return future.result(timeout=self._timeout)
            except FutureTimeout as exc:
                logger.warning("backend timeout after %.1fs", self._timeout)
                raise BackendTimeout(f"backend call exceeded {self._timeout:.0f}s") from exc
            except Exception as exc:
                error = classify_error(exc)
                logger.warning("backend error kind=%s detail=%s", error.__class__.__name__, exc)
                if error is exc:
                    raise
                raise error from exc
        finally:
            if not released:
                self._slots.release()

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)


class ChatService:
    """Default answer path: catalog-aware prompt, backend call, history append."""

    def __init__(
        self,
        backend: GenerativeBackend,
        history: HistoryStore,
        catalog: CatalogStore,
        history_window: int = 10,
    ) -> None:
        self._backend = backend
        self._history = history
        self._catalog = catalog
        self._history_window = history_window

    def build_prompt(self, text: str) -> str:
        catalog_text = self._catalog.as_text()
        if not catalog_text:
            return text
        return f"Store catalog:\n{catalog_text}\n\n{CATALOG_ANSWER_RULES}\n\nCustomer question: {text}"

    def process(self, user_id: str, username: str, text: str, prompt: Optional[str] = None) -> str:
        """Purpose: Answer one user message through the generative backend.
        Inputs/Outputs: Inputs are user identity, the original text and an optional
            prebuilt prompt; returns the response text.
        Side Effects / State: Appends (original text, response) to history on success.
        Dependencies: GenerativeBackend, HistoryStore, CatalogStore.as_text.
        Failure Modes: BackendError subclasses propagate; nothing is recorded on failure.
        If Removed: Free-form questions, the wizard and change requests get no answers.
        Testing Notes: Fake backend records the prompt; check catalog text is included.
        """
        # History first, then the enriched prompt, then record the exchange.
        history = self._history.recent(user_id, self._history_window)
        final_prompt = self.build_prompt(prompt or text)
        started = time.monotonic()
        response = self._backend.generate(final_prompt, history)
        logger.info("user=%s backend ok elapsed=%.2fs chars=%d", user_id, time.monotonic() - started, len(response))
        self._history.append(user_id, username, text, response)
        return response


def create_backend(settings: Settings, inner: Optional[GenerativeBackend] = None) -> ThrottledBackend:
    if inner is None:
        from .gemini_client import GeminiBackend

        inner = GeminiBackend(settings)
    return ThrottledBackend(
        inner,
        max_concurrency=settings.backend_max_concurrency,
        min_interval=settings.backend_min_interval,
        timeout=settings.backend_timeout,
    )
