from __future__ import annotations

"""Chat transport collaborator: outbound protocol, inbound events, in-memory adapter."""

import itertools
import logging
import threading
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Set, Tuple

from .errors import TransportSendFailure

logger = logging.getLogger("shopbot.transport")

# (transport, chat_id, captured messages) for the event being handled in this context.
_capture_target: ContextVar[Optional[Tuple["OutboxTransport", str, List["OutgoingMessage"]]]] = ContextVar(
    "outbox_capture_target", default=None
)


@dataclass(frozen=True)
class Choice:
    id: str
    label: str


@dataclass(frozen=True)
class Contact:
    phone: str
    first_name: str = ""


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass
class TextEvent:
    user_id: str
    chat_id: str
    text: str = ""
    username: str = ""
    contact: Optional[Contact] = None
    location: Optional[Location] = None
    reply_to_message_id: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class ButtonEvent:
    user_id: str
    chat_id: str
    choice_id: str
    username: str = ""
    message_id: Optional[str] = None


@dataclass
class FileEvent:
    user_id: str
    chat_id: str
    data: bytes
    filename: str
    username: str = ""


class Transport(Protocol):
    def send_text(self, chat_id: str, text: str, choices: Optional[Sequence[Choice]] = None) -> str:
        ...

    def send_choice(self, chat_id: str, text: str, choices: Sequence[Choice]) -> str:
        ...

    def request_contact(self, chat_id: str, text: str) -> str:
        ...

    def request_location(self, chat_id: str, text: str) -> str:
        ...

    def send_file(self, chat_id: str, filename: str, data: bytes, caption: str = "") -> str:
        ...

    def edit_text(self, chat_id: str, message_id: str, text: str) -> None:
        ...


@dataclass
class OutgoingMessage:
    """One recorded outbound message; kind is text, choice, contact, location, file or edit."""
    message_id: str
    chat_id: str
    text: str
    kind: str = "text"
    choices: List[Choice] = field(default_factory=list)
    filename: str = ""
    edited_id: str = ""
    sent_at: float = field(default_factory=time.time)


class OutboxTransport:
    """In-memory transport: records messages per chat until they are drained.

    Chats listed in unreachable raise TransportSendFailure, like a blocked bot would.
    Inside capture(chat_id), messages the current event sends to that chat go to the
    capture list instead of the shared outbox.
    """

    def __init__(self) -> None:
        self.unreachable: Set[str] = set()
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._outbox: Dict[str, List[OutgoingMessage]] = {}

    @contextmanager
    def capture(self, chat_id: str) -> Iterator[List[OutgoingMessage]]:
        """Purpose: Collect what one event handler sends back to its own chat.
        Inputs/Outputs: Input is the event's chat id; yields the list being filled.
        Side Effects / State: Scoped to the current context; other events and other chats still
            use the outbox.
        Dependencies: contextvars.ContextVar.
        Failure Modes: None; the previous capture is restored even when the handler raises.
        If Removed: One event's reply could only be found by draining the shared outbox.
        Testing Notes: Two threads capturing different chats must not see each other's messages.
        """
        captured: List[OutgoingMessage] = []
        token = _capture_target.set((self, chat_id, captured))
        try:
            yield captured
        finally:
            _capture_target.reset(token)

    def _record(
        self,
        chat_id: str,
        text: str,
        kind: str,
        choices: Sequence[Choice] = (),
        filename: str = "",
        edited_id: str = "",
    ) -> str:
        if chat_id in self.unreachable:
            raise TransportSendFailure(f"chat {chat_id} is unreachable")
        target = _capture_target.get()
        with self._lock:
            message_id = str(next(self._ids))
            message = OutgoingMessage(
                message_id=message_id,
                chat_id=chat_id,
                text=text,
                kind=kind,
                choices=list(choices),
                filename=filename,
                edited_id=edited_id,
            )
            if target is not None and target[0] is self and target[1] == chat_id:
                target[2].append(message)
            else:
                self._outbox.setdefault(chat_id, []).append(message)
        logger.debug("chat=%s message=%s kind=%s", chat_id, message_id, kind)
        return message_id

    def send_text(self, chat_id: str, text: str, choices: Optional[Sequence[Choice]] = None) -> str:
        if choices:
            return self._record(chat_id, text, "choice", choices)
        return self._record(chat_id, text, "text")

    def send_choice(self, chat_id: str, text: str, choices: Sequence[Choice]) -> str:
        return self._record(chat_id, text, "choice", choices)

    def request_contact(self, chat_id: str, text: str) -> str:
        return self._record(chat_id, text, "contact")

    def request_location(self, chat_id: str, text: str) -> str:
        return self._record(chat_id, text, "location")

    def send_file(self, chat_id: str, filename: str, data: bytes, caption: str = "") -> str:
        return self._record(chat_id, caption, "file", filename=filename)

    def edit_text(self, chat_id: str, message_id: str, text: str) -> None:
        self._record(chat_id, text, "edit", edited_id=message_id)

    def drain(self, chat_id: str) -> List[OutgoingMessage]:
        with self._lock:
            return self._outbox.pop(chat_id, [])

    def drain_all(self) -> Dict[str, List[OutgoingMessage]]:
        with self._lock:
            outbox, self._outbox = self._outbox, {}
        return outbox

    def peek(self, chat_id: str) -> List[OutgoingMessage]:
        with self._lock:
            return list(self._outbox.get(chat_id, []))
