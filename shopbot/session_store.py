from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Generic, Iterator, List, Optional, Tuple, Type, TypeVar

from .errors import SessionNotFound
from .sessions import (
    FLOW_PRECEDENCE,
    SHOP_MODE_PRECEDENCE,
    AdminApprovalRequest,
    FeedbackCapture,
    FlowKind,
    GroupThreadLink,
    PendingApproval,
    Session,
)

logger = logging.getLogger("shopbot.sessions")

K = TypeVar("K")
V = TypeVar("V")
S = TypeVar("S")
R = TypeVar("R")

DEFAULT_STRIPES = 64


class KeyedStore(Generic[K, V]):
    """Mapping with per-key mutual exclusion through a fixed set of striped locks."""

    def __init__(self, name: str = "", stripes: int = DEFAULT_STRIPES) -> None:
        """Purpose: Create an empty keyed map guarded by striped key locks.
        Inputs/Outputs: Optional name used in log lines and the stripe count; no return value.
        Side Effects / State: Allocates the table lock and the stripe locks once.
        Dependencies: threading.RLock.
        Failure Modes: None at init.
        If Removed: Per-user state falls back to shared dicts with no isolation.
        Testing Notes: update() from many threads on one key must not lose writes.
        """
        # The table lock guards only dictionary lookups and inserts.
        self._name = name
        self._table_lock = threading.Lock()
        self._stripes: List[threading.RLock] = [threading.RLock() for _ in range(max(1, stripes))]
        self._values: Dict[K, V] = {}

    def _lock_for(self, key: K) -> threading.RLock:
        return self._stripes[hash(key) % len(self._stripes)]

    def get(self, key: K) -> Optional[V]:
        with self._table_lock:
            return self._values.get(key)

    def contains(self, key: K) -> bool:
        with self._table_lock:
            return key in self._values

    def put(self, key: K, value: V) -> None:
        with self._lock_for(key):
            with self._table_lock:
                self._values[key] = value

    def pop(self, key: K) -> Optional[V]:
        """Remove and return the value for key; None when it was already gone."""
        with self._lock_for(key):
            with self._table_lock:
                return self._values.pop(key, None)

    def update(self, key: K, fn: Callable[[Optional[V]], Optional[V]]) -> Optional[V]:
        """Purpose: Atomic read-modify-write of one key.
        Inputs/Outputs: fn receives the current value (or None) and returns the new one;
            returning None deletes the key. Returns the new value.
        Side Effects / State: Holds only this key's lock while fn runs.
        Dependencies: _lock_for.
        Failure Modes: Exceptions from fn propagate and leave the old value in place.
        If Removed: Flow steps race when the same user sends two events at once.
        Testing Notes: fn must be short and must not call the transport or backend.
        """
        # Other keys stay available while fn runs.
        with self._lock_for(key):
            with self._table_lock:
                current = self._values.get(key)
            updated = fn(current)
            with self._table_lock:
                if updated is None:
                    self._values.pop(key, None)
                else:
                    self._values[key] = updated
            return updated

    def prune(self, expired: Callable[[V], bool]) -> int:
        """Drop entries for which expired(value) holds; returns how many were removed."""
        removed = 0
        for key, value in self.snapshot().items():
            if not expired(value):
                continue
            with self._lock_for(key):
                with self._table_lock:
                    current = self._values.get(key)
                    if current is not None and expired(current):
                        del self._values[key]
                        removed += 1
        if removed:
            logger.info("table=%s pruned=%d", self._name, removed)
        return removed

    def clear(self) -> None:
        with self._table_lock:
            self._values.clear()

    def snapshot(self) -> Dict[K, V]:
        with self._table_lock:
            return dict(self._values)

    def __len__(self) -> int:
        with self._table_lock:
            return len(self._values)

    def __iter__(self) -> Iterator[K]:
        return iter(self.snapshot())


@dataclass
class ConversationState:
    """Everything the router needs to know about one user's open flows.

    Stored states are never changed in place; writers build a revised copy.
    """
    sessions: Dict[FlowKind, Session] = field(default_factory=dict)
    shop_mode: bool = False
    updated_at: float = field(default_factory=time.time)

    def is_empty(self) -> bool:
        return not self.sessions and not self.shop_mode

    def active(self) -> Optional[Session]:
        if not self.sessions:
            return None
        kind = min(self.sessions, key=lambda item: FLOW_PRECEDENCE[item])
        return self.sessions[kind]

    def revised(self, **changes) -> "ConversationState":
        # The sessions map is copied; untouched session objects are shared.
        values = {"sessions": dict(self.sessions), "updated_at": time.time()}
        values.update(changes)
        return replace(self, **values)


class SessionStore:
    """Per-user conversation state plus the correlation tables between flows."""

    def __init__(self, idle_ttl: float = 0.0, correlation_ttl: float = 0.0) -> None:
        """Purpose: Hold per-user flows and the cross-flow correlation tables.
        Inputs/Outputs: idle_ttl and correlation_ttl in seconds for prune_idle
            (0 disables each); no return.
        Side Effects / State: Creates one KeyedStore per table.
        Dependencies: KeyedStore, ConversationState, session variants.
        Failure Modes: None at init.
        If Removed: The orchestrator cannot remember where each user is in a flow.
        Testing Notes: Start an order, then a wizard; both must survive.
        """
        # One keyed table per concern; none of them share locks.
        self._idle_ttl = idle_ttl
        self._correlation_ttl = correlation_ttl
        self._conversations: KeyedStore[str, ConversationState] = KeyedStore("conversations")
        self.pending_approvals: KeyedStore[str, PendingApproval] = KeyedStore("pending_approvals")
        self.feedback: KeyedStore[str, FeedbackCapture] = KeyedStore("feedback")
        self.group_links: KeyedStore[str, GroupThreadLink] = KeyedStore("group_links")
        self.admin_approvals: KeyedStore[str, AdminApprovalRequest] = KeyedStore("admin_approvals")
        self._reminded_chats: KeyedStore[str, float] = KeyedStore("config_reminders")

    def state(self, user_id: str) -> ConversationState:
        """Snapshot of the user's flows; later changes never show through it."""
        state = self._conversations.get(user_id)
        return state if state is not None else ConversationState()

    def active_session(self, user_id: str) -> Optional[Session]:
        return self.state(user_id).active()

    def routing_rank(self, user_id: str) -> Tuple[Optional[Session], bool]:
        """Return the session that owns the next text event, or shop mode when it outranks it."""
        state = self.state(user_id)
        active = state.active()
        if state.shop_mode and (active is None or FLOW_PRECEDENCE[active.kind] > SHOP_MODE_PRECEDENCE):
            return None, True
        return active, False

    def get_session(self, user_id: str, session_type: Type[S]) -> Optional[S]:
        session = self.state(user_id).sessions.get(session_type.kind)
        return session if isinstance(session, session_type) else None

    def start(self, user_id: str, session: Session) -> None:
        """Purpose: Open a flow for a user.
        Inputs/Outputs: Inputs are the user id and a fresh session variant; no return.
        Side Effects / State: Replaces a session of the same kind; other kinds are kept.
        Dependencies: KeyedStore.update, ConversationState.revised.
        Failure Modes: None.
        If Removed: Commands and buttons cannot begin flows.
        Testing Notes: Starting a wizard during an order keeps the order intact.
        """
        # Same-kind restart replaces; different kinds coexist under precedence.
        def apply(state: Optional[ConversationState]) -> ConversationState:
            revised = (state or ConversationState()).revised()
            revised.sessions[session.kind] = session
            return revised

        self._conversations.update(user_id, apply)
        logger.info("user=%s flow=%s started", user_id, session.kind.value)

    def end(self, user_id: str, kind: FlowKind) -> Optional[Session]:
        """Close one flow; returns the removed session or None when it was not open."""
        removed: List[Session] = []

        def apply(state: Optional[ConversationState]) -> Optional[ConversationState]:
            if state is None:
                return None
            revised = state.revised()
            session = revised.sessions.pop(kind, None)
            if session is not None:
                removed.append(session)
            return None if revised.is_empty() else revised

        self._conversations.update(user_id, apply)
        if removed:
            logger.info("user=%s flow=%s ended", user_id, kind.value)
            return removed[0]
        return None

    def transition(self, user_id: str, session_type: Type[S], fn: Callable[[S], Tuple[bool, R]]) -> R:
        """Purpose: Advance one flow atomically for a user.
        Inputs/Outputs: fn mutates a private copy of the session and returns (keep, result);
            returns result.
        Side Effects / State: Swaps in the advanced copy, or drops the session when keep
            is False; touches timestamps.
        Dependencies: KeyedStore.update on the conversation table, copy.deepcopy.
        Failure Modes: Raises SessionNotFound when the flow is not open. When fn raises,
            the stored session is left exactly as it was.
        If Removed: Concurrent events for one user could interleave a flow step.
        Testing Notes: A session read before the step must still show the old stage.
        """
        # fn runs under the user's key lock and must not call the transport or backend.
        outcome: List[R] = []

        def apply(state: Optional[ConversationState]) -> Optional[ConversationState]:
            session = state.sessions.get(session_type.kind) if state is not None else None
            if state is None or not isinstance(session, session_type):
                raise SessionNotFound(session_type.kind.value, user_id)
            working = copy.deepcopy(session)
            keep, result = fn(working)
            outcome.append(result)
            revised = state.revised()
            if keep:
                working.updated_at = revised.updated_at
                revised.sessions[session_type.kind] = working
            else:
                revised.sessions.pop(session_type.kind, None)
                logger.info("user=%s flow=%s ended", user_id, session_type.kind.value)
            return None if revised.is_empty() else revised

        self._conversations.update(user_id, apply)
        return outcome[0]

    def set_shop_mode(self, user_id: str, enabled: bool) -> None:
        def apply(state: Optional[ConversationState]) -> Optional[ConversationState]:
            revised = (state or ConversationState()).revised(shop_mode=enabled)
            return None if revised.is_empty() else revised

        self._conversations.update(user_id, apply)

    def in_shop_mode(self, user_id: str) -> bool:
        return self.state(user_id).shop_mode

    def reset_user(self, user_id: str) -> None:
        self._conversations.pop(user_id)

    def mark_config_reminder(self, chat_id: str) -> bool:
        """Record the config reminder for a chat; True only the first time."""
        first: List[bool] = []

        def apply(current: Optional[float]) -> float:
            first.append(current is None)
            return current if current is not None else time.time()

        self._reminded_chats.update(chat_id, apply)
        return first[0]

    def prune_idle(self, now: Optional[float] = None) -> int:
        """Purpose: Drop conversation state and correlation entries past their TTLs.
        Inputs/Outputs: Optional clock value; returns how many entries were pruned in total.
        Side Effects / State: Removes idle conversations (updated_at older than idle_ttl)
            and correlation entries (sent_at, created_at or the reminder time older
            than correlation_ttl).
        Dependencies: KeyedStore.prune.
        Failure Modes: Each half is a no-op when its TTL is 0.
        If Removed: Abandoned flows, unanswered staff links and stale offers stay in memory forever.
        Testing Notes: Pass an explicit now to avoid sleeping in tests.
        """
        # KeyedStore.prune re-checks under the key lock so a fresh update is never discarded.
        now = time.time() if now is None else now
        pruned = 0
        if self._idle_ttl > 0:
            idle_cutoff = now - self._idle_ttl
            pruned += self._conversations.prune(lambda state: state.updated_at < idle_cutoff)
        if self._correlation_ttl > 0:
            cutoff = now - self._correlation_ttl
            pruned += self.pending_approvals.prune(lambda entry: entry.sent_at < cutoff)
            pruned += self.feedback.prune(lambda entry: entry.created_at < cutoff)
            pruned += self.group_links.prune(lambda entry: entry.created_at < cutoff)
            pruned += self.admin_approvals.prune(lambda entry: entry.created_at < cutoff)
            pruned += self._reminded_chats.prune(lambda reminded_at: reminded_at < cutoff)
        return pruned

    def clear(self) -> None:
        self._conversations.clear()
        self.pending_approvals.clear()
        self.feedback.clear()
        self.group_links.clear()
        self.admin_approvals.clear()
        self._reminded_chats.clear()
