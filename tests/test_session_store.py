import threading
import time
from types import SimpleNamespace

import pytest

from shopbot import session_store

from shopbot.errors import SessionNotFound
from shopbot.flows import advance_config
from shopbot.session_store import KeyedStore, SessionStore
from shopbot.sessions import (
    AdminApprovalRequest,
    AdminMessageSession,
    ConfigStage,
    ConfigWizardSession,
    FeedbackCapture,
    FlowKind,
    GroupThreadLink,
    OrderSession,
    PendingApproval,
)


def test_keyed_store_update_is_atomic_per_key():
    store = KeyedStore("counters")

    def bump():
        for _ in range(500):
            store.update("user", lambda current: (current or 0) + 1)

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.get("user") == 4000


def test_keyed_store_update_returning_none_deletes():
    store = KeyedStore()
    store.put("a", 1)
    assert store.update("a", lambda current: None) is None
    assert not store.contains("a")
    assert store.pop("a") is None


def test_pending_approval_is_popped_once():
    sessions = SessionStore()
    sessions.pending_approvals.put("u1", PendingApproval(user_id="u1", chat_id="c1", summary="RTX"))
    assert sessions.pending_approvals.pop("u1").summary == "RTX"
    assert sessions.pending_approvals.pop("u1") is None


def test_flows_coexist_and_precedence_routes():
    sessions = SessionStore()
    sessions.start("u1", OrderSession(summary="order"))
    sessions.start("u1", ConfigWizardSession())

    assert sessions.active_session("u1").kind == FlowKind.CONFIG_WIZARD
    sessions.end("u1", FlowKind.CONFIG_WIZARD)
    active = sessions.active_session("u1")
    assert isinstance(active, OrderSession)
    assert active.summary == "order"


def test_shop_mode_ranks_between_wizard_and_order():
    sessions = SessionStore()
    sessions.start("u1", OrderSession())
    sessions.set_shop_mode("u1", True)
    assert sessions.routing_rank("u1") == (None, True)

    sessions.start("u1", ConfigWizardSession())
    session, shop_mode = sessions.routing_rank("u1")
    assert isinstance(session, ConfigWizardSession)
    assert shop_mode is False


def test_admin_message_outranks_everything_but_password():
    sessions = SessionStore()
    sessions.start("u1", ConfigWizardSession())
    sessions.start("u1", AdminMessageSession())
    assert isinstance(sessions.active_session("u1"), AdminMessageSession)


def test_restarting_same_kind_replaces_session():
    sessions = SessionStore()
    sessions.start("u1", OrderSession(summary="first"))
    sessions.start("u1", OrderSession(summary="second"))
    assert sessions.get_session("u1", OrderSession).summary == "second"


def test_transition_advances_and_drops_finished_flow():
    sessions = SessionStore()
    sessions.start("u1", ConfigWizardSession())
    answers = ["Gaming", "800$", "AMD", "NVMe", "RTX"]
    steps = [
        sessions.transition("u1", ConfigWizardSession, lambda session, text=text: advance_config(session, text))
        for text in answers
    ]

    assert steps[-1].completed.gpu == "RTX"
    assert steps[-1].completed.budget == "800$"
    assert sessions.get_session("u1", ConfigWizardSession) is None
    assert sessions.state("u1").is_empty()


def test_transition_without_session_raises():
    sessions = SessionStore()
    with pytest.raises(SessionNotFound) as excinfo:
        sessions.transition("u1", OrderSession, lambda session: (True, None))
    assert excinfo.value.kind == FlowKind.ORDER.value
    assert excinfo.value.key == "u1"


def test_wizard_stage_never_skips():
    sessions = SessionStore()
    sessions.start("u1", ConfigWizardSession())
    sessions.transition("u1", ConfigWizardSession, lambda session: advance_config(session, ""))
    assert sessions.get_session("u1", ConfigWizardSession).stage == ConfigStage.NEED_BUDGET


def test_config_reminder_only_once_per_chat():
    sessions = SessionStore()
    assert sessions.mark_config_reminder("chat-1") is True
    assert sessions.mark_config_reminder("chat-1") is False
    assert sessions.mark_config_reminder("chat-2") is True


def test_prune_idle_drops_stale_state_only(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(session_store, "time", SimpleNamespace(time=lambda: clock[0]))
    sessions = SessionStore(idle_ttl=60)
    sessions.start("old", OrderSession())
    clock[0] = 1100.0
    sessions.start("fresh", OrderSession())

    pruned = sessions.prune_idle(now=1130.0)

    assert pruned == 1
    assert sessions.active_session("old") is None
    assert sessions.active_session("fresh") is not None


def test_prune_disabled_without_ttl():
    sessions = SessionStore()
    sessions.start("u1", OrderSession())
    assert sessions.prune_idle(now=10 ** 12) == 0


def test_users_do_not_block_each_other():
    sessions = SessionStore()
    stripe = sessions._conversations._lock_for
    fast = next(key for key in (f"fast-{n}" for n in range(1000)) if stripe(key) is not stripe("slow"))
    sessions.start("slow", OrderSession())
    sessions.start(fast, OrderSession())
    inside = threading.Event()
    release = threading.Event()

    def slow_step(session):
        inside.set()
        release.wait(timeout=5)
        return True, None

    worker = threading.Thread(target=lambda: sessions.transition("slow", OrderSession, slow_step))
    worker.start()
    assert inside.wait(timeout=5)

    sessions.transition(fast, OrderSession, lambda session: (True, "done"))
    assert sessions.get_session(fast, OrderSession) is not None

    release.set()
    worker.join(timeout=5)


def test_keyed_store_lock_count_stays_fixed():
    store = KeyedStore("links", stripes=8)
    for n in range(1000):
        store.put(f"m-{n}", n)
        store.pop(f"m-{n}")
    assert len(store) == 0
    assert len({id(store._lock_for(f"m-{n}")) for n in range(1000)}) <= 8


def test_keyed_store_prune_rechecks_value():
    store = KeyedStore()
    store.put("a", 1)
    store.put("b", 5)
    assert store.prune(lambda value: value < 3) == 1
    assert store.snapshot() == {"b": 5}


def test_readers_keep_the_session_they_were_given():
    sessions = SessionStore()
    sessions.start("u1", ConfigWizardSession())
    reader = sessions.get_session("u1", ConfigWizardSession)
    before = sessions.state("u1")

    sessions.transition("u1", ConfigWizardSession, lambda session: advance_config(session, "Gaming"))
    sessions.start("u1", OrderSession())

    assert reader.stage == ConfigStage.NEED_TYPE
    assert reader.spec.pc_type == ""
    assert list(before.sessions) == [FlowKind.CONFIG_WIZARD]
    assert sessions.get_session("u1", ConfigWizardSession).stage == ConfigStage.NEED_BUDGET


def test_failed_step_leaves_stored_session_untouched():
    sessions = SessionStore()
    sessions.start("u1", OrderSession(summary="RTX"))

    def broken(session):
        session.summary = "half written"
        raise ValueError("boom")

    with pytest.raises(ValueError):
        sessions.transition("u1", OrderSession, broken)
    assert sessions.get_session("u1", OrderSession).summary == "RTX"


def test_routing_rank_while_flows_start_and_end():
    sessions = SessionStore()
    sessions.set_shop_mode("u1", True)
    errors = []
    stop = threading.Event()

    def churn():
        while not stop.is_set():
            sessions.start("u1", ConfigWizardSession())
            sessions.start("u1", OrderSession())
            sessions.end("u1", FlowKind.CONFIG_WIZARD)
            sessions.end("u1", FlowKind.ORDER)

    def read():
        try:
            for _ in range(5000):
                session, shop_mode = sessions.routing_rank("u1")
                assert shop_mode or isinstance(session, ConfigWizardSession)
        except Exception as exc:
            errors.append(exc)

    writer = threading.Thread(target=churn)
    readers = [threading.Thread(target=read) for _ in range(4)]
    writer.start()
    for thread in readers:
        thread.start()
    for thread in readers:
        thread.join()
    stop.set()
    writer.join()

    assert errors == []


def test_prune_idle_expires_correlation_entries():
    sessions = SessionStore(correlation_ttl=3600)
    now = time.time()
    stale = now - 7200
    link = GroupThreadLink(user_id="u1", chat_id="c1", created_at=stale)
    sessions.pending_approvals.put("u1", PendingApproval(user_id="u1", chat_id="c1", summary="old", sent_at=stale))
    sessions.pending_approvals.put("u2", PendingApproval(user_id="u2", chat_id="c2", summary="new"))
    sessions.feedback.put("u1", FeedbackCapture(summary="s", config_text="c", created_at=stale))
    sessions.group_links.put("m-1", link)
    sessions.group_links.put("m-2", GroupThreadLink(user_id="u2", chat_id="c2"))
    sessions.admin_approvals.put("r-1", AdminApprovalRequest(link=link, staff_text="ok", created_at=stale))
    sessions.mark_config_reminder("chat-1")

    assert sessions.prune_idle(now=now + 10) == 4
    assert sessions.pending_approvals.get("u1") is None
    assert sessions.pending_approvals.get("u2").summary == "new"
    assert sessions.feedback.get("u1") is None
    assert list(sessions.group_links) == ["m-2"]
    assert sessions.admin_approvals.get("r-1") is None
    assert sessions.mark_config_reminder("chat-1") is False

    sessions.prune_idle(now=now + 7200)
    assert sessions.mark_config_reminder("chat-1") is True


def test_correlation_entries_kept_without_ttl():
    sessions = SessionStore(idle_ttl=60)
    sessions.pending_approvals.put("u1", PendingApproval(user_id="u1", chat_id="c1", summary="old", sent_at=0.0))
    assert sessions.prune_idle(now=10 ** 12) == 0
    assert sessions.pending_approvals.get("u1") is not None
