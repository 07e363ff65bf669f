from __future__ import annotations

import base64
import threading

import pytest
from fastapi.testclient import TestClient

from conftest import SAMPLE_PRODUCTS, ScriptedBackend, make_settings, workbook_bytes
from shopbot import messages
from shopbot.app import app, build_services, set_services, text_event
from shopbot.models import TextEventIn

ADMIN_HEADERS = {"X-Admin-Key": "secret"}


def _build_client(backend=None, **overrides):
    services = build_services(make_settings(**overrides), backend=backend or ScriptedBackend())
    services.catalog.replace(SAMPLE_PRODUCTS, source="fixture.xlsx")
    set_services(services)
    return TestClient(app), services


@pytest.fixture
def api():
    created = []

    def build(backend=None, **overrides):
        client, services = _build_client(backend, **overrides)
        created.append(services)
        return client, services

    yield build
    set_services(None)
    for services in created:
        services.backend.shutdown()


def test_health(api):
    client, _ = api()
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_text_event_defaults_chat_to_user(api):
    client, _ = api()
    resp = client.post("/api/events/text", json={"user_id": "u1", "text": "/start"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["chat_id"] == "u1"
    assert [message["text"] for message in body["messages"]] == [messages.WELCOME]
    assert set(body) == {"chat_id", "messages"}


def test_text_event_answers_through_backend(api):
    backend = ScriptedBackend(["RTX 3060 costs $320."])
    client, services = api(backend=backend)
    resp = client.post("/api/events/text", json={"user_id": "u1", "chat_id": "c1", "text": "salom", "username": "ali"})
    assert [message["text"] for message in resp.json()["messages"]] == ["RTX 3060 costs $320."]
    assert "NVIDIA GeForce RTX 3060" in backend.prompts[0]
    assert [record.text for record in services.history.recent("u1", 0)] == ["salom"]


def test_button_event_and_staff_forwarding(api):
    client, _ = api()
    start = client.post("/api/events/button", json={"user_id": "u1", "choice_id": "msg_admin_start"})
    assert start.json()["messages"][0]["text"] == messages.ADMIN_MESSAGE_PROMPT

    sent = client.post("/api/events/text", json={"user_id": "u1", "text": "Do you deliver?", "username": "ali"}).json()
    assert [message["text"] for message in sent["messages"]] == [messages.ADMIN_MESSAGE_SENT]

    assert client.get("/api/admin/outbox/staff").status_code == 401
    [forwarded] = client.get("/api/admin/outbox/staff", headers=ADMIN_HEADERS).json()
    assert forwarded["text"] == messages.staff_user_message("ali", "u1", "Do you deliver?")
    assert client.get("/api/admin/outbox/staff", headers=ADMIN_HEADERS).json() == []


def test_contact_payload_reaches_order_flow(api):
    client, _ = api()
    client.post("/api/events/text", json={"user_id": "u1", "text": "/shop"})
    found = client.post("/api/events/text", json={"user_id": "u1", "text": "3060"}).json()
    assert [choice["id"] for choice in found["messages"][0]["choices"]] == ["shop_yes", "shop_no", "shop_more"]

    client.post("/api/events/button", json={"user_id": "u1", "choice_id": "shop_yes"})
    client.post("/api/events/text", json={"user_id": "u1", "text": "Ali Valiyev"})
    resp = client.post("/api/events/text", json={"user_id": "u1", "contact": {"phone": "+998901234567"}}).json()
    assert resp["messages"][0]["kind"] == "location"


def test_file_event_rejects_bad_base64(api):
    client, _ = api()
    resp = client.post(
        "/api/events/file",
        json={"user_id": "u1", "filename": "catalog.xlsx", "content_base64": "not base64!!"},
    )
    assert resp.status_code == 400


def test_file_event_requires_admin_session(api):
    client, _ = api()
    payload = base64.b64encode(workbook_bytes([["Name", "Price"], ["RTX 3060", 320]])).decode("ascii")
    resp = client.post(
        "/api/events/file",
        json={"user_id": "u1", "filename": "catalog.xlsx", "content_base64": payload},
    )
    assert resp.json()["messages"][0]["text"] == messages.UPLOAD_ADMIN_ONLY


def test_admin_upload_requires_key(api):
    client, _ = api()
    data = workbook_bytes([["Name", "Price"], ["RTX 3060", 320]])
    resp = client.post("/api/admin/catalog", params={"filename": "c.xlsx"}, content=data)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Unauthorized"

    resp = client.post("/api/admin/catalog", params={"filename": "c.xlsx"}, content=data, headers={"X-Admin-Key": "nope"})
    assert resp.status_code == 401


def test_admin_endpoints_closed_without_password(api):
    client, _ = api(admin_password="")
    resp = client.get("/api/admin/audit", headers={"X-Admin-Key": ""})
    assert resp.status_code == 401


def test_admin_upload_replaces_catalog(api):
    client, services = api()
    data = workbook_bytes(
        [
            ["Nomi", "Kategoriya", "Narx", "Soni"],
            ["RTX 4070 Super", "GPU", "650$", 3],
            ["Ryzen 7 7700", "CPU", "300", 1],
        ]
    )
    resp = client.post("/api/admin/catalog", params={"filename": "new.xlsx"}, content=data, headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"filename": "new.xlsx", "count": 2}

    info = client.get("/api/catalog").json()
    assert info["source"] == "new.xlsx"
    assert info["total"] == 2
    assert info["categories"] == {"GPU": 1, "CPU": 1}

    audit = client.get("/api/admin/audit", headers=ADMIN_HEADERS).json()
    assert audit[-1]["action"] == "catalog_upload"
    assert audit[-1]["user_id"] == "api"


def test_admin_upload_errors(api):
    client, services = api(max_upload_bytes=20_000)

    wrong_type = client.post("/api/admin/catalog", params={"filename": "c.csv"}, content=b"a,b", headers=ADMIN_HEADERS)
    assert wrong_type.status_code == 415

    legacy = client.post("/api/admin/catalog", params={"filename": "c.xls"}, content=b"old", headers=ADMIN_HEADERS)
    assert legacy.status_code == 415
    assert ".xlsx" in legacy.json()["detail"]

    too_big = client.post(
        "/api/admin/catalog", params={"filename": "c.xlsx"}, content=b"x" * 30_000, headers=ADMIN_HEADERS
    )
    assert too_big.status_code == 413

    unreadable = client.post(
        "/api/admin/catalog", params={"filename": "c.xlsx"}, content=b"not a workbook", headers=ADMIN_HEADERS
    )
    assert unreadable.status_code == 400
    assert services.catalog.info().source == "fixture.xlsx"


def test_catalog_products_search(api):
    client, _ = api()
    everything = client.get("/api/catalog/products").json()
    assert len(everything) == len(SAMPLE_PRODUCTS)

    hits = client.get("/api/catalog/products", params={"q": "3060"}).json()
    assert [product["name"] for product in hits] == ["NVIDIA GeForce RTX 3060"]
    assert hits[0]["stock"] == 5

    assert client.get("/api/catalog/products", params={"q": "zzzz"}).json() == []


def test_history_is_admin_only(api):
    client, _ = api()
    client.post("/api/events/text", json={"user_id": "u1", "text": "salom", "username": "ali"})

    assert client.get("/api/history/u1").status_code == 401
    resp = client.get("/api/history/u1", headers=ADMIN_HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["user_id"] == "u1"
    assert [(entry["text"], entry["response"], entry["username"]) for entry in body["messages"]] == [
        ("salom", "OK", "ali")
    ]


def test_overlapping_events_keep_their_own_output(api):
    entered = threading.Event()
    release = threading.Event()

    def slow_config(prompt):
        entered.set()
        release.wait(3)
        return "Ryzen 5 7600 build"

    client, services = api(backend=ScriptedBackend([slow_config]))
    for answer in ("/configuratsiya", "Gaming", "800$", "AMD", "NVMe"):
        client.post("/api/events/text", json={"user_id": "A", "text": answer})

    results = {}

    def finish_wizard():
        results["A"] = text_event(TextEventIn(user_id="A", text="RTX"), services)

    worker = threading.Thread(target=finish_wizard)
    worker.start()
    assert entered.wait(3)
    resp_b = client.post("/api/events/text", json={"user_id": "B", "text": "/start"}).json()
    release.set()
    worker.join(5)

    assert [message["chat_id"] for message in resp_b["messages"]] == ["B"]
    assert [message["text"] for message in resp_b["messages"]] == [messages.WELCOME]
    texts_a = [message.text for message in results["A"].messages]
    assert texts_a[0].startswith("I noted your requirements:")
    assert texts_a[1:] == ["Ryzen 5 7600 build", messages.CONFIG_FEEDBACK_PROMPT]
    assert services.transport.peek("A") == []


def test_queued_messages_arrive_with_the_next_event(api):
    client, services = api()
    services.transport.send_text("u1", "Admin reply: yes, we deliver.")
    services.transport.send_text("u2", "not for u1")

    body = client.post("/api/events/text", json={"user_id": "u1", "text": "/start"}).json()
    assert [message["text"] for message in body["messages"]] == ["Admin reply: yes, we deliver.", messages.WELCOME]
    assert [message.text for message in services.transport.peek("u2")] == ["not for u1"]


def test_channel_chats_are_not_drained_by_events(api):
    client, services = api()
    services.transport.send_text("orders", "Order card with +998901234567")

    body = client.post("/api/events/text", json={"user_id": "u9", "chat_id": "orders", "text": "/start"}).json()
    assert [message["text"] for message in body["messages"]] == [messages.WELCOME]
    [card] = client.get("/api/admin/outbox/orders", headers=ADMIN_HEADERS).json()
    assert "+998901234567" in card["text"]
