import time

import pytest

from conftest import SAMPLE_PRODUCTS, workbook_bytes
from shopbot.admin import AUDIT_LOG_LIMIT, AdminService, UploadRejected
from shopbot.catalog_store import CatalogStore
from shopbot.errors import AdminAuthError, IngestionError
from shopbot.history import MemoryHistoryStore


@pytest.fixture
def service():
    catalog = CatalogStore()
    catalog.replace(SAMPLE_PRODUCTS, source="initial.xlsx")
    history = MemoryHistoryStore()
    return AdminService(catalog, history, password="secret", session_ttl=60, max_upload_bytes=50_000)


def test_login_logout_cycle(service):
    assert not service.login("u1", "wrong")
    assert not service.is_admin("u1")
    assert service.login("u1", " secret ")
    assert service.is_admin("u1")
    assert service.logout("u1")
    assert not service.logout("u1")
    assert [entry.action for entry in service.audit_log()] == ["login", "logout"]


def test_empty_password_disables_login():
    service = AdminService(CatalogStore(), MemoryHistoryStore(), password="")
    assert not service.login("u1", "")
    assert not service.check_key("")


def test_session_expires_after_ttl(service, monkeypatch):
    service.login("u1", "secret")
    real_time = time.time
    monkeypatch.setattr("shopbot.admin.time.time", lambda: real_time() + 120)
    assert not service.is_admin("u1")


def test_upload_requires_admin(service):
    data = workbook_bytes([["Name", "Price"], ["RTX 3060", 320]])
    with pytest.raises(AdminAuthError):
        service.upload_catalog("u1", data, "catalog.xlsx")


def test_upload_replaces_catalog_and_counts_valid_rows(service):
    service.login("u1", "secret")
    data = workbook_bytes(
        [
            ["Name", "Price"],
            ["RTX 3060", 320],
            ["Ryzen 5 7600", "210$"],
            ["Mystery", "ask"],
        ]
    )
    assert service.upload_catalog("u1", data, "new.xlsx") == 2
    info = service.catalog_info()
    assert info.source == "new.xlsx"
    assert info.total == 2
    assert service.audit_log()[-1].action == "catalog_upload"


def test_rejected_upload_keeps_previous_catalog(service):
    service.login("u1", "secret")
    with pytest.raises(IngestionError):
        service.upload_catalog("u1", workbook_bytes([["Name", "Price"], ["Thing", "free"]]), "bad.xlsx")
    assert service.catalog_info().source == "initial.xlsx"
    assert service.audit_log()[-1].action == "catalog_upload_failed"


def test_check_upload_limits(service):
    with pytest.raises(UploadRejected) as too_big:
        service.check_upload(b"x" * 60_000, "catalog.xlsx")
    assert too_big.value.status == 413

    with pytest.raises(UploadRejected) as wrong_type:
        service.check_upload(b"data", "catalog.csv")
    assert wrong_type.value.status == 415


def test_legacy_xls_upload_is_refused_with_hint(service):
    with pytest.raises(UploadRejected) as legacy:
        service.check_upload(b"data", "Catalog.XLS")
    assert legacy.value.status == 415
    assert "save the file as .xlsx" in str(legacy.value)


def test_clean_all_requires_admin_and_clears(service):
    service._history.append("u2", "bob", "hi", "hello")
    with pytest.raises(AdminAuthError):
        service.clean_all("u1")

    service.login("u1", "secret")
    service.clean_all("u1")
    assert service.catalog_info().total == 0
    assert service._history.all_messages() == []


def test_audit_log_is_capped(service):
    for index in range(AUDIT_LOG_LIMIT + 10):
        service.log_action("u1", "noop", str(index))
    entries = service.audit_log()
    assert len(entries) == AUDIT_LOG_LIMIT
    assert entries[0].details == "10"
