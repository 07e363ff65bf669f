from __future__ import annotations

import hmac
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from .catalog_store import CatalogInfo, CatalogStore
from .errors import AdminAuthError, IngestionError
from .history import HistoryStore
from .ingestion import parse_workbook

logger = logging.getLogger("shopbot.admin")

ALLOWED_EXTENSIONS = (".xlsx",)
LEGACY_EXTENSIONS = (".xls",)
AUDIT_LOG_LIMIT = 500


class UploadRejected(IngestionError):
    """Upload refused before parsing; status is the HTTP code the API layer uses."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


@dataclass
class AuditEntry:
    user_id: str
    action: str
    details: str = ""
    ts: float = field(default_factory=time.time)


class AdminService:
    """Admin sessions, the audit trail, and catalog upload/cleanup."""

    def __init__(
        self,
        catalog: CatalogStore,
        history: HistoryStore,
        password: str,
        session_ttl: float = 24 * 60 * 60,
        max_upload_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        """Purpose: Wire admin operations to the catalog and history stores.
        Inputs/Outputs: Inputs are the stores, the admin password and limits; no return.
        Side Effects / State: Keeps admin login times and the audit list in memory.
        Dependencies: CatalogStore, HistoryStore, ingestion.parse_workbook.
        Failure Modes: An empty password disables every login.
        If Removed: Catalog uploads and cleanup have no access control.
        Testing Notes: login with the wrong password returns False; TTL expiry logs out.
        """
        # Admin sessions are user_id -> login time.
        self._catalog = catalog
        self._history = history
        self._password = password or ""
        self._session_ttl = session_ttl
        self._max_upload_bytes = max_upload_bytes
        self._lock = threading.Lock()
        self._sessions: Dict[str, float] = {}
        self._audit: List[AuditEntry] = []

    def login(self, user_id: str, password: str) -> bool:
        if not self.check_key(password):
            logger.warning("admin login failed user=%s", user_id)
            return False
        with self._lock:
            self._sessions[user_id] = time.time()
        self.log_action(user_id, "login")
        return True

    def logout(self, user_id: str) -> bool:
        with self._lock:
            existed = self._sessions.pop(user_id, None) is not None
        if existed:
            self.log_action(user_id, "logout")
        return existed

    def is_admin(self, user_id: str) -> bool:
        with self._lock:
            started = self._sessions.get(user_id)
            if started is None:
                return False
            if time.time() - started > self._session_ttl:
                self._sessions.pop(user_id, None)
                logger.info("admin session expired user=%s", user_id)
                return False
            return True

    def require_admin(self, user_id: str) -> None:
        if not self.is_admin(user_id):
            raise AdminAuthError("admin session required")

    def log_action(self, user_id: str, action: str, details: str = "") -> None:
        entry = AuditEntry(user_id=user_id, action=action, details=details)
        with self._lock:
            self._audit.append(entry)
            if len(self._audit) > AUDIT_LOG_LIMIT:
                del self._audit[: len(self._audit) - AUDIT_LOG_LIMIT]
        logger.info("admin=%s action=%s details=%s", user_id, action, details)

    def audit_log(self) -> List[AuditEntry]:
        with self._lock:
            return list(self._audit)

    def check_upload(self, data: bytes, filename: str) -> None:
        if len(data) > self._max_upload_bytes:
            raise UploadRejected(
                f"file is too large ({len(data)} bytes, limit {self._max_upload_bytes})",
                status=413,
            )
        suffix = Path(filename or "").suffix.lower()
        if suffix in LEGACY_EXTENSIONS:
            raise UploadRejected(
                "legacy .xls workbooks cannot be read; save the file as .xlsx and upload again",
                status=415,
            )
        if suffix not in ALLOWED_EXTENSIONS:
            raise UploadRejected("only .xlsx files are accepted", status=415)

    def upload_catalog(self, user_id: str, data: bytes, filename: str) -> int:
        """Purpose: Replace the catalog from an uploaded workbook.
        Inputs/Outputs: Inputs are the admin id, file bytes and filename; returns product count.
        Side Effects / State: Swaps the catalog atomically and appends an audit entry.
        Dependencies: check_upload, parse_workbook, CatalogStore.replace.
        Failure Modes: AdminAuthError for non-admins; UploadRejected for size/type;
            IngestionError for unreadable or empty sheets. The catalog is unchanged on error.
        If Removed: The shop cannot load products.
        Testing Notes: A 3-row sheet with one bad price reports count=2.
        """
        # Validate before touching the catalog; parse fully before the swap.
        self.require_admin(user_id)
        return self.import_catalog(user_id, data, filename)

    def import_catalog(self, actor: str, data: bytes, filename: str) -> int:
        """Upload without a chat admin session; the HTTP layer authorizes by key."""
        self.check_upload(data, filename)
        try:
            products = parse_workbook(data, filename)
        except IngestionError as exc:
            self.log_action(actor, "catalog_upload_failed", f"{filename}: {exc}")
            raise
        self._catalog.replace(products, source=filename)
        self.log_action(actor, "catalog_upload", f"{filename}: {len(products)} products")
        return len(products)

    def check_key(self, key: str) -> bool:
        if not self._password:
            return False
        return hmac.compare_digest((key or "").strip().encode("utf-8"), self._password.encode("utf-8"))

    def catalog_info(self) -> CatalogInfo:
        return self._catalog.info()

    def clean_all(self, user_id: str) -> None:
        self.require_admin(user_id)
        self._catalog.clear()
        self._history.clear_all()
        self.log_action(user_id, "clean_all")
