from __future__ import annotations

from typing import Optional


class ShopbotError(Exception):
    """Base class for recoverable, per-event failures."""


class IngestionError(ShopbotError):
    """Workbook could not be turned into at least one valid product."""


class BackendError(ShopbotError):
    """Generative backend call failed."""


class BackendTimeout(BackendError):
    """Backend call exceeded its time budget."""


class BackendQuotaExceeded(BackendError):
    """Upstream rejected the call for quota or rate-limit reasons."""


class BackendUnavailable(BackendError):
    """Any other backend failure."""


class SessionNotFound(ShopbotError):
    """A flow callback arrived after its session or correlation entry was gone."""

    def __init__(self, kind: str, key: Optional[str] = None) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found" + (f" for {key}" if key else ""))


class TransportSendFailure(ShopbotError):
    """Outbound message could not be delivered."""


class AdminAuthError(ShopbotError):
    """Caller has no fresh administrative session."""
