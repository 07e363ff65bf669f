from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the backend, storage, channels, and matcher tuning."""
    gemini_api_key: str
    gemini_model: str
    temperature: float
    top_k: int
    top_p: float
    max_output_tokens: int
    prompts_dir: Path
    history_db_path: str
    max_context_size: int
    history_window: int
    backend_timeout: float
    backend_max_concurrency: int
    backend_min_interval: float
    admin_password: str
    admin_session_ttl: float
    staff_chat_id: str
    orders_chat_id: str
    max_upload_bytes: int
    session_idle_ttl: float
    correlation_ttl: float
    match_qualify_score: int
    match_keep_score: int
    match_numeric_window: int
    match_fallback_cap: int


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv and BASE_DIR for the prompt directory.
    Failure Modes: Malformed numeric env values raise ValueError.
    If Removed: Services cannot be wired and the app fails at startup.
    Testing Notes: Verify defaults and overrides via monkeypatch.setenv.
    """
    # Resolve paths first, then numeric limits and channel ids.
    prompts_dir = Path(os.getenv("PROMPTS_DIR") or (BASE_DIR / "prompts")).resolve()
    history_db_path = os.getenv("CHAT_DB_PATH", "data/chat.db").strip()

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        temperature=float(os.getenv("GEMINI_TEMPERATURE", "0.3")),
        top_k=int(os.getenv("GEMINI_TOP_K", "20")),
        top_p=float(os.getenv("GEMINI_TOP_P", "0.9")),
        max_output_tokens=int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "2048")),
        prompts_dir=prompts_dir,
        history_db_path=history_db_path,
        max_context_size=int(os.getenv("MAX_CONTEXT_SIZE", "20")),
        history_window=int(os.getenv("HISTORY_WINDOW", "10")),
        backend_timeout=float(os.getenv("BACKEND_TIMEOUT_SEC", "20")),
        backend_max_concurrency=int(os.getenv("BACKEND_MAX_CONCURRENCY", "3")),
        backend_min_interval=float(os.getenv("BACKEND_MIN_INTERVAL_SEC", "0.35")),
        admin_password=os.getenv("ADMIN_PASSWORD", ""),
        admin_session_ttl=float(os.getenv("ADMIN_SESSION_TTL_SEC", str(24 * 60 * 60))),
        staff_chat_id=os.getenv("STAFF_CHAT_ID", "").strip(),
        orders_chat_id=os.getenv("ORDERS_CHAT_ID", "").strip(),
        max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024))),
        session_idle_ttl=float(os.getenv("SESSION_IDLE_TTL_SEC", str(6 * 60 * 60))),
        correlation_ttl=float(os.getenv("CORRELATION_TTL_SEC", str(24 * 60 * 60))),
        match_qualify_score=int(os.getenv("MATCH_QUALIFY_SCORE", "5")),
        match_keep_score=int(os.getenv("MATCH_KEEP_SCORE", "8")),
        match_numeric_window=int(os.getenv("MATCH_NUMERIC_WINDOW", "200")),
        match_fallback_cap=int(os.getenv("MATCH_FALLBACK_CAP", "6")),
    )
