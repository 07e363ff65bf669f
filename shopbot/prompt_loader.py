from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger("shopbot.prompts")


def load_prompt(prompt_path: Path, default: str = "") -> str:
    """Purpose: Load a prompt file as UTF-8 text with any BOM removed.
    Inputs/Outputs: Input is the prompt Path plus a default; returns the prompt text.
    Side Effects / State: Reads the filesystem only.
    Dependencies: Used by GeminiBackend for the salesperson system instruction.
    Failure Modes: Undecodable bytes are dropped; a missing file returns the default
        with a warning.
    If Removed: The backend starts without its shop rules and answers off-catalog.
    Testing Notes: Check BOM stripping and the missing-file default on tmp_path.
    """
    # Missing files fall back to the default, bad bytes are dropped.
    if not prompt_path.exists():
        logger.warning("prompt file missing path=%s", prompt_path)
        return default
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        text = prompt_path.read_bytes().decode("utf-8", errors="ignore")
        return text.lstrip("\ufeff")
