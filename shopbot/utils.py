import re
from difflib import SequenceMatcher
from typing import Iterable, List

TIGHT_STRIP_CHARS = (" ", "-", "_", ".", ",", "'", '"', "/", "\\", "?", "!")
TOKEN_SEPARATORS = (",", ".", "?", "!", ";", ":", "/", "\\", "-", "_")
MIN_TOKEN_LENGTH = 2

# Availability/need/when/how words in the shop's locale.
STOP_TOKENS = frozenset(
    {
        "bormi",
        "bor",
        "bormidi",
        "bormi?",
        "bormidi?",
        "kerak",
        "kerakmi",
        "kerak?",
        "qachon",
        "qanday",
    }
)


def normalize_compact(text: str) -> str:
    """Purpose: Reduce a string to lowercase ASCII letters and digits only.
    Inputs/Outputs: Input is a raw string; output is the compact form ("RTX-4090 Ti" -> "rtx4090ti").
    Side Effects / State: None; pure function.
    Dependencies: None; used by the matcher for loose containment checks.
    Failure Modes: Returns empty string for falsy input or non-ASCII-only text.
    If Removed: Names with punctuation noise stop matching compact queries.
    Testing Notes: Check punctuation, spaces and Cyrillic are all dropped.
    """
    # Keep ASCII alphanumerics, then lowercase.
    if not text:
        return ""
    return "".join(ch for ch in text if ch.isascii() and ch.isalnum()).lower()


def normalize_tight(text: str) -> str:
    """Purpose: Lowercase and strip a fixed punctuation set, keeping other characters.
    Inputs/Outputs: Input is a raw string; output is the tight form.
    Side Effects / State: None; pure function.
    Dependencies: Uses TIGHT_STRIP_CHARS.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Secondary containment checks in the matcher lose a normalization tier.
    Testing Notes: "Core i5-12400F" -> "corei512400f"; Cyrillic letters survive.
    """
    # Remove spaces, separators and quotes one by one.
    if not text:
        return ""
    lowered = text.lower()
    for char in TIGHT_STRIP_CHARS:
        lowered = lowered.replace(char, "")
    return lowered


def tokenize(text: str) -> List[str]:
    """Purpose: Split a query into lowercase tokens on a fixed separator set.
    Inputs/Outputs: Input is a raw string; output is a list of tokens of length >= 2.
    Side Effects / State: None; pure function.
    Dependencies: Uses TOKEN_SEPARATORS and MIN_TOKEN_LENGTH.
    Failure Modes: Returns empty list for falsy or punctuation-only input.
    If Removed: Token-level matching and scoring cannot run.
    Testing Notes: "rtx 4090, bormi?" -> ["rtx", "4090", "bormi"].
    """
    # Replace separators with spaces, split, and drop one-letter tokens.
    if not text:
        return []
    lowered = text.lower()
    for sep in TOKEN_SEPARATORS:
        lowered = lowered.replace(sep, " ")
    return [token for token in lowered.split() if len(token) >= MIN_TOKEN_LENGTH]


def filter_stop_tokens(tokens: Iterable[str]) -> List[str]:
    """Drop intent-only tokens that carry no product signal."""
    return [token for token in tokens if token not in STOP_TOKENS]


def compact_tokens(tokens: Iterable[str]) -> List[str]:
    """Compact form of each token, empties removed."""
    compacted = (normalize_compact(token) for token in tokens)
    return [token for token in compacted if token]


def extract_digits(text: str) -> str:
    # ASCII digits only, in order.
    if not text:
        return ""
    return "".join(ch for ch in text if "0" <= ch <= "9")


def extract_number(text: str) -> int:
    """Integer value of every digit in the text concatenated; 0 when there are none."""
    digits = extract_digits(text)
    return int(digits) if digits else 0


def longest_common_run(left: str, right: str) -> int:
    """Purpose: Length of the longest common substring of two strings.
    Inputs/Outputs: Inputs are two strings; output is a non-negative int.
    Side Effects / State: None; pure function.
    Dependencies: Uses difflib.SequenceMatcher with autojunk disabled.
    Failure Modes: Returns 0 when either string is empty.
    If Removed: Fallback scoring loses its character-run similarity term.
    Testing Notes: ("rtx4080", "rtx4090") -> 5.
    """
    # find_longest_match over the full ranges gives the longest common block.
    if not left or not right:
        return 0
    matcher = SequenceMatcher(None, left, right, autojunk=False)
    return matcher.find_longest_match(0, len(left), 0, len(right)).size


def truncate(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return text[: limit - 3] + "..."


def non_empty(value: str, fallback: str) -> str:
    return value if value and value.strip() else fallback


def mask_contact_value(value: object) -> str:
    """Purpose: Mask contact-like values for safe logging.
    Inputs/Outputs: Input is any value; output is a masked string with last digits only.
    Side Effects / State: None.
    Dependencies: Uses regex digit extraction.
    Failure Modes: Non-numeric inputs yield a generic mask.
    If Removed: Logs may expose customer phone numbers.
    Testing Notes: Verify outputs for short and long numeric strings.
    """
    # Keep only the last digits while hiding the rest.
    if value is None:
        return ""
    digits = re.findall(r"\d", str(value))
    if len(digits) < 4:
        return "***"
    return "***" + "".join(digits[-3:])
