from __future__ import annotations

"""Ordered keyword rule tables and the predicates that evaluate them.

Rules are plain data: the first matching entry wins, so order encodes priority.
Keywords are compared against lowercased text by substring containment.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Tuple

OTHER_CATEGORY = "Other"


@dataclass(frozen=True)
class KeywordRule:
    """One ordered rule: a label, its keywords, and an optional extra predicate."""
    label: str
    keywords: Tuple[str, ...]
    predicate: Optional[Callable[[str], bool]] = None

    def matches(self, lowered: str) -> bool:
        if any(keyword in lowered for keyword in self.keywords):
            return True
        return bool(self.predicate and self.predicate(lowered))


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def first_matching_label(rules: Sequence[KeywordRule], text: str) -> Optional[str]:
    """Purpose: Evaluate an ordered rule table against text.
    Inputs/Outputs: Inputs are rules and raw text; output is the first matching label or None.
    Side Effects / State: None; pure function.
    Dependencies: KeywordRule.matches.
    Failure Modes: Returns None for empty text or when no rule matches.
    If Removed: Category and header classification lose their shared evaluator.
    Testing Notes: Reordering a table must change which label wins on overlaps.
    """
    # Lowercase once, then walk the rules in priority order.
    lowered = (text or "").lower()
    if not lowered:
        return None
    for rule in rules:
        if rule.matches(lowered):
            return rule.label
    return None


def _is_rated_psu(lowered: str) -> bool:
    return "w " in lowered and contains_any(lowered, ("80+", "bronze", "gold"))


# Most specific signals first: display and storage words before memory,
# brand tokens before socket/chipset names, generic memory words last.
CATEGORY_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(
        "Monitor",
        (
            "monitor",
            "монитор",
            "display",
            "screen",
            "144hz",
            "165hz",
            "240hz",
            "300hz",
            "ips",
            "va panel",
            "curved",
            "ultrawide",
        ),
    ),
    KeywordRule("Storage", ("ssd", "nvme", "hdd", "hard drive")),
    KeywordRule("RAM", ("ddr4", "ddr5", "ddr3", "ddr ")),
    KeywordRule("CPU", ("intel", "amd", "ryzen", "core i", "processor", "xeon")),
    KeywordRule("GPU", ("rtx", "gtx", "radeon", "rx ", "geforce", "nvidia", "arc", "inno3d")),
    KeywordRule(
        "Motherboard",
        (
            "motherboard",
            "b450",
            "b550",
            "b650",
            "b760",
            "x570",
            "x670",
            "x870",
            "z690",
            "z790",
            "lga1700",
            "lga1851",
            "am4",
            "am5",
        ),
    ),
    KeywordRule("PSU", ("psu", "power supply", "блок питания", "watt"), predicate=_is_rated_psu),
    KeywordRule("Case", ("case", "корпус", "chassis", "tower")),
    KeywordRule("Cooling", ("cooler", "cooling", "fan", "aio", "liquid", "air cooler")),
    KeywordRule("Chair", ("chair", "стул")),
    KeywordRule("Desk", ("desk", "стол", "table")),
    KeywordRule("Keyboard", ("keyboard", "клавиатура")),
    KeywordRule("Mouse", ("mouse", "мышь")),
    KeywordRule("Headset", ("headset", "headphone", "наушники")),
    KeywordRule("RAM", ("ram", "memory", "corsair vengeance", "kingston fury")),
)


def detect_category(name: str) -> str:
    """Classify a product name into a category tag, or Other."""
    return first_matching_label(CATEGORY_RULES, name) or OTHER_CATEGORY


# Header keyword table for spreadsheet columns; tested in this order per cell.
COLUMN_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("name", ("name", "nom", "nomi", "название", "product", "mahsulot", "tovar")),
    KeywordRule("category", ("category", "kategoriya", "tur", "тип", "категория", "type")),
    KeywordRule(
        "price",
        ("price", "narx", "summa", "цена", "сум", "som", "cost", "$", "usd", "uzs"),
    ),
    KeywordRule(
        "description",
        ("description", "tavsif", "malumot", "описание", "info", "details"),
    ),
    KeywordRule("stock", ("stock", "soni", "miqdor", "количество", "qty", "quantity")),
)

SEMANTIC_COLUMNS = tuple(rule.label for rule in COLUMN_RULES)


def classify_header(cell: str) -> Optional[str]:
    """Semantic field for a header cell, or None when it is a free-form spec column."""
    return first_matching_label(COLUMN_RULES, (cell or "").strip())


# Removed from price cells in this order (multi-letter words before their prefixes).
PRICE_NOISE_TOKENS: Tuple[str, ...] = (
    ",",
    " ",
    "$",
    "€",
    "£",
    "₽",
    "¥",
    "so'm",
    "soʻm",
    "soum",
    "som",
    "сум",
    "сом",
    "sum",
    "uzs",
    "usd",
    "eur",
    "руб",
    "р",
)


GPU_QUERY_KEYWORDS = ("rtx", "gtx", "rx ", "rx-", "gpu", "video", "videokarta", "karta")
GPU_CATEGORY_TOKENS = ("gpu", "video", "karta", "videokarta")
GPU_NAME_TOKENS = ("rtx", "gtx", "rx ", "rx-", "gpu", "video")
GPU_VENDOR_TOKENS = ("nvidia", "amd")
GPU_MODEL_DIGITS = 3


def is_gpu_query(query: str) -> bool:
    """Purpose: Decide whether a search query is about video cards.
    Inputs/Outputs: Input is the raw query; output is True for GPU-like queries.
    Side Effects / State: None.
    Dependencies: GPU_QUERY_KEYWORDS and digit counting.
    Failure Modes: Any >=3-digit numeral counts, so "1000 so'm" is GPU-like too.
    If Removed: The matcher cannot narrow GPU queries to GPU products.
    Testing Notes: "rx7600", "4090 kerak" and "videokarta" all return True.
    """
    # Keyword hits, "rx" next to any digits, or a long model number.
    lowered = (query or "").lower()
    digits = sum(1 for ch in lowered if "0" <= ch <= "9")
    if contains_any(lowered, GPU_QUERY_KEYWORDS):
        return True
    if "rx" in lowered and digits:
        return True
    return digits >= GPU_MODEL_DIGITS


def is_gpu_product(name: str, category: str) -> bool:
    lowered_category = (category or "").lower()
    if contains_any(lowered_category, GPU_CATEGORY_TOKENS):
        return True
    lowered_name = (name or "").lower()
    if contains_any(lowered_name, GPU_NAME_TOKENS):
        return True
    digits = sum(1 for ch in lowered_name if "0" <= ch <= "9")
    return digits >= GPU_MODEL_DIGITS and contains_any(lowered_name, GPU_VENDOR_TOKENS)


CONFIG_INTENT_PHRASES = (
    "pc yig",
    "kompyuter yig",
    "pc build",
    "pc konfigur",
    "konfiguratsiya",
    "sborka",
    "sbor",
    "pc sbor",
    "pc sborka",
    "pc topla",
    "kompyuter topla",
    "pc kerak",
    "pc kera",
    "kompyuter kerak",
    "kompyuter kera",
    "gaming pc",
    "office pc",
    "montaj pc",
    "pc config",
    "pc setup",
    "kompyuter sborka",
    "kompyuter sbor",
    "pc yig'ib",
    "pc yigib",
    "pc yiqib",
    "$1k",
    "1k$",
    "1000$",
    "budjet",
    "byudjet",
    "budget",
)
PC_WORDS = ("pc", "kompyuter", "komp")
BUILD_WORDS = ("yig", "topla", "config", "setup", "sbor")
NEED_WORDS = ("kerak", "kera")
BUDGET_WORDS = ("$", "usd", "so'm", "soum", "sum", "uzs")

CONFIG_RESPONSE_KEYS = (
    "protsessor",
    "ona plata",
    "motherboard",
    "gpu",
    "video karta",
    "ram",
    "ssd",
    "hdd",
    "jami",
    "konfiguratsiya",
)
CONFIG_RESPONSE_MIN_HITS = 2


def is_config_request(text: str) -> bool:
    """Purpose: Detect a request to assemble a PC configuration.
    Inputs/Outputs: Input is user text; output is True when config intent is present.
    Side Effects / State: None.
    Dependencies: CONFIG_INTENT_PHRASES plus the PC x (build | need | budget) word tables.
    Failure Modes: Substring matching is loose; "komp" also hits "kompaniya".
    If Removed: The once-per-chat wizard redirect and feedback capture never fire.
    Testing Notes: "gaming pc kerak 800$" is True; "salom" is False.
    """
    # Direct phrases first, then the combination check.
    lowered = (text or "").lower()
    if contains_any(lowered, CONFIG_INTENT_PHRASES):
        return True
    has_pc = contains_any(lowered, PC_WORDS)
    return has_pc and (
        contains_any(lowered, BUILD_WORDS)
        or contains_any(lowered, NEED_WORDS)
        or contains_any(lowered, BUDGET_WORDS)
    )


def is_likely_config_response(text: str) -> bool:
    lowered = (text or "").lower()
    hits = sum(1 for key in CONFIG_RESPONSE_KEYS if key in lowered)
    return hits >= CONFIG_RESPONSE_MIN_HITS


PURCHASE_QUERY_WORDS = ("bormi", "bor mi", "olmoq", "sotib", "narx", "qancha")
PURCHASE_RESPONSE_SIGNALS = ("bizda bor", "mavjud", "$", "sotib ol", "xarid")
PURCHASE_NEGATIVE_SIGNALS = ("mavjud emas", "emas", "yo'q", "yoq", "afsus", "topilmadi")


def should_offer_purchase(user_text: str, response: str) -> bool:
    """Purpose: Decide whether to follow an AI answer with a buy offer.
    Inputs/Outputs: Inputs are the user's text and the AI response; output is a bool.
    Side Effects / State: None.
    Dependencies: The three purchase word tables.
    Failure Modes: Any negative signal in the response suppresses the offer.
    If Removed: Availability answers never lead into checkout.
    Testing Notes: ("RTX 4060 bormi?", "Ha, bizda bor! ... 320$") is True.
    """
    # Need buyer intent, a positive availability signal, and no negative signal.
    lowered_text = (user_text or "").lower()
    lowered_response = (response or "").lower()
    return (
        contains_any(lowered_text, PURCHASE_QUERY_WORDS)
        and contains_any(lowered_response, PURCHASE_RESPONSE_SIGNALS)
        and not contains_any(lowered_response, PURCHASE_NEGATIVE_SIGNALS)
    )


QUOTA_ERROR_MARKERS = ("quota", "retry in", "rate limit", "resource exhausted", "429")


def is_quota_message(message: str) -> bool:
    return contains_any((message or "").lower(), QUOTA_ERROR_MARKERS)
