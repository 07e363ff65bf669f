from shopbot import rules
from shopbot.utils import (
    compact_tokens,
    extract_digits,
    extract_number,
    filter_stop_tokens,
    longest_common_run,
    mask_contact_value,
    normalize_compact,
    normalize_tight,
    tokenize,
    truncate,
)


def test_normalize_compact_keeps_ascii_alphanumerics():
    assert normalize_compact("RTX-4090 Ti") == "rtx4090ti"
    assert normalize_compact("Видеокарта RTX 4090") == "rtx4090"
    assert normalize_compact("") == ""


def test_normalize_tight_strips_separators_only():
    assert normalize_tight("Core i5-12400F") == "corei512400f"
    assert normalize_tight("Видео карта") == "видеокарта"


def test_tokenize_and_stop_tokens():
    tokens = tokenize("RTX 4090, bormi?")
    assert tokens == ["rtx", "4090", "bormi"]
    assert filter_stop_tokens(tokens) == ["rtx", "4090"]
    assert tokenize("a b") == []
    assert compact_tokens(["rtx", "!!"]) == ["rtx"]


def test_digit_helpers():
    assert extract_digits("i5-12400F") == "512400"
    assert extract_number("rtx4090") == 4090
    assert extract_number("no digits") == 0


def test_longest_common_run():
    assert longest_common_run("rtx4080", "rtx4090") == 5
    assert longest_common_run("", "rtx") == 0


def test_truncate_and_mask():
    assert truncate("abcdef", 10) == "abcdef"
    assert truncate("abcdefghij", 6) == "abc..."
    assert mask_contact_value("+998 90 123 45 67") == "***567"
    assert mask_contact_value("12") == "***"


def test_detect_category_priority():
    assert rules.detect_category("Samsung 27 inch monitor 165Hz") == "Monitor"
    assert rules.detect_category("Samsung 990 Pro 1TB NVMe") == "Storage"
    assert rules.detect_category("Kingston Fury 16GB DDR5") == "RAM"
    assert rules.detect_category("AMD Ryzen 5 7600") == "CPU"
    assert rules.detect_category("Palit GeForce RTX 4060") == "GPU"
    assert rules.detect_category("Corsair RM850 PSU") == "PSU"
    assert rules.detect_category("Mystery widget") == rules.OTHER_CATEGORY


def test_classify_header():
    assert rules.classify_header("Nomi") == "name"
    assert rules.classify_header("Narx ($)") == "price"
    assert rules.classify_header("Kategoriya") == "category"
    assert rules.classify_header("Description") == "description"
    assert rules.classify_header("Qty") == "stock"
    assert rules.classify_header("Color") is None


def test_gpu_predicates():
    assert rules.is_gpu_query("rx7600")
    assert rules.is_gpu_query("4090 kerak")
    assert rules.is_gpu_query("videokarta")
    assert not rules.is_gpu_query("ssd 1tb")
    assert rules.is_gpu_product("Palit 4060", "GPU")
    assert rules.is_gpu_product("NVIDIA 4070 Super", "Other")
    assert not rules.is_gpu_product("AMD Ryzen 5", "CPU")


def test_config_intent_and_purchase_offer():
    assert rules.is_config_request("gaming pc kerak 800$")
    assert rules.is_config_request("Kompyuter yig'ib bering")
    assert not rules.is_config_request("salom")
    assert rules.is_likely_config_response("Protsessor: Ryzen 5\nRAM: 16GB\nSSD: 1TB")
    assert not rules.is_likely_config_response("Salom!")
    assert rules.should_offer_purchase("RTX 4060 bormi?", "Ha, bizda bor! Narxi 320$")
    assert not rules.should_offer_purchase("RTX 4060 bormi?", "Afsus, mavjud emas")
    assert not rules.should_offer_purchase("salom", "Ha, bizda bor!")


def test_quota_message():
    assert rules.is_quota_message("429 Resource exhausted: quota")
    assert not rules.is_quota_message("connection reset")
