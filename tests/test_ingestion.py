import pytest

from conftest import workbook_bytes
from shopbot.errors import IngestionError
from shopbot.ingestion import (
    _side_by_side_products,
    detect_layout,
    detect_price_column,
    detect_table_layout,
    map_header,
    parse_price,
    parse_rows,
    parse_workbook,
    read_rows,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("150", 150.0),
        ("150$", 150.0),
        ("1,500", 1500.0),
        ("1 500", 1500.0),
        ("150 so'm", 150.0),
        ("12.5", 12.5),
    ],
)
def test_parse_price_accepts_common_formats(raw, expected):
    assert parse_price(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "12abc", "call us"])
def test_parse_price_rejects_text(raw):
    assert parse_price(raw) is None


def test_headered_workbook_drops_invalid_rows():
    data = workbook_bytes(
        [
            ["Name", "Price", "Category", "Color"],
            ["RTX 4090", 1800, "GPU", "black"],
            ["Ryzen 5 7600", "210$", "", ""],
            ["Broken item", "n/a", "CPU", ""],
        ]
    )
    products = parse_workbook(data, "catalog.xlsx")

    assert [product.name for product in products] == ["RTX 4090", "Ryzen 5 7600"]
    assert products[0].price == 1800
    assert products[0].category == "GPU"
    assert products[0].specs == {"Color": "black"}
    assert products[1].category == "CPU"


def test_headerless_workbook_uses_first_columns():
    rows = [
        ["Kingston Fury 16GB DDR5", "60"],
        ["Samsung 990 Pro 1TB NVMe", "120", "", "Gen4"],
    ]
    layout = detect_layout(rows)
    assert not layout.has_header
    assert layout.start_row == 0
    assert layout.table

    products = parse_rows(rows)
    assert [product.category for product in products] == ["RAM", "Storage"]
    assert products[1].specs == {"Extra_3": "Gen4"}


def test_short_names_and_non_positive_prices_are_skipped():
    rows = [
        ["Name", "Price"],
        ["ab", "100"],
        ["Free sticker", "0"],
        ["Mouse pad XL", "-5"],
        ["Keyboard K1", "25"],
    ]
    products = parse_rows(rows)
    assert [product.name for product in products] == ["Keyboard K1"]


def test_map_header_falls_back_to_first_columns():
    columns = map_header(["Model", "Cost", "Warranty"])
    assert columns.name == 0
    assert columns.price == 1
    assert columns.spec_columns == {"model": 0, "warranty": 2}


def test_detect_price_column_needs_two_hits():
    rows = [["a", "x", "10"], ["b", "y", "20"], ["c", "z", "n/a"]]
    assert detect_price_column(rows, 0) == 2
    assert detect_price_column([["a", "x", "10"]], 0) is None


def test_side_by_side_layout():
    rows = [
        ["Keyboard K1", "25", "Mouse M1", "15"],
        ["Headset H1", "see", "Chair C1", "later"],
        ["Desk D1", "soon", "Lamp L1", "later"],
    ]
    assert not detect_table_layout(rows, 0, 1)

    products = _side_by_side_products(rows[0], now=0.0)
    assert [(product.name, product.price) for product in products] == [("Keyboard K1", 25.0), ("Mouse M1", 15.0)]
    assert products[1].category == "Mouse"


def test_reingesting_same_file_is_idempotent():
    data = workbook_bytes([["Nomi", "Narx"], ["RTX 3060", "320"], ["Ryzen 5 7600", "210"]])
    first = parse_workbook(data, "a.xlsx")
    second = parse_workbook(data, "a.xlsx")
    assert [(p.name, p.price, p.category) for p in first] == [(p.name, p.price, p.category) for p in second]


def test_empty_workbook_raises():
    with pytest.raises(IngestionError, match="empty"):
        parse_workbook(workbook_bytes([]), "empty.xlsx")


def test_all_invalid_rows_raise():
    with pytest.raises(IngestionError, match="no valid products"):
        parse_rows([["Name", "Price"], ["Thing", "free"], ["Other thing", ""]])


def test_unreadable_bytes_raise():
    with pytest.raises(IngestionError, match="cannot open workbook"):
        read_rows(b"not an excel file")


def test_read_rows_from_path(tmp_path):
    path = tmp_path / "catalog.xlsx"
    path.write_bytes(workbook_bytes([["Name", "Price"], ["RTX 3060", 320]]))
    assert read_rows(path) == [["Name", "Price"], ["RTX 3060", "320"]]
