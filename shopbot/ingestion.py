from __future__ import annotations

"""Spreadsheet catalog ingestion.

Turns the first sheet of an uploaded workbook into Product records without a
fixed schema: header presence, column roles and row layout are all inferred.
"""

import io
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from openpyxl import load_workbook

from .catalog_store import Product
from .errors import IngestionError
from .rules import PRICE_NOISE_TOKENS, classify_header, detect_category

logger = logging.getLogger("shopbot.ingestion")

PRICE_SCAN_ROWS = 15
PRICE_SCAN_MIN_HITS = 2
LAYOUT_SAMPLE_ROWS = 5
TABLE_LAYOUT_RATIO = 0.7
MIN_NAME_LENGTH = 3

_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

Row = List[str]


@dataclass
class ColumnMap:
    """Column roles for one sheet; spec_columns maps header text to index."""
    name: int = 0
    price: Optional[int] = None
    category: Optional[int] = None
    description: Optional[int] = None
    stock: Optional[int] = None
    spec_columns: Dict[str, int] = field(default_factory=dict)

    def used_columns(self) -> set:
        used = {self.name}
        for index in (self.price, self.category, self.description, self.stock):
            if index is not None:
                used.add(index)
        return used


@dataclass
class SheetLayout:
    """Detected structure of a sheet, kept for logging and tests."""
    has_header: bool
    start_row: int
    columns: ColumnMap
    table: bool


def parse_number(value: str) -> Optional[float]:
    cleaned = (value or "").strip()
    if not _NUMBER_RE.fullmatch(cleaned):
        return None
    return float(cleaned)


def parse_price(value: str) -> Optional[float]:
    """Purpose: Parse a price cell written with separators and currency marks.
    Inputs/Outputs: Input is the raw cell text; output is a float or None when unparseable.
    Side Effects / State: None.
    Dependencies: PRICE_NOISE_TOKENS from rules, parse_number.
    Failure Modes: Returns None for empty or non-numeric text; callers skip the row.
    If Removed: Ingestion cannot read prices such as "1 500 so'm" or "150$".
    Testing Notes: "150", "150$", "1,500", "1 500", "150 so'm" parse to plain numbers.
    """
    # Case-fold, strip separators and currency tokens in order, then parse.
    cleaned = (value or "").strip().lower()
    if not cleaned:
        return None
    for token in PRICE_NOISE_TOKENS:
        cleaned = cleaned.replace(token, "")
    return parse_number(cleaned)


def cell_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_rows(source: Union[bytes, str, Path]) -> List[Row]:
    """Purpose: Read the first worksheet into a grid of strings.
    Inputs/Outputs: Input is workbook bytes or a path; output is a list of rows.
    Side Effects / State: Opens the workbook read-only.
    Dependencies: openpyxl.load_workbook.
    Failure Modes: Unreadable files raise IngestionError; trailing empty cells are trimmed.
    If Removed: Uploaded workbooks cannot be parsed.
    Testing Notes: Build a workbook in memory and check empty cells become "".
    """
    # Load values (not formulas) and trim each row's empty tail.
    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else str(source)
    try:
        workbook = load_workbook(filename=handle, read_only=True, data_only=True)
    except Exception as exc:
        raise IngestionError(f"cannot open workbook: {exc}") from exc
    try:
        if not workbook.worksheets:
            raise IngestionError("workbook has no sheets")
        sheet = workbook.worksheets[0]
        rows: List[Row] = []
        for raw in sheet.iter_rows(values_only=True):
            row = [cell_text(value) for value in raw]
            while row and not row[-1]:
                row.pop()
            rows.append(row)
    finally:
        workbook.close()
    while rows and not rows[-1]:
        rows.pop()
    return rows


def is_empty_row(row: Sequence[str]) -> bool:
    return all(not cell.strip() for cell in row)


def map_header(header: Sequence[str]) -> ColumnMap:
    """Purpose: Assign semantic roles to header cells by keyword containment.
    Inputs/Outputs: Input is the header row; output is a ColumnMap.
    Side Effects / State: None.
    Dependencies: classify_header (ordered COLUMN_RULES).
    Failure Modes: Unrecognized headers become spec columns; missing name/price fall
        back to columns 0 and 1.
    If Removed: Headered sheets lose column detection.
    Testing Notes: ["Nomi", "Narx", "Rang"] -> name 0, price 1, spec "rang".
    """
    # A later cell with the same role overrides an earlier one.
    roles: Dict[str, int] = {}
    spec_columns: Dict[str, int] = {}
    for index, cell in enumerate(header):
        role = classify_header(cell)
        if role:
            roles[role] = index
        elif cell.strip():
            spec_columns[cell.strip().lower()] = index
    if "name" not in roles and header:
        roles["name"] = 0
    if "price" not in roles and len(header) > 1:
        roles["price"] = 1
    return ColumnMap(
        name=roles.get("name", 0),
        price=roles.get("price"),
        category=roles.get("category"),
        description=roles.get("description"),
        stock=roles.get("stock"),
        spec_columns=spec_columns,
    )


def detect_price_column(rows: Sequence[Row], start_row: int) -> Optional[int]:
    window = rows[start_row : start_row + PRICE_SCAN_ROWS]
    width = max((len(row) for row in window), default=0)
    best_column: Optional[int] = None
    best_hits = 0
    for column in range(width):
        hits = 0
        for row in window:
            if column < len(row) and row[column].strip() and parse_price(row[column]) is not None:
                hits += 1
        if hits > best_hits:
            best_hits = hits
            best_column = column
    return best_column if best_hits >= PRICE_SCAN_MIN_HITS else None


def detect_table_layout(rows: Sequence[Row], start_row: int, price_column: int) -> bool:
    """Purpose: Decide between one-record-per-row and side-by-side layouts.
    Inputs/Outputs: Inputs are rows, data start and price column; True means table layout.
    Side Effects / State: None.
    Dependencies: parse_price, LAYOUT_SAMPLE_ROWS, TABLE_LAYOUT_RATIO.
    Failure Modes: With nothing to sample the table layout is assumed.
    If Removed: Side-by-side price lists are misread as tables and mostly rejected.
    Testing Notes: Rows like [name, price, name, price] with text in column 1 -> False.
    """
    # Sample up to five non-empty rows wide enough to hold the price column.
    checked = 0
    valid = 0
    for row in rows[start_row:]:
        if checked >= LAYOUT_SAMPLE_ROWS:
            break
        if len(row) <= price_column or is_empty_row(row):
            continue
        checked += 1
        if parse_price(row[price_column]) is not None:
            valid += 1
    if checked == 0:
        return True
    return valid / checked > TABLE_LAYOUT_RATIO


def detect_layout(rows: Sequence[Row]) -> SheetLayout:
    """Purpose: Infer header presence, column roles and row layout for a sheet.
    Inputs/Outputs: Input is the non-empty row grid; output is a SheetLayout.
    Side Effects / State: Logs the decisions.
    Dependencies: parse_number, map_header, detect_price_column, detect_table_layout.
    Failure Modes: None; every sheet gets some layout.
    If Removed: parse_rows cannot decide where data starts or which column is which.
    Testing Notes: Row 0 with a numeric second cell means headerless.
    """
    # A numeric second cell in row 0 means the data starts immediately.
    first = rows[0]
    has_header = not (len(first) > 1 and parse_number(first[1].replace(",", "")) is not None)
    start_row = 1 if has_header else 0

    if has_header:
        columns = map_header(first)
    else:
        columns = ColumnMap(name=0, price=1, category=2 if len(first) > 2 else None)

    if columns.price is None:
        guessed = detect_price_column(rows, start_row)
        if guessed is not None:
            columns.price = guessed
        else:
            columns.price = 1 if len(first) > 1 else 0
        logger.info("price column guessed column=%d", columns.price)

    table = True if has_header else detect_table_layout(rows, start_row, columns.price)
    logger.info(
        "sheet layout header=%s start_row=%d name=%d price=%d table=%s",
        has_header,
        start_row,
        columns.name,
        columns.price,
        table,
    )
    return SheetLayout(has_header=has_header, start_row=start_row, columns=columns, table=table)


def _cell(row: Row, index: Optional[int]) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def _table_product(row: Row, layout: SheetLayout, header: Row, now: float) -> Optional[Product]:
    columns = layout.columns
    if len(row) <= columns.name or len(row) <= columns.price:
        return None
    name = _cell(row, columns.name)
    price_text = _cell(row, columns.price)
    if not name or not price_text:
        return None
    price = parse_price(price_text)
    if price is None or price <= 0 or len(name) < MIN_NAME_LENGTH:
        return None

    category = _cell(row, columns.category) or detect_category(name)
    description = _cell(row, columns.description)
    stock = 0
    stock_value = parse_price(_cell(row, columns.stock)) if _cell(row, columns.stock) else None
    if stock_value is not None and stock_value > 0:
        stock = int(stock_value)

    specs: Dict[str, str] = {}
    if layout.has_header:
        used = columns.used_columns()
        for index, raw in enumerate(row):
            value = raw.strip()
            if index in used or not value:
                continue
            key = header[index].strip() if index < len(header) and header[index].strip() else f"Extra_{index}"
            specs[key] = value
    else:
        for index in range(2, len(row)):
            value = row[index].strip()
            if value:
                specs[f"Extra_{index}"] = value

    return Product(
        name=name,
        price=price,
        category=category,
        description=description,
        stock=stock,
        specs=specs,
        created_at=now,
        updated_at=now,
    )


def _side_by_side_products(row: Row, now: float) -> List[Product]:
    products: List[Product] = []
    for column in range(0, len(row) - 1, 2):
        name = row[column].strip()
        price = parse_price(row[column + 1])
        if price is None or price <= 0 or len(name) < MIN_NAME_LENGTH:
            continue
        products.append(
            Product(name=name, price=price, category=detect_category(name), created_at=now, updated_at=now)
        )
    return products


def parse_rows(rows: Sequence[Row]) -> List[Product]:
    """Purpose: Convert a string grid into validated products.
    Inputs/Outputs: Input is the first sheet as rows of strings; output is a product list.
    Side Effects / State: Logs skipped rows at debug level.
    Dependencies: detect_layout, _table_product, _side_by_side_products.
    Failure Modes: Raises IngestionError for an empty sheet or when every row is rejected.
    If Removed: Catalog upload has no parser.
    Testing Notes: A 3-row sheet with one bad price yields exactly 2 products.
    """
    # Detect structure once, then parse rows under the chosen layout.
    if not rows or all(is_empty_row(row) for row in rows):
        raise IngestionError("workbook is empty")
    rows = [list(row) for row in rows]
    layout = detect_layout(rows)
    header = rows[0] if layout.has_header else []
    now = time.time()

    products: List[Product] = []
    for index in range(layout.start_row, len(rows)):
        row = rows[index]
        if not row or is_empty_row(row):
            continue
        if layout.table:
            product = _table_product(row, layout, header, now)
            if product is None:
                logger.debug("row=%d skipped", index)
                continue
            products.append(product)
        else:
            products.extend(_side_by_side_products(row, now))

    if not products:
        scanned = len(rows) - layout.start_row
        raise IngestionError(f"no valid products found ({scanned} rows scanned, all were invalid)")
    logger.info("ingested products=%d rows=%d table=%s", len(products), len(rows), layout.table)
    return products


def parse_workbook(source: Union[bytes, str, Path], filename: str = "") -> List[Product]:
    """Read a workbook (bytes or path) and return its products."""
    rows = read_rows(source)
    if not filename and not isinstance(source, (bytes, bytearray)):
        filename = Path(source).name
    logger.info("workbook file=%s rows=%d", filename, len(rows))
    return parse_rows(rows)
