from __future__ import annotations

"""In-memory catalog store with atomic whole-catalog replacement.

Readers take a snapshot of the current Catalog; writers build a new Catalog and
swap the reference under the lock, so a reader never sees a mix of versions.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .matcher import DEFAULT_POLICY, MatchPolicy, search
from .rules import OTHER_CATEGORY

logger = logging.getLogger("shopbot.catalog")


@dataclass(frozen=True)
class Product:
    """Sellable catalog record; name and a positive price are mandatory."""
    name: str
    price: float
    category: str = OTHER_CATEGORY
    description: str = ""
    stock: int = 0
    specs: Dict[str, str] = field(default_factory=dict, hash=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Catalog:
    """One immutable catalog version with its source metadata."""
    products: Tuple[Product, ...] = ()
    source: str = ""
    updated_at: Optional[float] = None

    def __len__(self) -> int:
        return len(self.products)


@dataclass
class CatalogInfo:
    """Summary of the current catalog for admin views."""
    source: str
    updated_at: Optional[float]
    total: int
    categories: Dict[str, int]


class CatalogStore:
    def __init__(self, policy: Optional[MatchPolicy] = None) -> None:
        """Purpose: Hold the current catalog version and serve read snapshots.
        Inputs/Outputs: Optional MatchPolicy used by search(); no return value.
        Side Effects / State: Starts with an empty catalog.
        Dependencies: threading.RLock for the swap; matcher.search for queries.
        Failure Modes: None at init.
        If Removed: Ingested products have nowhere to live and search has no data.
        Testing Notes: Replace from several threads and verify snapshots stay whole.
        """
        # Empty catalog until the first upload.
        self._lock = threading.RLock()
        self._catalog = Catalog()
        self._policy = policy or DEFAULT_POLICY

    def snapshot(self) -> Catalog:
        with self._lock:
            return self._catalog

    def replace(self, products: Sequence[Product], source: str) -> Catalog:
        """Purpose: Atomically swap in a new catalog version.
        Inputs/Outputs: Inputs are products and the source filename; returns the new Catalog.
        Side Effects / State: Replaces the catalog reference under the lock.
        Dependencies: Catalog dataclass.
        Failure Modes: None; validation happens during ingestion, before this call.
        If Removed: Uploads cannot take effect.
        Testing Notes: Snapshots taken before the swap keep the old products.
        """
        # Build outside the lock, swap the reference inside it.
        catalog = Catalog(products=tuple(products), source=source, updated_at=time.time())
        with self._lock:
            self._catalog = catalog
        logger.info("catalog replaced source=%s products=%d", source, len(catalog))
        return catalog

    def clear(self) -> None:
        with self._lock:
            self._catalog = Catalog()
        logger.info("catalog cleared")

    def all(self) -> List[Product]:
        return list(self.snapshot().products)

    def by_category(self, category: str) -> List[Product]:
        wanted = (category or "").strip().lower()
        return [product for product in self.snapshot().products if product.category.lower() == wanted]

    def search(self, query: str) -> List[Product]:
        return search(query, self.snapshot().products, self._policy)

    def info(self) -> CatalogInfo:
        catalog = self.snapshot()
        categories: Dict[str, int] = {}
        for product in catalog.products:
            categories[product.category] = categories.get(product.category, 0) + 1
        return CatalogInfo(
            source=catalog.source,
            updated_at=catalog.updated_at,
            total=len(catalog),
            categories=categories,
        )

    def as_text(self) -> str:
        """Purpose: Render the catalog grouped by category for prompts and /products.
        Inputs/Outputs: No inputs; returns a multi-line string, empty for an empty catalog.
        Side Effects / State: None.
        Dependencies: format_catalog_text.
        Failure Modes: None.
        If Removed: The backend prompt loses its product context.
        Testing Notes: Categories appear in first-seen order with numbered lines.
        """
        # Delegate to the pure formatter on a snapshot.
        return format_catalog_text(self.snapshot().products)


def format_catalog_text(products: Sequence[Product]) -> str:
    groups: Dict[str, List[Product]] = {}
    for product in products:
        groups.setdefault(product.category or OTHER_CATEGORY, []).append(product)

    lines: List[str] = []
    for category, items in groups.items():
        lines.append(f"{category}:")
        for index, product in enumerate(items, start=1):
            line = f"  {index}. {product.name} - ${product.price:.2f}"
            if product.stock > 0:
                line += f" (in stock: {product.stock})"
            lines.append(line)
            if product.description:
                lines.append(f"     {product.description}")
            for key, value in product.specs.items():
                lines.append(f"     - {key}: {value}")
        lines.append("")
    return "\n".join(lines).strip()
