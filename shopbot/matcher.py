from __future__ import annotations

"""Product matching engine.

Two tiers: an exact/substring pass that keeps every hit in catalog order, and a
scored fallback consulted only when the first pass finds nothing. An empty
result is a normal outcome; the engine never pads results with unrelated items.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Sequence, Tuple

from .rules import is_gpu_product, is_gpu_query
from .utils import (
    compact_tokens,
    extract_digits,
    extract_number,
    filter_stop_tokens,
    longest_common_run,
    normalize_compact,
    normalize_tight,
    tokenize,
)

if TYPE_CHECKING:
    from .catalog_store import Product

logger = logging.getLogger("shopbot.matcher")


@dataclass(frozen=True)
class MatchPolicy:
    """Tunable fallback-scoring constants."""
    qualify_score: int = 5
    keep_score: int = 8
    numeric_window: int = 200
    fallback_cap: int = 6
    name_token_weight: int = 4
    context_token_weight: int = 2
    numeric_weight: int = 2
    min_common_run: int = 3


DEFAULT_POLICY = MatchPolicy()


@dataclass(frozen=True)
class QueryForms:
    """Normalized views of one query, computed once per search."""
    lowered: str
    tight: str
    compact: str
    tokens: Tuple[str, ...]
    compact_tokens: Tuple[str, ...]
    digits: str
    gpu: bool

    @classmethod
    def build(cls, query: str) -> "QueryForms":
        lowered = (query or "").strip().lower()
        tokens = filter_stop_tokens(tokenize(lowered))
        return cls(
            lowered=lowered,
            tight=normalize_tight(lowered),
            compact=normalize_compact(lowered),
            tokens=tuple(tokens),
            compact_tokens=tuple(compact_tokens(tokens)),
            digits=extract_digits(lowered),
            gpu=is_gpu_query(lowered),
        )


@dataclass(frozen=True)
class ProductForms:
    """Normalized views of one product's searchable fields."""
    name: str
    category: str
    description: str
    name_tight: str
    name_compact: str
    category_compact: str
    description_compact: str

    @classmethod
    def build(cls, product: "Product") -> "ProductForms":
        return cls(
            name=product.name.lower(),
            category=product.category.lower(),
            description=product.description.lower(),
            name_tight=normalize_tight(product.name),
            name_compact=normalize_compact(product.name),
            category_compact=normalize_compact(product.category),
            description_compact=normalize_compact(product.description),
        )


def _any_token_in(tokens: Sequence[str], fields: Sequence[str]) -> bool:
    return any(token in field for token in tokens for field in fields)


def is_primary_match(query: QueryForms, product: "Product", forms: ProductForms) -> bool:
    """Purpose: Exact/substring tier test for one product.
    Inputs/Outputs: Inputs are query forms, the product and its forms; output is a bool.
    Side Effects / State: None.
    Dependencies: Normalizer forms computed by QueryForms/ProductForms.
    Failure Modes: None; empty query forms simply never match.
    If Removed: Search degrades to fuzzy scoring only and loses the substring guarantee.
    Testing Notes: Any case-insensitive substring (len >= 2) of a name must match.
    """
    # Raw containment, then tight/compact containment, token hits, digits, and spec values.
    q = query.lowered
    if q in forms.name or q in forms.category or q in forms.description:
        return True
    if query.tight and query.tight in forms.name_tight:
        return True
    if query.compact and query.compact in forms.name_compact:
        return True
    if _any_token_in(
        query.tokens,
        (forms.name, forms.category, forms.description, forms.name_compact, forms.name_tight),
    ):
        return True
    if _any_token_in(
        query.compact_tokens,
        (forms.name_tight, forms.name_compact, forms.category_compact, forms.description_compact),
    ):
        return True
    if query.digits:
        name_digits = extract_digits(forms.name_tight)
        if name_digits and query.digits in name_digits:
            return True
    return any(q in str(value).lower() for value in product.specs.values())


def similarity_score(query: QueryForms, forms: ProductForms, policy: MatchPolicy = DEFAULT_POLICY) -> int:
    """Purpose: Fallback similarity score between a query and one product.
    Inputs/Outputs: Inputs are query/product forms and the policy; output is an int score.
    Side Effects / State: None.
    Dependencies: extract_number and longest_common_run from utils.
    Failure Modes: Zero tokens leave only the common-run term.
    If Removed: Near-miss queries ("rtx 4080" vs "RTX4090") return nothing.
    Testing Notes: Token in name +4, in category/description +2, numeric proximity +2.
    """
    # Per-token weights, first hit wins for each token.
    score = 0
    name_number = extract_number(forms.name_tight)
    for token in query.compact_tokens:
        if token in forms.name_tight or token in forms.name_compact:
            score += policy.name_token_weight
            continue
        if token in forms.category_compact or token in forms.description_compact:
            score += policy.context_token_weight
            continue
        token_number = extract_number(token)
        if token_number > 0 and name_number > 0 and abs(token_number - name_number) <= policy.numeric_window:
            score += policy.numeric_weight

    run = longest_common_run(query.compact, forms.name_compact)
    if run >= policy.min_common_run:
        score += run
    return score


def search(query: str, products: Sequence["Product"], policy: MatchPolicy = DEFAULT_POLICY) -> List["Product"]:
    """Purpose: Find catalog products relevant to a free-text query.
    Inputs/Outputs: Inputs are the query, a product snapshot and the policy; output is an
        ordered list (primary hits in catalog order, or scored fallback hits).
    Side Effects / State: None; reads the snapshot only.
    Dependencies: QueryForms, ProductForms, is_primary_match, similarity_score, is_gpu_product.
    Failure Modes: Blank queries return []; no match returns [] (never filler).
    If Removed: Shop mode and catalog search endpoints have no engine.
    Testing Notes: Cover blank query, substring guarantee, fallback cap and GPU narrowing.
    """
    # Primary pass collects hits; candidates are scored for the fallback pass.
    forms_query = QueryForms.build(query)
    if not forms_query.lowered:
        return []

    results: List["Product"] = []
    candidates: List[Tuple[int, "Product"]] = []
    for product in products:
        forms = ProductForms.build(product)
        if is_primary_match(forms_query, product, forms):
            results.append(product)
            continue
        score = similarity_score(forms_query, forms, policy)
        if score >= policy.qualify_score:
            candidates.append((score, product))

    if not results and candidates:
        candidates.sort(key=lambda pair: (-pair[0], pair[1].price))
        results = [product for score, product in candidates if score >= policy.keep_score][: policy.fallback_cap]
        logger.debug("query=%s fallback candidates=%d kept=%d", forms_query.lowered, len(candidates), len(results))

    if forms_query.gpu and results:
        narrowed = [product for product in results if is_gpu_product(product.name, product.category)]
        if narrowed:
            results = narrowed

    logger.info("query=%s results=%d gpu=%s", forms_query.lowered, len(results), forms_query.gpu)
    return results
