import threading

from conftest import SAMPLE_PRODUCTS
from shopbot.catalog_store import CatalogStore, Product, format_catalog_text


def test_empty_store():
    store = CatalogStore()
    assert store.all() == []
    assert store.as_text() == ""
    info = store.info()
    assert info.total == 0
    assert info.updated_at is None


def test_replace_swaps_whole_catalog():
    store = CatalogStore()
    store.replace(SAMPLE_PRODUCTS, source="first.xlsx")
    before = store.snapshot()

    store.replace([Product(name="Office Chair", price=80, category="Chair")], source="second.xlsx")

    assert len(before) == len(SAMPLE_PRODUCTS)
    assert [product.name for product in store.all()] == ["Office Chair"]
    info = store.info()
    assert info.source == "second.xlsx"
    assert info.categories == {"Chair": 1}


def test_by_category_is_case_insensitive():
    store = CatalogStore()
    store.replace(SAMPLE_PRODUCTS, source="catalog.xlsx")
    assert len(store.by_category("gpu")) == 2
    assert store.by_category("missing") == []


def test_clear_empties_catalog():
    store = CatalogStore()
    store.replace(SAMPLE_PRODUCTS, source="catalog.xlsx")
    store.clear()
    assert store.all() == []
    assert store.info().source == ""


def test_format_catalog_text_groups_by_category():
    text = format_catalog_text(
        [
            Product(name="RTX 3060", price=320, category="GPU", stock=3),
            Product(name="Ryzen 5", price=210, category="CPU", description="6 cores"),
            Product(name="RTX 4090", price=1800, category="GPU", specs={"Memory": "24GB"}),
        ]
    )
    lines = text.splitlines()
    assert lines[0] == "GPU:"
    assert lines[1] == "  1. RTX 3060 - $320.00 (in stock: 3)"
    assert lines[2] == "  2. RTX 4090 - $1800.00"
    assert lines[3] == "     - Memory: 24GB"
    assert "CPU:" in lines
    assert "     6 cores" in lines


def test_concurrent_replace_never_mixes_versions():
    store = CatalogStore()
    first = [Product(name=f"A item {index}", price=10, category="A") for index in range(50)]
    second = [Product(name=f"B item {index}", price=10, category="B") for index in range(70)]
    seen = []

    def writer():
        for _ in range(50):
            store.replace(first, source="a.xlsx")
            store.replace(second, source="b.xlsx")

    def reader():
        for _ in range(200):
            catalog = store.snapshot()
            seen.append({product.category for product in catalog.products})

    threads = [threading.Thread(target=writer), threading.Thread(target=reader), threading.Thread(target=reader)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert all(len(categories) <= 1 for categories in seen)


def test_products_are_hashable_despite_specs():
    gpu = Product(name="RTX 3060", price=320, specs={"VRAM": "12GB"}, id="p1", created_at=1.0, updated_at=1.0)
    twin = Product(name="RTX 3060", price=320, specs={"VRAM": "12GB"}, id="p1", created_at=1.0, updated_at=1.0)
    assert hash(gpu) == hash(twin)
    assert {gpu, twin} == {gpu}
    assert gpu != Product(name="RTX 3060", price=320, specs={"VRAM": "8GB"}, id="p1", created_at=1.0, updated_at=1.0)
