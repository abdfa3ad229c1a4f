import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.feature_flags import FeatureFlagsManager
from services.obs.metrics import ImportMetricsCollector
from services.product_resolver import ProductResolver
from services.review_importer import (
    ImportRejected,
    ReviewImporter,
    build_result_message,
    validate_upload,
)

SHOP = "demo.myshopify.com"

TEMPLATE_CSV = (
    "product_url,rating,review_text,customer_name,email,picture_urls,reply,date\n"
    "https://shop.com/products/red-shirt,5,Love it!,Jane,jane@x.com,http://img1.jpg,Thanks!,2023-10-25\n"
    "https://shop.com/products/blue-hat,4,Warm enough,Sam,,,,2023-10-26\n"
    "missing-product,3,It is fine,Lee,,,,\n"
    ",,,,,,,\n"
    ",oops,No rating here,Kim,,,,\n"
)


class StubResolver(ProductResolver):
    def __init__(self, product_map=None, error=None):
        self.product_map = product_map or {}
        self.error = error
        self.calls = []

    async def resolve(self, identifiers):
        self.calls.append([r.value for r in identifiers])
        if self.error:
            raise self.error
        return dict(self.product_map)


def make_importer(store, flags=None, metrics=None):
    return ReviewImporter(
        storage=store,
        metrics=metrics or ImportMetricsCollector(),
        flags=flags or FeatureFlagsManager(),
    )


def test_validate_upload_rejections():
    with pytest.raises(ImportRejected, match="Only CSV"):
        validate_upload("reviews.xlsx", b"a,b")
    with pytest.raises(ImportRejected, match="Empty"):
        validate_upload("reviews.csv", b"")
    with pytest.raises(ImportRejected) as excinfo:
        validate_upload("reviews.csv", b"x" * 11, max_bytes=10)
    assert excinfo.value.status_code == 413
    validate_upload("REVIEWS.CSV", b"rating\n5")


def test_result_messages():
    assert build_result_message(3, 0) == "Successfully imported 3 reviews."
    assert build_result_message(3, 2) == "Imported 3. Skipped 2."


def test_import_resolves_once_and_records_upload(memory_storage):
    resolver = StubResolver({"red-shirt": "1", "blue-hat": "gid://shopify/Product/2"})
    metrics = ImportMetricsCollector()

    async def scenario():
        async with memory_storage() as store:
            importer = make_importer(store, metrics=metrics)
            result = await importer.import_csv(TEMPLATE_CSV.encode(), "reviews.csv", SHOP, resolver=resolver)
            upload = await store.get_csv_upload(result["uploadId"])
            reviews = await store.get_reviews_for_export(SHOP)
            return result, upload, reviews

    result, upload, reviews = asyncio.run(scenario())

    assert result["success"] is True
    assert result["count"] == 4
    assert result["skipped"] == 0
    assert result["unresolved"] == 1
    assert result["message"] == "Successfully imported 4 reviews."
    assert result["debug"]["firstRecord"]["body"] == "Love it!"
    assert resolver.calls == [["red-shirt", "blue-hat", "missing-product"]]

    assert upload.status == "completed"
    assert upload.total_rows == 4
    assert upload.processed_rows == 4
    assert upload.skipped_rows == 0
    assert upload.import_metrics["write"]["complex_written"] == 1

    by_body = {r.body: r for r in reviews}
    assert by_body["Love it!"].product_id == "gid://shopify/Product/1"
    assert by_body["Warm enough"].product_id == "gid://shopify/Product/2"
    assert by_body["It is fine"].product_id is None
    assert by_body["No rating here"].rating == 5
    assert all(r.csv_upload_id == result["uploadId"] for r in reviews)
    assert metrics.counters["reviews_imported"] == 4


def test_skip_policy_flag_is_per_shop(memory_storage):
    flags = FeatureFlagsManager()
    flags.set_flag("import.on_invalid_rating", "skip", shop_id=SHOP)

    async def scenario():
        async with memory_storage() as store:
            importer = make_importer(store, flags=flags)
            strict = await importer.import_csv(TEMPLATE_CSV.encode(), "a.csv", SHOP, resolver=StubResolver())
            lenient = await importer.import_csv(TEMPLATE_CSV.encode(), "a.csv", "other.myshopify.com", resolver=StubResolver())
            return strict, lenient

    strict, lenient = asyncio.run(scenario())

    assert (strict["count"], strict["skipped"]) == (3, 1)
    assert strict["message"] == "Imported 3. Skipped 1."
    assert (lenient["count"], lenient["skipped"]) == (4, 0)


def test_resolver_failure_leaves_products_unresolved(memory_storage):
    async def scenario():
        async with memory_storage() as store:
            importer = make_importer(store)
            result = await importer.import_csv(
                TEMPLATE_CSV.encode(), "a.csv", SHOP, resolver=StubResolver(error=RuntimeError("down")),
            )
            return result, await store.get_reviews_for_export(SHOP)

    result, reviews = asyncio.run(scenario())

    assert result["success"] is True
    assert result["unresolved"] == 3
    assert all(r.product_id is None for r in reviews)


def test_missing_shop_and_bad_file_are_rejected_without_upload(memory_storage):
    async def scenario():
        async with memory_storage() as store:
            importer = make_importer(store)
            with pytest.raises(ImportRejected, match="shopId"):
                await importer.import_csv(b"rating\n5", "a.csv", "  ")
            with pytest.raises(ImportRejected):
                await importer.import_csv(b"", "a.csv", SHOP)
            return await store.get_recent_uploads(SHOP)

    assert asyncio.run(scenario()) == []


def test_write_failure_marks_upload_failed(memory_storage):
    class ExplodingStorage:
        def __init__(self, inner):
            self.inner = inner

        def __getattr__(self, name):
            return getattr(self.inner, name)

        async def bulk_insert_reviews(self, session, rows):
            raise RuntimeError("disk full")

    async def scenario():
        async with memory_storage() as store:
            importer = make_importer(ExplodingStorage(store))
            result = await importer.import_csv(b"rating,body\n5,Nice\n4,Good\n", "a.csv", SHOP, resolver=StubResolver())
            upload = await store.get_csv_upload(result["uploadId"])
            return result, upload, await store.count_reviews(SHOP)

    result, upload, count = asyncio.run(scenario())

    assert result["success"] is False
    assert result["message"].startswith("Import failed")
    assert "disk full" not in result["message"]
    assert result["count"] == 0
    assert upload.status == "failed"
    assert upload.total_rows == 2
    assert count == 0


def test_header_only_file_imports_nothing(memory_storage):
    async def scenario():
        async with memory_storage() as store:
            return await make_importer(store).import_csv(b"rating,body\n", "a.csv", SHOP, resolver=StubResolver())

    result = asyncio.run(scenario())

    assert result["success"] is True
    assert result["count"] == 0
    assert result["skipped"] == 0
    assert "debug" not in result
