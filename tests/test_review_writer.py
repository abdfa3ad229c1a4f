import asyncio
import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.review_normalizer import NormalizedReview, ProductReference, ProductRefKind
from services.review_writer import (
    ReviewWriteError,
    ReviewWriter,
    build_review_row,
    chunked,
    partition_reviews,
)

CREATED = datetime(2023, 10, 25)


def make_review(i, rating=5, media=(), reply=None, ref=None):
    return NormalizedReview(
        row_index=i,
        rating=rating,
        body=f"Review {i}",
        customer_name="Tester",
        created_at=CREATED,
        product_reference=ref or ProductReference.absent(),
        media_urls=tuple(media),
        reply_body=reply,
    )


def test_partition_routes_media_and_replies_to_complex():
    plain = make_review(1)
    with_media = make_review(2, media=["http://img.jpg"])
    with_reply = make_review(3, reply="Thanks!")

    simple, complex_ = partition_reviews([plain, with_media, with_reply])

    assert simple == [plain]
    assert complex_ == [with_media, with_reply]


def test_chunked_splits_into_fixed_size_batches():
    assert [len(c) for c in chunked(list(range(120)), 50)] == [50, 50, 20]
    assert list(chunked([], 50)) == []
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_review_row_never_stores_unresolved_identifiers():
    unresolved = make_review(1, ref=ProductReference(ProductRefKind.UNRESOLVED, "red-shirt"))
    resolved = make_review(2, rating=2, ref=ProductReference(ProductRefKind.ID, "gid://shopify/Product/9"))

    assert build_review_row(unresolved, "shop.myshopify.com")["product_id"] is None
    row = build_review_row(resolved, "shop.myshopify.com", "upload-1")
    assert row["product_id"] == "gid://shopify/Product/9"
    assert row["sentiment"] == "negative"
    assert row["verified"] is True
    assert row["csv_upload_id"] == "upload-1"


def test_write_bulk_and_complex_paths(memory_storage):
    reviews = [make_review(i) for i in range(120)]
    reviews.append(make_review(500, media=["http://a.jpg", "http://b.jpg"], reply="Thanks!"))

    async def scenario():
        async with memory_storage() as store:
            writer = ReviewWriter(store, chunk_size=50, atomic=True)
            outcome = await writer.write("shop.myshopify.com", reviews)
            exported = await store.get_reviews_for_export("shop.myshopify.com")
            return outcome, exported, await store.count_reviews("shop.myshopify.com")

    outcome, exported, count = asyncio.run(scenario())

    assert outcome.chunks == 3
    assert outcome.bulk_written == 120
    assert outcome.complex_written == 1
    assert count == 121
    complex_row = next(r for r in exported if r.body == "Review 500")
    assert [m.url for m in sorted(complex_row.media, key=lambda m: m.position)] == ["http://a.jpg", "http://b.jpg"]
    assert all(m.type == "image" for m in complex_row.media)
    assert [r.body for r in complex_row.replies] == ["Thanks!"]


def test_atomic_write_rolls_back_everything(memory_storage):
    # Rating outside 1-5 violates the table constraint on the last insert
    reviews = [make_review(i) for i in range(60)] + [make_review(99, rating=9, reply="x")]

    async def scenario():
        async with memory_storage() as store:
            writer = ReviewWriter(store, chunk_size=50, atomic=True)
            with pytest.raises(ReviewWriteError) as excinfo:
                await writer.write("shop.myshopify.com", reviews)
            return excinfo.value, await store.count_reviews("shop.myshopify.com")

    error, count = asyncio.run(scenario())

    assert error.written == 0
    assert count == 0


def test_non_atomic_write_keeps_committed_chunks(memory_storage):
    reviews = [make_review(i) for i in range(60)] + [make_review(99, rating=9, reply="x")]

    async def scenario():
        async with memory_storage() as store:
            writer = ReviewWriter(store, chunk_size=50, atomic=False)
            with pytest.raises(ReviewWriteError) as excinfo:
                await writer.write("shop.myshopify.com", reviews)
            return excinfo.value, await store.count_reviews("shop.myshopify.com")

    error, count = asyncio.run(scenario())

    assert error.written == 60
    assert count == 60


def test_empty_write_is_a_no_op(memory_storage):
    async def scenario():
        async with memory_storage() as store:
            return await ReviewWriter(store).write("shop.myshopify.com", [])

    outcome = asyncio.run(scenario())
    assert outcome.written == 0
    assert outcome.chunks == 0
