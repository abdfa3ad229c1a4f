"""
Persistence Writer
Splits normalized reviews into bulk-insertable and per-record inserts.

Simple reviews (no media, no reply) go through multi-row inserts in fixed-size
chunks. Complex reviews are inserted one at a time together with their child rows.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import logging
import time

from services.review_normalizer import NormalizedReview
from settings import BULK_INSERT_CHUNK_SIZE, IMPORT_ATOMIC_WRITES

logger = logging.getLogger(__name__)

REVIEW_STATUS_PENDING = "pending"


class ReviewWriteError(Exception):
    """Write phase failed; `written` counts rows that are durably stored."""

    def __init__(self, message: str, written: int = 0):
        super().__init__(message)
        self.written = written


@dataclass
class WriteOutcome:
    bulk_written: int = 0
    complex_written: int = 0
    chunks: int = 0
    duration_ms: int = 0

    @property
    def written(self) -> int:
        return self.bulk_written + self.complex_written

    def as_dict(self) -> Dict[str, int]:
        return {
            "written": self.written,
            "bulk_written": self.bulk_written,
            "complex_written": self.complex_written,
            "chunks": self.chunks,
            "duration_ms": self.duration_ms,
        }


def partition_reviews(
    reviews: Sequence[NormalizedReview],
) -> Tuple[List[NormalizedReview], List[NormalizedReview]]:
    simple: List[NormalizedReview] = []
    complex_: List[NormalizedReview] = []
    for review in reviews:
        (complex_ if review.is_complex else simple).append(review)
    return simple, complex_


def chunked(items: Sequence[Any], size: int) -> Iterator[List[Any]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def build_review_row(
    review: NormalizedReview,
    shop_id: str,
    csv_upload_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Storage row for a review. Only canonical product ids are ever written."""
    return {
        "shop_id": shop_id,
        "csv_upload_id": csv_upload_id,
        "product_id": review.product_reference.stored_product_id,
        "rating": review.rating,
        "title": review.title,
        "body": review.body,
        "customer_name": review.customer_name,
        "customer_email": review.customer_email,
        "sentiment": review.sentiment_bucket,
        "verified": True,
        "status": REVIEW_STATUS_PENDING,
        "created_at": review.created_at,
        "updated_at": review.created_at,
    }


class ReviewWriter:
    def __init__(self, storage, chunk_size: int = BULK_INSERT_CHUNK_SIZE, atomic: bool = IMPORT_ATOMIC_WRITES):
        self.storage = storage
        self.chunk_size = chunk_size
        self.atomic = atomic

    async def write(
        self,
        shop_id: str,
        reviews: Sequence[NormalizedReview],
        csv_upload_id: Optional[str] = None,
    ) -> WriteOutcome:
        started = time.time()
        simple, complex_ = partition_reviews(reviews)
        outcome = WriteOutcome()
        if not reviews:
            return outcome

        logger.info(
            "Writing reviews shop=%s upload_id=%s simple=%d complex=%d atomic=%s",
            shop_id, csv_upload_id, len(simple), len(complex_), self.atomic,
        )

        if self.atomic:
            try:
                async with self.storage.get_session() as session:
                    async with session.begin():
                        await self._write_all(session, shop_id, csv_upload_id, simple, complex_, outcome)
            except Exception as e:
                logger.error(
                    "Review write rolled back shop=%s upload_id=%s: %s: %s",
                    shop_id, csv_upload_id, type(e).__name__, e,
                )
                raise ReviewWriteError(str(e), written=0) from e
        else:
            await self._write_partial(shop_id, csv_upload_id, simple, complex_, outcome)

        outcome.duration_ms = int((time.time() - started) * 1000)
        logger.info(
            "Reviews written shop=%s upload_id=%s written=%d chunks=%d duration_ms=%d",
            shop_id, csv_upload_id, outcome.written, outcome.chunks, outcome.duration_ms,
        )
        return outcome

    async def _write_all(self, session, shop_id, csv_upload_id, simple, complex_, outcome: WriteOutcome) -> None:
        for batch in chunked(simple, self.chunk_size):
            rows = [build_review_row(r, shop_id, csv_upload_id) for r in batch]
            outcome.bulk_written += await self.storage.bulk_insert_reviews(session, rows)
            outcome.chunks += 1
        for review in complex_:
            await self.storage.insert_review_with_relations(
                session,
                build_review_row(review, shop_id, csv_upload_id),
                media=review.media,
                reply=review.reply_body,
            )
            outcome.complex_written += 1

    async def _write_partial(self, shop_id, csv_upload_id, simple, complex_, outcome: WriteOutcome) -> None:
        """Each chunk and each complex review commits on its own; earlier commits survive a failure."""
        try:
            for batch in chunked(simple, self.chunk_size):
                rows = [build_review_row(r, shop_id, csv_upload_id) for r in batch]
                async with self.storage.get_session() as session:
                    async with session.begin():
                        written = await self.storage.bulk_insert_reviews(session, rows)
                outcome.bulk_written += written
                outcome.chunks += 1
            for review in complex_:
                async with self.storage.get_session() as session:
                    async with session.begin():
                        await self.storage.insert_review_with_relations(
                            session,
                            build_review_row(review, shop_id, csv_upload_id),
                            media=review.media,
                            reply=review.reply_body,
                        )
                outcome.complex_written += 1
        except Exception as e:
            logger.error(
                "Review write failed after partial commit shop=%s upload_id=%s written=%d: %s: %s",
                shop_id, csv_upload_id, outcome.written, type(e).__name__, e,
            )
            raise ReviewWriteError(str(e), written=outcome.written) from e
