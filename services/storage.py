"""
Storage Service Layer
Database operations for import runs and reviews.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, desc, insert
from sqlalchemy.orm import selectinload
from typing import List, Optional, Dict, Any, Sequence
from datetime import datetime, timezone
import logging
import uuid

from database import AsyncSessionLocal, CsvUpload, Review, ReviewMedia, ReviewReply
from settings import sanitize_shop_id, require_shop_id

logger = logging.getLogger(__name__)


class StorageService:
    """Storage service providing database operations"""

    def __init__(self, session_factory=None):
        # Tests pass their own async_sessionmaker bound to a private engine
        self._session_factory = session_factory or AsyncSessionLocal

    def _table_column_names(self, table):
        return {c.name for c in table.columns}

    def _filter_columns(self, table, rows: List[dict]) -> List[dict]:
        """Drop keys that don't exist on the SQLAlchemy table (prevents invalid kw errors)."""
        allowed = self._table_column_names(table)
        return [{k: v for k, v in row.items() if k in allowed} for row in rows]

    def get_session(self) -> AsyncSession:
        """Get database session context manager"""
        return self._session_factory()

    # ---------- import runs ----------

    async def create_csv_upload(self, upload_data: Dict[str, Any]) -> CsvUpload:
        """Create new CSV upload record"""
        async with self.get_session() as session:
            payload = self._filter_columns(CsvUpload.__table__, [dict(upload_data)])[0]
            payload["shop_id"] = require_shop_id(payload.get("shop_id"))
            payload.setdefault("status", "processing")
            upload = CsvUpload(**payload)
            session.add(upload)
            await session.commit()
            await session.refresh(upload)
            return upload

    async def get_csv_upload(self, upload_id: str) -> Optional[CsvUpload]:
        """Get CSV upload by ID"""
        async with self.get_session() as session:
            return await session.get(CsvUpload, upload_id)

    async def update_csv_upload(self, upload_id: str, updates: Dict[str, Any]) -> Optional[CsvUpload]:
        """Update CSV upload record"""
        async with self.get_session() as session:
            upload = await session.get(CsvUpload, upload_id)
            if upload:
                change_set = dict(updates)
                # an upload never moves between shops
                change_set.pop("shop_id", None)
                for key, value in change_set.items():
                    setattr(upload, key, value)
                await session.commit()
                await session.refresh(upload)
            return upload

    async def update_csv_upload_status(
        self,
        upload_id: str,
        status: str,
        error_message: Optional[str] = None,
        import_metrics: Optional[Dict[str, Any]] = None,
        **counts: int,
    ) -> Optional[CsvUpload]:
        """Update upload status with optional error, metrics payload and row counts."""
        if not upload_id:
            return None
        updates: Dict[str, Any] = {"status": status}
        if error_message is not None:
            updates["error_message"] = error_message
        if import_metrics is not None:
            updates["import_metrics"] = import_metrics
        for key in ("total_rows", "processed_rows", "skipped_rows"):
            if key in counts and counts[key] is not None:
                updates[key] = int(counts[key])
        return await self.update_csv_upload(upload_id, updates)

    async def get_recent_uploads(self, shop_id: str, limit: int = 10) -> List[CsvUpload]:
        """Get recent CSV uploads for a shop"""
        shop_id = require_shop_id(shop_id)
        async with self.get_session() as session:
            query = (
                select(CsvUpload)
                .where(CsvUpload.shop_id == shop_id)
                .order_by(desc(CsvUpload.created_at))
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    # ---------- reviews ----------

    async def bulk_insert_reviews(self, session: AsyncSession, rows: Sequence[Dict[str, Any]]) -> int:
        """Multi-row insert of plain reviews inside the caller's transaction."""
        if not rows:
            return 0
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        prepared = []
        for row in self._filter_columns(Review.__table__, list(rows)):
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", now)
            row.setdefault("updated_at", now)
            prepared.append(row)
        await session.execute(insert(Review), prepared)
        return len(prepared)

    async def insert_review_with_relations(
        self,
        session: AsyncSession,
        review_row: Dict[str, Any],
        media: Optional[Sequence[Dict[str, Any]]] = None,
        reply: Optional[str] = None,
    ) -> Review:
        """One review plus its media and reply rows, flushed inside the caller's transaction."""
        payload = self._filter_columns(Review.__table__, [dict(review_row)])[0]
        payload.setdefault("id", str(uuid.uuid4()))
        review = Review(**payload)
        for pos, item in enumerate(media or ()):
            review.media.append(ReviewMedia(
                url=item["url"],
                type=item.get("type") or "image",
                position=item.get("position", pos),
            ))
        if reply:
            replied_at = datetime.now(timezone.utc).replace(tzinfo=None)
            review.replies.append(ReviewReply(body=reply, created_at=replied_at))
        session.add(review)
        await session.flush()
        return review

    async def get_reviews_for_export(self, shop_id: str, limit: Optional[int] = None) -> List[Review]:
        """Reviews for a shop with media and replies eagerly loaded, oldest first."""
        shop_id = require_shop_id(shop_id)
        async with self.get_session() as session:
            query = (
                select(Review)
                .where(Review.shop_id == shop_id)
                .options(selectinload(Review.media), selectinload(Review.replies))
                .order_by(Review.created_at, Review.id)
            )
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_reviews(self, shop_id: str, csv_upload_id: Optional[str] = None) -> int:
        shop_id = sanitize_shop_id(shop_id)
        if not shop_id:
            return 0
        async with self.get_session() as session:
            query = select(func.count()).select_from(Review).where(Review.shop_id == shop_id)
            if csv_upload_id:
                query = query.where(Review.csv_upload_id == csv_upload_id)
            result = await session.execute(query)
            return int(result.scalar_one() or 0)


# Global storage instance
storage = StorageService()
