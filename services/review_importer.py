"""
Review Importer
One import call: validate -> tokenize -> normalize -> resolve -> apply -> write -> record.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
import logging
import os

from services.csv_tokenizer import tokenize
from services.feature_flags import feature_flags as default_flags
from services.obs.metrics import metrics_collector as default_metrics
from services.product_resolver import NullProductResolver, ProductResolver, build_product_resolver
from services.review_normalizer import (
    NormalizationResult,
    ReviewNormalizer,
    apply_product_map,
    collect_identifiers,
)
from services.review_writer import ReviewWriteError, ReviewWriter
from services.storage import storage as default_storage
from settings import BULK_INSERT_CHUNK_SIZE, MAX_UPLOAD_BYTES, require_shop_id

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".csv",)


class ImportRejected(Exception):
    """Input refused before any parsing; nothing was written."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def validate_upload(filename: Optional[str], content: Optional[bytes], max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    name = (filename or "").strip()
    if not name or os.path.splitext(name)[1].lower() not in ALLOWED_EXTENSIONS:
        raise ImportRejected("Only CSV files are allowed")
    size = len(content or b"")
    if size == 0:
        raise ImportRejected("Empty file")
    if size > max_bytes:
        raise ImportRejected(
            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            status_code=413,
        )


def decode_upload(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


def build_result_message(imported: int, skipped: int) -> str:
    if skipped > 0:
        return f"Imported {imported}. Skipped {skipped}."
    return f"Successfully imported {imported} reviews."


class ReviewImporter:
    def __init__(self, storage=None, metrics=None, flags=None, chunk_size: int = BULK_INSERT_CHUNK_SIZE):
        self.storage = storage or default_storage
        self.metrics = metrics or default_metrics
        self.flags = flags or default_flags
        self.chunk_size = chunk_size

    async def import_csv(
        self,
        content: bytes,
        filename: str,
        shop_id: Optional[str],
        access_token: Optional[str] = None,
        resolver: Optional[ProductResolver] = None,
    ) -> Dict[str, Any]:
        """
        Runs one import synchronously and returns the result payload.

        Raises ImportRejected for input problems. Every failure after the upload
        record exists is reported in the payload and marks the upload failed.
        """
        try:
            shop_id = require_shop_id(shop_id)
        except ValueError:
            self.metrics.record_rejection("missing_shop_id")
            raise ImportRejected("shopId is required")
        try:
            validate_upload(filename, content)
        except ImportRejected as e:
            self.metrics.record_rejection(e.message)
            logger.warning("Import rejected shop=%s filename=%r: %s", shop_id, filename, e.message)
            raise

        options = self.flags.import_options(shop_id)
        upload = await self.storage.create_csv_upload({
            "shop_id": shop_id,
            "filename": filename,
            "size_bytes": len(content),
            "status": "processing",
            "processing_params": options,
        })
        upload_id = upload.id
        self.metrics.start_run(upload_id, shop_id)
        logger.info(
            "Import started upload_id=%s shop=%s filename=%r bytes=%d options=%s",
            upload_id, shop_id, filename, len(content), options,
        )

        result: Optional[NormalizationResult] = None
        unresolved = 0
        try:
            with self.metrics.phase_timer(upload_id, "tokenize"):
                grid = tokenize(decode_upload(content))

            with self.metrics.phase_timer(upload_id, "normalize"):
                normalizer = ReviewNormalizer(
                    on_invalid_rating=options["on_invalid_rating"],
                    fallback_body_enabled=options["fallback_body"],
                )
                result = normalizer.normalize(grid)

            if resolver is None:
                resolver = (
                    build_product_resolver(shop_id, access_token)
                    if options["resolve_products"] else NullProductResolver()
                )
            with self.metrics.phase_timer(upload_id, "resolve"):
                product_map = await self._resolve(resolver, result, upload_id)
            reviews, unresolved = apply_product_map(result.reviews, product_map)

            writer = ReviewWriter(self.storage, chunk_size=self.chunk_size, atomic=options["atomic_writes"])
            with self.metrics.phase_timer(upload_id, "write"):
                outcome = await writer.write(shop_id, reviews, csv_upload_id=upload_id)
        except Exception as e:
            written = e.written if isinstance(e, ReviewWriteError) else 0
            skipped = result.skipped if result is not None else 0
            data_rows = result.data_rows if result is not None else 0
            logger.exception(
                "Import failed upload_id=%s shop=%s rows=%d written=%d skipped=%d",
                upload_id, shop_id, data_rows, written, skipped,
            )
            summary = self.metrics.finish_run(
                upload_id, success=False, data_rows=data_rows,
                imported=written, skipped=skipped, unresolved_products=unresolved,
            )
            await self._mark_failed(upload_id, type(e).__name__, summary, data_rows, written, skipped)
            return {
                "success": False,
                "count": written,
                "skipped": skipped,
                "message": "Import failed: the reviews could not be saved. Please try again.",
                "uploadId": upload_id,
            }

        summary = self.metrics.finish_run(
            upload_id, success=True, data_rows=result.data_rows,
            imported=outcome.written, skipped=result.skipped, unresolved_products=unresolved,
        )
        summary["write"] = outcome.as_dict()
        await self.storage.update_csv_upload_status(
            upload_id,
            "completed",
            import_metrics=summary,
            total_rows=result.data_rows,
            processed_rows=outcome.written,
            skipped_rows=result.skipped,
        )
        logger.info(
            "Import completed upload_id=%s shop=%s rows=%d imported=%d skipped=%d unresolved=%d",
            upload_id, shop_id, result.data_rows, outcome.written, result.skipped, unresolved,
        )

        payload: Dict[str, Any] = {
            "success": True,
            "count": outcome.written,
            "skipped": result.skipped,
            "unresolved": unresolved,
            "message": build_result_message(outcome.written, result.skipped),
            "uploadId": upload_id,
        }
        debug = result.debug_payload()
        if debug is not None:
            payload["debug"] = debug
        return payload

    async def _resolve(self, resolver: ProductResolver, result: NormalizationResult, upload_id: str) -> Dict[str, str]:
        identifiers = collect_identifiers(result.reviews)
        if not identifiers:
            return {}
        try:
            return await resolver.resolve(identifiers) or {}
        except Exception as e:
            logger.error(
                "Product resolution failed upload_id=%s identifiers=%d: %s: %s",
                upload_id, len(identifiers), type(e).__name__, e,
            )
            return {}

    async def _mark_failed(self, upload_id, error_name, summary, data_rows, written, skipped) -> None:
        try:
            await self.storage.update_csv_upload_status(
                upload_id,
                "failed",
                error_message=f"Import failed ({error_name})",
                import_metrics=summary,
                total_rows=data_rows,
                processed_rows=written,
                skipped_rows=skipped,
            )
        except Exception:
            logger.exception("Could not mark upload failed upload_id=%s", upload_id)


review_importer = ReviewImporter()
