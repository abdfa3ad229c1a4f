"""
Export Router
Handles review export functionality
"""
from fastapi import APIRouter, HTTPException, Depends, Response
from typing import Optional
import logging
import re

from routers.review_import import get_storage
from services.review_export import build_reviews_csv
from services.storage import StorageService
from settings import sanitize_shop_id

logger = logging.getLogger(__name__)
router = APIRouter()

_UNSAFE_FILENAME = re.compile(r"[^a-z0-9._-]+")


@router.get("/export/reviews")
async def export_reviews(
    shopId: Optional[str] = None,
    store: StorageService = Depends(get_storage),
):
    """Export a shop's reviews as CSV in the import template layout"""
    shop_id = sanitize_shop_id(shopId)
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    try:
        reviews = await store.get_reviews_for_export(shop_id)
        csv_content = build_reviews_csv(reviews)
    except Exception as e:
        logger.error(f"Export reviews error shop={shop_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to export reviews")

    filename = f"reviews_{_UNSAFE_FILENAME.sub('_', shop_id)}.csv"
    logger.info(f"Exported {len(reviews)} reviews for shop={shop_id}")
    return Response(
        content=csv_content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
