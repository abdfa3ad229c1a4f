"""
Review Import Router
Upload, preview and history endpoints for CSV review imports
"""
from fastapi import APIRouter, UploadFile, File, Form, Header, HTTPException, Depends, Request, Response
from typing import List, Optional
import logging
import uuid

from schemas.review_schemas import ImportAuditResponse, ImportResultResponse, UploadStatusResponse
from services.feature_flags import FeatureFlagsManager, feature_flags
from services.import_audit import audit_csv
from services.review_export import TEMPLATE_FILENAME, build_template_csv
from services.review_importer import (
    ImportRejected,
    ReviewImporter,
    decode_upload,
    review_importer,
    validate_upload,
)
from services.storage import StorageService, storage
from settings import sanitize_shop_id

logger = logging.getLogger(__name__)
router = APIRouter()


def get_importer() -> ReviewImporter:
    return review_importer


def get_storage() -> StorageService:
    return storage


def get_feature_flags() -> FeatureFlagsManager:
    return feature_flags


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@router.post("/reviews/import", response_model=ImportResultResponse, response_model_exclude_none=True)
async def import_reviews(
    request: Request,
    file: UploadFile = File(...),
    shopId: Optional[str] = Form(None),
    x_shopify_access_token: Optional[str] = Header(None),
    importer: ReviewImporter = Depends(get_importer),
):
    """Import a review CSV synchronously and report counts"""
    request_id = _request_id(request)
    shop_id = sanitize_shop_id(shopId)
    logger.info(f"[{request_id}] Review import attempt filename={file.filename!r} shop={shop_id!r}")
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")

    content = await file.read()
    try:
        result = await importer.import_csv(
            content,
            file.filename or "",
            shop_id,
            access_token=x_shopify_access_token,
        )
    except ImportRejected as e:
        logger.warning(f"[{request_id}] Import rejected: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    logger.info(
        f"[{request_id}] Import finished success={result['success']} "
        f"count={result['count']} skipped={result['skipped']} uploadId={result.get('uploadId')}"
    )
    return result


@router.post("/reviews/import/preview", response_model=ImportAuditResponse)
async def preview_import(
    request: Request,
    file: UploadFile = File(...),
    shopId: Optional[str] = Form(None),
    flags: FeatureFlagsManager = Depends(get_feature_flags),
):
    """Audit a review CSV without writing anything"""
    request_id = _request_id(request)
    content = await file.read()
    try:
        validate_upload(file.filename, content)
    except ImportRejected as e:
        logger.warning(f"[{request_id}] Preview rejected: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    options = flags.import_options(sanitize_shop_id(shopId))
    audit = audit_csv(decode_upload(content), on_invalid_rating=options["on_invalid_rating"])
    logger.info(f"[{request_id}] Preview rows={audit['count']} platforms={audit['platforms']}")
    return audit


@router.get("/reviews/import/template")
async def download_template():
    """Download the review import template"""
    return Response(
        content=build_template_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={TEMPLATE_FILENAME}"},
    )


@router.get("/reviews/imports", response_model=List[UploadStatusResponse])
async def list_imports(
    shopId: Optional[str] = None,
    limit: int = 10,
    store: StorageService = Depends(get_storage),
):
    """Recent import runs for a shop"""
    shop_id = sanitize_shop_id(shopId)
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    limit = max(1, min(limit, 100))
    try:
        uploads = await store.get_recent_uploads(shop_id, limit=limit)
    except Exception as e:
        logger.error(f"List imports error shop={shop_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to get imports")
    return [UploadStatusResponse.from_upload(u) for u in uploads]


@router.get("/reviews/imports/{upload_id}", response_model=UploadStatusResponse)
async def get_import_status(
    upload_id: str,
    shopId: Optional[str] = None,
    store: StorageService = Depends(get_storage),
):
    """Status of one import run"""
    shop_id = sanitize_shop_id(shopId)
    if not shop_id:
        raise HTTPException(status_code=400, detail="shopId is required")
    upload = await store.get_csv_upload(upload_id)
    # Another shop's run reads as missing
    if not upload or upload.shop_id != shop_id:
        raise HTTPException(status_code=404, detail="Import not found")
    return UploadStatusResponse.from_upload(upload)
