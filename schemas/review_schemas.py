"""
Response payloads for the review import API.
Field aliases keep the camelCase keys the embedded app reads.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImportDebug(BaseModel):
    detected_headers: Dict[str, Optional[str]] = Field(..., alias="detectedHeaders")
    first_record: Dict[str, Any] = Field(..., alias="firstRecord")

    model_config = ConfigDict(populate_by_name=True)


class ImportResultResponse(BaseModel):
    success: bool
    count: int
    skipped: int
    message: str
    unresolved: Optional[int] = None
    upload_id: Optional[str] = Field(None, alias="uploadId")
    debug: Optional[ImportDebug] = None

    model_config = ConfigDict(populate_by_name=True)


class ImportAuditResponse(BaseModel):
    count: int
    skipped: int
    headers: List[str]
    detected_headers: Dict[str, Optional[str]] = Field(..., alias="detectedHeaders")
    samples: List[Dict[str, Any]]
    raw_samples: List[List[str]] = Field(..., alias="rawSamples")
    has_body: bool = Field(..., alias="hasBody")
    rating: float
    platforms: List[str]

    model_config = ConfigDict(populate_by_name=True)


class UploadStatusResponse(BaseModel):
    upload_id: str = Field(..., alias="uploadId")
    shop_id: str = Field(..., alias="shopId")
    filename: str
    status: str
    total_rows: int = Field(0, alias="totalRows")
    processed_rows: int = Field(0, alias="processedRows")
    skipped_rows: int = Field(0, alias="skippedRows")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_upload(cls, upload) -> "UploadStatusResponse":
        return cls(
            upload_id=upload.id,
            shop_id=upload.shop_id,
            filename=upload.filename,
            status=upload.status,
            total_rows=upload.total_rows or 0,
            processed_rows=upload.processed_rows or 0,
            skipped_rows=upload.skipped_rows or 0,
            error_message=upload.error_message,
            created_at=upload.created_at,
            updated_at=upload.updated_at,
        )
