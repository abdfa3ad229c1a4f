"""
Review Schemas Package
Response models for the review import API.
"""

from .review_schemas import (
    ImportDebug,
    ImportResultResponse,
    ImportAuditResponse,
    UploadStatusResponse,
)

__all__ = [
    "ImportDebug",
    "ImportResultResponse",
    "ImportAuditResponse",
    "UploadStatusResponse",
]
