"""
Centralized configuration for review imports and shop scoping.
"""
from __future__ import annotations

import os
from typing import Optional, Any

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# ---------- Upload limits ----------
MAX_UPLOAD_BYTES: int = _env_int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)

# ---------- Normalization ----------
FALLBACK_BODY_MIN_LENGTH: int = _env_int("FALLBACK_BODY_MIN_LENGTH", 10)
ON_INVALID_RATING: str = (os.getenv("ON_INVALID_RATING") or "default").strip().lower()
VALID_RATING_POLICIES: tuple[str, ...] = ("default", "skip")

# ---------- Product resolution ----------
HANDLE_LOOKUP_LIMIT: int = _env_int("HANDLE_LOOKUP_LIMIT", 50)
TITLE_LOOKUP_LIMIT: int = _env_int("TITLE_LOOKUP_LIMIT", 20)
SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION") or "2024-10"
SHOPIFY_HTTP_TIMEOUT: float = float(os.getenv("SHOPIFY_HTTP_TIMEOUT") or "15")

# ---------- Persistence ----------
# SQLite caps bound parameters per statement; 50 reviews stays well below it.
BULK_INSERT_CHUNK_SIZE: int = _env_int("BULK_INSERT_CHUNK_SIZE", 50)
IMPORT_ATOMIC_WRITES: bool = _env_bool("IMPORT_ATOMIC_WRITES", True)


def sanitize_shop_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw IDs (strip whitespace, lower-case domains)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip()
    if not text:
        return None
    return text.lower()


def require_shop_id(*candidates: Optional[Any]) -> str:
    """
    Pick the first usable shop identifier from candidates.
    Raises ValueError when none is usable; there is no fallback tenant.
    """
    for candidate in candidates:
        normalized = sanitize_shop_id(candidate)
        if normalized:
            return normalized
    raise ValueError("shop_id is required")


def normalize_rating_policy(value: Optional[str]) -> str:
    policy = (value or "").strip().lower()
    if policy in VALID_RATING_POLICIES:
        return policy
    return "default"
