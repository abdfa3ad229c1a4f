"""
Review Normalizer
Maps tokenized CSV rows from arbitrary review platforms onto canonical review records.

Header names are matched fuzzily (lower-cased, non-alphanumerics stripped, then looked
up in a synonym table). Values are coalesced per field, product identifiers are split
into handle/title lookups for a single batched catalog round-trip, and rows are never
allowed to abort the batch.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Any
import logging
import re

from services.csv_tokenizer import RawGrid, is_blank_row
from settings import FALLBACK_BODY_MIN_LENGTH, normalize_rating_policy

logger = logging.getLogger(__name__)

DEFAULT_RATING = 5
DEFAULT_BODY = "No content"
DEFAULT_CUSTOMER_NAME = "Anonymous"
MEDIA_TYPE_IMAGE = "image"
PRODUCT_GID_PREFIX = "gid://shopify/Product/"

# Only the first few fallback/skip diagnostics are logged; all are kept on the result.
MAX_LOGGED_DIAGNOSTICS = 10


class FieldTag(str, Enum):
    RATING = "rating"
    BODY = "body"
    CUSTOMER_NAME = "customer_name"
    EMAIL = "email"
    TITLE = "title"
    DATE = "date"
    REPLY = "reply"
    MEDIA_URLS = "media_urls"
    PRODUCT_ID = "product_id"
    PRODUCT_IDENTIFIER = "product_identifier"


# ---------- Header synonyms (keys are already normalized: [a-z0-9] only) ----------
HEADER_SYNONYMS: Dict[str, FieldTag] = {
    # rating
    "rating": FieldTag.RATING,
    "stars": FieldTag.RATING,
    "star": FieldTag.RATING,
    "score": FieldTag.RATING,
    "reviewrating": FieldTag.RATING,
    "reviewscore": FieldTag.RATING,
    "starrating": FieldTag.RATING,
    # body
    "body": FieldTag.BODY,
    "content": FieldTag.BODY,
    "review": FieldTag.BODY,
    "reviews": FieldTag.BODY,
    "comment": FieldTag.BODY,
    "comments": FieldTag.BODY,
    "text": FieldTag.BODY,
    "reviewtext": FieldTag.BODY,
    "reviewcontent": FieldTag.BODY,
    "reviewbody": FieldTag.BODY,
    "reviewmessage": FieldTag.BODY,
    "message": FieldTag.BODY,
    # customer name
    "name": FieldTag.CUSTOMER_NAME,
    "author": FieldTag.CUSTOMER_NAME,
    "authorname": FieldTag.CUSTOMER_NAME,
    "customer": FieldTag.CUSTOMER_NAME,
    "customername": FieldTag.CUSTOMER_NAME,
    "reviewer": FieldTag.CUSTOMER_NAME,
    "reviewername": FieldTag.CUSTOMER_NAME,
    "displayname": FieldTag.CUSTOMER_NAME,
    # email
    "email": FieldTag.EMAIL,
    "emailaddress": FieldTag.EMAIL,
    "revieweremail": FieldTag.EMAIL,
    "customeremail": FieldTag.EMAIL,
    "authoremail": FieldTag.EMAIL,
    # title
    "title": FieldTag.TITLE,
    "reviewtitle": FieldTag.TITLE,
    "headline": FieldTag.TITLE,
    "subject": FieldTag.TITLE,
    # date
    "date": FieldTag.DATE,
    "createdat": FieldTag.DATE,
    "reviewdate": FieldTag.DATE,
    "reviewcreatedat": FieldTag.DATE,
    "datecreated": FieldTag.DATE,
    "submittedat": FieldTag.DATE,
    "timestamp": FieldTag.DATE,
    # reply
    "reply": FieldTag.REPLY,
    "response": FieldTag.REPLY,
    "ownerreply": FieldTag.REPLY,
    "storereply": FieldTag.REPLY,
    "merchantreply": FieldTag.REPLY,
    # media
    "pictureurls": FieldTag.MEDIA_URLS,
    "pictures": FieldTag.MEDIA_URLS,
    "images": FieldTag.MEDIA_URLS,
    "imageurls": FieldTag.MEDIA_URLS,
    "photos": FieldTag.MEDIA_URLS,
    "photourls": FieldTag.MEDIA_URLS,
    "media": FieldTag.MEDIA_URLS,
    "reviewimages": FieldTag.MEDIA_URLS,
    # explicit catalog id
    "productid": FieldTag.PRODUCT_ID,
    "id": FieldTag.PRODUCT_ID,
    "shopifyproductid": FieldTag.PRODUCT_ID,
    # handle / url / title, subtyped per value
    "product": FieldTag.PRODUCT_IDENTIFIER,
    "producthandle": FieldTag.PRODUCT_IDENTIFIER,
    "handle": FieldTag.PRODUCT_IDENTIFIER,
    "producturl": FieldTag.PRODUCT_IDENTIFIER,
    "productlink": FieldTag.PRODUCT_IDENTIFIER,
    "producttitle": FieldTag.PRODUCT_IDENTIFIER,
    "productname": FieldTag.PRODUCT_IDENTIFIER,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_NUMERIC_ID = re.compile(r"^\d+$")

_DATE_FORMATS = (
    '%Y-%m-%dT%H:%M:%S.%fZ', '%Y-%m-%dT%H:%M:%SZ', '%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z',
    '%Y-%m-%dT%H:%M:%S.%f', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S.%f',
    '%Y-%m-%d %H:%M:%S %Z', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M', '%Y-%m-%d', '%Y/%m/%d',
    '%m/%d/%Y %H:%M:%S', '%m/%d/%Y %H:%M', '%m/%d/%Y', '%d/%m/%Y %H:%M:%S', '%d/%m/%Y',
    '%d-%m-%Y', '%m-%d-%Y', '%d.%m.%Y', '%b %d, %Y', '%B %d, %Y', '%d %b %Y', '%d %B %Y',
)
_BAD_DATES = {'0000-00-00', '1900-01-01', 'n/a', 'null', 'none', 'nan'}


def normalize_header(header: str) -> str:
    """'Review Body' -> 'reviewbody'."""
    if not header:
        return ""
    return _NON_ALNUM.sub("", header.strip().lower())


# ---------- Types ----------

class ProductRefKind(str, Enum):
    ID = "id"
    HANDLE = "handle"
    TITLE = "title"
    UNRESOLVED = "unresolved"
    ABSENT = "absent"


@dataclass(frozen=True)
class ProductReference:
    kind: ProductRefKind
    value: Optional[str] = None

    @classmethod
    def absent(cls) -> "ProductReference":
        return cls(ProductRefKind.ABSENT)

    @property
    def needs_lookup(self) -> bool:
        return self.kind in (ProductRefKind.HANDLE, ProductRefKind.TITLE) and bool(self.value)

    @property
    def stored_product_id(self) -> Optional[str]:
        """Only canonical ids are ever persisted; handles/titles never leak into storage."""
        return self.value if self.kind == ProductRefKind.ID else None

    def as_dict(self) -> Dict[str, Optional[str]]:
        if self.kind == ProductRefKind.ABSENT:
            return {}
        if self.kind == ProductRefKind.UNRESOLVED:
            return {"unresolved": self.value}
        return {self.kind.value: self.value}


@dataclass(frozen=True)
class NormalizedReview:
    row_index: int
    rating: int
    body: str
    customer_name: str
    created_at: datetime
    product_reference: ProductReference = field(default_factory=ProductReference.absent)
    customer_email: Optional[str] = None
    title: Optional[str] = None
    media_urls: Tuple[str, ...] = ()
    reply_body: Optional[str] = None

    @property
    def sentiment_bucket(self) -> str:
        return sentiment_for_rating(self.rating)

    @property
    def is_complex(self) -> bool:
        return bool(self.media_urls) or bool(self.reply_body)

    @property
    def media(self) -> List[Dict[str, Any]]:
        return [
            {"url": url, "type": MEDIA_TYPE_IMAGE, "position": pos}
            for pos, url in enumerate(self.media_urls)
        ]

    def with_product_reference(self, reference: ProductReference) -> "NormalizedReview":
        return replace(self, product_reference=reference)

    def as_debug_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["product_reference"] = self.product_reference.as_dict()
        payload["media_urls"] = list(self.media_urls)
        payload["created_at"] = self.created_at.isoformat()
        payload["sentiment_bucket"] = self.sentiment_bucket
        payload["is_complex"] = self.is_complex
        return payload


@dataclass
class HeaderMap:
    raw_headers: Tuple[str, ...]
    normalized: Tuple[str, ...]
    tags: Dict[int, FieldTag]
    unmapped: List[int]

    def detected(self) -> Dict[str, Optional[str]]:
        """Raw header -> field tag (None for unmapped), for debug payloads."""
        return {
            raw: (self.tags[idx].value if idx in self.tags else None)
            for idx, raw in enumerate(self.raw_headers)
        }

    def describe(self) -> str:
        return ",".join(self.normalized)


@dataclass
class NormalizationResult:
    reviews: List[NormalizedReview]
    skipped: int
    data_rows: int
    header_map: HeaderMap
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)
    import_started_at: Optional[datetime] = None

    @property
    def imported(self) -> int:
        return len(self.reviews)

    def debug_payload(self) -> Optional[Dict[str, Any]]:
        if not self.reviews:
            return None
        return {
            "detectedHeaders": self.header_map.detected(),
            "firstRecord": self.reviews[0].as_debug_dict(),
        }


# ---------- Value helpers ----------

def sentiment_for_rating(rating: int) -> str:
    if rating >= 4:
        return "positive"
    if rating == 3:
        return "neutral"
    return "negative"


def parse_rating(raw: Optional[str]) -> Optional[int]:
    """Leading integer of the value ('4.5' -> 4, '5 stars' -> 5). None when absent/out of 1-5."""
    if raw is None:
        return None
    match = _LEADING_INT.match(raw)
    if not match:
        return None
    try:
        value = int(match.group(1))
    except ValueError:
        # digit runs past the int conversion limit
        return None
    if value < 1 or value > 5:
        return None
    return value


def parse_review_date(date_str: Optional[str]) -> Optional[datetime]:
    """Best-effort parse to a naive UTC datetime; None when unparseable."""
    if not date_str or not date_str.strip():
        return None
    ds = date_str.strip()
    if ds.lower() in _BAD_DATES:
        return None

    candidate = ds[:-1] + "+00:00" if ds.endswith("Z") else ds
    try:
        return _to_naive_utc(datetime.fromisoformat(candidate))
    except (ValueError, OverflowError):
        pass

    for fmt in _DATE_FORMATS:
        try:
            return _to_naive_utc(datetime.strptime(ds, fmt))
        except (ValueError, OverflowError):
            continue
    return None


def _to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def split_media_urls(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(u.strip() for u in raw.split(",") if u.strip())


def to_product_gid(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = str(value).strip()
    if not value:
        return None
    if value.startswith("gid://"):
        return value
    return f"{PRODUCT_GID_PREFIX}{value}"


def parse_product_identifier(raw: Optional[str]) -> ProductReference:
    """
    '/products/<handle>?variant=1' -> handle, 'Red Cotton Shirt' -> title,
    anything else -> bare handle.
    """
    value = (raw or "").strip()
    if not value:
        return ProductReference.absent()
    if "/products/" in value:
        handle = value.split("/products/")[-1].split("?")[0].split("#")[0].strip("/ ")
        if handle:
            return ProductReference(ProductRefKind.HANDLE, handle)
        return ProductReference.absent()
    if any(ch.isspace() for ch in value):
        return ProductReference(ProductRefKind.TITLE, value)
    return ProductReference(ProductRefKind.HANDLE, value)


def parse_product_id(raw: Optional[str]) -> ProductReference:
    """Explicit id columns: numeric ids and product gids are canonical, anything else is an identifier."""
    value = (raw or "").strip()
    if not value:
        return ProductReference.absent()
    if _NUMERIC_ID.match(value) or value.startswith(PRODUCT_GID_PREFIX):
        return ProductReference(ProductRefKind.ID, to_product_gid(value))
    return parse_product_identifier(value)


# ---------- Row builder ----------

class ReviewRecordBuilder:
    """Accumulates candidate values for one row before a NormalizedReview is built."""

    def __init__(self, row_index: int):
        self.row_index = row_index
        self._values: Dict[FieldTag, str] = {}
        self._product: ProductReference = ProductReference.absent()
        self.fallback_header: Optional[str] = None

    def offer(self, tag: FieldTag, value: str) -> None:
        value = (value or "").strip()
        if tag == FieldTag.PRODUCT_ID:
            self._offer_product(parse_product_id(value))
            return
        if tag == FieldTag.PRODUCT_IDENTIFIER:
            self._offer_product(parse_product_identifier(value))
            return
        if not value:
            return
        current = self._values.get(tag)
        # A shorter or empty alias never overwrites a better value
        if current is None or len(value) > len(current):
            self._values[tag] = value

    def _offer_product(self, reference: ProductReference) -> None:
        if reference.kind == ProductRefKind.ABSENT:
            return
        if self._product.kind == ProductRefKind.ABSENT:
            self._product = reference
        elif reference.kind == ProductRefKind.ID and self._product.kind != ProductRefKind.ID:
            self._product = reference

    def offer_fallback_body(self, header: str, value: str, min_length: int) -> bool:
        value = (value or "").strip()
        if self.has(FieldTag.BODY) or len(value) <= min_length:
            return False
        self._values[FieldTag.BODY] = value
        self.fallback_header = header
        return True

    def has(self, tag: FieldTag) -> bool:
        return bool(self._values.get(tag))

    def get(self, tag: FieldTag) -> Optional[str]:
        return self._values.get(tag)

    def build(self, rating: int, created_at: datetime) -> NormalizedReview:
        return NormalizedReview(
            row_index=self.row_index,
            rating=rating,
            body=self.get(FieldTag.BODY) or DEFAULT_BODY,
            customer_name=self.get(FieldTag.CUSTOMER_NAME) or DEFAULT_CUSTOMER_NAME,
            customer_email=self.get(FieldTag.EMAIL),
            title=self.get(FieldTag.TITLE),
            created_at=created_at,
            product_reference=self._product,
            media_urls=split_media_urls(self.get(FieldTag.MEDIA_URLS)),
            reply_body=self.get(FieldTag.REPLY),
        )


def build_header_map(header_row: Sequence[str]) -> HeaderMap:
    raw = tuple((h or "").strip() for h in header_row)
    normalized = tuple(normalize_header(h) for h in raw)
    tags: Dict[int, FieldTag] = {}
    unmapped: List[int] = []
    for idx, token in enumerate(normalized):
        tag = HEADER_SYNONYMS.get(token)
        if tag is None:
            unmapped.append(idx)
        else:
            tags[idx] = tag
    return HeaderMap(raw_headers=raw, normalized=normalized, tags=tags, unmapped=unmapped)


# ---------- Normalizer ----------

class ReviewNormalizer:
    """Turns a RawGrid into NormalizedReview candidates plus a skip count."""

    def __init__(
        self,
        on_invalid_rating: str = "default",
        fallback_body_min_length: int = FALLBACK_BODY_MIN_LENGTH,
        fallback_body_enabled: bool = True,
        import_started_at: Optional[datetime] = None,
    ):
        self.on_invalid_rating = normalize_rating_policy(on_invalid_rating)
        self.fallback_body_min_length = fallback_body_min_length
        self.fallback_body_enabled = fallback_body_enabled
        self.import_started_at = import_started_at

    def normalize(self, grid: RawGrid) -> NormalizationResult:
        # Wall clock is read once so every undated row shares the same timestamp
        started_at = self.import_started_at or datetime.now(timezone.utc).replace(tzinfo=None)
        header_map = build_header_map(grid.header)
        reviews: List[NormalizedReview] = []
        diagnostics: List[Dict[str, Any]] = []
        skipped = 0
        data_rows = 0

        for row_index in range(1, len(grid)):
            cells = grid[row_index]
            if is_blank_row(cells):
                continue
            data_rows += 1
            try:
                review = self.normalize_row(grid, row_index, header_map, started_at, diagnostics)
            except Exception as e:
                skipped += 1
                self._record(diagnostics, {
                    "row": row_index, "kind": "row_error", "error": f"{type(e).__name__}: {e}",
                })
                logger.warning(
                    "Normalizer: row %d failed (%s) headers=%s",
                    row_index, e, header_map.describe(),
                )
                continue
            if review is None:
                skipped += 1
            else:
                reviews.append(review)

        logger.info(
            "Normalizer: rows=%d imported=%d skipped=%d policy=%s mapped=%s unmapped=%d",
            data_rows, len(reviews), skipped, self.on_invalid_rating,
            sorted({t.value for t in header_map.tags.values()}), len(header_map.unmapped),
        )
        return NormalizationResult(
            reviews=reviews,
            skipped=skipped,
            data_rows=data_rows,
            header_map=header_map,
            diagnostics=diagnostics,
            import_started_at=started_at,
        )

    def normalize_row(
        self,
        grid: RawGrid,
        row_index: int,
        header_map: HeaderMap,
        started_at: datetime,
        diagnostics: Optional[List[Dict[str, Any]]] = None,
    ) -> Optional[NormalizedReview]:
        """Returns None when the row must be counted as skipped."""
        if diagnostics is None:
            diagnostics = []
        builder = ReviewRecordBuilder(row_index)

        for col, tag in header_map.tags.items():
            builder.offer(tag, grid.cell(row_index, col))

        if self.fallback_body_enabled and not builder.has(FieldTag.BODY):
            for col in header_map.unmapped:
                header = header_map.raw_headers[col]
                if builder.offer_fallback_body(header, grid.cell(row_index, col), self.fallback_body_min_length):
                    if self._record(diagnostics, {"row": row_index, "kind": "fallback_body", "header": header}):
                        logger.warning(
                            "Normalizer: row %d has no recognised body column; using unmapped header %r",
                            row_index, header,
                        )
                    break

        rating = parse_rating(builder.get(FieldTag.RATING))
        if rating is None:
            if self.on_invalid_rating == "skip":
                raw_rating = builder.get(FieldTag.RATING)
                if self._record(diagnostics, {"row": row_index, "kind": "invalid_rating", "value": raw_rating}):
                    logger.warning("Normalizer: row %d skipped, invalid rating %r", row_index, raw_rating)
                return None
            rating = DEFAULT_RATING

        created_at = parse_review_date(builder.get(FieldTag.DATE)) or started_at
        return builder.build(rating, created_at)

    @staticmethod
    def _record(diagnostics: List[Dict[str, Any]], entry: Dict[str, Any]) -> bool:
        """Keeps every diagnostic; True while still under the logging cap."""
        diagnostics.append(entry)
        return len(diagnostics) <= MAX_LOGGED_DIAGNOSTICS


# ---------- Product reference passes ----------

def collect_identifiers(reviews: Sequence[NormalizedReview]) -> List[ProductReference]:
    """Distinct handle/title references across the whole import, first-seen order."""
    seen = set()
    out: List[ProductReference] = []
    for review in reviews:
        ref = review.product_reference
        if not ref.needs_lookup:
            continue
        key = (ref.kind, ref.value)
        if key in seen:
            continue
        seen.add(key)
        out.append(ref)
    return out


def apply_product_map(
    reviews: Sequence[NormalizedReview],
    product_map: Dict[str, str],
) -> Tuple[List[NormalizedReview], int]:
    """
    Second pass: rewrite every handle/title reference to a canonical id or to unresolved.
    Returns (reviews, unresolved_count).
    """
    folded = {str(k).casefold(): v for k, v in (product_map or {}).items() if k}
    out: List[NormalizedReview] = []
    unresolved = 0
    for review in reviews:
        ref = review.product_reference
        if not ref.needs_lookup:
            out.append(review)
            continue
        product_id = (product_map or {}).get(ref.value) or folded.get(ref.value.casefold())
        if product_id:
            out.append(review.with_product_reference(
                ProductReference(ProductRefKind.ID, to_product_gid(product_id))
            ))
        else:
            unresolved += 1
            out.append(review.with_product_reference(
                ProductReference(ProductRefKind.UNRESOLVED, ref.value)
            ))
    return out, unresolved
