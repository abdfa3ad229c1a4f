"""
Import Audit
Read-only preview of a review file before it is imported.
"""
from typing import Any, Dict, List

from services.csv_tokenizer import tokenize, is_blank_row
from services.review_normalizer import DEFAULT_BODY, DEFAULT_RATING, ReviewNormalizer

SAMPLE_SIZE = 3

# Marker substring (lower-cased file text) -> display name
PLATFORM_MARKERS = (
    ("judgeme", "Judge.me"),
    ("yotpo", "Yotpo"),
    ("loox", "Loox"),
)
STANDARD_PLATFORM = "Standard CSV"


def detect_platforms(text: str) -> List[str]:
    lowered = (text or "").lower()
    found = [name for marker, name in PLATFORM_MARKERS if marker in lowered]
    return found or [STANDARD_PLATFORM]


def average_rating(ratings: List[int]) -> float:
    """Mean rating to one decimal; no rows reads as the default rating."""
    if not ratings:
        return float(DEFAULT_RATING)
    return round(sum(ratings) / len(ratings), 1)


def audit_csv(text: str, on_invalid_rating: str = "default") -> Dict[str, Any]:
    grid = tokenize(text)
    result = ReviewNormalizer(on_invalid_rating=on_invalid_rating).normalize(grid)
    samples = result.reviews[:SAMPLE_SIZE]
    raw_samples = [list(row) for row in grid.data_rows if not is_blank_row(row)][:SAMPLE_SIZE]

    return {
        "count": result.imported,
        "skipped": result.skipped,
        "headers": [h.strip() for h in grid.header],
        "detectedHeaders": result.header_map.detected(),
        "samples": [r.as_debug_dict() for r in samples],
        "rawSamples": raw_samples,
        "hasBody": any(r.body and r.body != DEFAULT_BODY for r in samples),
        "rating": average_rating([r.rating for r in result.reviews]),
        "platforms": detect_platforms(text),
    }
