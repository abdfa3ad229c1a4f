"""
Review export and import template CSVs.
Both share one column layout so an export can be re-imported as is.
"""
import csv
import io
from typing import Any, List, Sequence

TEMPLATE_FILENAME = "review_import_template.csv"

TEMPLATE_HEADER = [
    "product_url",
    "rating",
    "review_text",
    "customer_name",
    "email",
    "picture_urls",
    "reply",
    "date",
]

TEMPLATE_ROWS = [
    [
        "https://yourstore.com/products/black-t-shirt", "5", "I love this quality!", "John Doe",
        "john@example.com", "https://link-to-image.jpg", "Thanks John!", "2023-10-25",
    ],
    ["", "5", "Great shop overall!", "Jane Smith", "jane@example.com", "", "", "2023-10-26"],
]

# Stored reviews carry a canonical product id and an optional title on top of the template columns
EXPORT_HEADER = TEMPLATE_HEADER + ["title", "product_id"]


def _write_csv(header: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return output.getvalue()


def build_template_csv() -> str:
    return _write_csv(TEMPLATE_HEADER, TEMPLATE_ROWS)


def review_to_row(review) -> List[str]:
    media = sorted(review.media or [], key=lambda m: m.position)
    replies = sorted(review.replies or [], key=lambda r: (r.created_at, r.id))
    return [
        "",
        str(review.rating),
        review.body or "",
        review.customer_name or "",
        review.customer_email or "",
        ",".join(m.url for m in media),
        replies[0].body if replies else "",
        review.created_at.isoformat() if review.created_at is not None else "",
        review.title or "",
        review.product_id or "",
    ]


def build_reviews_csv(reviews: Sequence[Any]) -> str:
    return _write_csv(EXPORT_HEADER, [review_to_row(r) for r in reviews])
