"""Create csv_uploads, reviews, review_media and review_replies tables.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None

JsonType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("csv_uploads"):
        op.create_table(
            "csv_uploads",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("shop_id", sa.String(), nullable=False),
            sa.Column("filename", sa.Text(), nullable=False),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("skipped_rows", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.Text(), nullable=False),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("import_metrics", JsonType, nullable=True),
            sa.Column("processing_params", JsonType, nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.CheckConstraint(
                "status IN ('processing','completed','failed')",
                name="ck_csv_uploads_status",
            ),
        )
        op.create_index("ix_csv_uploads_shop_id", "csv_uploads", ["shop_id"])

    if not inspector.has_table("reviews"):
        op.create_table(
            "reviews",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("shop_id", sa.String(), nullable=False),
            sa.Column("csv_upload_id", sa.String(), sa.ForeignKey("csv_uploads.id"), nullable=True),
            sa.Column("product_id", sa.String(), nullable=True),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("title", sa.Text(), nullable=True),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("customer_name", sa.Text(), nullable=False),
            sa.Column("customer_email", sa.Text(), nullable=True),
            sa.Column("sentiment", sa.String(), nullable=False),
            sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("status", sa.String(), nullable=False, server_default="pending"),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
            sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating_range"),
        )
        op.create_index("ix_reviews_shop_created", "reviews", ["shop_id", "created_at"])
        op.create_index("ix_reviews_product", "reviews", ["product_id"])
        op.create_index("ix_reviews_upload", "reviews", ["csv_upload_id"])

    if not inspector.has_table("review_media"):
        op.create_table(
            "review_media",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(
                "review_id",
                sa.String(),
                sa.ForeignKey("reviews.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("url", sa.Text(), nullable=False),
            sa.Column("type", sa.String(), nullable=False, server_default="image"),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        )
        op.create_index("ix_review_media_review", "review_media", ["review_id"])

    if not inspector.has_table("review_replies"):
        op.create_table(
            "review_replies",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column(
                "review_id",
                sa.String(),
                sa.ForeignKey("reviews.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("body", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_review_replies_review", "review_replies", ["review_id"])


def downgrade() -> None:
    op.drop_table("review_replies")
    op.drop_table("review_media")
    op.drop_table("reviews")
    op.drop_table("csv_uploads")
