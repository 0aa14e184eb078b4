# mypy: ignore-errors
"""
Migration Alembic initiale du service de synchronisation.

Crée les posts canoniques et leurs variantes (logs, photos), les collections, les lignes sociales
(likes, commentaires) et la table d'audit des notifications webhook.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Crée l'ensemble des tables et leurs contraintes d'unicité."""
    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_document_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("content_type", sa.String(length=32), nullable=False),
        sa.Column("author_id", sa.String(length=255), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id"), nullable=False),
        sa.Column("language", sa.String(length=16), nullable=False),
        sa.Column("document_id", sa.String(length=255), nullable=True),
        sa.Column("title", sa.String(length=512), nullable=True),
        sa.Column("slug", sa.String(length=255), nullable=True),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("post_id", "language", name="uq_log_post_language"),
    )
    op.create_index("ix_logs_document_id", "logs", ["document_id"])
    op.create_table(
        "photos",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "post_id", sa.Integer(), sa.ForeignKey("posts.id"), nullable=False, unique=True
        ),
        sa.Column("sanity_asset_id", sa.String(length=255), nullable=True),
        sa.Column("title_json", sa.JSON(), nullable=True),
        sa.Column("description_json", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    for table, extra in (
        ("collections", []),
        ("dev_collections", [sa.Column("cover_image_url", sa.String(length=1024))]),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("sanity_id", sa.String(length=255), nullable=False, unique=True),
            sa.Column("name_en", sa.String(length=255), nullable=True),
            sa.Column("name_zh", sa.String(length=255), nullable=True),
            sa.Column("slug", sa.String(length=255), nullable=True),
            sa.Column("description_en", sa.Text(), nullable=True),
            sa.Column("description_zh", sa.Text(), nullable=True),
            *extra,
            sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
        )
    op.create_table(
        "likes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id"), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("post_id", "user_id", name="uq_like_post_user"),
    )
    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id"), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "webhook_calls",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operation", sa.String(length=16), nullable=False),
        sa.Column("document_type", sa.String(length=64), nullable=False),
        sa.Column("document_id", sa.String(length=255), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_webhook_calls_created_at", "webhook_calls", ["created_at"])


def downgrade() -> None:
    """Supprime les tables dans l'ordre inverse des dépendances."""
    op.drop_index("ix_webhook_calls_created_at", table_name="webhook_calls")
    op.drop_table("webhook_calls")
    op.drop_table("comments")
    op.drop_table("likes")
    op.drop_table("dev_collections")
    op.drop_table("collections")
    op.drop_table("photos")
    op.drop_index("ix_logs_document_id", table_name="logs")
    op.drop_table("logs")
    op.drop_table("posts")
