"""SQLAlchemy models for the persistence layer (posts, variants, social rows, audit)."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles SQLAlchemy."""

    metadata = MetaData()


class PostORM(Base):
    """Enregistrement canonique d'un contenu (un par groupe de traduction)."""

    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_document_id = Column(String(255), nullable=False, unique=True)
    content_type = Column(String(32), nullable=False)
    author_id = Column(String(255), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class LogORM(Base):
    """Variante linguistique d'un post (au plus une par langue)."""

    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False)
    language = Column(String(16), nullable=False)
    document_id = Column(String(255), nullable=True, index=True)
    title = Column(String(512), nullable=True)
    slug = Column(String(255), nullable=True)
    excerpt = Column(Text, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("post_id", "language", name="uq_log_post_language"),)


class PhotoORM(Base):
    """Enfant 1:1 d'un post de type photo."""

    __tablename__ = "photos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False, unique=True)
    sanity_asset_id = Column(String(255), nullable=True)
    title_json = Column(JSON, nullable=True)
    description_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class CollectionORM(Base):
    """Collection de photos (i18n au niveau des champs)."""

    __tablename__ = "collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sanity_id = Column(String(255), nullable=False, unique=True)
    name_en = Column(String(255), nullable=True)
    name_zh = Column(String(255), nullable=True)
    slug = Column(String(255), nullable=True)
    description_en = Column(Text, nullable=True)
    description_zh = Column(Text, nullable=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class DevCollectionORM(Base):
    """Collection de logs de développement."""

    __tablename__ = "dev_collections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sanity_id = Column(String(255), nullable=False, unique=True)
    name_en = Column(String(255), nullable=True)
    name_zh = Column(String(255), nullable=True)
    slug = Column(String(255), nullable=True)
    description_en = Column(Text, nullable=True)
    description_zh = Column(Text, nullable=True)
    cover_image_url = Column(String(1024), nullable=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class LikeORM(Base):
    __tablename__ = "likes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False)
    user_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("post_id", "user_id", name="uq_like_post_user"),)


class CommentORM(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False)
    user_id = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class WebhookCallORM(Base):
    """Entrée d'audit d'une notification reçue (append-only)."""

    __tablename__ = "webhook_calls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation = Column(String(16), nullable=False)
    document_type = Column(String(64), nullable=False)
    document_id = Column(String(255), nullable=False)
    success = Column(Boolean, nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
