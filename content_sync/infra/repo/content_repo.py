# ============================================================
# Module : content_sync/infra/repo/content_repo.py
# Objet  : Accès SQL (async) aux posts, variantes, photos, collections.
# Notes  : ne commit jamais; la transaction appartient à l'appelant.
# ============================================================

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    CollectionORM,
    CommentORM,
    DevCollectionORM,
    LikeORM,
    LogORM,
    PhotoORM,
    PostORM,
    utcnow,
)

CollectionModel = type[CollectionORM] | type[DevCollectionORM]


class ContentRepo:
    """Opérations unitaires sur le magasin relationnel du contenu."""

    def __init__(self, session: AsyncSession) -> None:
        """Construit le repo avec une session asynchrone."""
        self._session = session

    async def _flush(self) -> None:
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            raise

    # --- posts -----------------------------------------------------------

    async def get_post(self, source_document_id: str) -> PostORM | None:
        stmt = select(PostORM).where(PostORM.source_document_id == source_document_id)
        return (await self._session.execute(stmt)).scalars().first()

    async def find_posts(self, source_document_ids: list[str]) -> list[PostORM]:
        """Posts dont la clé est l'un des ids donnés, du plus ancien au plus récent."""
        if not source_document_ids:
            return []
        stmt = (
            select(PostORM)
            .where(PostORM.source_document_id.in_(source_document_ids))
            .order_by(PostORM.created_at, PostORM.id)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def find_post_by_variant(self, document_id: str) -> PostORM | None:
        """Post propriétaire de la variante synchronisée depuis `document_id`."""
        stmt = (
            select(PostORM)
            .join(LogORM, LogORM.post_id == PostORM.id)
            .where(LogORM.document_id == document_id)
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def create_post(
        self, source_document_id: str, content_type: str, author_id: str | None
    ) -> PostORM:
        """Insère un post. Lève IntegrityError si la clé existe déjà."""
        post = PostORM(
            source_document_id=source_document_id,
            content_type=content_type,
            author_id=author_id,
        )
        self._session.add(post)
        await self._flush()
        return post

    async def rekey_post(self, post: PostORM, source_document_id: str) -> None:
        post.source_document_id = source_document_id
        await self._flush()

    async def soft_delete_post(self, post: PostORM) -> None:
        """Positionne le drapeau de suppression; les enfants restent intacts."""
        if post.is_deleted:
            return
        post.is_deleted = True
        post.deleted_at = utcnow()
        await self._flush()

    async def absorb_post(self, survivor: PostORM, duplicate: PostORM) -> None:
        """Déplace variantes, likes et commentaires de `duplicate` vers `survivor`.

        Une variante dont la langue existe déjà sur le survivant est supprimée, de même qu'un
        like d'un utilisateur ayant déjà liké le survivant. Le post vidé est supprimé.
        """
        languages = {log.language for log in await self.list_logs(survivor.id)}
        for log in await self.list_logs(duplicate.id):
            if log.language in languages:
                await self._session.delete(log)
            else:
                log.post_id = survivor.id
                languages.add(log.language)

        liked = set(
            (
                await self._session.execute(
                    select(LikeORM.user_id).where(LikeORM.post_id == survivor.id)
                )
            ).scalars()
        )
        dup_likes = await self._session.execute(
            select(LikeORM).where(LikeORM.post_id == duplicate.id)
        )
        for like in dup_likes.scalars().all():
            if like.user_id in liked:
                await self._session.delete(like)
            else:
                like.post_id = survivor.id
                liked.add(like.user_id)

        await self._session.execute(
            update(CommentORM)
            .where(CommentORM.post_id == duplicate.id)
            .values(post_id=survivor.id)
        )
        await self._session.execute(delete(PhotoORM).where(PhotoORM.post_id == duplicate.id))
        await self._flush()
        await self._session.delete(duplicate)
        await self._flush()

    # --- variantes linguistiques -----------------------------------------

    async def list_logs(self, post_id: int) -> list[LogORM]:
        stmt = select(LogORM).where(LogORM.post_id == post_id).order_by(LogORM.id)
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_log(self, post_id: int, language: str) -> LogORM | None:
        stmt = select(LogORM).where(LogORM.post_id == post_id, LogORM.language == language)
        return (await self._session.execute(stmt)).scalars().first()

    async def create_log(self, post_id: int, language: str, fields: dict[str, Any]) -> LogORM:
        """Insère une variante. Lève IntegrityError sur doublon (post, langue)."""
        log = LogORM(post_id=post_id, language=language, **fields)
        self._session.add(log)
        await self._flush()
        return log

    async def update_log(self, log: LogORM, fields: dict[str, Any]) -> None:
        for name, value in fields.items():
            setattr(log, name, value)
        await self._flush()

    # --- photos ------------------------------------------------------------

    async def get_photo(self, post_id: int) -> PhotoORM | None:
        stmt = select(PhotoORM).where(PhotoORM.post_id == post_id)
        return (await self._session.execute(stmt)).scalars().first()

    async def upsert_photo(self, post_id: int, fields: dict[str, Any]) -> PhotoORM:
        """Crée la photo si absente, sinon la met à jour en place."""
        photo = await self.get_photo(post_id)
        if photo is None:
            photo = PhotoORM(post_id=post_id, **fields)
            self._session.add(photo)
        else:
            for name, value in fields.items():
                setattr(photo, name, value)
        await self._flush()
        return photo

    # --- collections -------------------------------------------------------

    async def get_collection(
        self, model: CollectionModel, sanity_id: str
    ) -> CollectionORM | DevCollectionORM | None:
        stmt = select(model).where(model.sanity_id == sanity_id)
        return (await self._session.execute(stmt)).scalars().first()

    async def create_collection(
        self, model: CollectionModel, sanity_id: str, fields: dict[str, Any]
    ) -> CollectionORM | DevCollectionORM:
        row = model(sanity_id=sanity_id, **fields)
        self._session.add(row)
        await self._flush()
        return row

    async def update_collection(
        self, row: CollectionORM | DevCollectionORM, fields: dict[str, Any]
    ) -> None:
        for name, value in fields.items():
            setattr(row, name, value)
        await self._flush()

    async def soft_delete_collection(
        self, row: CollectionORM | DevCollectionORM, when: datetime | None = None
    ) -> None:
        if row.is_deleted:
            return
        row.is_deleted = True
        row.deleted_at = when or utcnow()
        await self._flush()
