# ============================================================
# Module : content_sync/services/content_sync.py
# Objet  : Traduction d'un instantané CMS en upsert/soft-delete SQL.
# Notes  : une transaction par notification, rejouée une fois sur conflit d'unicité.
# ============================================================
"""Répartiteur de synchronisation par type de contenu.

Règles communes:
  - create: no-op si l'enregistrement existe déjà (rejeu idempotent), sinon insertion;
  - update: upsert sur l'identité résolue;
  - delete: soft delete (drapeau + horodatage), jamais de suppression physique.

Les logs (multilingues) passent par la consolidation: toutes les variantes d'un même groupe de
traduction convergent vers un seul post, quel que soit l'ordre de livraison.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..core.http_constants import MAX_CONSOLIDATION_ATTEMPTS
from ..domain.documents import (
    AuthorDocument,
    CollectionDocument,
    ContentDocument,
    DevCollectionDocument,
    LocalizedText,
    LogDocument,
    Operation,
    PhotoDocument,
    localized,
)
from ..domain.errors import UnsupportedDocumentType
from ..domain.translation import ResolutionResult, TranslationGroupInfo
from ..infra.repo.content_repo import ContentRepo
from ..infra.repo.db import session_scope
from ..infra.repo.models import CollectionORM, DevCollectionORM, LogORM, PostORM


def _log_fields(doc: LogDocument) -> dict[str, Any]:
    return {
        "document_id": doc.id,
        "title": doc.title or "",
        "slug": doc.slug_value or "",
        "excerpt": doc.excerpt,
        "published_at": doc.published_at,
        "tags": list(doc.tags),
    }


def _json_text(value: LocalizedText | str | None) -> Any:
    if isinstance(value, LocalizedText):
        return value.model_dump(exclude_none=True)
    return value


def _collection_fields(doc: CollectionDocument | DevCollectionDocument) -> dict[str, Any]:
    name_en, name_zh = localized(doc.name, doc.name_en, doc.name_zh)
    desc_en, desc_zh = localized(doc.description, doc.description_en, doc.description_zh)
    fields: dict[str, Any] = {
        "name_en": name_en or "",
        "name_zh": name_zh or "",
        "slug": doc.slug_value or "",
        "description_en": desc_en,
        "description_zh": desc_zh,
        "is_featured": doc.is_featured,
    }
    if isinstance(doc, DevCollectionDocument):
        fields["cover_image_url"] = doc.cover_image_url
    return fields


class ContentSyncDispatcher:
    """Applique une notification au magasin relationnel.

    Les erreurs de stockage remontent à l'appelant, qui les audite et répond 500.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        author_user_id: str = "default-author",
        default_language: str = "en",
    ) -> None:
        self._engine = engine
        self._author_user_id = author_user_id
        self._default_language = default_language
        self._log = structlog.get_logger(__name__).bind(component="content_sync")

    async def dispatch(
        self, operation: Operation, document: ContentDocument, resolution: ResolutionResult
    ) -> None:
        if isinstance(document, LogDocument):
            await self._sync_log(operation, document, resolution)
        elif isinstance(document, PhotoDocument):
            await self._sync_photo(operation, document)
        elif isinstance(document, CollectionDocument):
            await self._sync_collection(operation, document, CollectionORM)
        elif isinstance(document, DevCollectionDocument):
            await self._sync_collection(operation, document, DevCollectionORM)
        elif isinstance(document, AuthorDocument):
            # pas de représentation durable: invalidation seulement
            self._log.debug("author_no_store_mutation", document_id=document.id)
        else:
            raise UnsupportedDocumentType(getattr(document, "type_", None))

    async def _in_transaction(
        self, work: Callable[[ContentRepo], Awaitable[None]], document_id: str
    ) -> None:
        """Exécute `work` dans une transaction; un conflit d'unicité rejoue une fois.

        Le second passage voit la ligne créée par la requête concurrente et devient une mise à
        jour.
        """
        for attempt in range(1, MAX_CONSOLIDATION_ATTEMPTS + 1):
            try:
                async with session_scope(self._engine) as session:
                    await work(ContentRepo(session))
                return
            except IntegrityError:
                if attempt >= MAX_CONSOLIDATION_ATTEMPTS:
                    raise
                self._log.warning("sync_conflict_retry", document_id=document_id, attempt=attempt)

    # --- logs (multilingues) ---------------------------------------------

    async def _sync_log(
        self, operation: Operation, doc: LogDocument, resolution: ResolutionResult
    ) -> None:
        group = resolution.group
        if operation is Operation.DELETE:
            await self._in_transaction(lambda repo: self._delete_log(repo, doc, group), doc.id)
            return

        language = doc.language or group.language or self._default_language
        fields = _log_fields(doc)

        async def work(repo: ContentRepo) -> None:
            post, existing = await self.consolidate(repo, doc.id, resolution, language)
            if post.is_deleted:
                # le contenu suit le CMS; seul un delete modifie le drapeau
                self._log.info("log_sync_on_deleted_post", post_id=post.id, document_id=doc.id)
            if existing is None:
                await repo.create_log(post.id, language, fields)
                self._log.info("log_created", post_id=post.id, language=language)
            elif operation is Operation.UPDATE:
                await repo.update_log(existing, fields)
                self._log.info("log_updated", post_id=post.id, language=language)
            else:
                self._log.info("log_exists_skip_create", post_id=post.id, language=language)

        await self._in_transaction(work, doc.id)

    async def consolidate(
        self,
        repo: ContentRepo,
        document_id: str,
        resolution: ResolutionResult,
        language: str,
    ) -> tuple[PostORM, LogORM | None]:
        """Trouve (ou crée) l'unique post du groupe et la variante de `language`.

        Recherche par id de groupe, par id frère, puis par propriétaire de la variante issue de
        `document_id`. Un post trouvé sous un id frère est reclé sur l'id du groupe (résolution
        complète uniquement). S'il existe plusieurs posts pour le groupe, le post clé par l'id
        du groupe (sinon le plus ancien) absorbe les autres.
        """
        group = resolution.group
        posts = await repo.find_posts(group.candidate_ids())
        owner = await repo.find_post_by_variant(document_id)
        if owner is not None and all(p.id != owner.id for p in posts):
            posts.append(owner)

        if not posts:
            post = await repo.create_post(group.group_id, "log", self._author_user_id)
            self._log.info("post_created", post_id=post.id, source_document_id=group.group_id)
            return post, None

        if resolution.degraded and owner is not None:
            survivor = next(p for p in posts if p.id == owner.id)
        else:
            survivor = next((p for p in posts if p.source_document_id == group.group_id), posts[0])

        for duplicate in posts:
            if duplicate.id == survivor.id:
                continue
            self._log.warning(
                "post_duplicates_merged",
                survivor_id=survivor.id,
                duplicate_id=duplicate.id,
                duplicate_key=duplicate.source_document_id,
            )
            await repo.absorb_post(survivor, duplicate)

        if not resolution.degraded and survivor.source_document_id != group.group_id:
            self._log.info(
                "post_rekeyed",
                post_id=survivor.id,
                from_key=survivor.source_document_id,
                to_key=group.group_id,
            )
            await repo.rekey_post(survivor, group.group_id)

        return survivor, await repo.get_log(survivor.id, language)

    async def _delete_log(
        self, repo: ContentRepo, doc: LogDocument, group: TranslationGroupInfo
    ) -> None:
        posts = await repo.find_posts(group.candidate_ids())
        owner = await repo.find_post_by_variant(doc.id)
        if owner is not None and all(p.id != owner.id for p in posts):
            posts.append(owner)
        if not posts:
            self._log.info("log_delete_no_post", document_id=doc.id, group_id=group.group_id)
            return
        for post in posts:
            await repo.soft_delete_post(post)
        self._log.info("log_soft_deleted", document_id=doc.id, posts=len(posts))

    # --- photos --------------------------------------------------------------

    async def _sync_photo(self, operation: Operation, doc: PhotoDocument) -> None:
        fields = {
            "sanity_asset_id": doc.asset_id,
            "title_json": _json_text(doc.title),
            "description_json": _json_text(doc.description),
        }

        async def work(repo: ContentRepo) -> None:
            post = await repo.get_post(doc.id)
            if operation is Operation.DELETE:
                if post is None:
                    self._log.info("photo_delete_no_post", document_id=doc.id)
                    return
                await repo.soft_delete_post(post)
                self._log.info("photo_soft_deleted", post_id=post.id)
                return
            if post is None:
                post = await repo.create_post(doc.id, "photo", self._author_user_id)
            elif post.is_deleted:
                self._log.info("photo_sync_on_deleted_post", post_id=post.id)
            if operation is Operation.CREATE and await repo.get_photo(post.id) is not None:
                self._log.info("photo_exists_skip_create", post_id=post.id)
                return
            await repo.upsert_photo(post.id, fields)
            self._log.info("photo_synced", post_id=post.id, operation=operation.value)

        await self._in_transaction(work, doc.id)

    # --- collections -------------------------------------------------------

    async def _sync_collection(
        self,
        operation: Operation,
        doc: CollectionDocument | DevCollectionDocument,
        model: type[CollectionORM] | type[DevCollectionORM],
    ) -> None:
        async def work(repo: ContentRepo) -> None:
            row = await repo.get_collection(model, doc.id)
            if operation is Operation.DELETE:
                if row is not None:
                    await repo.soft_delete_collection(row)
                self._log.info(
                    "collection_soft_deleted", table=model.__tablename__, found=row is not None
                )
                return
            fields = _collection_fields(doc)
            if row is None:
                await repo.create_collection(model, doc.id, fields)
                self._log.info("collection_created", table=model.__tablename__, sanity_id=doc.id)
            elif operation is Operation.UPDATE:
                await repo.update_collection(row, fields)
                self._log.info(
                    "collection_updated",
                    table=model.__tablename__,
                    sanity_id=doc.id,
                    deleted=row.is_deleted,
                )

        await self._in_transaction(work, doc.id)
