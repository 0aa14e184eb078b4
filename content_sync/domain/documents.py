# ============================================================
# Module : content_sync/domain/documents.py
# Objet  : Union fermée des documents CMS + payload du webhook.
# Notes  : validés à l'entrée (pydantic v2), discriminés sur `_type`.
# ============================================================
"""Modèles typés des documents reçus du CMS.

Chaque variante déclare ses champs utiles et expose `asset_refs()`, qui collecte les références
d'assets image par construction (bloc image du contenu, image principale, image de couverture...).
Les champs inconnus sont conservés (`extra="allow"`) pour ne rien perdre lors des fusions.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import InvalidDocument, UnsupportedDocumentType

IMAGE_ASSET_PREFIX = "image-"


class Operation(str, Enum):
    """Opérations émises par le webhook du CMS."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class _CMSModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Reference(_CMSModel):
    """Référence vers un autre document ou un asset (`_ref`)."""

    ref: str = Field(alias="_ref")
    key: str | None = Field(default=None, alias="_key")


class Slug(_CMSModel):
    current: str | None = None


class LocalizedText(_CMSModel):
    """Champ traduit au niveau du champ (`{en, zh}`)."""

    en: str | None = None
    zh: str | None = None


class ImageField(_CMSModel):
    """Champ image: l'asset est une référence `image-<hash>-<dims>-<ext>`."""

    asset: Reference | None = None

    def asset_ref(self) -> str | None:
        if self.asset and self.asset.ref.startswith(IMAGE_ASSET_PREFIX):
            return self.asset.ref
        return None


class PortableTextBlock(_CMSModel):
    """Bloc de texte riche. Seuls les blocs `image` portent un asset."""

    type_: str | None = Field(default=None, alias="_type")
    asset: Reference | None = None

    def asset_ref(self) -> str | None:
        if self.type_ == "image" and self.asset and self.asset.ref.startswith(IMAGE_ASSET_PREFIX):
            return self.asset.ref
        return None


def _image_refs(*images: ImageField | None) -> list[str]:
    refs = [image.asset_ref() for image in images if image is not None]
    return [ref for ref in refs if ref]


def _block_refs(blocks: Iterable[PortableTextBlock]) -> list[str]:
    refs = [block.asset_ref() for block in blocks]
    return [ref for ref in refs if ref]


class _Document(_CMSModel):
    id: str = Field(alias="_id", min_length=1)
    rev: str | None = Field(default=None, alias="_rev")
    slug: Slug | None = None

    @property
    def slug_value(self) -> str | None:
        """Slug courant, ou None si absent/vide."""
        if self.slug and self.slug.current:
            return self.slug.current
        return None

    def asset_refs(self) -> list[str]:
        """Références d'assets image portées par ce document."""
        return []

    def to_state(self) -> dict[str, Any]:
        """Sérialise le document dans sa forme CMS (alias `_id`, `_type`...)."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class CollectionDocument(_Document):
    type_: Literal["collection"] = Field(alias="_type")
    name: LocalizedText | str | None = None
    name_en: str | None = Field(default=None, alias="nameEn")
    name_zh: str | None = Field(default=None, alias="nameZh")
    description: LocalizedText | str | None = None
    description_en: str | None = Field(default=None, alias="descriptionEn")
    description_zh: str | None = Field(default=None, alias="descriptionZh")
    is_featured: bool = Field(default=False, alias="isFeatured")
    cover_image: ImageField | None = Field(default=None, alias="coverImage")
    photos: list[Reference] = Field(default_factory=list)

    def asset_refs(self) -> list[str]:
        return _image_refs(self.cover_image)


class PhotoDocument(_Document):
    type_: Literal["photo"] = Field(alias="_type")
    title: LocalizedText | str | None = None
    description: LocalizedText | str | None = None
    image_file: ImageField | None = Field(default=None, alias="imageFile")
    sanity_asset_id: str | None = Field(default=None, alias="sanityAssetId")

    def asset_refs(self) -> list[str]:
        refs = _image_refs(self.image_file)
        if self.sanity_asset_id and self.sanity_asset_id.startswith(IMAGE_ASSET_PREFIX):
            refs.append(self.sanity_asset_id)
        return refs

    @property
    def asset_id(self) -> str | None:
        """Identifiant d'asset à persister (champ explicite, sinon l'asset du fichier)."""
        if self.sanity_asset_id:
            return self.sanity_asset_id
        if self.image_file and self.image_file.asset:
            return self.image_file.asset.ref
        return None


class LogDocument(_Document):
    type_: Literal["log"] = Field(alias="_type")
    language: str | None = None
    title: str | None = None
    excerpt: str | None = None
    published_at: datetime | None = Field(default=None, alias="publishedAt")
    tags: list[str] = Field(default_factory=list)
    main_image: ImageField | None = Field(default=None, alias="mainImage")
    content: list[PortableTextBlock] = Field(default_factory=list)
    author: Reference | None = None

    def asset_refs(self) -> list[str]:
        return _image_refs(self.main_image) + _block_refs(self.content)


class DevCollectionDocument(_Document):
    type_: Literal["devCollection"] = Field(alias="_type")
    name: LocalizedText | str | None = None
    name_en: str | None = Field(default=None, alias="nameEn")
    name_zh: str | None = Field(default=None, alias="nameZh")
    description: LocalizedText | str | None = None
    description_en: str | None = Field(default=None, alias="descriptionEn")
    description_zh: str | None = Field(default=None, alias="descriptionZh")
    is_featured: bool = Field(default=False, alias="isFeatured")
    cover_image: ImageField | None = Field(default=None, alias="coverImage")
    cover_image_url: str | None = Field(default=None, alias="coverImageUrl")
    logs: list[Reference] = Field(default_factory=list)

    def asset_refs(self) -> list[str]:
        return _image_refs(self.cover_image)


class AuthorDocument(_Document):
    type_: Literal["author"] = Field(alias="_type")
    name: str | None = None
    image: ImageField | None = None
    social_image: ImageField | None = Field(default=None, alias="socialImage")
    bio: dict[str, list[PortableTextBlock]] | None = None

    def asset_refs(self) -> list[str]:
        refs = _image_refs(self.image, self.social_image)
        for blocks in (self.bio or {}).values():
            refs.extend(_block_refs(blocks))
        return refs


ContentDocument = Annotated[
    CollectionDocument | PhotoDocument | LogDocument | DevCollectionDocument | AuthorDocument,
    Field(discriminator="type_"),
]

DOCUMENT_TYPES = ("collection", "photo", "log", "devCollection", "author")

_DOCUMENT_ADAPTER: TypeAdapter[ContentDocument] = TypeAdapter(ContentDocument)


def decode_document(raw: Any) -> ContentDocument:
    """Décode un état brut du CMS vers sa variante typée.

    Lève `UnsupportedDocumentType` pour un `_type` hors de l'union, `InvalidDocument` si la
    structure ne valide pas.
    """
    if not isinstance(raw, dict):
        raise InvalidDocument("Document data is missing in payload")
    doc_type = raw.get("_type")
    if doc_type not in DOCUMENT_TYPES:
        raise UnsupportedDocumentType(doc_type, raw.get("_id"))
    try:
        return _DOCUMENT_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise InvalidDocument(f"invalid {doc_type} document: {exc.error_count()} error(s)") from exc


def localized(
    value: LocalizedText | str | None, flat_en: str | None, flat_zh: str | None
) -> tuple[str | None, str | None]:
    """Retourne `(en, zh)` depuis la forme objet `{en, zh}` ou les champs plats."""
    if isinstance(value, LocalizedText):
        return value.en or flat_en, value.zh or flat_zh
    if isinstance(value, str):
        return value, flat_zh
    return flat_en, flat_zh


class WebhookPayload(BaseModel):
    """Corps JSON du webhook: opération + états avant/après, documents liés optionnels."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    operation: Operation
    before_state: dict[str, Any] | None = Field(default=None, alias="beforeState")
    after_state: dict[str, Any] | None = Field(default=None, alias="afterState")
    related_data: list[dict[str, Any]] = Field(default_factory=list, alias="relatedData")

    def document_state(self) -> dict[str, Any] | None:
        """État qui décrit le document: `beforeState` pour un delete, sinon `afterState`."""
        if self.operation is Operation.DELETE:
            return self.before_state
        return self.after_state


def _decode_optional(raw: dict[str, Any] | None) -> ContentDocument | None:
    if raw is None:
        return None
    try:
        return decode_document(raw)
    except (InvalidDocument, UnsupportedDocumentType):
        return None


@dataclass
class ChangeNotification:
    """Notification décodée: le document de référence et ses deux instantanés."""

    operation: Operation
    document: ContentDocument
    before: ContentDocument | None = None
    after: ContentDocument | None = None
    related_data: list[dict[str, Any]] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        return self.document.type_

    @property
    def document_id(self) -> str:
        return self.document.id

    @classmethod
    def from_payload(cls, payload: WebhookPayload) -> ChangeNotification:
        """Décode le document de référence (strict) et l'instantané complémentaire (tolérant)."""
        document = decode_document(payload.document_state())
        if payload.operation is Operation.DELETE:
            return cls(
                operation=payload.operation,
                document=document,
                before=document,
                after=_decode_optional(payload.after_state),
                related_data=list(payload.related_data),
            )
        return cls(
            operation=payload.operation,
            document=document,
            before=_decode_optional(payload.before_state),
            after=document,
            related_data=list(payload.related_data),
        )
