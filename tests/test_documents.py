"""
Tests du décodage des documents CMS et des notifications webhook.
"""

import pytest
from pydantic import ValidationError

from content_sync.domain.documents import (
    ChangeNotification,
    CollectionDocument,
    LogDocument,
    Operation,
    PhotoDocument,
    WebhookPayload,
    decode_document,
    localized,
)
from content_sync.domain.errors import InvalidDocument, UnsupportedDocumentType
from content_sync.domain.invalidation import InvalidationTask
from tests.fakes import collection_state, log_state, photo_state


class TestDecodeDocument:
    """Union discriminée par `_type`."""

    def test_variants(self):
        assert isinstance(decode_document(log_state("log-1")), LogDocument)
        assert isinstance(decode_document(photo_state("photo-1")), PhotoDocument)
        assert isinstance(decode_document(collection_state("col-1")), CollectionDocument)

    def test_unknown_type(self):
        with pytest.raises(UnsupportedDocumentType) as exc_info:
            decode_document({"_id": "p-1", "_type": "podcast"})

        assert exc_info.value.document_type == "podcast"
        assert exc_info.value.document_id == "p-1"

    @pytest.mark.parametrize("raw", [None, [], {"_type": "log"}, {"_id": "", "_type": "log"}])
    def test_invalid_documents(self, raw):
        with pytest.raises(InvalidDocument):
            decode_document(raw)

    def test_unknown_fields_are_kept(self):
        doc = decode_document(log_state("log-1", customField=1))

        assert doc.to_state()["customField"] == 1

    def test_log_asset_refs_include_portable_text_images(self):
        doc = decode_document(
            log_state(
                "log-1",
                mainImage={"asset": {"_ref": "image-a-1x1-jpg"}},
                content=[
                    {"_type": "image", "asset": {"_ref": "image-b-1x1-png"}},
                    {"_type": "image", "asset": {"_ref": "file-c-pdf"}},
                    {"_type": "block"},
                ],
            )
        )

        assert doc.asset_refs() == ["image-a-1x1-jpg", "image-b-1x1-png"]

    def test_photo_asset_id_prefers_explicit_field(self):
        doc = decode_document(photo_state("photo-1", sanityAssetId="image-x-1x1-jpg"))

        assert doc.asset_id == "image-x-1x1-jpg"

    def test_blank_slug_is_none(self):
        doc = decode_document({"_id": "col-1", "_type": "collection", "slug": {"current": ""}})

        assert doc.slug_value is None


def test_localized_accepts_object_and_flat_fields():
    obj = decode_document(collection_state("col-1"))
    flat = decode_document(
        {"_id": "col-2", "_type": "collection", "nameEn": "Travel", "nameZh": "旅行"}
    )

    assert localized(obj.name, obj.name_en, obj.name_zh) == ("Travel", "旅行")
    assert localized(flat.name, flat.name_en, flat.name_zh) == ("Travel", "旅行")


class TestChangeNotification:
    """Construction d'une notification depuis le corps du webhook."""

    def test_delete_uses_before_state(self):
        payload = WebhookPayload.model_validate(
            {"operation": "delete", "beforeState": log_state("log-1"), "afterState": None}
        )

        notification = ChangeNotification.from_payload(payload)

        assert notification.operation is Operation.DELETE
        assert notification.document_id == "log-1"
        assert notification.before is notification.document
        assert notification.after is None

    def test_update_tolerates_an_undecodable_before_state(self):
        payload = WebhookPayload.model_validate(
            {
                "operation": "update",
                "beforeState": {"_id": "log-1", "_type": "podcast"},
                "afterState": log_state("log-1"),
            }
        )

        notification = ChangeNotification.from_payload(payload)

        assert notification.content_type == "log"
        assert notification.before is None

    def test_unknown_operation_is_rejected(self):
        with pytest.raises(ValidationError):
            WebhookPayload.model_validate({"operation": "rename", "afterState": {}})

    def test_related_data_is_carried_into_the_task(self):
        payload = WebhookPayload.model_validate(
            {
                "operation": "update",
                "afterState": log_state("log-1"),
                "relatedData": [photo_state("photo-9"), {"_id": "x-1", "_type": "podcast"}],
            }
        )

        task = InvalidationTask.from_notification(ChangeNotification.from_payload(payload))

        assert [item["_id"] for item in task.related_data] == ["photo-9", "x-1"]

    def test_related_data_defaults_to_empty(self):
        payload = WebhookPayload.model_validate(
            {"operation": "create", "afterState": log_state("log-1")}
        )

        assert ChangeNotification.from_payload(payload).related_data == []
