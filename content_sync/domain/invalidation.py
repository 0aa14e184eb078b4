"""Tâche d'invalidation et règle de fusion par `(content_type, document_id)`."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .documents import ChangeNotification, ContentDocument, Operation


def _merge_related(
    first: list[dict[str, Any]], second: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    merged: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in [*first, *second]:
        item_id = item.get("_id")
        if item_id is None:
            if item not in merged:
                merged.append(item)
            continue
        if item_id in seen:
            continue
        seen.add(item_id)
        merged.append(item)
    return merged


@dataclass
class InvalidationTask:
    """Unité de travail du planificateur d'invalidation.

    Deux tâches de même clé `(content_type, document_id)` fusionnent: opération la plus récente,
    dernier `after_state` non nul, premier `before_state` connu (ancien slug), union des
    `related_data` par `_id`.
    """

    content_type: str
    operation: Operation
    document_id: str
    before_state: ContentDocument | None = None
    after_state: ContentDocument | None = None
    related_data: list[dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.content_type, self.document_id)

    @classmethod
    def from_notification(cls, notification: ChangeNotification) -> InvalidationTask:
        return cls(
            content_type=notification.content_type,
            operation=notification.operation,
            document_id=notification.document_id,
            before_state=notification.before,
            after_state=notification.after,
            related_data=list(notification.related_data),
        )

    def merge(self, later: InvalidationTask) -> InvalidationTask:
        """Fusionne `later` (reçue après `self`) dans une nouvelle tâche."""
        return InvalidationTask(
            content_type=self.content_type,
            operation=later.operation,
            document_id=self.document_id,
            before_state=self.before_state if self.before_state is not None else later.before_state,
            after_state=later.after_state if later.after_state is not None else self.after_state,
            related_data=_merge_related(self.related_data, later.related_data),
        )

    def snapshots(self) -> list[ContentDocument]:
        """Instantanés disponibles, après puis avant."""
        return [doc for doc in (self.after_state, self.before_state) if doc is not None]


def merge_tasks(tasks: Iterable[InvalidationTask]) -> list[InvalidationTask]:
    """Fusionne une file de tâches par clé en conservant l'ordre de première apparition."""
    merged: dict[tuple[str, str], InvalidationTask] = {}
    for task in tasks:
        current = merged.get(task.key)
        merged[task.key] = task if current is None else current.merge(task)
    return list(merged.values())
