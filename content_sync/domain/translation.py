"""Types de résolution des groupes de traduction.

`Resolved` et `Degraded` portent tous deux un `TranslationGroupInfo`; l'appelant choisit
explicitement comment traiter une résolution dégradée (groupe réduit au document lui-même).
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TranslationGroupInfo:
    """Identité d'un groupe de traduction.

    `group_id` est stable pour tous les documents du groupe; en mode dégradé il vaut l'id du
    document déclencheur et `sibling_ids` ne contient que lui.
    """

    group_id: str
    language: str | None
    sibling_ids: list[str] = field(default_factory=list)

    @classmethod
    def single(cls, document_id: str, language: str | None = None) -> TranslationGroupInfo:
        """Groupe d'un seul document (pas de métadonnées de traduction)."""
        return cls(
            group_id=document_id,
            language=language,
            sibling_ids=[document_id] if document_id else [],
        )

    def candidate_ids(self) -> list[str]:
        """Clés possibles d'un enregistrement canonique existant (groupe puis frères)."""
        ids = [self.group_id] if self.group_id else []
        ids.extend(sid for sid in self.sibling_ids if sid and sid not in ids)
        return ids


@dataclass(frozen=True)
class Resolved:
    group: TranslationGroupInfo
    degraded: bool = False


@dataclass(frozen=True)
class Degraded:
    """Résolution de repli; `reason` décrit l'échec de la requête principale."""

    group: TranslationGroupInfo
    reason: str = ""
    degraded: bool = True


ResolutionResult = Resolved | Degraded
