# reqgraph/graph/base.py
"""
Gemeinsames Interface für Neo4jRepository und InMemoryGraphRepository.

Der GraphSynchronizer und der DeduplicationSweeper sprechen nur gegen dieses
Interface, damit Tests ohne Neo4j laufen.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Set

from reqgraph.models.requirements import (
    ApplicationRecord, RequirementRecord, RoleRecord, RelationshipRecord, GraphNode,
)


@dataclass
class UpsertResult:
    """Zustand einer Anforderung nach dem Schreiben."""
    identifier: str
    created: bool
    version: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "created": self.created,
            "version": self.version,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class AuxiliaryNodeInfo:
    """Minimale Sicht auf einen Hilfsknoten für den Sweeper."""
    id: str
    description: str
    created_at: Optional[datetime] = None


@dataclass
class SimilarRequirement:
    """Treffer der Ähnlichkeitssuche; similarity in [0, 1] ((1 + cos) / 2)."""
    identifier: str
    name: str
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return {"identifier": self.identifier, "name": self.name, "similarity": round(self.similarity, 4)}


class GraphRepository(ABC):
    """Abstraktes Repository für den Anforderungsgraphen."""

    # True, wenn create-or-match atomar im Store passiert (MERGE + Constraint)
    supports_atomic_merge: bool = False

    # -------------------------------------------------------------------------
    # Projekte / Anforderungen
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_or_create_application(self, name: str, now: datetime) -> ApplicationRecord:
        """Löst ein Projekt über den normalisierten Namen auf oder legt es an."""

    @abstractmethod
    def upsert_requirement(
        self,
        application: ApplicationRecord,
        record: RequirementRecord,
        nodes: List[GraphNode],
        now: datetime,
    ) -> UpsertResult:
        """
        Schreibt eine Anforderung inklusive Hilfsknoten in einer Transaktion.

        Raises:
            GraphWriteError: Schreiben fehlgeschlagen
            ServiceUnavailableError: Store nicht erreichbar
        """

    @abstractmethod
    def upsert_role(self, role: RoleRecord, now: datetime) -> None:
        """Legt eine Rolle an oder aktualisiert sie (Merge-Key: id)."""

    @abstractmethod
    def existing_requirements(self, identifiers: Iterable[str]) -> Set[str]:
        """Teilmenge der identifier, die im Store existieren."""

    @abstractmethod
    def existing_roles(self, role_ids: Iterable[str]) -> Set[str]:
        """Teilmenge der Rollen-IDs, die im Store existieren."""

    @abstractmethod
    def link(self, relationship: RelationshipRecord) -> bool:
        """Erzeugt eine Kante (idempotent). False, wenn ein Endpunkt fehlt."""

    @abstractmethod
    def get_requirement(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Properties einer Anforderung oder None."""

    @abstractmethod
    def find_similar_requirements(
        self,
        embedding: List[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SimilarRequirement]:
        """Anforderungen mit gespeichertem Embedding, absteigend nach Ähnlichkeit."""

    # -------------------------------------------------------------------------
    # Sweeper-Primitive
    # -------------------------------------------------------------------------

    @abstractmethod
    def list_auxiliary_nodes(self, label: str) -> List[AuxiliaryNodeInfo]:
        """Alle Knoten eines Hilfslabels (Risk, Constraint, Assumption)."""

    @abstractmethod
    def merge_auxiliary_nodes(self, label: str, relation: str, keeper_id: str, duplicate_ids: List[str]) -> int:
        """Biegt eingehende Kanten der Duplikate auf den Keeper um und löscht die Duplikate."""

    @abstractmethod
    def delete_orphans(self, label: str) -> int:
        """Löscht Knoten des Labels ohne eingehende Kanten."""

    # -------------------------------------------------------------------------
    # Verwaltung
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Knotenzahlen pro Label und Anforderungen pro Projekt."""

    def close(self):
        """Gibt Ressourcen frei."""
