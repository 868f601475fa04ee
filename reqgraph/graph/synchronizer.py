# reqgraph/graph/synchronizer.py
"""
Graph-Synchronisation: schreibt einen RequirementsGraph idempotent in den Store.

Ablauf:
1. Projekt über den normalisierten Namen auflösen (oder anlegen)
2. Pro Anforderung eine Transaktion (Anlage mit Version 1.0 bzw. Update +0.1,
   Hilfsknoten neu erzeugen)
3. Rollen schreiben
4. Beziehungen erst nach allen Anforderungen anlegen; fehlende Endpunkte
   werden mit Warnung übersprungen

Fehler einzelner Datensätze (GraphWriteError) werden gesammelt, die übrigen
Datensätze laufen weiter. ServiceUnavailableError bricht ab.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional, Callable

from reqgraph.errors import GraphWriteError, TaskCancelledError
from reqgraph.graph.base import GraphRepository, UpsertResult
from reqgraph.graph.normalization import normalize_sub_entities
from reqgraph.models.requirements import (
    ApplicationRecord, RequirementsGraph, RelationshipRecord, normalize_name, utc_now,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncConfig:
    """Konfiguration für die Synchronisation."""
    # Schreibvorgänge pro Projekt immer serialisieren (auch bei atomarem MERGE)
    serialize_per_project: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncConfig":
        data = data or {}
        return cls(serialize_per_project=bool(data.get("serialize_per_project", False)))


@dataclass
class RecordError:
    identifier: str
    message: str
    kind: str = "requirement"

    def to_dict(self) -> Dict[str, str]:
        return {"identifier": self.identifier, "kind": self.kind, "message": self.message}


@dataclass
class SyncResult:
    """Ergebnis einer Synchronisation."""
    application: Optional[ApplicationRecord] = None
    outcomes: Dict[str, UpsertResult] = field(default_factory=dict)
    errors: List[RecordError] = field(default_factory=list)
    linked: List[RelationshipRecord] = field(default_factory=list)
    dropped_relationships: List[RelationshipRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    roles_written: int = 0

    @property
    def created(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.created)

    @property
    def updated(self) -> int:
        return sum(1 for o in self.outcomes.values() if not o.created)

    @property
    def failed(self) -> int:
        return sum(1 for e in self.errors if e.kind == "requirement")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": self.application.name if self.application else None,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "roles": self.roles_written,
            "relationships": len(self.linked),
            "dropped_relationships": [r.to_dict() for r in self.dropped_relationships],
            "outcomes": {k: v.to_dict() for k, v in self.outcomes.items()},
            "errors": [e.to_dict() for e in self.errors],
        }


class _KeyedLocks:
    """Ein Lock pro Schlüssel (normalisierter Projektname)."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


_PROJECT_LOCKS = _KeyedLocks()


class GraphSynchronizer:
    """
    Synchronisiert extrahierte Anforderungen in den Graph-Store.

    Verwendung:
        sync = GraphSynchronizer(create_repository())
        result = sync.sync("Shop", graph)
    """

    def __init__(
        self,
        repository: GraphRepository,
        config: SyncConfig = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.config = config or SyncConfig()
        self.clock = clock

    def sync(
        self,
        project_name: str,
        graph: RequirementsGraph,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncResult:
        """
        Schreibt den Graphen.

        Raises:
            ServiceUnavailableError: Store nicht erreichbar
            TaskCancelledError: cancel_event zwischen zwei Anforderungen gesetzt
        """
        if not normalize_name(project_name):
            raise GraphWriteError("Projektname darf nicht leer sein")

        serialize = self.config.serialize_per_project or not self.repository.supports_atomic_merge
        guard = _PROJECT_LOCKS.hold(normalize_name(project_name)) if serialize else nullcontext()

        with guard:
            return self._sync(project_name, graph, cancel_event)

    def _sync(self, project_name: str, graph: RequirementsGraph, cancel_event) -> SyncResult:
        result = SyncResult()
        result.application = self.repository.get_or_create_application(project_name, self.clock())
        logger.info(
            f"Synchronisiere {len(graph.requirements)} Anforderungen nach "
            f"'{result.application.name}' ({result.application.name_key})"
        )

        for record in graph.requirements:
            if cancel_event is not None and cancel_event.is_set():
                raise TaskCancelledError(
                    f"Synchronisation abgebrochen nach {len(result.outcomes)} Anforderungen"
                )
            try:
                nodes = normalize_sub_entities(record)
                outcome = self.repository.upsert_requirement(
                    result.application, record, nodes, self.clock()
                )
            except GraphWriteError as e:
                logger.error(f"Anforderung {record.identifier} nicht geschrieben: {e}")
                result.errors.append(RecordError(identifier=record.identifier, message=str(e)))
                continue

            record.version = outcome.version
            record.created_at = outcome.created_at
            record.updated_at = outcome.updated_at
            result.outcomes[record.identifier] = outcome
            logger.debug(
                f"{record.identifier}: {'angelegt' if outcome.created else 'aktualisiert'} "
                f"(Version {outcome.version})"
            )

        for role in graph.roles:
            try:
                self.repository.upsert_role(role, self.clock())
                result.roles_written += 1
            except GraphWriteError as e:
                logger.error(f"Rolle {role.id} nicht geschrieben: {e}")
                result.errors.append(RecordError(identifier=role.id, message=str(e), kind="role"))

        self._link_relationships(graph.relationships, result)

        logger.info(
            f"Synchronisation fertig: {result.created} neu, {result.updated} aktualisiert, "
            f"{result.failed} fehlgeschlagen, {len(result.linked)} Beziehungen, "
            f"{len(result.dropped_relationships)} verworfen"
        )
        return result

    def _link_relationships(self, relationships: List[RelationshipRecord], result: SyncResult):
        if not relationships:
            return

        written = set(result.outcomes)
        requirement_ids = {r.source for r in relationships} | {
            r.target for r in relationships if not r.type.targets_role
        }
        known_requirements = written | self.repository.existing_requirements(requirement_ids - written)
        known_roles = self.repository.existing_roles(
            {r.target for r in relationships if r.type.targets_role}
        )

        for rel in relationships:
            targets = known_roles if rel.type.targets_role else known_requirements
            if rel.source not in known_requirements or rel.target not in targets:
                missing = rel.source if rel.source not in known_requirements else rel.target
                message = f"Beziehung {rel.type.value} {rel.source} -> {rel.target} verworfen: {missing} existiert nicht"
                logger.warning(message)
                result.warnings.append(message)
                result.dropped_relationships.append(rel)
                continue
            try:
                if self.repository.link(rel):
                    result.linked.append(rel)
                else:
                    message = f"Beziehung {rel.type.value} {rel.source} -> {rel.target}: Endpunkt nicht gefunden"
                    logger.warning(message)
                    result.warnings.append(message)
                    result.dropped_relationships.append(rel)
            except GraphWriteError as e:
                logger.error(f"Beziehung {rel.source} -> {rel.target} nicht geschrieben: {e}")
                result.errors.append(RecordError(
                    identifier=f"{rel.type.value}:{rel.source}->{rel.target}",
                    message=str(e),
                    kind="relationship",
                ))
