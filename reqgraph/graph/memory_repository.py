# reqgraph/graph/memory_repository.py
"""
In-Memory Graph Repository für Tests und Entwicklung.

Implementiert das gleiche Interface wie Neo4jRepository, speichert aber alles
in Python-Dictionaries. Ein RLock schützt die Datenstrukturen, es gibt aber
kein atomares MERGE über mehrere Aufrufe hinweg (supports_atomic_merge=False);
der GraphSynchronizer serialisiert deshalb pro Projekt.

Knoten-Keys: "<Label>:<Merge-Key>", z.B. "SoftwareRequirement:REQ-001".
Kanten: (source_key, type, target_key).
"""

import uuid
import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Dict, Any, Optional, Iterable, Set, Tuple

import numpy as np

from reqgraph.errors import GraphWriteError
from reqgraph.graph.base import GraphRepository, UpsertResult, AuxiliaryNodeInfo, SimilarRequirement
from reqgraph.models.requirements import (
    ApplicationRecord, RequirementRecord, RoleRecord, RelationshipRecord,
    GraphNode, AuxiliaryKind, normalize_name,
)

logger = logging.getLogger(__name__)

Edge = Tuple[str, str, str]

AUX_RELATIONS = {kind.relation for kind in AuxiliaryKind}


def bump_version(version: str) -> str:
    """'1.0' -> '1.1', '1.9' -> '2.0'."""
    current = Decimal(version or "1.0")
    return str((current + Decimal("0.1")).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _key(label: str, value: str) -> str:
    return f"{label}:{value}"


def _similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Kosinus auf [0, 1] abgebildet, wie vector.similarity.cosine in Neo4j."""
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float((1 + np.dot(a, b) / (norm_a * norm_b)) / 2)


class InMemoryGraphRepository(GraphRepository):
    """
    In-Memory Graph Repository für schnelle Tests.

    Unterstützt die gleichen Operationen wie Neo4jRepository.
    """

    supports_atomic_merge = False

    def __init__(self):
        self._lock = threading.RLock()
        self._nodes: Dict[str, Dict[str, Any]] = {}     # key -> {"label", "props"}
        self._edges: Set[Edge] = set()
        self._incoming: Dict[str, Set[Edge]] = defaultdict(set)
        self._outgoing: Dict[str, Set[Edge]] = defaultdict(set)

        logger.info("InMemoryGraphRepository initialisiert")

    # =========================================================================
    # Interne Helfer
    # =========================================================================

    def _add_edge(self, source: str, rel_type: str, target: str) -> bool:
        edge = (source, rel_type, target)
        if edge in self._edges:
            return False
        self._edges.add(edge)
        self._outgoing[source].add(edge)
        self._incoming[target].add(edge)
        return True

    def _remove_edge(self, edge: Edge):
        self._edges.discard(edge)
        self._outgoing[edge[0]].discard(edge)
        self._incoming[edge[2]].discard(edge)

    def _delete_node(self, key: str):
        for edge in list(self._incoming.get(key, ())) + list(self._outgoing.get(key, ())):
            self._remove_edge(edge)
        self._incoming.pop(key, None)
        self._outgoing.pop(key, None)
        self._nodes.pop(key, None)

    def _has_any_edge(self, key: str) -> bool:
        return bool(self._incoming.get(key)) or bool(self._outgoing.get(key))

    def _nodes_with_label(self, label: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(k, n) for k, n in self._nodes.items() if n["label"] == label]

    # =========================================================================
    # Projekte
    # =========================================================================

    def get_or_create_application(self, name: str, now: datetime) -> ApplicationRecord:
        name_key = normalize_name(name)
        with self._lock:
            key = _key("SoftwareApplication", name_key)
            node = self._nodes.get(key)
            if node is None:
                node = {
                    "label": "SoftwareApplication",
                    "props": {"name": name.strip(), "nameKey": name_key, "createdAt": now},
                }
                self._nodes[key] = node
                logger.debug(f"Projekt angelegt: {name_key}")
            props = node["props"]
            return ApplicationRecord(name=props["name"], name_key=name_key, created_at=props["createdAt"])

    # =========================================================================
    # Anforderungen
    # =========================================================================

    def upsert_requirement(
        self,
        application: ApplicationRecord,
        record: RequirementRecord,
        nodes: List[GraphNode],
        now: datetime,
    ) -> UpsertResult:
        with self._lock:
            app_key = _key("SoftwareApplication", application.name_key)
            if app_key not in self._nodes:
                raise GraphWriteError(
                    f"Projekt {application.name_key} existiert nicht", identifier=record.identifier
                )

            key = _key("SoftwareRequirement", record.identifier)
            existing = self._nodes.get(key)
            created = existing is None

            if created:
                props = {"version": "1.0", "createdAt": now}
                updated_at = now
            else:
                props = dict(existing["props"])
                props["version"] = bump_version(props.get("version", "1.0"))
                previous = props.get("updatedAt")
                updated_at = now
                if previous is not None and previous >= now:
                    updated_at = previous + timedelta(microseconds=1)

            props.update(record.to_properties())
            if record.embedding:
                props["embedding"] = [float(v) for v in record.embedding]
            props["updatedAt"] = updated_at
            self._nodes[key] = {"label": "SoftwareRequirement", "props": props}
            self._add_edge(app_key, "HAS_REQUIREMENT", key)

            self._replace_auxiliaries(key, nodes, now)

            return UpsertResult(
                identifier=record.identifier,
                created=created,
                version=props["version"],
                created_at=props["createdAt"],
                updated_at=updated_at,
            )

    def _replace_auxiliaries(self, req_key: str, nodes: List[GraphNode], now: datetime):
        # alte Hilfskanten löschen, verwaiste Nicht-Person-Knoten entfernen
        for edge in [e for e in self._outgoing.get(req_key, ()) if e[1] in AUX_RELATIONS]:
            self._remove_edge(edge)
            target = edge[2]
            node = self._nodes.get(target)
            if node and node["label"] != "Person" and not self._has_any_edge(target):
                self._delete_node(target)

        for graph_node in nodes:
            kind = graph_node.kind
            if kind is AuxiliaryKind.STAKEHOLDER:
                name = graph_node.properties["name"]
                target = _key(kind.label, name)
                if target not in self._nodes:
                    props = dict(graph_node.properties)
                    props["createdAt"] = now
                    self._nodes[target] = {"label": kind.label, "props": props}
            else:
                node_id = str(uuid.uuid4())
                target = _key(kind.label, node_id)
                props = dict(graph_node.properties)
                props.update({"id": node_id, "createdAt": now})
                self._nodes[target] = {"label": kind.label, "props": props}
            self._add_edge(req_key, kind.relation, target)

    def get_requirement(self, identifier: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            node = self._nodes.get(_key("SoftwareRequirement", identifier))
            return dict(node["props"]) if node else None

    def find_similar_requirements(
        self,
        embedding: List[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SimilarRequirement]:
        query = np.asarray(embedding, dtype=float)
        with self._lock:
            candidates = [
                n["props"] for _, n in self._nodes_with_label("SoftwareRequirement")
                if n["props"].get("embedding") and len(n["props"]["embedding"]) == len(query)
            ]
        hits = []
        for props in candidates:
            similarity = _similarity(np.asarray(props["embedding"], dtype=float), query)
            if similarity >= min_similarity:
                hits.append(SimilarRequirement(props["identifier"], props.get("name", ""), similarity))
        hits.sort(key=lambda h: (-h.similarity, h.identifier))
        return hits[:limit]

    def existing_requirements(self, identifiers: Iterable[str]) -> Set[str]:
        with self._lock:
            return {i for i in identifiers if _key("SoftwareRequirement", i) in self._nodes}

    def auxiliaries_of(self, identifier: str, kind: AuxiliaryKind) -> List[Dict[str, Any]]:
        """Properties der Hilfsknoten einer Anforderung (für Tests/Debugging)."""
        with self._lock:
            key = _key("SoftwareRequirement", identifier)
            return [
                dict(self._nodes[e[2]]["props"])
                for e in self._outgoing.get(key, ())
                if e[1] == kind.relation
            ]

    # =========================================================================
    # Rollen und Beziehungen
    # =========================================================================

    def upsert_role(self, role: RoleRecord, now: datetime) -> None:
        with self._lock:
            key = _key("Role", role.id)
            node = self._nodes.get(key)
            props = dict(node["props"]) if node else {"createdAt": now}
            props.update(role.to_properties())
            props["updatedAt"] = now
            self._nodes[key] = {"label": "Role", "props": props}

    def existing_roles(self, role_ids: Iterable[str]) -> Set[str]:
        with self._lock:
            return {i for i in role_ids if _key("Role", i) in self._nodes}

    def link(self, relationship: RelationshipRecord) -> bool:
        target_label = "Role" if relationship.type.targets_role else "SoftwareRequirement"
        with self._lock:
            source = _key("SoftwareRequirement", relationship.source)
            target = _key(target_label, relationship.target)
            if source not in self._nodes or target not in self._nodes:
                return False
            self._add_edge(source, relationship.type.value, target)
            return True

    def has_relationship(self, source: str, rel_type: str, target: str) -> bool:
        with self._lock:
            return any(
                e[1] == rel_type and e[2].split(":", 1)[1] == target
                for e in self._outgoing.get(_key("SoftwareRequirement", source), ())
            )

    # =========================================================================
    # Sweeper-Primitive
    # =========================================================================

    def list_auxiliary_nodes(self, label: str) -> List[AuxiliaryNodeInfo]:
        with self._lock:
            return [
                AuxiliaryNodeInfo(
                    id=n["props"].get("id", ""),
                    description=n["props"].get("description", ""),
                    created_at=n["props"].get("createdAt"),
                )
                for _, n in self._nodes_with_label(label)
            ]

    def merge_auxiliary_nodes(self, label: str, relation: str, keeper_id: str, duplicate_ids: List[str]) -> int:
        with self._lock:
            keeper = _key(label, keeper_id)
            if keeper not in self._nodes:
                raise GraphWriteError(f"Keeper {keeper} existiert nicht")
            deleted = 0
            for dup_id in duplicate_ids:
                dup = _key(label, dup_id)
                if dup not in self._nodes:
                    continue
                for edge in list(self._incoming.get(dup, ())):
                    self._add_edge(edge[0], edge[1], keeper)
                self._delete_node(dup)
                deleted += 1
            return deleted

    def delete_orphans(self, label: str) -> int:
        with self._lock:
            orphans = [k for k, _ in self._nodes_with_label(label) if not self._incoming.get(k)]
            for key in orphans:
                self._delete_node(key)
            return len(orphans)

    # =========================================================================
    # Statistiken
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Knotenzahlen pro Label, Kantenzahl und Anforderungen pro Projekt."""
        with self._lock:
            nodes: Dict[str, int] = defaultdict(int)
            for node in self._nodes.values():
                nodes[node["label"]] += 1

            projects = {}
            for key, node in self._nodes_with_label("SoftwareApplication"):
                projects[node["props"]["name"]] = sum(
                    1 for e in self._outgoing.get(key, ()) if e[1] == "HAS_REQUIREMENT"
                )

            return {"nodes": dict(nodes), "relationships": len(self._edges), "projects": projects}

    def clear(self):
        """Löscht alle Daten (für Tests)."""
        with self._lock:
            self._nodes.clear()
            self._edges.clear()
            self._incoming.clear()
            self._outgoing.clear()
        logger.info("Graph geleert")

    def __len__(self) -> int:
        """Anzahl der Knoten."""
        return len(self._nodes)

    def __repr__(self) -> str:
        stats = self.get_stats()
        return (f"InMemoryGraphRepository("
                f"nodes={sum(stats['nodes'].values())}, "
                f"relationships={stats['relationships']})")
