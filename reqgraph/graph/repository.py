# reqgraph/graph/repository.py
"""
Neo4j Repository für den Anforderungsgraphen.

Alle Upserts laufen über MERGE auf eindeutigen Keys (Constraints werden beim
Start angelegt), dadurch ist create-or-match auch bei parallelen Tasks atomar.

Schema:
    (:SoftwareApplication {nameKey})-[:HAS_REQUIREMENT]->(:SoftwareRequirement {identifier})
    (:SoftwareRequirement)-[:HAS_RISK|HAS_CONSTRAINT|HAS_ASSUMPTION]->(:Risk|Constraint|Assumption)
    (:SoftwareRequirement)-[:STAKEHOLDER]->(:Person {name})
    (:SoftwareRequirement)-[:DEPENDS_ON|CONFLICTS_WITH|EXTENDS|RELATED_TO]->(:SoftwareRequirement)
    (:SoftwareRequirement)-[:OWNED_BY]->(:Role {id})
"""

import uuid
import logging
from datetime import datetime
from typing import List, Dict, Any, Optional, Iterable, Set

from reqgraph.errors import GraphWriteError
from reqgraph.graph.base import GraphRepository, UpsertResult, AuxiliaryNodeInfo, SimilarRequirement
from reqgraph.graph.neo4j_connector import Neo4jConnector
from reqgraph.graph.normalization import group_by_kind
from reqgraph.models.requirements import (
    ApplicationRecord, RequirementRecord, RoleRecord, RelationshipRecord,
    GraphNode, AuxiliaryKind, normalize_name,
)

logger = logging.getLogger(__name__)


AUX_RELATIONS = "|".join(kind.relation for kind in AuxiliaryKind)
SWEEPABLE_LABELS = {kind.label: kind.relation for kind in AuxiliaryKind.sweepable_kinds()}
COUNTED_LABELS = ["SoftwareApplication", "SoftwareRequirement", "Role", "Person", "Risk", "Constraint", "Assumption"]


def _to_native(value: Any) -> Any:
    """neo4j.time.DateTime -> datetime."""
    if hasattr(value, "to_native"):
        return value.to_native()
    return value


class Neo4jRepository(GraphRepository):
    """
    High-Level Repository für Anforderungsgraphen.
    Nutzt den Neo4jConnector unter der Haube.
    """

    supports_atomic_merge = True

    def __init__(self, connector: Neo4jConnector, setup_schema: bool = True):
        self.connector = connector
        if setup_schema:
            self._setup_constraints()

    def _setup_constraints(self):
        """Eindeutigkeits-Constraints (machen MERGE atomar) und Indizes."""
        statements = [
            "CREATE CONSTRAINT application_name_key IF NOT EXISTS "
            "FOR (a:SoftwareApplication) REQUIRE a.nameKey IS UNIQUE",
            "CREATE CONSTRAINT requirement_identifier IF NOT EXISTS "
            "FOR (r:SoftwareRequirement) REQUIRE r.identifier IS UNIQUE",
            "CREATE CONSTRAINT role_id IF NOT EXISTS FOR (r:Role) REQUIRE r.id IS UNIQUE",
            "CREATE CONSTRAINT person_name IF NOT EXISTS FOR (p:Person) REQUIRE p.name IS UNIQUE",
            "CREATE INDEX risk_description IF NOT EXISTS FOR (n:Risk) ON (n.description)",
            "CREATE INDEX constraint_description IF NOT EXISTS FOR (n:Constraint) ON (n.description)",
            "CREATE INDEX assumption_description IF NOT EXISTS FOR (n:Assumption) ON (n.description)",
        ]
        for statement in statements:
            try:
                self.connector.execute_query(statement)
            except GraphWriteError as e:
                logger.debug(f"Constraint existiert bereits oder Fehler: {e}")

    # =========================================================================
    # Projekte
    # =========================================================================

    def get_or_create_application(self, name: str, now: datetime) -> ApplicationRecord:
        query = """
        MERGE (app:SoftwareApplication {nameKey: $nameKey})
        ON CREATE SET app.name = $name, app.createdAt = $now
        RETURN app.name AS name, app.nameKey AS nameKey, app.createdAt AS createdAt
        """
        rows = self.connector.execute_write([
            (query, {"nameKey": normalize_name(name), "name": name.strip(), "now": now})
        ])[0]
        if not rows:
            raise GraphWriteError(f"Projekt konnte nicht angelegt werden: {name}")
        row = rows[0]
        return ApplicationRecord(
            name=row["name"],
            name_key=row["nameKey"],
            created_at=_to_native(row.get("createdAt")),
        )

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
        statements = [self._requirement_statement(application, record, now)]
        statements.append(self._clear_auxiliaries_statement(record.identifier))

        for kind, kind_nodes in group_by_kind(nodes).items():
            if kind_nodes:
                statements.append(self._auxiliary_statement(record.identifier, kind, kind_nodes, now))

        results = self.connector.execute_write(statements)
        rows = results[0]
        if not rows:
            raise GraphWriteError(
                f"Anforderung {record.identifier} nicht geschrieben "
                f"(Projekt {application.name_key} fehlt?)",
                identifier=record.identifier,
            )

        row = rows[0]
        return UpsertResult(
            identifier=record.identifier,
            created=not row["existed"],
            version=row["version"],
            created_at=_to_native(row["createdAt"]),
            updated_at=_to_native(row["updatedAt"]),
        )

    @staticmethod
    def _requirement_statement(application: ApplicationRecord, record: RequirementRecord, now: datetime):
        query = """
        MATCH (app:SoftwareApplication {nameKey: $nameKey})
        OPTIONAL MATCH (existing:SoftwareRequirement {identifier: $identifier})
        WITH app, existing IS NOT NULL AS existed
        MERGE (r:SoftwareRequirement {identifier: $identifier})
        ON CREATE SET r.version = '1.0', r.createdAt = $now
        ON MATCH SET r.version = toString(round((toFloat(coalesce(r.version, '1.0')) + 0.1) * 10) / 10.0)
        SET r += $props,
            r.updatedAt = CASE
                WHEN r.updatedAt IS NOT NULL AND r.updatedAt >= $now
                THEN r.updatedAt + duration({nanoseconds: 1000})
                ELSE $now
            END
        MERGE (app)-[:HAS_REQUIREMENT]->(r)
        RETURN existed, r.version AS version, r.createdAt AS createdAt, r.updatedAt AS updatedAt
        """
        props = record.to_properties()
        if record.embedding:
            props["embedding"] = [float(v) for v in record.embedding]
        return query, {
            "nameKey": application.name_key,
            "identifier": record.identifier,
            "props": props,
            "now": now,
        }

    @staticmethod
    def _clear_auxiliaries_statement(identifier: str):
        query = f"""
        MATCH (r:SoftwareRequirement {{identifier: $identifier}})-[rel:{AUX_RELATIONS}]->(aux)
        DELETE rel
        WITH DISTINCT aux
        WHERE NOT aux:Person AND NOT EXISTS {{ (aux)--() }}
        DELETE aux
        """
        return query, {"identifier": identifier}

    @staticmethod
    def _auxiliary_statement(identifier: str, kind: AuxiliaryKind, nodes: List[GraphNode], now: datetime):
        if kind is AuxiliaryKind.STAKEHOLDER:
            query = f"""
            MATCH (r:SoftwareRequirement {{identifier: $identifier}})
            UNWIND $nodes AS node
            MERGE (p:{kind.label} {{name: node.name}})
            ON CREATE SET p += node.properties, p.createdAt = $now
            MERGE (r)-[:{kind.relation}]->(p)
            """
            payload = [{"name": n.properties["name"], "properties": n.properties} for n in nodes]
        else:
            query = f"""
            MATCH (r:SoftwareRequirement {{identifier: $identifier}})
            UNWIND $nodes AS node
            CREATE (a:{kind.label})
            SET a += node.properties, a.id = node.id, a.createdAt = $now
            CREATE (r)-[:{kind.relation}]->(a)
            """
            payload = [{"id": str(uuid.uuid4()), "properties": n.properties} for n in nodes]
        return query, {"identifier": identifier, "nodes": payload, "now": now}

    def get_requirement(self, identifier: str) -> Optional[Dict[str, Any]]:
        rows = self.connector.execute_query(
            "MATCH (r:SoftwareRequirement {identifier: $identifier}) RETURN properties(r) AS props",
            {"identifier": identifier},
        )
        if not rows:
            return None
        return {k: _to_native(v) for k, v in rows[0]["props"].items()}

    def find_similar_requirements(
        self,
        embedding: List[float],
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SimilarRequirement]:
        # vector.similarity.cosine ab Neo4j 5.18, liefert (1 + cos) / 2
        rows = self.connector.execute_query(
            """
            MATCH (r:SoftwareRequirement)
            WHERE r.embedding IS NOT NULL AND size(r.embedding) = size($embedding)
            WITH r, vector.similarity.cosine(r.embedding, $embedding) AS similarity
            WHERE similarity >= $minSimilarity
            RETURN r.identifier AS identifier, r.name AS name, similarity
            ORDER BY similarity DESC, identifier
            LIMIT $limit
            """,
            {
                "embedding": [float(v) for v in embedding],
                "minSimilarity": float(min_similarity),
                "limit": int(limit),
            },
        )
        return [
            SimilarRequirement(row["identifier"], row["name"] or "", float(row["similarity"]))
            for row in rows
        ]

    def existing_requirements(self, identifiers: Iterable[str]) -> Set[str]:
        ids = list(set(identifiers))
        if not ids:
            return set()
        rows = self.connector.execute_query(
            "MATCH (r:SoftwareRequirement) WHERE r.identifier IN $ids RETURN r.identifier AS identifier",
            {"ids": ids},
        )
        return {row["identifier"] for row in rows}

    # =========================================================================
    # Rollen und Beziehungen
    # =========================================================================

    def upsert_role(self, role: RoleRecord, now: datetime) -> None:
        query = """
        MERGE (role:Role {id: $id})
        ON CREATE SET role.createdAt = $now
        SET role += $props, role.updatedAt = $now
        """
        self.connector.execute_write([(query, {"id": role.id, "props": role.to_properties(), "now": now})])

    def existing_roles(self, role_ids: Iterable[str]) -> Set[str]:
        ids = list(set(role_ids))
        if not ids:
            return set()
        rows = self.connector.execute_query(
            "MATCH (r:Role) WHERE r.id IN $ids RETURN r.id AS id", {"ids": ids}
        )
        return {row["id"] for row in rows}

    def link(self, relationship: RelationshipRecord) -> bool:
        if relationship.type.targets_role:
            target_match = "MATCH (t:Role {id: $target})"
        else:
            target_match = "MATCH (t:SoftwareRequirement {identifier: $target})"
        query = f"""
        MATCH (s:SoftwareRequirement {{identifier: $source}})
        {target_match}
        MERGE (s)-[:{relationship.type.value}]->(t)
        RETURN count(*) AS linked
        """
        rows = self.connector.execute_write([
            (query, {"source": relationship.source, "target": relationship.target})
        ])[0]
        return bool(rows and rows[0]["linked"])

    # =========================================================================
    # Sweeper-Primitive
    # =========================================================================

    def list_auxiliary_nodes(self, label: str) -> List[AuxiliaryNodeInfo]:
        self._check_sweepable(label)
        rows = self.connector.execute_query(
            f"MATCH (n:{label}) RETURN n.id AS id, n.description AS description, n.createdAt AS createdAt"
        )
        return [
            AuxiliaryNodeInfo(
                id=row["id"] or "",
                description=row["description"] or "",
                created_at=_to_native(row["createdAt"]),
            )
            for row in rows
        ]

    def merge_auxiliary_nodes(self, label: str, relation: str, keeper_id: str, duplicate_ids: List[str]) -> int:
        self._check_sweepable(label)
        if relation != SWEEPABLE_LABELS[label]:
            raise ValueError(f"Relation {relation} passt nicht zu {label}")
        if not duplicate_ids:
            return 0
        redirect = f"""
        MATCH (keeper:{label} {{id: $keeperId}})
        MATCH (req)-[:{relation}]->(dup:{label})
        WHERE dup.id IN $duplicateIds
        MERGE (req)-[:{relation}]->(keeper)
        """
        # Duplikate nur löschen, wenn der Keeper noch existiert
        delete = f"""
        MATCH (keeper:{label} {{id: $keeperId}})
        WITH keeper
        OPTIONAL MATCH (dup:{label})
        WHERE dup.id IN $duplicateIds
        DETACH DELETE dup
        RETURN count(dup) AS deleted
        """
        params = {"keeperId": keeper_id, "duplicateIds": list(duplicate_ids)}
        results = self.connector.execute_write([(redirect, params), (delete, params)])
        if not results[1]:
            raise GraphWriteError(f"Keeper {label}:{keeper_id} existiert nicht", identifier=keeper_id)
        return results[1][0]["deleted"]

    def delete_orphans(self, label: str) -> int:
        self._check_sweepable(label)
        rows = self.connector.execute_write([(
            f"""
            MATCH (n:{label})
            WHERE NOT EXISTS {{ ()-->(n) }}
            DETACH DELETE n
            RETURN count(n) AS deleted
            """,
            {},
        )])[0]
        return rows[0]["deleted"] if rows else 0

    @staticmethod
    def _check_sweepable(label: str):
        if label not in SWEEPABLE_LABELS:
            raise ValueError(f"Kein Hilfslabel: {label}")

    # =========================================================================
    # Statistiken
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Knotenzahlen pro Label, Kantenzahl und Anforderungen pro Projekt."""
        nodes = {}
        for label in COUNTED_LABELS:
            rows = self.connector.execute_query(f"MATCH (n:{label}) RETURN count(n) AS count")
            nodes[label] = rows[0]["count"] if rows else 0

        rows = self.connector.execute_query("MATCH ()-[r]->() RETURN count(r) AS count")
        relationships = rows[0]["count"] if rows else 0

        rows = self.connector.execute_query("""
        MATCH (app:SoftwareApplication)
        OPTIONAL MATCH (app)-[:HAS_REQUIREMENT]->(req:SoftwareRequirement)
        RETURN app.name AS project, count(req) AS requirements
        ORDER BY requirements DESC
        """)
        projects = {row["project"]: row["requirements"] for row in rows}

        return {"nodes": nodes, "relationships": relationships, "projects": projects}

    def close(self):
        self.connector.close()
