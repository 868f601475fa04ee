# tests/test_neo4j_repository.py
"""
Tests für Neo4jRepository und Neo4jConnector ohne laufende Datenbank.

Der Connector wird durch einen Recorder ersetzt, der die Cypher-Statements
mitschreibt und vorbereitete Zeilen zurückgibt.
"""

import sys
sys.path.insert(0, '.')

from datetime import datetime, timezone

import pytest
from neo4j.exceptions import ServiceUnavailable, DriverError

from reqgraph.errors import GraphWriteError, ServiceUnavailableError
from reqgraph.graph.neo4j_connector import Neo4jConnector
from reqgraph.graph.repository import Neo4jRepository
from reqgraph.graph.repository_factory import create_repository
from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.graph.normalization import normalize_sub_entities
from reqgraph.models.requirements import (
    ApplicationRecord, RequirementRecord, RelationshipRecord, RelationType,
)


NOW = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)


class RecordingConnector:
    """Schreibt Statements mit; `write_results` liefert die Zeilen pro Transaktion."""

    def __init__(self, write_results=None, query_results=None):
        self.writes = []
        self.queries = []
        self.write_results = list(write_results or [])
        self.query_results = list(query_results or [])

    def execute_write(self, statements):
        self.writes.append(statements)
        if self.write_results:
            return self.write_results.pop(0)
        return [[] for _ in statements]

    def execute_query(self, query, parameters=None):
        self.queries.append((query, parameters))
        if self.query_results:
            return self.query_results.pop(0)
        return []

    def close(self):
        pass


def test_upsert_requirement_runs_in_one_transaction():
    row = {"existed": True, "version": "1.1", "createdAt": NOW, "updatedAt": NOW}
    connector = RecordingConnector(write_results=[[[row], [], [], []]])
    repo = Neo4jRepository(connector, setup_schema=False)
    record = RequirementRecord(
        "REQ-1", "Login", "Anmeldung", risks=["Ausfall", "Datenverlust"], stakeholders=["Kunde"]
    )

    outcome = repo.upsert_requirement(
        ApplicationRecord(name="Shop"), record, normalize_sub_entities(record), NOW
    )

    assert not outcome.created
    assert outcome.version == "1.1"
    assert len(connector.writes) == 1
    statements = connector.writes[0]
    # Anforderung, Hilfskanten löschen, Risks, Persons
    assert len(statements) == 4
    query, params = statements[0]
    assert "MERGE (r:SoftwareRequirement {identifier: $identifier})" in query
    assert params["nameKey"] == "shop"
    assert params["props"]["identifier"] == "REQ-1"
    assert "DELETE rel" in statements[1][0]
    assert "CREATE (a:Risk)" in statements[2][0]
    assert [n["properties"]["description"] for n in statements[2][1]["nodes"]] == ["Ausfall", "Datenverlust"]
    assert "MERGE (p:Person {name: node.name})" in statements[3][0]


def test_embedding_is_written_only_when_present():
    row = {"existed": False, "version": "1.0", "createdAt": NOW, "updatedAt": NOW}
    connector = RecordingConnector(write_results=[[[row], []], [[row], []]])
    repo = Neo4jRepository(connector, setup_schema=False)
    app = ApplicationRecord(name="Shop")

    repo.upsert_requirement(app, RequirementRecord("REQ-1", "Login", "Anmeldung", embedding=[1, 0.5]), [], NOW)
    repo.upsert_requirement(app, RequirementRecord("REQ-2", "Export", "CSV"), [], NOW)

    assert connector.writes[0][0][1]["props"]["embedding"] == [1.0, 0.5]
    assert "embedding" not in connector.writes[1][0][1]["props"]


def test_find_similar_requirements_maps_rows():
    rows = [
        {"identifier": "REQ-1", "name": "Login", "similarity": 0.98},
        {"identifier": "REQ-7", "name": None, "similarity": 0.61},
    ]
    connector = RecordingConnector(query_results=[rows])
    repo = Neo4jRepository(connector, setup_schema=False)

    hits = repo.find_similar_requirements([1, 0], limit=5, min_similarity=0.5)

    assert [(h.identifier, h.name, h.similarity) for h in hits] == [("REQ-1", "Login", 0.98), ("REQ-7", "", 0.61)]
    query, params = connector.queries[0]
    assert "vector.similarity.cosine(r.embedding, $embedding)" in query
    assert params == {"embedding": [1.0, 0.0], "minSimilarity": 0.5, "limit": 5}


def test_upsert_without_project_raises_graph_write_error():
    connector = RecordingConnector(write_results=[[[], []]])
    repo = Neo4jRepository(connector, setup_schema=False)
    record = RequirementRecord("REQ-1", "Login", "Anmeldung")

    with pytest.raises(GraphWriteError):
        repo.upsert_requirement(ApplicationRecord(name="Shop"), record, [], NOW)


def test_get_or_create_application_uses_name_key():
    connector = RecordingConnector(write_results=[[[{"name": "Shop", "nameKey": "shop", "createdAt": NOW}]]])
    repo = Neo4jRepository(connector, setup_schema=False)

    app = repo.get_or_create_application("  SHOP ", NOW)

    assert (app.name, app.name_key) == ("Shop", "shop")
    assert connector.writes[0][0][1]["nameKey"] == "shop"


def test_link_owned_by_matches_role():
    connector = RecordingConnector(write_results=[[[{"linked": 1}]], [[{"linked": 0}]]])
    repo = Neo4jRepository(connector, setup_schema=False)

    assert repo.link(RelationshipRecord(RelationType.OWNED_BY, "REQ-1", "ROLE-1"))
    assert "MATCH (t:Role {id: $target})" in connector.writes[0][0][0]
    assert not repo.link(RelationshipRecord(RelationType.DEPENDS_ON, "REQ-1", "REQ-2"))
    assert "MERGE (s)-[:DEPENDS_ON]->(t)" in connector.writes[1][0][0]


def test_existing_requirements_skips_empty_query():
    connector = RecordingConnector(query_results=[[{"identifier": "REQ-1"}]])
    repo = Neo4jRepository(connector, setup_schema=False)

    assert repo.existing_requirements([]) == set()
    assert connector.queries == []
    assert repo.existing_requirements(["REQ-1", "REQ-2"]) == {"REQ-1"}


def test_sweeper_primitives_only_for_auxiliary_labels():
    connector = RecordingConnector(write_results=[[[], [{"deleted": 2}]]])
    repo = Neo4jRepository(connector, setup_schema=False)

    with pytest.raises(ValueError):
        repo.list_auxiliary_nodes("Person")
    with pytest.raises(ValueError):
        repo.merge_auxiliary_nodes("Risk", "HAS_CONSTRAINT", "k", ["d"])

    assert repo.merge_auxiliary_nodes("Constraint", "HAS_CONSTRAINT", "k", ["d1", "d2"]) == 2
    redirect, delete = connector.writes[0]
    assert "MERGE (req)-[:HAS_CONSTRAINT]->(keeper)" in redirect[0]
    assert "DETACH DELETE dup" in delete[0]
    assert redirect[1]["duplicateIds"] == ["d1", "d2"]
    assert "WITH keeper" in delete[0]


def test_merge_keeps_duplicates_when_keeper_is_gone():
    connector = RecordingConnector(write_results=[[[], []]])
    repo = Neo4jRepository(connector, setup_schema=False)

    with pytest.raises(GraphWriteError):
        repo.merge_auxiliary_nodes("Risk", "HAS_RISK", "weg", ["d1"])

    redirect, delete = connector.writes[0]
    # Löschen hängt am Keeper-MATCH: ohne Keeper keine Zeile, nichts gelöscht
    assert delete[0].index("MATCH (keeper:Risk {id: $keeperId})") < delete[0].index("DETACH DELETE dup")


def test_schema_setup_tolerates_existing_constraints():
    class Existing(RecordingConnector):
        def execute_query(self, query, parameters=None):
            super().execute_query(query, parameters)
            raise GraphWriteError("already exists")

    connector = Existing()
    Neo4jRepository(connector)
    assert len(connector.queries) == 7


# =============================================================================
# Connector-Fehlerabbildung
# =============================================================================

class FailingSession:
    def __init__(self, error):
        self.error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def run(self, query, parameters=None):
        raise self.error

    def execute_write(self, work):
        raise self.error


class FakeRecord:
    def __init__(self, data):
        self._data = data

    def data(self):
        return dict(self._data)


class RecordingTx:
    def __init__(self):
        self.queries = []

    def run(self, query, parameters=None):
        self.queries.append(query)
        return [FakeRecord({"n": len(self.queries)})]


class WorkingSession(FailingSession):
    def __init__(self):
        super().__init__(None)
        self.tx = RecordingTx()

    def execute_write(self, work):
        return work(self.tx)


class FakeDriver:
    def __init__(self, session):
        self._session = session

    def session(self, database=None):
        return self._session


def make_connector(session):
    connector = Neo4jConnector.__new__(Neo4jConnector)
    connector.driver = FakeDriver(session)
    connector.database = None
    connector.transaction_timeout = 5.0
    return connector


def test_connector_maps_unavailable_to_retryable_error():
    connector = make_connector(FailingSession(ServiceUnavailable("Verbindung verloren")))

    with pytest.raises(ServiceUnavailableError) as info:
        connector.execute_write([("RETURN 1", {})])
    assert info.value.retryable
    assert info.value.service == "neo4j"

    with pytest.raises(ServiceUnavailableError):
        connector.execute_query("RETURN 1")


def test_connector_maps_driver_errors_to_graph_write_error():
    connector = make_connector(FailingSession(DriverError("kaputt")))

    with pytest.raises(GraphWriteError) as info:
        connector.execute_write([("RETURN 1", {})])
    assert not info.value.retryable


def test_connector_returns_rows_per_statement():
    session = WorkingSession()
    connector = make_connector(session)

    results = connector.execute_write([("RETURN 1", {}), ("RETURN 2", None)])

    assert results == [[{"n": 1}], [{"n": 2}]]
    assert session.tx.queries == ["RETURN 1", "RETURN 2"]


# =============================================================================
# Factory
# =============================================================================

def test_factory_defaults_to_memory(monkeypatch):
    monkeypatch.setenv("USE_NEO4J", "false")
    assert isinstance(create_repository(), InMemoryGraphRepository)


def test_factory_requires_password_for_neo4j(monkeypatch):
    monkeypatch.delenv("NEO4J_PASSWORD", raising=False)
    with pytest.raises(ValueError):
        create_repository(use_neo4j=True)
