# tests/test_sweeper.py
"""Tests für den DeduplicationSweeper."""

import sys
sys.path.insert(0, '.')

from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.graph.sweeper import DeduplicationSweeper
from reqgraph.graph.synchronizer import GraphSynchronizer
from reqgraph.models.requirements import RequirementRecord, RequirementsGraph, AuxiliaryKind


def populated_repository(clock):
    repo = InMemoryGraphRepository()
    GraphSynchronizer(repo, clock=clock).sync("Shop", RequirementsGraph(requirements=[
        RequirementRecord("REQ-1", "Login", "Anmeldung", constraints=["DSGVO-konform"], risks=["Ausfall"]),
        RequirementRecord("REQ-2", "Export", "CSV-Export", constraints=["DSGVO-konform"], risks=["ausfall"]),
        RequirementRecord("REQ-3", "Import", "CSV-Import", constraints=["DSGVO-konform"]),
    ]))
    return repo


def test_sweep_merges_identical_descriptions(clock):
    repo = populated_repository(clock)
    constraints = repo.list_auxiliary_nodes("Constraint")
    assert len(constraints) == 3
    oldest = min(constraints, key=lambda n: n.created_at)

    report = DeduplicationSweeper(repo).sweep()

    assert report.merged["Constraint"] == 2
    assert report.merged["Risk"] == 0
    remaining = repo.list_auxiliary_nodes("Constraint")
    assert [n.id for n in remaining] == [oldest.id]
    for identifier in ("REQ-1", "REQ-2", "REQ-3"):
        linked = repo.auxiliaries_of(identifier, AuxiliaryKind.CONSTRAINT)
        assert [n["id"] for n in linked] == [oldest.id]

    # Groß-/Kleinschreibung zählt: "Ausfall" und "ausfall" bleiben getrennt
    assert len(repo.list_auxiliary_nodes("Risk")) == 2


def test_second_sweep_changes_nothing(clock):
    repo = populated_repository(clock)
    sweeper = DeduplicationSweeper(repo)

    assert sweeper.sweep().changed
    stats_before = repo.get_stats()
    second = sweeper.sweep()

    assert not second.changed
    assert repo.get_stats() == stats_before


def test_orphans_are_deleted(clock):
    repo = populated_repository(clock)
    repo._nodes["Risk:verwaist"] = {
        "label": "Risk",
        "props": {"id": "verwaist", "description": "Niemand zeigt hierher", "createdAt": clock()},
    }

    report = DeduplicationSweeper(repo).sweep()

    assert report.orphans_deleted["Risk"] == 1
    assert all(n.id != "verwaist" for n in repo.list_auxiliary_nodes("Risk"))


def test_dry_run_reports_without_writing(clock):
    repo = populated_repository(clock)
    before = repo.get_stats()

    report = DeduplicationSweeper(repo).sweep(dry_run=True)

    assert report.dry_run
    assert report.total_merged == 2
    assert report.groups["Constraint"][0]["description"] == "DSGVO-konform"
    assert len(report.groups["Constraint"][0]["duplicates"]) == 2
    assert repo.get_stats() == before


def test_persons_are_not_swept(clock):
    repo = InMemoryGraphRepository()
    GraphSynchronizer(repo, clock=clock).sync("Shop", RequirementsGraph(requirements=[
        RequirementRecord("REQ-1", "Login", "Anmeldung", stakeholders=["Kunde"]),
    ]))

    report = DeduplicationSweeper(repo).sweep()

    assert "Person" not in report.merged
    assert repo.get_stats()["nodes"]["Person"] == 1


class VanishingKeeperRepository(InMemoryGraphRepository):
    """Löscht den Keeper unmittelbar vor dem Zusammenführen (paralleler Sync)."""

    def merge_auxiliary_nodes(self, label, relation, keeper_id, duplicate_ids):
        with self._lock:
            self._delete_node(f"{label}:{keeper_id}")
            return super().merge_auxiliary_nodes(label, relation, keeper_id, duplicate_ids)


def test_group_with_vanished_keeper_is_skipped(clock):
    repo = VanishingKeeperRepository()
    GraphSynchronizer(repo, clock=clock).sync("Shop", RequirementsGraph(requirements=[
        RequirementRecord("REQ-1", "Login", "Anmeldung", constraints=["DSGVO-konform"]),
        RequirementRecord("REQ-2", "Export", "CSV-Export", constraints=["DSGVO-konform"]),
        RequirementRecord("REQ-3", "Import", "CSV-Import", constraints=["DSGVO-konform"]),
    ]))
    keeper = min(repo.list_auxiliary_nodes("Constraint"), key=lambda n: n.created_at)

    report = DeduplicationSweeper(repo).sweep()

    assert report.skipped == [keeper.id]
    assert report.merged["Constraint"] == 0
    # Duplikate bleiben mit ihren Kanten erhalten
    assert repo.auxiliaries_of("REQ-2", AuxiliaryKind.CONSTRAINT)
    assert repo.auxiliaries_of("REQ-3", AuxiliaryKind.CONSTRAINT)
