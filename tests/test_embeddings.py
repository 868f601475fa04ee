# tests/test_embeddings.py
"""Tests für Embeddings und Ähnlichkeitssuche (ohne Netzwerk)."""

import sys
sys.path.insert(0, '.')

import threading
from datetime import datetime, timezone

import pytest

from reqgraph.errors import TaskCancelledError
from reqgraph.extraction.embeddings import RequirementEmbedder, EmbeddingConfig
from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.models.requirements import RequirementRecord, JobStatus
from reqgraph.pipeline.extraction_pipeline import RequirementsPipeline, PipelineConfig
from reqgraph.pipeline.jobs import InMemoryJobRepository


RESPONSE = """```toon
requirements[2]{identifier,name,description}:
  REQ-1,User Login,Nutzer melden sich mit E-Mail an
  REQ-2,Order Export,Bestellungen als CSV exportieren
```"""

NOW = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

VECTORS = {
    "Login": [1.0, 0.0, 0.0],
    "Export": [0.0, 1.0, 0.0],
    "Anmeldung": [0.9, 0.1, 0.0],
}


def fake_embed(text, model=None):
    for word, vector in VECTORS.items():
        if word in text:
            return list(vector)
    return [0.0, 0.0, 1.0]


@pytest.fixture
def embedding_llm(make_llm):
    llm = make_llm(lambda prompt: RESPONSE)
    llm.embedded = []

    def embed(text, model=None):
        llm.embedded.append((text, model))
        return fake_embed(text, model)

    llm.embed = embed
    return llm


def test_embedder_uses_name_and_description(embedding_llm):
    records = [
        RequirementRecord("REQ-1", "User Login", "Nutzer melden sich an"),
        RequirementRecord("REQ-2", "Order Export", "CSV"),
    ]

    count = RequirementEmbedder(embedding_llm, EmbeddingConfig(enabled=True, model="nomic-embed-text")) \
        .embed_requirements(records)

    assert count == 2
    assert embedding_llm.embedded[0] == ("User Login: Nutzer melden sich an", "nomic-embed-text")
    assert records[0].embedding == [1.0, 0.0, 0.0]
    assert "embedding" not in records[0].to_dict()


def test_empty_vector_leaves_record_without_embedding(make_llm):
    llm = make_llm(lambda prompt: RESPONSE)
    llm.embed = lambda text, model=None: []
    record = RequirementRecord("REQ-1", "Login", "Anmeldung")

    assert RequirementEmbedder(llm).embed_requirements([record]) == 0
    assert record.embedding is None


def test_client_without_embed_is_rejected(make_llm):
    with pytest.raises(TypeError):
        RequirementEmbedder(make_llm(lambda prompt: RESPONSE))


def test_embedding_stops_on_cancel(embedding_llm):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(TaskCancelledError):
        RequirementEmbedder(embedding_llm).embed_requirements(
            [RequirementRecord("REQ-1", "Login", "Anmeldung")], cancel
        )
    assert embedding_llm.embedded == []


def test_pipeline_stores_embeddings_and_finds_similar(embedding_llm, clock, tmp_path):
    document = tmp_path / "lastenheft.txt"
    document.write_text("Anmeldung und Export von Bestellungen.", encoding="utf-8")
    repository = InMemoryGraphRepository()
    pipeline = RequirementsPipeline(
        llm_client=embedding_llm,
        repository=repository,
        job_repository=InMemoryJobRepository(),
        config=PipelineConfig(embeddings=EmbeddingConfig(enabled=True)),
        clock=clock,
    )

    record = pipeline.handle({"documentPath": str(document), "projectName": "Shop", "jobId": "j1"})

    assert record.status is JobStatus.COMPLETED
    assert record.result["statistics"]["embeddings"] == 2
    assert repository.get_requirement("REQ-1")["embedding"] == [1.0, 0.0, 0.0]

    hits = RequirementEmbedder(embedding_llm).search_similar(repository, "Anmeldung per Passwort")
    assert [h.identifier for h in hits] == ["REQ-1", "REQ-2"]
    assert hits[0].similarity > hits[1].similarity
    assert hits[0].name == "User Login"


def test_embeddings_can_be_switched_off_per_job(embedding_llm, clock, tmp_path):
    document = tmp_path / "lastenheft.txt"
    document.write_text("Anmeldung.", encoding="utf-8")
    repository = InMemoryGraphRepository()
    pipeline = RequirementsPipeline(
        llm_client=embedding_llm,
        repository=repository,
        config=PipelineConfig(embeddings=EmbeddingConfig(enabled=True)),
        clock=clock,
    )

    pipeline.handle({"documentPath": str(document), "projectName": "Shop", "options": {"embeddings": False}})

    assert embedding_llm.embedded == []
    assert "embedding" not in repository.get_requirement("REQ-1")


def test_similarity_search_filters_and_limits():
    repository = InMemoryGraphRepository()
    app = repository.get_or_create_application("Shop", now=NOW)
    for identifier, vector in (("REQ-1", [1.0, 0.0]), ("REQ-2", [0.0, 1.0]), ("REQ-3", [-1.0, 0.0])):
        record = RequirementRecord(identifier, identifier, "Beschreibung", embedding=vector)
        repository.upsert_requirement(app, record, [], now=NOW)
    repository.upsert_requirement(app, RequirementRecord("REQ-4", "ohne", "Vektor"), [], now=NOW)
    repository.upsert_requirement(
        app, RequirementRecord("REQ-5", "andere", "Dimension", embedding=[1.0, 0.0, 0.0]), [], now=NOW
    )

    hits = repository.find_similar_requirements([1.0, 0.0])
    assert [(h.identifier, round(h.similarity, 3)) for h in hits] == [
        ("REQ-1", 1.0), ("REQ-2", 0.5), ("REQ-3", 0.0),
    ]

    assert [h.identifier for h in repository.find_similar_requirements([1.0, 0.0], min_similarity=0.4)] == [
        "REQ-1", "REQ-2",
    ]
    assert len(repository.find_similar_requirements([1.0, 0.0], limit=1)) == 1
