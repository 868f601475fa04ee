# tests/test_extractor.py
"""Tests für RequirementExtractor (LLM wird durch FakeLLM ersetzt)."""

import sys
sys.path.insert(0, '.')

import time
import threading

import pytest

from reqgraph.errors import ServiceUnavailableError, TaskCancelledError
from reqgraph.extraction.chunking import TextChunk
from reqgraph.extraction.requirement_extractor import (
    RequirementExtractor, ExtractionConfig, infer_category,
)
from reqgraph.models.requirements import RequirementRecord, RelationType


LOGIN_RESPONSE = """```toon
requirements[1]{identifier,name,description,type,priority}:
  REQ-1,User Login,Nutzer melden sich mit E-Mail an,functional,must
risks[2]{requirement,description,severity}:
  REQ-1,Brute Force,high
  REQ-9,Unbekannt,low
stakeholders[1]{requirement,name}:
  REQ-1,Kunde
relationships[1]{type,source,target}:
  OWNED_BY,REQ-1,ROLE-1
roles[1]{id,name}:
  ROLE-1,Product Owner
```"""


def make_chunks(*texts):
    return [
        TextChunk(text=t, chunk_id=f"doc_chunk_{i}", chunk_index=i, total_chunks=len(texts))
        for i, t in enumerate(texts)
    ]


def make_extractor(llm, **overrides):
    config = ExtractionConfig(use_example=False, **overrides)
    return RequirementExtractor(config, llm)


def test_parse_child_tables(make_llm):
    extractor = make_extractor(make_llm(lambda prompt: LOGIN_RESPONSE))
    result = extractor.extract(make_chunks("Login-Kapitel"), project_name="Shop")

    chunk = result.chunks[0]
    assert not chunk.parse_failed
    record = chunk.requirements[0]
    assert record.identifier == "REQ-1"
    assert record.category == "User Management"
    assert record.risks == [{"description": "Brute Force", "severity": "high"}]
    assert record.stakeholders == ["Kunde"]
    assert [r.name for r in chunk.roles] == ["Product Owner"]
    assert [r.key for r in chunk.relationships] == [("OWNED_BY", "REQ-1", "ROLE-1")]
    assert any("REQ-9" in w for w in chunk.warnings)
    assert result.llm_calls == 1
    assert result.tokens_used == 15


def test_prompt_contains_project_and_chunk_position(make_llm):
    llm = make_llm(lambda prompt: LOGIN_RESPONSE)
    make_extractor(llm, max_concurrent_chunks=1).extract(
        make_chunks("Erster Teil", "Zweiter Teil"), project_name="Shop"
    )

    assert len(llm.prompts) == 2
    assert "Shop" in llm.prompts[0]
    assert "Teil 2 von 2" in llm.prompts[1]
    assert "Zweiter Teil" in llm.prompts[1]


def test_incomplete_records_are_dropped(make_llm):
    response = (
        "requirements[3]{identifier,name,description}:\n"
        "  REQ-1,Export,Daten als CSV exportieren\n"
        "  REQ-2,,Ohne Namen\n"
        "  REQ-3,Ohne Beschreibung,\n"
    )
    result = make_extractor(make_llm(lambda prompt: response)).extract(make_chunks("Text"))

    chunk = result.chunks[0]
    assert [r.identifier for r in chunk.requirements] == ["REQ-1"]
    assert sum("verworfen" in w for w in chunk.warnings) == 2


def test_unparseable_chunk_yields_empty_result(make_llm):
    def respond(prompt):
        if "kaputt" in prompt:
            return "Das kann ich leider nicht."
        return LOGIN_RESPONSE

    result = make_extractor(make_llm(respond)).extract(make_chunks("gut", "kaputt"))

    assert result.chunks_processed == 2
    assert result.failed_chunks == [1]
    assert result.chunks[1].requirements == []
    assert result.chunks[0].requirements
    assert result.warnings


def test_prose_without_requirements_block_is_a_parse_failure(make_llm):
    prose = "Hinweis: Der Text enthält keine eindeutigen Anforderungen.\nBitte prüfen."
    result = make_extractor(make_llm(lambda prompt: prose)).extract(make_chunks("Vorwort"))

    chunk = result.chunks[0]
    assert chunk.parse_failed
    assert result.failed_chunks == [0]
    assert any("requirements" in w for w in chunk.warnings)


def test_json_fallback(make_llm):
    response = """Ergebnis:
```json
{"requirements": [{"id": "REQ-7", "title": "Payment", "description": "Zahlung per Karte",
  "requirementType": "business", "dependencies": {"dependsOn": ["REQ-1"]}}]}
```"""
    result = make_extractor(make_llm(lambda prompt: response)).extract(make_chunks("Text"))

    chunk = result.chunks[0]
    assert chunk.response_format == "json"
    record = chunk.requirements[0]
    assert (record.identifier, record.name, record.type) == ("REQ-7", "Payment", "business")
    assert record.category == "E-Commerce"
    assert [r.key for r in chunk.relationships] == [("DEPENDS_ON", "REQ-7", "REQ-1")]


def test_results_keep_chunk_order_under_concurrency(make_llm):
    def respond(prompt):
        for n in range(4):
            if f"Abschnitt {n}" in prompt:
                time.sleep(0.05 * (4 - n))
                return (
                    "requirements[1]{identifier,name,description}:\n"
                    f"  REQ-{n},Anforderung {n},Beschreibung {n}\n"
                )
        return ""

    chunks = make_chunks(*(f"Abschnitt {n}" for n in range(4)))
    result = make_extractor(make_llm(respond), max_concurrent_chunks=4).extract(chunks)

    assert [c.chunk_index for c in result.chunks] == [0, 1, 2, 3]
    assert [c.requirements[0].identifier for c in result.chunks] == ["REQ-0", "REQ-1", "REQ-2", "REQ-3"]
    assert result.llm_calls == 4


def test_service_unavailable_propagates(make_llm):
    def respond(prompt):
        raise ServiceUnavailableError("Ollama nicht erreichbar", service="llm")

    with pytest.raises(ServiceUnavailableError):
        make_extractor(make_llm(respond)).extract(make_chunks("a", "b"))


def test_missing_client_is_service_unavailable():
    with pytest.raises(ServiceUnavailableError):
        RequirementExtractor(ExtractionConfig(), None).extract(make_chunks("a"))


def test_chunk_timeout(make_llm):
    def respond(prompt):
        time.sleep(0.5)
        return LOGIN_RESPONSE

    extractor = make_extractor(make_llm(respond), chunk_timeout=0.05)
    with pytest.raises(ServiceUnavailableError):
        extractor.extract(make_chunks("langsam"))


def test_cancel_before_dispatch(make_llm):
    llm = make_llm(lambda prompt: LOGIN_RESPONSE)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(TaskCancelledError):
        make_extractor(llm).extract(make_chunks("a", "b"), cancel_event=cancel)
    assert llm.prompts == []


def test_cancel_stops_remaining_chunks(make_llm):
    cancel = threading.Event()

    def respond(prompt):
        cancel.set()
        return LOGIN_RESPONSE

    llm = make_llm(respond)
    with pytest.raises(TaskCancelledError):
        make_extractor(llm, max_concurrent_chunks=1).extract(
            make_chunks("a", "b", "c"), cancel_event=cancel
        )
    assert len(llm.prompts) == 1


def test_infer_category():
    def record(name, type_="functional"):
        return RequirementRecord(identifier="R", name=name, description="d", type=type_)

    assert infer_category(record("User Login")) == "User Management"
    assert infer_category(record("Warenkorb", "security")) == "Security & Compliance"
    assert infer_category(record("Nightly Backup")) == "Data Management"
    assert infer_category(record("REST API")) == "Integration"
    assert infer_category(record("Druckansicht")) == "General"


def test_explicit_category_is_kept(make_llm):
    response = (
        "requirements[1]{identifier,name,description,category}:\n"
        "  REQ-1,User Login,Anmeldung,Zugang\n"
    )
    result = make_extractor(make_llm(lambda prompt: response)).extract(make_chunks("Text"))
    assert result.chunks[0].requirements[0].category == "Zugang"


def test_relation_type_parsing():
    assert RelationType.from_string("depends-on") is RelationType.DEPENDS_ON
    assert RelationType.from_string("Conflicts With") is RelationType.CONFLICTS_WITH
    assert RelationType.from_string("blocks") is None
