# tests/test_pipeline.py
"""End-to-End-Tests der Pipeline mit FakeLLM und In-Memory-Stores."""

import sys
sys.path.insert(0, '.')

import threading

import pytest
import requests

from reqgraph.errors import ServiceUnavailableError, GraphWriteError
from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.models.requirements import JobStatus
from reqgraph.pipeline.extraction_pipeline import RequirementsPipeline, PipelineConfig
from reqgraph.pipeline.jobs import InMemoryJobRepository, JobDescriptor


RESPONSE = """```toon
requirements[2]{identifier,name,description,priority}:
  REQ-1,User Login,Nutzer melden sich mit E-Mail an,must
  REQ-2,Logout,Nutzer melden sich ab,should
constraints[1]{requirement,description}:
  REQ-1,DSGVO-konform
relationships[1]{type,source,target}:
  DEPENDS_ON,REQ-2,REQ-1
```"""


class BrokenRepository(InMemoryGraphRepository):
    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = set(fail_on)

    def upsert_requirement(self, application, record, nodes, now):
        if record.identifier in self.fail_on:
            raise GraphWriteError("Schreibfehler", identifier=record.identifier)
        return super().upsert_requirement(application, record, nodes, now)


@pytest.fixture
def document(tmp_path):
    path = tmp_path / "lastenheft.txt"
    path.write_text("Der Nutzer muss sich anmelden und wieder abmelden können.", encoding="utf-8")
    return path


def make_pipeline(llm, clock, repository=None):
    return RequirementsPipeline(
        llm_client=llm,
        repository=repository if repository is not None else InMemoryGraphRepository(),
        job_repository=InMemoryJobRepository(),
        config=PipelineConfig(),
        clock=clock,
    )


def job(document, job_id="job-1", **options):
    return {"documentPath": str(document), "projectName": "Shop", "jobId": job_id, "options": options}


def test_completed_job(make_llm, clock, document):
    pipeline = make_pipeline(make_llm(lambda prompt: RESPONSE), clock)

    record = pipeline.handle(job(document))

    assert record.status is JobStatus.COMPLETED
    assert record.attempts == 1
    result = record.result
    assert [r["identifier"] for r in result["requirements"]] == ["REQ-1", "REQ-2"]
    assert result["requirements"][0]["version"] == "1.0"
    assert result["requirements"][0]["category"] == "User Management"
    assert result["errors"] == []
    assert result["sync"]["relationships"] == 1
    assert pipeline.job_repository.get("job-1").status is JobStatus.COMPLETED
    assert pipeline.repository.has_relationship("REQ-2", "DEPENDS_ON", "REQ-1")


def test_redelivered_job_is_not_processed_twice(make_llm, clock, document):
    llm = make_llm(lambda prompt: RESPONSE)
    pipeline = make_pipeline(llm, clock)

    pipeline.handle(job(document))
    again = pipeline.handle(job(document))

    assert again.status is JobStatus.COMPLETED
    assert len(llm.prompts) == 1
    assert pipeline.repository.get_requirement("REQ-1")["version"] == "1.0"


def test_new_job_for_same_document_updates_versions(make_llm, clock, document):
    pipeline = make_pipeline(make_llm(lambda prompt: RESPONSE), clock)

    pipeline.handle(job(document, "job-1"))
    second = pipeline.handle(job(document, "job-2"))

    assert second.result["requirements"][0]["version"] == "1.1"
    assert second.result["sync"]["updated"] == 2


def test_missing_document_fails_without_retry(make_llm, clock, tmp_path):
    llm = make_llm(lambda prompt: RESPONSE)
    pipeline = make_pipeline(llm, clock)

    record = pipeline.handle(job(tmp_path / "fehlt.txt"))

    assert record.status is JobStatus.FAILED
    assert not record.retryable
    assert "nicht gefunden" in record.error
    assert llm.prompts == []


def test_unavailable_llm_is_retryable(make_llm, clock, document):
    def down(prompt):
        raise ServiceUnavailableError("Ollama nicht erreichbar", service="llm")

    pipeline = make_pipeline(make_llm(down), clock)

    with pytest.raises(ServiceUnavailableError):
        pipeline.handle(job(document))

    stored = pipeline.job_repository.get("job-1")
    assert stored.status is JobStatus.FAILED
    assert stored.retryable

    # erneute Zustellung nach Wiederherstellung
    pipeline.llm_client = make_llm(lambda prompt: RESPONSE)
    record = pipeline.handle(job(document))
    assert record.status is JobStatus.COMPLETED
    assert record.attempts == 2


def test_unexpected_error_marks_job_failed(make_llm, clock, document):
    def bad_request(prompt):
        raise requests.exceptions.HTTPError("400 Bad Request")

    pipeline = make_pipeline(make_llm(bad_request), clock)

    with pytest.raises(requests.exceptions.HTTPError):
        pipeline.handle(job(document))

    stored = pipeline.job_repository.get("job-1")
    assert stored.status is JobStatus.FAILED
    assert not stored.retryable
    assert "HTTPError" in stored.error


def test_partial_when_some_records_fail(make_llm, clock, document):
    pipeline = make_pipeline(make_llm(lambda prompt: RESPONSE), clock, BrokenRepository({"REQ-2"}))

    record = pipeline.handle(job(document))

    assert record.status is JobStatus.PARTIAL
    assert record.result["errors"][0]["identifier"] == "REQ-2"
    # Beziehung von REQ-2 hat keinen Quellknoten mehr
    assert record.result["sync"]["relationships"] == 0
    assert any("REQ-2" in w for w in record.result["warnings"])


def test_failed_when_nothing_was_written(make_llm, clock, document):
    pipeline = make_pipeline(make_llm(lambda prompt: RESPONSE), clock, BrokenRepository({"REQ-1", "REQ-2"}))

    record = pipeline.handle(job(document))

    assert record.status is JobStatus.FAILED
    assert len(record.result["errors"]) == 2


def test_cancelled_job(make_llm, clock, document):
    cancel = threading.Event()
    cancel.set()
    pipeline = make_pipeline(make_llm(lambda prompt: RESPONSE), clock)

    record = pipeline.handle(job(document), cancel_event=cancel)

    assert record.status is JobStatus.CANCELLED
    assert pipeline.repository.get_requirement("REQ-1") is None


def test_empty_document_completes_without_llm(make_llm, clock, tmp_path):
    path = tmp_path / "leer.txt"
    path.write_text("   \n", encoding="utf-8")
    llm = make_llm(lambda prompt: RESPONSE)
    pipeline = make_pipeline(llm, clock)

    record = pipeline.handle(job(path))

    assert record.status is JobStatus.COMPLETED
    assert record.result["requirements"] == []
    assert llm.prompts == []


def test_options_override_chunking(make_llm, clock, tmp_path):
    path = tmp_path / "lang.txt"
    path.write_text("Der Nutzer muss sich anmelden. " * 10, encoding="utf-8")
    llm = make_llm(lambda prompt: RESPONSE)
    pipeline = make_pipeline(llm, clock)

    record = pipeline.handle(job(path, max_chunk_chars=120, overlap_chars=20, max_concurrent_chunks=2))

    assert record.status is JobStatus.COMPLETED
    assert len(llm.prompts) > 1
    assert record.result["statistics"]["chunks"]["count"] == len(llm.prompts)
    # jeder Chunk liefert dieselben Anforderungen -> Merge verwirft Duplikate
    assert [r["identifier"] for r in record.result["requirements"]] == ["REQ-1", "REQ-2"]
    assert record.result["conflicts"]


def test_chunk_limit_fails_job(make_llm, clock, tmp_path):
    path = tmp_path / "lang.txt"
    path.write_text("x" * 500, encoding="utf-8")
    pipeline = make_pipeline(make_llm(lambda prompt: RESPONSE), clock)

    record = pipeline.handle(job(path, max_chunk_chars=100, overlap_chars=0, max_chunks=2))

    assert record.status is JobStatus.FAILED
    assert "Chunk-Limit" in record.error


def test_descriptor_requires_path_and_project():
    with pytest.raises(ValueError):
        JobDescriptor.from_dict({"projectName": "Shop"})
    with pytest.raises(ValueError):
        JobDescriptor.from_dict({"documentPath": "a.txt"})

    generated = JobDescriptor.from_dict({"documentPath": "a.txt", "projectName": "Shop"})
    assert generated.job_id
