# tests/test_jobs.py
"""Tests für die Job-Stores (In-Memory und SQLite)."""

import sys
sys.path.insert(0, '.')

from datetime import datetime, timedelta, timezone

import pytest

from reqgraph.models.requirements import JobStatus
from reqgraph.pipeline.jobs import InMemoryJobRepository, SqliteJobRepository, JobRecord, JobDescriptor


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def job_repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryJobRepository()
    return SqliteJobRepository(str(tmp_path / "state" / "jobs.sqlite"))


def record(job_id, status=JobStatus.PENDING, minutes=0, **kwargs):
    stamp = T0 + timedelta(minutes=minutes)
    return JobRecord(job_id=job_id, status=status, created_at=stamp, updated_at=stamp, **kwargs)


def test_put_and_get(job_repository):
    descriptor = JobDescriptor("a.txt", "Shop", {"max_chunk_chars": 4000}, job_id="job-1")
    job_repository.put(record("job-1", descriptor=descriptor.to_dict()))

    stored = job_repository.get("job-1")
    assert stored.status is JobStatus.PENDING
    assert stored.descriptor["options"] == {"max_chunk_chars": 4000}
    assert stored.created_at == T0
    assert job_repository.get("unbekannt") is None


def test_put_overwrites_state(job_repository):
    job_repository.put(record("job-1"))
    job_repository.put(record(
        "job-1", JobStatus.FAILED, minutes=5,
        error="Ollama nicht erreichbar", retryable=True, attempts=2,
        result={"requirements": []},
    ))

    stored = job_repository.get("job-1")
    assert stored.status is JobStatus.FAILED
    assert stored.retryable
    assert stored.attempts == 2
    assert stored.error == "Ollama nicht erreichbar"
    assert stored.result == {"requirements": []}
    assert stored.updated_at == T0 + timedelta(minutes=5)


def test_list_filters_and_orders(job_repository):
    job_repository.put(record("alt", JobStatus.COMPLETED, minutes=1))
    job_repository.put(record("neu", JobStatus.COMPLETED, minutes=3))
    job_repository.put(record("offen", JobStatus.PROCESSING, minutes=2))

    assert [r.job_id for r in job_repository.list()] == ["neu", "offen", "alt"]
    assert [r.job_id for r in job_repository.list(JobStatus.COMPLETED)] == ["neu", "alt"]
    assert [r.job_id for r in job_repository.list(limit=1)] == ["neu"]


def test_sqlite_survives_reopen(tmp_path):
    path = str(tmp_path / "jobs.sqlite")
    SqliteJobRepository(path).put(record("job-1", JobStatus.COMPLETED))

    assert SqliteJobRepository(path).get("job-1").status is JobStatus.COMPLETED


def test_final_states():
    assert JobStatus.PARTIAL.is_final
    assert JobStatus.CANCELLED.is_final
    assert not JobStatus.PROCESSING.is_final
