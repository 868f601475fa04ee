# reqgraph/pipeline/jobs.py
"""
Job-Deskriptoren und persistenter Job-Store.

Der Zustand eines Extraktions-Jobs liegt nicht im Prozess, sondern in einem
Repository mit get/put/list. SqliteJobRepository überlebt Neustarts,
InMemoryJobRepository ist für Tests.
"""

import json
import uuid
import sqlite3
import logging
import pathlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Any, Optional

from reqgraph.models.requirements import JobStatus, utc_now

logger = logging.getLogger(__name__)


@dataclass
class JobDescriptor:
    """Auftrag aus der Queue: {documentPath, projectName, options, jobId?}."""
    document_path: str
    project_name: str
    options: Dict[str, Any] = field(default_factory=dict)
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobDescriptor":
        document_path = data.get("documentPath") or data.get("document_path")
        project_name = data.get("projectName") or data.get("project_name")
        if not document_path or not project_name:
            raise ValueError("Job braucht documentPath und projectName")
        job_id = data.get("jobId") or data.get("job_id") or str(uuid.uuid4())
        return cls(
            document_path=str(document_path),
            project_name=str(project_name),
            options=dict(data.get("options") or {}),
            job_id=str(job_id),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "documentPath": self.document_path,
            "projectName": self.project_name,
            "options": dict(self.options),
        }


@dataclass
class JobRecord:
    """Persistierter Zustand eines Jobs."""
    job_id: str
    status: JobStatus
    descriptor: Dict[str, Any] = field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = False
    attempts: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "descriptor": self.descriptor,
            "result": self.result,
            "error": self.error,
            "retryable": self.retryable,
            "attempts": self.attempts,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class JobRepository(ABC):
    """Keyed Store für Job-Zustände."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]:
        """Job oder None."""

    @abstractmethod
    def put(self, record: JobRecord) -> None:
        """Legt an oder überschreibt."""

    @abstractmethod
    def list(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[JobRecord]:
        """Neueste zuerst, optional nach Status gefiltert."""


class InMemoryJobRepository(JobRepository):
    """Job-Store im Arbeitsspeicher (Tests)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, JobRecord] = {}

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_id)

    def put(self, record: JobRecord) -> None:
        with self._lock:
            self._jobs[record.job_id] = record

    def list(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[JobRecord]:
        with self._lock:
            records = [r for r in self._jobs.values() if status is None or r.status == status]
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return records[:limit]


class SqliteJobRepository(JobRepository):
    """Persistenter Job-Store auf SQLite."""

    def __init__(self, path: str = ".reqgraph/jobs.sqlite"):
        self.path = pathlib.Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=30)

    def _ensure_db(self):
        con = self._connect()
        try:
            con.execute("""
            CREATE TABLE IF NOT EXISTS jobs(
              id TEXT PRIMARY KEY,
              status TEXT NOT NULL,
              descriptor TEXT,
              result TEXT,
              error TEXT,
              retryable INTEGER DEFAULT 0,
              attempts INTEGER DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            )
            """)
            con.execute("CREATE INDEX IF NOT EXISTS jobs_status ON jobs(status)")
            con.commit()
        finally:
            con.close()

    def get(self, job_id: str) -> Optional[JobRecord]:
        con = self._connect()
        try:
            row = con.execute(
                "SELECT id, status, descriptor, result, error, retryable, attempts, created_at, updated_at "
                "FROM jobs WHERE id=?", (job_id,)
            ).fetchone()
        finally:
            con.close()
        return self._to_record(row) if row else None

    def put(self, record: JobRecord) -> None:
        con = self._connect()
        try:
            con.execute("""
            INSERT INTO jobs(id, status, descriptor, result, error, retryable, attempts, created_at, updated_at)
            VALUES (?,?,?,?,?,?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
              status=excluded.status,
              descriptor=excluded.descriptor,
              result=excluded.result,
              error=excluded.error,
              retryable=excluded.retryable,
              attempts=excluded.attempts,
              updated_at=excluded.updated_at
            """, (
                record.job_id,
                record.status.value,
                json.dumps(record.descriptor),
                json.dumps(record.result) if record.result is not None else None,
                record.error,
                int(record.retryable),
                record.attempts,
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
            ))
            con.commit()
        finally:
            con.close()

    def list(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[JobRecord]:
        query = ("SELECT id, status, descriptor, result, error, retryable, attempts, created_at, updated_at "
                 "FROM jobs")
        params: tuple = ()
        if status is not None:
            query += " WHERE status=?"
            params = (status.value,)
        query += " ORDER BY updated_at DESC LIMIT ?"
        params += (limit,)

        con = self._connect()
        try:
            rows = con.execute(query, params).fetchall()
        finally:
            con.close()
        return [self._to_record(r) for r in rows]

    @staticmethod
    def _to_record(row) -> JobRecord:
        return JobRecord(
            job_id=row[0],
            status=JobStatus(row[1]),
            descriptor=json.loads(row[2] or "{}"),
            result=json.loads(row[3]) if row[3] else None,
            error=row[4],
            retryable=bool(row[5]),
            attempts=row[6] or 0,
            created_at=datetime.fromisoformat(row[7]),
            updated_at=datetime.fromisoformat(row[8]),
        )
