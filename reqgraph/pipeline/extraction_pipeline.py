# reqgraph/pipeline/extraction_pipeline.py
"""
Extraktions-Pipeline: ein Aufruf pro Job-Deskriptor.

    Text-Extraktion -> Chunking -> LLM-Extraktion -> Merge -> Embeddings -> Graph-Sync

Embeddings sind optional (embeddings.enabled) und brauchen einen Client mit embed().

Status:
- completed: keine fehlgeschlagenen Datensätze
- partial:   mindestens eine Anforderung geschrieben, aber Fehler
- failed:    nichts geschrieben trotz Fehlern, oder fataler Fehler
- cancelled: Abbruch über cancel_event

Fatale Fehler mit retryable=True (ServiceUnavailableError) werden nach dem
Speichern des Job-Zustands erneut geworfen, damit die Queue neu zustellen kann.
Ein bereits abgeschlossener Job wird bei erneuter Zustellung nicht noch
einmal geschrieben (sonst würde die Version doppelt steigen).

Verwendung:
    pipeline = create_pipeline(Config())
    record = pipeline.handle({"documentPath": "lastenheft.txt", "projectName": "Shop"})
"""

import time
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Dict, Any, Optional, Union, Callable

from reqgraph.config import Config
from reqgraph.errors import ReqGraphError, TaskCancelledError
from reqgraph.extraction.chunking import DocumentChunker, ChunkingConfig
from reqgraph.extraction.embeddings import RequirementEmbedder, EmbeddingConfig
from reqgraph.extraction.merger import ResultMerger
from reqgraph.extraction.requirement_extractor import RequirementExtractor, ExtractionConfig
from reqgraph.graph.base import GraphRepository
from reqgraph.graph.repository_factory import create_repository
from reqgraph.graph.synchronizer import GraphSynchronizer, SyncConfig, SyncResult
from reqgraph.llm.ollama_client import create_llm_client
from reqgraph.models.requirements import JobStatus, RequirementsGraph, utc_now
from reqgraph.pipeline.jobs import JobDescriptor, JobRecord, JobRepository, InMemoryJobRepository, SqliteJobRepository
from reqgraph.pipeline.text_extraction import TextExtractor, PlainTextExtractor

logger = logging.getLogger(__name__)


# =============================================================================
# Konfiguration
# =============================================================================

CHUNKING_OPTIONS = ("max_chunk_chars", "overlap_chars", "max_chunks")
EXTRACTION_OPTIONS = ("model", "temperature", "max_tokens", "max_concurrent_chunks", "chunk_timeout")
EMBEDDING_OPTIONS = {"embeddings": "enabled", "embedding_model": "model"}


@dataclass
class PipelineConfig:
    """Bündelt die Konfiguration aller Stufen."""
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    embeddings: EmbeddingConfig = field(default_factory=EmbeddingConfig)

    @classmethod
    def from_config(cls, config: Config) -> "PipelineConfig":
        extraction = dict(config.extraction)
        extraction.setdefault("model", config.llm.get("model"))
        return cls(
            chunking=ChunkingConfig.from_dict(config.chunking),
            extraction=ExtractionConfig.from_dict(extraction),
            sync=SyncConfig.from_dict(config.graph),
            embeddings=EmbeddingConfig.from_dict(config.embeddings),
        )

    def with_options(self, options: Dict[str, Any]) -> "PipelineConfig":
        """Job-spezifische Überschreibungen aus descriptor.options."""
        chunking = replace(self.chunking, **{k: options[k] for k in CHUNKING_OPTIONS if k in options})
        extraction = replace(self.extraction, **{k: options[k] for k in EXTRACTION_OPTIONS if k in options})
        embeddings = replace(
            self.embeddings, **{field_name: options[k] for k, field_name in EMBEDDING_OPTIONS.items() if k in options}
        )
        return PipelineConfig(chunking=chunking, extraction=extraction, sync=self.sync, embeddings=embeddings)


# =============================================================================
# Ergebnis
# =============================================================================

@dataclass
class ExtractionJobResult:
    """Ergebnis eines Pipeline-Laufs (serialisierbar über to_dict)."""
    project_name: str
    status: JobStatus
    graph: RequirementsGraph = field(default_factory=RequirementsGraph)
    sync: Optional[SyncResult] = None
    statistics: Dict[str, Any] = field(default_factory=dict)

    @property
    def warnings(self) -> List[str]:
        warnings = list(self.graph.warnings)
        warnings.extend(str(c) for c in self.graph.conflicts)
        if self.sync:
            warnings.extend(self.sync.warnings)
        return warnings

    @property
    def errors(self) -> List[Dict[str, str]]:
        return [e.to_dict() for e in self.sync.errors] if self.sync else []

    def to_dict(self) -> Dict[str, Any]:
        data = self.graph.to_dict()
        data.update({
            "projectName": self.project_name,
            "status": self.status.value,
            "errors": self.errors,
            "warnings": self.warnings,
            "sync": self.sync.to_dict() if self.sync else None,
            "statistics": dict(self.statistics),
        })
        return data


def determine_status(sync: SyncResult) -> JobStatus:
    if not sync.errors:
        return JobStatus.COMPLETED
    if sync.outcomes:
        return JobStatus.PARTIAL
    return JobStatus.FAILED


# =============================================================================
# Pipeline
# =============================================================================

class RequirementsPipeline:
    """Orchestriert einen Extraktions-Job von der Datei bis in den Graphen."""

    def __init__(
        self,
        llm_client: Any,
        repository: GraphRepository,
        job_repository: JobRepository = None,
        text_extractor: TextExtractor = None,
        config: PipelineConfig = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.llm_client = llm_client
        self.repository = repository
        self.job_repository = job_repository or InMemoryJobRepository()
        self.text_extractor = text_extractor or PlainTextExtractor()
        self.config = config or PipelineConfig()
        self.clock = clock
        self.merger = ResultMerger()

    # -------------------------------------------------------------------------
    # Job-Ebene
    # -------------------------------------------------------------------------

    def handle(
        self,
        job: Union[JobDescriptor, Dict[str, Any]],
        cancel_event: Optional[threading.Event] = None,
    ) -> JobRecord:
        """
        Verarbeitet einen Job und persistiert seinen Zustand.

        Raises:
            ReqGraphError: nur wenn der Fehler wiederholbar ist (nach dem Speichern)
            Exception: unerwartete Fehler, Job vorher als failed gespeichert
        """
        descriptor = job if isinstance(job, JobDescriptor) else JobDescriptor.from_dict(job)

        existing = self.job_repository.get(descriptor.job_id)
        if existing is not None and existing.status in (JobStatus.COMPLETED, JobStatus.PARTIAL):
            logger.info(f"Job {descriptor.job_id} bereits abgeschlossen ({existing.status.value}) - übersprungen")
            return existing

        record = JobRecord(
            job_id=descriptor.job_id,
            status=JobStatus.PROCESSING,
            descriptor=descriptor.to_dict(),
            attempts=(existing.attempts if existing else 0) + 1,
            created_at=existing.created_at if existing else self.clock(),
            updated_at=self.clock(),
        )
        self.job_repository.put(record)
        logger.info(f"Job {descriptor.job_id}: {descriptor.document_path} -> '{descriptor.project_name}'")

        try:
            text = self.text_extractor.extract(descriptor.document_path)
            result = self.run(text, descriptor.project_name, cancel_event, descriptor.options,
                              document_id=descriptor.job_id)
        except TaskCancelledError as e:
            logger.warning(f"Job {descriptor.job_id} abgebrochen: {e}")
            self._finish(record, JobStatus.CANCELLED, error=str(e))
            return record
        except ReqGraphError as e:
            logger.error(f"Job {descriptor.job_id} fehlgeschlagen: {e}")
            self._finish(record, JobStatus.FAILED, error=str(e), retryable=e.retryable)
            if e.retryable:
                raise
            return record
        except Exception as e:
            # Job-Zustand darf nicht in "processing" hängen bleiben
            logger.error(f"Job {descriptor.job_id}: unerwarteter Fehler {type(e).__name__}: {e}")
            self._finish(record, JobStatus.FAILED, error=f"{type(e).__name__}: {e}")
            raise

        self._finish(record, result.status, result=result.to_dict())
        logger.info(f"Job {descriptor.job_id}: {result.status.value}")
        return record

    def _finish(self, record: JobRecord, status: JobStatus, result=None, error=None, retryable=False):
        record.status = status
        record.result = result
        record.error = error
        record.retryable = retryable
        record.updated_at = self.clock()
        self.job_repository.put(record)

    # -------------------------------------------------------------------------
    # Kern
    # -------------------------------------------------------------------------

    def run(
        self,
        text: str,
        project_name: str,
        cancel_event: Optional[threading.Event] = None,
        options: Optional[Dict[str, Any]] = None,
        document_id: str = None,
    ) -> ExtractionJobResult:
        """
        Chunking, Extraktion, Merge und Synchronisation für einen Text.

        Raises:
            ChunkingError, ServiceUnavailableError, TaskCancelledError
        """
        start_time = time.time()
        config = self.config.with_options(options or {})

        if not text or not text.strip():
            logger.warning("Leerer Text - keine Extraktion")
            sync = GraphSynchronizer(self.repository, config.sync, self.clock).sync(
                project_name, RequirementsGraph(), cancel_event
            )
            return ExtractionJobResult(project_name=project_name, status=JobStatus.COMPLETED, sync=sync)

        chunker = DocumentChunker(config.chunking)
        chunks = chunker.chunk(text, document_id=document_id)

        extractor = RequirementExtractor(config.extraction, self.llm_client)
        extraction = extractor.extract(chunks, project_name=project_name, cancel_event=cancel_event)

        graph = self.merger.merge(extraction.chunks)

        embedded = 0
        if config.embeddings.enabled:
            embedder = RequirementEmbedder(self.llm_client, config.embeddings)
            embedded = embedder.embed_requirements(graph.requirements, cancel_event)

        synchronizer = GraphSynchronizer(self.repository, config.sync, self.clock)
        sync = synchronizer.sync(project_name, graph, cancel_event)

        statistics = {
            "chunks": chunker.get_statistics(chunks),
            "extraction": extraction.to_dict(),
            "embeddings": embedded,
            "processing_time_ms": (time.time() - start_time) * 1000,
        }
        return ExtractionJobResult(
            project_name=project_name,
            status=determine_status(sync),
            graph=graph,
            sync=sync,
            statistics=statistics,
        )


def create_pipeline(config: Config = None, use_neo4j: bool = None) -> RequirementsPipeline:
    """Baut die Pipeline aus config.yaml und Umgebungsvariablen."""
    config = config or Config()
    llm = config.llm
    provider = llm.get("provider", "ollama")

    client_kwargs = {"timeout": float(llm.get("timeout", 300))}
    if provider == "ollama":
        client_kwargs["base_url"] = llm.get("base_url", "http://localhost:11434")

    llm_client = create_llm_client(
        provider=provider,
        model=llm.get("model"),
        api_key=config.openai_api_key,
        **client_kwargs
    )
    repository = create_repository(use_neo4j=use_neo4j, graph_config=config.graph)
    job_repository = SqliteJobRepository(config.jobs.get("path", ".reqgraph/jobs.sqlite"))

    return RequirementsPipeline(
        llm_client=llm_client,
        repository=repository,
        job_repository=job_repository,
        config=PipelineConfig.from_config(config),
    )
