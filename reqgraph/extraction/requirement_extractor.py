# reqgraph/extraction/requirement_extractor.py
"""
LLM-basierte Extraktion von Anforderungen pro Chunk.

Workflow:
1. Pro Chunk einen Prompt mit TOON-Beispiel bauen
2. LLM aufrufen (optional parallel, begrenzt über max_concurrent_chunks)
3. Antwort tolerant dekodieren (```toon bevorzugt, JSON als Fallback)
4. In RequirementRecord/RoleRecord/RelationshipRecord übersetzen

Fehlerverhalten:
- ExtractionParseError: Chunk liefert ein leeres Ergebnis, Warnung wird notiert
- ServiceUnavailableError: bricht die gesamte Extraktion ab (wiederholbar)
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from reqgraph.errors import ExtractionParseError, ServiceUnavailableError, TaskCancelledError
from reqgraph.extraction import toon
from reqgraph.extraction.chunking import TextChunk
from reqgraph.extraction.prompts import PromptBuilder
from reqgraph.models.requirements import (
    RequirementRecord, RoleRecord, RelationshipRecord, RelationType, AuxiliaryKind,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Konfiguration
# =============================================================================

@dataclass
class ExtractionConfig:
    """Konfiguration für die Anforderungsextraktion."""

    # LLM-Einstellungen
    model: str = "llama3.1:8b"
    temperature: float = 0.0
    max_tokens: int = 4096

    # Schema
    requirement_types: List[str] = field(default_factory=lambda: [
        "functional", "non-functional", "security", "performance", "usability", "business"
    ])
    relation_types: List[str] = field(default_factory=lambda: [t.value for t in RelationType])
    use_example: bool = True

    # Parallelität / Zeitlimits
    max_concurrent_chunks: int = 4
    chunk_timeout: float = 360.0

    # Nachbearbeitung
    infer_category: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExtractionConfig":
        data = data or {}
        config = cls()
        for key, value in data.items():
            if hasattr(config, key):
                setattr(config, key, value)
        return config


CATEGORY_BY_TYPE = {
    "security": "Security & Compliance",
    "performance": "Performance & Scalability",
    "usability": "User Experience",
}

CATEGORY_KEYWORDS = [
    (("user", "profile", "auth", "login"), "User Management"),
    (("payment", "order", "cart"), "E-Commerce"),
    (("search", "recommendation", "personalization"), "Search & Recommendations"),
    (("data", "backup", "recovery"), "Data Management"),
    (("integration", "api"), "Integration"),
]


def infer_category(record: RequirementRecord) -> str:
    """Leitet eine Kategorie aus Typ und Namen ab (Fallback: General)."""
    if record.type in CATEGORY_BY_TYPE:
        return CATEGORY_BY_TYPE[record.type]
    name = record.name.lower()
    for keywords, category in CATEGORY_KEYWORDS:
        if any(k in name for k in keywords):
            return category
    return "General"


# =============================================================================
# Ergebnisse
# =============================================================================

@dataclass
class ChunkResult:
    """Extraktionsergebnis eines einzelnen Chunks."""
    chunk_index: int
    requirements: List[RequirementRecord] = field(default_factory=list)
    roles: List[RoleRecord] = field(default_factory=list)
    relationships: List[RelationshipRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    parse_failed: bool = False
    response_format: str = "toon"

    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class ExtractionResult:
    """Ergebnis einer Extraktion über alle Chunks (in Chunk-Reihenfolge)."""
    chunks: List[ChunkResult] = field(default_factory=list)

    # Statistiken
    extraction_time_ms: float = 0.0
    llm_calls: int = 0
    tokens_used: int = 0

    @property
    def chunks_processed(self) -> int:
        return len(self.chunks)

    @property
    def failed_chunks(self) -> List[int]:
        return [c.chunk_index for c in self.chunks if c.parse_failed]

    @property
    def warnings(self) -> List[str]:
        return [w for c in self.chunks for w in c.warnings]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunks_processed": self.chunks_processed,
            "failed_chunks": self.failed_chunks,
            "num_requirements": sum(len(c.requirements) for c in self.chunks),
            "extraction_time_ms": self.extraction_time_ms,
            "llm_calls": self.llm_calls,
            "tokens_used": self.tokens_used,
        }


# =============================================================================
# Requirement Extractor
# =============================================================================

class RequirementExtractor:
    """
    Extrahiert Anforderungen aus Text-Chunks über ein OpenAI-kompatibles LLM
    (Objekt mit .chat.completions.create).
    """

    def __init__(self, config: ExtractionConfig = None, llm_client: Any = None):
        self.config = config or ExtractionConfig()
        self.llm_client = llm_client
        self.prompt_builder = PromptBuilder(
            requirement_types=self.config.requirement_types,
            relation_types=self.config.relation_types,
            use_example=self.config.use_example,
        )
        self._stats_lock = threading.Lock()
        self._llm_calls = 0
        self._tokens = 0

        logger.info(f"RequirementExtractor initialisiert (Model: {self.config.model})")

    def extract(
        self,
        chunks: List[TextChunk],
        project_name: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> ExtractionResult:
        """
        Extrahiert alle Chunks.

        Vor jedem Dispatch wird cancel_event geprüft; laufende Aufrufe werden
        abgewartet, danach TaskCancelledError.

        Raises:
            ServiceUnavailableError: LLM nicht erreichbar oder Chunk-Timeout
            TaskCancelledError: cancel_event wurde gesetzt
        """
        start_time = time.time()
        result = ExtractionResult()
        if not chunks:
            return result

        if self.llm_client is None:
            raise ServiceUnavailableError("Kein LLM-Client konfiguriert", service="llm")

        calls_before, tokens_before = self._llm_calls, self._tokens
        workers = max(1, min(int(self.config.max_concurrent_chunks), len(chunks)))
        queue = list(chunks)
        pending = {}
        outcomes: Dict[int, ChunkResult] = {}
        cancelled = False
        failed = False

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunk")
        try:
            while queue or pending:
                while queue and len(pending) < workers:
                    if cancel_event is not None and cancel_event.is_set():
                        cancelled = True
                        queue = []
                        break
                    chunk = queue.pop(0)
                    logger.debug(f"Starte Chunk {chunk.chunk_index + 1}/{len(chunks)}")
                    future = executor.submit(self._extract_chunk_tolerant, chunk, project_name)
                    pending[future] = chunk

                if not pending:
                    break

                done, _ = wait(pending, timeout=self.config.chunk_timeout, return_when=FIRST_COMPLETED)
                if not done:
                    failed = True
                    indices = sorted(c.chunk_index for c in pending.values())
                    raise ServiceUnavailableError(
                        f"Timeout nach {self.config.chunk_timeout}s für Chunks {indices}",
                        service="llm",
                    )
                for future in done:
                    chunk = pending.pop(future)
                    try:
                        outcomes[chunk.chunk_index] = future.result()
                    except ServiceUnavailableError:
                        failed = True
                        raise
        finally:
            executor.shutdown(wait=not failed, cancel_futures=failed)

        result.chunks = [outcomes[i] for i in sorted(outcomes)]
        result.extraction_time_ms = (time.time() - start_time) * 1000
        result.llm_calls = self._llm_calls - calls_before
        result.tokens_used = self._tokens - tokens_before

        if cancelled:
            raise TaskCancelledError(
                f"Extraktion abgebrochen nach {len(outcomes)}/{len(chunks)} Chunks"
            )

        logger.info(
            f"Extraktion abgeschlossen: {sum(len(c.requirements) for c in result.chunks)} Anforderungen "
            f"aus {len(result.chunks)} Chunks in {result.extraction_time_ms:.0f}ms"
        )
        return result

    def _extract_chunk_tolerant(self, chunk: TextChunk, project_name: str) -> ChunkResult:
        try:
            return self.extract_chunk(chunk, project_name)
        except ExtractionParseError as e:
            logger.warning(f"Chunk {chunk.chunk_index}: Antwort nicht lesbar ({e})")
            return ChunkResult(
                chunk_index=chunk.chunk_index,
                parse_failed=True,
                warnings=[f"Chunk {chunk.chunk_index}: {e}"],
            )

    def extract_chunk(self, chunk: TextChunk, project_name: str = "") -> ChunkResult:
        """
        Extrahiert einen einzelnen Chunk.

        Raises:
            ExtractionParseError: Antwort nicht verwertbar
            ServiceUnavailableError: LLM nicht erreichbar
        """
        messages = self.prompt_builder.build_extraction_prompt(
            chunk.text,
            chunk_index=chunk.chunk_index,
            total_chunks=chunk.total_chunks,
            project_name=project_name,
        )

        response = self.llm_client.chat.completions.create(
            model=self.config.model,
            messages=messages,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0
        with self._stats_lock:
            self._llm_calls += 1
            self._tokens += prompt_tokens + completion_tokens

        content = response.choices[0].message.content or ""
        result = self.parse_response(content, chunk.chunk_index)
        result.prompt_tokens = prompt_tokens
        result.completion_tokens = completion_tokens
        return result

    def parse_response(self, content: str, chunk_index: int = 0) -> ChunkResult:
        """
        Übersetzt eine LLM-Antwort in typisierte Records.

        Raises:
            ExtractionParseError: wenn nichts Verwertbares gefunden wurde
        """
        if not content or not content.strip():
            raise ExtractionParseError("Leere Antwort", chunk_index=chunk_index, raw=content)

        decoded = toon.parse_response(content)
        if decoded.is_empty:
            reason = "; ".join(decoded.diagnostics[:3]) or "keine Daten"
            raise ExtractionParseError(reason, chunk_index=chunk_index, raw=content)

        data = decoded.data
        if "requirements" not in data:
            # z.B. Prosa mit "Hinweis: ..." wird als Skalar gelesen
            raise ExtractionParseError(
                f"kein 'requirements'-Block (gefunden: {', '.join(list(data)[:5])})",
                chunk_index=chunk_index, raw=content,
            )
        raw_requirements = data["requirements"]
        if not isinstance(raw_requirements, list):
            raise ExtractionParseError(
                "'requirements' ist keine Liste", chunk_index=chunk_index, raw=content
            )

        result = ChunkResult(chunk_index=chunk_index, response_format=decoded.format)
        result.warnings.extend(f"Chunk {chunk_index}: {d}" for d in decoded.diagnostics)

        for row in raw_requirements:
            if not isinstance(row, dict):
                result.warnings.append(f"Chunk {chunk_index}: Anforderung ist kein Objekt: {row!r}")
                continue
            record = RequirementRecord.from_dict(row)
            if not record.name or not record.description:
                result.warnings.append(
                    f"Chunk {chunk_index}: Anforderung '{record.identifier or '?'}' ohne name/description verworfen"
                )
                continue
            if self.config.infer_category and not record.category:
                record.category = infer_category(record)
            result.requirements.append(record)

        self._attach_child_tables(data, result)

        for row in _rows(data.get("roles")):
            role = RoleRecord.from_dict(row)
            if role.name:
                result.roles.append(role)

        for row in _rows(data.get("relationships")):
            relationship = RelationshipRecord.from_dict(row)
            if relationship is None:
                result.warnings.append(f"Chunk {chunk_index}: ungültige Beziehung {row}")
                continue
            result.relationships.append(relationship)

        for record in result.requirements:
            result.relationships.extend(record.references())

        logger.debug(
            f"Chunk {chunk_index}: {len(result.requirements)} Anforderungen, "
            f"{len(result.relationships)} Beziehungen ({decoded.format})"
        )
        return result

    def _attach_child_tables(self, data: Dict[str, Any], result: ChunkResult):
        """Hängt Zeilen aus risks/constraints/... an die referenzierte Anforderung."""
        by_id = {r.identifier: r for r in result.requirements if r.identifier}
        for kind in AuxiliaryKind:
            table = data.get(kind.field_name)
            for row in _rows(table):
                owner = str(row.get("requirement", "")).strip()
                record = by_id.get(owner)
                if record is None:
                    result.warnings.append(
                        f"Chunk {result.chunk_index}: {kind.value} für unbekannte Anforderung '{owner}'"
                    )
                    continue
                value = {k: v for k, v in row.items() if k != "requirement"}
                text_key = "name" if kind is AuxiliaryKind.STAKEHOLDER else "description"
                if set(value) <= {text_key}:
                    value = value.get(text_key)
                if value in (None, "", {}):
                    continue
                getattr(record, kind.field_name).append(value)

    def get_statistics(self) -> Dict[str, int]:
        return {"llm_calls": self._llm_calls, "tokens_used": self._tokens}


def _rows(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [row for row in value if isinstance(row, dict)]
