# reqgraph/errors.py
"""
Fehler-Taxonomie der Extraktions-Pipeline.

Jede Klasse legt fest, wie der Aufrufer reagiert:
- ChunkingError, DocumentNotFoundError, TextExtractionError: fatal für das Dokument
- ExtractionParseError: wird pro Chunk abgefangen (leeres Ergebnis)
- GraphWriteError: wird pro Datensatz abgefangen und protokolliert
- ServiceUnavailableError: fatal für den Task, aber wiederholbar
- MergeConflictWarning: keine Exception im Ablauf, wird nur gesammelt
"""

from typing import Optional


class ReqGraphError(Exception):
    """Basisklasse aller Pipeline-Fehler."""

    retryable = False


class ChunkingError(ReqGraphError):
    """Ungültige Chunking-Parameter oder Chunk-Limit überschritten."""


class ExtractionParseError(ReqGraphError):
    """LLM-Antwort konnte nicht in strukturierte Daten übersetzt werden."""

    def __init__(self, message: str, chunk_index: Optional[int] = None, raw: str = ""):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.raw = raw


class GraphWriteError(ReqGraphError):
    """Schreibvorgang in den Graph-Store fehlgeschlagen (pro Datensatz)."""

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


class ServiceUnavailableError(ReqGraphError):
    """LLM oder Graph-Store nicht erreichbar bzw. Timeout."""

    retryable = True

    def __init__(self, message: str, service: str = "unknown"):
        super().__init__(message)
        self.service = service


class TaskCancelledError(ReqGraphError):
    """Task wurde über das Cancel-Signal abgebrochen."""


class DocumentNotFoundError(ReqGraphError):
    """Dokument existiert nicht."""


class TextExtractionError(ReqGraphError):
    """Text konnte nicht aus dem Dokument gelesen werden."""


class MergeConflictWarning(UserWarning):
    """Ein Duplikat wurde beim Zusammenführen verworfen."""

    def __init__(self, message: str, kind: str = "requirement", kept: str = "", dropped: str = ""):
        super().__init__(message)
        self.kind = kind
        self.kept = kept
        self.dropped = dropped

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "kept": self.kept,
            "dropped": self.dropped,
            "message": str(self),
        }
