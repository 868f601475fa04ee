# reqgraph/extraction/chunking.py
"""
Document Chunking für die Anforderungsextraktion.

Zerlegt lange Dokumente in Abschnitte, die in das Kontextfenster des LLM passen
(~8.000 Zeichen ≈ 2.000 Tokens). Jeder Chunk wird an einer natürlichen Grenze
gekürzt, Priorität:

1. Absatz ("\\n\\n")
2. Zeilenumbruch ("\\n")
3. Satzende (". ", "! ", "? ", ".\\n", "!\\n", "?\\n")
4. Wortgrenze (nur im letzten Fünftel des Slices)
5. harter Schnitt

Der nächste Chunk wiederholt die letzten `overlap_chars` Zeichen des vorherigen.
Chunks werden nicht gestrippt, d.h. chunks[0] + chunks[i][overlap:] ergibt den
Originaltext.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from reqgraph.errors import ChunkingError

logger = logging.getLogger(__name__)


SENTENCE_TERMINATORS = (". ", "! ", "? ", ".\n", "!\n", "?\n")


@dataclass
class TextChunk:
    """Ein Text-Chunk mit Metadaten."""
    text: str
    chunk_id: str
    document_id: Optional[str] = None

    # Position im Originaldokument
    start_char: int = 0
    end_char: int = 0
    chunk_index: int = 0
    total_chunks: int = 1

    overlap_with_previous: int = 0

    # Welche Grenze den Chunk beendet hat (paragraph, line, sentence, word, hard, end)
    breakpoint: str = "end"

    metadata: dict = field(default_factory=dict)

    @property
    def length(self) -> int:
        return len(self.text)

    def __repr__(self) -> str:
        preview = self.text[:50] + "..." if len(self.text) > 50 else self.text
        return f"TextChunk({self.chunk_id}: '{preview}')"


@dataclass
class ChunkingConfig:
    """Konfiguration für Chunking."""
    max_chunk_chars: int = 8000
    overlap_chars: int = 500
    max_chunks: int = 1000

    # Wortgrenze wird nur akzeptiert, wenn sie hinter diesem Anteil des Slices liegt
    word_boundary_ratio: float = 0.8

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChunkingConfig":
        data = data or {}
        return cls(
            max_chunk_chars=int(data.get("max_chunk_chars", cls.max_chunk_chars)),
            overlap_chars=int(data.get("overlap_chars", cls.overlap_chars)),
            max_chunks=int(data.get("max_chunks", cls.max_chunks)),
            word_boundary_ratio=float(data.get("word_boundary_ratio", cls.word_boundary_ratio)),
        )

    def validate(self):
        if self.max_chunk_chars <= 0:
            raise ChunkingError(f"max_chunk_chars muss positiv sein: {self.max_chunk_chars}")
        if self.overlap_chars < 0:
            raise ChunkingError(f"overlap_chars darf nicht negativ sein: {self.overlap_chars}")
        if self.overlap_chars >= self.max_chunk_chars:
            raise ChunkingError(
                f"overlap_chars ({self.overlap_chars}) muss kleiner als "
                f"max_chunk_chars ({self.max_chunk_chars}) sein"
            )
        if self.max_chunks <= 0:
            raise ChunkingError(f"max_chunks muss positiv sein: {self.max_chunks}")


class DocumentChunker:
    """
    Zerlegt Dokumente in überlappende Chunks für die LLM-Extraktion.

    Verwendung:
        chunker = DocumentChunker(ChunkingConfig(max_chunk_chars=8000, overlap_chars=500))
        chunks = chunker.chunk(text, document_id="lastenheft.txt")
    """

    def __init__(self, config: ChunkingConfig = None):
        self.config = config or ChunkingConfig()
        self.config.validate()

    def split(self, text: str) -> List[str]:
        """Nur die Chunk-Texte."""
        return [c.text for c in self.chunk(text)]

    def chunk(self, text: str, document_id: str = None) -> List[TextChunk]:
        """
        Zerlegt Text in Chunks.

        Args:
            text: Zu zerlegender Text
            document_id: Optionale Dokument-ID (für chunk_id)

        Returns:
            Liste von TextChunk-Objekten in Dokumentreihenfolge

        Raises:
            ChunkingError: wenn mehr als max_chunks Chunks entstehen würden
        """
        max_chars = self.config.max_chunk_chars
        overlap = self.config.overlap_chars
        prefix = document_id or "doc"

        if len(text) <= max_chars:
            return [TextChunk(
                text=text,
                chunk_id=f"{prefix}_0",
                document_id=document_id,
                start_char=0,
                end_char=len(text),
            )]

        chunks: List[TextChunk] = []
        position = 0

        while position < len(text):
            if len(chunks) >= self.config.max_chunks:
                raise ChunkingError(
                    f"Chunk-Limit von {self.config.max_chunks} erreicht "
                    f"bei Position {position}/{len(text)}"
                )

            piece = text[position:position + max_chars]
            reaches_end = position + len(piece) >= len(text)

            if reaches_end:
                kind = "end"
            else:
                piece, kind = self._trim_to_breakpoint(piece)

            chunks.append(TextChunk(
                text=piece,
                chunk_id=f"{prefix}_{len(chunks)}",
                document_id=document_id,
                start_char=position,
                end_char=position + len(piece),
                chunk_index=len(chunks),
                overlap_with_previous=overlap if chunks else 0,
                breakpoint=kind,
            ))

            if reaches_end:
                break

            position += len(piece) - overlap

        for c in chunks:
            c.total_chunks = len(chunks)

        logger.info(f"Dokument in {len(chunks)} Chunks zerlegt ({len(text)} Zeichen)")
        return chunks

    def _trim_to_breakpoint(self, piece: str) -> tuple:
        """
        Kürzt einen Slice auf die letzte natürliche Grenze.

        Eine Grenze zählt nur, wenn der Rest länger als der Overlap ist,
        sonst würde die Leseposition nicht vorankommen.
        """
        min_length = self.config.overlap_chars + 1

        cut = piece.rfind("\n\n")
        if cut >= 0 and cut + 2 >= min_length:
            return piece[:cut + 2], "paragraph"

        cut = piece.rfind("\n")
        if cut >= 0 and cut + 1 >= min_length:
            return piece[:cut + 1], "line"

        cut = max(piece.rfind(t) for t in SENTENCE_TERMINATORS)
        if cut >= 0 and cut + 2 >= min_length:
            return piece[:cut + 2], "sentence"

        cut = piece.rfind(" ")
        if cut > len(piece) * self.config.word_boundary_ratio and cut + 1 >= min_length:
            return piece[:cut + 1], "word"

        return piece, "hard"

    def estimate_chunk_count(self, text_length: int) -> int:
        """Grobe Schätzung der Chunk-Anzahl (für Fortschrittsanzeigen)."""
        if text_length <= self.config.max_chunk_chars:
            return 1
        step = self.config.max_chunk_chars - self.config.overlap_chars
        return math.ceil(text_length / step)

    def get_statistics(self, chunks: List[TextChunk]) -> dict:
        """Statistiken über die erzeugten Chunks."""
        if not chunks:
            return {"count": 0}

        lengths = [c.length for c in chunks]
        breakpoints: Dict[str, int] = {}
        for c in chunks:
            breakpoints[c.breakpoint] = breakpoints.get(c.breakpoint, 0) + 1

        return {
            "count": len(chunks),
            "total_chars": sum(lengths),
            "avg_length": sum(lengths) / len(lengths),
            "min_length": min(lengths),
            "max_length": max(lengths),
            "breakpoints": breakpoints,
        }


def reconstruct(chunks: List[TextChunk]) -> str:
    """Setzt Chunks wieder zum Originaltext zusammen (Overlap-Präfixe entfernt)."""
    return "".join(c.text[c.overlap_with_previous:] for c in chunks)


def chunk_text(
    text: str,
    max_chunk_chars: int = 8000,
    overlap_chars: int = 500,
) -> List[str]:
    """Convenience-Funktion für schnelles Chunking."""
    config = ChunkingConfig(max_chunk_chars=max_chunk_chars, overlap_chars=overlap_chars)
    return DocumentChunker(config).split(text)
