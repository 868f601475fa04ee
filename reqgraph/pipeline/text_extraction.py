# reqgraph/pipeline/text_extraction.py
"""
Text-Extraktion aus Dokumenten.

Formatspezifische Extraktoren (PDF, Office) sind nicht Teil dieses Pakets;
sie implementieren dasselbe Interface `extract(file_path) -> str`.
"""

import logging
from pathlib import Path
from typing import Protocol

from reqgraph.errors import DocumentNotFoundError, TextExtractionError

logger = logging.getLogger(__name__)


class TextExtractor(Protocol):
    def extract(self, file_path: str) -> str:
        ...


class PlainTextExtractor:
    """Liest Text-Dateien (UTF-8, Fallback latin-1)."""

    def __init__(self, encodings=("utf-8", "latin-1")):
        self.encodings = encodings

    def extract(self, file_path: str) -> str:
        path = Path(file_path)
        if not path.is_file():
            raise DocumentNotFoundError(f"Dokument nicht gefunden: {file_path}")

        try:
            data = path.read_bytes()
        except OSError as e:
            raise TextExtractionError(f"Dokument nicht lesbar: {file_path}: {e}") from e

        for encoding in self.encodings:
            try:
                text = data.decode(encoding)
                logger.debug(f"{path.name}: {len(text)} Zeichen ({encoding})")
                return text
            except UnicodeDecodeError:
                continue
        raise TextExtractionError(f"Unbekannte Kodierung: {file_path}")
