# reqgraph/extraction/embeddings.py
"""
Embeddings für Anforderungen.

Jede Anforderung bekommt einen Vektor über "name: description"; der
Synchronizer legt ihn als Property `embedding` am SoftwareRequirement-Knoten
ab. Darüber läuft die Ähnlichkeitssuche (search_similar).

Der LLM-Client muss `embed(text, model)` anbieten (OllamaClient über
/api/embeddings, OpenAIChatAdapter über embeddings.create).
"""

import time
import logging
import threading
from dataclasses import dataclass
from typing import List, Dict, Any, Optional

from reqgraph.errors import TaskCancelledError
from reqgraph.graph.base import GraphRepository, SimilarRequirement
from reqgraph.models.requirements import RequirementRecord

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Konfiguration der Embeddings."""
    enabled: bool = False
    model: Optional[str] = None     # None = Default des Clients

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EmbeddingConfig":
        data = data or {}
        return cls(enabled=bool(data.get("enabled", False)), model=data.get("model") or None)


class RequirementEmbedder:
    """Berechnet Embeddings für Anforderungen und Suchanfragen."""

    def __init__(self, llm_client: Any, config: EmbeddingConfig = None):
        if not callable(getattr(llm_client, "embed", None)):
            raise TypeError(f"{type(llm_client).__name__} bietet kein embed()")
        self.llm_client = llm_client
        self.config = config or EmbeddingConfig(enabled=True)

    def embed_requirements(
        self,
        requirements: List[RequirementRecord],
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Setzt record.embedding für alle Anforderungen.

        Returns:
            Anzahl der Anforderungen mit Embedding

        Raises:
            ServiceUnavailableError: Embedding-Modell nicht erreichbar
            TaskCancelledError: cancel_event wurde gesetzt
        """
        start_time = time.time()
        embedded = 0
        for record in requirements:
            if cancel_event is not None and cancel_event.is_set():
                raise TaskCancelledError(f"Embeddings abgebrochen nach {embedded} Anforderungen")
            vector = self.llm_client.embed(record.embedding_text, model=self.config.model)
            if not vector:
                logger.warning(f"{record.identifier}: leeres Embedding")
                record.embedding = None
                continue
            record.embedding = vector
            embedded += 1

        logger.info(
            f"Embeddings: {embedded}/{len(requirements)} Anforderungen "
            f"in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return embedded

    def search_similar(
        self,
        repository: GraphRepository,
        query: str,
        limit: int = 10,
        min_similarity: float = 0.0,
    ) -> List[SimilarRequirement]:
        """Sucht gespeicherte Anforderungen, die einem Freitext ähneln."""
        vector = self.llm_client.embed(query, model=self.config.model)
        if not vector:
            return []
        return repository.find_similar_requirements(vector, limit=limit, min_similarity=min_similarity)
