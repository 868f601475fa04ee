#!/usr/bin/env python3
"""
Ähnlichkeitssuche über gespeicherte Anforderungen in Neo4j.

Braucht Anforderungen mit Embedding (embeddings.enabled in config.yaml).

Verwendung:
    python scripts/search_requirements.py "Nutzer melden sich mit Passwort an"
    python scripts/search_requirements.py "CSV-Export" --limit 5 --min-similarity 0.8
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import json
import logging

from reqgraph.config import Config
from reqgraph.extraction.embeddings import RequirementEmbedder, EmbeddingConfig
from reqgraph.graph.repository_factory import create_repository
from reqgraph.llm.ollama_client import create_llm_client

logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(message)s')
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Ähnliche Anforderungen suchen")
    parser.add_argument("query", help="Freitext der Suche")
    parser.add_argument("--config", default="configs/config.yaml", help="Pfad zur config.yaml")
    parser.add_argument("--limit", type=int, default=10, help="Maximale Anzahl Treffer")
    parser.add_argument("--min-similarity", type=float, default=0.0, help="Untergrenze (0..1)")
    args = parser.parse_args()

    config = Config(args.config)
    llm = config.llm
    provider = llm.get("provider", "ollama")
    client_kwargs = {"timeout": float(llm.get("timeout", 300))}
    if provider == "ollama":
        client_kwargs["base_url"] = llm.get("base_url", "http://localhost:11434")
    llm_client = create_llm_client(provider=provider, model=llm.get("model"),
                                   api_key=config.openai_api_key, **client_kwargs)
    repository = create_repository(use_neo4j=True, graph_config=config.graph)

    embedder = RequirementEmbedder(llm_client, EmbeddingConfig.from_dict(config.embeddings))
    hits = embedder.search_similar(repository, args.query, limit=args.limit,
                                   min_similarity=args.min_similarity)
    logger.info(f"{len(hits)} Treffer für '{args.query}'")

    print(json.dumps([h.to_dict() for h in hits], indent=2, ensure_ascii=False))

    repository.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
