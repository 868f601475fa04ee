# reqgraph/graph/repository_factory.py
"""
Factory für Graph-Repository-Erstellung.

Ermöglicht einfaches Umschalten zwischen:
- InMemoryGraphRepository (Test/Entwicklung)
- Neo4jRepository (Produktion/Docker)

Verwendung:
    from reqgraph.graph.repository_factory import create_repository

    # Automatisch basierend auf Umgebungsvariablen
    repo = create_repository()

    # Explizit Neo4j
    repo = create_repository(use_neo4j=True)
"""

import os
import logging
from typing import Optional

from reqgraph.graph.base import GraphRepository
from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.graph.repository import Neo4jRepository
from reqgraph.graph.neo4j_connector import Neo4jConnector

logger = logging.getLogger(__name__)


def create_repository(use_neo4j: bool = None, graph_config: Optional[dict] = None) -> GraphRepository:
    """
    Erstellt ein Graph-Repository basierend auf Konfiguration.

    Args:
        use_neo4j: Wenn True, Neo4jRepository verwenden.
                   Wenn False, InMemoryGraphRepository verwenden.
                   Wenn None, aus Umgebungsvariable USE_NEO4J lesen.
        graph_config: Abschnitt "graph" aus der config.yaml (Timeouts, Datenbank)

    Environment Variables:
        USE_NEO4J: "true" oder "false" (default: "false")
        NEO4J_URI: Neo4j Bolt URI (default: "bolt://localhost:7687")
        NEO4J_USER: Neo4j Benutzer (default: "neo4j")
        NEO4J_PASSWORD: Neo4j Passwort (required wenn USE_NEO4J=true)
    """
    if use_neo4j is None:
        use_neo4j = os.getenv("USE_NEO4J", "false").lower() == "true"

    if use_neo4j:
        return _create_neo4j_repository(graph_config or {})
    else:
        return _create_memory_repository()


def _create_neo4j_repository(graph_config: dict) -> Neo4jRepository:
    """Erstellt ein Neo4jRepository mit Verbindungsparametern aus der Umgebung."""
    uri = os.getenv("NEO4J_URI", "bolt://localhost:7687")
    user = os.getenv("NEO4J_USER", "neo4j")
    password = os.getenv("NEO4J_PASSWORD")

    if not password:
        raise ValueError(
            "NEO4J_PASSWORD muss gesetzt sein wenn USE_NEO4J=true. "
            "Setze die Umgebungsvariable oder verwende .env Datei."
        )

    logger.info(f"Erstelle Neo4jRepository: {uri}")

    connector = Neo4jConnector(
        uri,
        user,
        password,
        database=graph_config.get("database"),
        transaction_timeout=float(graph_config.get("transaction_timeout", 30)),
        connection_timeout=float(graph_config.get("connection_timeout", 30)),
    )
    connector.verify()
    repository = Neo4jRepository(connector)
    logger.info("Neo4jRepository erfolgreich erstellt")
    return repository


def _create_memory_repository() -> InMemoryGraphRepository:
    """Erstellt ein InMemoryGraphRepository."""
    logger.info("Erstelle InMemoryGraphRepository")
    return InMemoryGraphRepository()
