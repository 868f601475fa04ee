# reqgraph/config.py
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
import yaml

logger = logging.getLogger(__name__)

# .env laden
load_dotenv()

DEFAULTS = {
    "llm": {
        "provider": "ollama",
        "model": "llama3.1:8b",
        "base_url": "http://localhost:11434",
        "timeout": 300,
    },
    "chunking": {
        "max_chunk_chars": 8000,
        "overlap_chars": 500,
        "max_chunks": 1000,
    },
    "extraction": {
        "temperature": 0.0,
        "max_tokens": 4096,
        "max_concurrent_chunks": 4,
        "chunk_timeout": 360,
    },
    "graph": {
        "transaction_timeout": 30,
        "connection_timeout": 30,
        "serialize_per_project": False,
    },
    "embeddings": {
        "enabled": False,
        "model": "nomic-embed-text",
    },
    "jobs": {
        "path": ".reqgraph/jobs.sqlite",
    },
}


class Config:
    """Zentrale Konfigurationsklasse für die Extraktions-Pipeline."""

    def __init__(self, config_path: str = "configs/config.yaml"):
        self.config_path = Path(config_path)
        self._load_config()
        self._load_env()

    def _load_config(self):
        """Lädt die YAML-Konfiguration (fehlende Abschnitte aus DEFAULTS)."""
        loaded = {}
        if self.config_path.exists():
            with open(self.config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        else:
            logger.warning(f"Konfiguration {self.config_path} fehlt - verwende Defaults")

        self._config = {}
        for section, defaults in DEFAULTS.items():
            self._config[section] = {**defaults, **(loaded.get(section) or {})}

    def _load_env(self):
        """Lädt Umgebungsvariablen."""
        self.openai_api_key = os.getenv("OPENAI_API_KEY")
        self.neo4j_uri = os.getenv("NEO4J_URI")
        self.neo4j_user = os.getenv("NEO4J_USER")
        self.neo4j_password = os.getenv("NEO4J_PASSWORD")
        self.use_neo4j = os.getenv("USE_NEO4J", "false").lower() == "true"

        if os.getenv("OLLAMA_BASE_URL"):
            self._config["llm"]["base_url"] = os.getenv("OLLAMA_BASE_URL")
        if os.getenv("REQGRAPH_JOBS_DB"):
            self._config["jobs"]["path"] = os.getenv("REQGRAPH_JOBS_DB")

    @property
    def llm(self) -> dict:
        return self._config.get("llm", {})

    @property
    def chunking(self) -> dict:
        return self._config.get("chunking", {})

    @property
    def extraction(self) -> dict:
        return self._config.get("extraction", {})

    @property
    def graph(self) -> dict:
        return self._config.get("graph", {})

    @property
    def embeddings(self) -> dict:
        return self._config.get("embeddings", {})

    @property
    def jobs(self) -> dict:
        return self._config.get("jobs", {})
