# tests/test_config.py
"""Tests für Config und PipelineConfig."""

import sys
sys.path.insert(0, '.')

from reqgraph.config import Config
from reqgraph.pipeline.extraction_pipeline import PipelineConfig


def test_missing_file_uses_defaults(tmp_path):
    config = Config(str(tmp_path / "fehlt.yaml"))

    assert config.chunking["max_chunk_chars"] == 8000
    assert config.chunking["overlap_chars"] == 500
    assert config.llm["provider"] == "ollama"


def test_yaml_overrides_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "llm:\n  model: mistral:latest\nchunking:\n  max_chunk_chars: 4000\n"
        "extraction:\n  max_concurrent_chunks: 2\n",
        encoding="utf-8",
    )

    config = Config(str(path))
    pipeline_config = PipelineConfig.from_config(config)

    assert config.chunking["overlap_chars"] == 500
    assert pipeline_config.chunking.max_chunk_chars == 4000
    assert pipeline_config.extraction.model == "mistral:latest"
    assert pipeline_config.extraction.max_concurrent_chunks == 2


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434")
    monkeypatch.setenv("REQGRAPH_JOBS_DB", str(tmp_path / "jobs.sqlite"))

    config = Config(str(tmp_path / "fehlt.yaml"))

    assert config.llm["base_url"] == "http://gpu-box:11434"
    assert config.jobs["path"] == str(tmp_path / "jobs.sqlite")


def test_job_options_override_pipeline_config():
    config = PipelineConfig().with_options({"max_chunk_chars": 1000, "model": "qwen2.5", "unbekannt": 1})

    assert config.chunking.max_chunk_chars == 1000
    assert config.extraction.model == "qwen2.5"
    assert PipelineConfig().chunking.max_chunk_chars == 8000


def test_embeddings_section(tmp_path):
    defaults = PipelineConfig.from_config(Config(str(tmp_path / "fehlt.yaml")))
    assert not defaults.embeddings.enabled

    path = tmp_path / "config.yaml"
    path.write_text("embeddings:\n  enabled: true\n  model: mxbai-embed-large\n", encoding="utf-8")
    config = PipelineConfig.from_config(Config(str(path)))

    assert config.embeddings.enabled
    assert config.embeddings.model == "mxbai-embed-large"
    assert not config.with_options({"embeddings": False}).embeddings.enabled
