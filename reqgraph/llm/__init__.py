from reqgraph.llm.ollama_client import OllamaClient, create_llm_client

__all__ = ["OllamaClient", "create_llm_client"]
