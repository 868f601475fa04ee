from reqgraph.extraction.chunking import DocumentChunker, ChunkingConfig, TextChunk
from reqgraph.extraction.requirement_extractor import RequirementExtractor, ExtractionConfig, ExtractionResult
from reqgraph.extraction.merger import ResultMerger
from reqgraph.extraction.embeddings import RequirementEmbedder, EmbeddingConfig

__all__ = [
    "DocumentChunker",
    "ChunkingConfig",
    "TextChunk",
    "RequirementExtractor",
    "ExtractionConfig",
    "ExtractionResult",
    "ResultMerger",
    "RequirementEmbedder",
    "EmbeddingConfig",
]
