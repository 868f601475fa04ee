from reqgraph.pipeline.jobs import (
    JobDescriptor, JobRecord, JobRepository, InMemoryJobRepository, SqliteJobRepository,
)
from reqgraph.pipeline.extraction_pipeline import (
    RequirementsPipeline, PipelineConfig, ExtractionJobResult, create_pipeline,
)

__all__ = [
    "JobDescriptor",
    "JobRecord",
    "JobRepository",
    "InMemoryJobRepository",
    "SqliteJobRepository",
    "RequirementsPipeline",
    "PipelineConfig",
    "ExtractionJobResult",
    "create_pipeline",
]
