from reqgraph.graph.base import GraphRepository, UpsertResult, SimilarRequirement
from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.graph.repository import Neo4jRepository
from reqgraph.graph.repository_factory import create_repository
from reqgraph.graph.synchronizer import GraphSynchronizer, SyncResult, SyncConfig
from reqgraph.graph.sweeper import DeduplicationSweeper, SweepReport

__all__ = [
    "GraphRepository",
    "UpsertResult",
    "SimilarRequirement",
    "InMemoryGraphRepository",
    "Neo4jRepository",
    "create_repository",
    "GraphSynchronizer",
    "SyncResult",
    "SyncConfig",
    "DeduplicationSweeper",
    "SweepReport",
]
