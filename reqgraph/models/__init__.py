from reqgraph.models.requirements import (
    RequirementRecord,
    RoleRecord,
    RelationshipRecord,
    ApplicationRecord,
    RequirementsGraph,
    RelationType,
    AuxiliaryKind,
    InlineValue,
    GraphNode,
    JobStatus,
    normalize_name,
)

__all__ = [
    "RequirementRecord",
    "RoleRecord",
    "RelationshipRecord",
    "ApplicationRecord",
    "RequirementsGraph",
    "RelationType",
    "AuxiliaryKind",
    "InlineValue",
    "GraphNode",
    "JobStatus",
    "normalize_name",
]
