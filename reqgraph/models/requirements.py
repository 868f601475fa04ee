# reqgraph/models/requirements.py
"""
Datenmodelle für extrahierte Anforderungen und den Anforderungsgraphen.

Knoten im Store:
- SoftwareApplication (Merge-Key: nameKey)
- SoftwareRequirement (Merge-Key: identifier)
- Role (Merge-Key: id)
- Person (Merge-Key: name)
- Risk / Constraint / Assumption (werden pro Update neu erzeugt)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Union
import re


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_name(name: str) -> str:
    """Normalisierter Projektschlüssel: Whitespace zusammengefasst, casefold."""
    return re.sub(r"\s+", " ", (name or "").strip()).casefold()


class RelationType(Enum):
    """Kantentypen zwischen Anforderungen (und zu Rollen)."""
    DEPENDS_ON = "DEPENDS_ON"
    CONFLICTS_WITH = "CONFLICTS_WITH"
    EXTENDS = "EXTENDS"
    RELATED_TO = "RELATED_TO"
    OWNED_BY = "OWNED_BY"

    @classmethod
    def from_string(cls, value: str) -> Optional["RelationType"]:
        mapping = {
            "depends_on": cls.DEPENDS_ON,
            "dependson": cls.DEPENDS_ON,
            "requires": cls.DEPENDS_ON,
            "conflicts_with": cls.CONFLICTS_WITH,
            "conflicts": cls.CONFLICTS_WITH,
            "conflictswith": cls.CONFLICTS_WITH,
            "extends": cls.EXTENDS,
            "related_to": cls.RELATED_TO,
            "relatedto": cls.RELATED_TO,
            "related": cls.RELATED_TO,
            "owned_by": cls.OWNED_BY,
            "ownedby": cls.OWNED_BY,
        }
        key = re.sub(r"[\s-]+", "_", (value or "").strip()).lower()
        return mapping.get(key)

    @property
    def targets_role(self) -> bool:
        return self is RelationType.OWNED_BY


class AuxiliaryKind(Enum):
    """Hilfsknoten, die aus Inline-Arrays einer Anforderung entstehen."""
    RISK = "risk"
    CONSTRAINT = "constraint"
    ASSUMPTION = "assumption"
    STAKEHOLDER = "stakeholder"

    @property
    def label(self) -> str:
        return _AUX_LABELS[self]

    @property
    def relation(self) -> str:
        return _AUX_RELATIONS[self]

    @property
    def field_name(self) -> str:
        """Attributname auf RequirementRecord."""
        return self.value + "s"

    @property
    def sweepable(self) -> bool:
        """Person-Knoten werden beim Schreiben dedupliziert, nicht vom Sweeper."""
        return self is not AuxiliaryKind.STAKEHOLDER

    @classmethod
    def sweepable_kinds(cls) -> List["AuxiliaryKind"]:
        return [k for k in cls if k.sweepable]


_AUX_LABELS = {
    AuxiliaryKind.RISK: "Risk",
    AuxiliaryKind.CONSTRAINT: "Constraint",
    AuxiliaryKind.ASSUMPTION: "Assumption",
    AuxiliaryKind.STAKEHOLDER: "Person",
}

_AUX_RELATIONS = {
    AuxiliaryKind.RISK: "HAS_RISK",
    AuxiliaryKind.CONSTRAINT: "HAS_CONSTRAINT",
    AuxiliaryKind.ASSUMPTION: "HAS_ASSUMPTION",
    AuxiliaryKind.STAKEHOLDER: "STAKEHOLDER",
}


class JobStatus(Enum):
    """Lebenszyklus eines Extraktions-Jobs."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.PARTIAL,
                        JobStatus.FAILED, JobStatus.CANCELLED)


# =============================================================================
# Sub-Entitäten
# =============================================================================

@dataclass(frozen=True)
class InlineValue:
    """Ein Element aus einem Inline-Array (risks, constraints, ...) vor der Normalisierung."""
    kind: AuxiliaryKind
    value: Union[str, Dict[str, Any]]


@dataclass
class GraphNode:
    """Normalisierter Hilfsknoten, bereit zur Persistierung."""
    kind: AuxiliaryKind
    label: str
    properties: Dict[str, Any]
    merge_key: Optional[str] = None

    @property
    def description(self) -> str:
        return str(self.properties.get("description") or self.properties.get("name") or "")


# =============================================================================
# Records
# =============================================================================

def _as_list(value: Any) -> List[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None and v != ""]
    if isinstance(value, str) and "|" in value:
        return [v.strip() for v in value.split("|") if v.strip()]
    return [value]


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class RequirementRecord:
    """
    Eine extrahierte Anforderung.

    identifier, name und description sind Pflichtfelder. version startet bei
    "1.0" und wird bei jedem erfolgreichen Update um 0.1 erhöht.
    """
    identifier: str
    name: str
    description: str
    type: str = "functional"
    priority: str = ""
    status: str = "draft"
    category: str = ""
    tags: List[str] = field(default_factory=list)
    source: str = ""
    rationale: str = ""
    acceptance_criteria: List[str] = field(default_factory=list)
    author: str = ""

    # Inline-Arrays (Strings oder Dicts), werden zu Hilfsknoten
    risks: List[Any] = field(default_factory=list)
    constraints: List[Any] = field(default_factory=list)
    assumptions: List[Any] = field(default_factory=list)
    stakeholders: List[Any] = field(default_factory=list)

    # Referenzen auf andere Anforderungen (Identifier)
    depends_on: List[str] = field(default_factory=list)
    conflicts_with: List[str] = field(default_factory=list)
    extends: List[str] = field(default_factory=list)
    related_to: List[str] = field(default_factory=list)

    # Vom Store gesetzt
    version: str = "1.0"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Vektor über "name: description", nur im Graph gespeichert (nicht in to_dict)
    embedding: Optional[List[float]] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.identifier and self.name and self.description)

    @property
    def dedup_key(self) -> tuple:
        return (self.name.strip(), self.description.strip())

    @property
    def embedding_text(self) -> str:
        return f"{self.name}: {self.description}"

    def inline_values(self) -> List[InlineValue]:
        """Alle Inline-Array-Elemente in fester Reihenfolge."""
        values = []
        for kind in AuxiliaryKind:
            for item in getattr(self, kind.field_name):
                values.append(InlineValue(kind=kind, value=item))
        return values

    def references(self) -> List["RelationshipRecord"]:
        """Implizite Kanten aus depends_on/conflicts_with/extends/related_to."""
        refs = []
        for rel_type, targets in (
            (RelationType.DEPENDS_ON, self.depends_on),
            (RelationType.CONFLICTS_WITH, self.conflicts_with),
            (RelationType.EXTENDS, self.extends),
            (RelationType.RELATED_TO, self.related_to),
        ):
            for target in targets:
                if target and target != self.identifier:
                    refs.append(RelationshipRecord(
                        type=rel_type, source=self.identifier, target=str(target)
                    ))
        return refs

    def to_properties(self) -> Dict[str, Any]:
        """Skalare Properties für den SoftwareRequirement-Knoten."""
        return {
            "identifier": self.identifier,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "status": self.status,
            "category": self.category,
            "tags": [str(t) for t in self.tags],
            "source": self.source,
            "rationale": self.rationale,
            "acceptanceCriteria": [str(c) for c in self.acceptance_criteria],
            "author": self.author,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_properties()
        data.update({
            "risks": list(self.risks),
            "constraints": list(self.constraints),
            "assumptions": list(self.assumptions),
            "stakeholders": list(self.stakeholders),
            "dependsOn": list(self.depends_on),
            "conflictsWith": list(self.conflicts_with),
            "extends": list(self.extends),
            "relatedTo": list(self.related_to),
            "version": self.version,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequirementRecord":
        """Akzeptiert sowohl die TOON-Spalten als auch das JSON-Schema der Prompts."""
        deps = data.get("dependencies") if isinstance(data.get("dependencies"), dict) else {}
        return cls(
            identifier=_as_str(_first(data, "identifier", "id")),
            name=_as_str(_first(data, "name", "title")),
            description=_as_str(data.get("description")),
            type=_as_str(_first(data, "type", "requirementType", default="functional")) or "functional",
            priority=_as_str(data.get("priority")),
            status=_as_str(data.get("status", "draft")) or "draft",
            category=_as_str(data.get("category")),
            tags=[_as_str(t) for t in _as_list(data.get("tags"))],
            source=_as_str(data.get("source")),
            rationale=_as_str(data.get("rationale")),
            acceptance_criteria=[_as_str(c) for c in _as_list(
                _first(data, "acceptance_criteria", "acceptanceCriteria"))],
            author=_as_str(data.get("author")),
            risks=_as_list(data.get("risks")),
            constraints=_as_list(data.get("constraints")),
            assumptions=_as_list(data.get("assumptions")),
            stakeholders=_as_list(_first(data, "stakeholders", "involvedStakeholders")),
            depends_on=[_as_str(x) for x in _as_list(
                _first(data, "depends_on", "dependsOn", default=deps.get("dependsOn")))],
            conflicts_with=[_as_str(x) for x in _as_list(
                _first(data, "conflicts_with", "conflictsWith", default=deps.get("conflicts")))],
            extends=[_as_str(x) for x in _as_list(
                _first(data, "extends", default=deps.get("extends")))],
            related_to=[_as_str(x) for x in _as_list(
                _first(data, "related_to", "relatedTo", "relatedRequirements"))],
        )


@dataclass
class RoleRecord:
    """Rolle (Verantwortlicher) für Anforderungen."""
    id: str
    name: str
    description: str = ""
    level: str = ""
    department: str = ""

    def to_properties(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "department": self.department,
        }

    def to_dict(self) -> Dict[str, Any]:
        return self.to_properties()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleRecord":
        name = _as_str(data.get("name"))
        return cls(
            id=_as_str(_first(data, "id", "identifier")) or name,
            name=name,
            description=_as_str(data.get("description")),
            level=_as_str(data.get("level")),
            department=_as_str(data.get("department")),
        )


@dataclass
class RelationshipRecord:
    """Gerichtete, typisierte Kante zwischen zwei Identifiern."""
    type: RelationType
    source: str
    target: str

    @property
    def key(self) -> tuple:
        return (self.type.value, self.source, self.target)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "source": self.source, "target": self.target}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["RelationshipRecord"]:
        """Liefert None bei unbekanntem Typ oder fehlenden Endpunkten."""
        rel_type = RelationType.from_string(_as_str(_first(data, "type", "relation")))
        source = _as_str(_first(data, "source", "from"))
        target = _as_str(_first(data, "target", "to"))
        if rel_type is None or not source or not target:
            return None
        return cls(type=rel_type, source=source, target=target)


@dataclass
class ApplicationRecord:
    """Projekt (SoftwareApplication), eindeutig über name_key."""
    name: str
    name_key: str = ""
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name_key:
            self.name_key = normalize_name(self.name)


@dataclass
class RequirementsGraph:
    """Zusammengeführtes Extraktionsergebnis eines Dokuments."""
    requirements: List[RequirementRecord] = field(default_factory=list)
    roles: List[RoleRecord] = field(default_factory=list)
    relationships: List[RelationshipRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    conflicts: List[Any] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.requirements or self.roles or self.relationships)

    def identifiers(self) -> List[str]:
        return [r.identifier for r in self.requirements]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requirements": [r.to_dict() for r in self.requirements],
            "roles": [r.to_dict() for r in self.roles],
            "relationships": [r.to_dict() for r in self.relationships],
            "warnings": list(self.warnings),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }
