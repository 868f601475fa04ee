# reqgraph/extraction/merger.py
"""
Zusammenführung der Chunk-Ergebnisse zu einem deduplizierten Anforderungsgraphen.

Regel "first occurrence wins": Chunks werden in Dokumentreihenfolge verarbeitet,
ein späteres Duplikat wird verworfen und als MergeConflictWarning gemeldet.

Duplikat-Kriterien:
- Anforderungen: gleicher identifier ODER gleiches (name, description)
- Rollen: gleiche id ODER gleicher Name (case-insensitive)
- Beziehungen: gleiches (type, source, target)

Beziehungen, die auf den identifier eines verworfenen Duplikats zeigen, werden
auf den überlebenden identifier umgeschrieben.
"""

import uuid
import logging
from typing import List, Dict, Iterable, Optional

from reqgraph.errors import MergeConflictWarning
from reqgraph.extraction.requirement_extractor import ChunkResult
from reqgraph.models.requirements import (
    RequirementRecord, RoleRecord, RelationshipRecord, RequirementsGraph,
)

logger = logging.getLogger(__name__)


def generate_identifier() -> str:
    return f"REQ-AUTO-{uuid.uuid4().hex[:12].upper()}"


class ResultMerger:
    """
    Führt Chunk-Ergebnisse zusammen.

    Verwendung:
        graph = ResultMerger().merge(extraction_result.chunks)
    """

    def merge(self, chunk_results: Iterable[ChunkResult]) -> RequirementsGraph:
        ordered = sorted(chunk_results, key=lambda c: c.chunk_index)

        graph = RequirementsGraph()
        for chunk in ordered:
            graph.warnings.extend(chunk.warnings)

        aliases: Dict[str, str] = {}
        graph.requirements = self._merge_requirements(
            [r for c in ordered for r in c.requirements], aliases, graph
        )
        role_aliases: Dict[str, str] = {}
        graph.roles = self._merge_roles([r for c in ordered for r in c.roles], role_aliases, graph)
        graph.relationships = self._merge_relationships(
            [r for c in ordered for r in c.relationships], {**role_aliases, **aliases}, graph
        )

        logger.info(
            f"Merge: {len(graph.requirements)} Anforderungen, {len(graph.roles)} Rollen, "
            f"{len(graph.relationships)} Beziehungen, {len(graph.conflicts)} Konflikte"
        )
        return graph

    def _merge_requirements(
        self,
        records: List[RequirementRecord],
        aliases: Dict[str, str],
        graph: RequirementsGraph,
    ) -> List[RequirementRecord]:
        kept: List[RequirementRecord] = []
        by_id: Dict[str, RequirementRecord] = {}
        by_content: Dict[tuple, RequirementRecord] = {}

        for record in records:
            existing = (by_id.get(record.identifier) if record.identifier else None) \
                or by_content.get(record.dedup_key)

            if existing is not None:
                if record.identifier and record.identifier != existing.identifier:
                    aliases.setdefault(record.identifier, existing.identifier)
                self._conflict(graph, "requirement", existing.identifier, record.identifier or record.name)
                continue

            if not record.identifier:
                record.identifier = generate_identifier()
                logger.debug(f"Identifier generiert: {record.identifier} für '{record.name}'")

            # Kennung wird jetzt von einem eigenen Datensatz belegt
            aliases.pop(record.identifier, None)
            kept.append(record)
            by_id[record.identifier] = record
            by_content.setdefault(record.dedup_key, record)

        return kept

    def _merge_roles(
        self,
        roles: List[RoleRecord],
        aliases: Dict[str, str],
        graph: RequirementsGraph,
    ) -> List[RoleRecord]:
        kept: List[RoleRecord] = []
        by_id: Dict[str, RoleRecord] = {}
        by_name: Dict[str, RoleRecord] = {}

        for role in roles:
            name_key = role.name.strip().casefold()
            existing = by_id.get(role.id) or by_name.get(name_key)
            if existing is not None:
                if role.id != existing.id:
                    aliases.setdefault(role.id, existing.id)
                self._conflict(graph, "role", existing.id, role.id)
                continue
            aliases.pop(role.id, None)
            kept.append(role)
            by_id[role.id] = role
            by_name[name_key] = role

        return kept

    def _merge_relationships(
        self,
        relationships: List[RelationshipRecord],
        aliases: Dict[str, str],
        graph: RequirementsGraph,
    ) -> List[RelationshipRecord]:
        kept: List[RelationshipRecord] = []
        seen = set()

        for rel in relationships:
            source = self._resolve(rel.source, aliases)
            target = self._resolve(rel.target, aliases)
            if source == target:
                continue
            rewritten = RelationshipRecord(type=rel.type, source=source, target=target)
            if rewritten.key in seen:
                continue
            seen.add(rewritten.key)
            kept.append(rewritten)

        return kept

    @staticmethod
    def _resolve(identifier: str, aliases: Dict[str, str]) -> str:
        seen = set()
        while identifier in aliases and identifier not in seen:
            seen.add(identifier)
            identifier = aliases[identifier]
        return identifier

    @staticmethod
    def _conflict(graph: RequirementsGraph, kind: str, kept: str, dropped: Optional[str]):
        warning = MergeConflictWarning(
            f"Duplikat verworfen ({kind}): {dropped} -> {kept}",
            kind=kind,
            kept=kept,
            dropped=dropped or "",
        )
        graph.conflicts.append(warning)
        logger.debug(str(warning))


def merge_results(chunk_results: Iterable[ChunkResult]) -> RequirementsGraph:
    """Convenience-Funktion."""
    return ResultMerger().merge(chunk_results)
