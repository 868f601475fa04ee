# reqgraph/graph/sweeper.py
"""
Deduplication Sweeper für Hilfsknoten (Constraint, Risk, Assumption).

Der Synchronizer erzeugt Hilfsknoten bei jedem Update neu; gleiche
Beschreibungen bei verschiedenen Anforderungen werden hier zusammengeführt:

1. Pro Label nach exakter Beschreibung gruppieren
2. Keeper = ältester Knoten (createdAt, dann id)
3. Eingehende Kanten der Duplikate auf den Keeper umbiegen, Duplikate löschen
4. Knoten ohne eingehende Kanten löschen

Zweimal hintereinander ausgeführt ändert der zweite Lauf nichts.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any

from reqgraph.errors import GraphWriteError
from reqgraph.graph.base import GraphRepository, AuxiliaryNodeInfo
from reqgraph.models.requirements import AuxiliaryKind

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class SweepReport:
    """Ergebnis eines Sweeper-Laufs."""
    merged: Dict[str, int] = field(default_factory=dict)
    orphans_deleted: Dict[str, int] = field(default_factory=dict)
    groups: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_merged(self) -> int:
        return sum(self.merged.values())

    @property
    def total_orphans(self) -> int:
        return sum(self.orphans_deleted.values())

    @property
    def changed(self) -> bool:
        return bool(self.total_merged or self.total_orphans)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merged": dict(self.merged),
            "orphans_deleted": dict(self.orphans_deleted),
            "total_merged": self.total_merged,
            "total_orphans": self.total_orphans,
            "skipped": list(self.skipped),
            "dry_run": self.dry_run,
        }


def _sort_key(node: AuxiliaryNodeInfo):
    created = node.created_at
    if created is None:
        created = _EPOCH
    elif created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (created, node.id)


class DeduplicationSweeper:
    """Fasst doppelte Hilfsknoten zusammen und entfernt Waisen."""

    def __init__(self, repository: GraphRepository):
        self.repository = repository

    def sweep(self, dry_run: bool = False) -> SweepReport:
        report = SweepReport(dry_run=dry_run)

        for kind in AuxiliaryKind.sweepable_kinds():
            label = kind.label
            groups = self._duplicate_groups(label)
            report.groups[label] = [
                {"description": g[0].description, "keeper": g[0].id, "duplicates": [n.id for n in g[1:]]}
                for g in groups
            ]

            if dry_run:
                report.merged[label] = sum(len(g) - 1 for g in groups)
                report.orphans_deleted[label] = 0
                continue

            merged = 0
            for group in groups:
                keeper, duplicates = group[0], group[1:]
                try:
                    merged += self.repository.merge_auxiliary_nodes(
                        label, kind.relation, keeper.id, [d.id for d in duplicates]
                    )
                except GraphWriteError as e:
                    # Keeper zwischenzeitlich gelöscht
                    logger.warning(f"{label}: Gruppe '{keeper.description[:40]}' übersprungen: {e}")
                    report.skipped.append(keeper.id)
            report.merged[label] = merged
            report.orphans_deleted[label] = self.repository.delete_orphans(label)

            if merged or report.orphans_deleted[label]:
                logger.info(
                    f"{label}: {merged} Duplikate zusammengeführt, "
                    f"{report.orphans_deleted[label]} Waisen gelöscht"
                )

        logger.info(
            f"Sweep {'(dry run) ' if dry_run else ''}abgeschlossen: "
            f"{report.total_merged} zusammengeführt, {report.total_orphans} Waisen"
        )
        return report

    def _duplicate_groups(self, label: str) -> List[List[AuxiliaryNodeInfo]]:
        """Gruppen mit mehr als einem Knoten, Keeper jeweils an Position 0."""
        by_description: Dict[str, List[AuxiliaryNodeInfo]] = defaultdict(list)
        for node in self.repository.list_auxiliary_nodes(label):
            if node.description:
                by_description[node.description].append(node)

        groups = []
        for nodes in by_description.values():
            if len(nodes) > 1:
                groups.append(sorted(nodes, key=_sort_key))
        return groups
