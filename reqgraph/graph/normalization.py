# reqgraph/graph/normalization.py
"""
Normalisierung von Inline-Werten (Extraktionszeit) zu Graph-Knoten (Speicherzeit).

    InlineValue(RISK, "Datenverlust")              -> GraphNode(Risk, {description: ...})
    InlineValue(RISK, {"description": ..., ...})   -> GraphNode(Risk, {description, severity, ...})
    InlineValue(STAKEHOLDER, "Admin")              -> GraphNode(Person, {name: "Admin"}, merge_key="name")

Neo4j erlaubt keine verschachtelten Properties; verschachtelte Werte werden
als JSON-String abgelegt.
"""

import json
import logging
from typing import List, Dict, Any, Optional

from reqgraph.models.requirements import AuxiliaryKind, InlineValue, GraphNode, RequirementRecord

logger = logging.getLogger(__name__)

_TEXT_KEYS = ("description", "text", "name", "title")
_PERSON_KEYS = ("name", "role", "description")


def normalize_value(value: InlineValue) -> Optional[GraphNode]:
    """Übersetzt einen Inline-Wert; None bei leerem Inhalt."""
    kind = value.kind
    if kind is AuxiliaryKind.STAKEHOLDER:
        text_key, candidates, merge_key = "name", _PERSON_KEYS, "name"
    else:
        text_key, candidates, merge_key = "description", _TEXT_KEYS, None

    if isinstance(value.value, dict):
        raw = dict(value.value)
        text = ""
        for key in candidates:
            if raw.get(key) not in (None, ""):
                text = str(raw.pop(key)).strip()
                break
        properties = {k: _flatten(v) for k, v in raw.items() if v is not None}
    else:
        text = str(value.value).strip() if value.value is not None else ""
        properties = {}

    if not text:
        return None

    properties[text_key] = text
    return GraphNode(kind=kind, label=kind.label, properties=properties, merge_key=merge_key)


def normalize_sub_entities(record: RequirementRecord) -> List[GraphNode]:
    """
    Alle Hilfsknoten einer Anforderung.

    Gleiche Texte innerhalb derselben Anforderung ergeben nur einen Knoten.
    """
    nodes = []
    seen = set()
    for inline in record.inline_values():
        node = normalize_value(inline)
        if node is None:
            logger.debug(f"{record.identifier}: leerer {inline.kind.value} ignoriert")
            continue
        key = (node.kind, node.description.casefold())
        if key in seen:
            continue
        seen.add(key)
        nodes.append(node)
    return nodes


def group_by_kind(nodes: List[GraphNode]) -> Dict[AuxiliaryKind, List[GraphNode]]:
    grouped: Dict[AuxiliaryKind, List[GraphNode]] = {kind: [] for kind in AuxiliaryKind}
    for node in nodes:
        grouped[node.kind].append(node)
    return grouped


def _flatten(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)) and len({type(v) for v in value}) <= 1 \
            and all(isinstance(v, (str, int, float, bool)) for v in value):
        return list(value)
    return json.dumps(value, ensure_ascii=False, sort_keys=True)
