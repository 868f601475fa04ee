# reqgraph/extraction/prompts.py
"""
Prompt-Templates für die Anforderungsextraktion.

Das Ausgabeformat ist TOON (siehe reqgraph.extraction.toon). Das Beispiel im
Prompt wird mit demselben Encoder erzeugt, der auch für Tests verwendet wird,
damit Prompt und Parser nicht auseinanderlaufen.
"""

from typing import List, Dict, Any

from reqgraph.extraction import toon


# =============================================================================
# System-Prompt
# =============================================================================

SYSTEM_PROMPT_EXTRACTION = """Du bist ein Experte für Requirements Engineering.
Deine Aufgabe ist es, Software-Anforderungen strukturiert aus Dokumenten zu extrahieren.

WICHTIG:
- Extrahiere NUR Anforderungen, die im Text tatsächlich stehen
- Jede Anforderung braucht identifier, name und description
- Verwende vorhandene IDs aus dem Dokument (z.B. REQ-001, FR-12), sonst vergib eigene
- Priorität nach MoSCoW: must, should, could, wont
- Antworte ausschließlich im TOON-Format in einem ```toon Block"""


# =============================================================================
# Extraktions-Prompt
# =============================================================================

REQUIREMENTS_EXTRACTION_PROMPT = """Extrahiere alle Anforderungen aus dem folgenden Dokumentteil.

## Projekt
{project_name}

## Kontext
{chunk_info}

## Erlaubte Anforderungstypen
{requirement_types}

## Erlaubte Beziehungstypen
{relation_types}

## Format (TOON)
- Tabellen: name[ANZAHL]{{feld1,feld2}}: danach eine eingerückte Zeile pro Eintrag
- Werte mit Komma oder Anführungszeichen in "..." setzen, " im Wert verdoppeln
- Listen in einer Zelle: [a|b|c]
- Leere Zelle = unbekannt
- Risiken, Einschränkungen, Annahmen und Stakeholder als eigene Tabellen mit Spalte requirement

## Beispiel
```toon
{example}
```

## Text
{text}

Antworte NUR mit dem ```toon Block."""


# =============================================================================
# Beispiel (wird mit dem TOON-Encoder serialisiert)
# =============================================================================

EXAMPLE_DATA: Dict[str, Any] = {
    "requirements": [
        {
            "identifier": "REQ-001",
            "name": "Benutzer-Login",
            "description": "Benutzer müssen sich mit E-Mail und Passwort anmelden können",
            "type": "functional",
            "priority": "must",
            "category": "Security & Compliance",
            "tags": ["auth", "login"],
            "depends_on": [],
        },
        {
            "identifier": "REQ-002",
            "name": "Antwortzeit",
            "description": "Die Startseite lädt in unter 2 Sekunden, auch bei 1.000 gleichzeitigen Nutzern",
            "type": "non-functional",
            "priority": "should",
            "category": "Performance",
            "tags": ["performance"],
            "depends_on": ["REQ-001"],
        },
    ],
    "roles": [
        {"id": "ROLE-1", "name": "Product Owner", "description": "Verantwortet den Backlog"},
    ],
    "relationships": [
        {"type": "OWNED_BY", "source": "REQ-001", "target": "ROLE-1"},
    ],
    "risks": [
        {"requirement": "REQ-001", "description": "Brute-Force-Angriffe auf Passwörter", "severity": "high"},
    ],
    "constraints": [
        {"requirement": "REQ-002", "description": "Gehostet in der bestehenden Cloud-Umgebung"},
    ],
    "assumptions": [
        {"requirement": "REQ-001", "description": "Nutzer besitzen eine gültige E-Mail-Adresse"},
    ],
    "stakeholders": [
        {"requirement": "REQ-001", "name": "Kundendienst"},
    ],
}


def build_example() -> str:
    """TOON-Beispiel für den Prompt."""
    return toon.encode(EXAMPLE_DATA)


class PromptBuilder:
    """Baut Chat-Messages für die Extraktion eines Chunks."""

    def __init__(
        self,
        requirement_types: List[str],
        relation_types: List[str],
        use_example: bool = True,
    ):
        self.requirement_types = requirement_types
        self.relation_types = relation_types
        self.use_example = use_example
        self._example = build_example() if use_example else ""

    def build_extraction_prompt(
        self,
        text: str,
        chunk_index: int = 0,
        total_chunks: int = 1,
        project_name: str = "",
    ) -> List[Dict[str, str]]:
        """
        Baut den Prompt für einen Chunk.

        Returns:
            Liste von Messages für Chat-API
        """
        prompt = REQUIREMENTS_EXTRACTION_PROMPT.format(
            project_name=project_name or "(unbekannt)",
            chunk_info=self._chunk_info(chunk_index, total_chunks),
            requirement_types=", ".join(self.requirement_types),
            relation_types=", ".join(self.relation_types),
            example=self._example or "(kein Beispiel)",
            text=text,
        )
        return [
            {"role": "system", "content": SYSTEM_PROMPT_EXTRACTION},
            {"role": "user", "content": prompt},
        ]

    @staticmethod
    def _chunk_info(chunk_index: int, total_chunks: int) -> str:
        if total_chunks <= 1:
            return "Vollständiges Dokument."
        return (
            f"Dies ist Teil {chunk_index + 1} von {total_chunks} eines längeren Dokuments. "
            "Der Anfang kann den Schluss des vorherigen Teils wiederholen."
        )
