#!/usr/bin/env python3
"""
Beispiel: Anforderungs-Workflow ohne laufendes LLM

Zeigt den kompletten Ablauf:
1. EXTRAKTION: Lastenheft in Chunks zerlegen und (hier: vorbereitete) LLM-Antworten lesen
2. SYNC: Anforderungen in den Graphen schreiben, erneuter Lauf erhöht die Version
3. SWEEP: doppelte Constraint-Knoten zusammenführen

Verwendung:
    python examples/workflow_example.py
"""

import sys
from pathlib import Path
from types import SimpleNamespace
sys.path.insert(0, str(Path(__file__).parent.parent))

from reqgraph.extraction.chunking import ChunkingConfig
from reqgraph.graph.memory_repository import InMemoryGraphRepository
from reqgraph.graph.sweeper import DeduplicationSweeper
from reqgraph.pipeline.extraction_pipeline import RequirementsPipeline, PipelineConfig


LASTENHEFT = """Der Online-Shop soll Kunden eine Anmeldung per E-Mail ermöglichen.
Alle personenbezogenen Daten werden DSGVO-konform gespeichert.

Bestellungen können als CSV exportiert werden. Auch der Export muss DSGVO-konform sein.
"""

ANTWORTEN = [
    """```toon
requirements[1]{identifier,name,description,priority}:
  REQ-001,User Login,Kunden melden sich per E-Mail an,must
constraints[1]{requirement,description}:
  REQ-001,DSGVO-konform
stakeholders[1]{requirement,name}:
  REQ-001,Kunde
```""",
    """```toon
requirements[1]{identifier,name,description,priority,depends_on}:
  REQ-002,Order Export,Bestellungen als CSV exportieren,should,[REQ-001]
constraints[1]{requirement,description}:
  REQ-002,DSGVO-konform
```""",
]


class ScriptedLLM:
    """Liefert vorbereitete Antworten je nach Chunk (OpenAI-kompatibel)."""

    def __init__(self, answers):
        self.answers = answers
        self.chat = SimpleNamespace(completions=self)

    def create(self, messages=None, **kwargs):
        prompt = messages[-1]["content"]
        content = self.answers[1] if "CSV" in prompt.split("## Text", 1)[-1] else self.answers[0]
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=0, completion_tokens=0),
        )


def main():
    print("=" * 70)
    print("ANFORDERUNGSGRAPH - WORKFLOW BEISPIEL")
    print("=" * 70)

    # =========================================================================
    # SCHRITT 1: SETUP
    # =========================================================================
    print("\n[1] SETUP: Graph und Pipeline initialisieren")
    print("-" * 50)

    graph = InMemoryGraphRepository()
    config = PipelineConfig(chunking=ChunkingConfig(max_chunk_chars=150, overlap_chars=20))
    pipeline = RequirementsPipeline(llm_client=ScriptedLLM(ANTWORTEN), repository=graph, config=config)
    print(f"  {graph}")

    # =========================================================================
    # SCHRITT 2: ERSTER LAUF
    # =========================================================================
    print("\n[2] EXTRAKTION: erster Lauf")
    print("-" * 50)

    result = pipeline.run(LASTENHEFT, "Online-Shop")
    print(f"  Status: {result.status.value}")
    print(f"  Chunks: {result.statistics['chunks']['count']}")
    for req in result.graph.requirements:
        print(f"  {req.identifier} v{req.version}: {req.name} ({req.category})")
    for rel in result.sync.linked:
        print(f"  {rel.source} -[{rel.type.value}]-> {rel.target}")

    # =========================================================================
    # SCHRITT 3: ZWEITER LAUF (Update)
    # =========================================================================
    print("\n[3] UPDATE: gleiches Dokument, Projektname anders geschrieben")
    print("-" * 50)

    result = pipeline.run(LASTENHEFT, "  online-shop ")
    print(f"  Projekt: {result.sync.application.name}")
    for req in result.graph.requirements:
        print(f"  {req.identifier} v{req.version} (angelegt {req.created_at:%H:%M:%S})")

    # =========================================================================
    # SCHRITT 4: SWEEP
    # =========================================================================
    print("\n[4] SWEEP: doppelte Hilfsknoten zusammenführen")
    print("-" * 50)

    print(f"  Vorher:  {graph.get_stats()['nodes']}")
    report = DeduplicationSweeper(graph).sweep()
    print(f"  Zusammengeführt: {report.merged}")
    print(f"  Nachher: {graph.get_stats()['nodes']}")

    print("\n" + "=" * 70)


if __name__ == "__main__":
    main()
