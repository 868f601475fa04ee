#!/usr/bin/env python3
"""
Führt doppelte Hilfsknoten (Constraint, Risk, Assumption) in Neo4j zusammen
und löscht Waisen.

Verwendung:
    # Nur anzeigen, was zusammengeführt würde
    python scripts/run_deduplication.py --dry-run

    # Ausführen
    python scripts/run_deduplication.py
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import json
import logging

from reqgraph.config import Config
from reqgraph.graph.repository_factory import create_repository
from reqgraph.graph.sweeper import DeduplicationSweeper

logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(message)s')
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Deduplication Sweeper für Hilfsknoten")
    parser.add_argument("--config", default="configs/config.yaml", help="Pfad zur config.yaml")
    parser.add_argument("--dry-run", action="store_true", help="Nur Gruppen anzeigen, nichts ändern")
    args = parser.parse_args()

    config = Config(args.config)
    repository = create_repository(use_neo4j=True, graph_config=config.graph)

    print("Vorher:")
    print(json.dumps(repository.get_stats(), indent=2, ensure_ascii=False))

    report = DeduplicationSweeper(repository).sweep(dry_run=args.dry_run)

    for label, groups in report.groups.items():
        for group in groups:
            print(f"  {label}: '{group['description'][:60]}' -> {len(group['duplicates'])} Duplikate")

    print("\nErgebnis:")
    print(json.dumps(report.to_dict(), indent=2))

    if not args.dry_run:
        print("\nNachher:")
        print(json.dumps(repository.get_stats(), indent=2, ensure_ascii=False))

    repository.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
