#!/usr/bin/env python3
"""
Extrahiert Anforderungen aus einem Dokument und schreibt sie in den Graphen.

Verwendung:
    # In-Memory (ohne Neo4j), Ergebnis als JSON
    python scripts/run_extraction.py docs/lastenheft.txt --project Shop --output result.json

    # In Neo4j schreiben (NEO4J_PASSWORD in .env)
    python scripts/run_extraction.py docs/lastenheft.txt --project Shop --neo4j

    # Eigene Chunk-Größe
    python scripts/run_extraction.py docs/lastenheft.txt --project Shop --max-chunk-chars 4000
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import json
import logging

from reqgraph.config import Config
from reqgraph.errors import ReqGraphError
from reqgraph.pipeline.extraction_pipeline import create_pipeline
from reqgraph.pipeline.jobs import JobDescriptor

logging.basicConfig(level=logging.INFO, format='%(asctime)s | %(levelname)s | %(message)s')
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Anforderungsextraktion: Dokument -> LLM -> Neo4j"
    )
    parser.add_argument("document", help="Pfad zum Dokument (Text)")
    parser.add_argument("--project", required=True, help="Projektname (SoftwareApplication)")
    parser.add_argument("--config", default="configs/config.yaml", help="Pfad zur config.yaml")
    parser.add_argument("--job-id", default=None, help="Job-ID (für erneute Zustellung)")
    parser.add_argument("--neo4j", action="store_true", help="Neo4j statt In-Memory verwenden")
    parser.add_argument("--model", default=None, help="LLM-Modell überschreiben")
    parser.add_argument("--max-chunk-chars", type=int, default=None)
    parser.add_argument("--overlap-chars", type=int, default=None)
    parser.add_argument("--output", default=None, help="Ergebnis als JSON speichern")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    options = {}
    if args.model:
        options["model"] = args.model
    if args.max_chunk_chars:
        options["max_chunk_chars"] = args.max_chunk_chars
    if args.overlap_chars is not None:
        options["overlap_chars"] = args.overlap_chars

    descriptor = JobDescriptor.from_dict({
        "documentPath": args.document,
        "projectName": args.project,
        "options": options,
        **({"jobId": args.job_id} if args.job_id else {}),
    })

    config = Config(args.config)
    pipeline = create_pipeline(config, use_neo4j=True if args.neo4j else None)

    try:
        record = pipeline.handle(descriptor)
    except ReqGraphError as e:
        logger.error(f"Abbruch (wiederholbar): {e}")
        return 2

    print("\n" + "=" * 60)
    print(f"Job {record.job_id}: {record.status.value}")
    print("=" * 60)
    if record.error:
        print(f"Fehler: {record.error}")
    if record.result:
        result = record.result
        print(f"Anforderungen: {len(result['requirements'])}")
        print(f"Rollen:        {len(result['roles'])}")
        print(f"Beziehungen:   {len(result['relationships'])}")
        print(f"Fehler:        {len(result['errors'])}")
        print(f"Warnungen:     {len(result['warnings'])}")

    print("\nGraph-Statistiken:")
    print(json.dumps(pipeline.repository.get_stats(), indent=2, ensure_ascii=False))

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2, ensure_ascii=False, default=str)
        logger.info(f"Ergebnis gespeichert: {args.output}")

    pipeline.repository.close()
    return 0 if record.status.value in ("completed", "partial") else 1


if __name__ == "__main__":
    sys.exit(main())
