"""
reqgraph - Anforderungsextraktion aus langen Dokumenten in einen Property-Graphen.

Pipeline: Chunking -> LLM-Extraktion (TOON) -> Merge -> Graph-Synchronisation,
ergänzt um einen Deduplication-Sweeper für Hilfsknoten.
"""

__version__ = "0.1.0"
