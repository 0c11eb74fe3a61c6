"""Trove — asset library core: ingestion, enrichment pipeline and hybrid search."""
