"""Ingestion jobs: source paging, text extraction, chunking and backfills."""
