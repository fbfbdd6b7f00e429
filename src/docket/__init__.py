"""Docket: ingest civic records, embed their text, and search them semantically."""
