"""
Ingestion pipeline for catalog items.

This package ties the pipeline together:
- Append-only ingest jobs with one active job per source reference
- A quick path that persists catalog metadata right away
- A complete path (facet extraction, embedding fusion, persistence) that can
  run detached under a supervisor
"""
