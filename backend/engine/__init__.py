"""
Submission stores.

A store persists submissions and answers ordered spatial-key range scans plus
per-submitter history lookups. Tests use the in-memory store; the service uses DuckDB.
"""
