"""Facility dump uploads: single-shot and resumable uploads of PostgreSQL dumps."""
