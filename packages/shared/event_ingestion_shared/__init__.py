"""Schemas shared between the ingestion API, the worker, and client tooling."""
