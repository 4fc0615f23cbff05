"""
Error taxonomy for the ingestion and summary pipeline.

- EventValidationError: one malformed event; reported per index, never retried
- TransientStoreError: store/cache connectivity failure that outlived its retries
- DegradedPathError: a fast read path is unusable; the caller falls back
- MaintenanceError: a rollup group could not be applied; logged and swallowed
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for pipeline errors."""


class EventValidationError(IngestionError):
    def __init__(self, index: int, message: str):
        super().__init__(message)
        self.index = index
        self.message = message


class TransientStoreError(IngestionError):
    pass


class DegradedPathError(IngestionError):
    pass


class MaintenanceError(IngestionError):
    pass
