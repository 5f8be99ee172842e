from __future__ import annotations

from typing import Optional


class AppError(Exception):
    # Base class for domain errors (intended, meaningful failures).
    pass


class MergeUsageError(AppError):
    # Raised when a merge request is invalid (too few source values, empty target).
    # Always raised before any response is read or written.
    pass


class MergePersistenceError(AppError):
    # Raised when a merge write fails midway. Earlier writes stay applied.
    def __init__(self, message: str, updated: int, response_id: Optional[str] = None):
        super().__init__(message)
        self.updated = updated
        self.response_id = response_id


class RepositoryError(AppError):
    # Raised for store-level failures the caller may want to retry.
    pass


class ResponseNotFound(RepositoryError):
    # Raised when an update targets a response id that no longer exists.
    pass


class SurveyNotFound(RepositoryError):
    pass


class ExportError(AppError):
    # Raised when a report file cannot be produced.
    pass
