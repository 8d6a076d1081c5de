"""Structured error types for docrest."""

from __future__ import annotations


class DocrestError(Exception):
    """Base error for all docrest errors."""

    status_code: int = 500


class ConfigurationError(DocrestError):
    """Raised at setup time when a resource declaration is unusable."""


class QueryError(DocrestError):
    """Raised when a request parameter or query clause is malformed."""

    status_code = 400


class ValidationError(DocrestError):
    """Raised when a document carries invalid fields.

    ``violations`` maps every offending path to its reason. The document that
    was checked has already been stripped of those entries.
    """

    status_code = 400

    def __init__(self, violations: dict[str, str]) -> None:
        self.violations = dict(violations)
        details = ", ".join(f"{path}: {reason}" for path, reason in sorted(self.violations.items()))
        super().__init__(f"invalid fields {{{details}}}")


class ConflictError(DocrestError):
    """Raised on a duplicate id, or when a conditional update matches nothing."""

    status_code = 409


class NotFoundError(DocrestError):
    """Raised when a document id does not exist."""

    status_code = 404

    def __init__(self, message: str = "id not found") -> None:
        super().__init__(message)


class StorageError(DocrestError):
    """Raised when a document store operation fails."""

    status_code = 500

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage error during {operation}: {detail}")


class SearchBackendError(DocrestError):
    """Raised when search is requested but disabled, or the search backend fails."""

    status_code = 502

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Search backend error during {operation}: {detail}")


class DuplicateKeyError(StorageError):
    """Raised by a store when an insert collides with an existing primary key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__("insert", f"duplicate key '{key}'")
