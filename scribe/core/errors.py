from __future__ import annotations

from typing import Any


class ScribeError(Exception):
    """Base error for Scribe."""


class ValidationError(ScribeError):
    """Request body failed schema validation."""

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        super().__init__("Request body failed schema validation")
        self.errors = errors


class SchemaResolutionError(ScribeError):
    """Schema is required but could not be resolved."""


class SchemaCompileError(ScribeError):
    """Schema or one of its references could not be compiled."""


class QueryError(ScribeError):
    """Malformed query parameters or conflicting traversal modes."""


class InvalidIdentifierError(QueryError):
    """Component or column name does not match the identifier grammar."""


class StoreError(ScribeError):
    """Relational store failure."""


class HistoryError(ScribeError):
    """Stored patches could not be replayed."""
