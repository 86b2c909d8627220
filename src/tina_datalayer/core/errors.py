"""
Error Taxonomy and Global Error Handling

This module defines the exception hierarchy shared by the bridge, store,
database and build layers, and the exception handlers registered on the
HTTP query service.

Design Goals
------------
- One base class (`DatalayerError`) so callers can catch the whole family
- Per-path failures carry the path they belong to
- Never leak internal exception details to HTTP clients
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("datalayer.errors")


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class DatalayerError(Exception):
    """Base error for all content database failures."""


class ConfigurationError(DatalayerError):
    """Raised when required configuration (e.g. the root path) is missing."""


class SchemaInvalid(DatalayerError):
    """
    Raised when a schema definition fails compilation.

    Fatal: aborts the whole build before any artifact is produced.
    """

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = issues or []


class ContentValidationError(DatalayerError):
    """
    Raised when one path fails to parse against its collection.

    Recorded per path during indexing; indexing continues.
    """

    def __init__(
        self,
        path: str,
        message: str,
        issues: Optional[List[str]] = None,
    ):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.issues = issues or []


class WriteDenied(DatalayerError):
    """Raised when a bridge refuses a mutation (audit mode, read-only ref)."""

    def __init__(self, path: str, message: str = "write denied"):
        super().__init__(f"{message}: {path}")
        self.path = path


class NotFound(DatalayerError, KeyError):
    """Raised when a path, record or collection does not exist."""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"not found: {self.key}"


class DatalayerIOError(DatalayerError, OSError):
    """
    Raised on bridge or store I/O failure.

    Per-path recoverable during indexing; fatal on store open/close.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        return self.args[0] if self.args else "I/O error"


class StaleIndex(DatalayerError):
    """Raised when a query would return records built under another schema version."""

    def __init__(self, expected: str, found: Optional[str]):
        super().__init__(
            f"index built for schema {found or '<none>'}, active schema is {expected}"
        )
        self.expected = expected
        self.found = found


class IndexInProgress(DatalayerError):
    """Raised when a reindex is requested while another pass is running."""


class IndexCancelled(DatalayerError):
    """Raised when an indexing pass is cancelled between paths."""


class InvalidQuery(DatalayerError, ValueError):
    """Raised when a query filter or sort does not fit the collection."""


class BuildFailed(DatalayerError):
    """Raised when a build completes indexing but its policy rejects the result."""

    def __init__(self, message: str, errors: Optional[List[DatalayerError]] = None):
        super().__init__(message)
        self.errors = errors or []


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

_STATUS_BY_ERROR = (
    (NotFound, 404, "not_found"),
    (InvalidQuery, 400, "invalid_query"),
    (StaleIndex, 409, "stale_index"),
    (IndexInProgress, 409, "index_in_progress"),
    (WriteDenied, 403, "write_denied"),
    (ContentValidationError, 422, "content_invalid"),
    (SchemaInvalid, 422, "schema_invalid"),
    (ConfigurationError, 500, "configuration_error"),
)


async def datalayer_exception_handler(
    request: Request,
    exc: DatalayerError,
) -> JSONResponse:
    """
    Map domain errors to deterministic HTTP responses.

    Domain error messages are safe to expose: they carry paths and schema
    versions, never stack traces. Errors without a dedicated mapping are
    delegated to the catch-all handler.
    """
    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            logger.info(
                "Request %s %s failed with %s: %s",
                request.method,
                request.url.path,
                code,
                exc,
            )
            payload: Dict[str, Any] = {"error": code, "detail": str(exc)}
            return JSONResponse(status_code=status_code, content=payload)

    return await unhandled_exception_handler(request, exc)


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
