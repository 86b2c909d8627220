"""
API Models for the Query Service

Request/response payloads of the HTTP query service.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IndexRequest(BaseModel):
    """
    Reindex request.

    Without `paths` the whole content source is reindexed.
    """
    force: bool = False
    paths: Optional[List[str]] = Field(default=None, min_length=1)

    model_config = ConfigDict(extra="forbid")


class DocumentWrite(BaseModel):
    """Field values of a document to create or replace."""
    fields: Dict[str, Any]

    model_config = ConfigDict(extra="forbid")


class IndexErrorOut(BaseModel):
    type: str
    path: Optional[str] = None
    message: str
    issues: Optional[List[str]] = None


class IndexReportOut(BaseModel):
    schemaVersion: str
    indexed: int = Field(..., ge=0)
    unchanged: int = Field(..., ge=0)
    deleted: int = Field(..., ge=0)
    skipped: bool
    truncated: int = Field(..., ge=0)
    durationMs: float
    errors: List[IndexErrorOut] = Field(default_factory=list)


class OperationResult(BaseModel):
    status: str
    count: Optional[int] = Field(default=None, ge=0)

    model_config = ConfigDict(extra="forbid")
