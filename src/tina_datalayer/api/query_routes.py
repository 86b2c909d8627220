"""
Query Routes

Read access to the index (collection queries, single documents), document
writes through the active bridge, and reindex triggers.

Handlers are synchronous: FastAPI runs them in its threadpool, so a long
reindex does not block queries, which keep serving the last completed pass.
"""

import json
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, Depends, Query, status

from .dependencies import get_database
from .models import DocumentWrite, IndexReportOut, IndexRequest, OperationResult
from ..core.errors import InvalidQuery
from ..database import Database
from ..store.base import Record

router = APIRouter(tags=["content"])


def _parse_json_param(name: str, raw: Optional[str]) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidQuery(f"'{name}' is not valid JSON: {exc.msg}") from exc


@router.get(
    "/collections/{name}/records",
    response_model=List[Record],
    summary="Query the records of a collection",
)
def query_collection(
    name: str,
    database: Annotated[Database, Depends(get_database)],
    filter: Annotated[Optional[str], Query(description="JSON filter object")] = None,
    sort: Annotated[Optional[str], Query(description='JSON object, e.g. {"date": "desc"}')] = None,
    limit: Annotated[Optional[int], Query(ge=0)] = None,
) -> List[Record]:
    """
    Query a collection.

    `filter` and `sort` are JSON encoded; see `Database.query` for their
    grammar.
    """
    return database.query(
        name,
        filter=_parse_json_param("filter", filter),
        sort=_parse_json_param("sort", sort),
        limit=limit,
    )


@router.get("/documents/{path:path}", response_model=Record)
def get_document(
    path: str,
    database: Annotated[Database, Depends(get_database)],
) -> Record:
    return database.get(path)


@router.put("/documents/{path:path}", response_model=Record)
def put_document(
    path: str,
    body: DocumentWrite,
    database: Annotated[Database, Depends(get_database)],
) -> Record:
    return database.put_document(path, body.fields)


@router.delete("/documents/{path:path}", response_model=OperationResult)
def delete_document(
    path: str,
    database: Annotated[Database, Depends(get_database)],
) -> OperationResult:
    database.delete_document(path)
    return OperationResult(status="deleted", count=1)


@router.post(
    "/index",
    response_model=IndexReportOut,
    status_code=status.HTTP_200_OK,
    summary="Reindex content",
)
def reindex(
    database: Annotated[Database, Depends(get_database)],
    req: Optional[IndexRequest] = None,
) -> IndexReportOut:
    """
    Trigger a reindex of all content, or of `paths` only.

    Fails with 409 while another pass is running.
    """
    req = req or IndexRequest()
    if req.paths:
        report = database.index_content_by_paths(req.paths)
    else:
        report = database.index_content(force=req.force)
    return IndexReportOut(**report.to_dict())
