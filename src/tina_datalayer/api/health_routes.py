from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_database
from ..database import Database

router = APIRouter(tags=["health"])

@router.get("/health")
def health(database: Annotated[Database, Depends(get_database)]):
    schema = database.schema
    return {
        "status": "ok",
        "schema_version": schema.version if schema else None,
        "indexing": database.indexing,
    }
