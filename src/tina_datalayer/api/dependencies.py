from fastapi import Request

from ..core.errors import ConfigurationError
from ..database import Database


def get_database(request: Request) -> Database:
    database = getattr(request.app.state, "database", None)
    if database is None:
        raise ConfigurationError("No database is attached to the application")
    return database
