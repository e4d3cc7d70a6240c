"""
Dialect-portable SQL helpers (PostgreSQL in production, SQLite in tests).
"""
from datetime import datetime, timezone

from sqlalchemy import Integer
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import GenericFunction


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class hour_of_day(GenericFunction):
    """Hour (0-23) of a datetime column."""
    type = Integer()
    name = "hour_of_day"
    inherit_cache = True


@compiles(hour_of_day, "postgresql")
def _pg_hour_of_day(element, compiler, **kw):
    col = compiler.process(element.clauses.clauses[0], **kw)
    return f"CAST(EXTRACT(HOUR FROM {col}) AS INTEGER)"


@compiles(hour_of_day, "sqlite")
def _sqlite_hour_of_day(element, compiler, **kw):
    col = compiler.process(element.clauses.clauses[0], **kw)
    return f"CAST(strftime('%H', {col}) AS INTEGER)"
