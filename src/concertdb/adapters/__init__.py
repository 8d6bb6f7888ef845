"""Database adapters: one interface, one implementation per backend."""

from concertdb.adapters.document import DocumentAdapter
from concertdb.adapters.interface import UPDATABLE_USER_FIELDS, DatabaseAdapter, QueryResult
from concertdb.adapters.relational import RelationalAdapter

__all__ = [
    "DatabaseAdapter",
    "QueryResult",
    "RelationalAdapter",
    "DocumentAdapter",
    "UPDATABLE_USER_FIELDS",
]
