"""Connection holders for the relational and document backends."""

from concertdb.connections.document import DocumentConnection
from concertdb.connections.relational import RelationalConnection

__all__ = ["DocumentConnection", "RelationalConnection"]
