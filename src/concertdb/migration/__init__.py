"""One-way migration from the relational store to the document store."""

from concertdb.migration.procedure import MigrationProcedure, MigrationResult

__all__ = ["MigrationProcedure", "MigrationResult"]
