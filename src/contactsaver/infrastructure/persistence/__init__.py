"""Database-backed document stores."""

from contactsaver.infrastructure.persistence.neo4j_store import (
    Neo4jDocumentStore,
    ensure_document_constraint,
)

__all__ = ["Neo4jDocumentStore", "ensure_document_constraint"]
