"""Neo4j implementation of DocumentStore.
Graph: one (:Document {name}) node per named document; the document body is a
JSON string property, replaced whole on every save.
"""

import asyncio
import json

_CONSTRAINT_QUERY = """
CREATE CONSTRAINT document_name_unique IF NOT EXISTS
FOR (d:Document) REQUIRE d.name IS UNIQUE
"""

_LOAD_QUERY = """
MATCH (d:Document {name: $name})
RETURN d.body AS body
"""

_SAVE_QUERY = """
MERGE (d:Document {name: $name})
SET d.body = $body, d.updated_at = datetime()
"""


def ensure_document_constraint(driver) -> None:
    """Create unique constraint on Document(name) if missing."""
    with driver.session() as session:
        session.run(_CONSTRAINT_QUERY)


class Neo4jDocumentStore:
    """Stores one named JSON document in Neo4j. The driver is synchronous; calls run in a thread."""

    def __init__(self, driver: object, name: str) -> None:
        name = (name or "").strip()
        if not name:
            raise ValueError("Document name must be non-empty")
        self._driver = driver
        self._name = name

    async def load(self) -> dict:
        return await asyncio.to_thread(self._load)

    async def save(self, document: dict) -> None:
        body = json.dumps(document, ensure_ascii=False, sort_keys=True)
        await asyncio.to_thread(self._save, body)

    def _load(self) -> dict:
        with self._driver.session() as session:
            record = session.run(_LOAD_QUERY, name=self._name).single()
        if not record or not record["body"]:
            return {}
        return json.loads(record["body"])

    def _save(self, body: str) -> None:
        with self._driver.session() as session:
            session.run(_SAVE_QUERY, name=self._name, body=body)
