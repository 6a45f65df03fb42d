"""Infrastructure layer: concrete implementations of application ports."""

from contactsaver.infrastructure.credentials import CredentialStore
from contactsaver.infrastructure.json_store import JsonFileDocumentStore
from contactsaver.infrastructure.memory_store import (
    InMemoryDocumentStore,
    InMemoryIdentityCache,
    InMemorySessionStore,
)
from contactsaver.infrastructure.persistence import Neo4jDocumentStore
from contactsaver.infrastructure.phone import search_forms, to_e164
from contactsaver.infrastructure.preferences import DocumentPreferenceStore
from contactsaver.infrastructure.sessions import DocumentSessionStore
from contactsaver.infrastructure.settings import Settings, load_env_file

__all__ = [
    "CredentialStore",
    "DocumentPreferenceStore",
    "DocumentSessionStore",
    "InMemoryDocumentStore",
    "InMemoryIdentityCache",
    "InMemorySessionStore",
    "JsonFileDocumentStore",
    "Neo4jDocumentStore",
    "Settings",
    "load_env_file",
    "search_forms",
    "to_e164",
]
