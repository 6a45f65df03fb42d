"""In-memory adapters (no I/O). Used by tests and single-process runs."""

import copy
from collections.abc import Iterable

from contactsaver.domain import CaptureSession


class InMemoryDocumentStore:
    """Holds one document in memory. load() returns a copy, like a real store would."""

    def __init__(self, document: dict | None = None) -> None:
        self._document = copy.deepcopy(document or {})
        self.saves = 0

    async def load(self) -> dict:
        return copy.deepcopy(self._document)

    async def save(self, document: dict) -> None:
        self._document = copy.deepcopy(document)
        self.saves += 1


class InMemoryIdentityCache:
    """handle -> phone map filled from shared contact cards and remote lookups."""

    def __init__(self, known: dict[str, str] | None = None) -> None:
        self._known = dict(known or {})

    def phone_for(self, handle: str) -> str | None:
        return self._known.get(handle)

    def aliases(self) -> Iterable[tuple[str, str]]:
        return list(self._known.items())

    def remember(self, handle: str, phone: str) -> None:
        if handle and phone:
            self._known[handle] = phone


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[tuple[str, str], CaptureSession] = {}

    async def get(self, owner_key: str, contact_key: str) -> CaptureSession | None:
        return self._sessions.get((owner_key, contact_key))

    async def put(self, session: CaptureSession) -> None:
        self._sessions[(session.owner_key, session.contact_key)] = session

    async def delete(self, owner_key: str, contact_key: str) -> bool:
        return self._sessions.pop((owner_key, contact_key), None) is not None
