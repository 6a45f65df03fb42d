"""CaptureSession storage on top of a whole-document store.

Document shape: {owner_key: {contact_key: session_dict}}.
"""

import asyncio

from contactsaver.application.ports import DocumentStore
from contactsaver.domain import CaptureSession


class DocumentSessionStore:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def get(self, owner_key: str, contact_key: str) -> CaptureSession | None:
        document = await self._store.load()
        data = (document.get(owner_key) or {}).get(contact_key)
        return CaptureSession.from_dict(data) if data else None

    async def put(self, session: CaptureSession) -> None:
        async with self._lock:
            document = await self._store.load()
            sessions = dict(document.get(session.owner_key) or {})
            sessions[session.contact_key] = session.to_dict()
            document[session.owner_key] = sessions
            await self._store.save(document)

    async def delete(self, owner_key: str, contact_key: str) -> bool:
        async with self._lock:
            document = await self._store.load()
            sessions = dict(document.get(owner_key) or {})
            if sessions.pop(contact_key, None) is None:
                return False
            document[owner_key] = sessions
            await self._store.save(document)
            return True
