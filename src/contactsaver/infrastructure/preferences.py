"""OwnerPreferences on top of a whole-document store.

Document shape: {owner_key: preferences_dict}.
"""

import asyncio

from contactsaver.application.ports import DocumentStore
from contactsaver.domain import OwnerPreferences


class DocumentPreferenceStore:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def get(self, owner_key: str) -> OwnerPreferences:
        document = await self._store.load()
        data = document.get(owner_key)
        return OwnerPreferences.from_dict(data) if data else OwnerPreferences()

    async def put(self, owner_key: str, preferences: OwnerPreferences) -> None:
        async with self._lock:
            document = await self._store.load()
            document[owner_key] = preferences.to_dict()
            await self._store.save(document)
