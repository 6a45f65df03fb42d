"""Local Ledger: durable per-owner map PhoneKey -> LedgerRecord over one document.

Document shape: {owner_key: {phone_key: record_dict}}. Every write goes through
write()/delete(), which serialise the read-modify-write and invalidate the
owner's merged directory. A record copied out of the directory itself is
written with invalidate=False, since the directory already holds it.
"""

import asyncio
import logging
from collections.abc import Callable

from contactsaver.application.ports import DocumentStore
from contactsaver.domain import LedgerRecord

logger = logging.getLogger(__name__)


class LocalLedger:
    """Owner-scoped contact ledger on a whole-document store."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        on_write: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._on_write = on_write
        self._lock = asyncio.Lock()

    def set_write_listener(self, on_write: Callable[[str], None] | None) -> None:
        """Called with owner_key after every successful write or delete."""
        self._on_write = on_write

    async def get(self, owner_key: str, phone_key: str) -> LedgerRecord | None:
        document = await self._store.load()
        data = (document.get(owner_key) or {}).get(phone_key)
        if not data:
            return None
        return LedgerRecord.from_dict(data)

    async def records(self, owner_key: str) -> dict[str, LedgerRecord]:
        document = await self._store.load()
        return {
            phone: LedgerRecord.from_dict(data)
            for phone, data in (document.get(owner_key) or {}).items()
        }

    async def write(
        self, owner_key: str, record: LedgerRecord, *, invalidate: bool = True
    ) -> None:
        """Create or overwrite the record for record.phone_key."""
        async with self._lock:
            document = await self._store.load()
            book = dict(document.get(owner_key) or {})
            book[record.phone_key] = record.to_dict()
            document[owner_key] = book
            await self._store.save(document)
        logger.info(
            "Ledger write owner=%s phone=%s provenance=%s",
            owner_key,
            record.phone_key,
            record.provenance.value,
        )
        if invalidate:
            self._notify(owner_key)

    async def delete(self, owner_key: str, phone_key: str) -> LedgerRecord | None:
        """Remove and return the record, or None if there was none."""
        async with self._lock:
            document = await self._store.load()
            book = dict(document.get(owner_key) or {})
            data = book.pop(phone_key, None)
            if data is None:
                return None
            document[owner_key] = book
            await self._store.save(document)
        logger.info("Ledger delete owner=%s phone=%s", owner_key, phone_key)
        self._notify(owner_key)
        return LedgerRecord.from_dict(data)

    def _notify(self, owner_key: str) -> None:
        if self._on_write is not None:
            self._on_write(owner_key)
