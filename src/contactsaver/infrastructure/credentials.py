"""Linked-account credentials per owner, kept in one document.

Document shape: {owner_key: [credential_dict, ...]} in link order.
"""

import asyncio
import logging
from dataclasses import replace

from contactsaver.application.ports import DocumentStore
from contactsaver.domain import LinkedAccountCredential
from contactsaver.domain.entities import utcnow

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def accounts(
        self, owner_key: str, *, usable_only: bool = True
    ) -> list[LinkedAccountCredential]:
        """Accounts in link order. By default only those holding a credential."""
        document = await self._store.load()
        accounts = [LinkedAccountCredential.from_dict(d) for d in document.get(owner_key) or []]
        accounts.sort(key=lambda a: a.linked_at)
        if usable_only:
            accounts = [a for a in accounts if a.usable]
        return accounts

    async def link(
        self,
        owner_key: str,
        account_id: str,
        *,
        access_token: str | None,
        refresh_token: str | None = None,
    ) -> LinkedAccountCredential:
        """Add an account or refresh an existing one.

        Re-linking keeps linked_at (and with it the account's merge priority)
        and keeps the old refresh token when the provider did not issue a new one.
        """
        normalized = LinkedAccountCredential(account_id=account_id)
        now = utcnow()
        async with self._lock:
            document = await self._store.load()
            accounts = [LinkedAccountCredential.from_dict(d) for d in document.get(owner_key) or []]
            for i, existing in enumerate(accounts):
                if existing.account_id == normalized.account_id:
                    linked = replace(
                        existing,
                        access_token=access_token,
                        refresh_token=refresh_token or existing.refresh_token,
                        updated_at=now,
                    )
                    accounts[i] = linked
                    break
            else:
                linked = LinkedAccountCredential(
                    account_id=normalized.account_id,
                    access_token=access_token,
                    refresh_token=refresh_token,
                    linked_at=now,
                    updated_at=now,
                )
                accounts.append(linked)
            document[owner_key] = [a.to_dict() for a in accounts]
            await self._store.save(document)
        logger.info("Linked account %s for %s", linked.account_id, owner_key)
        return linked

    async def record_refresh(
        self,
        owner_key: str,
        account_id: str,
        *,
        access_token: str | None,
        refresh_token: str | None = None,
    ) -> LinkedAccountCredential | None:
        """Store refreshed tokens for an already linked account. None if it was unlinked meanwhile."""
        wanted = LinkedAccountCredential(account_id=account_id).account_id
        async with self._lock:
            document = await self._store.load()
            accounts = [LinkedAccountCredential.from_dict(d) for d in document.get(owner_key) or []]
            for i, existing in enumerate(accounts):
                if existing.account_id == wanted:
                    updated = replace(
                        existing,
                        access_token=access_token or existing.access_token,
                        refresh_token=refresh_token or existing.refresh_token,
                        updated_at=utcnow(),
                    )
                    accounts[i] = updated
                    document[owner_key] = [a.to_dict() for a in accounts]
                    await self._store.save(document)
                    return updated
        return None

    async def unlink(self, owner_key: str, account_id: str) -> bool:
        wanted = LinkedAccountCredential(account_id=account_id).account_id
        async with self._lock:
            document = await self._store.load()
            accounts = document.get(owner_key) or []
            kept = [d for d in accounts if (d.get("account_id") or "").lower() != wanted]
            if len(kept) == len(accounts):
                return False
            document[owner_key] = kept
            await self._store.save(document)
        logger.info("Unlinked account %s for %s", wanted, owner_key)
        return True
