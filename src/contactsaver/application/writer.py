"""Create-or-update writes to the owner's address book (always the first linked account)."""

import logging
from dataclasses import replace

from contactsaver.application.calls import DEFAULT_TIMEOUT, bounded
from contactsaver.application.dto import WriteResult
from contactsaver.application.ledger import LocalLedger
from contactsaver.application.ports import AccountDirectory, AddressBook
from contactsaver.domain import ExternalServiceError, LedgerRecord, apply_tag
from contactsaver.domain.entities import utcnow

logger = logging.getLogger(__name__)

SERVICE = "address-book"


class ContactWriter:
    """Idempotent writes: an existing external_id is updated, never duplicated."""

    def __init__(
        self, accounts: AccountDirectory, *, timeout: float | None = DEFAULT_TIMEOUT
    ) -> None:
        self._accounts = accounts
        self._timeout = timeout

    async def upsert(
        self,
        owner_key: str,
        name: str,
        phone_key: str,
        *,
        external_id: str | None = None,
        etag: str | None = None,
    ) -> WriteResult:
        account_id, book = await self._primary_book(owner_key)
        if external_id:
            result = await bounded(
                book.update(external_id, name, phone_key, etag),
                service=SERVICE,
                timeout=self._timeout,
                account=account_id,
            )
            mode = "updated"
        else:
            result = await bounded(
                book.create(name, phone_key),
                service=SERVICE,
                timeout=self._timeout,
                account=account_id,
            )
            mode = "created"
        logger.info(
            "Address book %s owner=%s phone=%s external_id=%s",
            mode,
            owner_key,
            phone_key,
            result.external_id,
        )
        return WriteResult(external_id=result.external_id, etag=result.etag, mode=mode)

    async def delete(self, owner_key: str, external_id: str) -> bool:
        account_id, book = await self._primary_book(owner_key)
        return await bounded(
            book.delete(external_id),
            service=SERVICE,
            timeout=self._timeout,
            account=account_id,
        )

    async def _primary_book(self, owner_key: str) -> tuple[str, AddressBook]:
        accounts = await bounded(
            self._accounts.linked_accounts(owner_key),
            service="linked-accounts",
            timeout=self._timeout,
        )
        if not accounts:
            raise ExternalServiceError(
                SERVICE, "No address-book account linked for this owner."
            )
        account = accounts[0]
        return account.account_id, self._accounts.address_book(owner_key, account)


def needs_upgrade(
    record: LedgerRecord, display_name: str | None, generic_name: str | None = None
) -> bool:
    """True when record was saved under the generic label and a real name is now known."""
    if not display_name or not record.external_id:
        return False
    was_generic = record.was_generic or (
        bool(generic_name) and record.raw_name == generic_name
    )
    return was_generic and display_name != record.raw_name


async def upgrade_generic_record(
    writer: ContactWriter,
    ledger: LocalLedger,
    owner_key: str,
    record: LedgerRecord,
    display_name: str,
    tag: str = "",
) -> LedgerRecord:
    """Rename a generically-saved contact in place, appending tag to the saved name.

    Raises ExternalServiceError on failure.
    """
    name = apply_tag(display_name, tag)
    result = await writer.upsert(
        owner_key,
        name,
        record.phone_key,
        external_id=record.external_id,
        etag=record.etag,
    )
    upgraded = replace(
        record,
        name=name,
        raw_name=display_name,
        external_id=result.external_id,
        etag=result.etag,
        saved_at=utcnow(),
        was_generic=False,
    )
    await ledger.write(owner_key, upgraded)
    return upgraded
