"""Application ports (interfaces). Implemented by infrastructure adapters."""

from collections.abc import Iterable, Sequence
from typing import Protocol

from contactsaver.application.dto import Page, PersonRecord, WriteResult
from contactsaver.domain import CaptureSession, LinkedAccountCredential, OwnerPreferences


class DocumentStore(Protocol):
    """Whole-document key-value storage. No partial reads or writes."""

    async def load(self) -> dict:
        """Return the full document ({} when nothing was saved yet)."""
        ...

    async def save(self, document: dict) -> None:
        """Replace the full document."""
        ...


class AddressBook(Protocol):
    """One linked account of the external address-book service."""

    async def list_primary(self, page_token: str | None = None) -> Page:
        ...

    async def list_secondary(self, page_token: str | None = None) -> Page:
        ...

    async def create(self, name: str, phone: str) -> WriteResult:
        ...

    async def update(
        self, external_id: str, name: str, phone: str, etag: str | None
    ) -> WriteResult:
        ...

    async def delete(self, external_id: str) -> bool:
        ...

    async def find_by_phone(self, phone: str) -> PersonRecord | None:
        ...


class AccountDirectory(Protocol):
    """Linked accounts of an owner and a client for each."""

    async def linked_accounts(self, owner_key: str) -> list[LinkedAccountCredential]:
        """Usable accounts in link order (first linked first)."""
        ...

    def address_book(
        self, owner_key: str, account: LinkedAccountCredential
    ) -> AddressBook:
        ...


class RemoteIdentityLookup(Protocol):
    """Channel-side handle -> phone lookup."""

    async def resolve(self, candidate_handles: Sequence[str]) -> str | None:
        """Return the phone number for the first candidate that resolves, or None."""
        ...


class IdentityCache(Protocol):
    """Handles the channel already told us about."""

    def phone_for(self, handle: str) -> str | None:
        ...

    def aliases(self) -> Iterable[tuple[str, str]]:
        """(alias handle, phone) pairs for reverse scans."""
        ...

    def remember(self, handle: str, phone: str) -> None:
        ...


class MessageChannel(Protocol):
    """Outbound chat transport. Fire-and-forget."""

    async def send(self, target: str, text: str, *, quote: str | None = None) -> str | None:
        """Send text to target. quote asks the transport to reply to that message id."""
        ...

    def escape(self, text: str) -> str:
        """Make text safe to embed in a formatted message."""
        ...


class SessionStore(Protocol):
    """CaptureSession storage keyed by (owner, contact)."""

    async def get(self, owner_key: str, contact_key: str) -> CaptureSession | None:
        ...

    async def put(self, session: CaptureSession) -> None:
        ...

    async def delete(self, owner_key: str, contact_key: str) -> bool:
        ...


class PreferenceStore(Protocol):
    """OwnerPreferences keyed by owner. Owners that never set any get the defaults."""

    async def get(self, owner_key: str) -> OwnerPreferences:
        ...

    async def put(self, owner_key: str, preferences: OwnerPreferences) -> None:
        ...
