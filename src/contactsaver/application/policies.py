"""Business policies kept as named objects so each can be tested on its own."""

from collections.abc import Sequence
from typing import Protocol

from contactsaver.application.dto import DeviceContact
from contactsaver.domain import DirectoryEntry
from contactsaver.domain.names import looks_like_number, profile_name, sanitize_text


class MergePolicy(Protocol):
    """Combines per-account FuzzyKey maps into one."""

    def merge(
        self, per_account: Sequence[dict[str, DirectoryEntry]]
    ) -> dict[str, DirectoryEntry]:
        ...


class FirstLinkedAccountWins:
    """On a key collision the account linked first keeps the entry.

    per_account must already be in account-link order, not fetch-completion order.
    """

    def merge(
        self, per_account: Sequence[dict[str, DirectoryEntry]]
    ) -> dict[str, DirectoryEntry]:
        merged: dict[str, DirectoryEntry] = {}
        for entries in per_account:
            for key, entry in entries.items():
                merged.setdefault(key, entry)
        return merged


class DeviceNamePolicy(Protocol):
    def proof_of_save(self, contact: DeviceContact | None) -> str | None:
        """Name that proves the owner saved the contact on the device, else None."""
        ...

    def display_name(self, contact: DeviceContact | None) -> str | None:
        """Best passive name to label the contact with, else None."""
        ...


class PhonebookNameOnly:
    """Only the owner's own phonebook entry proves a device save.

    Push and verified names are chosen by the contact or the channel; they are
    fine as a label but never as proof. Labels must pass the profile-name rules.
    """

    def proof_of_save(self, contact: DeviceContact | None) -> str | None:
        if contact is None:
            return None
        return _usable(contact.phonebook_name)

    def display_name(self, contact: DeviceContact | None) -> str | None:
        if contact is None:
            return None
        for candidate in (contact.verified_name, contact.push_name, contact.phonebook_name):
            name = profile_name(candidate)
            if name:
                return name
        return None


def _usable(value: str | None) -> str | None:
    name = sanitize_text(value)
    if not name or looks_like_number(name):
        return None
    return name


FIRST_LINKED_ACCOUNT_WINS = FirstLinkedAccountWins()
PHONEBOOK_NAME_ONLY = PhonebookNameOnly()
