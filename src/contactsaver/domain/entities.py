"""Domain entities: ledger records, directory entries, sessions and linked accounts."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Provenance(str, Enum):
    """Why a LedgerRecord is trusted as saved."""

    DEVICE_PHONEBOOK = "device-phonebook"
    VERIFIED_EXTERNALLY = "verified-externally"
    DIALOG_CONFIRMED = "dialog-confirmed"
    BULK_SAVED = "bulk-saved"


class Bucket(str, Enum):
    """Partition of one linked account's address book."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class CaptureState(str, Enum):
    UNSAVED = "unsaved"
    AWAITING_NAME = "awaiting_name"
    AWAITING_CONFIRM = "awaiting_confirm"
    SAVED = "saved"


@dataclass(frozen=True)
class LedgerRecord:
    """
    One contact the bot knows to be saved for an owner.
    Created or overwritten by a successful save or a cached lookup hit.
    """

    phone_key: str
    name: str
    raw_name: str
    provenance: Provenance
    external_id: str | None = None
    etag: str | None = None
    saved_at: datetime = field(default_factory=utcnow)
    was_generic: bool = False

    def __post_init__(self):
        if not self.phone_key:
            raise ValueError("LedgerRecord phone_key must be non-empty.")
        object.__setattr__(self, "provenance", Provenance(self.provenance))

    def to_dict(self) -> dict:
        return {
            "phone_key": self.phone_key,
            "name": self.name,
            "raw_name": self.raw_name,
            "provenance": self.provenance.value,
            "external_id": self.external_id,
            "etag": self.etag,
            "saved_at": self.saved_at.isoformat(),
            "was_generic": self.was_generic,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerRecord":
        return cls(
            phone_key=data["phone_key"],
            name=data.get("name") or "",
            raw_name=data.get("raw_name") or "",
            provenance=Provenance(data["provenance"]),
            external_id=data.get("external_id"),
            etag=data.get("etag"),
            saved_at=_iso_to_datetime(data.get("saved_at")),
            was_generic=bool(data.get("was_generic", False)),
        )


@dataclass(frozen=True)
class DirectoryEntry:
    """A person found in one linked account. Only produced by the aggregator."""

    external_id: str
    display_name: str | None
    bucket: Bucket
    source_account: str
    etag: str | None = None


@dataclass(frozen=True)
class AccountStats:
    """Per-account outcome of one directory build."""

    account: str
    primary_count: int = 0
    secondary_count: int = 0
    unique_keys: int = 0
    secondary_failed: bool = False
    error: str | None = None


@dataclass(frozen=True)
class MergedDirectory:
    """FuzzyKey -> DirectoryEntry across every linked account of one owner."""

    entries: dict[str, DirectoryEntry]
    built_at: datetime
    account_stats: tuple[AccountStats, ...] = ()

    def get(self, fuzzy: str | None) -> DirectoryEntry | None:
        if not fuzzy:
            return None
        return self.entries.get(fuzzy)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, fuzzy: object) -> bool:
        return fuzzy in self.entries


@dataclass(frozen=True)
class LinkedAccountCredential:
    """One external address-book identity an owner has authorized."""

    account_id: str
    access_token: str | None = None
    refresh_token: str | None = None
    linked_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        account_id = (self.account_id or "").strip().lower()
        if not account_id:
            raise ValueError("LinkedAccountCredential account_id must be non-empty.")
        object.__setattr__(self, "account_id", account_id)

    @property
    def usable(self) -> bool:
        return bool(self.access_token or self.refresh_token)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "linked_at": self.linked_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LinkedAccountCredential":
        return cls(
            account_id=data["account_id"],
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            linked_at=_iso_to_datetime(data.get("linked_at")),
            updated_at=_iso_to_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class CaptureSession:
    """Dialog state for one (owner, contact) pair."""

    owner_key: str
    contact_key: str
    state: CaptureState = CaptureState.AWAITING_NAME
    pending_name: str | None = None
    asked_at: datetime = field(default_factory=utcnow)
    external_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "state", CaptureState(self.state))

    def to_dict(self) -> dict:
        return {
            "owner_key": self.owner_key,
            "contact_key": self.contact_key,
            "state": self.state.value,
            "pending_name": self.pending_name,
            "asked_at": self.asked_at.isoformat(),
            "external_id": self.external_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CaptureSession":
        return cls(
            owner_key=data["owner_key"],
            contact_key=data["contact_key"],
            state=CaptureState(data["state"]),
            pending_name=data.get("pending_name"),
            asked_at=_iso_to_datetime(data.get("asked_at")),
            external_id=data.get("external_id"),
        )


MIN_WELCOME_LENGTH = 5


@dataclass(frozen=True)
class OwnerPreferences:
    """Owner switches for autosave.

    new_tag is appended to names of fresh saves, old_tag to generic records
    renamed later. welcome replaces the flow's first greeting when set.
    """

    autosave: bool = True
    new_tag: str = ""
    old_tag: str = ""
    welcome: str = ""
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        for name in ("new_tag", "old_tag", "welcome"):
            object.__setattr__(self, name, (getattr(self, name) or "").strip())
        if self.welcome and len(self.welcome) < MIN_WELCOME_LENGTH:
            raise ValueError(
                f"welcome must be at least {MIN_WELCOME_LENGTH} characters (or empty)."
            )

    def to_dict(self) -> dict:
        return {
            "autosave": self.autosave,
            "new_tag": self.new_tag,
            "old_tag": self.old_tag,
            "welcome": self.welcome,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OwnerPreferences":
        return cls(
            autosave=bool(data.get("autosave", True)),
            new_tag=data.get("new_tag") or "",
            old_tag=data.get("old_tag") or "",
            welcome=data.get("welcome") or "",
            updated_at=_iso_to_datetime(data.get("updated_at")),
        )


def _iso_to_datetime(value: str | None) -> datetime:
    if not value:
        return utcnow()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))
