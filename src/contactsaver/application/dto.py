"""Data transfer objects and result types for the application layer."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from contactsaver.domain import CaptureState, LedgerRecord, Provenance
from contactsaver.domain.entities import utcnow

# --- Address-book wire shapes ---


@dataclass(frozen=True)
class PersonRecord:
    """One person as returned by an address-book account."""

    external_id: str
    name: str | None = None
    phones: tuple[str, ...] = ()
    etag: str | None = None


@dataclass(frozen=True)
class Page:
    records: list[PersonRecord]
    next_page_token: str | None = None


@dataclass(frozen=True)
class WriteResult:
    external_id: str
    etag: str | None = None
    mode: str = "created"


# --- Device-side contact facts ---


@dataclass(frozen=True)
class DeviceContact:
    """
    What the chat device knows about a contact, kept in separately tagged fields.
    phonebook_name is the entry the owner saved in their own phonebook.
    push_name and verified_name are set by the contact or the channel and
    prove nothing about whether the owner saved them.
    """

    phonebook_name: str | None = None
    push_name: str | None = None
    verified_name: str | None = None


# --- Save-state verdicts ---


@dataclass(frozen=True)
class AlreadySaved:
    provenance: Provenance
    name: str
    record: LedgerRecord


@dataclass(frozen=True)
class NotSaved:
    """No source knows the contact. inconclusive is set when an external check failed."""

    inconclusive: bool = False
    reason: str | None = None


Verdict = AlreadySaved | NotSaved


# --- Capture dialog ---


@dataclass(frozen=True)
class CaptureOutcome:
    """What one inbound event did to a capture session."""

    state: CaptureState | None
    sent: tuple[str, ...] = ()
    verdict: AlreadySaved | NotSaved | None = None
    record: LedgerRecord | None = None
    error: str | None = None
    ignored: bool = False


# --- Bulk runs ---


class ItemOutcome(str, Enum):
    SAVED_NEW = "saved-new"
    UPGRADED = "upgraded"
    ALREADY_SAVED = "already-saved"
    SKIPPED_INVALID = "skipped-invalid"
    FAILED = "failed"


@dataclass(frozen=True)
class BulkCandidate:
    handle: str
    device_contact: DeviceContact | None = None


@dataclass
class BulkReport:
    """Running tally of a bulk run. Mutated by the runner as items finish."""

    owner_key: str
    dry_run: bool = False
    total: int = 0
    counts: dict[ItemOutcome, int] = field(
        default_factory=lambda: {outcome: 0 for outcome in ItemOutcome}
    )
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    def add(self, outcome: ItemOutcome, error: str | None = None) -> None:
        self.total += 1
        self.counts[outcome] += 1
        if error:
            self.errors.append(error)

    @property
    def saved_new(self) -> int:
        return self.counts[ItemOutcome.SAVED_NEW]

    @property
    def upgraded(self) -> int:
        return self.counts[ItemOutcome.UPGRADED]

    @property
    def already_saved(self) -> int:
        return self.counts[ItemOutcome.ALREADY_SAVED]

    @property
    def skipped_invalid(self) -> int:
        return self.counts[ItemOutcome.SKIPPED_INVALID]

    @property
    def failed(self) -> int:
        return self.counts[ItemOutcome.FAILED]

    def to_dict(self) -> dict:
        return {
            "owner_key": self.owner_key,
            "dry_run": self.dry_run,
            "total": self.total,
            "counts": {outcome.value: n for outcome, n in self.counts.items()},
            "errors": list(self.errors),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
