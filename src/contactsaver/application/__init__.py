"""Application layer: use cases, ports, policies and DTOs. Depends only on domain."""

from contactsaver.application.bulk import BulkRunner
from contactsaver.application.capture import CaptureStateMachine
from contactsaver.application.decision import SaveStateEngine
from contactsaver.application.directory import DirectoryAggregator
from contactsaver.application.dto import (
    AlreadySaved,
    BulkCandidate,
    BulkReport,
    CaptureOutcome,
    DeviceContact,
    ItemOutcome,
    NotSaved,
    Page,
    PersonRecord,
    Verdict,
    WriteResult,
)
from contactsaver.application.identity_resolver import IdentityResolver
from contactsaver.application.ledger import LocalLedger
from contactsaver.application.policies import (
    FIRST_LINKED_ACCOUNT_WINS,
    PHONEBOOK_NAME_ONLY,
    DeviceNamePolicy,
    MergePolicy,
)
from contactsaver.application.ports import (
    AccountDirectory,
    AddressBook,
    DocumentStore,
    IdentityCache,
    MessageChannel,
    PreferenceStore,
    RemoteIdentityLookup,
    SessionStore,
)
from contactsaver.application.writer import ContactWriter

__all__ = [
    "FIRST_LINKED_ACCOUNT_WINS",
    "PHONEBOOK_NAME_ONLY",
    "AccountDirectory",
    "AddressBook",
    "AlreadySaved",
    "BulkCandidate",
    "BulkReport",
    "BulkRunner",
    "CaptureOutcome",
    "CaptureStateMachine",
    "ContactWriter",
    "DeviceContact",
    "DeviceNamePolicy",
    "DirectoryAggregator",
    "DocumentStore",
    "IdentityCache",
    "IdentityResolver",
    "ItemOutcome",
    "LocalLedger",
    "MergePolicy",
    "MessageChannel",
    "NotSaved",
    "Page",
    "PersonRecord",
    "PreferenceStore",
    "RemoteIdentityLookup",
    "SaveStateEngine",
    "SessionStore",
    "Verdict",
    "WriteResult",
]
