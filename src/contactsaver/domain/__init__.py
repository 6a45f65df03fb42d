"""Domain layer: entities, name rules and errors. No dependencies on outer layers."""

from contactsaver.domain.entities import (
    AccountStats,
    Bucket,
    CaptureSession,
    CaptureState,
    DirectoryEntry,
    LedgerRecord,
    LinkedAccountCredential,
    MergedDirectory,
    OwnerPreferences,
    Provenance,
)
from contactsaver.domain.errors import (
    ContactSaverError,
    ExternalServiceError,
    InvalidNumber,
    UnresolvedIdentity,
    ValidationError,
    WriteConflict,
)
from contactsaver.domain.names import apply_tag, profile_name, validate_name

__all__ = [
    "AccountStats",
    "Bucket",
    "CaptureSession",
    "CaptureState",
    "ContactSaverError",
    "DirectoryEntry",
    "ExternalServiceError",
    "InvalidNumber",
    "LedgerRecord",
    "LinkedAccountCredential",
    "MergedDirectory",
    "OwnerPreferences",
    "Provenance",
    "UnresolvedIdentity",
    "ValidationError",
    "WriteConflict",
    "apply_tag",
    "profile_name",
    "validate_name",
]
