"""Error taxonomy shared by every layer.

Input problems (InvalidNumber, UnresolvedIdentity, ValidationError) mean the
caller should change or skip the input. ExternalServiceError and WriteConflict
mean the system could not complete the action.
"""


class ContactSaverError(Exception):
    """Base class for all contactsaver errors."""


class InvalidNumber(ContactSaverError):
    """Raised when a raw value cannot be turned into a PhoneKey."""

    def __init__(self, raw: object) -> None:
        self.raw = raw
        super().__init__(f"Invalid phone number: {raw!r}")


class UnresolvedIdentity(ContactSaverError):
    """Raised when no phone number can be derived for an opaque handle."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Could not resolve a phone number for {handle!r}")


class ValidationError(ContactSaverError):
    """A candidate name broke one of the format rules. reason is user-facing."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ExternalServiceError(ContactSaverError):
    """An external call failed or timed out."""

    def __init__(
        self, service: str, message: str, *, account: str | None = None
    ) -> None:
        self.service = service
        self.account = account
        self.message = message
        where = f"{service} ({account})" if account else service
        super().__init__(f"{where}: {message}")


class WriteConflict(ExternalServiceError):
    """The address-book service rejected a write as a duplicate or stale edit."""

    guidance = (
        "The address book already holds a conflicting record for this number. "
        "Open the address book, merge or delete the duplicate, then try again."
    )
