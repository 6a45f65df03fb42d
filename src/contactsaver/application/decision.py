"""Save-State Decision Engine: is this contact already saved for the owner?

Checks run strictly in order and stop at the first hit:
1. local ledger (PhoneKey),
2. device phonebook name (only the owner's own phonebook entry counts),
3. merged directory (FuzzyKey), when the owner has one,
4. single-record remote lookup (one-off checks only).
Hits from 2-4 are written back to the ledger; a hit from 3 leaves the
directory cache valid. A failing external check degrades to
NotSaved(inconclusive=True). A false prompt can be declined, while a false
"already saved" would hide a real contact.
"""

import logging

from contactsaver.application.directory import DirectoryAggregator
from contactsaver.application.dto import AlreadySaved, DeviceContact, NotSaved, Verdict
from contactsaver.application.ledger import LocalLedger
from contactsaver.application.policies import PHONEBOOK_NAME_ONLY, DeviceNamePolicy
from contactsaver.domain import (
    DirectoryEntry,
    ExternalServiceError,
    LedgerRecord,
    MergedDirectory,
    Provenance,
)
from contactsaver.domain.numbers import trusted_fuzzy_key

logger = logging.getLogger(__name__)

# Marker for "use the aggregator's cache" as opposed to an explicit snapshot (or None).
_FROM_CACHE = object()


class SaveStateEngine:
    def __init__(
        self,
        ledger: LocalLedger,
        directory: DirectoryAggregator,
        *,
        device_names: DeviceNamePolicy = PHONEBOOK_NAME_ONLY,
    ) -> None:
        self._ledger = ledger
        self._directory = directory
        self._device_names = device_names

    async def decide(
        self,
        owner_key: str,
        phone_key: str,
        device_contact: DeviceContact | None = None,
        *,
        use_remote_lookup: bool = True,
        write_back: bool = True,
        directory: MergedDirectory | None | object = _FROM_CACHE,
    ) -> Verdict:
        """Return AlreadySaved or NotSaved for (owner, contact).

        directory lets a caller pass a snapshot it already built (or None for
        "no directory") so a long run does not rebuild after every write.
        """
        record = await self._ledger.get(owner_key, phone_key)
        if record is not None:
            return AlreadySaved(provenance=record.provenance, name=record.name, record=record)

        device_name = self._device_names.proof_of_save(device_contact)
        if device_name:
            record = LedgerRecord(
                phone_key=phone_key,
                name=device_name,
                raw_name=device_name,
                provenance=Provenance.DEVICE_PHONEBOOK,
            )
            return await self._saved(owner_key, record, write_back)

        inconclusive = False
        reason = None
        try:
            merged = (
                await self._directory.get(owner_key)
                if directory is _FROM_CACHE
                else directory
            )
            if merged is not None:
                entry = merged.get(trusted_fuzzy_key(phone_key))
                if entry is not None:
                    # Read from the directory, so the write-back leaves its cache alone.
                    return await self._saved(
                        owner_key,
                        _verified_record(phone_key, entry),
                        write_back,
                        invalidate=False,
                    )
        except ExternalServiceError as e:
            logger.warning("Directory check failed for %s/%s: %s", owner_key, phone_key, e)
            inconclusive, reason = True, str(e)

        if use_remote_lookup:
            try:
                entry = await self._directory.find_one(owner_key, phone_key)
                if entry is not None:
                    return await self._saved(
                        owner_key, _verified_record(phone_key, entry), write_back
                    )
            except ExternalServiceError as e:
                logger.warning("Remote lookup failed for %s/%s: %s", owner_key, phone_key, e)
                inconclusive, reason = True, str(e)

        return NotSaved(inconclusive=inconclusive, reason=reason)

    async def _saved(
        self,
        owner_key: str,
        record: LedgerRecord,
        write_back: bool,
        *,
        invalidate: bool = True,
    ) -> AlreadySaved:
        if write_back:
            await self._ledger.write(owner_key, record, invalidate=invalidate)
        return AlreadySaved(provenance=record.provenance, name=record.name, record=record)


def _verified_record(phone_key: str, entry: DirectoryEntry) -> LedgerRecord:
    name = entry.display_name or phone_key
    return LedgerRecord(
        phone_key=phone_key,
        name=name,
        raw_name=entry.display_name or "",
        provenance=Provenance.VERIFIED_EXTERNALLY,
        external_id=entry.external_id,
        etag=entry.etag,
    )
