"""Bulk Concurrency Runner: save a large candidate set without a dialog.

A fixed pool of workers drains one queue. Each item is resolved to a PhoneKey,
checked against the ledger, the device phonebook and one directory snapshot
taken at the start of the run, then written under the best passive name (or
the generic label). Items sharing a PhoneKey are processed one after another.
A checkpoint is saved after every item so a crashed run can be resumed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field

from contactsaver.application.decision import SaveStateEngine
from contactsaver.application.directory import DirectoryAggregator
from contactsaver.application.dto import (
    AlreadySaved,
    BulkCandidate,
    BulkReport,
    ItemOutcome,
)
from contactsaver.application.identity_resolver import IdentityResolver
from contactsaver.application.ledger import LocalLedger
from contactsaver.application.policies import PHONEBOOK_NAME_ONLY, DeviceNamePolicy
from contactsaver.application.ports import DocumentStore, PreferenceStore
from contactsaver.application.writer import (
    ContactWriter,
    needs_upgrade,
    upgrade_generic_record,
)
from contactsaver.domain import (
    ExternalServiceError,
    LedgerRecord,
    MergedDirectory,
    OwnerPreferences,
    Provenance,
    UnresolvedIdentity,
    apply_tag,
)
from contactsaver.domain.entities import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3
DEFAULT_WRITE_DELAY = 0.2
DEFAULT_GENERIC_NAME = "Contact"


@dataclass
class _Run:
    report: BulkReport
    preferences: OwnerPreferences = field(default_factory=OwnerPreferences)
    directory: MergedDirectory | None = None
    directory_error: str | None = None
    done: set[str] = field(default_factory=set)
    phone_locks: dict[str, asyncio.Lock] = field(default_factory=dict)
    checkpoint_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def lock_for(self, phone_key: str) -> asyncio.Lock:
        return self.phone_locks.setdefault(phone_key, asyncio.Lock())


class BulkRunner:
    def __init__(
        self,
        identity: IdentityResolver,
        engine: SaveStateEngine,
        ledger: LocalLedger,
        writer: ContactWriter,
        directory: DirectoryAggregator,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        write_delay: float = DEFAULT_WRITE_DELAY,
        generic_name: str = DEFAULT_GENERIC_NAME,
        device_names: DeviceNamePolicy = PHONEBOOK_NAME_ONLY,
        progress: DocumentStore | None = None,
        preferences: PreferenceStore | None = None,
        exclude: Iterable[str] = (),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._identity = identity
        self._engine = engine
        self._ledger = ledger
        self._writer = writer
        self._directory = directory
        self._concurrency = concurrency
        self._write_delay = write_delay
        self._generic_name = generic_name
        self._device_names = device_names
        self._progress = progress
        self._preferences = preferences
        self._exclude = set(exclude)
        self._sleep = sleep

    async def run(
        self,
        owner_key: str,
        candidates: Sequence[BulkCandidate],
        *,
        dry_run: bool = False,
        resume: bool = False,
    ) -> BulkReport:
        """Process every candidate and return the tally. Never raises for a single item."""
        run = _Run(report=BulkReport(owner_key=owner_key, dry_run=dry_run))
        if resume and not dry_run:
            await self._restore(run)
        if self._preferences is not None:
            run.preferences = await self._preferences.get(owner_key)

        try:
            run.directory = await self._directory.get(owner_key)
        except ExternalServiceError as e:
            logger.warning("Directory unavailable for bulk run of %s: %s", owner_key, e)
            run.directory_error = str(e)

        queue: asyncio.Queue[BulkCandidate] = asyncio.Queue()
        for candidate in candidates:
            if candidate.handle not in run.done:
                queue.put_nowait(candidate)
        logger.info(
            "Bulk run for %s: %d candidate(s), %d already processed, dry_run=%s",
            owner_key,
            queue.qsize(),
            len(run.done),
            dry_run,
        )

        workers = min(self._concurrency, queue.qsize()) or 1
        await asyncio.gather(*(self._worker(run, queue) for _ in range(workers)))

        run.report.finished_at = utcnow()
        if not dry_run:
            await self._checkpoint(run, finished=True)
        r = run.report
        logger.info(
            "Bulk run for %s done: new=%d upgraded=%d already=%d invalid=%d failed=%d",
            owner_key,
            r.saved_new,
            r.upgraded,
            r.already_saved,
            r.skipped_invalid,
            r.failed,
        )
        return r

    async def _worker(self, run: _Run, queue: asyncio.Queue) -> None:
        while True:
            try:
                candidate = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                outcome, error = await self._process(run, candidate)
            except Exception as e:
                logger.exception("Bulk item %s failed", candidate.handle)
                outcome, error = ItemOutcome.FAILED, f"{candidate.handle}: {e}"
            run.report.add(outcome, error)
            run.done.add(candidate.handle)
            if not run.report.dry_run:
                await self._checkpoint(run)

    async def _process(
        self, run: _Run, candidate: BulkCandidate
    ) -> tuple[ItemOutcome, str | None]:
        owner_key = run.report.owner_key
        dry_run = run.report.dry_run
        try:
            phone = await self._identity.resolve(candidate.handle)
        except UnresolvedIdentity:
            return ItemOutcome.SKIPPED_INVALID, None
        if phone == owner_key or phone in self._exclude:
            return ItemOutcome.SKIPPED_INVALID, None

        async with run.lock_for(phone):
            verdict = await self._engine.decide(
                owner_key,
                phone,
                candidate.device_contact,
                use_remote_lookup=False,
                write_back=not dry_run,
                directory=run.directory,
            )
            display_name = self._device_names.display_name(candidate.device_contact)

            if isinstance(verdict, AlreadySaved):
                if not needs_upgrade(verdict.record, display_name, self._generic_name):
                    return ItemOutcome.ALREADY_SAVED, None
                if dry_run:
                    return ItemOutcome.UPGRADED, None
                try:
                    await upgrade_generic_record(
                        self._writer,
                        self._ledger,
                        owner_key,
                        verdict.record,
                        display_name,
                        run.preferences.old_tag,
                    )
                except ExternalServiceError as e:
                    return ItemOutcome.FAILED, f"{phone}: {e}"
                await self._sleep(self._write_delay)
                return ItemOutcome.UPGRADED, None

            # Without a trustworthy directory a create could duplicate an existing record.
            if run.directory_error:
                return ItemOutcome.FAILED, f"{phone}: {run.directory_error}"
            if verdict.inconclusive:
                return ItemOutcome.FAILED, f"{phone}: {verdict.reason}"
            if dry_run:
                return ItemOutcome.SAVED_NEW, None

            name = display_name or self._generic_name
            saved_name = apply_tag(name, run.preferences.new_tag)
            try:
                result = await self._writer.upsert(owner_key, saved_name, phone)
            except ExternalServiceError as e:
                return ItemOutcome.FAILED, f"{phone}: {e}"
            await self._ledger.write(
                owner_key,
                LedgerRecord(
                    phone_key=phone,
                    name=saved_name,
                    raw_name=name,
                    provenance=Provenance.BULK_SAVED,
                    external_id=result.external_id,
                    etag=result.etag,
                    was_generic=display_name is None,
                ),
            )
            await self._sleep(self._write_delay)
            return ItemOutcome.SAVED_NEW, None

    async def _restore(self, run: _Run) -> None:
        if self._progress is None:
            return
        document = await self._progress.load()
        checkpoint = document.get(run.report.owner_key)
        if not checkpoint or checkpoint.get("finished"):
            return
        run.done.update(checkpoint.get("handles") or ())
        for outcome in ItemOutcome:
            n = (checkpoint.get("counts") or {}).get(outcome.value, 0)
            run.report.counts[outcome] += n
            run.report.total += n
        run.report.errors.extend(checkpoint.get("errors") or ())
        logger.info(
            "Resuming bulk run for %s after %d processed handle(s)",
            run.report.owner_key,
            len(run.done),
        )

    async def _checkpoint(self, run: _Run, *, finished: bool = False) -> None:
        if self._progress is None:
            return
        report = run.report
        async with run.checkpoint_lock:
            document = await self._progress.load()
            document[report.owner_key] = {
                "handles": sorted(run.done),
                "counts": {outcome.value: n for outcome, n in report.counts.items()},
                "errors": list(report.errors),
                "finished": finished,
                "updated_at": utcnow().isoformat(),
            }
            await self._progress.save(document)
