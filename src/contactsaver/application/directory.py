"""External Directory Aggregator: one cached lookup table over every linked account.

Per account, the primary bucket is read before the secondary one and the first
entry seen for a FuzzyKey wins inside that account. Accounts are fetched
concurrently but merged in link order through a MergePolicy. A failing account
or bucket becomes a note in its AccountStats and never aborts its siblings.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from contactsaver.application.calls import DEFAULT_TIMEOUT, bounded
from contactsaver.application.dto import Page
from contactsaver.application.policies import FIRST_LINKED_ACCOUNT_WINS, MergePolicy
from contactsaver.application.ports import AccountDirectory
from contactsaver.domain import (
    AccountStats,
    Bucket,
    DirectoryEntry,
    ExternalServiceError,
    LinkedAccountCredential,
    MergedDirectory,
)
from contactsaver.domain.entities import utcnow
from contactsaver.domain.numbers import trusted_fuzzy_key

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60.0
SERVICE = "address-book"


class DirectoryAggregator:
    """Builds, caches and invalidates MergedDirectory per owner."""

    def __init__(
        self,
        accounts: AccountDirectory,
        *,
        ttl: float = DEFAULT_TTL,
        merge_policy: MergePolicy = FIRST_LINKED_ACCOUNT_WINS,
        timeout: float | None = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._accounts = accounts
        self._ttl = ttl
        self._merge_policy = merge_policy
        self._timeout = timeout
        self._clock = clock
        self._cache: dict[str, tuple[float, MergedDirectory]] = {}
        self._generations: dict[str, int] = {}
        self._build_locks: dict[str, asyncio.Lock] = {}

    async def get(self, owner_key: str) -> MergedDirectory | None:
        """Cached directory for owner, building it when missing or stale.

        None means the owner has no linked account. That is not an empty
        directory, and callers must not read it as proof that a number is unsaved.
        """
        cached = self._fresh(owner_key)
        if cached is not None:
            return cached
        lock = self._build_locks.setdefault(owner_key, asyncio.Lock())
        async with lock:
            cached = self._fresh(owner_key)
            if cached is not None:
                return cached
            generation = self._generations.get(owner_key, 0)
            directory = await self.build(owner_key)
            if directory is not None and self._generations.get(owner_key, 0) == generation:
                self._cache[owner_key] = (self._clock(), directory)
            return directory

    def cached(self, owner_key: str) -> MergedDirectory | None:
        """Fresh cached directory without triggering a build."""
        return self._fresh(owner_key)

    def invalidate(self, owner_key: str) -> None:
        """Drop the cached directory. Safe to call redundantly."""
        self._generations[owner_key] = self._generations.get(owner_key, 0) + 1
        if self._cache.pop(owner_key, None) is not None:
            logger.info("Directory cache invalidated for %s", owner_key)

    async def build(self, owner_key: str) -> MergedDirectory | None:
        """Fetch every linked account and merge. Does not touch the cache."""
        accounts = await bounded(
            self._accounts.linked_accounts(owner_key),
            service="linked-accounts",
            timeout=self._timeout,
        )
        if not accounts:
            logger.info("No linked accounts for %s", owner_key)
            return None
        logger.info(
            "Building merged directory for %s across %d account(s)",
            owner_key,
            len(accounts),
        )
        results = await asyncio.gather(
            *(self._fetch_account(owner_key, account) for account in accounts)
        )
        merged = self._merge_policy.merge([entries for entries, _ in results])
        stats = tuple(stat for _, stat in results)
        logger.info(
            "Merged directory for %s: %d unique numbers across %d account(s)",
            owner_key,
            len(merged),
            len(stats),
        )
        return MergedDirectory(entries=merged, built_at=utcnow(), account_stats=stats)

    async def find_one(self, owner_key: str, phone: str) -> DirectoryEntry | None:
        """Single-record lookup across accounts in link order, first hit wins.

        Raises ExternalServiceError only when every account failed.
        """
        key = trusted_fuzzy_key(phone)
        if key is None:
            return None
        accounts = await bounded(
            self._accounts.linked_accounts(owner_key),
            service="linked-accounts",
            timeout=self._timeout,
        )
        failures: list[ExternalServiceError] = []
        for account in accounts:
            try:
                book = self._accounts.address_book(owner_key, account)
                person = await bounded(
                    book.find_by_phone(phone),
                    service=SERVICE,
                    timeout=self._timeout,
                    account=account.account_id,
                )
            except ExternalServiceError as e:
                logger.warning("Lookup failed for %s: %s", account.account_id, e)
                failures.append(e)
                continue
            if person is None:
                continue
            if not any(trusted_fuzzy_key(p) == key for p in person.phones):
                continue
            return DirectoryEntry(
                external_id=person.external_id,
                display_name=person.name,
                bucket=Bucket.PRIMARY,
                source_account=account.account_id,
                etag=person.etag,
            )
        if accounts and len(failures) == len(accounts):
            raise failures[-1]
        return None

    def _fresh(self, owner_key: str) -> MergedDirectory | None:
        hit = self._cache.get(owner_key)
        if hit is None:
            return None
        stored_at, directory = hit
        if self._clock() - stored_at >= self._ttl:
            return None
        return directory

    async def _fetch_account(
        self, owner_key: str, account: LinkedAccountCredential
    ) -> tuple[dict[str, DirectoryEntry], AccountStats]:
        entries: dict[str, DirectoryEntry] = {}
        try:
            book = self._accounts.address_book(owner_key, account)
        except Exception as e:
            logger.warning("No client for %s: %s", account.account_id, e)
            return entries, AccountStats(account=account.account_id, error=str(e))

        notes: list[str] = []
        primary_count = 0
        secondary_count = 0
        secondary_failed = False
        try:
            primary_count = await self._collect(
                book.list_primary, Bucket.PRIMARY, account, entries
            )
        except ExternalServiceError as e:
            logger.warning("Primary bucket failed for %s: %s", account.account_id, e.message)
            notes.append(f"primary: {e.message}")
        try:
            secondary_count = await self._collect(
                book.list_secondary, Bucket.SECONDARY, account, entries
            )
        except ExternalServiceError as e:
            logger.warning(
                "Secondary bucket failed for %s: %s", account.account_id, e.message
            )
            secondary_failed = True
            notes.append(f"secondary: {e.message}")

        logger.info(
            "%s: %d primary + %d secondary -> %d unique",
            account.account_id,
            primary_count,
            secondary_count,
            len(entries),
        )
        return entries, AccountStats(
            account=account.account_id,
            primary_count=primary_count,
            secondary_count=secondary_count,
            unique_keys=len(entries),
            secondary_failed=secondary_failed,
            error="; ".join(notes) or None,
        )

    async def _collect(
        self,
        list_page: Callable[[str | None], Awaitable[Page]],
        bucket: Bucket,
        account: LinkedAccountCredential,
        entries: dict[str, DirectoryEntry],
    ) -> int:
        """Page through one bucket into entries. Returns the number of person records seen."""
        count = 0
        token: str | None = None
        seen_tokens: set[str] = set()
        while True:
            page = await bounded(
                list_page(token),
                service=SERVICE,
                timeout=self._timeout,
                account=account.account_id,
            )
            for person in page.records:
                count += 1
                for phone in person.phones:
                    key = trusted_fuzzy_key(phone)
                    if key is None or key in entries:
                        continue
                    entries[key] = DirectoryEntry(
                        external_id=person.external_id,
                        display_name=person.name,
                        bucket=bucket,
                        source_account=account.account_id,
                        etag=person.etag,
                    )
            token = page.next_page_token
            if not token:
                return count
            if token in seen_tokens:
                logger.warning(
                    "Repeated page token from %s (%s); stopping", account.account_id, bucket.value
                )
                return count
            seen_tokens.add(token)
