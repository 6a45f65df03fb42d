"""Tests for the multi-account directory aggregator."""

import asyncio

import pytest

from contactsaver.application import DirectoryAggregator
from contactsaver.domain import Bucket, ExternalServiceError
from fakes import OWNER, Clock, FakeAccounts, FakeAddressBook, boom, person


def _aggregator(books: dict[str, FakeAddressBook], **kwargs) -> DirectoryAggregator:
    return DirectoryAggregator(FakeAccounts(books), **kwargs)


@pytest.mark.asyncio
async def test_zero_linked_accounts_gives_no_directory():
    aggregator = _aggregator({})
    assert await aggregator.get(OWNER) is None


@pytest.mark.asyncio
async def test_first_linked_account_wins_on_collision():
    a = FakeAddressBook([person("people/a1", "Amaka", "+234 805 137 8960")])
    b = FakeAddressBook([person("people/b1", "Amaka Work", "08051378960")])
    merged = await _aggregator({"a@example.com": a, "b@example.com": b}).get(OWNER)
    entry = merged.get("051378960")
    assert entry.display_name == "Amaka"
    assert entry.source_account == "a@example.com"
    assert len(merged) == 1


@pytest.mark.asyncio
async def test_merge_order_is_link_order_not_completion_order():
    class SlowBook(FakeAddressBook):
        async def list_primary(self, page_token=None):
            await asyncio.sleep(0.02)
            return await super().list_primary(page_token)

    slow = SlowBook([person("people/a1", "First", "2348051378960")])
    fast = FakeAddressBook([person("people/b1", "Second", "2348051378960")])
    merged = await _aggregator({"first@x.com": slow, "second@x.com": fast}).get(OWNER)
    assert merged.get("051378960").display_name == "First"


@pytest.mark.asyncio
async def test_primary_bucket_beats_secondary_within_account():
    book = FakeAddressBook(
        primary=[person("people/c1", "Saved Name", "2348051378960")],
        secondary=[person("otherContacts/1", "Other Name", "+2348051378960")],
    )
    merged = await _aggregator({"a@x.com": book}).get(OWNER)
    entry = merged.get("051378960")
    assert entry.display_name == "Saved Name"
    assert entry.bucket == Bucket.PRIMARY


@pytest.mark.asyncio
async def test_short_numbers_are_not_indexed():
    book = FakeAddressBook([person("people/c1", "Short", "12345")])
    merged = await _aggregator({"a@x.com": book}).get(OWNER)
    assert len(merged) == 0


@pytest.mark.asyncio
async def test_pagination_collects_every_page():
    records = [person(f"people/c{i}", f"P{i}", f"2348051378{i:03d}") for i in range(25)]
    book = FakeAddressBook(records, page_size=10)
    merged = await _aggregator({"a@x.com": book}).get(OWNER)
    assert len(merged) == 25
    assert merged.account_stats[0].primary_count == 25


@pytest.mark.asyncio
async def test_failing_account_is_isolated():
    good = FakeAddressBook([person("people/c1", "Amaka", "2348051378960")])
    bad = FakeAddressBook()
    bad.fail_primary = boom("quota exceeded")
    bad.fail_secondary = boom("quota exceeded")
    merged = await _aggregator({"bad@x.com": bad, "good@x.com": good}).get(OWNER)
    assert "051378960" in merged
    stats = {s.account: s for s in merged.account_stats}
    assert "quota exceeded" in stats["bad@x.com"].error
    assert stats["good@x.com"].error is None


@pytest.mark.asyncio
async def test_secondary_failure_keeps_primary_entries():
    book = FakeAddressBook([person("people/c1", "Amaka", "2348051378960")])
    book.fail_secondary = boom("forbidden")
    merged = await _aggregator({"a@x.com": book}).get(OWNER)
    assert "051378960" in merged
    assert merged.account_stats[0].secondary_failed is True


@pytest.mark.asyncio
async def test_unexpected_exception_from_account_becomes_a_note():
    book = FakeAddressBook()
    book.fail_primary = RuntimeError("connection reset")
    merged = await _aggregator({"a@x.com": book}).get(OWNER)
    assert len(merged) == 0
    assert "connection reset" in merged.account_stats[0].error


@pytest.mark.asyncio
async def test_cache_is_reused_within_ttl_and_rebuilt_after():
    clock = Clock()
    book = FakeAddressBook([person("people/c1", "Amaka", "2348051378960")])
    aggregator = _aggregator({"a@x.com": book}, ttl=300, clock=clock)
    first = await aggregator.get(OWNER)
    calls = book.list_calls
    assert await aggregator.get(OWNER) is first
    assert book.list_calls == calls
    clock.now += 300
    assert await aggregator.get(OWNER) is not first
    assert book.list_calls == calls * 2


@pytest.mark.asyncio
async def test_invalidate_forces_rebuild():
    book = FakeAddressBook([person("people/c1", "Amaka", "2348051378960")])
    aggregator = _aggregator({"a@x.com": book})
    await aggregator.get(OWNER)
    aggregator.invalidate(OWNER)
    aggregator.invalidate(OWNER)
    assert aggregator.cached(OWNER) is None
    book.primary.append(person("people/c2", "Bola", "2348099999999"))
    merged = await aggregator.get(OWNER)
    assert "099999999" in merged


@pytest.mark.asyncio
async def test_concurrent_gets_build_once():
    book = FakeAddressBook([person("people/c1", "Amaka", "2348051378960")])
    aggregator = _aggregator({"a@x.com": book})
    results = await asyncio.gather(*(aggregator.get(OWNER) for _ in range(5)))
    assert all(r is results[0] for r in results)
    assert book.list_calls == 2


@pytest.mark.asyncio
async def test_build_racing_invalidate_is_not_cached():
    class GatedBook(FakeAddressBook):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.gate = asyncio.Event()
            self.entered = asyncio.Event()

        async def list_primary(self, page_token=None):
            self.entered.set()
            await self.gate.wait()
            return await super().list_primary(page_token)

    book = GatedBook([person("people/c1", "Amaka", "2348051378960")])
    aggregator = _aggregator({"a@x.com": book})
    task = asyncio.create_task(aggregator.get(OWNER))
    await book.entered.wait()
    aggregator.invalidate(OWNER)
    book.gate.set()
    assert await task is not None
    assert aggregator.cached(OWNER) is None


@pytest.mark.asyncio
async def test_linked_accounts_failure_raises_external_error():
    accounts = FakeAccounts()
    accounts.fail = RuntimeError("credential store offline")
    with pytest.raises(ExternalServiceError):
        await DirectoryAggregator(accounts).get(OWNER)


@pytest.mark.asyncio
async def test_find_one_checks_accounts_in_order():
    a = FakeAddressBook()
    b = FakeAddressBook([person("people/b1", "Amaka", "08051378960")])
    entry = await _aggregator({"a@x.com": a, "b@x.com": b}).find_one(OWNER, "2348051378960")
    assert entry.external_id == "people/b1"
    assert entry.source_account == "b@x.com"


@pytest.mark.asyncio
async def test_find_one_raises_only_when_every_account_failed():
    a = FakeAddressBook()
    a.fail_lookup = boom("down")
    b = FakeAddressBook()
    aggregator = _aggregator({"a@x.com": a, "b@x.com": b})
    assert await aggregator.find_one(OWNER, "2348051378960") is None
    b.fail_lookup = boom("down too")
    with pytest.raises(ExternalServiceError):
        await aggregator.find_one(OWNER, "2348051378960")
