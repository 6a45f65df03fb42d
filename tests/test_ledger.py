"""Tests for the owner-scoped local ledger."""

import asyncio

import pytest

from contactsaver.application import LocalLedger
from contactsaver.domain import LedgerRecord, Provenance
from contactsaver.infrastructure import InMemoryDocumentStore

OWNER = "2348000000001"


def _record(phone: str, name: str = "Amaka") -> LedgerRecord:
    return LedgerRecord(
        phone_key=phone, name=name, raw_name=name, provenance=Provenance.DIALOG_CONFIRMED
    )


@pytest.mark.asyncio
async def test_write_then_get_round_trips_record():
    ledger = LocalLedger(InMemoryDocumentStore())
    await ledger.write(OWNER, _record("2348051378960"))
    got = await ledger.get(OWNER, "2348051378960")
    assert got is not None
    assert got.name == "Amaka"
    assert got.provenance == Provenance.DIALOG_CONFIRMED


@pytest.mark.asyncio
async def test_records_are_scoped_per_owner():
    ledger = LocalLedger(InMemoryDocumentStore())
    await ledger.write(OWNER, _record("2348051378960"))
    assert await ledger.get("2348000000002", "2348051378960") is None
    assert list(await ledger.records(OWNER)) == ["2348051378960"]


@pytest.mark.asyncio
async def test_every_write_and_delete_notifies_listener():
    seen: list[str] = []
    ledger = LocalLedger(InMemoryDocumentStore(), on_write=seen.append)
    await ledger.write(OWNER, _record("2348051378960"))
    deleted = await ledger.delete(OWNER, "2348051378960")
    assert deleted is not None and deleted.name == "Amaka"
    assert await ledger.delete(OWNER, "2348051378960") is None
    assert seen == [OWNER, OWNER]


@pytest.mark.asyncio
async def test_concurrent_writes_do_not_lose_updates():
    ledger = LocalLedger(InMemoryDocumentStore())
    phones = [f"23480513789{i:02d}" for i in range(20)]
    await asyncio.gather(*(ledger.write(OWNER, _record(p)) for p in phones))
    assert sorted(await ledger.records(OWNER)) == sorted(phones)


@pytest.mark.asyncio
async def test_write_without_invalidate_skips_listener():
    seen: list[str] = []
    ledger = LocalLedger(InMemoryDocumentStore(), on_write=seen.append)
    await ledger.write(OWNER, _record("2348051378960"), invalidate=False)
    assert seen == []
    assert await ledger.get(OWNER, "2348051378960") is not None
