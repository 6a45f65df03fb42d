"""Tests for the document stores, session and preference storage."""

import json

import pytest

from contactsaver.application import LocalLedger
from contactsaver.domain import (
    CaptureSession,
    CaptureState,
    LedgerRecord,
    OwnerPreferences,
    Provenance,
)
from contactsaver.infrastructure import (
    DocumentPreferenceStore,
    DocumentSessionStore,
    InMemoryDocumentStore,
    InMemoryIdentityCache,
    JsonFileDocumentStore,
)

OWNER = "2348000000001"
PHONE = "2348051378960"


@pytest.mark.asyncio
async def test_json_store_missing_or_empty_file_loads_empty(tmp_path):
    path = tmp_path / "ledger.json"
    store = JsonFileDocumentStore(path)
    assert await store.load() == {}
    path.write_text("  \n", encoding="utf-8")
    assert await store.load() == {}


@pytest.mark.asyncio
async def test_json_store_round_trips_and_leaves_no_temp_files(tmp_path):
    path = tmp_path / "nested" / "ledger.json"
    store = JsonFileDocumentStore(path)
    await store.save({OWNER: {PHONE: {"name": "Adaeze Ọkọ"}}})
    assert await store.load() == {OWNER: {PHONE: {"name": "Adaeze Ọkọ"}}}
    assert json.loads(path.read_text(encoding="utf-8"))[OWNER][PHONE]["name"] == "Adaeze Ọkọ"
    assert [p.name for p in path.parent.iterdir()] == ["ledger.json"]


@pytest.mark.asyncio
async def test_json_store_rejects_non_object_document(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        await JsonFileDocumentStore(path).load()


@pytest.mark.asyncio
async def test_ledger_survives_restart_on_json_store(tmp_path):
    path = tmp_path / "ledger.json"
    await LocalLedger(JsonFileDocumentStore(path)).write(
        OWNER, LedgerRecord(PHONE, "Amaka", "Amaka", Provenance.BULK_SAVED, external_id="people/c1")
    )
    record = await LocalLedger(JsonFileDocumentStore(path)).get(OWNER, PHONE)
    assert record.name == "Amaka"
    assert record.external_id == "people/c1"
    assert record.provenance == Provenance.BULK_SAVED


@pytest.mark.asyncio
async def test_memory_store_load_is_a_copy():
    store = InMemoryDocumentStore({"a": {"b": 1}})
    document = await store.load()
    document["a"]["b"] = 2
    assert await store.load() == {"a": {"b": 1}}


@pytest.mark.asyncio
async def test_session_store_put_get_delete():
    sessions = DocumentSessionStore(InMemoryDocumentStore())
    assert await sessions.get(OWNER, PHONE) is None
    await sessions.put(
        CaptureSession(OWNER, PHONE, CaptureState.AWAITING_CONFIRM, pending_name="Justice")
    )
    session = await sessions.get(OWNER, PHONE)
    assert session.state == CaptureState.AWAITING_CONFIRM
    assert session.pending_name == "Justice"
    assert await sessions.delete(OWNER, PHONE) is True
    assert await sessions.delete(OWNER, PHONE) is False
    assert await sessions.get(OWNER, PHONE) is None


@pytest.mark.asyncio
async def test_sessions_are_scoped_per_owner():
    sessions = DocumentSessionStore(InMemoryDocumentStore())
    await sessions.put(CaptureSession(OWNER, PHONE))
    assert await sessions.get("2348000000002", PHONE) is None


def test_identity_cache_remembers_and_lists_aliases():
    cache = InMemoryIdentityCache({"tg:1": PHONE})
    cache.remember("tg:2", "2348051378961")
    cache.remember("", "2348051378962")
    assert cache.phone_for("tg:2") == "2348051378961"
    assert sorted(cache.aliases()) == [("tg:1", PHONE), ("tg:2", "2348051378961")]


@pytest.mark.asyncio
async def test_preferences_default_until_set_and_survive_restart(tmp_path):
    path = tmp_path / "preferences.json"
    store = DocumentPreferenceStore(JsonFileDocumentStore(path))
    default = await store.get(OWNER)
    assert default.autosave is True
    assert (default.new_tag, default.old_tag, default.welcome) == ("", "", "")
    await store.put(OWNER, OwnerPreferences(autosave=False, new_tag=" FB ", welcome="Hello there"))

    reloaded = await DocumentPreferenceStore(JsonFileDocumentStore(path)).get(OWNER)
    assert reloaded.autosave is False
    assert reloaded.new_tag == "FB"
    assert reloaded.welcome == "Hello there"
    assert (await store.get("2348000000002")).autosave is True


def test_preferences_reject_a_too_short_welcome():
    with pytest.raises(ValueError):
        OwnerPreferences(welcome="hey")
    assert OwnerPreferences(welcome="").welcome == ""
