"""Tests for the Google People adapter against a mocked discovery client."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError

from contactsaver.domain import ExternalServiceError, WriteConflict
from contactsaver.infrastructure import CredentialStore, InMemoryDocumentStore
from contactsaver.infrastructure.google_people import (
    GoogleAccountDirectory,
    GooglePeopleAddressBook,
)

OWNER = "2348000000001"
PHONE = "2348051378960"


def http_error(status: int, message: str = "error") -> HttpError:
    resp = SimpleNamespace(status=status, reason=message)
    content = ('{"error": {"message": "%s"}}' % message).encode("utf-8")
    return HttpError(resp, content)


@pytest.mark.asyncio
async def test_list_primary_maps_people_and_page_token():
    service = MagicMock()
    service.people().connections().list().execute.return_value = {
        "connections": [
            {
                "resourceName": "people/c1",
                "etag": "e1",
                "names": [{"displayName": " Amaka "}],
                "phoneNumbers": [{"value": "0805 137 8960", "canonicalForm": "+2348051378960"}],
            },
            {"resourceName": "people/c2", "phoneNumbers": [{"value": "0805 000 0000"}]},
        ],
        "nextPageToken": "p2",
    }
    page = await GooglePeopleAddressBook(service, "a@x.com").list_primary()
    assert page.next_page_token == "p2"
    first, second = page.records
    assert first.external_id == "people/c1"
    assert first.name == "Amaka"
    assert first.phones == ("+2348051378960",)
    assert first.etag == "e1"
    assert second.name is None
    assert second.phones == ("0805 000 0000",)


@pytest.mark.asyncio
async def test_list_secondary_reads_other_contacts():
    service = MagicMock()
    service.otherContacts().list().execute.return_value = {
        "otherContacts": [{"resourceName": "otherContacts/1", "phoneNumbers": [{"value": "+2348051378960"}]}]
    }
    page = await GooglePeopleAddressBook(service, "a@x.com").list_secondary()
    assert page.records[0].external_id == "otherContacts/1"
    assert page.next_page_token is None


@pytest.mark.asyncio
async def test_create_sends_e164_number():
    service = MagicMock()
    service.people().createContact().execute.return_value = {"resourceName": "people/c9", "etag": "e1"}
    result = await GooglePeopleAddressBook(service, "a@x.com").create("Justice", PHONE)
    assert result.external_id == "people/c9"
    assert result.mode == "created"
    body = service.people().createContact.call_args.kwargs["body"]
    assert body["phoneNumbers"] == [{"value": "+2348051378960"}]
    assert body["names"][0]["displayName"] == "Justice"


@pytest.mark.asyncio
async def test_update_fetches_etag_when_missing():
    service = MagicMock()
    service.people().get().execute.return_value = {"etag": "fresh"}
    service.people().updateContact().execute.return_value = {"resourceName": "people/c1", "etag": "e2"}
    result = await GooglePeopleAddressBook(service, "a@x.com").update("people/c1", "Amaka", PHONE, None)
    assert result.mode == "updated"
    assert result.etag == "e2"
    assert service.people().updateContact.call_args.kwargs["body"]["etag"] == "fresh"


def _queries(service: MagicMock) -> list[str]:
    return [
        c.kwargs["query"]
        for c in service.people().searchContacts.call_args_list
        if "query" in c.kwargs
    ]


@pytest.mark.asyncio
async def test_find_by_phone_warms_up_then_searches_full_spellings():
    service = MagicMock()
    service.people().searchContacts().execute.side_effect = [
        {},
        {"results": [{"person": {"resourceName": "people/c3", "phoneNumbers": [{"value": "+2348099999999"}]}}]},
        {"results": [{"person": {"resourceName": "people/c4", "phoneNumbers": [{"value": "0805 137 8960"}]}}]},
    ]
    record = await GooglePeopleAddressBook(service, "a@x.com").find_by_phone(PHONE)
    assert record.external_id == "people/c4"
    assert _queries(service) == ["", "+2348051378960", "2348051378960"]


@pytest.mark.asyncio
async def test_find_by_phone_warms_up_once_per_book():
    service = MagicMock()
    service.people().searchContacts().execute.return_value = {}
    book = GooglePeopleAddressBook(service, "a@x.com")
    assert await book.find_by_phone(PHONE) is None
    assert await book.find_by_phone(PHONE) is None
    assert _queries(service).count("") == 1
    assert "051378960" not in _queries(service)


@pytest.mark.asyncio
async def test_find_by_phone_skips_untrusted_numbers():
    service = MagicMock()
    assert await GooglePeopleAddressBook(service, "a@x.com").find_by_phone("123") is None


@pytest.mark.asyncio
async def test_write_conflict_is_mapped():
    service = MagicMock()
    service.people().createContact().execute.side_effect = http_error(409, "duplicate")
    with pytest.raises(WriteConflict) as info:
        await GooglePeopleAddressBook(service, "a@x.com").create("Justice", PHONE)
    assert info.value.account == "a@x.com"


@pytest.mark.asyncio
async def test_read_errors_are_external_service_errors_not_conflicts():
    service = MagicMock()
    service.people().connections().list().execute.side_effect = http_error(409, "busy")
    with pytest.raises(ExternalServiceError) as info:
        await GooglePeopleAddressBook(service, "a@x.com").list_primary()
    assert not isinstance(info.value, WriteConflict)
    assert info.value.service == "google-people"


@pytest.mark.asyncio
async def test_server_error_on_write_is_not_a_conflict():
    service = MagicMock()
    service.people().createContact().execute.side_effect = http_error(500, "backend")
    with pytest.raises(ExternalServiceError) as info:
        await GooglePeopleAddressBook(service, "a@x.com").create("Justice", PHONE)
    assert not isinstance(info.value, WriteConflict)


@pytest.mark.asyncio
async def test_refreshed_token_is_written_back():
    creds = Credentials(token="old", refresh_token="r1")
    refreshed: list[tuple] = []

    async def on_refresh(access_token, refresh_token):
        refreshed.append((access_token, refresh_token))

    def execute():
        creds.token = "new"
        return {"connections": []}

    service = MagicMock()
    service.people().connections().list().execute.side_effect = execute
    book = GooglePeopleAddressBook(service, "a@x.com", credentials=creds, on_refresh=on_refresh)
    await book.list_primary()
    await book.list_primary()
    assert refreshed == [("new", "r1")]


@pytest.mark.asyncio
async def test_account_directory_builds_one_book_per_account_and_persists_refresh():
    store = CredentialStore(InMemoryDocumentStore())
    await store.link(OWNER, "a@x.com", access_token="old", refresh_token="r1")
    built: list[Credentials] = []
    service = MagicMock()

    def build_service(creds):
        built.append(creds)
        return service

    directory = GoogleAccountDirectory(
        store, client_id="cid", client_secret="secret", build_service=build_service
    )
    (account,) = await directory.linked_accounts(OWNER)
    book = directory.address_book(OWNER, account)

    def execute():
        built[0].token = "new"
        return {"connections": []}

    service.people().connections().list().execute.side_effect = execute
    await book.list_primary()
    assert built[0].client_id == "cid"
    assert (await store.accounts(OWNER))[0].access_token == "new"
