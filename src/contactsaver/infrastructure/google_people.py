"""Google People API adapter: one AddressBook per linked Google account.

Primary bucket = the account's contacts (people.connections), secondary
bucket = "other contacts". The discovery client is synchronous, so every
request runs in a worker thread.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from contactsaver.application.dto import Page, PersonRecord, WriteResult
from contactsaver.domain import (
    ExternalServiceError,
    LinkedAccountCredential,
    WriteConflict,
)
from contactsaver.domain.numbers import trusted_fuzzy_key
from contactsaver.infrastructure.credentials import CredentialStore
from contactsaver.infrastructure.phone import search_forms, to_e164

logger = logging.getLogger(__name__)

SERVICE = "google-people"
TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/contacts"]
PAGE_SIZE = 1000
SEARCH_PAGE_SIZE = 10
PERSON_FIELDS = "names,phoneNumbers"

OnRefresh = Callable[[str | None, str | None], Awaitable[None]]


def _person_body(name: str, phone: str) -> dict:
    name = (name or "").strip()
    return {
        "names": [{"displayName": name, "givenName": name}],
        "phoneNumbers": [{"value": to_e164(phone)}],
    }


def _to_record(person: dict) -> PersonRecord:
    names = person.get("names") or []
    name = (names[0].get("displayName") or "").strip() if names else ""
    phones = tuple(
        p.get("canonicalForm") or p.get("value")
        for p in person.get("phoneNumbers") or []
        if p.get("canonicalForm") or p.get("value")
    )
    return PersonRecord(
        external_id=person.get("resourceName") or "",
        name=name or None,
        phones=phones,
        etag=person.get("etag"),
    )


def _is_conflict(e: HttpError) -> bool:
    status = getattr(e.resp, "status", None)
    if status in (409, 412):
        return True
    if status == 400:
        detail = str(e).lower()
        return "etag" in detail or "failed_precondition" in detail or "duplicate" in detail
    return False


class GooglePeopleAddressBook:
    def __init__(
        self,
        service: Any,
        account_id: str,
        *,
        credentials: Credentials | None = None,
        on_refresh: OnRefresh | None = None,
    ) -> None:
        self._service = service
        self._account_id = account_id
        self._credentials = credentials
        self._on_refresh = on_refresh
        self._last_token = credentials.token if credentials is not None else None
        self._search_warmed = False

    async def list_primary(self, page_token: str | None = None) -> Page:
        request = self._service.people().connections().list(
            resourceName="people/me",
            pageSize=PAGE_SIZE,
            personFields=PERSON_FIELDS,
            pageToken=page_token,
        )
        data = await self._execute(request)
        return Page(
            records=[_to_record(p) for p in data.get("connections") or []],
            next_page_token=data.get("nextPageToken"),
        )

    async def list_secondary(self, page_token: str | None = None) -> Page:
        request = self._service.otherContacts().list(
            pageSize=PAGE_SIZE,
            readMask=PERSON_FIELDS,
            pageToken=page_token,
        )
        data = await self._execute(request)
        return Page(
            records=[_to_record(p) for p in data.get("otherContacts") or []],
            next_page_token=data.get("nextPageToken"),
        )

    async def create(self, name: str, phone: str) -> WriteResult:
        request = self._service.people().createContact(body=_person_body(name, phone))
        data = await self._execute(request, writing=True)
        return WriteResult(external_id=data["resourceName"], etag=data.get("etag"))

    async def update(
        self, external_id: str, name: str, phone: str, etag: str | None
    ) -> WriteResult:
        if not etag:
            current = await self._execute(
                self._service.people().get(
                    resourceName=external_id, personFields="names,phoneNumbers,metadata"
                )
            )
            etag = current.get("etag")
        body = {**_person_body(name, phone), "etag": etag}
        request = self._service.people().updateContact(
            resourceName=external_id,
            updatePersonFields=PERSON_FIELDS,
            body=body,
        )
        data = await self._execute(request, writing=True)
        return WriteResult(
            external_id=data.get("resourceName") or external_id,
            etag=data.get("etag"),
            mode="updated",
        )

    async def delete(self, external_id: str) -> bool:
        await self._execute(
            self._service.people().deleteContact(resourceName=external_id), writing=True
        )
        return True

    async def find_by_phone(self, phone: str) -> PersonRecord | None:
        """searchContacts matches prefixes, so try each full spelling of the number.

        The search cache must be warmed with an empty query before it answers.
        """
        key = trusted_fuzzy_key(phone)
        if key is None:
            return None
        if not self._search_warmed:
            await self._execute(self._search(""))
            self._search_warmed = True
        for query in search_forms(phone):
            data = await self._execute(self._search(query))
            for result in data.get("results") or []:
                record = _to_record(result.get("person") or {})
                if any(trusted_fuzzy_key(p) == key for p in record.phones):
                    return record
        return None

    def _search(self, query: str) -> Any:
        return self._service.people().searchContacts(
            query=query, readMask=PERSON_FIELDS, pageSize=SEARCH_PAGE_SIZE
        )

    async def _execute(self, request: Any, *, writing: bool = False) -> dict:
        try:
            data = await asyncio.to_thread(request.execute)
        except HttpError as e:
            if writing and _is_conflict(e):
                raise WriteConflict(SERVICE, str(e), account=self._account_id) from e
            raise ExternalServiceError(SERVICE, str(e), account=self._account_id) from e
        except GoogleAuthError as e:
            raise ExternalServiceError(SERVICE, str(e), account=self._account_id) from e
        await self._store_refreshed_token()
        return data or {}

    async def _store_refreshed_token(self) -> None:
        if self._credentials is None or self._on_refresh is None:
            return
        token = self._credentials.token
        if token and token != self._last_token:
            self._last_token = token
            logger.info("Access token refreshed for %s", self._account_id)
            await self._on_refresh(token, self._credentials.refresh_token)


class GoogleAccountDirectory:
    """AccountDirectory over the credential store, building one People client per account."""

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        client_id: str,
        client_secret: str,
        build_service: Callable[[Credentials], Any] | None = None,
    ) -> None:
        self._credentials = credentials
        self._client_id = client_id
        self._client_secret = client_secret
        self._build_service = build_service or _build_people_service

    async def linked_accounts(self, owner_key: str) -> list[LinkedAccountCredential]:
        return await self._credentials.accounts(owner_key)

    def address_book(
        self, owner_key: str, account: LinkedAccountCredential
    ) -> GooglePeopleAddressBook:
        creds = Credentials(
            token=account.access_token,
            refresh_token=account.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=SCOPES,
        )

        async def on_refresh(access_token: str | None, refresh_token: str | None) -> None:
            await self._credentials.record_refresh(
                owner_key,
                account.account_id,
                access_token=access_token,
                refresh_token=refresh_token,
            )

        return GooglePeopleAddressBook(
            self._build_service(creds),
            account.account_id,
            credentials=creds,
            on_refresh=on_refresh,
        )


def _build_people_service(creds: Credentials) -> Any:
    return build("people", "v1", credentials=creds, cache_discovery=False)
