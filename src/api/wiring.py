"""Composition root: build the use cases from Settings and adapters."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from contactsaver.application import (
    AccountDirectory,
    BulkRunner,
    CaptureStateMachine,
    ContactWriter,
    DirectoryAggregator,
    DocumentStore,
    IdentityResolver,
    LocalLedger,
    MessageChannel,
    RemoteIdentityLookup,
    SaveStateEngine,
)
from contactsaver.infrastructure import (
    CredentialStore,
    DocumentPreferenceStore,
    DocumentSessionStore,
    InMemoryDocumentStore,
    InMemoryIdentityCache,
    JsonFileDocumentStore,
    Neo4jDocumentStore,
    Settings,
)

logger = logging.getLogger(__name__)

StoreFactory = Callable[[str], DocumentStore]


@dataclass
class Services:
    settings: Settings
    flow: dict
    credentials: CredentialStore
    preferences: DocumentPreferenceStore
    accounts: AccountDirectory
    ledger: LocalLedger
    directory: DirectoryAggregator
    writer: ContactWriter
    engine: SaveStateEngine
    identity_cache: InMemoryIdentityCache
    identity: IdentityResolver
    bulk: BulkRunner
    channel: MessageChannel | None = None
    capture: CaptureStateMachine | None = None


def store_factory(settings: Settings, driver: object | None = None) -> StoreFactory:
    """Return name -> DocumentStore for the configured backend."""
    if settings.storage_backend == "neo4j":
        if driver is None:
            raise ValueError("STORAGE_BACKEND=neo4j needs a Neo4j driver")
        return lambda name: Neo4jDocumentStore(driver, name)
    if settings.storage_backend == "json":
        return lambda name: JsonFileDocumentStore(settings.data_dir / f"{name}.json")
    return lambda name: InMemoryDocumentStore()


def build_services(
    settings: Settings,
    flow: dict,
    *,
    stores: StoreFactory,
    accounts: AccountDirectory | None = None,
    channel: MessageChannel | None = None,
    remote_identity: RemoteIdentityLookup | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
) -> Services:
    credentials = CredentialStore(stores("credentials"))
    preferences = DocumentPreferenceStore(stores("preferences"))
    if accounts is None:
        from contactsaver.infrastructure.google_people import GoogleAccountDirectory

        accounts = GoogleAccountDirectory(
            credentials,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )

    directory = DirectoryAggregator(
        accounts, ttl=settings.directory_ttl, timeout=settings.external_timeout
    )
    ledger = LocalLedger(stores("ledger"), on_write=directory.invalidate)
    writer = ContactWriter(accounts, timeout=settings.external_timeout)
    engine = SaveStateEngine(ledger, directory)
    identity_cache = InMemoryIdentityCache()
    identity = IdentityResolver(
        identity_cache, remote_identity, timeout=settings.external_timeout
    )
    exclude = set(settings.exclude_numbers)
    bulk = BulkRunner(
        identity,
        engine,
        ledger,
        writer,
        directory,
        concurrency=settings.bulk_concurrency,
        write_delay=settings.bulk_write_delay,
        generic_name=settings.generic_name,
        progress=stores("bulk_progress"),
        preferences=preferences,
        exclude=exclude,
        sleep=sleep,
    )
    capture = None
    if channel is not None:
        capture = CaptureStateMachine(
            engine,
            ledger,
            writer,
            channel,
            DocumentSessionStore(stores("sessions")),
            flow,
            preferences=preferences,
            owner_name=settings.owner_name,
            exclude=exclude,
            generic_name=settings.generic_name,
            max_reply_delay=settings.max_reply_delay,
            rng=rng,
            sleep=sleep,
        )
    else:
        logger.warning("No message channel configured; capture dialog disabled")
    return Services(
        settings=settings,
        flow=flow,
        credentials=credentials,
        preferences=preferences,
        accounts=accounts,
        ledger=ledger,
        directory=directory,
        writer=writer,
        engine=engine,
        identity_cache=identity_cache,
        identity=identity,
        bulk=bulk,
        channel=channel,
        capture=capture,
    )
