"""
FastAPI backend: owner REST API and Telegram webhook.
Run with uvicorn: uvicorn api.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import replace

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.flow_loader import load_flow
from api.telegram_handler import handle_update
from api.wiring import Services, build_services, store_factory
from contactsaver.application import AlreadySaved, BulkCandidate, DeviceContact
from contactsaver.domain import (
    ExternalServiceError,
    InvalidNumber,
    LedgerRecord,
    OwnerPreferences,
    ValidationError,
    WriteConflict,
)
from contactsaver.domain.entities import utcnow
from contactsaver.domain.numbers import canonicalize
from contactsaver.infrastructure import Settings, load_env_file

load_env_file()

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)


def _services_from_env(app: FastAPI) -> Services:
    settings = Settings.from_env()
    driver = None
    if settings.storage_backend == "neo4j":
        from neo4j import GraphDatabase

        from contactsaver.infrastructure.persistence import ensure_document_constraint

        driver = GraphDatabase.driver(
            settings.neo4j_uri, auth=(settings.neo4j_user, settings.neo4j_password)
        )
        ensure_document_constraint(driver)
        app.state.driver = driver
    channel = None
    if settings.telegram_bot_token:
        from telegram import Bot

        from contactsaver.infrastructure.telegram_channel import TelegramChannel

        channel = TelegramChannel(Bot(token=settings.telegram_bot_token))
    else:
        logger.error("TELEGRAM_BOT_TOKEN not set in backend environment")
    return build_services(
        settings,
        load_flow(settings.flow_path),
        stores=store_factory(settings, driver),
        channel=channel,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.driver = None
    if getattr(app.state, "services", None) is None:
        app.state.services = _services_from_env(app)
    logger.info(
        "Telegram webhook: POST /webhook/telegram. "
        "Set webhook to a public HTTPS URL (e.g. ngrok)."
    )
    try:
        yield
    finally:
        if getattr(app.state, "driver", None) is not None:
            app.state.driver.close()


app = FastAPI(title="Contactsaver API", lifespan=lifespan)


def get_services(request: Request) -> Services:
    return request.app.state.services


# --- Error mapping ---


@app.exception_handler(InvalidNumber)
async def invalid_number_handler(request: Request, exc: InvalidNumber):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.reason})


@app.exception_handler(WriteConflict)
async def write_conflict_handler(request: Request, exc: WriteConflict):
    return JSONResponse(
        status_code=409, content={"detail": str(exc), "guidance": exc.guidance}
    )


@app.exception_handler(ExternalServiceError)
async def external_error_handler(request: Request, exc: ExternalServiceError):
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "service": exc.service, "account": exc.account},
    )


# --- REST: health ---


@app.get("/health")
def health():
    return {"status": "ok"}


# --- REST: contacts ---


def _record_out(record: LedgerRecord) -> dict:
    return record.to_dict()


@app.get("/owners/{owner}/contacts")
async def list_contacts(owner: str, request: Request):
    services = get_services(request)
    records = await services.ledger.records(canonicalize(owner))
    return [_record_out(r) for r in sorted(records.values(), key=lambda r: r.saved_at)]


@app.get("/owners/{owner}/contacts/{phone}")
async def check_contact(owner: str, phone: str, request: Request):
    """One-off save-state check (ledger, directory, then a single remote lookup)."""
    services = get_services(request)
    verdict = await services.engine.decide(canonicalize(owner), canonicalize(phone))
    if isinstance(verdict, AlreadySaved):
        return {
            "saved": True,
            "provenance": verdict.provenance.value,
            "name": verdict.name,
            "external_id": verdict.record.external_id,
        }
    return {"saved": False, "inconclusive": verdict.inconclusive, "reason": verdict.reason}


@app.delete("/owners/{owner}/contacts/{phone}")
async def delete_contact(owner: str, phone: str, request: Request, external: bool = False):
    """Forget a contact. external=true also deletes the address-book record."""
    services = get_services(request)
    owner_key = canonicalize(owner)
    phone_key = canonicalize(phone)
    record = await services.ledger.get(owner_key, phone_key)
    if record is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    deleted_external = False
    if external and record.external_id:
        deleted_external = await services.writer.delete(owner_key, record.external_id)
    await services.ledger.delete(owner_key, phone_key)
    return {"deleted": _record_out(record), "external_deleted": deleted_external}


# --- REST: directory ---


@app.get("/owners/{owner}/directory")
async def directory_stats(owner: str, request: Request):
    services = get_services(request)
    merged = await services.directory.get(canonicalize(owner))
    if merged is None:
        raise HTTPException(status_code=404, detail="No linked accounts for this owner")
    return {
        "unique_numbers": len(merged),
        "built_at": merged.built_at.isoformat(),
        "accounts": [
            {
                "account": s.account,
                "primary_count": s.primary_count,
                "secondary_count": s.secondary_count,
                "unique_keys": s.unique_keys,
                "secondary_failed": s.secondary_failed,
                "error": s.error,
            }
            for s in merged.account_stats
        ],
    }


@app.post("/owners/{owner}/directory/invalidate")
def invalidate_directory(owner: str, request: Request):
    get_services(request).directory.invalidate(canonicalize(owner))
    return {"invalidated": True}


# --- REST: linked accounts ---


class LinkAccountBody(BaseModel):
    account_id: str
    access_token: str | None = None
    refresh_token: str | None = None


@app.get("/owners/{owner}/accounts")
async def list_accounts(owner: str, request: Request):
    services = get_services(request)
    accounts = await services.credentials.accounts(canonicalize(owner), usable_only=False)
    return [
        {
            "account_id": a.account_id,
            "linked_at": a.linked_at.isoformat(),
            "usable": a.usable,
        }
        for a in accounts
    ]


@app.post("/owners/{owner}/accounts")
async def link_account(owner: str, body: LinkAccountBody, request: Request):
    services = get_services(request)
    owner_key = canonicalize(owner)
    if not body.access_token and not body.refresh_token:
        raise HTTPException(status_code=400, detail="access_token or refresh_token is required")
    try:
        account = await services.credentials.link(
            owner_key,
            body.account_id,
            access_token=body.access_token,
            refresh_token=body.refresh_token,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    services.directory.invalidate(owner_key)
    return JSONResponse(
        content={"account_id": account.account_id, "linked_at": account.linked_at.isoformat()},
        status_code=201,
    )


@app.delete("/owners/{owner}/accounts/{account_id}")
async def unlink_account(owner: str, account_id: str, request: Request):
    services = get_services(request)
    owner_key = canonicalize(owner)
    if not await services.credentials.unlink(owner_key, account_id):
        raise HTTPException(status_code=404, detail="Account not linked")
    services.directory.invalidate(owner_key)
    return {"unlinked": account_id.strip().lower()}


# --- REST: preferences ---


class PreferencesBody(BaseModel):
    autosave: bool | None = None
    new_tag: str | None = None
    old_tag: str | None = None
    welcome: str | None = None


def _preferences_out(preferences: OwnerPreferences) -> dict:
    return preferences.to_dict()


@app.get("/owners/{owner}/preferences")
async def get_preferences(owner: str, request: Request):
    services = get_services(request)
    return _preferences_out(await services.preferences.get(canonicalize(owner)))


@app.patch("/owners/{owner}/preferences")
async def update_preferences(owner: str, body: PreferencesBody, request: Request):
    """Change autosave on/off, name tags or the welcome text. Empty strings clear a value."""
    services = get_services(request)
    owner_key = canonicalize(owner)
    current = await services.preferences.get(owner_key)
    changes = body.model_dump(exclude_none=True)
    try:
        updated = replace(current, **changes, updated_at=utcnow())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await services.preferences.put(owner_key, updated)
    logger.info("Preferences for %s updated: %s", owner_key, sorted(changes))
    return _preferences_out(updated)


# --- REST: bulk save ---


class CandidateBody(BaseModel):
    handle: str
    phonebook_name: str | None = None
    push_name: str | None = None
    verified_name: str | None = None


class BulkBody(BaseModel):
    candidates: list[CandidateBody] = Field(default_factory=list)
    dry_run: bool = False
    resume: bool = False


@app.post("/owners/{owner}/bulk")
async def bulk_save(owner: str, body: BulkBody, request: Request):
    services = get_services(request)
    candidates = [
        BulkCandidate(
            handle=c.handle,
            device_contact=DeviceContact(
                phonebook_name=c.phonebook_name,
                push_name=c.push_name,
                verified_name=c.verified_name,
            ),
        )
        for c in body.candidates
    ]
    report = await services.bulk.run(
        canonicalize(owner), candidates, dry_run=body.dry_run, resume=body.resume
    )
    return report.to_dict()


# --- Telegram webhook ---


@app.post("/webhook/telegram")
async def webhook_telegram(request: Request):
    """Handle Telegram updates. Set Telegram webhook URL to https://<your-domain>/webhook/telegram"""
    from telegram import Update

    services = get_services(request)
    try:
        body = await request.json()
    except Exception as e:
        logger.warning("Telegram webhook body error: %s", e)
        raise HTTPException(status_code=400, detail="Invalid JSON") from e
    try:
        update = Update.de_json(body, None)
    except Exception as e:
        logger.warning("Telegram webhook parse error: %s", e)
        raise HTTPException(status_code=400, detail="Invalid update") from e
    if update is None:
        return {}
    outcome = await handle_update(services, update)
    if outcome is None or outcome.state is None:
        return {}
    return {"state": outcome.state.value, "ignored": outcome.ignored}
