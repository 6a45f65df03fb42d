"""Conversational capture: ask an unsaved contact for their name, confirm, save.

States and replies come from a flow document (see flows/capture.yaml):
unsaved -> awaiting_name -> awaiting_confirm -> saved, with "no" going back
to awaiting_name. Sessions are persisted through a SessionStore, so a restart
resumes where the contact left off.

Events for one (owner, contact) pair run one at a time: a message that
arrives while the pair is busy waits its turn. State moves under the pair
lock, while the (delayed) replies go out afterwards under a separate delivery
lock, so replies keep their order without holding up the next message.
"""

import asyncio
import logging
import random
import re
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace

from contactsaver.application.decision import SaveStateEngine
from contactsaver.application.dto import AlreadySaved, CaptureOutcome, DeviceContact
from contactsaver.application.ledger import LocalLedger
from contactsaver.application.policies import PHONEBOOK_NAME_ONLY, DeviceNamePolicy
from contactsaver.application.ports import MessageChannel, PreferenceStore, SessionStore
from contactsaver.application.writer import (
    ContactWriter,
    needs_upgrade,
    upgrade_generic_record,
)
from contactsaver.domain import (
    CaptureSession,
    CaptureState,
    ExternalServiceError,
    LedgerRecord,
    OwnerPreferences,
    Provenance,
    ValidationError,
    WriteConflict,
    apply_tag,
    validate_name,
)
from contactsaver.domain.entities import utcnow

logger = logging.getLogger(__name__)

MAX_REPLY_DELAY = 30.0
SEEN_MESSAGE_LIMIT = 1000
SEEN_MESSAGE_KEEP = 500
WELCOME_MESSAGE = "welcome"

_TRAILING_PUNCTUATION = re.compile(r"[\s.!?,]+$")

Pair = tuple[str, str]


@dataclass(frozen=True)
class _Edge:
    next_state: CaptureState
    messages: tuple[str, ...]
    reply_from_result: bool = False


class CaptureStateMachine:
    def __init__(
        self,
        engine: SaveStateEngine,
        ledger: LocalLedger,
        writer: ContactWriter,
        channel: MessageChannel,
        sessions: SessionStore,
        flow: dict,
        *,
        preferences: PreferenceStore | None = None,
        owner_name: str = "",
        exclude: Iterable[str] = (),
        device_names: DeviceNamePolicy = PHONEBOOK_NAME_ONLY,
        generic_name: str | None = None,
        max_reply_delay: float = 0.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._ledger = ledger
        self._writer = writer
        self._channel = channel
        self._sessions = sessions
        self._preferences = preferences
        self._owner_name = owner_name
        self._exclude = set(exclude)
        self._device_names = device_names
        self._generic_name = generic_name
        self._max_reply_delay = min(max(max_reply_delay, 0.0), MAX_REPLY_DELAY)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._pair_locks: dict[Pair, asyncio.Lock] = {}
        self._delivery_locks: dict[Pair, asyncio.Lock] = {}
        self._seen: OrderedDict[tuple[str, str, str], None] = OrderedDict()
        self._edges = _read_edges(flow)
        self._messages = flow.get("messages") or {}
        vocabulary = flow.get("vocabulary") or {}
        self._affirm = {str(w).lower() for w in vocabulary.get("affirm") or ()}
        self._deny = {str(w).lower() for w in vocabulary.get("deny") or ()}

    async def start(
        self,
        owner_key: str,
        contact_key: str,
        *,
        target: str,
        device_contact: DeviceContact | None = None,
        quote: str | None = None,
    ) -> CaptureOutcome:
        """Trigger capture for a contact. No-op when a session already exists."""
        if self._skipped(owner_key, contact_key):
            return CaptureOutcome(state=None, ignored=True)

        async def step() -> CaptureOutcome:
            session = await self._sessions.get(owner_key, contact_key)
            if session is not None:
                return CaptureOutcome(state=session.state, ignored=True)
            return await self._open(owner_key, contact_key, device_contact)

        return await self._run((owner_key, contact_key), target, quote, step)

    async def handle_message(
        self,
        owner_key: str,
        contact_key: str,
        text: str,
        *,
        target: str,
        device_contact: DeviceContact | None = None,
        message_id: str | None = None,
    ) -> CaptureOutcome:
        """Feed one inbound message from the contact into the dialog.

        A message_id is only remembered once its message has been processed, so
        a redelivery after a crash is handled again while a duplicate is not.
        """
        if self._skipped(owner_key, contact_key):
            return CaptureOutcome(state=None, ignored=True)

        async def step() -> CaptureOutcome:
            session = await self._sessions.get(owner_key, contact_key)
            if session is None:
                return await self._open(owner_key, contact_key, device_contact)

            record = await self._ledger.get(owner_key, contact_key)
            if record is not None:
                # Saved by another path (bulk run, device sync) while the dialog was open.
                await self._sessions.delete(owner_key, contact_key)
                return CaptureOutcome(
                    state=CaptureState.SAVED,
                    verdict=AlreadySaved(record.provenance, record.name, record),
                    record=record,
                )

            if session.state == CaptureState.AWAITING_NAME:
                return await self._on_name(session, text)
            if session.state == CaptureState.AWAITING_CONFIRM:
                return await self._on_confirm(session, text)
            return CaptureOutcome(state=session.state, ignored=True)

        return await self._run(
            (owner_key, contact_key), target, message_id, step, message_id=message_id
        )

    async def cancel(self, owner_key: str, contact_key: str) -> bool:
        """Drop an open session without saving."""
        async with self._pair_lock((owner_key, contact_key)):
            return await self._sessions.delete(owner_key, contact_key)

    async def _run(
        self,
        pair: Pair,
        target: str,
        quote: str | None,
        step: Callable[[], Awaitable[CaptureOutcome]],
        *,
        message_id: str | None = None,
    ) -> CaptureOutcome:
        seen_key = (*pair, message_id) if message_id else None
        async with self._pair_lock(pair):
            if seen_key is not None and seen_key in self._seen:
                return CaptureOutcome(state=None, ignored=True)
            outcome = await step()
            if seen_key is not None:
                self._remember(seen_key)
            delivery = self._delivery_locks.setdefault(pair, asyncio.Lock())
            # Queue behind earlier replies before letting the next event in.
            await delivery.acquire()
        try:
            await self._deliver(target, outcome.sent, quote)
        finally:
            delivery.release()
        return outcome

    async def _open(
        self,
        owner_key: str,
        contact_key: str,
        device_contact: DeviceContact | None,
    ) -> CaptureOutcome:
        preferences = await self._preferences_for(owner_key)
        if not preferences.autosave:
            return CaptureOutcome(state=None, ignored=True)

        verdict = await self._engine.decide(owner_key, contact_key, device_contact)
        if isinstance(verdict, AlreadySaved):
            record = await self._maybe_upgrade(
                owner_key, verdict.record, device_contact, preferences.old_tag
            )
            return CaptureOutcome(state=CaptureState.SAVED, verdict=verdict, record=record)

        if verdict.inconclusive:
            logger.info(
                "Save state inconclusive for %s/%s (%s); prompting anyway",
                owner_key,
                contact_key,
                verdict.reason,
            )
        edge = self._edge(CaptureState.UNSAVED, "NOT_SAVED")
        session = CaptureSession(owner_key=owner_key, contact_key=contact_key, state=edge.next_state)
        await self._sessions.put(session)
        overrides = {WELCOME_MESSAGE: preferences.welcome} if preferences.welcome else {}
        sent = self._compose(edge, {}, overrides=overrides)
        return CaptureOutcome(state=session.state, sent=sent, verdict=verdict)

    async def _on_name(self, session: CaptureSession, text: str) -> CaptureOutcome:
        try:
            name = validate_name(text)
        except ValidationError as e:
            edge = self._edge(session.state, "NAME_INVALID")
            if edge.next_state != session.state:
                session = replace(session, state=edge.next_state)
                await self._sessions.put(session)
            sent = self._compose(edge, {}, result=e.reason)
            return CaptureOutcome(state=session.state, sent=sent, error=e.reason)

        edge = self._edge(session.state, "NAME_VALID")
        session = replace(session, state=edge.next_state, pending_name=name, asked_at=utcnow())
        await self._sessions.put(session)
        sent = self._compose(edge, {"name": name})
        return CaptureOutcome(state=session.state, sent=sent)

    async def _on_confirm(self, session: CaptureSession, text: str) -> CaptureOutcome:
        answer = self._yes_no(text)
        if answer is None:
            return CaptureOutcome(state=session.state, ignored=True)
        if answer is False or not session.pending_name:
            edge = self._edge(session.state, "DENY")
            session = replace(session, state=edge.next_state, pending_name=None)
            await self._sessions.put(session)
            sent = self._compose(edge, {})
            return CaptureOutcome(state=session.state, sent=sent)

        owner_key, contact_key = session.owner_key, session.contact_key
        name = session.pending_name
        preferences = await self._preferences_for(owner_key)
        saved_name = apply_tag(name, preferences.new_tag)
        try:
            result = await self._writer.upsert(
                owner_key, saved_name, contact_key, external_id=session.external_id
            )
        except ExternalServiceError as e:
            event = "WRITE_CONFLICT" if isinstance(e, WriteConflict) else "WRITE_FAILED"
            logger.warning("Autosave failed for %s/%s: %s", owner_key, contact_key, e)
            edge = self._edge(session.state, event)
            sent = self._compose(
                edge,
                {"name": name, "error": e.message, "guidance": WriteConflict.guidance},
            )
            return CaptureOutcome(state=session.state, sent=sent, error=e.message)

        # A retry after a failed ledger write must update, not create again.
        await self._sessions.put(replace(session, external_id=result.external_id))
        record = LedgerRecord(
            phone_key=contact_key,
            name=saved_name,
            raw_name=name,
            provenance=Provenance.DIALOG_CONFIRMED,
            external_id=result.external_id,
            etag=result.etag,
        )
        await self._ledger.write(owner_key, record)
        await self._sessions.delete(owner_key, contact_key)

        edge = self._edge(session.state, "AFFIRM")
        sent = self._compose(
            edge,
            {
                "name": name,
                "saved_at": record.saved_at.strftime("%Y-%m-%d %H:%M UTC"),
                "owner_name": self._owner_name,
            },
        )
        logger.info("Contact %s saved for %s as %r", contact_key, owner_key, saved_name)
        return CaptureOutcome(state=edge.next_state, sent=sent, record=record)

    async def _maybe_upgrade(
        self,
        owner_key: str,
        record: LedgerRecord,
        device_contact: DeviceContact | None,
        tag: str,
    ) -> LedgerRecord:
        display_name = self._device_names.display_name(device_contact)
        if not needs_upgrade(record, display_name, self._generic_name):
            return record
        try:
            return await upgrade_generic_record(
                self._writer, self._ledger, owner_key, record, display_name, tag
            )
        except ExternalServiceError as e:
            logger.warning("Name upgrade failed for %s/%s: %s", owner_key, record.phone_key, e)
            return record

    async def _preferences_for(self, owner_key: str) -> OwnerPreferences:
        if self._preferences is None:
            return OwnerPreferences()
        return await self._preferences.get(owner_key)

    def _edge(self, state: CaptureState, event: str) -> _Edge:
        edge = self._edges.get((state, event))
        if edge is None:
            raise ValueError(f"Flow has no '{event}' edge from '{state.value}'")
        return edge

    def _compose(
        self,
        edge: _Edge,
        template_vars: dict,
        *,
        result: str | None = None,
        overrides: dict[str, str] | None = None,
    ) -> tuple[str, ...]:
        texts = [result] if edge.reply_from_result and result else []
        for message_id in edge.messages:
            if overrides and overrides.get(message_id):
                texts.append(overrides[message_id])
            else:
                texts.append(self._render(message_id, template_vars))
        return tuple(t for t in texts if t)

    async def _deliver(self, target: str, texts: tuple[str, ...], quote: str | None) -> None:
        for text in texts:
            if self._max_reply_delay > 0:
                await self._sleep(self._rng.uniform(0, self._max_reply_delay))
            try:
                await self._channel.send(target, text, quote=quote)
            except Exception as e:
                logger.warning("Send to %s failed: %s", target, e)

    def _render(self, message_id: str, template_vars: dict) -> str:
        template = self._messages.get(message_id) or message_id
        if isinstance(template, list):
            template = self._rng.choice(template) if template else message_id
        text = str(template)
        for k, v in template_vars.items():
            value = self._channel.escape(str(v)) if v is not None else ""
            text = text.replace("{" + k + "}", value)
        return text

    def _yes_no(self, text: str) -> bool | None:
        word = _TRAILING_PUNCTUATION.sub("", (text or "").strip().lower())
        if word in self._affirm:
            return True
        if word in self._deny:
            return False
        return None

    def _skipped(self, owner_key: str, contact_key: str) -> bool:
        return contact_key == owner_key or contact_key in self._exclude

    def _pair_lock(self, pair: Pair) -> asyncio.Lock:
        return self._pair_locks.setdefault(pair, asyncio.Lock())

    def _remember(self, seen_key: tuple[str, str, str]) -> None:
        self._seen[seen_key] = None
        if len(self._seen) > SEEN_MESSAGE_LIMIT:
            for _ in range(SEEN_MESSAGE_KEEP):
                self._seen.popitem(last=False)


def _read_edges(flow: dict) -> dict[tuple[CaptureState, str], _Edge]:
    edges: dict[tuple[CaptureState, str], _Edge] = {}
    node_ids = set()
    for node in flow.get("nodes") or []:
        node_ids.add(node.get("id"))
        for edge in node.get("edges") or []:
            edges[(CaptureState(node["id"]), edge["event"])] = _Edge(
                next_state=CaptureState(edge["next"]),
                messages=tuple(edge.get("messages") or ()),
                reply_from_result=bool(edge.get("reply_from_result")),
            )
    missing = {state.value for state in CaptureState} - node_ids
    if missing:
        raise ValueError(f"Capture flow is missing states: {sorted(missing)}")
    return edges
