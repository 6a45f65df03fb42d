"""Route one Telegram update into the capture dialog. Shared by webhook and polling."""

import logging

from telegram import Update

from api.wiring import Services
from contactsaver.application import CaptureOutcome
from contactsaver.domain import UnresolvedIdentity
from contactsaver.infrastructure.telegram_channel import (
    device_contact_for,
    handle_for,
    remember_shared_contact,
)

logger = logging.getLogger(__name__)


async def handle_update(services: Services, update: Update) -> CaptureOutcome | None:
    """Feed a private message into the capture machine. None when the update is not for it."""
    capture = services.capture
    owner_key = services.settings.owner_number
    if capture is None or not owner_key:
        logger.error("Capture dialog not configured (channel or OWNER_NUMBER missing)")
        return None
    message = update.message
    sender = update.effective_user
    if message is None or sender is None or sender.is_bot:
        return None
    if message.chat.type != "private":
        return None

    chat_id = str(message.chat.id)
    message_id = str(message.message_id)
    shared = remember_shared_contact(services.identity_cache, sender, message.contact)
    try:
        contact_key = await services.identity.resolve(handle_for(sender.id))
    except UnresolvedIdentity:
        if not (await services.preferences.get(owner_key)).autosave:
            return None
        text = (services.flow.get("messages") or {}).get("share_contact")
        if text:
            try:
                await services.channel.send(chat_id, text)
            except Exception as e:
                logger.warning("Send to %s failed: %s", chat_id, e)
        return None

    device_contact = device_contact_for(sender)
    if shared is not None:
        return await capture.start(
            owner_key,
            contact_key,
            target=chat_id,
            device_contact=device_contact,
            quote=message_id,
        )
    return await capture.handle_message(
        owner_key,
        contact_key,
        message.text or "",
        target=chat_id,
        device_contact=device_contact,
        message_id=message_id,
    )
