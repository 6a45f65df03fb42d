"""Telegram transport: outbound MessageChannel plus helpers for inbound updates."""

import logging

from telegram import Bot, Contact, User
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown

from contactsaver.application.dto import DeviceContact
from contactsaver.application.ports import IdentityCache
from contactsaver.domain.numbers import try_canonicalize

logger = logging.getLogger(__name__)

HANDLE_PREFIX = "tg:"


def handle_for(user_id: int | str) -> str:
    """Opaque identity handle for a Telegram user id."""
    return f"{HANDLE_PREFIX}{user_id}"


def display_name(user: User | None) -> str | None:
    """Name the Telegram user chose for themselves (first + last, else username)."""
    if user is None:
        return None
    first = (user.first_name or "").strip()
    last = (user.last_name or "").strip()
    if first or last:
        return f"{first} {last}".strip()
    username = (user.username or "").strip()
    return username or None


def device_contact_for(user: User | None) -> DeviceContact:
    """Telegram only tells us the user's own chosen name, so it is never proof of a save."""
    return DeviceContact(push_name=display_name(user))


def remember_shared_contact(
    cache: IdentityCache, sender: User | None, contact: Contact | None
) -> str | None:
    """Seed the identity cache from a contact card the sender shared about themselves.

    Cards describing somebody else are ignored. Returns the PhoneKey when remembered.
    """
    if sender is None or contact is None:
        return None
    if contact.user_id is None or contact.user_id != sender.id:
        return None
    phone = try_canonicalize(contact.phone_number)
    if phone is None:
        return None
    cache.remember(handle_for(sender.id), phone)
    logger.info("Identity cached for Telegram user %s", sender.id)
    return phone


class TelegramChannel:
    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, target: str, text: str, *, quote: str | None = None) -> str | None:
        reply_to = int(quote) if quote and quote.isdigit() else None
        message = await self._bot.send_message(
            chat_id=int(target),
            text=text,
            parse_mode=ParseMode.MARKDOWN,
            reply_to_message_id=reply_to,
        )
        return str(message.message_id)

    def escape(self, text: str) -> str:
        """Escape Markdown so values such as FAILED_PRECONDITION render as sent."""
        return escape_markdown(text, version=1)
