"""Tests for the Telegram transport helpers."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram import Contact, User
from telegram.constants import ParseMode

from contactsaver.infrastructure import InMemoryIdentityCache
from contactsaver.infrastructure.telegram_channel import (
    TelegramChannel,
    device_contact_for,
    display_name,
    handle_for,
    remember_shared_contact,
)


def test_display_name_prefers_full_name_then_username():
    assert display_name(User(1, "Justice", False, last_name="Tech")) == "Justice Tech"
    assert display_name(User(1, "", False, username="jtech")) == "jtech"
    assert display_name(None) is None


def test_device_contact_never_carries_a_phonebook_name():
    contact = device_contact_for(User(1, "Justice", False))
    assert contact.push_name == "Justice"
    assert contact.phonebook_name is None


def test_own_contact_card_is_remembered():
    cache = InMemoryIdentityCache()
    sender = User(42, "Justice", False)
    card = Contact("+234 805 137 8960", "Justice", user_id=42)
    assert remember_shared_contact(cache, sender, card) == "2348051378960"
    assert cache.phone_for(handle_for(42)) == "2348051378960"


def test_someone_elses_card_is_ignored():
    cache = InMemoryIdentityCache()
    sender = User(42, "Justice", False)
    card = Contact("+2348051378960", "Amaka", user_id=7)
    assert remember_shared_contact(cache, sender, card) is None
    assert cache.phone_for(handle_for(42)) is None


def test_card_with_bad_number_is_ignored():
    cache = InMemoryIdentityCache()
    sender = User(42, "Justice", False)
    assert remember_shared_contact(cache, sender, Contact("12", "Justice", user_id=42)) is None


@pytest.mark.asyncio
async def test_send_uses_markdown_and_quotes_the_trigger():
    bot = MagicMock()
    bot.send_message = AsyncMock(return_value=MagicMock(message_id=99))
    message_id = await TelegramChannel(bot).send("555", "*Hi*", quote="12")
    assert message_id == "99"
    bot.send_message.assert_awaited_once_with(
        chat_id=555,
        text="*Hi*",
        parse_mode=ParseMode.MARKDOWN,
        reply_to_message_id=12,
    )


def test_escape_protects_markdown_characters():
    channel = TelegramChannel(MagicMock())
    assert channel.escape("FAILED_PRECONDITION") == "FAILED\\_PRECONDITION"
    assert channel.escape("a*b `c` [d]") == "a\\*b \\`c\\` \\[d]"
    assert channel.escape("Justice Tech") == "Justice Tech"
