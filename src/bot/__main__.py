"""
Local development bot: Telegram polling + capture dialog.
Run: python -m bot (from repo root, with .env or env vars set).
"""
import logging

from contactsaver.infrastructure import Settings, load_env_file

load_env_file()

from telegram import Update
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from api.flow_loader import load_flow
from api.telegram_handler import handle_update
from api.wiring import Services, build_services, store_factory
from contactsaver.infrastructure.telegram_channel import TelegramChannel

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=logging.INFO,
)
logger = logging.getLogger(__name__)

SERVICES_KEY = "services"


def _get_services(context: ContextTypes.DEFAULT_TYPE) -> Services:
    return context.bot_data[SERVICES_KEY]


async def on_private_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    outcome = await handle_update(_get_services(context), update)
    if outcome is not None and outcome.state is not None:
        logger.info("Capture state for chat %s: %s", update.effective_chat.id, outcome.state.value)


def main() -> None:
    settings = Settings.from_env()
    if not settings.use_polling:
        raise SystemExit(
            "For production use the FastAPI backend: uvicorn api.main:app "
            "and set the Telegram webhook to https://<your-domain>/webhook/telegram. "
            "For local dev with polling set USE_POLLING=1 and run python -m bot again."
        )
    if not settings.telegram_bot_token:
        raise SystemExit(
            "Set TELEGRAM_BOT_TOKEN (e.g. in .env). Get a token from @BotFather."
        )
    if not settings.owner_number:
        raise SystemExit("Set OWNER_NUMBER to the phone number whose contacts are saved.")
    if settings.storage_backend == "neo4j":
        raise SystemExit("The polling bot supports STORAGE_BACKEND=json or memory only.")

    app = Application.builder().token(settings.telegram_bot_token).build()
    app.bot_data[SERVICES_KEY] = build_services(
        settings,
        load_flow(settings.flow_path),
        stores=store_factory(settings),
        channel=TelegramChannel(app.bot),
    )
    app.add_handler(
        MessageHandler(
            filters.ChatType.PRIVATE & (filters.TEXT | filters.CONTACT) & ~filters.COMMAND,
            on_private_message,
        )
    )
    logger.info("Bot running (polling, dev) for owner %s", settings.owner_number)
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
