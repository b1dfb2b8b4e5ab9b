import asyncio
from datetime import timedelta

import structlog
import uvicorn
from aiogram import Bot
from aiogram.client.default import DefaultBotProperties

from .api import create_app
from .bot import build_dispatcher
from .config import Settings
from .datastore import Datastore
from .logging import configure_logging

logger = structlog.get_logger(__name__)


async def poll(settings: Settings):
    store = Datastore.from_url(settings.redis_url)
    bot = Bot(
        token=settings.bot_token,  # type: ignore[arg-type]
        default=DefaultBotProperties(parse_mode="HTML"),
    )
    dp = build_dispatcher(
        store, settings.whitelist, timedelta(seconds=settings.skip_delay_seconds)
    )
    try:
        logger.info("bot_polling")
        await dp.start_polling(bot)
    finally:
        await bot.session.close()
        await store.close()


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if settings.webhook_url or not settings.bot_token:
        # Webhook mode, or API only when no bot is configured
        uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
    else:
        asyncio.run(poll(settings))


if __name__ == "__main__":
    main()
