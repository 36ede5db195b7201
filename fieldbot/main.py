import asyncio
import contextlib
import logging
import sys

from aiogram import Bot
from aiogram.exceptions import TelegramUnauthorizedError
from aiogram.enums import ParseMode
from aiogram.client.default import DefaultBotProperties

from .commands_setup import set_default_commands
from .config import settings
from .db_results import SupabaseResultSink
from .state import build_dispatcher, build_runtime


async def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    # Use async context manager to ensure ClientSession is closed
    async with Bot(
        token=settings.require_bot_token(),
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    ) as bot:
        results = SupabaseResultSink.from_settings(settings)
        modes = build_runtime(settings, bot, results)
        dp = build_dispatcher(modes, results)
        sweeper = asyncio.create_task(modes.run_sweeper(settings.sweep_interval_seconds))

        try:
            await set_default_commands(bot)
            await dp.start_polling(bot)
        except TelegramUnauthorizedError:
            logging.error(
                "TelegramUnauthorizedError: bot token seems invalid or revoked.\n"
                "Check BOT_TOKEN in environment and rotate the token immediately."
            )
            # Exit with non-zero code so process managers treat this as a crash
            sys.exit(1)
        except Exception:
            logging.exception("Unexpected error while running bot")
            raise
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper


if __name__ == "__main__":
    asyncio.run(main())
