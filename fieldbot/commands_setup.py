from __future__ import annotations

from typing import List

from aiogram.types import BotCommand, BotCommandScopeChat

from .texts import COMMANDS_DESC

MENU_COMMANDS = ("start", "help", "menu", "location", "kml", "geotags", "archive", "workbook", "ocr")


def make_commands(lang: str) -> List[BotCommand]:
    t = COMMANDS_DESC.get(lang, COMMANDS_DESC["en"])
    return [BotCommand(command=c, description=t[c]) for c in MENU_COMMANDS]


async def set_default_commands(bot) -> None:
    await bot.set_my_commands(make_commands("en"))


async def set_chat_commands(bot, chat_id: int, lang: str) -> None:
    commands = make_commands(lang)
    await bot.set_my_commands(commands, scope=BotCommandScopeChat(chat_id=chat_id))
