from __future__ import annotations

import logging
from typing import Optional

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import Message

from .. import texts
from ..collaborators import ResultSink, fire_and_forget
from ..commands_setup import set_chat_commands
from ..db_results import VISIT_KIND, visit_payload
from ..modes import Mode, ModeManager

log = logging.getLogger(__name__)

router = Router(name=__name__)


def _lang(message: Message) -> str:
    code = (message.from_user.language_code if message.from_user else None) or "en"
    return "id" if code.startswith("id") else "en"


@router.message(CommandStart())
async def cmd_start(message: Message, results: Optional[ResultSink] = None) -> None:
    name = message.from_user.first_name if message.from_user else ""
    if message.from_user:
        fire_and_forget(results, message.from_user.id, VISIT_KIND, visit_payload(message.from_user))
    try:
        await set_chat_commands(message.bot, message.chat.id, _lang(message))
    except Exception as e:
        log.warning("setting chat commands failed: %s", e)
    await message.answer(texts.WELCOME.format(name=name or "there"), parse_mode=None)


@router.message(Command("help"))
async def cmd_help(message: Message) -> None:
    await message.answer(texts.WELCOME.format(name="there"), parse_mode=None)


@router.message(Command("menu"))
async def cmd_menu(message: Message, modes: ModeManager) -> None:
    user_id = message.from_user.id if message.from_user else message.chat.id
    current = modes.current_mode(user_id)
    await modes.exit_to_none(user_id)
    if current is Mode.NONE:
        await message.answer(texts.MENU_ALREADY, parse_mode=None)
        return
    await message.answer(texts.MENU.format(mode=current.value), parse_mode=None)
