from __future__ import annotations

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from ..modes import Mode, ModeManager
from .events import send_reply

router = Router(name=__name__)

ENTRY_COMMANDS = tuple(m.value for m in Mode if m is not Mode.NONE)


@router.message(Command(*ENTRY_COMMANDS))
async def cmd_enter_mode(message: Message, command: CommandObject, modes: ModeManager) -> None:
    user_id = message.from_user.id if message.from_user else message.chat.id
    mode = Mode(command.command.lower())
    await modes.enter_mode(user_id, mode)
    await send_reply(message, modes.workflow(mode).intro())
