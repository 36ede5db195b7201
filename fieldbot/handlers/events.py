from __future__ import annotations

import logging
from typing import Optional, Tuple

from aiogram import F, Router
from aiogram.types import (
    BufferedInputFile,
    KeyboardButton,
    Message,
    ReplyKeyboardMarkup,
)

from .. import texts
from ..errors import ModeMismatchError, StateExpiredError
from ..modes import Mode, ModeManager
from ..workflows.base import Event, FileRef, Reply

log = logging.getLogger(__name__)

router = Router(name=__name__)

# Telegram caption limit
_CAPTION_LIMIT = 1024


def split_command(text: str) -> Tuple[str, str]:
    """'/find@my_bot *.jpg' -> ('find', '*.jpg')"""
    head, _, args = text.strip().partition(" ")
    command = head.lstrip("/").split("@", 1)[0].lower()
    return command, args.strip()


def _keyboard(reply: Reply) -> Optional[ReplyKeyboardMarkup]:
    if not reply.keyboard:
        return None
    rows = [[KeyboardButton(text=label) for label in row] for row in reply.keyboard]
    return ReplyKeyboardMarkup(keyboard=rows, resize_keyboard=True)


async def send_reply(message: Message, reply: Reply) -> None:
    """Deliver a workflow reply: text, re-sent photo and attached documents."""
    markup = _keyboard(reply)
    if reply.photo_file_id:
        caption = reply.text[:_CAPTION_LIMIT]
        await message.answer_photo(reply.photo_file_id, caption=caption, parse_mode=None, reply_markup=markup)
    elif reply.text:
        await message.answer(reply.text, parse_mode=None, reply_markup=markup)
    for doc in reply.documents:
        await message.answer_document(BufferedInputFile(doc.data, filename=doc.filename))


def guidance(error: ModeMismatchError) -> str:
    expected = error.expected_mode
    if isinstance(error, StateExpiredError) and expected is not None:
        return texts.STATE_EXPIRED.format(mode=expected.value, entry=expected.entry_command)
    if expected is None:
        return texts.NO_MODE_ACTIVE
    if error.actual_mode is Mode.NONE:
        return texts.MODE_MISMATCH_NO_MODE.format(entry=expected.entry_command)
    return texts.MODE_MISMATCH.format(
        expected=expected.value,
        actual=error.actual_mode.value,
        entry=expected.entry_command,
    )


async def route_event(message: Message, modes: ModeManager, mode: Mode, event: Event) -> None:
    user_id = message.from_user.id if message.from_user else message.chat.id
    try:
        reply = await modes.dispatch(user_id, mode, event)
    except ModeMismatchError as e:
        log.info("user %s: %s", user_id, e)
        await message.answer(guidance(e), parse_mode=None)
        return
    await send_reply(message, reply)


async def route_freeform(message: Message, modes: ModeManager, event: Event) -> None:
    user_id = message.from_user.id if message.from_user else message.chat.id
    mode = modes.addressed_mode(user_id)
    if mode is Mode.NONE:
        await message.answer(texts.NO_MODE_ACTIVE, parse_mode=None)
        return
    await route_event(message, modes, mode, event)


@router.message(F.text.startswith("/"))
async def handle_command(message: Message, modes: ModeManager) -> None:
    command, args = split_command(message.text or "")
    mode = modes.mode_for_command(command)
    if mode is None:
        await message.answer(texts.UNKNOWN_COMMAND, parse_mode=None)
        return
    await route_event(message, modes, mode, Event.command_event(command, args))


@router.message(F.location)
async def handle_location(message: Message, modes: ModeManager) -> None:
    loc = message.location
    await route_freeform(message, modes, Event.location_event(loc.latitude, loc.longitude))


@router.message(F.photo)
async def handle_photo(message: Message, modes: ModeManager) -> None:
    # last size is the largest
    photo = message.photo[-1]
    file = FileRef(photo.file_id, None, "image/jpeg", photo.file_size)
    await route_freeform(message, modes, Event.photo_event(file, message.caption))


@router.message(F.document)
async def handle_document(message: Message, modes: ModeManager) -> None:
    doc = message.document
    file = FileRef(doc.file_id, doc.file_name, doc.mime_type, doc.file_size)
    await route_freeform(message, modes, Event.document_event(file, message.caption))


@router.message(F.text)
async def handle_text(message: Message, modes: ModeManager) -> None:
    await route_freeform(message, modes, Event.text_event(message.text or ""))
