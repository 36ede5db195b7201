from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.client.default import DefaultBotProperties
from aiogram.types import Update

from .config import settings
from .modes import Mode
from .db_results import SupabaseResultSink
from .state import build_dispatcher, build_runtime

log = logging.getLogger(__name__)


# Initialize aiogram Bot/Dispatcher for webhook mode
bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
results = SupabaseResultSink.from_settings(settings)
modes = build_runtime(settings, bot, results)
dp = build_dispatcher(modes, results)


@contextlib.asynccontextmanager
async def lifespan(_app: FastAPI):
    sweeper = asyncio.create_task(modes.run_sweeper(settings.sweep_interval_seconds))
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await bot.session.close()


app = FastAPI(lifespan=lifespan)


class UserModeState(BaseModel):
    telegram_id: int
    mode: str
    previous_mode: Optional[str] = None
    step: Optional[str] = None
    entered_at: Optional[float] = None
    last_activity_at: Optional[float] = None


class ModeStats(BaseModel):
    total: int
    per_mode: dict


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/bot/state/{telegram_id}", response_model=UserModeState)
async def bot_state(telegram_id: int) -> UserModeState:
    session = modes.session(telegram_id)
    if session is None:
        return UserModeState(telegram_id=telegram_id, mode=Mode.NONE.value)
    step = modes.workflow(session.current_mode).step_of(telegram_id)
    return UserModeState(
        telegram_id=telegram_id,
        mode=session.current_mode.value,
        previous_mode=session.previous_mode.value,
        step=step.value if step is not None else None,
        entered_at=session.entered_at,
        last_activity_at=session.last_activity_at,
    )


@app.get("/bot/stats", response_model=ModeStats)
async def bot_stats() -> ModeStats:
    per_mode = modes.stats()
    return ModeStats(total=sum(per_mode.values()), per_mode=per_mode)


@app.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    # Optional verification via secret header if set
    if settings.telegram_webhook_secret:
        if x_telegram_bot_api_secret_token != settings.telegram_webhook_secret:
            raise HTTPException(status_code=401, detail="Invalid webhook secret")

    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        update = Update.model_validate(payload)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid update payload")

    # Feed update to aiogram dispatcher in background to ACK immediately
    background_tasks.add_task(dp.feed_update, bot, update)
    return {"ok": True}


# Accept trailing slash just in case Telegram or proxies append it
@app.post("/telegram/webhook/")
async def telegram_webhook_slash(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    return await telegram_webhook(request, background_tasks, x_telegram_bot_api_secret_token)


# Convenience GET for quick health checks (doesn't process updates)
@app.get("/telegram/webhook")
async def telegram_webhook_get():
    return {"status": "ok"}
