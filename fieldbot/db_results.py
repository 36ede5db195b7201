from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from aiogram.types import User as TgUser
from supabase import Client, create_client

from .config import Settings

log = logging.getLogger(__name__)

RESULTS_TABLE = "feature_results"
VISIT_KIND = "visit"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def insert_result(client: Any, *, tg_user_id: int, kind: str, payload: Dict[str, Any]) -> bool:
    """Insert one feature result row. Returns True on success, False otherwise.

    Fields: { tg_user_id, kind, payload (jsonb), created_at }
    """
    if client is None:
        return False
    try:
        client.table(RESULTS_TABLE).insert(
            {
                "tg_user_id": tg_user_id,
                "kind": kind,
                "payload": payload,
                "created_at": _now_iso(),
            }
        ).execute()
        return True
    except Exception as e:
        log.warning("insert %s result failed: %s", kind, e)
        return False


def visit_payload(user: TgUser, platform: str = "telegram-bot") -> Dict[str, Any]:
    """Payload of the ``visit`` row written when a user sends /start."""
    return {
        "username": user.username,
        "first_name": user.first_name,
        "language_code": getattr(user, "language_code", None),
        "platform": platform,
    }


class SupabaseResultSink:
    """ResultSink writing to the ``feature_results`` table off the event loop.

    The client is created on first use. Without Supabase credentials the sink
    stays inert and every save reports False, so the bot keeps working.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[], Any]] = None,
        *,
        url: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        self._client_factory = client_factory or self._connect
        self._url = url
        self._key = key
        self._client: Optional[Client] = None
        self._client_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseResultSink":
        return cls(url=settings.supabase_url, key=settings.supabase_service_role_key)

    def _connect(self) -> Optional[Client]:
        with self._client_lock:
            if self._client is not None:
                return self._client
            if not self._url or not self._key:
                log.info("Supabase env not fully configured; results will not be persisted")
                return None
            try:
                self._client = create_client(self._url, self._key)
                log.info("Supabase client initialized")
            except Exception as e:
                log.warning("Failed to initialize Supabase client: %s", e)
                self._client = None
            return self._client

    async def save_result(self, user_id: int, kind: str, payload: Dict[str, Any]) -> bool:
        client = self._client_factory()
        if client is None:
            return False
        return await asyncio.to_thread(
            insert_result, client, tg_user_id=user_id, kind=kind, payload=payload
        )
