from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Union

from .errors import ModeMismatchError, StateExpiredError
from .journal import append_mode_switch_row
from .session_store import Clock, SessionStore
from .workflows.base import Event, Reply, Workflow

log = logging.getLogger(__name__)


class Mode(str, Enum):
    NONE = "none"
    LOCATION = "location"
    WORKBOOK = "workbook"
    ARCHIVE = "archive"
    GEOTAGS = "geotags"
    KML = "kml"
    OCR = "ocr"

    @property
    def entry_command(self) -> str:
        return "/menu" if self is Mode.NONE else f"/{self.value}"


@dataclass(frozen=True)
class ModeSession:
    user_id: int
    current_mode: Mode
    previous_mode: Mode
    entered_at: float
    last_activity_at: float


@dataclass
class _UserLock:
    # holders plus waiters; the entry is dropped when this reaches zero
    claims: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ModeManager:
    """Single source of truth for which mode each user is in.

    Only this class creates or destroys ``ModeSession`` records. Events of one
    user are serialized by a per-user ``asyncio.Lock`` (arrival order), which
    also keeps the sweep away from a user whose event is being handled.
    Different users never share a lock.
    """

    def __init__(
        self,
        *,
        clock: Optional[Clock] = None,
        default_ttl: float = 600.0,
        journal_path: Optional[Union[str, Path]] = None,
    ) -> None:
        self._clock: Clock = clock or time.time
        self.default_ttl = float(default_ttl)
        self._sessions: SessionStore[int, ModeSession] = SessionStore(
            default_ttl, clock=self._clock, name="modes"
        )
        self._workflows: Dict[Mode, Workflow] = {}
        self._commands: Dict[str, Mode] = {}
        self._locks: Dict[int, _UserLock] = {}
        self._locks_guard = threading.Lock()
        self._journal_path = Path(journal_path) if journal_path else None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_mode(self, workflow: Workflow) -> None:
        mode = workflow.mode
        if mode is Mode.NONE:
            raise ValueError("NONE cannot have a workflow")
        if mode in self._workflows:
            raise ValueError(f"a workflow for {mode.value!r} is already registered")
        for command in workflow.commands:
            owner = self._commands.get(command)
            if owner is not None:
                raise ValueError(f"command /{command} already belongs to {owner.value!r}")
        self._workflows[mode] = workflow
        for command in workflow.commands:
            self._commands[command] = mode
        log.info("registered workflow %s (%d commands, ttl=%ss)", mode.value, len(workflow.commands), workflow.ttl)

    def workflow(self, mode: Mode) -> Workflow:
        try:
            return self._workflows[mode]
        except KeyError:
            raise ValueError(f"no workflow registered for {mode.value!r}") from None

    def registered_modes(self) -> List[Mode]:
        return list(self._workflows)

    def mode_for_command(self, command: str) -> Optional[Mode]:
        return self._commands.get(command.lstrip("/").lower())

    def ttl_for(self, mode: Mode) -> float:
        wf = self._workflows.get(mode)
        return wf.ttl if wf is not None else self.default_ttl

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _serialized(self, user_id: int) -> AsyncIterator[None]:
        """Hold the user's lock; the lock outlives every holder and waiter."""
        with self._locks_guard:
            entry = self._locks.get(user_id)
            if entry is None:
                entry = self._locks[user_id] = _UserLock()
            entry.claims += 1
        try:
            async with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.claims -= 1
                if entry.claims == 0 and self._locks.get(user_id) is entry:
                    del self._locks[user_id]

    def _busy(self, user_id: int) -> bool:
        with self._locks_guard:
            entry = self._locks.get(user_id)
            return entry is not None and entry.claims > 0

    def _is_live(self, session: ModeSession, touched: Optional[float], now: float) -> bool:
        if touched is None:
            return False
        return now - touched <= self.ttl_for(session.current_mode)

    def session(self, user_id: int) -> Optional[ModeSession]:
        """The user's live session; None when absent or expired."""
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if not self._is_live(session, self._sessions.last_touch(user_id), self._clock()):
            return None
        return session

    def current_mode(self, user_id: int) -> Mode:
        session = self.session(user_id)
        return session.current_mode if session is not None else Mode.NONE

    def addressed_mode(self, user_id: int) -> Mode:
        """Mode a freeform event should be routed to, expired sessions included.

        Routing an event to an expired mode lets ``dispatch`` report the
        expiry instead of a plain "no mode" answer.
        """
        session = self._sessions.get(user_id)
        return session.current_mode if session is not None else Mode.NONE

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        counts: Counter = Counter()
        for _user_id, session, touched in self._sessions.snapshot():
            if self._is_live(session, touched, now):
                counts[session.current_mode.value] += 1
        return {mode.value: counts.get(mode.value, 0) for mode in Mode if mode is not Mode.NONE}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def enter_mode(self, user_id: int, mode: Mode) -> ModeSession:
        async with self._serialized(user_id):
            return await self._enter(user_id, mode)

    async def exit_to_none(self, user_id: int) -> ModeSession:
        return await self.enter_mode(user_id, Mode.NONE)

    async def _enter(self, user_id: int, mode: Mode) -> ModeSession:
        if mode is not Mode.NONE and mode not in self._workflows:
            raise ValueError(f"no workflow registered for {mode.value!r}")

        live = self.session(user_id)
        if live is not None and live.current_mode is mode:
            return live

        now = self._clock()
        stored = self._sessions.get(user_id)
        previous = live.current_mode if live is not None else Mode.NONE

        if stored is not None:
            # expired-but-unswept sessions are cleaned up here as well
            await self._cleanup(user_id, stored.current_mode)

        if mode is Mode.NONE:
            self._sessions.delete(user_id)
            session = ModeSession(user_id, Mode.NONE, previous, now, now)
        else:
            await self._workflows[mode].initialize(user_id)
            session = ModeSession(user_id, mode, previous, now, now)
            self._sessions.put(user_id, session)

        if previous is not mode:
            await self._record_switch(user_id, previous, mode, now)
        return session

    def touch(self, user_id: int) -> bool:
        now = self._clock()
        touched = self._sessions.update(
            user_id,
            lambda s: replace(s, last_activity_at=now) if s is not None else None,
        )
        return touched is not None

    async def dispatch(self, user_id: int, mode: Mode, event: Event) -> Reply:
        async with self._serialized(user_id):
            actual = self.current_mode(user_id)
            if actual is not mode or mode not in self._workflows:
                stored = self._sessions.get(user_id)
                if stored is not None and stored.current_mode is mode and actual is Mode.NONE:
                    await self._expire(user_id, stored)
                    raise StateExpiredError(mode)
                raise ModeMismatchError(actual, mode)

            workflow = self._workflows[mode]
            try:
                reply = await workflow.handle_event(user_id, event)
            except StateExpiredError:
                stored = self._sessions.delete(user_id)
                log.info("user %s referenced swept %s state", user_id, mode.value)
                if stored is not None:
                    await self._record_switch(user_id, mode, Mode.NONE, self._clock())
                raise
            self.touch(user_id)
            return reply

    async def _cleanup(self, user_id: int, mode: Mode) -> None:
        workflow = self._workflows.get(mode)
        if workflow is None:
            return
        try:
            await workflow.cleanup(user_id)
        except Exception as e:
            log.warning("cleanup of %s for user %s failed: %s", mode.value, user_id, e)

    async def _expire(self, user_id: int, session: ModeSession) -> None:
        self._sessions.delete(user_id)
        await self._cleanup(user_id, session.current_mode)
        log.info("session of user %s in %s expired", user_id, session.current_mode.value)
        await self._record_switch(user_id, session.current_mode, Mode.NONE, self._clock())

    async def _record_switch(self, user_id: int, previous: Mode, new: Mode, ts: float) -> None:
        log.info("mode switch user=%s %s -> %s ts=%.3f", user_id, previous.value, new.value, ts)
        if self._journal_path is None:
            return
        try:
            await append_mode_switch_row(
                self._journal_path,
                tg_user_id=user_id,
                previous_mode=previous.value,
                new_mode=new.value,
                ts=ts,
            )
        except Exception as e:
            log.warning("mode journal write failed: %s", e)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def sweep(self, now: Optional[float] = None) -> int:
        """Evict idle sessions and orphaned feature state.

        Users with an event in flight are skipped; they will be looked at on
        the next pass.
        """
        now = self._clock() if now is None else now
        removed = 0

        for user_id, session, touched in self._sessions.snapshot():
            ttl = self.ttl_for(session.current_mode)
            if now - touched <= ttl:
                continue
            if self._busy(user_id):
                continue
            async with self._serialized(user_id):
                stale = self._sessions.delete_if_stale(user_id, now, ttl)
                if stale is None:
                    continue
                await self._cleanup(user_id, stale.current_mode)
                await self._record_switch(user_id, stale.current_mode, Mode.NONE, now)
                removed += 1

        for workflow in self._workflows.values():
            for user_id, _state, touched in workflow.store.snapshot():
                if now - touched <= workflow.ttl:
                    continue
                if self._busy(user_id):
                    continue
                async with self._serialized(user_id):
                    await workflow.expire(user_id, now)

        if removed:
            log.info("sweep removed %d idle session(s)", removed)
        return removed

    async def run_sweeper(self, interval: float) -> None:
        """Sweep forever every ``interval`` seconds; cancel the task to stop."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep()
            except Exception:
                log.exception("session sweep failed")
