from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Tuple

from .. import texts
from ..collaborators import ArchiveEngine, FileFetcher, ResultSink, ZipArchiveEngine, fire_and_forget
from ..errors import CollaboratorError, InvalidInputError
from ..modes import Mode
from ..session_store import Clock
from .base import ANY_STEP, Event, EventKind, FileRef, Reply, ReplyDocument, Workflow

_SHEET_NAME_RE = re.compile(r"^[\w\- ]{1,31}$")

SEND_KEYWORDS = frozenset({"send"})
LIST_KEYWORDS = frozenset({"cek", "list"})
CLEAR_KEYWORDS = frozenset({"clear"})


class WorkbookStep(Enum):
    AWAITING_SHEET_NAME = "awaiting_sheet_name"
    COLLECTING_PHOTOS = "collecting_photos"


@dataclass(frozen=True)
class Sheet:
    name: str
    photos: Tuple[FileRef, ...] = ()


@dataclass(frozen=True)
class WorkbookState:
    step: WorkbookStep = WorkbookStep.AWAITING_SHEET_NAME
    sheets: Tuple[Sheet, ...] = ()
    active: Optional[str] = None

    def sheet(self, name: str) -> Optional[Sheet]:
        key = name.lower()
        for s in self.sheets:
            if s.name.lower() == key:
                return s
        return None


class WorkbookWorkflow(Workflow[WorkbookState]):
    """Photos grouped into named sheets, delivered as one archive."""

    mode = Mode.WORKBOOK

    def __init__(
        self,
        ttl: float,
        *,
        files: Optional[FileFetcher] = None,
        engine: Optional[ArchiveEngine] = None,
        results: Optional[ResultSink] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.files = files
        self.engine = engine or ZipArchiveEngine()
        self.results = results
        super().__init__(ttl, clock=clock)

    def initial_state(self, user_id: int) -> WorkbookState:
        return WorkbookState()

    def intro(self) -> Reply:
        return Reply(texts.WORKBOOK_INTRO)

    def transitions(self):
        waiting = WorkbookStep.AWAITING_SHEET_NAME
        collecting = WorkbookStep.COLLECTING_PHOTOS
        return {
            (ANY_STEP, EventKind.TEXT): self._on_text,
            (waiting, EventKind.PHOTO): self._on_photo_without_sheet,
            (waiting, EventKind.DOCUMENT): self._on_photo_without_sheet,
            (collecting, EventKind.PHOTO): self._on_photo,
            (collecting, EventKind.DOCUMENT): self._on_photo,
        }

    async def _on_text(self, user_id: int, state: WorkbookState, event: Event) -> Tuple[Reply, WorkbookState]:
        text = " ".join((event.text or "").split())
        keyword = text.lower()
        if keyword in SEND_KEYWORDS:
            return await self._send(user_id, state)
        if keyword in LIST_KEYWORDS:
            return self._listing(state), state
        if keyword in CLEAR_KEYWORDS:
            return Reply(texts.WORKBOOK_CLEARED), WorkbookState()

        if not _SHEET_NAME_RE.match(text):
            raise InvalidInputError(texts.WORKBOOK_BAD_SHEET_NAME)
        existing = state.sheet(text)
        if existing is not None:
            return (
                Reply(texts.WORKBOOK_SHEET_SWITCHED.format(name=existing.name, count=len(existing.photos))),
                replace(state, step=WorkbookStep.COLLECTING_PHOTOS, active=existing.name),
            )
        return (
            Reply(texts.WORKBOOK_SHEET_CREATED.format(name=text)),
            replace(
                state,
                step=WorkbookStep.COLLECTING_PHOTOS,
                sheets=state.sheets + (Sheet(text),),
                active=text,
            ),
        )

    async def _on_photo_without_sheet(self, user_id: int, state: WorkbookState, event: Event) -> Tuple[Reply, WorkbookState]:
        return Reply(texts.WORKBOOK_NEED_SHEET), state

    async def _on_photo(self, user_id: int, state: WorkbookState, event: Event) -> Tuple[Reply, WorkbookState]:
        file = event.file
        if file is None:
            raise InvalidInputError("a photo is required")
        if event.kind is EventKind.DOCUMENT and not (file.mime_type or "").startswith("image/"):
            raise InvalidInputError("only images can be added to a sheet")
        sheets = list(state.sheets)
        for i, sheet in enumerate(sheets):
            if sheet.name == state.active:
                sheets[i] = replace(sheet, photos=sheet.photos + (file,))
                reply = Reply(texts.WORKBOOK_PHOTO_ADDED.format(count=len(sheets[i].photos), name=sheet.name))
                return reply, replace(state, sheets=tuple(sheets))
        return Reply(texts.WORKBOOK_NEED_SHEET), replace(state, step=WorkbookStep.AWAITING_SHEET_NAME, active=None)

    def _listing(self, state: WorkbookState) -> Reply:
        if not state.sheets:
            return Reply(texts.WORKBOOK_EMPTY)
        rows = []
        for sheet in state.sheets:
            marker = " (active)" if sheet.name == state.active else ""
            rows.append(f"• {sheet.name}: {len(sheet.photos)} photo(s){marker}")
        return Reply(texts.WORKBOOK_LISTING.format(listing="\n".join(rows)))

    async def _send(self, user_id: int, state: WorkbookState) -> Tuple[Reply, WorkbookState]:
        total = sum(len(s.photos) for s in state.sheets)
        if total == 0:
            return Reply(texts.WORKBOOK_EMPTY), state
        if self.files is None:
            raise CollaboratorError("no file fetcher configured")

        entries: List[Tuple[str, bytes]] = []
        for sheet in state.sheets:
            for n, photo in enumerate(sheet.photos, start=1):
                data = await self.files.fetch(photo.file_id)
                entries.append((f"{sheet.name}/{n:03d}.jpg", data))

        archive = await asyncio.to_thread(self.engine.compress, entries)
        fire_and_forget(
            self.results,
            user_id,
            "workbook",
            {"sheets": {s.name: len(s.photos) for s in state.sheets}},
        )
        reply = Reply(
            texts.WORKBOOK_SENT.format(sheets=len(state.sheets), photos=total),
            documents=(ReplyDocument("workbook.zip", archive),),
        )
        return reply, state
