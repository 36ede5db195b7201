from __future__ import annotations

import asyncio
import fnmatch
import logging
import shutil
import tempfile
import threading
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

from .. import texts
from ..collaborators import ArchiveEngine, FileFetcher, ResultSink, ZipArchiveEngine, fire_and_forget
from ..errors import CollaboratorError, InvalidInputError
from ..modes import Mode
from ..session_store import Clock
from .base import ANY_STEP, Event, EventKind, FileRef, Reply, ReplyDocument, Workflow

log = logging.getLogger(__name__)

_MAX_LISTED = 30


class ArchiveStep(Enum):
    IDLE = "idle"
    COLLECTING_ZIP = "collecting_zip"
    COLLECTING_EXTRACT = "collecting_extract"
    SEARCH_AWAITING_ARCHIVE = "search_awaiting_archive"
    SEARCH_READY = "search_ready"


@dataclass(frozen=True)
class ArchiveState:
    step: ArchiveStep = ArchiveStep.IDLE
    queued_files: Tuple[FileRef, ...] = ()
    search_dir: Optional[str] = None
    search_files: Tuple[str, ...] = ()
    selected: Tuple[str, ...] = ()


@dataclass
class ArchiveStats:
    zips: int = 0
    extracts: int = 0
    searches: int = 0
    received: int = 0
    sent: int = 0


def is_zip(file: FileRef) -> bool:
    name = (file.file_name or "").lower()
    return name.endswith(".zip") or file.mime_type in ("application/zip", "application/x-zip-compressed")


def match_files(names: Tuple[str, ...], pattern: str) -> List[str]:
    """Glob when the pattern has ``*`` or ``?``, otherwise a substring; case-insensitive."""
    pattern = pattern.strip().lower()
    if not pattern:
        return []
    if "*" in pattern or "?" in pattern:
        return [
            n for n in names
            if fnmatch.fnmatchcase(n.lower(), pattern) or fnmatch.fnmatchcase(PurePosixPath(n).name.lower(), pattern)
        ]
    return [n for n in names if pattern in n.lower()]


def _safe_relative(name: str) -> Optional[str]:
    parts = [p for p in PurePosixPath(name.replace("\\", "/")).parts if p not in ("", ".", "..", "/")]
    return "/".join(parts) if parts else None


class ArchiveWorkflow(Workflow[ArchiveState]):
    """Zip, extract and search-inside-archive pipelines."""

    mode = Mode.ARCHIVE
    commands = frozenset({"zip", "extract", "search", "send", "find", "send_selected", "stats"})

    def __init__(
        self,
        ttl: float,
        *,
        files: Optional[FileFetcher] = None,
        engine: Optional[ArchiveEngine] = None,
        results: Optional[ResultSink] = None,
        clock: Optional[Clock] = None,
        workdir: Optional[str] = None,
    ) -> None:
        self.files = files
        self.engine = engine or ZipArchiveEngine()
        self.results = results
        self.workdir = workdir
        self._stats: Dict[int, ArchiveStats] = {}
        self._stats_lock = threading.Lock()
        super().__init__(ttl, clock=clock)

    def initial_state(self, user_id: int) -> ArchiveState:
        return ArchiveState()

    def intro(self) -> Reply:
        return Reply(texts.ARCHIVE_INTRO)

    def transitions(self):
        idle = ArchiveStep.IDLE
        zipping = ArchiveStep.COLLECTING_ZIP
        extracting = ArchiveStep.COLLECTING_EXTRACT
        awaiting = ArchiveStep.SEARCH_AWAITING_ARCHIVE
        ready = ArchiveStep.SEARCH_READY
        return {
            (ANY_STEP, "zip"): self._on_choose,
            (ANY_STEP, "extract"): self._on_choose,
            (ANY_STEP, "search"): self._on_choose,
            (idle, EventKind.DOCUMENT): self._on_file_without_operation,
            (idle, EventKind.PHOTO): self._on_file_without_operation,
            (zipping, EventKind.DOCUMENT): self._on_queue_file,
            (zipping, EventKind.PHOTO): self._on_queue_file,
            (extracting, EventKind.DOCUMENT): self._on_queue_archive,
            (awaiting, EventKind.DOCUMENT): self._on_search_archive,
            (ready, EventKind.DOCUMENT): self._on_search_archive,
            (ANY_STEP, "send"): self._on_send,
            (ready, "find"): self._on_find,
            (ANY_STEP, "find"): self._on_find_without_archive,
            (ANY_STEP, "send_selected"): self._on_send_selected,
            (ANY_STEP, "stats"): self._on_stats,
        }

    async def release(self, user_id: int, state: ArchiveState) -> None:
        if state.search_dir:
            await asyncio.to_thread(shutil.rmtree, state.search_dir, True)
            log.info("removed search directory of user %s", user_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _bump(self, user_id: int, **deltas: int) -> None:
        with self._stats_lock:
            stats = self._stats.setdefault(user_id, ArchiveStats())
            for key, delta in deltas.items():
                setattr(stats, key, getattr(stats, key) + delta)

    def stats_of(self, user_id: int) -> ArchiveStats:
        with self._stats_lock:
            stats = self._stats.get(user_id)
            return replace(stats) if stats is not None else ArchiveStats()

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _fetch(self, file: FileRef) -> bytes:
        if self.files is None:
            raise CollaboratorError("no file fetcher configured")
        return await self.files.fetch(file.file_id)

    async def _on_choose(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        await self.release(user_id, state)
        step, text = {
            "zip": (ArchiveStep.COLLECTING_ZIP, texts.ARCHIVE_ZIP_STARTED),
            "extract": (ArchiveStep.COLLECTING_EXTRACT, texts.ARCHIVE_EXTRACT_STARTED),
            "search": (ArchiveStep.SEARCH_AWAITING_ARCHIVE, texts.ARCHIVE_SEARCH_STARTED),
        }[event.command or "zip"]
        return Reply(text), ArchiveState(step=step)

    async def _on_file_without_operation(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        return Reply(texts.ARCHIVE_PICK_OPERATION), state

    async def _on_queue_file(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        file = event.file
        if file is None:
            raise InvalidInputError("a file is required")
        if file.file_name is None:
            file = replace(file, file_name=f"file_{len(state.queued_files) + 1}.jpg")
        queued = state.queued_files + (file,)
        self._bump(user_id, received=1)
        return Reply(texts.ARCHIVE_FILE_QUEUED.format(name=file.file_name, count=len(queued))), replace(
            state, queued_files=queued
        )

    async def _on_queue_archive(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        file = event.file
        if file is None or not is_zip(file):
            raise InvalidInputError("only .zip archives can be extracted")
        self._bump(user_id, received=1)
        return Reply(texts.ARCHIVE_ARCHIVE_QUEUED.format(name=file.file_name or "archive.zip")), replace(
            state, queued_files=state.queued_files + (file,)
        )

    async def _on_search_archive(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        file = event.file
        if file is None or not is_zip(file):
            raise InvalidInputError("only .zip archives can be searched")
        data = await self._fetch(file)
        entries = await asyncio.to_thread(self.engine.extract, data)
        directory, written = await asyncio.to_thread(self._unpack, entries)
        await self.release(user_id, state)
        names = tuple(sorted(written))
        self._bump(user_id, searches=1, received=1)
        log.info("user %s unpacked %d file(s) for search", user_id, len(names))
        return (
            Reply(texts.ARCHIVE_SEARCH_READY.format(name=file.file_name or "archive.zip", count=len(names))),
            ArchiveState(step=ArchiveStep.SEARCH_READY, search_dir=directory, search_files=names),
        )

    def _unpack(self, entries: Dict[str, bytes]) -> Tuple[str, List[str]]:
        root = Path(tempfile.mkdtemp(prefix="fieldbot-search-", dir=self.workdir))
        written: List[str] = []
        for name, data in entries.items():
            rel = _safe_relative(name)
            if rel is None:
                continue
            target = root / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            written.append(rel)
        return str(root), written

    async def _on_send(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        if state.step is ArchiveStep.IDLE:
            return Reply(texts.ARCHIVE_PICK_OPERATION), state
        if state.step in (ArchiveStep.SEARCH_AWAITING_ARCHIVE, ArchiveStep.SEARCH_READY):
            return Reply(texts.ARCHIVE_SEARCH_USES_FIND), state
        if not state.queued_files:
            return Reply(texts.ARCHIVE_NOTHING_QUEUED), state

        blobs = [await self._fetch(f) for f in state.queued_files]

        if state.step is ArchiveStep.COLLECTING_ZIP:
            names = [f.file_name or f"file_{i}" for i, f in enumerate(state.queued_files, start=1)]
            data = await asyncio.to_thread(self.engine.compress, list(zip(names, blobs)))
            self._bump(user_id, zips=1, sent=1)
            fire_and_forget(self.results, user_id, "archive", {"operation": "zip", "files": len(names)})
            reply = Reply(
                texts.ARCHIVE_ZIP_DONE.format(count=len(names)),
                documents=(ReplyDocument("archive.zip", data),),
            )
            return reply, replace(state, queued_files=())

        documents: List[ReplyDocument] = []
        for blob in blobs:
            extracted = await asyncio.to_thread(self.engine.extract, blob)
            for name, content in sorted(extracted.items()):
                documents.append(ReplyDocument(PurePosixPath(name).name or "file", content))
        self._bump(user_id, extracts=1, sent=len(documents))
        fire_and_forget(self.results, user_id, "archive", {"operation": "extract", "files": len(documents)})
        return Reply(texts.ARCHIVE_EXTRACT_DONE.format(count=len(documents)), documents=tuple(documents)), replace(
            state, queued_files=()
        )

    async def _on_find(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        pattern = event.args.strip()
        if not pattern:
            return Reply(texts.ARCHIVE_FIND_USAGE), state
        found = match_files(state.search_files, pattern)
        if not found:
            return Reply(texts.ARCHIVE_FIND_NONE.format(pattern=pattern)), replace(state, selected=())
        listing = "\n".join(f"{i}. {name}" for i, name in enumerate(found[:_MAX_LISTED], start=1))
        if len(found) > _MAX_LISTED:
            listing += f"\n... and {len(found) - _MAX_LISTED} more"
        return (
            Reply(texts.ARCHIVE_FIND_RESULTS.format(count=len(found), pattern=pattern, listing=listing)),
            replace(state, selected=tuple(found)),
        )

    async def _on_find_without_archive(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        return Reply(texts.ARCHIVE_FIND_NEEDS_ARCHIVE), state

    async def _on_send_selected(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        if not state.selected or not state.search_dir:
            return Reply(texts.ARCHIVE_NOTHING_SELECTED), state
        root = Path(state.search_dir)

        def _read() -> List[ReplyDocument]:
            docs = []
            for rel in state.selected:
                path = root / rel
                if path.is_file():
                    docs.append(ReplyDocument(path.name, path.read_bytes()))
            return docs

        documents = await asyncio.to_thread(_read)
        self._bump(user_id, sent=len(documents))
        return Reply(texts.ARCHIVE_SELECTED_SENT.format(count=len(documents)), documents=tuple(documents)), state

    async def _on_stats(self, user_id: int, state: ArchiveState, event: Event) -> Tuple[Reply, ArchiveState]:
        s = self.stats_of(user_id)
        return (
            Reply(texts.ARCHIVE_STATS.format(zips=s.zips, extracts=s.extracts, searches=s.searches, received=s.received, sent=s.sent)),
            state,
        )
