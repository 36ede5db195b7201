from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .. import texts
from ..collaborators import FileFetcher, ResultSink, TextExtractor, fire_and_forget
from ..errors import CollaboratorError, InvalidInputError
from ..modes import Mode
from ..session_store import Clock
from .base import ANY_STEP, Event, EventKind, Reply, Workflow

log = logging.getLogger(__name__)

# Telegram rejects messages over 4096 characters
MAX_TEXT_CHARS = 3900


class OcrStep(Enum):
    READY = "ready"
    PROCESSING = "processing"


@dataclass(frozen=True)
class OcrState:
    step: OcrStep = OcrStep.READY
    images_processed: int = 0


class OcrWorkflow(Workflow[OcrState]):
    mode = Mode.OCR
    commands = frozenset({"clear_ocr"})

    def __init__(
        self,
        ttl: float,
        *,
        files: Optional[FileFetcher] = None,
        extractor: Optional[TextExtractor] = None,
        results: Optional[ResultSink] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.files = files
        self.extractor = extractor
        self.results = results
        super().__init__(ttl, clock=clock)

    def initial_state(self, user_id: int) -> OcrState:
        return OcrState()

    def intro(self) -> Reply:
        return Reply(texts.OCR_INTRO)

    def transitions(self):
        ready = OcrStep.READY
        busy = OcrStep.PROCESSING
        return {
            (ready, EventKind.PHOTO): self._on_image,
            (ready, EventKind.DOCUMENT): self._on_image,
            (busy, EventKind.PHOTO): self._on_busy,
            (busy, EventKind.DOCUMENT): self._on_busy,
            (ANY_STEP, "clear_ocr"): self._on_clear,
        }

    async def _on_busy(self, user_id: int, state: OcrState, event: Event) -> Tuple[Reply, None]:
        return Reply(texts.OCR_BUSY), None

    async def _on_image(self, user_id: int, state: OcrState, event: Event) -> Tuple[Reply, OcrState]:
        file = event.file
        mime_type = "image/jpeg"
        if event.kind is EventKind.DOCUMENT:
            mime_type = (file.mime_type if file else None) or ""
            if not mime_type.startswith("image/"):
                raise InvalidInputError(texts.OCR_NOT_IMAGE)
        if file is None:
            raise InvalidInputError(texts.OCR_NOT_IMAGE)
        if self.files is None or self.extractor is None:
            raise CollaboratorError("text extraction is not configured")

        # visible to concurrent events while the extractor runs
        self.store.put(user_id, replace(state, step=OcrStep.PROCESSING))
        try:
            image = await self.files.fetch(file.file_id)
            text = (await self.extractor.extract_text(image, mime_type)).strip()
        except BaseException:
            self.store.update(user_id, lambda s: replace(s, step=OcrStep.READY) if s is not None else None)
            raise

        done = replace(state, step=OcrStep.READY, images_processed=state.images_processed + 1)
        log.info("user %s: OCR image %d returned %d chars", user_id, done.images_processed, len(text))
        if not text:
            return Reply(texts.OCR_NO_TEXT), done
        fire_and_forget(self.results, user_id, "ocr", {"chars": len(text)})
        if len(text) > MAX_TEXT_CHARS:
            text = text[:MAX_TEXT_CHARS] + "…"
        return Reply(texts.OCR_RESULT.format(text=text)), done

    async def _on_clear(self, user_id: int, state: OcrState, event: Event) -> Tuple[Reply, OcrState]:
        return Reply(texts.OCR_CLEARED.format(count=state.images_processed)), OcrState()
