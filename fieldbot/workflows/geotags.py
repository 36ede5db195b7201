from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .. import texts
from ..collaborators import Geocoder, ResultSink, describe_point, fire_and_forget
from ..errors import InvalidInputError
from ..geodesy import GeoPoint
from ..modes import Mode
from ..session_store import Clock
from .base import ANY_STEP, Event, EventKind, FileRef, Reply, Workflow, require_point

log = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M"


class GeotagStep(Enum):
    AWAITING_PHOTO = "awaiting_photo"
    AWAITING_LOCATION = "awaiting_location"
    AWAITING_STICKY_LOCATION = "awaiting_sticky_location"
    STICKY = "sticky"


@dataclass(frozen=True)
class GeotagState:
    step: GeotagStep = GeotagStep.AWAITING_PHOTO
    pending_photo: Optional[FileRef] = None
    sticky_point: Optional[GeoPoint] = None
    custom_time: Optional[datetime] = None
    tagged: int = 0

    @property
    def sticky(self) -> bool:
        return self.step in (GeotagStep.AWAITING_STICKY_LOCATION, GeotagStep.STICKY)


class GeotagWorkflow(Workflow[GeotagState]):
    mode = Mode.GEOTAGS
    commands = frozenset({"alwaystag", "set_time"})

    def __init__(
        self,
        ttl: float,
        *,
        geocoder: Optional[Geocoder] = None,
        results: Optional[ResultSink] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.geocoder = geocoder
        self.results = results
        super().__init__(ttl, clock=clock)

    def initial_state(self, user_id: int) -> GeotagState:
        return GeotagState()

    def intro(self) -> Reply:
        return Reply(texts.GEOTAGS_INTRO)

    def transitions(self):
        photo = GeotagStep.AWAITING_PHOTO
        location = GeotagStep.AWAITING_LOCATION
        sticky_wait = GeotagStep.AWAITING_STICKY_LOCATION
        sticky = GeotagStep.STICKY
        table = {
            (photo, EventKind.PHOTO): self._on_photo,
            (location, EventKind.PHOTO): self._on_photo_replaced,
            (sticky_wait, EventKind.PHOTO): self._on_photo_before_sticky,
            (sticky, EventKind.PHOTO): self._on_sticky_photo,
            (ANY_STEP, "alwaystag"): self._on_toggle_sticky,
            (ANY_STEP, "set_time"): self._on_set_time,
        }
        for kind in (EventKind.LOCATION, EventKind.TEXT):
            table[(photo, kind)] = self._on_location_without_photo
            table[(location, kind)] = self._on_location
            table[(sticky_wait, kind)] = self._on_sticky_location
            table[(sticky, kind)] = self._on_sticky_location
        return table

    # ------------------------------------------------------------------

    def _timestamp(self, state: GeotagState) -> str:
        when = state.custom_time or datetime.fromtimestamp(self.store.now())
        return when.strftime(TIME_FORMAT)

    async def _tag(self, user_id: int, state: GeotagState, photo: FileRef, point: GeoPoint) -> Reply:
        point = await describe_point(self.geocoder, point)
        timestamp = self._timestamp(state)
        fire_and_forget(
            self.results,
            user_id,
            "geotag",
            {
                "file_id": photo.file_id,
                "latitude": point.latitude,
                "longitude": point.longitude,
                "address": point.address,
                "timestamp": timestamp,
            },
        )
        caption = texts.GEOTAG_CAPTION.format(address=point.address, coords=point.coords_text(), timestamp=timestamp)
        return Reply(caption, photo_file_id=photo.file_id)

    async def _on_photo(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        return (
            Reply(texts.GEOTAG_PHOTO_PENDING),
            replace(state, step=GeotagStep.AWAITING_LOCATION, pending_photo=event.file),
        )

    async def _on_photo_replaced(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        return Reply(texts.GEOTAG_PHOTO_REPLACED), replace(state, pending_photo=event.file)

    async def _on_photo_before_sticky(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        return Reply(texts.GEOTAG_PHOTO_WAITING_STICKY), replace(state, pending_photo=event.file)

    async def _on_sticky_photo(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        if state.sticky_point is None or event.file is None:
            return Reply(texts.GEOTAG_PHOTO_WAITING_STICKY), replace(
                state, step=GeotagStep.AWAITING_STICKY_LOCATION, pending_photo=event.file
            )
        reply = await self._tag(user_id, state, event.file, state.sticky_point)
        return reply, replace(state, tagged=state.tagged + 1)

    async def _on_location_without_photo(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        require_point(event)
        return Reply(texts.GEOTAG_LOCATION_WITHOUT_PHOTO), state

    async def _on_location(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        point = require_point(event)
        if state.pending_photo is None:
            return Reply(texts.GEOTAG_LOCATION_WITHOUT_PHOTO), replace(state, step=GeotagStep.AWAITING_PHOTO)
        reply = await self._tag(user_id, state, state.pending_photo, point)
        return reply, replace(
            state,
            step=GeotagStep.AWAITING_PHOTO,
            pending_photo=None,
            tagged=state.tagged + 1,
        )

    async def _on_sticky_location(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        point = require_point(event)
        updated = state.sticky_point is not None
        next_state = replace(state, step=GeotagStep.STICKY, sticky_point=point)
        if state.pending_photo is not None:
            reply = await self._tag(user_id, state, state.pending_photo, point)
            return reply, replace(next_state, pending_photo=None, tagged=state.tagged + 1)
        template = texts.GEOTAG_STICKY_UPDATED if updated else texts.GEOTAG_STICKY_SET
        return Reply(template.format(coords=point.coords_text())), next_state

    async def _on_toggle_sticky(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        if state.sticky:
            step = GeotagStep.AWAITING_LOCATION if state.pending_photo else GeotagStep.AWAITING_PHOTO
            return Reply(texts.GEOTAG_STICKY_OFF), replace(state, step=step, sticky_point=None)
        return Reply(texts.GEOTAG_STICKY_ON), replace(state, step=GeotagStep.AWAITING_STICKY_LOCATION)

    async def _on_set_time(self, user_id: int, state: GeotagState, event: Event) -> Tuple[Reply, GeotagState]:
        value = " ".join(event.args.split())
        if not value:
            return Reply(texts.GEOTAG_TIME_USAGE), state
        if value.lower() == "reset":
            return Reply(texts.GEOTAG_TIME_RESET), replace(state, custom_time=None)
        try:
            when = datetime.strptime(value, TIME_FORMAT)
        except ValueError:
            raise InvalidInputError(texts.GEOTAG_TIME_INVALID.format(value=value)) from None
        log.info("user %s set geotag time to %s", user_id, when.isoformat())
        return Reply(texts.GEOTAG_TIME_SET.format(timestamp=when.strftime(TIME_FORMAT))), replace(state, custom_time=when)
