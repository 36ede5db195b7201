from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .. import texts
from ..collaborators import Geocoder, ResultSink, describe_point, fire_and_forget
from ..errors import InvalidInputError
from ..geodesy import GeoPoint, Measurement, TravelProfile, measure
from ..modes import Mode
from ..session_store import Clock
from .base import ANY_STEP, Event, EventKind, Reply, Workflow, require_point

log = logging.getLogger(__name__)


class MeasurementStep(Enum):
    AWAITING_FIRST_POINT = "awaiting_first_point"
    AWAITING_SECOND_POINT = "awaiting_second_point"
    COMPLETE = "complete"


@dataclass(frozen=True)
class MeasurementState:
    step: MeasurementStep = MeasurementStep.AWAITING_FIRST_POINT
    profile: TravelProfile = TravelProfile.FOOT
    first_point: Optional[GeoPoint] = None
    second_point: Optional[GeoPoint] = None
    last_result: Optional[Measurement] = None


_PROFILE_COMMANDS = {
    "measure": TravelProfile.FOOT,
    "measure_motor": TravelProfile.MOTORCYCLE,
    "measure_car": TravelProfile.CAR,
}

OSM_MAP_URL = "https://www.openstreetmap.org/?mlat={lat}&mlon={lon}#map={zoom}/{lat}/{lon}"


def map_link(point: GeoPoint, zoom: int = 16) -> str:
    return OSM_MAP_URL.format(lat=f"{point.latitude:.6f}", lon=f"{point.longitude:.6f}", zoom=zoom)


class MeasurementWorkflow(Workflow[MeasurementState]):
    """Two-point distance and travel-time measurement (location mode)."""

    mode = Mode.LOCATION
    commands = frozenset({*_PROFILE_COMMANDS, "cancel", "address", "coords", "show_map"})

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

    def initial_state(self, user_id: int) -> MeasurementState:
        return MeasurementState()

    def intro(self) -> Reply:
        return Reply(texts.LOCATION_INTRO)

    def transitions(self):
        first = MeasurementStep.AWAITING_FIRST_POINT
        second = MeasurementStep.AWAITING_SECOND_POINT
        table = {
            (first, EventKind.LOCATION): self._on_first_point,
            (first, EventKind.TEXT): self._on_first_point,
            (first, "cancel"): self._on_cancel_idle,
            (second, EventKind.LOCATION): self._on_second_point,
            (second, EventKind.TEXT): self._on_second_point,
            (second, "cancel"): self._on_cancel,
            (ANY_STEP, "address"): self._on_address,
            (ANY_STEP, "coords"): self._on_coords,
            (ANY_STEP, "show_map"): self._on_show_map,
        }
        for command in _PROFILE_COMMANDS:
            table[(ANY_STEP, command)] = self._on_start
        return table

    def corrective(self, state: MeasurementState, event: Event, error: InvalidInputError) -> Reply:
        if event.kind in (EventKind.LOCATION, EventKind.TEXT):
            return Reply(texts.POINT_EXPECTED.format(detail=str(error)))
        return super().corrective(state, event, error)

    async def _on_start(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        profile = _PROFILE_COMMANDS[event.command or "measure"]
        log.info("user %s measuring with profile %s", user_id, profile.value)
        return (
            Reply(texts.MEASURE_STARTED.format(profile=profile.label)),
            MeasurementState(profile=profile, last_result=state.last_result),
        )

    async def _on_first_point(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        point = await describe_point(self.geocoder, require_point(event))
        reply = Reply(
            texts.FIRST_POINT_RECEIVED.format(address=point.address, coords=point.coords_text())
        )
        return reply, replace(
            state,
            step=MeasurementStep.AWAITING_SECOND_POINT,
            first_point=point,
            second_point=None,
        )

    async def _on_second_point(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        point = await describe_point(self.geocoder, require_point(event))
        if state.first_point is None:
            # cannot happen through the table, but never corrupt the state
            return await self._on_first_point(user_id, state, event)

        result = measure(state.first_point, point, state.profile)
        complete = replace(state, step=MeasurementStep.COMPLETE, second_point=point, last_result=result)
        log.info(
            "user %s measured %.1f m (%s)",
            user_id,
            result.distance_m,
            result.profile.value,
        )
        fire_and_forget(self.results, user_id, "measurement", result.as_payload())

        reply = Reply(
            texts.MEASUREMENT_RESULT.format(
                profile=result.profile.label,
                first_address=result.first.address,
                first_coords=result.first.coords_text(),
                second_address=result.second.address,
                second_coords=result.second.coords_text(),
                distance=result.distance_text,
                duration=result.duration_text,
            )
        )
        # COMPLETE is terminal; a fresh measurement starts right away
        return reply, MeasurementState(profile=complete.profile, last_result=complete.last_result)

    async def _on_cancel(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        return Reply(texts.MEASURE_CANCELLED), MeasurementState(profile=state.profile, last_result=state.last_result)

    async def _on_cancel_idle(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        return Reply(texts.NOTHING_TO_CANCEL), state

    async def _on_address(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        query = event.args.strip()
        if not query:
            return Reply(texts.ADDRESS_USAGE), state
        if self.geocoder is None:
            return Reply(texts.ADDRESS_NOT_FOUND.format(query=query)), state
        found = await self.geocoder.search(query)
        if found is None:
            return Reply(texts.ADDRESS_NOT_FOUND.format(query=query)), state
        return (
            Reply(texts.ADDRESS_FOUND.format(address=found.label(), lat=found.latitude, lon=found.longitude)),
            state,
        )

    async def _on_coords(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        if not event.args.strip():
            return Reply(texts.COORDS_USAGE), state
        point = await describe_point(self.geocoder, GeoPoint.parse(event.args))
        return Reply(texts.COORDS_FOUND.format(coords=point.coords_text(), address=point.address)), state

    async def _on_show_map(self, user_id: int, state: MeasurementState, event: Event) -> Tuple[Reply, MeasurementState]:
        """Map link for coordinates, a place name, or the last point received."""
        query = event.args.strip()
        if not query:
            point = state.first_point or (state.last_result.second if state.last_result else None)
            if point is None:
                return Reply(texts.SHOW_MAP_USAGE), state
        else:
            try:
                point = GeoPoint.parse(query)
            except InvalidInputError:
                found = await self.geocoder.search(query) if self.geocoder is not None else None
                if found is None:
                    return Reply(texts.ADDRESS_NOT_FOUND.format(query=query)), state
                point = found
        return Reply(texts.SHOW_MAP.format(label=point.label(), url=map_link(point))), state
