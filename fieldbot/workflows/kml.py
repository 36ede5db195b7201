from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

from .. import texts
from ..collaborators import ResultSink, fire_and_forget
from ..errors import InvalidInputError
from ..geodesy import GeoPoint
from ..modes import Mode
from ..session_store import Clock
from .base import ANY_STEP, Event, EventKind, Reply, ReplyDocument, Workflow, require_point

KML_NS = "http://www.opengis.net/kml/2.2"

_ADD_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*[,;\s]\s*(-?\d+(?:\.\d+)?)(?:\s+(.+?))?\s*$")
_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class KmlStep(Enum):
    COLLECTING = "collecting"
    DRAWING_LINE = "drawing_line"


@dataclass(frozen=True)
class Placemark:
    name: str
    point: GeoPoint


@dataclass(frozen=True)
class LineTrack:
    name: str
    points: Tuple[GeoPoint, ...] = ()


@dataclass(frozen=True)
class KmlState:
    step: KmlStep = KmlStep.COLLECTING
    placemarks: Tuple[Placemark, ...] = ()
    lines: Tuple[LineTrack, ...] = ()
    active_line: Optional[LineTrack] = None
    always_name: Optional[str] = None
    next_name: Optional[str] = None

    def has_exportable_data(self) -> bool:
        return bool(self.placemarks or self.lines) or (
            self.active_line is not None and len(self.active_line.points) >= 2
        )


def build_kml(state: KmlState, document_name: str) -> bytes:
    """KML 2.2 document with every placemark, saved line and a drawable active line."""
    ET.register_namespace("", KML_NS)

    def q(tag: str) -> str:
        return f"{{{KML_NS}}}{tag}"

    def coords(point: GeoPoint) -> str:
        return f"{point.longitude},{point.latitude},0"

    def add_line(parent: ET.Element, name: str, points: Tuple[GeoPoint, ...]) -> None:
        pm = ET.SubElement(parent, q("Placemark"))
        ET.SubElement(pm, q("name")).text = name
        ls = ET.SubElement(pm, q("LineString"))
        ET.SubElement(ls, q("tessellate")).text = "1"
        ET.SubElement(ls, q("coordinates")).text = "\n".join(coords(p) for p in points)

    root = ET.Element(q("kml"))
    doc = ET.SubElement(root, q("Document"))
    ET.SubElement(doc, q("name")).text = document_name

    for placemark in state.placemarks:
        pm = ET.SubElement(doc, q("Placemark"))
        ET.SubElement(pm, q("name")).text = placemark.name
        point = ET.SubElement(pm, q("Point"))
        ET.SubElement(point, q("coordinates")).text = coords(placemark.point)

    for line in state.lines:
        if len(line.points) >= 2:
            add_line(doc, line.name, line.points)

    active = state.active_line
    if active is not None and len(active.points) >= 2:
        add_line(doc, active.name + texts.KML_DRAFT_SUFFIX, active.points)

    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


class KmlWorkflow(Workflow[KmlState]):
    """Collects named points and lines and exports them as a KML document."""

    mode = Mode.KML
    commands = frozenset(
        {"add", "addpoint", "alwayspoint", "startline", "endline", "cancelline", "mydata", "createkml", "cleardata"}
    )

    def __init__(self, ttl: float, *, results: Optional[ResultSink] = None, clock: Optional[Clock] = None) -> None:
        self.results = results
        super().__init__(ttl, clock=clock)

    def initial_state(self, user_id: int) -> KmlState:
        return KmlState()

    def intro(self) -> Reply:
        return Reply(texts.KML_INTRO)

    def transitions(self):
        collecting = KmlStep.COLLECTING
        drawing = KmlStep.DRAWING_LINE
        return {
            (collecting, EventKind.LOCATION): self._on_location_point,
            (collecting, EventKind.TEXT): self._on_location_point,
            (collecting, "add"): self._on_add,
            (collecting, "startline"): self._on_start_line,
            (collecting, "endline"): self._on_no_line,
            (collecting, "cancelline"): self._on_no_line,
            (drawing, EventKind.LOCATION): self._on_extend_line,
            (drawing, EventKind.TEXT): self._on_extend_line,
            (drawing, "add"): self._on_add,
            (drawing, "startline"): self._on_line_already_active,
            (drawing, "endline"): self._on_end_line,
            (drawing, "cancelline"): self._on_cancel_line,
            (ANY_STEP, "addpoint"): self._on_next_name,
            (ANY_STEP, "alwayspoint"): self._on_always_name,
            (ANY_STEP, "mydata"): self._on_my_data,
            (ANY_STEP, "createkml"): self._on_create_kml,
            (ANY_STEP, "cleardata"): self._on_clear,
        }

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    def _store_placemark(self, state: KmlState, point: GeoPoint, name: Optional[str], prefix: str) -> Tuple[Reply, KmlState]:
        next_name = state.next_name
        if name:
            final = name
        elif next_name:
            final = next_name
            next_name = None
        elif state.always_name:
            final = state.always_name
        else:
            final = f"{prefix} {len(state.placemarks) + 1}"
        placemark = Placemark(final, point)
        reply = Reply(texts.KML_POINT_SAVED.format(name=final, coords=point.coords_text(5)))
        return reply, replace(state, placemarks=state.placemarks + (placemark,), next_name=next_name)

    def _extend(self, state: KmlState, point: GeoPoint, ignored_name: Optional[str] = None) -> Tuple[Reply, KmlState]:
        line = state.active_line
        if line is None:
            return self._store_placemark(state, point, ignored_name, "Point")
        extended = replace(line, points=line.points + (point,))
        text = texts.KML_LINE_POINT_ADDED.format(coords=point.coords_text(5), line=line.name, count=len(extended.points))
        if ignored_name:
            text += texts.KML_LINE_NAME_IGNORED.format(name=ignored_name)
        return Reply(text), replace(state, active_line=extended)

    async def _on_location_point(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        return self._store_placemark(state, require_point(event), None, "Location")

    async def _on_extend_line(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        return self._extend(state, require_point(event))

    async def _on_add(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        if not event.args:
            return Reply(texts.KML_ADD_USAGE), state
        m = _ADD_RE.match(event.args)
        if not m:
            raise InvalidInputError(f"cannot read coordinates from {event.args!r}. {texts.KML_ADD_USAGE}")
        point = GeoPoint.of(m.group(1), m.group(2))
        name = (m.group(3) or "").strip() or None
        if state.step is KmlStep.DRAWING_LINE:
            return self._extend(state, point, ignored_name=name)
        return self._store_placemark(state, point, name, "Point")

    async def _on_next_name(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        name = event.args.strip()
        if not name:
            return Reply(texts.KML_ADDPOINT_USAGE), state
        return Reply(texts.KML_NEXT_NAME_SET.format(name=name)), replace(state, next_name=name)

    async def _on_always_name(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        name = event.args.strip()
        if name:
            return Reply(texts.KML_ALWAYS_SET.format(name=name)), replace(state, always_name=name)
        if state.always_name:
            return Reply(texts.KML_ALWAYS_CLEARED.format(name=state.always_name)), replace(state, always_name=None)
        return Reply(texts.KML_ALWAYS_NONE), state

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    async def _on_start_line(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        name = event.args.strip() or f"Line {len(state.lines) + 1}"
        return (
            Reply(texts.KML_LINE_STARTED.format(name=name)),
            replace(state, step=KmlStep.DRAWING_LINE, active_line=LineTrack(name)),
        )

    async def _on_line_already_active(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        name = state.active_line.name if state.active_line else ""
        return Reply(texts.KML_LINE_ALREADY_ACTIVE.format(name=name)), state

    async def _on_no_line(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        return Reply(texts.KML_NO_ACTIVE_LINE), state

    async def _on_end_line(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        line = state.active_line
        if line is None:
            return Reply(texts.KML_NO_ACTIVE_LINE), replace(state, step=KmlStep.COLLECTING)
        if len(line.points) < 2:
            return Reply(texts.KML_LINE_TOO_SHORT.format(name=line.name, count=len(line.points))), state
        return (
            Reply(texts.KML_LINE_SAVED.format(name=line.name, count=len(line.points))),
            replace(state, step=KmlStep.COLLECTING, lines=state.lines + (line,), active_line=None),
        )

    async def _on_cancel_line(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        name = state.active_line.name if state.active_line else ""
        return (
            Reply(texts.KML_LINE_CANCELLED.format(name=name)),
            replace(state, step=KmlStep.COLLECTING, active_line=None),
        )

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    async def _on_my_data(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        parts = []
        if state.always_name:
            parts.append(f"📌 Default point name: \"{state.always_name}\" (/alwayspoint without a name clears it)")
        if state.placemarks:
            rows = [
                f"{i}. {p.name} ({p.point.coords_text(4)})"
                for i, p in enumerate(state.placemarks, start=1)
            ]
            parts.append("📍 Points:\n" + "\n".join(rows))
        if state.lines:
            rows = [f"{i}. {ln.name} ({len(ln.points)} points)" for i, ln in enumerate(state.lines, start=1)]
            parts.append("〰️ Lines:\n" + "\n".join(rows))
        if state.active_line is not None:
            parts.append(f"🚧 Drawing: {state.active_line.name} ({len(state.active_line.points)} points)")
        if not parts:
            return Reply(texts.KML_NOTHING_STORED), state
        return Reply("📜 Your KML data:\n\n" + "\n\n".join(parts)), state

    async def _on_create_kml(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        if not state.has_exportable_data():
            return Reply(texts.KML_NOTHING_TO_EXPORT), state
        name = event.args.strip() or f"KML Data - User {user_id}"
        data = build_kml(state, name)
        filename = (_FILENAME_RE.sub("_", name).strip("_") or "data") + ".kml"
        fire_and_forget(
            self.results,
            user_id,
            "kml",
            {"name": name, "points": len(state.placemarks), "lines": len(state.lines)},
        )
        return Reply(texts.KML_CREATED.format(name=name), documents=(ReplyDocument(filename, data),)), state

    async def _on_clear(self, user_id: int, state: KmlState, event: Event) -> Tuple[Reply, KmlState]:
        return Reply(texts.KML_CLEARED), KmlState()
