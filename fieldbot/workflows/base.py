from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    FrozenSet,
    Generic,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from ..errors import CollaboratorError, InvalidInputError, StateExpiredError
from ..geodesy import GeoPoint
from ..session_store import Clock, SessionStore
from .. import texts

if TYPE_CHECKING:  # pragma: no cover
    from ..modes import Mode


log = logging.getLogger(__name__)


class EventKind(Enum):
    COMMAND = "command"
    TEXT = "text"
    LOCATION = "location"
    PHOTO = "photo"
    DOCUMENT = "document"


@dataclass(frozen=True)
class FileRef:
    file_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True)
class Event:
    kind: EventKind
    command: Optional[str] = None  # lowercased, without the leading slash
    args: str = ""
    text: Optional[str] = None
    point: Optional[GeoPoint] = None
    file: Optional[FileRef] = None

    @staticmethod
    def command_event(command: str, args: str = "") -> "Event":
        return Event(EventKind.COMMAND, command=command.lstrip("/").lower(), args=(args or "").strip())

    @staticmethod
    def text_event(text: str) -> "Event":
        return Event(EventKind.TEXT, text=text)

    @staticmethod
    def location_event(latitude: float, longitude: float) -> "Event":
        # Not validated here; workflows validate through require_point()
        return Event(EventKind.LOCATION, point=GeoPoint(latitude, longitude))

    @staticmethod
    def photo_event(file: FileRef, caption: Optional[str] = None) -> "Event":
        return Event(EventKind.PHOTO, file=file, text=caption)

    @staticmethod
    def document_event(file: FileRef, caption: Optional[str] = None) -> "Event":
        return Event(EventKind.DOCUMENT, file=file, text=caption)

    @property
    def trigger(self) -> Union[str, EventKind]:
        if self.kind is EventKind.COMMAND and self.command:
            return self.command
        return self.kind


@dataclass(frozen=True)
class ReplyDocument:
    filename: str
    data: bytes


@dataclass(frozen=True)
class Reply:
    text: str
    keyboard: Optional[Tuple[Tuple[str, ...], ...]] = None
    documents: Tuple[ReplyDocument, ...] = ()
    photo_file_id: Optional[str] = None


# Wildcard step for rows that apply in every step
ANY_STEP = "*"

S = TypeVar("S")
Handler = Callable[[int, Any, Event], Awaitable[Tuple[Reply, Any]]]


def require_point(event: Event) -> GeoPoint:
    """Validated point from a location share or a "lat, lon" text."""
    if event.kind is EventKind.LOCATION and event.point is not None:
        return GeoPoint.of(event.point.latitude, event.point.longitude)
    if event.kind is EventKind.TEXT:
        return GeoPoint.parse(event.text or "")
    raise InvalidInputError("a location or a 'lat, lon' pair is required")


class Workflow(ABC, Generic[S]):
    """A mode's multi-turn interaction as an explicit state machine.

    Subclasses declare ``mode``, the slash ``commands`` they own, an
    ``initial_state`` and a transition table mapping ``(step, trigger)`` to an
    async handler. A trigger is a command name or an ``EventKind``. Handlers
    return the reply and the next state; they may raise ``InvalidInputError``
    (the step stays as it was) or ``CollaboratorError`` (degraded reply).
    Any pair missing from the table gets a corrective reply.

    State lives in the workflow's own ``SessionStore``. Handlers run without
    holding the store's lock and the next state is written once they return;
    callers serialize events per user.
    """

    mode: ClassVar["Mode"]
    commands: ClassVar[FrozenSet[str]] = frozenset()

    def __init__(self, ttl: float, *, clock: Optional[Clock] = None) -> None:
        self.ttl = float(ttl)
        self.store: SessionStore[int, S] = SessionStore(ttl, clock=clock, name=self.mode.value)
        self._table: Dict[Tuple[Any, Any], Handler] = self.transitions()

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    @abstractmethod
    def initial_state(self, user_id: int) -> S:
        ...

    @abstractmethod
    def transitions(self) -> Dict[Tuple[Any, Any], Handler]:
        ...

    @abstractmethod
    def intro(self) -> Reply:
        """Reply sent when the user enters the mode."""

    async def release(self, user_id: int, state: S) -> None:
        """Free feature-owned resources of a discarded state."""
        return None

    def unsupported(self, state: S, event: Event) -> Reply:
        return Reply(texts.UNSUPPORTED_EVENT.format(mode=self.mode.value))

    def corrective(self, state: S, event: Event, error: InvalidInputError) -> Reply:
        return Reply(texts.INVALID_INPUT.format(detail=str(error)))

    # ------------------------------------------------------------------
    # Contract used by the mode manager
    # ------------------------------------------------------------------

    async def initialize(self, user_id: int) -> S:
        previous = self.store.delete(user_id)
        if previous is not None:
            await self.release(user_id, previous)
        state = self.initial_state(user_id)
        self.store.put(user_id, state)
        return state

    async def handle_event(self, user_id: int, event: Event) -> Reply:
        state = self.store.get(user_id)
        if state is None:
            raise StateExpiredError(self.mode)

        step = getattr(state, "step", None)
        handler = self._table.get((step, event.trigger)) or self._table.get((ANY_STEP, event.trigger))
        if handler is None:
            self.store.touch(user_id)
            return self.unsupported(state, event)

        try:
            reply, next_state = await handler(user_id, state, event)
        except InvalidInputError as e:
            log.info("%s: rejected input from user %s: %s", self.mode.value, user_id, e)
            self.store.touch(user_id)
            return self.corrective(state, event, e)
        except CollaboratorError as e:
            log.warning("%s: collaborator failed for user %s: %s", self.mode.value, user_id, e)
            self.store.touch(user_id)
            return Reply(texts.COLLABORATOR_FAILED)
        except Exception:
            log.exception("%s: handler crashed for user %s; resetting workflow", self.mode.value, user_id)
            await self.initialize(user_id)
            return Reply(texts.WORKFLOW_RESET)

        # cleanup may have run while the handler was awaiting a collaborator
        if self.store.get(user_id) is not None:
            if next_state is not None:
                self.store.put(user_id, next_state)
            else:
                self.store.touch(user_id)
        return reply

    async def cleanup(self, user_id: int) -> None:
        state = self.store.delete(user_id)
        if state is None:
            return
        try:
            await self.release(user_id, state)
        except Exception as e:
            log.warning("%s: releasing resources for user %s failed: %s", self.mode.value, user_id, e)

    async def expire(self, user_id: int, now: float) -> bool:
        """Drop the user's state if it is still idle past the TTL at ``now``."""
        state = self.store.delete_if_stale(user_id, now, self.ttl)
        if state is None:
            return False
        log.info("%s: expired state of user %s", self.mode.value, user_id)
        try:
            await self.release(user_id, state)
        except Exception as e:
            log.warning("%s: releasing expired state of %s failed: %s", self.mode.value, user_id, e)
        return True

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def state_of(self, user_id: int) -> Optional[S]:
        return self.store.get(user_id)

    def step_of(self, user_id: int) -> Optional[Enum]:
        state = self.store.get(user_id)
        return getattr(state, "step", None) if state is not None else None

    def owns(self, command: str) -> bool:
        return command in self.commands
