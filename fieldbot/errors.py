from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .modes import Mode


class FieldbotError(Exception):
    """Base class for every recoverable error raised by the core."""


class ModeMismatchError(FieldbotError):
    """An event was addressed to a mode the user is not currently in."""

    def __init__(self, actual_mode: "Mode", expected_mode: Optional["Mode"] = None) -> None:
        self.actual_mode = actual_mode
        self.expected_mode = expected_mode
        super().__init__(
            f"user is in mode {actual_mode.value!r}, event addressed to "
            f"{expected_mode.value if expected_mode is not None else None!r}"
        )


class StateExpiredError(ModeMismatchError):
    """The feature state was swept; the user has to enter the mode again."""

    def __init__(self, expected_mode: Optional["Mode"] = None) -> None:
        from .modes import Mode

        super().__init__(Mode.NONE, expected_mode)


class InvalidInputError(FieldbotError):
    """Malformed coordinate, out-of-range value or unparseable timestamp."""


class CollaboratorError(FieldbotError):
    """Geocoding, persistence, file or extraction collaborator failed."""
