from .start import router as start_router
from .modes import router as modes_router
from .events import router as events_router

__all__ = ["start_router", "modes_router", "events_router"]
