from __future__ import annotations

from typing import Optional

from aiogram import Bot, Dispatcher

from .collaborators import (
    ArchiveEngine,
    BotFileFetcher,
    FileFetcher,
    Geocoder,
    NominatimGeocoder,
    ResultSink,
    TextExtractor,
    ZipArchiveEngine,
)
from .config import Settings
from .db_results import SupabaseResultSink
from .handlers import events_router, modes_router, start_router
from .modes import Mode, ModeManager
from .openai_client import OpenAITextExtractor
from .session_store import Clock
from .workflows.archive import ArchiveWorkflow
from .workflows.geotags import GeotagWorkflow
from .workflows.kml import KmlWorkflow
from .workflows.measurement import MeasurementWorkflow
from .workflows.ocr import OcrWorkflow
from .workflows.workbook import WorkbookWorkflow


def default_geocoder(settings: Settings) -> Geocoder:
    return NominatimGeocoder(
        settings.geocoder_url,
        user_agent=settings.geocoder_user_agent,
        timeout=settings.geocoder_timeout,
    )


def build_mode_manager(
    settings: Settings,
    *,
    geocoder: Optional[Geocoder] = None,
    results: Optional[ResultSink] = None,
    files: Optional[FileFetcher] = None,
    archive: Optional[ArchiveEngine] = None,
    extractor: Optional[TextExtractor] = None,
    clock: Optional[Clock] = None,
) -> ModeManager:
    """Mode manager with every feature workflow registered."""
    archive = archive or ZipArchiveEngine()
    manager = ModeManager(
        clock=clock,
        default_ttl=settings.ttl_seconds(Mode.LOCATION.value),
        journal_path=settings.mode_log_path,
    )

    def ttl(mode: Mode) -> float:
        return settings.ttl_seconds(mode.value)

    manager.register_mode(
        MeasurementWorkflow(ttl(Mode.LOCATION), geocoder=geocoder, results=results, clock=clock)
    )
    manager.register_mode(
        WorkbookWorkflow(ttl(Mode.WORKBOOK), files=files, engine=archive, results=results, clock=clock)
    )
    manager.register_mode(
        ArchiveWorkflow(ttl(Mode.ARCHIVE), files=files, engine=archive, results=results, clock=clock)
    )
    manager.register_mode(
        GeotagWorkflow(ttl(Mode.GEOTAGS), geocoder=geocoder, results=results, clock=clock)
    )
    manager.register_mode(KmlWorkflow(ttl(Mode.KML), results=results, clock=clock))
    manager.register_mode(
        OcrWorkflow(ttl(Mode.OCR), files=files, extractor=extractor, results=results, clock=clock)
    )
    return manager


def build_dispatcher(modes: ModeManager, results: Optional[ResultSink] = None) -> Dispatcher:
    """Dispatcher with the bot routers; handlers receive ``modes`` and ``results`` by name."""
    dp = Dispatcher()
    dp.include_router(start_router)
    dp.include_router(modes_router)
    dp.include_router(events_router)
    dp.workflow_data["modes"] = modes
    dp.workflow_data["results"] = results
    return dp


def build_runtime(settings: Settings, bot: Bot, results: Optional[ResultSink] = None) -> ModeManager:
    """Mode manager wired with the production collaborators."""
    return build_mode_manager(
        settings,
        geocoder=default_geocoder(settings),
        results=results if results is not None else SupabaseResultSink.from_settings(settings),
        files=BotFileFetcher(bot),
        extractor=OpenAITextExtractor(),
    )
