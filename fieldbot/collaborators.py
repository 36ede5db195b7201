"""
Narrow interfaces to everything outside the mode/session core, plus the
default implementations the bot is wired with.

Each workflow only ever sees these protocols, so tests plug in fakes and the
core never depends on how geocoding, persistence or file transfer are done.
"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from typing import Any, Dict, Iterable, Optional, Protocol, Set, Tuple

import httpx

from .errors import CollaboratorError
from .geodesy import GeoPoint

log = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def reverse(self, point: GeoPoint) -> str:
        ...

    async def search(self, query: str) -> Optional[GeoPoint]:
        ...


class ResultSink(Protocol):
    async def save_result(self, user_id: int, kind: str, payload: Dict[str, Any]) -> bool:
        ...


class FileFetcher(Protocol):
    async def fetch(self, file_id: str) -> bytes:
        ...


class ArchiveEngine(Protocol):
    def compress(self, files: Iterable[Tuple[str, bytes]]) -> bytes:
        ...

    def extract(self, data: bytes) -> Dict[str, bytes]:
        ...


class TextExtractor(Protocol):
    async def extract_text(self, image: bytes, mime_type: str = "image/jpeg") -> str:
        ...


class NominatimGeocoder:
    """OpenStreetMap Nominatim over httpx."""

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        *,
        user_agent: str = "fieldbot/1.0",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self._transport = transport

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            ) as client:
                resp = await client.get(f"{self.base_url}{path}", params=params)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"geocoder request {path} failed: {e}") from e

    async def reverse(self, point: GeoPoint) -> str:
        data = await self._get(
            "/reverse",
            {"lat": point.latitude, "lon": point.longitude, "format": "json"},
        )
        name = data.get("display_name") if isinstance(data, dict) else None
        if not name:
            raise CollaboratorError("geocoder returned no address")
        return str(name)

    async def search(self, query: str) -> Optional[GeoPoint]:
        data = await self._get("/search", {"q": query, "format": "json", "limit": 1})
        if not data:
            return None
        row = data[0]
        try:
            return GeoPoint.of(row["lat"], row["lon"]).with_address(row.get("display_name"))
        except (KeyError, TypeError, ValueError) as e:
            raise CollaboratorError(f"geocoder returned an unusable row: {e}") from e


async def describe_point(geocoder: Optional[Geocoder], point: GeoPoint) -> GeoPoint:
    """Attach a resolved address; falls back to the literal coordinates."""
    if geocoder is None:
        return point.with_address(point.coords_text())
    try:
        address = await geocoder.reverse(point)
    except CollaboratorError as e:
        log.info("reverse geocoding failed, using coordinates: %s", e)
        address = None
    except Exception as e:
        log.warning("geocoder raised unexpectedly: %s", e)
        address = None
    return point.with_address(address or point.coords_text())


_pending_saves: Set["asyncio.Task[Any]"] = set()


def fire_and_forget(sink: Optional[ResultSink], user_id: int, kind: str, payload: Dict[str, Any]) -> None:
    """Hand a result to persistence without waiting for it."""
    if sink is None:
        return

    async def _save() -> None:
        try:
            ok = await sink.save_result(user_id, kind, payload)
            if not ok:
                log.info("result %s for user %s was not persisted", kind, user_id)
        except Exception as e:
            log.warning("saving %s result for user %s failed: %s", kind, user_id, e)

    task = asyncio.create_task(_save())
    _pending_saves.add(task)
    task.add_done_callback(_pending_saves.discard)


class ZipArchiveEngine:
    """Archive collaborator backed by :mod:`zipfile`."""

    def __init__(self, max_entries: int = 2000, max_total_bytes: int = 256 * 1024 * 1024) -> None:
        self.max_entries = max_entries
        self.max_total_bytes = max_total_bytes

    def compress(self, files: Iterable[Tuple[str, bytes]]) -> bytes:
        buf = io.BytesIO()
        used: Set[str] = set()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for name, data in files:
                zf.writestr(_unique_name(name, used), data)
        return buf.getvalue()

    def extract(self, data: bytes) -> Dict[str, bytes]:
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                infos = [i for i in zf.infolist() if not i.is_dir()]
                if len(infos) > self.max_entries:
                    raise CollaboratorError(f"archive has more than {self.max_entries} entries")
                total = sum(i.file_size for i in infos)
                if total > self.max_total_bytes:
                    raise CollaboratorError(
                        f"archive expands to {total} bytes, limit is {self.max_total_bytes}"
                    )
                return {i.filename: zf.read(i) for i in infos}
        except zipfile.BadZipFile as e:
            raise CollaboratorError(f"not a readable zip archive: {e}") from e


def _unique_name(name: str, used: Set[str]) -> str:
    base = name or "file"
    candidate = base
    n = 1
    while candidate in used:
        stem, dot, ext = base.rpartition(".")
        candidate = f"{stem}_{n}.{ext}" if dot and stem else f"{base}_{n}"
        n += 1
    used.add(candidate)
    return candidate


class BotFileFetcher:
    """Downloads Telegram files through an aiogram ``Bot``."""

    def __init__(self, bot: Any) -> None:
        self._bot = bot

    async def fetch(self, file_id: str) -> bytes:
        try:
            buf = await self._bot.download(file_id)
        except Exception as e:
            raise CollaboratorError(f"download of {file_id} failed: {e}") from e
        if buf is None:
            raise CollaboratorError(f"download of {file_id} returned nothing")
        return buf.getvalue()
