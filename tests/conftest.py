from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple

import pytest

# Settings are read at import time; keep the real environment out of tests
os.environ["BOT_TOKEN"] = "123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw"
os.environ["TELEGRAM_WEBHOOK_SECRET"] = "test-secret"
for _name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "OPENAI_API_KEY", "MODE_LOG_PATH"):
    os.environ.pop(_name, None)

from fieldbot.config import Settings  # noqa: E402
from fieldbot.errors import CollaboratorError  # noqa: E402
from fieldbot.geodesy import GeoPoint  # noqa: E402
from fieldbot.state import build_mode_manager  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGeocoder:
    def __init__(self, addresses: Optional[Dict[Tuple[float, float], str]] = None, fail: bool = False) -> None:
        self.addresses = addresses or {}
        self.fail = fail
        self.reverse_calls: List[GeoPoint] = []
        self.search_results: Dict[str, GeoPoint] = {}

    async def reverse(self, point: GeoPoint) -> str:
        self.reverse_calls.append(point)
        if self.fail:
            raise CollaboratorError("geocoder down")
        return self.addresses.get((point.latitude, point.longitude), f"Somewhere near {point.coords_text(2)}")

    async def search(self, query: str) -> Optional[GeoPoint]:
        if self.fail:
            raise CollaboratorError("geocoder down")
        return self.search_results.get(query)


class RecordingSink:
    def __init__(self) -> None:
        self.saved: List[Tuple[int, str, Dict[str, Any]]] = []

    async def save_result(self, user_id: int, kind: str, payload: Dict[str, Any]) -> bool:
        self.saved.append((user_id, kind, payload))
        return True


class FakeFiles:
    def __init__(self, blobs: Optional[Dict[str, bytes]] = None) -> None:
        self.blobs = dict(blobs or {})
        self.fetched: List[str] = []

    async def fetch(self, file_id: str) -> bytes:
        self.fetched.append(file_id)
        try:
            return self.blobs[file_id]
        except KeyError:
            raise CollaboratorError(f"unknown file {file_id}") from None


class FakeExtractor:
    def __init__(self, text: str = "HELLO WORLD", fail: bool = False) -> None:
        self.text = text
        self.fail = fail
        self.calls: List[Tuple[bytes, str]] = []

    async def extract_text(self, image: bytes, mime_type: str = "image/jpeg") -> str:
        self.calls.append((image, mime_type))
        if self.fail:
            raise CollaboratorError("vision model unavailable")
        return self.text


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def files() -> FakeFiles:
    return FakeFiles()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        bot_token="123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw",
        supabase_url=None,
        supabase_service_role_key=None,
    )


@pytest.fixture
def manager(test_settings, clock, geocoder, sink, files, extractor):
    return build_mode_manager(
        test_settings,
        geocoder=geocoder,
        results=sink,
        files=files,
        extractor=extractor,
        clock=clock,
    )
