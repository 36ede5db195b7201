import asyncio
from datetime import datetime

import pytest

from fieldbot.workflows.base import Event, FileRef
from fieldbot.workflows.geotags import GeotagStep, GeotagWorkflow

from conftest import FakeGeocoder, RecordingSink

PHOTO_1 = Event.photo_event(FileRef("photo-1"))
PHOTO_2 = Event.photo_event(FileRef("photo-2"))
HERE = Event.location_event(-7.25, 112.64)


@pytest.fixture
def geo():
    return FakeGeocoder({(-7.25, 112.64): "Jl. Pemuda, Surabaya"})


def run(wf, *events):
    async def scenario():
        await wf.initialize(1)
        replies = [await wf.handle_event(1, e) for e in events]
        await asyncio.sleep(0)
        return replies

    return asyncio.run(scenario())


def test_photo_then_location_resends_the_photo_with_a_caption(clock, geo):
    sink = RecordingSink()
    wf = GeotagWorkflow(600, geocoder=geo, results=sink, clock=clock)
    pending, tagged = run(wf, PHOTO_1, HERE)

    assert "Now send the location" in pending.text
    assert tagged.photo_file_id == "photo-1"
    assert "Jl. Pemuda, Surabaya" in tagged.text
    assert "-7.25, 112.64" in tagged.text
    assert datetime.fromtimestamp(clock.now).strftime("%Y-%m-%d %H:%M") in tagged.text

    state = wf.state_of(1)
    assert state.step is GeotagStep.AWAITING_PHOTO
    assert state.pending_photo is None and state.tagged == 1
    assert [kind for _u, kind, _p in sink.saved] == ["geotag"]


def test_location_without_photo_asks_for_one(clock, geo):
    wf = GeotagWorkflow(600, geocoder=geo, clock=clock)
    (reply,) = run(wf, HERE)
    assert "Send a photo first" in reply.text
    assert reply.photo_file_id is None


def test_newer_photo_replaces_the_pending_one(clock, geo):
    wf = GeotagWorkflow(600, geocoder=geo, clock=clock)
    _, replaced, tagged = run(wf, PHOTO_1, PHOTO_2, HERE)
    assert "previous one was dropped" in replaced.text
    assert tagged.photo_file_id == "photo-2"


def test_sticky_location_tags_every_following_photo(clock, geo):
    wf = GeotagWorkflow(600, geocoder=geo, clock=clock)
    on, sticky_set, first, second, off = run(
        wf, Event.command_event("alwaystag"), HERE, PHOTO_1, PHOTO_2, Event.command_event("alwaystag")
    )
    assert "AlwaysTag ON" in on.text
    assert "AlwaysTag location set" in sticky_set.text
    assert first.photo_file_id == "photo-1" and second.photo_file_id == "photo-2"
    assert "AlwaysTag OFF" in off.text
    state = wf.state_of(1)
    assert state.step is GeotagStep.AWAITING_PHOTO
    assert state.sticky_point is None
    assert state.tagged == 2


def test_photo_sent_before_the_sticky_location_is_tagged_with_it(clock, geo):
    wf = GeotagWorkflow(600, geocoder=geo, clock=clock)
    _, waiting, tagged = run(wf, Event.command_event("alwaystag"), PHOTO_1, HERE)
    assert "sticky" in waiting.text
    assert tagged.photo_file_id == "photo-1"
    assert wf.step_of(1) is GeotagStep.STICKY


def test_custom_time_is_used_until_reset(clock, geo):
    wf = GeotagWorkflow(600, geocoder=geo, clock=clock)
    set_reply, _, tagged, reset, bad, usage = run(
        wf,
        Event.command_event("set_time", "2024-01-20 10:30"),
        PHOTO_1,
        HERE,
        Event.command_event("set_time", "reset"),
        Event.command_event("set_time", "20/01/2024"),
        Event.command_event("set_time"),
    )
    assert "2024-01-20 10:30" in set_reply.text
    assert "2024-01-20 10:30" in tagged.text
    assert "current time" in reset.text
    assert "Invalid date/time" in bad.text
    assert usage.text.startswith("Usage: /set_time")
    assert wf.state_of(1).custom_time is None


def test_bad_location_text_keeps_the_pending_photo(clock, geo):
    wf = GeotagWorkflow(600, geocoder=geo, clock=clock)
    _, bad = run(wf, PHOTO_1, Event.text_event("the old bridge"))
    assert bad.text.startswith("⚠️")
    state = wf.state_of(1)
    assert state.step is GeotagStep.AWAITING_LOCATION
    assert state.pending_photo.file_id == "photo-1"
