import asyncio

from fieldbot.modes import Mode
from fieldbot.workflows.base import Event, FileRef
from fieldbot.workflows.measurement import MeasurementStep, MeasurementWorkflow
from fieldbot.geodesy import GeoPoint, TravelProfile

from conftest import FakeGeocoder, RecordingSink

START = Event.location_event(-7.257056, 112.648000)
END_TEXT = Event.text_event("-7.6382862, 112.7372882")


def _workflow(clock, geocoder=None, sink=None):
    return MeasurementWorkflow(600, geocoder=geocoder, results=sink, clock=clock)


def test_full_car_measurement(clock):
    geocoder = FakeGeocoder({(-7.257056, 112.648): "Jl. Raya Menganti, Surabaya"})
    sink = RecordingSink()
    wf = _workflow(clock, geocoder, sink)

    async def scenario():
        await wf.initialize(1)
        started = await wf.handle_event(1, Event.command_event("/measure_car"))
        assert "Car" in started.text

        first = await wf.handle_event(1, START)
        assert "Jl. Raya Menganti, Surabaya" in first.text
        assert wf.step_of(1) is MeasurementStep.AWAITING_SECOND_POINT

        result = await wf.handle_event(1, END_TEXT)
        # persistence is fire-and-forget; let it run
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return result

    result = asyncio.run(scenario())
    assert "52 minutes" in result.text
    assert "Car" in result.text
    state = wf.state_of(1)
    assert state.step is MeasurementStep.AWAITING_FIRST_POINT
    assert state.profile is TravelProfile.CAR
    assert 43_400 < state.last_result.distance_m < 43_650
    assert state.last_result.distance_text in result.text

    assert len(sink.saved) == 1
    user_id, kind, payload = sink.saved[0]
    assert (user_id, kind) == (1, "measurement")
    assert payload["profile"] == "car"


def test_default_profile_is_on_foot(clock):
    wf = _workflow(clock)

    async def scenario():
        await wf.initialize(1)
        await wf.handle_event(1, START)
        return await wf.handle_event(1, END_TEXT)

    reply = asyncio.run(scenario())
    assert "On foot" in reply.text
    assert "8 hours 42 minutes" in reply.text


def test_cancel_with_nothing_pending(clock):
    wf = _workflow(clock)

    async def scenario():
        await wf.initialize(1)
        return await wf.handle_event(1, Event.command_event("cancel"))

    reply = asyncio.run(scenario())
    assert "no measurement to cancel" in reply.text
    assert wf.step_of(1) is MeasurementStep.AWAITING_FIRST_POINT


def test_cancel_drops_first_point(clock):
    wf = _workflow(clock)

    async def scenario():
        await wf.initialize(1)
        await wf.handle_event(1, Event.command_event("measure_motor"))
        await wf.handle_event(1, START)
        return await wf.handle_event(1, Event.command_event("cancel"))

    reply = asyncio.run(scenario())
    assert "cancelled" in reply.text
    state = wf.state_of(1)
    assert state.step is MeasurementStep.AWAITING_FIRST_POINT
    assert state.first_point is None
    assert state.profile is TravelProfile.MOTORCYCLE


def test_invalid_point_keeps_the_step(clock):
    wf = _workflow(clock)

    async def scenario():
        await wf.initialize(1)
        await wf.handle_event(1, START)
        bad_text = await wf.handle_event(1, Event.text_event("somewhere over there"))
        bad_range = await wf.handle_event(1, Event.location_event(95.0, 10.0))
        return bad_text, bad_range

    bad_text, bad_range = asyncio.run(scenario())
    assert "Send a Telegram location" in bad_text.text
    assert "latitude 95.0" in bad_range.text
    state = wf.state_of(1)
    assert state.step is MeasurementStep.AWAITING_SECOND_POINT
    assert state.first_point.latitude == -7.257056


def test_geocoder_failure_falls_back_to_coordinates(clock):
    geocoder = FakeGeocoder(fail=True)
    wf = _workflow(clock, geocoder)

    async def scenario():
        await wf.initialize(1)
        return await wf.handle_event(1, START)

    reply = asyncio.run(scenario())
    assert "-7.257056, 112.648" in reply.text
    assert wf.step_of(1) is MeasurementStep.AWAITING_SECOND_POINT


def test_address_and_coords_lookups(clock):
    geocoder = FakeGeocoder({(1.0, 2.0): "Null Island-ish"})
    geocoder.search_results["Tugu Pahlawan"] = GeoPoint(-7.2458, 112.7378, "Tugu Pahlawan, Surabaya")
    wf = _workflow(clock, geocoder)

    async def scenario():
        await wf.initialize(1)
        found = await wf.handle_event(1, Event.command_event("address", "Tugu Pahlawan"))
        missing = await wf.handle_event(1, Event.command_event("address", "Atlantis"))
        usage = await wf.handle_event(1, Event.command_event("address"))
        coords = await wf.handle_event(1, Event.command_event("coords", "1 2"))
        bad = await wf.handle_event(1, Event.command_event("coords", "north"))
        return found, missing, usage, coords, bad

    found, missing, usage, coords, bad = asyncio.run(scenario())
    assert "Tugu Pahlawan, Surabaya" in found.text and "-7.2458" in found.text
    assert "Atlantis" in missing.text
    assert usage.text.startswith("Usage: /address")
    assert "Null Island-ish" in coords.text
    assert bad.text.startswith("⚠️")


def test_photo_is_unsupported_in_location_mode(clock):
    wf = _workflow(clock)

    async def scenario():
        await wf.initialize(1)
        return await wf.handle_event(1, Event.photo_event(FileRef("p1")))

    reply = asyncio.run(scenario())
    assert Mode.LOCATION.value in reply.text


def test_show_map_links_points_places_and_the_pending_point(clock):
    geocoder = FakeGeocoder({(-7.257056, 112.648): "Jl. Raya Menganti, Surabaya"})
    geocoder.search_results["Tugu Pahlawan"] = GeoPoint(-7.2458, 112.7378, "Tugu Pahlawan, Surabaya")
    wf = _workflow(clock, geocoder)

    async def scenario():
        await wf.initialize(1)
        usage = await wf.handle_event(1, Event.command_event("show_map"))
        coords = await wf.handle_event(1, Event.command_event("show_map", "-7.5 112.5"))
        place = await wf.handle_event(1, Event.command_event("show_map", "Tugu Pahlawan"))
        missing = await wf.handle_event(1, Event.command_event("show_map", "Atlantis"))
        await wf.handle_event(1, START)
        pending = await wf.handle_event(1, Event.command_event("show_map"))
        return usage, coords, place, missing, pending

    usage, coords, place, missing, pending = asyncio.run(scenario())
    assert usage.text.startswith("Usage: /show_map")
    assert "mlat=-7.500000&mlon=112.500000" in coords.text
    assert "Tugu Pahlawan, Surabaya" in place.text
    assert "#map=16/-7.245800/112.737800" in place.text
    assert missing.text == 'No coordinates found for "Atlantis".'
    assert "Jl. Raya Menganti, Surabaya" in pending.text
    assert wf.step_of(1) is MeasurementStep.AWAITING_SECOND_POINT
