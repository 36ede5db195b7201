import asyncio
import io
import threading
import zipfile

import pytest

from fieldbot.collaborators import ZipArchiveEngine
from fieldbot.workflows.base import Event, FileRef
from fieldbot.workflows.workbook import WorkbookStep, WorkbookWorkflow

from conftest import FakeFiles, RecordingSink


def photo(file_id):
    return Event.photo_event(FileRef(file_id, None, "image/jpeg"))


@pytest.fixture
def wf(clock):
    files = FakeFiles({"p1": b"one", "p2": b"two", "p3": b"three"})
    return WorkbookWorkflow(1800, files=files, results=RecordingSink(), clock=clock)


def run(wf, *events):
    async def scenario():
        await wf.initialize(1)
        replies = [await wf.handle_event(1, e) for e in events]
        await asyncio.sleep(0)
        return replies

    return asyncio.run(scenario())


def test_photo_needs_a_sheet_first(wf):
    (reply,) = run(wf, photo("p1"))
    assert "sheet name" in reply.text
    assert wf.step_of(1) is WorkbookStep.AWAITING_SHEET_NAME


def test_sheets_collect_photos_and_send_bundles_them(wf):
    replies = run(
        wf,
        Event.text_event("sheet1"),
        photo("p1"),
        photo("p2"),
        Event.text_event("Tower B"),
        photo("p3"),
        Event.text_event("SHEET1"),
        Event.text_event("list"),
        Event.text_event("send"),
    )
    assert "Sheet \"sheet1\" is active" in replies[0].text
    assert "Photo 2 added to \"sheet1\"" in replies[2].text
    assert "Switched to sheet \"sheet1\" (2 photo(s))" in replies[5].text
    assert "sheet1: 2 photo(s) (active)" in replies[6].text
    assert "Tower B: 1 photo(s)" in replies[6].text

    sent = replies[7]
    assert "2 sheet(s) with 3 photo(s)" in sent.text
    assert sent.documents[0].filename == "workbook.zip"
    with zipfile.ZipFile(io.BytesIO(sent.documents[0].data)) as zf:
        assert sorted(zf.namelist()) == ["Tower B/001.jpg", "sheet1/001.jpg", "sheet1/002.jpg"]
        assert zf.read("sheet1/002.jpg") == b"two"
    assert [kind for _u, kind, _p in wf.results.saved] == ["workbook"]


def test_cek_is_an_alias_for_list(wf):
    (reply,) = run(wf, Event.text_event("cek"))
    assert reply.text == "No sheets yet."


def test_clear_and_empty_send(wf):
    replies = run(wf, Event.text_event("s1"), photo("p1"), Event.text_event("clear"), Event.text_event("send"))
    assert "deleted" in replies[2].text
    assert replies[3].text == "No sheets yet."
    assert wf.step_of(1) is WorkbookStep.AWAITING_SHEET_NAME


def test_invalid_sheet_name_is_rejected(wf):
    replies = run(wf, Event.text_event("a/b"), Event.text_event("x" * 40))
    assert all(r.text.startswith("⚠️") for r in replies)
    assert wf.state_of(1).sheets == ()


def test_non_image_document_is_rejected(wf):
    replies = run(
        wf,
        Event.text_event("s1"),
        Event.document_event(FileRef("d1", "notes.pdf", "application/pdf")),
        Event.document_event(FileRef("p1", "scan.png", "image/png")),
    )
    assert replies[1].text.startswith("⚠️")
    assert "Photo 1 added" in replies[2].text


def test_bundle_is_compressed_off_the_event_loop(clock):
    threads = []

    class RecordingEngine(ZipArchiveEngine):
        def compress(self, files):
            threads.append(threading.get_ident())
            return super().compress(files)

    wf = WorkbookWorkflow(
        1800, files=FakeFiles({"p1": b"one"}), engine=RecordingEngine(), results=RecordingSink(), clock=clock
    )
    replies = run(wf, Event.text_event("s1"), photo("p1"), Event.text_event("send"))
    assert replies[2].documents[0].filename == "workbook.zip"
    assert len(threads) == 1 and threads[0] != threading.get_ident()
