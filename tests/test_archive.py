import asyncio
import io
import os
import threading
import zipfile

import pytest

from fieldbot.collaborators import ZipArchiveEngine
from fieldbot.errors import CollaboratorError
from fieldbot.workflows.archive import ArchiveStep, ArchiveWorkflow, match_files
from fieldbot.workflows.base import Event, FileRef

from conftest import FakeFiles


def make_zip(entries):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


SURVEY_ZIP = make_zip(
    {
        "photos/site-a.JPG": b"jpeg-a",
        "photos/site-b.jpg": b"jpeg-b",
        "docs/Report final.pdf": b"%PDF",
        "../escape.txt": b"nope",
    }
)


def doc(file_id, name, mime=None):
    return Event.document_event(FileRef(file_id, name, mime))


def cmd(name, args=""):
    return Event.command_event(name, args)


@pytest.fixture
def store_files():
    return FakeFiles(
        {
            "f-notes": b"field notes",
            "f-map": b"map bytes",
            "z-survey": SURVEY_ZIP,
            "z-broken": b"this is not a zip",
        }
    )


@pytest.fixture
def wf(clock, store_files, tmp_path):
    return ArchiveWorkflow(600, files=store_files, clock=clock, workdir=str(tmp_path))


def run(wf, *events, user_id=1, initialize=True):
    async def scenario():
        if initialize:
            await wf.initialize(user_id)
        return [await wf.handle_event(user_id, e) for e in events]

    return asyncio.run(scenario())


def test_files_before_choosing_an_operation(wf):
    (reply,) = run(wf, doc("f-notes", "notes.txt"))
    assert "Choose an operation" in reply.text
    assert wf.step_of(1) is ArchiveStep.IDLE


def test_zip_pipeline(wf, store_files):
    replies = run(
        wf,
        cmd("zip"),
        cmd("send"),
        doc("f-notes", "notes.txt"),
        doc("f-map", "notes.txt"),
        cmd("send"),
    )
    assert "not sent any files" in replies[1].text
    assert "2 file(s) queued" in replies[3].text
    out = replies[-1]
    assert out.documents[0].filename == "archive.zip"
    with zipfile.ZipFile(io.BytesIO(out.documents[0].data)) as zf:
        assert sorted(zf.namelist()) == ["notes.txt", "notes_1.txt"]
        assert zf.read("notes_1.txt") == b"map bytes"
    assert store_files.fetched == ["f-notes", "f-map"]
    assert wf.state_of(1).queued_files == ()


def test_extract_pipeline(wf):
    replies = run(wf, cmd("extract"), doc("f-notes", "notes.txt"), doc("z-survey", "survey.zip"), cmd("send"))
    assert "only .zip" in replies[1].text
    out = replies[-1]
    names = sorted(d.filename for d in out.documents)
    assert names == ["Report final.pdf", "escape.txt", "site-a.JPG", "site-b.jpg"]
    assert "4 file(s) extracted" in out.text


def test_broken_archive_is_a_collaborator_failure(wf):
    replies = run(wf, cmd("extract"), doc("z-broken", "broken.zip"), cmd("send"))
    assert "did not respond" in replies[-1].text
    # queue kept so the user can retry or start over
    assert len(wf.state_of(1).queued_files) == 1


def test_search_find_and_send_selected(wf, tmp_path):
    replies = run(
        wf,
        cmd("find", "*.jpg"),
        cmd("search"),
        doc("z-survey", "survey.zip"),
        cmd("find", "*.jpg"),
        cmd("send_selected"),
        cmd("find", "report"),
        cmd("find", "*.png"),
        cmd("send_selected"),
    )
    assert "send an archive first" in replies[0].text
    assert "4 file(s)" in replies[2].text
    assert "2 file(s) match" in replies[3].text
    assert sorted(d.filename for d in replies[4].documents) == ["site-a.JPG", "site-b.jpg"]
    assert "docs/Report final.pdf" in replies[5].text
    assert "No files match" in replies[6].text
    assert "Nothing selected" in replies[7].text

    state = wf.state_of(1)
    assert state.step is ArchiveStep.SEARCH_READY
    assert os.path.isdir(state.search_dir)
    assert os.path.commonpath([state.search_dir, str(tmp_path)]) == str(tmp_path)
    assert not (tmp_path / "escape.txt").exists()


def test_cleanup_removes_the_search_directory(wf):
    run(wf, cmd("search"), doc("z-survey", "survey.zip"))
    search_dir = wf.state_of(1).search_dir
    assert os.path.isdir(search_dir)

    asyncio.run(wf.cleanup(1))
    assert wf.state_of(1) is None
    assert not os.path.exists(search_dir)


def test_new_operation_discards_the_previous_search(wf):
    run(wf, cmd("search"), doc("z-survey", "survey.zip"))
    search_dir = wf.state_of(1).search_dir
    run(wf, cmd("zip"), initialize=False)
    assert not os.path.exists(search_dir)
    assert wf.step_of(1) is ArchiveStep.COLLECTING_ZIP


def test_stats_survive_mode_reentry(wf):
    run(wf, cmd("zip"), doc("f-notes", "a.txt"), cmd("send"))
    asyncio.run(wf.cleanup(1))
    (reply,) = run(wf, cmd("stats"))
    assert "ZIPs created: 1" in reply.text
    assert "Files sent to the bot: 1" in reply.text
    assert "Files sent by the bot: 1" in reply.text


@pytest.mark.parametrize(
    "pattern, expected",
    [
        ("*.jpg", ["a/one.JPG", "two.jpg"]),
        ("t?o.*", ["two.jpg"]),
        ("ONE", ["a/one.JPG"]),
        ("", []),
    ],
)
def test_match_files(pattern, expected):
    assert match_files(("a/one.JPG", "two.jpg", "three.png"), pattern) == expected


def test_engine_limits_entries():
    engine = ZipArchiveEngine(max_entries=1)
    with pytest.raises(CollaboratorError):
        engine.extract(make_zip({"a": b"1", "b": b"2"}))


def test_engine_limits_uncompressed_size():
    engine = ZipArchiveEngine(max_total_bytes=10)
    with pytest.raises(CollaboratorError, match="expands to 12 bytes"):
        engine.extract(make_zip({"a": b"123456", "b": b"abcdef"}))
    assert engine.extract(make_zip({"a": b"12345"})) == {"a": b"12345"}


class ThreadRecordingEngine(ZipArchiveEngine):
    def __init__(self):
        super().__init__()
        self.threads = []

    def compress(self, files):
        self.threads.append(threading.get_ident())
        return super().compress(files)

    def extract(self, data):
        self.threads.append(threading.get_ident())
        return super().extract(data)


def test_engine_work_runs_off_the_event_loop(clock, store_files, tmp_path):
    engine = ThreadRecordingEngine()
    wf = ArchiveWorkflow(600, files=store_files, engine=engine, clock=clock, workdir=str(tmp_path))
    replies = run(
        wf,
        cmd("zip"), doc("f-notes", "notes.txt"), cmd("send"),
        cmd("extract"), doc("z-survey", "survey.zip"), cmd("send"),
        cmd("search"), doc("z-survey", "survey.zip"),
    )
    assert replies[2].documents[0].filename == "archive.zip"
    assert len(engine.threads) == 3
    assert threading.get_ident() not in engine.threads
