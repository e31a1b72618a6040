from __future__ import annotations

import csv

from trimmer.exception_sink import (
    ACTION_DELETE,
    ACTION_LOAD,
    HEADER,
    RESULT_BLOCKED,
    RESULT_FAILED,
    ExceptionSink,
    read_records,
)


def test_header_written_once_and_rows_appended(tmp_path, now):
    path = tmp_path / "nested" / "exceptions.csv"
    sink = ExceptionSink(path, clock=lambda: now)

    sink.record("https://site", "Documents", "/a.docx", 7, ACTION_LOAD, RESULT_FAILED, "timed out")
    ExceptionSink(path, clock=lambda: now).record(
        "https://site", "Documents", "/b.docx", 8, ACTION_DELETE, RESULT_BLOCKED, "on hold"
    )

    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0] == HEADER
    assert len(rows) == 3
    assert rows[1] == [now.isoformat(), "https://site", "Documents", "/a.docx", "7", "Load", "Failed", "timed out"]
    assert sink.count == 1


def test_messages_are_flattened_to_one_line(tmp_path, now):
    path = tmp_path / "exceptions.csv"
    sink = ExceptionSink(path, clock=lambda: now)

    record = sink.record("s", "Documents", "/c.docx", None, ACTION_DELETE, RESULT_FAILED, "line one\n  line two")

    assert record.message == "line one line two"
    assert record.item_id == ""
    assert read_records(path) == [record]


def test_failures_are_echoed_to_the_operational_log(tmp_path, caplog):
    sink = ExceptionSink(tmp_path / "exceptions.csv")

    sink.record("s", "Documents", "/d.docx", 1, ACTION_DELETE, RESULT_BLOCKED, "retention label applied")

    assert "Delete blocked for /d.docx: retention label applied" in caplog.text


def test_read_records_of_missing_file_is_empty(tmp_path):
    assert read_records(tmp_path / "absent.csv") == []
