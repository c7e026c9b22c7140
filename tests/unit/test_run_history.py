import json
from pathlib import Path
from unittest.mock import patch

from vbt.domain.events import JobCompleted, VideoFailed
from vbt.domain.models import FailureReason, JobRecord
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.run_history import RunHistoryWriter


def _succeeded(name="a.mp4"):
    record = JobRecord(source_path=Path(name), options={"crf": 30})
    record.mark_running()
    record.mark_succeeded(input_size=1000, output_size=250, duration_seconds=2.0, output_path=Path("a_out.mp4"))
    return record


def _failed(name="b.mp4"):
    record = JobRecord(source_path=Path(name))
    record.mark_running()
    record.mark_failed(FailureReason(message="ffmpeg exited with code 1", stage="encode"))
    return record


def _lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_writes_one_line_per_terminal_job(tmp_path):
    bus = EventBus()
    history = tmp_path / "logs" / "history.jsonl"
    RunHistoryWriter(history, bus)

    ok = _succeeded()
    bad = _failed()
    bus.publish(JobCompleted(job_id=ok.job_id, path=ok.source_path, record=ok))
    bus.publish(VideoFailed(job_id=bad.job_id, path=bad.source_path, reason="ffmpeg exited with code 1",
                            stage="encode", record=bad))

    entries = _lines(history)
    assert [e["status"] for e in entries] == ["SUCCEEDED", "FAILED"]
    assert entries[0]["job_id"] == ok.job_id
    assert entries[0]["compression_ratio"] == 0.25
    assert entries[0]["source_path"] == "a.mp4"
    assert "options" not in entries[0]
    assert "state" not in entries[0]
    assert entries[1]["failure"]["stage"] == "encode"
    assert entries[1]["compression_ratio"] == 0.0


def test_failure_without_record_is_skipped(tmp_path):
    bus = EventBus()
    history = tmp_path / "history.jsonl"
    RunHistoryWriter(history, bus)

    bus.publish(VideoFailed(job_id="x", path=Path("x.mp4"), reason="boom"))

    assert not history.exists()


def test_lines_are_compact(tmp_path):
    writer = RunHistoryWriter(tmp_path / "history.jsonl", EventBus())
    writer.append(_succeeded())

    line = (tmp_path / "history.jsonl").read_text()
    assert line.endswith("\n")
    assert ", " not in line
    assert '": ' not in line


def test_write_error_is_logged_not_raised(tmp_path):
    writer = RunHistoryWriter(tmp_path / "history.jsonl", EventBus())

    with patch("builtins.open", side_effect=PermissionError("read-only")):
        writer.append(_succeeded())

    assert not (tmp_path / "history.jsonl").exists()
