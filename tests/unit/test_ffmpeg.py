from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from vbt.config.models import EncoderConfig
from vbt.domain.errors import JobCancelledError, JobExecutionError
from vbt.domain.models import JobRequest
from vbt.infrastructure.ffmpeg import FFmpegRunner
from vbt.pipeline.job_control import JobHandle


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b"x" * 1000)
    return path


def _runner(config=None, duration=10.0):
    ffprobe = MagicMock()
    ffprobe.get_duration.return_value = duration
    return FFmpegRunner(config or EncoderConfig(), ffprobe=ffprobe, poll_s=0.01)


def _request(path, **kwargs):
    return JobRequest(job_id="job-1", source_path=path, **kwargs)


def _popen(stdout, returncode=0, output_bytes=400):
    """Popen stand-in that writes the temp output like ffmpeg would."""
    process = MagicMock(pid=4242)
    process.stdout = stdout
    process.returncode = returncode
    # end of output is signalled by the reader, never by poll()
    process.poll.return_value = None

    def _start(cmd, **kwargs):
        if output_bytes is not None:
            Path(cmd[-1]).write_bytes(b"y" * output_bytes)
        return process

    return process, _start


def test_command_cpu_defaults(tmp_path):
    runner = _runner()
    cmd = runner._build_command(_request(Path("input.mp4")), tmp_path / "input_out.tmp")

    assert cmd[:4] == ["ffmpeg", "-y", "-hide_banner", "-nostdin"]
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-crf") + 1] == "23"
    assert cmd[cmd.index("-preset") + 1] == "medium"
    assert cmd[cmd.index("-c:a") + 1] == "copy"
    assert cmd[-3:] == ["-f", "mp4", str(tmp_path / "input_out.tmp")]


def test_command_options_override_config(tmp_path):
    runner = _runner(EncoderConfig(extra_args=["-map_metadata", "0"]))
    request = _request(
        Path("input.mp4"),
        options={"video_codec": "libx265", "crf": 30, "preset": "fast", "audio_codec": "aac"},
    )

    cmd = runner._build_command(request, tmp_path / "out.tmp")

    assert cmd[cmd.index("-c:v") + 1] == "libx265"
    assert cmd[cmd.index("-crf") + 1] == "30"
    assert cmd[cmd.index("-preset") + 1] == "fast"
    assert cmd[cmd.index("-c:a") + 1] == "aac"
    assert "-map_metadata" in cmd


def test_command_forces_muxer_for_mkv(tmp_path):
    runner = _runner(EncoderConfig(container="mkv"))
    cmd = runner._build_command(_request(Path("input.mp4")), tmp_path / "out.tmp")
    assert cmd[cmd.index("-f") + 1] == "matroska"


def test_hw_encoder_follows_preference_order(tmp_path):
    runner = _runner(EncoderConfig(use_hw_accel=True, video_codec="libx265", crf=28))
    request = _request(Path("input.mp4"), hw_accel=["qsv", "nvenc"])

    cmd = runner._build_command(request, tmp_path / "out.tmp")

    assert cmd[cmd.index("-c:v") + 1] == "hevc_nvenc"
    assert cmd[cmd.index("-cq") + 1] == "28"
    assert "-preset" not in cmd


def test_hw_tags_ignored_when_disabled(tmp_path):
    runner = _runner(EncoderConfig(use_hw_accel=False))
    cmd = runner._build_command(_request(Path("input.mp4"), hw_accel=["nvenc"]), tmp_path / "out.tmp")
    assert cmd[cmd.index("-c:v") + 1] == "libx264"


def test_hw_tags_ignored_for_unknown_codec(tmp_path):
    runner = _runner(EncoderConfig(use_hw_accel=True, video_codec="prores_ks"))
    cmd = runner._build_command(_request(Path("input.mp4"), hw_accel=["nvenc"]), tmp_path / "out.tmp")
    assert cmd[cmd.index("-c:v") + 1] == "prores_ks"


def test_output_path_sibling_and_output_dir(tmp_path):
    runner = _runner(EncoderConfig(container=".mkv"))
    source = tmp_path / "clips" / "a.mp4"

    assert runner.output_path_for(_request(source)) == tmp_path / "clips" / "a_out.mkv"
    assert runner.output_path_for(_request(source, output_dir=tmp_path / "out")) == tmp_path / "out" / "a_out.mkv"


def test_run_success_reports_progress_and_renames(source):
    runner = _runner(duration=10.0)
    handle = JobHandle("job-1", source)
    progress = []
    process, start = _popen([
        "frame=  50 fps=10.0 time=00:00:05.00 bitrate= 100.0kbits/s\n",
        "frame= 100 fps=10.0 time=00:00:10.00 bitrate= 100.0kbits/s\n",
    ])

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen", side_effect=start):
        result = runner.run(_request(source), handle, progress.append)

    assert progress == [0.5, 1.0, 1.0]
    assert result.input_size == 1000
    assert result.output_size == 400
    assert result.output_path == source.with_name("input_out.mp4")
    assert result.output_path.exists()
    assert not source.with_name("input_out.tmp").exists()
    assert handle.stage == "finalize"


def test_run_into_output_dir_creates_it(source, tmp_path):
    runner = _runner()
    _, start = _popen(["time=00:00:01.00\n"])
    out_dir = tmp_path / "out" / "nested"

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen", side_effect=start):
        result = runner.run(_request(source, output_dir=out_dir), JobHandle("job-1", source), lambda p: None)

    assert result.output_path == out_dir / "input_out.mp4"
    assert result.output_path.exists()


def test_run_nonzero_exit(source):
    runner = _runner()
    _, start = _popen(["Error message from ffmpeg\n"], returncode=1)

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen", side_effect=start):
        with pytest.raises(JobExecutionError) as exc_info:
            runner.run(_request(source), JobHandle("job-1", source), lambda p: None)

    assert "ffmpeg exited with code 1: Error message from ffmpeg" in str(exc_info.value)
    assert exc_info.value.stage == "encode"
    assert not source.with_name("input_out.tmp").exists()


def test_run_probe_failure(source):
    runner = _runner()
    runner.ffprobe.get_duration.side_effect = RuntimeError("ffprobe failed for input.mp4")

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen") as mock_popen:
        with pytest.raises(JobExecutionError) as exc_info:
            runner.run(_request(source), JobHandle("job-1", source), lambda p: None)

    assert exc_info.value.stage == "probe"
    assert not mock_popen.called


def test_run_missing_source(tmp_path):
    missing = tmp_path / "gone.mp4"
    with pytest.raises(JobExecutionError) as exc_info:
        _runner().run(_request(missing), JobHandle("job-1", missing), lambda p: None)
    assert exc_info.value.stage == "probe"


def test_run_ffmpeg_not_installed(source):
    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(JobExecutionError) as exc_info:
            _runner().run(_request(source), JobHandle("job-1", source), lambda p: None)
    assert exc_info.value.stage == "encode"
    assert "Cannot start ffmpeg" in str(exc_info.value)


def test_run_without_output_file(source):
    _, start = _popen([], output_bytes=None)

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen", side_effect=start):
        with pytest.raises(JobExecutionError) as exc_info:
            _runner().run(_request(source), JobHandle("job-1", source), lambda p: None)

    assert exc_info.value.stage == "finalize"


def test_cancel_before_start(source):
    handle = JobHandle("job-1", source)
    handle.cancel()

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen") as mock_popen:
        with pytest.raises(JobCancelledError) as exc_info:
            _runner().run(_request(source), handle, lambda p: None)

    assert exc_info.value.stage == "probe"
    assert not mock_popen.called


def test_cancel_during_encode_terminates_and_cleans_up(source):
    runner = _runner(duration=100.0)
    handle = JobHandle("job-1", source)
    process, start = _popen([
        "time=00:00:01.00\n",
        "time=00:00:02.00\n",
        "time=00:00:03.00\n",
    ])

    def on_progress(value):
        handle.cancel()

    with patch("vbt.infrastructure.ffmpeg.subprocess.Popen", side_effect=start):
        with pytest.raises(JobCancelledError) as exc_info:
            runner.run(_request(source), handle, on_progress)

    assert exc_info.value.stage == "encode"
    process.terminate.assert_called_once()
    assert not source.with_name("input_out.tmp").exists()
    assert not source.with_name("input_out.mp4").exists()


def test_metadata_cache_follows_encoder_config():
    assert FFmpegRunner(EncoderConfig(metadata_cache_size=7)).ffprobe.cache_size == 7
    assert FFmpegRunner(EncoderConfig(enable_metadata_cache=False)).ffprobe.cache_size == 0
