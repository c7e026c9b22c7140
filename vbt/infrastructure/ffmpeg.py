import logging
import queue
import re
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import List, Optional

from vbt.config.models import EncoderConfig
from vbt.domain.errors import JobCancelledError, JobExecutionError
from vbt.domain.models import JobRequest, RunResult
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.pipeline.job_control import JobHandle
from vbt.pipeline.runner import JobRunner, ProgressCallback

# Regex to parse 'time=00:00:00.00' from ffmpeg output
TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+\.\d+)")

# Software encoder -> codec family used to pick a hardware encoder
CODEC_FAMILIES = {
    "libx264": "h264",
    "h264": "h264",
    "libx265": "hevc",
    "hevc": "hevc",
    "libsvtav1": "av1",
    "libaom-av1": "av1",
    "av1": "av1",
}

# Muxer names that differ from the file extension
CONTAINER_FORMATS = {
    ".mkv": "matroska",
    ".m4v": "mp4",
    ".ts": "mpegts",
}

# Capability tags in order of preference, with the flag carrying the quality value
HW_QUALITY_FLAGS = {
    "nvenc": ["-cq"],
    "qsv": ["-global_quality"],
    "videotoolbox": ["-q:v"],
    "amf": ["-rc", "cqp", "-qp_p"],
}


class FFmpegRunner(JobRunner):
    """Transcodes one file with ffmpeg.

    Output goes to a ``.tmp`` file next to the final path and is renamed on
    success. Progress comes from the ``time=`` field of ffmpeg's status
    lines relative to the duration reported by ffprobe. Cancellation
    terminates the process, then kills it if it does not exit in time.
    Per-job ``options`` override ``video_codec``, ``crf``, ``preset`` and
    ``audio_codec``.
    """

    def __init__(
        self,
        config: EncoderConfig,
        ffprobe: Optional[FFprobeAdapter] = None,
        poll_s: float = 0.1,
        terminate_timeout_s: float = 3.0,
    ):
        self.config = config
        self.ffprobe = ffprobe or FFprobeAdapter(
            config.ffprobe_path,
            cache_size=config.metadata_cache_size if config.enable_metadata_cache else 0,
        )
        self.poll_s = poll_s
        self.terminate_timeout_s = terminate_timeout_s
        self.logger = logging.getLogger(__name__)

    def output_path_for(self, request: JobRequest) -> Path:
        source = request.source_path
        name = f"{source.stem}{self.config.output_suffix}{self.config.container}"
        if request.output_dir:
            return Path(request.output_dir) / name
        return source.with_name(name)

    def _select_hw_encoder(self, codec: str, hw_accel: List[str]) -> Optional[str]:
        family = CODEC_FAMILIES.get(codec)
        if not self.config.use_hw_accel or not family:
            return None
        for tag in HW_QUALITY_FLAGS:
            if tag in hw_accel:
                return tag
        return None

    def _build_command(self, request: JobRequest, tmp_path: Path) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        options = request.options
        codec = options.get("video_codec", self.config.video_codec)
        crf = options.get("crf", self.config.crf)
        preset = options.get("preset", self.config.preset)
        audio_codec = options.get("audio_codec", self.config.audio_codec)

        cmd = [
            self.config.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-nostdin",
            "-i", str(request.source_path),
        ]

        hw_tag = self._select_hw_encoder(codec, request.hw_accel)
        if hw_tag:
            cmd.extend(["-c:v", f"{CODEC_FAMILIES[codec]}_{hw_tag}"])
            cmd.extend(HW_QUALITY_FLAGS[hw_tag] + [str(crf)])
        else:
            cmd.extend(["-c:v", codec, "-crf", str(crf), "-preset", preset])

        cmd.extend(["-c:a", audio_codec])
        cmd.extend(self.config.extra_args)

        # .tmp says nothing about the format, so force it from the container
        container = self.config.container.lower()
        cmd.extend(["-f", CONTAINER_FORMATS.get(container, container.lstrip(".")), str(tmp_path)])
        return cmd

    def _probe_duration(self, request: JobRequest) -> float:
        try:
            return self.ffprobe.get_duration(request.source_path)
        except (RuntimeError, ValueError, OSError, subprocess.SubprocessError) as e:
            raise JobExecutionError(f"ffprobe failed: {e}", stage="probe")

    def run(self, request: JobRequest, handle: JobHandle, on_progress: ProgressCallback) -> RunResult:
        filename = request.source_path.name

        handle.enter_stage("probe")
        handle.check_cancelled()
        try:
            input_size = request.source_path.stat().st_size
        except OSError as e:
            raise JobExecutionError(f"Cannot stat source: {e}", stage="probe")
        total_duration = self._probe_duration(request)

        handle.enter_stage("encode")
        handle.check_cancelled()
        output_path = self.output_path_for(request)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = output_path.with_suffix(".tmp")
        cmd = self._build_command(request, tmp_path)
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                bufsize=1,
            )
        except OSError as e:
            raise JobExecutionError(f"Cannot start ffmpeg: {e}", stage="encode")
        handle.bind_process(process)

        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()
        tail = deque(maxlen=5)

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, name=f"vbt-ffmpeg-{filename}", daemon=True)
        reader_thread.start()

        try:
            while True:
                if handle.cancelled:
                    self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (cancel requested)")
                    self._terminate(process)
                    self._cleanup(tmp_path)
                    raise JobCancelledError(stage="encode")

                try:
                    line = output_queue.get(timeout=self.poll_s)
                except queue.Empty:
                    if process.poll() is not None:
                        break
                    continue

                if line is None:
                    break
                if line.strip():
                    tail.append(line.strip())

                match = TIME_REGEX.search(line)
                if match and total_duration > 0:
                    h, m, s = map(float, match.groups())
                    current_seconds = h * 3600 + m * 60 + s
                    on_progress(min(1.0, current_seconds / total_duration))

            process.wait()
        finally:
            handle.release_process()

        if handle.cancelled:
            self._cleanup(tmp_path)
            raise JobCancelledError(stage="encode")

        if process.returncode != 0:
            self._cleanup(tmp_path)
            detail = f": {tail[-1]}" if tail else ""
            raise JobExecutionError(f"ffmpeg exited with code {process.returncode}{detail}", stage="encode")

        handle.enter_stage("finalize")
        if not tmp_path.exists():
            raise JobExecutionError("ffmpeg produced no output file", stage="finalize")
        tmp_path.replace(output_path)
        output_size = output_path.stat().st_size
        on_progress(1.0)
        self.logger.debug(f"FFMPEG_END: {filename} -> {output_path.name} ({input_size} -> {output_size} bytes)")
        return RunResult(input_size=input_size, output_size=output_size, output_path=output_path)

    def _terminate(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=self.terminate_timeout_s)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _cleanup(self, tmp_path: Path) -> None:
        try:
            if tmp_path.exists():
                tmp_path.unlink()
        except OSError as e:
            self.logger.warning(f"Failed to remove temp file {tmp_path}: {e}")
