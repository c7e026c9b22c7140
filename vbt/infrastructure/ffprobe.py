import json
import subprocess
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

CacheKey = Tuple[str, int, int]


class FFprobeAdapter:
    """Wrapper around ffprobe to read the duration of a source file.

    Durations are kept in a bounded LRU cache keyed by path, mtime and size,
    so a resubmitted or retried file is not probed again unless it changed.
    ``cache_size=0`` disables the cache.
    """

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_s: float = 30.0, cache_size: int = 100):
        self.ffprobe_path = ffprobe_path
        self.timeout_s = timeout_s
        self.cache_size = cache_size
        self._cache: "OrderedDict[CacheKey, float]" = OrderedDict()
        self._cache_lock = threading.Lock()

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    @classmethod
    def _parse_duration_tag(cls, value: Any) -> float:
        """Accepts plain seconds or [HH:]MM:SS(.ffff) tags as written by mkvmerge."""
        if value is None:
            return 0.0
        text = str(value).strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            pass
        parts = text.split(":")
        if len(parts) not in (2, 3):
            return 0.0
        try:
            numbers = [float(p) for p in parts]
        except ValueError:
            return 0.0
        if len(numbers) == 2:
            minutes, seconds = numbers
            return minutes * 60 + seconds
        hours, minutes, seconds = numbers
        return hours * 3600 + minutes * 60 + seconds

    def probe(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and returns its parsed JSON output."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path),
        ]
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")
        return json.loads(result.stdout)

    def _cache_key(self, file_path: Path) -> Optional[CacheKey]:
        try:
            stat = Path(file_path).stat()
        except OSError:
            return None
        return str(file_path), stat.st_mtime_ns, stat.st_size

    def get_duration(self, file_path: Path) -> float:
        """Duration in seconds; 0.0 when the container does not say.

        Fallback order: format.duration, format tags, video stream duration,
        video stream tags.
        """
        key = self._cache_key(file_path) if self.cache_size > 0 else None
        if key is not None:
            with self._cache_lock:
                if key in self._cache:
                    self._cache.move_to_end(key)
                    return self._cache[key]

        duration = self._read_duration(file_path)

        if key is not None:
            with self._cache_lock:
                self._cache[key] = duration
                self._cache.move_to_end(key)
                while len(self._cache) > self.cache_size:
                    self._cache.popitem(last=False)
        return duration

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def _read_duration(self, file_path: Path) -> float:
        data = self.probe(file_path)
        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ValueError(f"No video stream found in {file_path}")

        fmt = data.get("format", {})
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            tags = fmt.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))
        if duration <= 0:
            tags = video_stream.get("tags", {}) or {}
            duration = self._parse_duration_tag(tags.get("DURATION") or tags.get("duration"))
        return max(0.0, duration)
