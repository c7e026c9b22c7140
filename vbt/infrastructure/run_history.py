import json
import logging
import threading
from pathlib import Path

from vbt.domain.events import JobCompleted, VideoFailed
from vbt.domain.models import JobRecord
from vbt.infrastructure.event_bus import EventBus


class RunHistoryWriter:
    """Appends one JSON line per terminal job to a history file."""

    def __init__(self, path: Path, event_bus: EventBus):
        self.path = Path(path)
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        event_bus.subscribe(JobCompleted, self._on_completed)
        event_bus.subscribe(VideoFailed, self._on_failed)

    def _on_completed(self, event: JobCompleted):
        self.append(event.record)

    def _on_failed(self, event: VideoFailed):
        if event.record is not None:
            self.append(event.record)

    @staticmethod
    def to_entry(record: JobRecord) -> dict:
        entry = record.model_dump(mode="json", exclude={"options", "progress"})
        entry["status"] = entry.pop("state")
        entry["compression_ratio"] = round(record.compression_ratio, 4)
        return entry

    def append(self, record: JobRecord) -> None:
        line = json.dumps(self.to_entry(record), separators=(",", ":"), ensure_ascii=False)
        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as e:
            self.logger.error(f"Failed to write run history {self.path}: {e}")
