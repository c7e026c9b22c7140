import os
from pathlib import Path
from typing import Generator, Iterable, List


class FileScanner:
    """Expands input paths into the video files to submit, in a stable order."""

    def __init__(self, extensions: List[str], min_size_bytes: int = 0, output_suffix: str = "_out"):
        self.extensions = [(ext if ext.startswith(".") else f".{ext}").lower() for ext in extensions]
        self.min_size_bytes = min_size_bytes
        self.output_suffix = output_suffix

    def _accepts(self, file_path: Path) -> bool:
        if file_path.suffix.lower() not in self.extensions:
            return False
        # Our own outputs (name_out.mp4) are never re-queued
        if self.output_suffix and file_path.stem.endswith(self.output_suffix):
            return False
        try:
            return file_path.stat().st_size >= self.min_size_bytes
        except OSError:
            # Skip files we can't access
            return False

    def scan(self, root_dir: Path) -> Generator[Path, None, None]:
        """Recursively yields matching files under ``root_dir``."""
        for root, dirs, files in os.walk(str(root_dir)):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs[:] = sorted(d for d in dirs if not (self.output_suffix and d.endswith(self.output_suffix)))
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if self._accepts(file_path):
                    yield file_path

    def expand(self, paths: Iterable[Path]) -> Generator[Path, None, None]:
        """Directories are scanned; explicit files pass through unfiltered.

        Missing paths are passed through too so admission can reject them
        with a proper error.
        """
        for path in paths:
            path = Path(path)
            if path.is_dir():
                yield from self.scan(path)
            else:
                yield path
