"""Best-effort detection of hardware encoders the host may offer.

The resulting tags are advisory: they are passed to every job and the
runner decides whether to use them. Nothing here may fail the caller.
"""

import logging
import platform
import shutil
import subprocess
import threading
from pathlib import Path
from typing import List, Optional, Set

# PCI vendor ids as found in /sys/class/drm/*/device/vendor
PCI_VENDOR_TAGS = {
    "0x10de": ["nvenc"],
    "0x8086": ["qsv", "vaapi"],
    "0x1002": ["vaapi"],
}

# Win32_VideoController.AdapterCompatibility values
WINDOWS_VENDOR_TAGS = {
    "nvidia": "nvenc",
    "intel corporation": "qsv",
    "advanced micro devices, inc.": "amf",
    "amd": "amf",
}

DRM_ROOT = Path("/sys/class/drm")


class CapabilityProbe:
    """Runs detection once in a background thread."""

    def __init__(self, timeout_s: float = 5.0):
        self.timeout_s = timeout_s
        self.logger = logging.getLogger(__name__)
        self._tags: Set[str] = set()
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def tags(self) -> List[str]:
        with self._lock:
            return sorted(self._tags)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="vbt-capability-probe", daemon=True)
        self._thread.start()

    def wait(self, timeout: Optional[float] = None) -> List[str]:
        """Waits up to ``timeout`` for detection and returns the tags found so far."""
        self._done.wait(timeout)
        return self.tags

    def _run(self) -> None:
        try:
            found = self.detect()
            with self._lock:
                self._tags.update(found)
            if found:
                self.logger.info(f"Hardware acceleration tags: {', '.join(sorted(found))}")
            else:
                self.logger.info("No hardware acceleration detected")
        except Exception as e:
            self.logger.debug(f"Capability probe failed: {e}")
        finally:
            self._done.set()

    def detect(self) -> Set[str]:
        system = platform.system()
        if system == "Darwin":
            return {"videotoolbox"}
        if system == "Windows":
            return self._detect_windows()
        if system == "Linux":
            return self._detect_linux()
        self.logger.debug(f"Capability probe: unsupported platform {system}")
        return set()

    def _detect_windows(self) -> Set[str]:
        powershell = shutil.which("powershell") or shutil.which("pwsh")
        if not powershell:
            return set()
        result = subprocess.run(
            [
                powershell, "-NoProfile", "-Command",
                "Get-CimInstance Win32_VideoController | Select-Object -ExpandProperty AdapterCompatibility",
            ],
            capture_output=True,
            text=True,
            timeout=self.timeout_s,
        )
        tags = set()
        for line in result.stdout.splitlines():
            tag = WINDOWS_VENDOR_TAGS.get(line.strip().lower())
            if tag:
                tags.add(tag)
        return tags

    def _detect_linux(self) -> Set[str]:
        tags = set()
        if shutil.which("nvidia-smi"):
            try:
                result = subprocess.run(
                    ["nvidia-smi", "-L"],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_s,
                )
                if result.returncode == 0 and "GPU" in result.stdout:
                    tags.add("nvenc")
            except (OSError, subprocess.SubprocessError) as e:
                self.logger.debug(f"Capability probe: nvidia-smi failed: {e}")

        if DRM_ROOT.is_dir():
            for node in sorted(DRM_ROOT.glob("renderD*")):
                vendor_file = node / "device" / "vendor"
                try:
                    vendor = vendor_file.read_text().strip().lower()
                except OSError:
                    continue
                tags.update(PCI_VENDOR_TAGS.get(vendor, []))
        return tags
