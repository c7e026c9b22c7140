import os
import select
import sys
import termios
import threading
import tty
from typing import Optional

from vbt.domain.events import Event
from vbt.infrastructure.event_bus import EventBus


class PauseToggleRequested(Event):
    """Event emitted when user toggles pause (Key 'P')."""
    pass


class StopRequested(Event):
    """Event emitted when user asks for a graceful stop (Key 'S' or Ctrl+C)."""
    interrupt: bool = False


class ThreadControlEvent(Event):
    """Event emitted to change the concurrency limit (Keys '+' / '-')."""
    change: int


class KeyboardListener:
    """Listens for keyboard input in a background thread.

    Only publishes requests; whoever owns the scheduler decides what to do
    with them.
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _handle_key(self, key: str) -> bool:
        """Publishes the event bound to ``key``. Returns False to stop listening."""
        if key == '\x03':
            self.event_bus.publish(StopRequested(interrupt=True))
            return False
        if key in ('P', 'p', ' '):
            self.event_bus.publish(PauseToggleRequested())
        elif key in ('S', 's'):
            self.event_bus.publish(StopRequested())
        elif key in ('+', '=', '.', '>'):
            self.event_bus.publish(ThreadControlEvent(change=1))
        elif key in ('-', '_', ',', '<'):
            self.event_bus.publish(ThreadControlEvent(change=-1))
        return True

    def _run(self):
        """Main loop for the listener thread."""
        if not sys.stdin.isatty():
            return

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(sys.stdin)
        try:
            tty.setcbreak(fd)

            while not self._stop_event.is_set():
                if fd in select.select([fd], [], [], 0.1)[0]:
                    try:
                        raw = os.read(fd, 1)
                    except OSError:
                        continue
                    if not raw:
                        continue
                    if not self._handle_key(raw.decode('utf-8', errors='replace')):
                        break
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

    def start(self):
        """Starts the listener thread."""
        self._thread = threading.Thread(target=self._run, name="vbt-keyboard", daemon=True)
        self._thread.start()

    def stop(self):
        """Stops the listener thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
