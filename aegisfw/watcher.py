"""Watch a rules file and signal when it changes."""

from __future__ import annotations

import os
import threading
from os import PathLike
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from aegisfw.errors import WatcherError


def _normalise(path: str | bytes | PathLike[str]) -> str:
    return os.path.normcase(os.path.realpath(os.fsdecode(path)))


class _ReloadHandler(FileSystemEventHandler):
    def __init__(self, target: str, signal: threading.Event) -> None:
        super().__init__()
        self._target = target
        self._signal = signal

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if event.event_type in (EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED):
            candidate = event.src_path
        elif event.event_type == EVENT_TYPE_MOVED:
            candidate = getattr(event, "dest_path", "")
        else:
            return
        if candidate and _normalise(candidate) == self._target:
            self._signal.set()


class RulesWatcher:
    """Signals a reload whenever the watched file is created or modified.

    Several changes before the next ``wait`` collapse into one signal.
    """

    def __init__(self, path: str | PathLike[str]) -> None:
        target = Path(path)
        if not target.exists():
            raise WatcherError(f"path not found: {target}")
        self._path = target.resolve()
        self._signal = threading.Event()
        handler = _ReloadHandler(_normalise(self._path), self._signal)
        self._observer = Observer()
        try:
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
        except OSError as exc:
            raise WatcherError(str(exc)) from exc

    @property
    def path(self) -> Path:
        return self._path

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a change is seen; False if the timeout passes first."""
        if not self._signal.wait(timeout):
            return False
        self._signal.clear()
        return True

    def close(self) -> None:
        """Stop watching. Safe to call more than once."""
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join()

    def __enter__(self) -> RulesWatcher:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()