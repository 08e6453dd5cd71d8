"""
Interval-coalesced file change notifications.

FileWatcher observes the directory holding a file (so editors that replace the
file by rename, and rm + recreate, keep being noticed) and calls back at most
once per interval when the file was created, modified or moved into place.
"""
import logging
import os
import threading

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

LOG = logging.getLogger(__name__)

_INTERESTING = frozenset(("created", "modified", "moved", "closed"))


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in _INTERESTING:
            return
        paths = {os.fsdecode(event.src_path), os.fsdecode(getattr(event, "dest_path", "") or "")}
        if self.watcher.path in {os.path.abspath(path) for path in paths if path}:
            self.watcher.touch()


class FileWatcher:
    """
    Calls callback() no more often than every interval seconds while path changes.

    Usage
        watcher = FileWatcher("/etc/app.ini", 1.0, reload).start()
        ...
        watcher.close()
    """

    def __init__(self, path, interval, callback, /, *, logger=None):
        if not isinstance(path, str | os.PathLike):
            raise TypeError("FileWatcher() path must be a string or a path-like object")
        if not isinstance(interval, int | float) or interval <= 0:
            raise ValueError("FileWatcher() interval must be a positive number of seconds")
        if not callable(callback):
            raise TypeError("FileWatcher() callback must be callable")
        self.path = os.path.abspath(os.path.expanduser(os.fspath(path)))
        self.interval = interval
        self.callback = callback
        self.log = logger or LOG
        self._changed = threading.Event()
        self._done = threading.Event()
        self._observer = Observer()
        self._ticker = None

    def start(self):
        directory = os.path.dirname(self.path)
        if not os.path.isdir(directory):
            raise FileNotFoundError(f"directory '{directory}' does not exist")
        self._observer.schedule(_ChangeHandler(self), directory, recursive=False)
        self._observer.daemon = True
        self._observer.start()
        self._ticker = threading.Thread(target=self._run, name="argus-watchfile", daemon=True)
        self._ticker.start()
        return self

    def touch(self):
        """mark the file as changed; the next tick fires the callback."""
        self._changed.set()

    def _run(self):
        while not self._done.wait(self.interval):
            if not self._changed.is_set():
                continue
            self._changed.clear()
            try:
                self.callback()
            except Exception:
                self.log.exception("file watch callback failed for '%s'", self.path)

    def close(self):
        self._done.set()
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join()
        if self._ticker is not None and self._ticker is not threading.current_thread():
            self._ticker.join()

    def __enter__(self):
        return self.start()

    def __exit__(self, *exception):
        self.close()


def watch_file(path, interval, callback, /, **options):
    """start and return a FileWatcher."""
    return FileWatcher(path, interval, callback, **options).start()


__all__ = (
    "FileWatcher",
    "watch_file",
)
