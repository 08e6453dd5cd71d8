"""
Backends: the key/value store contract and the watch/reconciliation loop.

Scope
- Key / Pair / ChangeEvent: the data exchanged with any backend.
- Channel: a closable FIFO a backend feeds change events into.
- Backend: abstract capability (get, list, set, watch, get_root_key, close).
- MemoryBackend: an in-process hash map implementation.
- Watcher: runs Backend.watch() in a background thread, relays events to a
  callback one at a time, and reconnects with capped exponential backoff.

Watch states
- IDLE: created, not started.
- WATCHING: a channel is open; waiting on {next event, cancellation}.
- RETRYING: the channel broke (closed, error event, or watch() failed);
  waiting on {backoff timer, cancellation}.
- CANCELLED: terminal; no callback is invoked once cancel() has returned.
"""
import logging
import queue
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import NamedTuple

from .faults import FaultCode, NotFoundError, WatchError
from .utils import Unset

LOG = logging.getLogger(__name__)

MAX_BACKOFF_WAIT = 2.0
BACKOFF_STEP = 0.002


class Key(NamedTuple):
    """
    identifies a configuration value; group "" is the default group.
    """
    group: str = ""
    name: str = ""

    def join(self, separator, /):
        """
        "group<separator>name", or whichever part is not empty.
        """
        return separator.join(part for part in (self.group, self.name) if part)

    def __str__(self):
        return self.join(".")


class Pair(NamedTuple):
    key: Key
    value: str


class ChangeEvent(NamedTuple):
    """
    one external mutation reported by Backend.watch().

    rule is filled in by the watch loop with the matching Rule, or stays None
    when no declared rule manages this key.
    """
    key: Key = Key()
    value: str = ""
    deleted: bool = False
    error: BaseException | None = None
    rule: object = None


class ChannelClosed(Exception):
    """Raised by Channel.get() once the channel is closed and drained."""


class Channel:
    """
    closable FIFO of ChangeEvents.

    - put() after close() is silently dropped.
    - get(timeout) raises queue.Empty on timeout and ChannelClosed once every
      queued item was consumed after close().
    """
    _CLOSED = object()

    def __init__(self):
        self._queue = queue.SimpleQueue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self):
        return self._closed

    def put(self, item, /):
        with self._lock:
            if self._closed:
                return False
            self._queue.put(item)
            return True

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(self._CLOSED)

    def get(self, timeout=None):
        item = self._queue.get(timeout=timeout)
        if item is self._CLOSED:
            # keep the marker for any other reader
            self._queue.put(self._CLOSED)
            raise ChannelClosed("channel is closed")
        return item

    def __iter__(self):
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return


class Backend(ABC):
    """
    The capability a key/value store must provide.

    Notes
    - timeout is in seconds (None waits forever); implementations that cannot
      honor it may ignore it.
    - watch() receives a threading.Event; once it is set the backend stops
      producing events for that channel and closes it.
    """

    @abstractmethod
    def get(self, key, /, timeout=None):
        """Return the Pair for key; raise NotFoundError when absent."""

    @abstractmethod
    def list(self, key, /, timeout=None):
        """Return every Pair under key.group."""

    @abstractmethod
    def set(self, key, value, /, timeout=None):
        """Store value under key."""

    @abstractmethod
    def watch(self, root, cancel, /):
        """Open a Channel of ChangeEvents for everything under root."""

    @abstractmethod
    def get_root_key(self):
        """The root every key of this backend lives under."""

    @abstractmethod
    def close(self):
        """Release resources and close every open watch channel."""

    def __enter__(self):
        return self

    def __exit__(self, *exception):
        self.close()


class MemoryBackend(Backend):
    """
    Hash map backend.

    values maps Key (or "group/name" strings) to string values. set() and
    delete() publish ChangeEvents to every open watch channel.
    """

    def __init__(self, values=None, /, root="/argus"):
        self._root = root
        self._lock = threading.Lock()
        self._values = {}
        self._channels = []
        for key, value in (values or {}).items():
            self._values[self._key(key)] = str(value)

    @staticmethod
    def _key(key):
        if isinstance(key, Key):
            return key
        if isinstance(key, str):
            group, _, name = key.rpartition("/")
            return Key(group, name)
        raise TypeError("MemoryBackend key must be a Key or a 'group/name' string")

    def get(self, key, /, timeout=None):
        key = self._key(key)
        with self._lock:
            try:
                return Pair(key, self._values[key])
            except KeyError:
                raise NotFoundError(
                    f"key '{key.join('/')}' not found",
                    code=FaultCode.KEY_NOT_FOUND,
                    title="key not found",
                    key=key,
                ) from None

    def list(self, key, /, timeout=None):
        key = self._key(key)
        with self._lock:
            pairs = [Pair(other, value) for other, value in self._values.items() if other.group == key.group]
        if not pairs:
            raise NotFoundError(
                f"group '{key.group}' not found",
                code=FaultCode.KEY_NOT_FOUND,
                title="group not found",
                key=key,
            )
        return sorted(pairs)

    def set(self, key, value, /, timeout=None):
        key = self._key(key)
        with self._lock:
            self._values[key] = str(value)
        self._publish(ChangeEvent(key, str(value)))

    def delete(self, key, /):
        key = self._key(key)
        with self._lock:
            value = self._values.pop(key, Unset)
        if value is not Unset:
            self._publish(ChangeEvent(key, value, deleted=True))

    def fail(self, error, /):
        """
        push an error event to every open watch, as a broken connection would.
        """
        self._publish(ChangeEvent(error=error))

    def disconnect(self):
        """close every open watch channel without closing the backend."""
        with self._lock:
            channels, self._channels = self._channels, []
        for channel, _ in channels:
            channel.close()

    def _publish(self, event):
        with self._lock:
            self._channels = [(channel, cancel) for channel, cancel in self._channels if not cancel.is_set()]
            channels = list(self._channels)
        for channel, _ in channels:
            channel.put(event)

    def watch(self, root, cancel, /):
        channel = Channel()
        with self._lock:
            self._channels.append((channel, cancel))

        def closer():
            cancel.wait()
            channel.close()

        threading.Thread(target=closer, name="argus-memory-watch", daemon=True).start()
        return channel

    def get_root_key(self):
        return self._root

    def close(self):
        self.disconnect()


class WatchState(Enum):
    IDLE      = "idle"
    WATCHING  = "watching"
    RETRYING  = "retrying"
    CANCELLED = "cancelled"


class Watcher:
    """
    Background watch/reconciliation loop over any Backend.

    Parameters
    - backend: the Backend to watch (its get_root_key() is the watched root).
    - callback: callable(event, error). Exactly one of them is meaningful:
      (ChangeEvent, None) for a change, (ChangeEvent(), WatchError) on failure.
    - resolve: callable(Key) -> Rule | None, used to fill event.rule.
    - step/maximum: backoff delay is step * 2 ** (attempts - 1), capped at maximum.

    Calling the watcher (or cancel()) stops it. start() does not return until
    the first backend.watch() call has returned, so a change made right after
    start() is never missed.
    """

    def __init__(self, backend, callback, /, resolve=None, *, logger=None,
                 step=BACKOFF_STEP, maximum=MAX_BACKOFF_WAIT):
        if not isinstance(backend, Backend):
            raise TypeError("Watcher() backend must be a Backend")
        if not callable(callback):
            raise TypeError("Watcher() callback must be callable")
        if resolve is not None and not callable(resolve):
            raise TypeError("Watcher() resolve must be callable")
        self.backend = backend
        self.callback = callback
        self.resolve = resolve
        self.log = logger or LOG
        self.step = step
        self.maximum = maximum
        self.attempts = 0
        self.state = WatchState.IDLE
        self._done = threading.Event()
        self._opened = threading.Event()
        self._context = None
        self._channel = None
        self._thread = None

    def start(self):
        if self.state is not WatchState.IDLE:
            raise RuntimeError("Watcher.start() may only be called once")
        self.state = WatchState.WATCHING
        self._thread = threading.Thread(target=self._run, name="argus-watch", daemon=True)
        self._thread.start()
        self._opened.wait()
        return self

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def cancel(self):
        """
        stop watching; once this returns no further callback is invoked
        (unless called from within the callback itself).
        """
        self._done.set()
        if self._context is not None:
            self._context.set()
        # wakes the watch thread blocked on the channel
        if self._channel is not None:
            self._channel.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()

    __call__ = cancel

    def delay(self):
        """
        the wait before the next attempt; increments the attempt counter.
        """
        self.attempts += 1
        return min(self.step * 2 ** (self.attempts - 1), self.maximum)

    def _deliver(self, event, error):
        if self._done.is_set():
            return
        try:
            self.callback(event, error)
        except Exception:
            self.log.exception("watch callback failed for %r", event)

    def _open(self):
        self._context = threading.Event()
        try:
            self._channel = self.backend.watch(self.backend.get_root_key(), self._context)
        except Exception as error:
            self._channel = None
            fault = WatchError(
                f"backend watch failed: {error}",
                code=FaultCode.WATCH_FAILURE,
                title="watch failed",
            )
            fault.__cause__ = error
            self._deliver(ChangeEvent(), fault)
            return WatchState.RETRYING
        finally:
            self._opened.set()
        return WatchState.WATCHING

    def _watching(self):
        while not self._done.is_set():
            try:
                event = self._channel.get()
            except ChannelClosed:
                return WatchState.RETRYING

            if event.error is not None:
                fault = WatchError(
                    f"backend watch: {event.error}",
                    code=FaultCode.WATCH_FAILURE,
                    title="watch failed",
                )
                fault.__cause__ = event.error
                self._deliver(ChangeEvent(), fault)
                return WatchState.RETRYING

            if self.resolve is not None and (rule := self.resolve(event.key)) is not None:
                event = event._replace(rule=rule)
            self.attempts = 0
            self._deliver(event, None)
        return WatchState.CANCELLED

    def _retrying(self):
        self._context.set()
        delay = self.delay()
        self.log.info("backend retry in %.3fs ...", delay)
        if self._done.wait(delay):
            return WatchState.CANCELLED
        return self._open()

    def _run(self):
        self.state = self._open()
        while not self._done.is_set():
            match self.state:
                case WatchState.WATCHING:
                    self.state = self._watching()
                case WatchState.RETRYING:
                    self.state = self._retrying()
                case WatchState.CANCELLED:
                    break
        if self._context is not None:
            self._context.set()
        self.state = WatchState.CANCELLED


__all__ = (
    "MAX_BACKOFF_WAIT",
    "BACKOFF_STEP",
    "Key",
    "Pair",
    "ChangeEvent",
    "ChannelClosed",
    "Channel",
    "Backend",
    "MemoryBackend",
    "WatchState",
    "Watcher",
)
