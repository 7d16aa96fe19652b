"""Polling loop that turns metadata version changes into notifications."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator

from .exceptions import MetadataError
from .logging_config import error_fields

logger = logging.getLogger(__name__)

_STOP = object()


class VersionWatcher:
    """Polls a version indicator and emits each new version exactly once.

    Usage:
        watcher = VersionWatcher(client.get_version, 5, callback=reload)
        watcher.start()
        ...
        watcher.stop()

    Without a callback, changes are queued and the watcher is iterable:

        with VersionWatcher(client.get_version, 5) as watcher:
            for version in watcher:
                ...

    Transport and decode errors are logged and skipped per tick; only
    ``stop()`` ends the loop. With ``eager_check`` the first fetch happens
    synchronously in ``start()`` and its error propagates, in which case
    no polling thread is started.
    """

    def __init__(
        self,
        fetch_version: Callable[[], str],
        interval_seconds: float,
        callback: Callable[[str], None] | None = None,
        eager_check: bool = False,
        notify_initial: bool = False,
        name: str | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._fetch = fetch_version
        self._interval = interval_seconds
        self._callback = callback
        self._eager_check = eager_check
        self._notify_initial = notify_initial
        self.name = name or "metadata-watcher"

        self._version = ""
        self._has_baseline = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._events: queue.Queue = queue.Queue()

    @property
    def version(self) -> str:
        """Last observed version ('' before the first successful read)."""
        return self._version

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> VersionWatcher:
        if self._thread is not None:
            raise RuntimeError(f"Watcher {self.name} already started")

        if self._eager_check:
            version = self._fetch()
            logger.debug(
                "Initial metadata version %s", version,
                extra={"watcher": self.name, "version": version},
            )
            if not self._notify_initial:
                self._version = version
                self._has_baseline = True

        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float | None = None) -> None:
        """Stop polling and end any iteration over this watcher."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._events.put(_STOP)

    def poll(self) -> str | None:
        """Run one tick. Returns the new version if one was emitted."""
        try:
            current = self._fetch()
        except MetadataError as exc:
            logger.warning(
                "Error reading metadata version: %s", exc,
                extra={"watcher": self.name, **error_fields(exc)},
            )
            return None

        if self._has_baseline and current == self._version:
            logger.debug("No changes in metadata version", extra={"watcher": self.name})
            return None

        previous = self._version
        first = not self._has_baseline
        self._version = current
        self._has_baseline = True

        if first and not self._notify_initial:
            logger.info(
                "Metadata version baseline is %s", current,
                extra={"watcher": self.name, "version": current},
            )
            return None

        logger.info(
            "Metadata version changed: %s -> %s", previous, current,
            extra={"watcher": self.name, "version": current, "previous_version": previous},
        )
        self._emit(current)
        return current

    def _emit(self, version: str) -> None:
        if self._callback is None:
            self._events.put(version)
            return
        try:
            self._callback(version)
        except Exception:
            logger.exception(
                "Change callback failed for version %s", version,
                extra={"watcher": self.name, "version": version},
            )

    def _run(self) -> None:
        logger.info(
            "Watching metadata version every %ss", self._interval, extra={"watcher": self.name},
        )
        while not self._stop.is_set():
            try:
                self.poll()
            except Exception:
                logger.exception("Watcher tick failed", extra={"watcher": self.name})
            self._stop.wait(self._interval)
        logger.info("Watcher stopped", extra={"watcher": self.name})

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self._events.get()
            if item is _STOP:
                # Leave the marker for later iterations
                self._events.put(_STOP)
                return
            yield item

    def __enter__(self) -> VersionWatcher:
        if self._thread is None:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False
