# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""File watching for hot-reload.

Two pieces live here:

- WatchdogWatcher: a FileWatcher built on watchdog. It runs an Observer
  thread, debounces bursts of changes per watched entry, and posts each
  change into the asyncio loop the loader runs on. It never touches loader
  state.
- WatchBridge: folds raw change paths back into the load-path keys of the
  identity table and turns them into reloads.

Message flow:

    watchdog thread -> DebouncedReloadTimer -> loop.call (run_coroutine_threadsafe)
        -> WatchBridge.on_file_changed(path) -> Loader.reload_from_path(key)
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional
from collections.abc import Awaitable, Callable, Iterable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from dirloader.events import EventSink, LoaderEventType
from dirloader.paths import (
    DEFAULT_ALLOWED_EXTS,
    MainFileRule,
    fold_changed_path,
    is_within,
    normalize_path,
    watch_path_for,
)
from dirloader.protocols import ChangeCallback, FileWatcher

logger = logging.getLogger(__name__)


# =============================================================================
# Debounced Reload Timer
# =============================================================================


class DebouncedReloadTimer:
    """Coalesces bursts of changes per watched entry.

    Changes are keyed by the entry that owns them (a watched file, or the
    unit folder they happen in), so an editor saving several files of one
    nested unit produces a single delivery. The last changed path of a
    burst is the one delivered.

    Attributes:
        delay: Quiet period in seconds before a burst is delivered
    """

    def __init__(self, deliver: Callable[[str], None], delay: float = 0.1):
        self.delay = delay
        self._deliver = deliver
        self._timers: dict[str, threading.Timer] = {}
        self._latest: dict[str, str] = {}
        self._lock = threading.Lock()

    def schedule(self, key: str, path: str) -> None:
        """Record a change under key and restart the key's quiet period.

        Args:
            key: Watched entry owning the change
            path: The changed path
        """
        with self._lock:
            previous = self._timers.get(key)
            if previous is not None:
                previous.cancel()

            timer = threading.Timer(self.delay, self._fire)
            timer.args = (key, timer)
            timer.daemon = True
            self._timers[key] = timer
            self._latest[key] = path
            timer.start()

    def _fire(self, key: str, timer: threading.Timer) -> None:
        with self._lock:
            # a timer cancelled after it started waiting on the lock is stale
            if self._timers.get(key) is not timer:
                return
            del self._timers[key]
            path = self._latest.pop(key)

        try:
            self._deliver(path)
        except Exception as e:
            logger.error(f"Change delivery failed for '{key}': {e}")

    def cancel(self, key: str) -> bool:
        """Drop the pending delivery for a key.

        Returns:
            True if a delivery was pending
        """
        with self._lock:
            self._latest.pop(key, None)
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> int:
        """Drop every pending delivery.

        Returns:
            Number of deliveries dropped
        """
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
            self._latest.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)


# =============================================================================
# Watchdog Adapter
# =============================================================================


class _ChangeHandler(FileSystemEventHandler):  # type: ignore[misc]
    """Forwards file events of interest to the owning watcher."""

    def __init__(self, watcher: "WatchdogWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in ("opened", "closed_no_write"):
            return
        self._watcher._handle_raw(os.fsdecode(event.src_path))
        dest_path = getattr(event, "dest_path", None)
        if dest_path:
            self._watcher._handle_raw(os.fsdecode(dest_path))


class WatchdogWatcher:
    """FileWatcher backed by a watchdog Observer.

    Folders are watched recursively (unit folders of nested roots). Single
    files are watched through their parent folder, non-recursively, and
    events are filtered down to the registered files.

    The observer starts on the first add(). Changes are posted to the bound
    event loop: the loop passed in or to bind_loop(), or else the loop
    running during add(). With no open loop bound, a change is delivered on
    the timer thread in a short-lived loop of its own, one at a time.

    Example:
        watcher = WatchdogWatcher(debounce_delay=0.2)
        watcher.set_callback(loader.on_file_changed)
        watcher.add("/plugins/a.py")
    """

    def __init__(
        self,
        debounce_delay: float = 0.1,
        recursive: bool = True,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.recursive = recursive
        self._loop = loop
        self._callback: Optional[ChangeCallback] = None
        self._debounce_timer = DebouncedReloadTimer(self._post, delay=debounce_delay)
        self._observer: Optional[Any] = None
        self._handler = _ChangeHandler(self)
        self._lock = threading.Lock()
        self._deliver_lock = threading.Lock()
        self._local = threading.local()

        self._files: Counter[str] = Counter()
        self._dirs: Counter[str] = Counter()
        self._watches: dict[tuple[str, bool], ObservedWatch] = {}
        self._watch_refs: Counter[tuple[str, bool]] = Counter()

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    @property
    def watched_paths(self) -> list[str]:
        with self._lock:
            return sorted(set(self._files) | set(self._dirs))

    def set_callback(self, callback: ChangeCallback) -> None:
        self._callback = callback

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Post future changes to loop.

        Ignored while a change is being delivered on a timer thread, whose
        loop closes as soon as the delivery is done.
        """
        if getattr(self._local, "delivering", False):
            return
        self._loop = loop

    def _capture_running_loop(self) -> None:
        if self._loop is not None and not self._loop.is_closed():
            return
        if getattr(self._local, "delivering", False):
            return
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            pass

    def add(self, path: str) -> None:
        """Start watching a file or folder. Paths are reference counted."""
        path = normalize_path(path)
        is_dir = os.path.isdir(path)
        self._capture_running_loop()
        key = (path, self.recursive) if is_dir else (os.path.dirname(path), False)

        # The observer dispatches while holding its own lock, and the handler
        # takes self._lock, so schedule/unschedule run outside self._lock.
        with self._lock:
            if is_dir:
                self._dirs[path] += 1
            else:
                self._files[path] += 1

            self._ensure_started()
            observer = self._observer
            first = self._watch_refs[key] == 0
            self._watch_refs[key] += 1

        if first and os.path.isdir(key[0]):
            watch = observer.schedule(self._handler, key[0], recursive=key[1])
            with self._lock:
                self._watches[key] = watch
            logger.debug(f"Watching directory: {key[0]} (recursive={key[1]})")

    def remove(self, path: str) -> None:
        """Stop watching a path once every add() has been matched."""
        path = normalize_path(path)
        watch = None

        with self._lock:
            if self._dirs[path] > 0:
                counter, key = self._dirs, (path, self.recursive)
            elif self._files[path] > 0:
                counter, key = self._files, (os.path.dirname(path), False)
            else:
                return

            counter[path] -= 1
            if counter[path] <= 0:
                del counter[path]

            self._watch_refs[key] -= 1
            if self._watch_refs[key] <= 0:
                del self._watch_refs[key]
                watch = self._watches.pop(key, None)
            observer = self._observer

        self._debounce_timer.cancel(path)

        if watch is not None and observer is not None:
            observer.unschedule(watch)
            logger.debug(f"Stopped watching directory: {key[0]}")

    def close(self) -> None:
        """Stop the observer and cancel pending notifications."""
        cancelled = self._debounce_timer.cancel_all()
        if cancelled:
            logger.debug(f"Cancelled {cancelled} pending reload(s)")

        with self._lock:
            observer, self._observer = self._observer, None
            self._watches.clear()
            self._watch_refs.clear()
            self._files.clear()
            self._dirs.clear()

        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)
            logger.info("Stopped file watcher")

    def _ensure_started(self) -> None:
        if self._observer is not None:
            return
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.start()
        logger.info("Started file watcher")

    def _owner(self, path: str) -> Optional[str]:
        """Return the watched entry a raw path belongs to, if any."""
        with self._lock:
            if path in self._files or path in self._dirs:
                return path
            owners = [d for d in self._dirs if is_within(path, d)]
        return max(owners, key=len) if owners else None

    def _handle_raw(self, path: str) -> None:
        """Called on the observer thread for every raw file event."""
        path = normalize_path(path)
        owner = self._owner(path)
        if owner is not None:
            self._debounce_timer.schedule(owner, path)

    def _post(self, path: str) -> None:
        """Deliver a debounced change. Runs on a timer thread."""
        loop, callback = self._loop, self._callback
        if callback is None:
            return
        if loop is not None and not loop.is_closed():
            asyncio.run_coroutine_threadsafe(callback(path), loop)
            return

        logger.debug(f"No open event loop bound, delivering {path} on the timer thread")
        with self._deliver_lock:
            self._local.delivering = True
            try:
                asyncio.run(callback(path))
            finally:
                self._local.delivering = False

    def __enter__(self) -> "WatchdogWatcher":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


# =============================================================================
# Watch Bridge
# =============================================================================


@dataclass(frozen=True)
class WatchRoot:
    """A directory whose units are watched, with its layout."""

    path: str
    nested: bool


class WatchBridge:
    """Translates watcher notifications into reloads.

    The bridge knows every root the loader has loaded from, so a change deep
    inside a nested unit folder can be folded back to the unit's main file,
    which is the key the identity table uses.

    Args:
        reload: Coroutine function reloading a load path
        is_loaded: Predicate telling whether a load path is loaded
        events: Sink used to surface reload failures
        main_file: Main file rule for nested roots
        allowed_exts: Extensions eligible in flat roots
        ignored: Ignore list shared by all roots
        watcher: The FileWatcher delivering raw notifications, if any
    """

    def __init__(
        self,
        reload: Callable[[str], Awaitable[Any]],
        is_loaded: Callable[[str], bool],
        events: EventSink,
        main_file: Optional[MainFileRule] = None,
        allowed_exts: Iterable[str] = DEFAULT_ALLOWED_EXTS,
        ignored: Iterable[str] = (),
        watcher: Optional[FileWatcher] = None,
    ) -> None:
        self._reload = reload
        self._is_loaded = is_loaded
        self._events = events
        self._main_file = main_file
        self._allowed_exts = tuple(allowed_exts)
        self._ignored = tuple(ignored)
        self._roots: dict[str, WatchRoot] = {}
        self._watched: dict[str, str] = {}  # load path -> watched path
        self.watcher = watcher
        if watcher is not None:
            watcher.set_callback(self.on_file_changed)

    @property
    def roots(self) -> list[WatchRoot]:
        return list(self._roots.values())

    def add_root(self, path: str, nested: bool) -> None:
        """Record a directory and the layout its units were loaded with."""
        path = normalize_path(path)
        self._roots[path] = WatchRoot(path=path, nested=nested)

    def root_for(self, path: str) -> Optional[WatchRoot]:
        """Return the innermost root containing path."""
        best: Optional[WatchRoot] = None
        for root in self._roots.values():
            if is_within(path, root.path) and (best is None or len(root.path) > len(best.path)):
                best = root
        return best

    def layout_for(self, load_path: str) -> tuple[bool, Optional[str]]:
        """Return (nested, root_path) for a load path.

        Paths outside every known root are treated as flat units.
        """
        root = self.root_for(load_path)
        if root is None:
            return False, None
        return root.nested, root.path

    def watch_path(self, load_path: str) -> str:
        nested, root = self.layout_for(load_path)
        return watch_path_for(load_path, nested, root)

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Deliver watcher notifications on loop."""
        if self.watcher is not None:
            self.watcher.bind_loop(loop)

    def watch(self, load_path: str) -> None:
        """Register a loaded unit with the watcher."""
        if self.watcher is None or load_path in self._watched:
            return
        watch_path = self.watch_path(load_path)
        self._watched[load_path] = watch_path
        self.watcher.add(watch_path)

    def unwatch(self, load_path: str) -> None:
        """Deregister a unit, using the path it was registered with."""
        watch_path = self._watched.pop(load_path, None)
        if self.watcher is not None and watch_path is not None:
            self.watcher.remove(watch_path)

    def fold(self, changed_path: str) -> Optional[str]:
        """Map a raw change to the load path it should reload.

        Returns:
            The load path key, or None if no loaded unit owns the change
        """
        changed_path = normalize_path(changed_path)
        root = self.root_for(changed_path)

        key: Optional[str] = None
        if root is not None:
            key = fold_changed_path(
                changed_path,
                root.path,
                root.nested,
                self._main_file,
                self._allowed_exts,
                self._ignored,
            )
            if key is not None:
                key = normalize_path(key)
        if key is None and self._is_loaded(changed_path):
            # unit loaded by explicit path outside any root
            key = changed_path

        if key is None or not self._is_loaded(key):
            return None
        return key

    async def on_file_changed(self, path: str) -> Optional[Any]:
        """Reload the unit owning a changed file.

        Changes that do not belong to a loaded unit are dropped. Reload
        failures are logged and emitted as error events.

        Returns:
            The reloaded unit, or None
        """
        key = self.fold(path)
        if key is None:
            logger.debug(f"Ignoring change outside loaded units: {path}")
            return None

        logger.info(f"Reloading {key} after change to {path}")
        try:
            return await self._reload(key)
        except Exception as e:
            logger.error(f"Auto-reload failed for {key}: {e}")
            await self._events.dispatch(LoaderEventType.ERROR, e)
            return None

    def close(self) -> None:
        self._watched.clear()
        if self.watcher is not None:
            self.watcher.close()


__all__ = [
    "DebouncedReloadTimer",
    "WatchdogWatcher",
    "WatchRoot",
    "WatchBridge",
]
