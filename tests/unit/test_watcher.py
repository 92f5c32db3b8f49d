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

"""Tests for hot-reload: debouncing, the watchdog adapter and WatchBridge."""

import asyncio
import threading
import time

import pytest

from dirloader import FileLoadError, Loader, LoaderEventType
from dirloader.protocols import FileWatcher
from dirloader.watcher import DebouncedReloadTimer, WatchdogWatcher


class FakeWatcher:
    """FileWatcher that records calls instead of touching the file system."""

    def __init__(self) -> None:
        self.callback = None
        self.loop = None
        self.added: list[str] = []
        self.removed: list[str] = []
        self.closed = False

    def set_callback(self, callback) -> None:
        self.callback = callback

    def bind_loop(self, loop) -> None:
        self.loop = loop

    def add(self, path: str) -> None:
        self.added.append(path)

    def remove(self, path: str) -> None:
        self.removed.append(path)

    def close(self) -> None:
        self.closed = True


# =============================================================================
# DebouncedReloadTimer
# =============================================================================


class TestDebouncedReloadTimer:
    """Tests for DebouncedReloadTimer."""

    @staticmethod
    def collector():
        delivered: list[str] = []
        lock = threading.Lock()

        def deliver(path):
            with lock:
                delivered.append(path)

        return delivered, deliver

    def test_burst_delivers_last_path_once(self):
        delivered, deliver = self.collector()
        timer = DebouncedReloadTimer(deliver, delay=0.05)

        timer.schedule("/p/bakery", "/p/bakery/main.py")
        timer.schedule("/p/bakery", "/p/bakery/lib/util.py")
        timer.schedule("/p/bakery", "/p/bakery/lib/helpers.py")

        time.sleep(0.3)
        assert delivered == ["/p/bakery/lib/helpers.py"]
        assert timer.pending == 0

    def test_keys_are_independent(self):
        delivered, deliver = self.collector()
        timer = DebouncedReloadTimer(deliver, delay=0.01)

        timer.schedule("/p/a.py", "/p/a.py")
        timer.schedule("/p/b.py", "/p/b.py")

        time.sleep(0.3)
        assert sorted(delivered) == ["/p/a.py", "/p/b.py"]

    def test_cancel(self):
        delivered, deliver = self.collector()
        timer = DebouncedReloadTimer(deliver, delay=10)
        timer.schedule("a", "a")

        assert timer.cancel("a") is True
        assert timer.cancel("a") is False
        assert timer.pending == 0
        assert delivered == []

    def test_cancel_all(self):
        _, deliver = self.collector()
        timer = DebouncedReloadTimer(deliver, delay=10)
        timer.schedule("a", "a")
        timer.schedule("b", "b")

        assert timer.cancel_all() == 2
        assert timer.pending == 0

    def test_delivery_errors_are_logged(self, caplog):
        done = threading.Event()

        def deliver(path):
            done.set()
            raise RuntimeError("boom")

        timer = DebouncedReloadTimer(deliver, delay=0)
        timer.schedule("a", "a")
        assert done.wait(timeout=2.0)
        time.sleep(0.05)

        assert "boom" in caplog.text


# =============================================================================
# WatchdogWatcher
# =============================================================================


class TestWatchdogWatcher:
    """Tests for the watchdog adapter."""

    def test_satisfies_protocol(self):
        assert isinstance(WatchdogWatcher(), FileWatcher)
        assert isinstance(FakeWatcher(), FileWatcher)

    @pytest.mark.asyncio
    async def test_paths_are_reference_counted(self, flat_dir, nested_dir):
        watcher = WatchdogWatcher(debounce_delay=0.01)
        file_path = str(flat_dir / "a.py")
        folder = str(nested_dir / "bakery")

        try:
            watcher.add(file_path)
            watcher.add(file_path)
            watcher.add(folder)
            assert watcher.is_watching
            assert watcher.watched_paths == sorted([file_path, folder])

            watcher.remove(file_path)
            assert file_path in watcher.watched_paths

            watcher.remove(file_path)
            watcher.remove(folder)
            assert watcher.watched_paths == []
        finally:
            watcher.close()

        assert not watcher.is_watching

    @pytest.mark.asyncio
    async def test_changes_are_posted_to_the_loop(self, flat_dir, nested_dir):
        """Test a raw change reaches the callback on the event loop thread."""
        watcher = WatchdogWatcher(debounce_delay=0.01)
        received: asyncio.Queue = asyncio.Queue()
        loop_thread = threading.get_ident()

        async def callback(path):
            await received.put((path, threading.get_ident()))

        watcher.set_callback(callback)
        watcher.add(str(flat_dir / "a.py"))
        watcher.add(str(nested_dir / "bakery"))

        try:
            watcher._handle_raw(str(flat_dir / "b.py"))  # not watched
            watcher._handle_raw(str(flat_dir / "a.py"))
            watcher._handle_raw(str(nested_dir / "bakery" / "lib" / "util.py"))

            results = [await asyncio.wait_for(received.get(), timeout=2.0) for _ in range(2)]
        finally:
            watcher.close()

        assert sorted(path for path, _ in results) == sorted(
            [str(flat_dir / "a.py"), str(nested_dir / "bakery" / "lib" / "util.py")]
        )
        assert all(thread == loop_thread for _, thread in results)
        assert received.empty()

    @pytest.mark.asyncio
    async def test_burst_inside_unit_folder_is_one_delivery(self, nested_dir):
        watcher = WatchdogWatcher(debounce_delay=0.2)
        received: asyncio.Queue = asyncio.Queue()

        async def callback(path):
            await received.put(path)

        watcher.set_callback(callback)
        watcher.add(str(nested_dir / "bakery"))

        try:
            watcher._handle_raw(str(nested_dir / "bakery" / "main.py"))
            watcher._handle_raw(str(nested_dir / "bakery" / "lib" / "util.py"))

            path = await asyncio.wait_for(received.get(), timeout=2.0)
            await asyncio.sleep(0.3)
        finally:
            watcher.close()

        assert path == str(nested_dir / "bakery" / "lib" / "util.py")
        assert received.empty()

    def test_changes_without_loop_are_delivered_on_timer_thread(self, flat_dir):
        """Test a watcher started outside any loop still delivers changes."""
        watcher = WatchdogWatcher(debounce_delay=0.01)
        delivered = threading.Event()
        seen = []

        async def callback(path):
            seen.append((path, threading.get_ident()))
            delivered.set()

        watcher.set_callback(callback)
        watcher.add(str(flat_dir / "a.py"))

        try:
            watcher._handle_raw(str(flat_dir / "a.py"))
            assert delivered.wait(timeout=2.0)
        finally:
            watcher.close()

        assert seen[0][0] == str(flat_dir / "a.py")
        assert seen[0][1] != threading.get_ident()

    def test_closed_loop_is_replaced_on_add(self, flat_dir):
        stale = asyncio.new_event_loop()
        stale.close()
        watcher = WatchdogWatcher(loop=stale)

        async def add_and_get_loop():
            watcher.add(str(flat_dir / "a.py"))
            return asyncio.get_running_loop()

        try:
            running = asyncio.run(add_and_get_loop())
        finally:
            watcher.close()

        assert watcher._loop is running

    @pytest.mark.asyncio
    async def test_bind_loop_redirects_delivery(self, flat_dir):
        stale = asyncio.new_event_loop()
        stale.close()
        watcher = WatchdogWatcher(debounce_delay=0.01, loop=stale)
        received: asyncio.Queue = asyncio.Queue()
        loop_thread = threading.get_ident()

        async def callback(path):
            await received.put(threading.get_ident())

        watcher.set_callback(callback)
        watcher.bind_loop(asyncio.get_running_loop())
        watcher.add(str(flat_dir / "a.py"))

        try:
            watcher._handle_raw(str(flat_dir / "a.py"))
            thread = await asyncio.wait_for(received.get(), timeout=2.0)
        finally:
            watcher.close()

        assert thread == loop_thread



# =============================================================================
# WatchBridge through the Loader
# =============================================================================


class TestWatchBridge:
    """Tests for folding changes into reloads."""

    @pytest.mark.asyncio
    async def test_flat_units_are_watched_as_files(self, flat_dir):
        watcher = FakeWatcher()
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=watcher)

        await loader.load_files()
        await loader.unload("a")

        assert watcher.callback == loader.bridge.on_file_changed
        assert watcher.added == [str(flat_dir / "a.py"), str(flat_dir / "b.py")]
        assert watcher.removed == [str(flat_dir / "a.py")]

    @pytest.mark.asyncio
    async def test_nested_units_are_watched_as_folders(self, nested_dir):
        watcher = FakeWatcher()
        loader = Loader(
            path=str(nested_dir),
            nested=True,
            main_file="main.py",
            auto_load=False,
            watch=True,
            watcher=watcher,
        )

        await loader.load_files()

        assert watcher.added == [str(nested_dir / "bakery"), str(nested_dir / "cafe")]

    @pytest.mark.asyncio
    async def test_watcher_unused_when_watch_disabled(self, flat_dir):
        watcher = FakeWatcher()
        loader = Loader(path=str(flat_dir), auto_load=False, watcher=watcher)

        await loader.load_files()
        loader.close()

        assert loader.bridge.watcher is None
        assert watcher.added == []
        assert watcher.closed is False

    @pytest.mark.asyncio
    async def test_deep_nested_change_reloads_unit(self, nested_dir, write_unit):
        """Test a change inside a unit folder reloads that unit's main file."""
        loader = Loader(
            path=str(nested_dir),
            nested=True,
            main_file="main.py",
            auto_load=False,
            watch=True,
            watcher=FakeWatcher(),
        )
        await loader.load_files()
        old = loader.get("bakery")
        reloads = []
        loader.on(LoaderEventType.RELOAD, lambda new, prev: reloads.append((new, prev)))

        helper = write_unit(nested_dir / "bakery" / "lib" / "helpers.py", "X = 1\n")
        new = await loader.on_file_changed(helper)

        assert new is loader.get("bakery")
        assert new is not old
        assert reloads == [(new, old)]

    @pytest.mark.asyncio
    async def test_flat_change_reloads_unit(self, flat_dir, write_unit):
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=FakeWatcher())
        await loader.load_files()
        write_unit(flat_dir / "a.py", "class A:\n    fresh = True\n")

        new = await loader.on_file_changed(flat_dir / "a.py")

        assert new.fresh is True

    @pytest.mark.asyncio
    async def test_change_to_unloaded_path_is_dropped(self, flat_dir, write_unit):
        """Test a new file appearing does not trigger a load."""
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=FakeWatcher())
        await loader.load_files()
        events = []
        loader.on(LoaderEventType.LOAD, lambda *args: events.append(args))
        loader.on(LoaderEventType.RELOAD, lambda *args: events.append(args))

        new_file = write_unit(flat_dir / "c.py", "class C:\n    pass\n")

        assert await loader.on_file_changed(new_file) is None
        assert await loader.on_file_changed(flat_dir / "notes.txt") is None
        assert await loader.on_file_changed(flat_dir.parent / "elsewhere.py") is None
        assert events == []
        assert str(new_file) not in loader

    @pytest.mark.asyncio
    async def test_unit_outside_roots_reloads_by_own_path(self, tmp_path, flat_dir, write_unit):
        extra = write_unit(tmp_path / "extra" / "solo.py", "class Solo:\n    pass\n")
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=FakeWatcher())
        old = await loader.load_from_path(extra)

        new = await loader.on_file_changed(extra)

        assert new is not old
        assert loader.get("solo") is new

    @pytest.mark.asyncio
    async def test_failed_reload_is_emitted_as_error(self, flat_dir, write_unit):
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=FakeWatcher())
        await loader.load_files()
        errors = []
        loader.on(LoaderEventType.ERROR, errors.append)

        write_unit(flat_dir / "b.py", "def broken(:\n")
        result = await loader.on_file_changed(flat_dir / "b.py")

        assert result is None
        assert len(errors) == 1
        assert isinstance(errors[0], FileLoadError)

    @pytest.mark.asyncio
    async def test_load_files_binds_running_loop(self, flat_dir):
        watcher = FakeWatcher()
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=watcher)

        await loader.load_files()

        assert watcher.loop is asyncio.get_running_loop()

    @pytest.mark.asyncio
    async def test_close_closes_watcher(self, flat_dir):
        watcher = FakeWatcher()
        loader = Loader(path=str(flat_dir), auto_load=False, watch=True, watcher=watcher)

        async with loader:
            await loader.load_files()

        assert watcher.closed is True


# =============================================================================
# End to end
# =============================================================================


@pytest.mark.slow
@pytest.mark.asyncio
async def test_editing_a_file_hot_reloads_it(tmp_path, write_unit):
    """Test a real file edit is picked up by watchdog and reloaded."""
    root = tmp_path.resolve() / "live"
    write_unit(root / "a.py", "class A:\n    version = 1\n")

    reloaded = asyncio.Event()
    loader = Loader(
        path=str(root),
        auto_load=False,
        watch=True,
        watch_options={"debounce_delay": 0.05},
    )
    loader.on(LoaderEventType.RELOAD, lambda new, old: reloaded.set())

    async with loader:
        await loader.load_files()
        await asyncio.sleep(0.2)

        write_unit(root / "a.py", "class A:\n    version = 2\n")
        await asyncio.wait_for(reloaded.wait(), timeout=10.0)

        assert loader.get("a").version == 2


@pytest.mark.slow
def test_loader_built_outside_loop_hot_reloads(tmp_path, write_unit):
    """Test hot-reload works for a loader constructed before any loop runs."""
    root = tmp_path.resolve() / "live"
    write_unit(root / "a.py", "class A:\n    version = 1\n")

    loader = Loader(path=str(root), watch=True, watch_options={"debounce_delay": 0.05})
    reloads = []
    loader.on(LoaderEventType.RELOAD, lambda new, old: reloads.append(new))
    assert loader.ready

    async def edit_and_wait():
        await asyncio.sleep(0.2)
        write_unit(root / "a.py", "class A:\n    version = 2\n")
        deadline = time.monotonic() + 10.0
        while not reloads and time.monotonic() < deadline:
            await asyncio.sleep(0.05)

    try:
        asyncio.run(edit_and_wait())
    finally:
        loader.close()

    assert len(reloads) >= 1
    assert loader.get("a").version == 2
