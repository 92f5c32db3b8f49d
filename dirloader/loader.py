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

"""Directory-backed unit loader with hot-reload support.

The Loader turns every eligible entry of a directory into a loaded unit (an
instance of the class the entry's module exposes, or the module itself) and
keeps each unit addressable by load path, by logical name and by the unit
object itself, so units can be loaded, unloaded and reloaded at runtime.

Per-path lifecycle:

    Absent -> Loading -> Loaded -> Unloading -> Absent
    Loaded -> Reloading (unload, then load) -> Loaded

Usage:
    from dirloader import Loader

    loader = Loader(path="plugins", auto_load=False, classes={"params": ["hello"]})
    loader.on("load", lambda name, unit: print(f"loaded {name}"))

    await loader.load_files()
    await loader.reload("a")
    await loader.unload("b")

Nested layout with hot-reload:

    async with Loader(path="modules", nested=True, main_file="main.py", watch=True) as loader:
        await loader.initial_load
        ...
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from typing import Any, Generic, Optional, TypeVar, Union
from collections.abc import Callable, Mapping, Sequence

from dirloader.config import LoaderConfig
from dirloader.errors import (
    ConfigError,
    DestroyFileError,
    DuplicateUnitError,
    FileLoadError,
    FileNotFoundError,
    LoadFilesError,
)
from dirloader.events import EventHandler, EventKey, EventSink, LoaderEventType
from dirloader.factory import ClassOptionsFactory
from dirloader.identity import IdentityTable
from dirloader.paths import (
    derive_name,
    is_eligible,
    normalize_path,
    resolve_load_path,
)
from dirloader.protocols import DirectoryLister, FileWatcher, ModuleResolver, UnitFactory
from dirloader.resolution import ImportlibModuleResolver, OsDirectoryLister
from dirloader.watcher import WatchBridge, WatchdogWatcher

logger = logging.getLogger(__name__)

T = TypeVar("T")

PathLike = Union[str, os.PathLike]


class Loader(Generic[T]):
    """Loads, unloads and reloads units from a directory.

    Args:
        config: A prebuilt LoaderConfig. Keyword options override its fields.
        resolver: Module resolution capability (default: importlib)
        lister: Directory listing capability (default: os.listdir)
        factory: Unit construction capability (default: driven by
            config.classes)
        watcher: File watcher used when config.watch is set (default:
            watchdog)
        **options: LoaderConfig fields

    Raises:
        ConfigError: If the configuration is invalid

    Attributes:
        config: The validated, immutable configuration
        initial_load: Task of the automatic first load_files(), when it was
            scheduled on a running loop
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        *,
        resolver: Optional[ModuleResolver] = None,
        lister: Optional[DirectoryLister] = None,
        factory: Optional[UnitFactory] = None,
        watcher: Optional[FileWatcher] = None,
        **options: Any,
    ) -> None:
        self.config = LoaderConfig.build(config, **options)

        self._resolver: ModuleResolver = resolver or ImportlibModuleResolver()
        self._lister: DirectoryLister = lister or OsDirectoryLister()
        self._factory: UnitFactory = factory or ClassOptionsFactory(self.config.classes)

        self._table: IdentityTable[T] = IdentityTable()
        self._events = EventSink()
        self._ready = False
        self._discards: set[asyncio.Task[None]] = set()

        if self.config.watch and watcher is None:
            watcher = WatchdogWatcher(
                debounce_delay=self.config.watch_options.debounce_delay,
                recursive=self.config.watch_options.recursive,
            )

        self._bridge = WatchBridge(
            reload=self.reload_from_path,
            is_loaded=self._table.__contains__,
            events=self._events,
            main_file=self.config.main_file,
            allowed_exts=self.config.allowed_file_exts,
            ignored=self.config.ignored,
            watcher=watcher if self.config.watch else None,
        )
        self._bridge.add_root(self.config.path, self.config.nested)

        self.initial_load: Optional[asyncio.Task[list[T]]] = None
        if self.config.auto_load:
            self._start_initial_load()

    # =========================================================================
    # Read Side
    # =========================================================================

    @property
    def files(self) -> Mapping[str, T]:
        """Read-only live mapping of load path -> unit."""
        return self._table.files

    @property
    def ready(self) -> bool:
        """True once the first load_files() batch has completed."""
        return self._ready

    @property
    def events(self) -> EventSink:
        return self._events

    @property
    def bridge(self) -> WatchBridge:
        return self._bridge

    def get(self, name: str) -> Optional[T]:
        """Get a unit by logical name (case-insensitive)."""
        return self._table.get_by_name(name)

    def get_by_path(self, path: PathLike) -> Optional[T]:
        return self._table.get_by_path(normalize_path(path))

    def path_of(self, name: str) -> Optional[str]:
        """Get the load path registered for a name."""
        return self._table.get_path_by_name(name)

    def name_of_path(self, path: PathLike) -> Optional[str]:
        return self._table.get_name_by_path(normalize_path(path))

    def name_of(self, unit: Any) -> Optional[str]:
        """Get the registered name of a live unit."""
        return self._table.get_name_by_instance(unit)

    def names(self) -> list[str]:
        return self._table.names()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, str):
            return False
        return normalize_path(path) in self._table

    def __len__(self) -> int:
        return len(self._table)

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event: EventKey, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to a loader event. Returns an unsubscribe function."""
        return self._events.subscribe(event, handler)

    def once(self, event: EventKey, handler: EventHandler) -> Callable[[], None]:
        return self._events.once(event, handler)

    def off(self, event: EventKey, handler: EventHandler) -> bool:
        return self._events.unsubscribe(event, handler)

    def on_ready(self, callback: Callable[[], Any]) -> None:
        """Run callback now if ready, otherwise on the next ready event."""
        if self._ready:
            self._events.run_handler_result(LoaderEventType.READY, callback())
        else:
            self._events.once(LoaderEventType.READY, callback)

    # =========================================================================
    # Batch Loading
    # =========================================================================

    async def load_files(
        self,
        dir: Optional[PathLike] = None,
        nested: Optional[bool] = None,
    ) -> list[T]:
        """Load every eligible entry of a directory.

        Entries load one after another in listing order. A failing entry is
        reported through the error event and does not stop the batch.

        Args:
            dir: Directory to load (default: the configured root)
            nested: Layout of dir. Defaults to the configured layout for the
                root, and to flat for any other directory.

        Returns:
            Units loaded (or already loaded) by this batch

        Raises:
            LoadFilesError: If the directory cannot be listed
        """
        directory, nested = self._batch_target(dir, nested)
        self._bridge.bind_loop(asyncio.get_running_loop())

        try:
            entries = await self._lister.list(directory)
        except Exception as e:
            raise LoadFilesError(e, directory) from e

        units: list[T] = []
        for file_path in self._plan_batch(directory, nested, entries):
            try:
                units.append(await self.load_from_path(file_path))
            except Exception as e:
                logger.warning(f"Failed to load {file_path}: {e}")
                await self._events.dispatch(LoaderEventType.ERROR, e)

        logger.info(f"Loaded {len(units)} unit(s) from {directory}")
        await self._events.dispatch(LoaderEventType.LOAD_MANY, units)

        if not self._ready:
            self._ready = True
            await self._events.dispatch(LoaderEventType.READY)

        return units

    def load_files_sync(
        self,
        dir: Optional[PathLike] = None,
        nested: Optional[bool] = None,
    ) -> list[T]:
        """Synchronous variant of load_files()."""
        directory, nested = self._batch_target(dir, nested)

        try:
            entries = self._lister.list_sync(directory)
        except Exception as e:
            raise LoadFilesError(e, directory) from e

        units: list[T] = []
        for file_path in self._plan_batch(directory, nested, entries):
            try:
                units.append(self.load_from_path_sync(file_path))
            except Exception as e:
                logger.warning(f"Failed to load {file_path}: {e}")
                self._events.dispatch_sync(LoaderEventType.ERROR, e)

        logger.info(f"Loaded {len(units)} unit(s) from {directory}")
        self._events.dispatch_sync(LoaderEventType.LOAD_MANY, units)

        if not self._ready:
            self._ready = True
            self._events.dispatch_sync(LoaderEventType.READY)

        return units

    def _batch_target(
        self,
        dir: Optional[PathLike],
        nested: Optional[bool],
    ) -> tuple[str, bool]:
        directory = normalize_path(dir) if dir is not None else self.config.path
        if nested is None:
            nested = self.config.nested if directory == self.config.path else False
        if nested and self.config.main_file is None:
            raise ConfigError(f"main_file is required to load nested directory {directory}")
        return directory, nested

    def _plan_batch(self, directory: str, nested: bool, entries: Sequence[str]) -> list[str]:
        """Filter listing entries and map them to load paths."""
        self._bridge.add_root(directory, nested)
        return [
            resolve_load_path(entry, directory, nested, self.config.main_file)
            for entry in entries
            if is_eligible(entry, nested, self.config.allowed_file_exts, self.config.ignored)
        ]

    # =========================================================================
    # Single Unit Loading
    # =========================================================================

    async def load_from_path(
        self,
        path: PathLike,
        name: Optional[str] = None,
        emit: bool = True,
    ) -> T:
        """Load the unit at a path.

        A path that is already loaded returns its existing unit without
        resolving the module again.

        Args:
            path: Load path of the unit
            name: Name to register instead of the derived one
            emit: Emit the load event

        Returns:
            The loaded unit

        Raises:
            FileLoadError: If the module cannot be resolved or constructed
            DuplicateUnitError: If the name belongs to another path
        """
        file_path = normalize_path(path)
        existing = self._table.get_record(file_path)
        if existing is not None:
            return existing.instance

        self._check_name_free(file_path, name)

        try:
            module = await self._resolver.resolve(file_path)
        except Exception as e:
            raise FileLoadError(e, file_path) from e

        unit, registered = self._construct(file_path, name, module)
        try:
            self._register(file_path, registered, unit)
        except DuplicateUnitError:
            result = self._discard(file_path, unit)
            if inspect.isawaitable(result):
                await self._await_discard(file_path, result)
            raise

        if emit:
            await self._events.dispatch(LoaderEventType.LOAD, registered, unit)
        return unit

    def load_from_path_sync(
        self,
        path: PathLike,
        name: Optional[str] = None,
        emit: bool = True,
    ) -> T:
        """Synchronous variant of load_from_path()."""
        file_path = normalize_path(path)
        existing = self._table.get_record(file_path)
        if existing is not None:
            return existing.instance

        self._check_name_free(file_path, name)

        try:
            module = self._resolver.resolve_sync(file_path)
        except Exception as e:
            raise FileLoadError(e, file_path) from e

        unit, registered = self._construct(file_path, name, module)
        try:
            self._register(file_path, registered, unit)
        except DuplicateUnitError:
            result = self._discard(file_path, unit)
            if inspect.isawaitable(result):
                self._finish_discard_sync(file_path, result)
            raise

        if emit:
            self._events.dispatch_sync(LoaderEventType.LOAD, registered, unit)
        return unit

    async def load_from_file_name(self, file_name: str) -> T:
        """Load a root entry by its directory entry name (e.g. "a.py", "bakery")."""
        return await self.load_from_path(self._entry_path(file_name))

    def load_from_file_name_sync(self, file_name: str) -> T:
        return self.load_from_path_sync(self._entry_path(file_name))

    def _entry_path(self, file_name: str) -> str:
        return resolve_load_path(
            file_name, self.config.path, self.config.nested, self.config.main_file
        )

    def _derived_name(self, file_path: str) -> str:
        nested, root = self._bridge.layout_for(file_path)
        return derive_name(file_path, nested, root)

    def _check_name_free(self, file_path: str, name: Optional[str]) -> None:
        candidate = name or self._derived_name(file_path)
        owner = self._table.get_path_by_name(candidate)
        if owner is not None and owner != file_path:
            raise DuplicateUnitError(candidate, file_path, owner)

    def _construct(self, file_path: str, name: Optional[str], module: Any) -> tuple[T, str]:
        """Build the unit for a resolved module and pick its registered name."""
        lookup_name = name or self._derived_name(file_path)

        try:
            unit, declared = self._factory.construct(lookup_name, module)
        except Exception as e:
            self._resolver.invalidate(file_path)
            raise FileLoadError(e, file_path) from e

        return unit, name or declared or lookup_name

    def _register(self, file_path: str, registered: str, unit: T) -> None:
        self._table.put(file_path, registered, unit)
        self._bridge.watch(file_path)
        logger.info(f"Loaded unit '{registered}' from {file_path}")

    def _discard(self, file_path: str, unit: T) -> Any:
        """Tear down a unit that was built but could not be registered.

        Returns:
            The destroy hook's result, which may be awaitable
        """
        self._resolver.invalidate(file_path)
        try:
            return self._factory.destroy(unit)
        except Exception as e:
            logger.warning(f"Failed to destroy discarded unit from {file_path}: {e}")
            return None

    async def _await_discard(self, file_path: str, result: Any) -> None:
        try:
            await result
        except Exception as e:
            logger.warning(f"Failed to destroy discarded unit from {file_path}: {e}")

    def _finish_discard_sync(self, file_path: str, result: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._await_discard(file_path, result))
            return
        task = loop.create_task(self._await_discard(file_path, result))
        self._discards.add(task)
        task.add_done_callback(self._discards.discard)

    # =========================================================================
    # Unloading
    # =========================================================================

    async def unload_from_path(self, path: PathLike, emit: bool = True) -> Optional[T]:
        """Unload the unit at a path.

        The destroy hook runs to completion before any identity row is
        removed. If it fails, the unit stays loaded.

        Args:
            path: Load path of the unit
            emit: Emit the unload event

        Returns:
            The unloaded unit, or None if nothing was loaded at path

        Raises:
            DestroyFileError: If the destroy hook fails
        """
        file_path = normalize_path(path)
        record = self._table.get_record(file_path)
        if record is None:
            return None

        try:
            result = self._factory.destroy(record.instance)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise DestroyFileError(e, file_path, record.instance) from e

        self._table.remove(file_path)
        self._bridge.unwatch(file_path)
        logger.info(f"Unloaded unit '{record.name}' from {file_path}")

        if emit:
            await self._events.dispatch(LoaderEventType.UNLOAD, record.instance)
        return record.instance

    async def unload(self, name: str) -> Optional[T]:
        """Unload a unit by name. Unknown names return None."""
        file_path = self._table.get_path_by_name(name)
        if file_path is None:
            return None
        return await self.unload_from_path(file_path)

    # =========================================================================
    # Reloading
    # =========================================================================

    async def reload_from_path(self, path: PathLike) -> Optional[T]:
        """Replace the unit at a path with one built from fresh code.

        Emits unload for the old unit, then reload(new, old) once the
        rebuild hook has run.

        Returns:
            The new unit, or None if nothing was loaded at path

        Raises:
            DestroyFileError: If destroying the old unit fails
            FileLoadError: If the fresh module cannot be loaded
        """
        file_path = normalize_path(path)
        self._resolver.invalidate(file_path)

        old = self._table.get_record(file_path)
        if old is None:
            return None

        await self.unload_from_path(file_path)
        new_unit = await self.load_from_path(file_path, old.name, emit=False)

        result = self._factory.rebuild(new_unit, old.instance)
        if inspect.isawaitable(result):
            await result

        logger.info(f"Reloaded unit '{old.name}' from {file_path}")
        await self._events.dispatch(LoaderEventType.RELOAD, new_unit, old.instance)
        return new_unit

    async def reload(self, name: str) -> Optional[T]:
        """Reload a unit by name.

        Raises:
            FileNotFoundError: If no unit is registered under name
        """
        file_path = self._table.get_path_by_name(name)
        if file_path is None:
            raise FileNotFoundError(name)
        return await self.reload_from_path(file_path)

    async def on_file_changed(self, path: PathLike) -> Optional[T]:
        """Entry point for watcher notifications. See WatchBridge."""
        return await self._bridge.on_file_changed(normalize_path(path))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _start_initial_load(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                self.load_files_sync()
            except LoadFilesError as e:
                self._events.dispatch_sync(LoaderEventType.ERROR, e)
            return

        self.initial_load = loop.create_task(self.load_files())
        self.initial_load.add_done_callback(self._on_initial_load_done)

    def _on_initial_load_done(self, task: asyncio.Task[list[T]]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._events.dispatch_sync(LoaderEventType.ERROR, error)

    def close(self) -> None:
        """Stop watching for file changes. Loaded units stay loaded."""
        if self.initial_load is not None and not self.initial_load.done():
            self.initial_load.cancel()
        self._bridge.close()

    def __enter__(self) -> "Loader[T]":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    async def __aenter__(self) -> "Loader[T]":
        self._bridge.bind_loop(asyncio.get_running_loop())
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Loader(path={self.config.path!r}, nested={self.config.nested}, "
            f"units={len(self._table)}, ready={self._ready})"
        )


__all__ = ["Loader"]
