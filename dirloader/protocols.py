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

"""Capabilities the loader consumes from its collaborators.

The loader never imports files, lists directories or watches the file system
by itself. It talks to these protocols, and dirloader ships a default
implementation for each:

- ModuleResolver   -> dirloader.resolution.ImportlibModuleResolver
- DirectoryLister  -> dirloader.resolution.OsDirectoryLister
- UnitFactory      -> dirloader.factory.ClassOptionsFactory
- FileWatcher      -> dirloader.watcher.WatchdogWatcher
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol, runtime_checkable
from collections.abc import Awaitable, Callable, Sequence

ChangeCallback = Callable[[str], Awaitable[Any]]


@runtime_checkable
class ModuleResolver(Protocol):
    """Turns a file path into an executed module."""

    async def resolve(self, path: str) -> Any:
        """Resolve a module, raising on any failure."""
        ...

    def resolve_sync(self, path: str) -> Any:
        """Synchronous variant of resolve()."""
        ...

    def invalidate(self, path: str) -> int:
        """Drop cached modules for a path so the next resolve reads fresh code.

        Returns:
            Number of cache entries dropped
        """
        ...


@runtime_checkable
class DirectoryLister(Protocol):
    """Lists entry names of a directory, raising OSError on failure."""

    async def list(self, path: str) -> Sequence[str]: ...

    def list_sync(self, path: str) -> Sequence[str]: ...


@runtime_checkable
class UnitFactory(Protocol):
    """Builds and tears down units.

    construct() returns the value stored for a path: an instance, or the
    module itself when nothing should be instantiated. destroy() and
    rebuild() may return awaitables.
    """

    def construct(self, name: str, module: Any) -> tuple[Any, Optional[str]]:
        """Build a unit.

        Returns:
            Tuple of (unit, declared_name). declared_name is the name the
            constructor supplies for itself, or None.
        """
        ...

    def destroy(self, instance: Any) -> Optional[Awaitable[None]]: ...

    def rebuild(self, new_instance: Any, old_instance: Any) -> Optional[Awaitable[None]]: ...


@runtime_checkable
class FileWatcher(Protocol):
    """Delivers change notifications for a watched set of paths."""

    def set_callback(self, callback: ChangeCallback) -> None:
        """Set the coroutine function invoked with each changed path."""
        ...

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Deliver future notifications on loop."""
        ...

    def add(self, path: str) -> None: ...

    def remove(self, path: str) -> None: ...

    def close(self) -> None: ...


__all__ = [
    "ChangeCallback",
    "ModuleResolver",
    "DirectoryLister",
    "UnitFactory",
    "FileWatcher",
]
