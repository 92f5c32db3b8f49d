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

"""Default module resolution and directory listing.

ImportlibModuleResolver executes a file as a module under a private name
derived from its path, so two units whose files share a stem (every nested
unit's "main.py", for instance) never collide in sys.modules. Invalidation
removes that module and its submodules from sys.modules so the next resolve
reads fresh code from disk.
"""

from __future__ import annotations

import asyncio
import hashlib
import importlib
import importlib.abc
import importlib.machinery
import importlib.util
import logging
import os
import sys
from types import ModuleType
from collections.abc import Sequence

logger = logging.getLogger(__name__)

MODULE_PREFIX = "dirloader_unit"


def module_name_for(path: str) -> str:
    """Return the sys.modules key used for a load path."""
    stem = os.path.splitext(os.path.basename(path))[0]
    if stem == "__init__":
        stem = os.path.basename(os.path.dirname(path))
    safe_stem = "".join(c if c.isalnum() or c == "_" else "_" for c in stem)
    digest = hashlib.sha1(path.encode("utf-8")).hexdigest()[:12]
    return f"{MODULE_PREFIX}_{safe_stem}_{digest}"


class _SourceOnlyLoader(importlib.machinery.SourceFileLoader):
    """Source loader that always compiles from the file on disk.

    Bytecode caches are keyed on whole-second mtimes, which is too coarse for
    files that are edited and reloaded in quick succession.
    """

    def get_code(self, fullname: str):  # type: ignore[override]
        source = self.get_data(self.path)
        return self.source_to_code(source, self.path)


class ImportlibModuleResolver:
    """Resolve units by executing their files with importlib.

    Module code runs on the calling thread; resolve() does not offload to a
    worker thread, since unit modules may create objects bound to the
    running event loop.
    """

    async def resolve(self, path: str) -> ModuleType:
        return self.resolve_sync(path)

    def resolve_sync(self, path: str) -> ModuleType:
        """Execute the file at path as a fresh module.

        Raises:
            FileNotFoundError: If the file does not exist
            ImportError: If no module spec can be built for the file
            Exception: Anything raised while executing the module body
        """
        if not os.path.isfile(path):
            raise FileNotFoundError(f"No such file: {path}")

        module_name = module_name_for(path)
        spec = importlib.util.spec_from_file_location(
            module_name,
            path,
            loader=self._file_loader(module_name, path),
            submodule_search_locations=(
                [os.path.dirname(path)]
                if os.path.basename(path).startswith("__init__.")
                else None
            ),
        )
        if spec is None or spec.loader is None:
            raise ImportError(f"Could not load spec for {path}", path=path)

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise

        logger.debug(f"Resolved module '{module_name}' from {path}")
        return module

    @staticmethod
    def _file_loader(module_name: str, path: str) -> importlib.abc.Loader:
        if path.lower().endswith(tuple(importlib.machinery.BYTECODE_SUFFIXES)):
            return importlib.machinery.SourcelessFileLoader(module_name, path)
        return _SourceOnlyLoader(module_name, path)

    def invalidate(self, path: str) -> int:
        """Invalidate cached modules for a load path.

        Removes the path's module, its submodules, and any other module
        whose file is the path itself.

        Args:
            path: Load path of the unit

        Returns:
            Number of modules invalidated (including submodules)
        """
        module_name = module_name_for(path)
        prefix = f"{module_name}."
        invalidated = 0

        for name, mod in list(sys.modules.items()):
            if name == module_name or name.startswith(prefix):
                del sys.modules[name]
                invalidated += 1
                logger.debug(f"Invalidated module: {name}")
                continue

            mod_file = getattr(mod, "__file__", None)
            if mod_file and os.path.abspath(mod_file) == path:
                del sys.modules[name]
                invalidated += 1
                logger.debug(f"Invalidated module from path: {name}")

        importlib.invalidate_caches()
        return invalidated


class OsDirectoryLister:
    """List directory entries in sorted order.

    The async variant runs the listing in a worker thread.
    """

    async def list(self, path: str) -> Sequence[str]:
        return await asyncio.to_thread(self.list_sync, path)

    def list_sync(self, path: str) -> Sequence[str]:
        return sorted(os.listdir(path))


__all__ = [
    "MODULE_PREFIX",
    "module_name_for",
    "ImportlibModuleResolver",
    "OsDirectoryLister",
]
