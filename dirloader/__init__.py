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

"""
dirloader - load every file (or folder) of a directory as a live unit.

Units are kept addressable by load path, by name and by instance, and can be
unloaded and reloaded at runtime, optionally whenever their files change.

Simple API:
    from dirloader import Loader

    loader = Loader(path="plugins", auto_load=False)
    units = await loader.load_files()
    greeter = loader.get("greeter")

Hot-reload of nested units:
    loader = Loader(path="modules", nested=True, main_file="main.py", watch=True)
    loader.on("reload", lambda new, old: print(f"{old!r} -> {new!r}"))
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from dirloader.config import ClassOptions, LoaderConfig, LoaderSettings, WatchOptions
from dirloader.errors import (
    ConfigError,
    DestroyFileError,
    DuplicateUnitError,
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    FileLoadError,
    FileNotFoundError,
    LoaderError,
    LoadFilesError,
)
from dirloader.events import EventSink, LoaderEventType
from dirloader.factory import ClassOptionsFactory, default_find_constructor
from dirloader.identity import IdentityTable, UnitRecord
from dirloader.loader import Loader
from dirloader.protocols import DirectoryLister, FileWatcher, ModuleResolver, UnitFactory
from dirloader.resolution import ImportlibModuleResolver, OsDirectoryLister
from dirloader.watcher import WatchBridge, WatchdogWatcher

__all__ = [
    # Loader
    "Loader",
    "LoaderConfig",
    "ClassOptions",
    "WatchOptions",
    "LoaderSettings",
    # Identity
    "IdentityTable",
    "UnitRecord",
    # Events
    "EventSink",
    "LoaderEventType",
    # Collaborators
    "ModuleResolver",
    "DirectoryLister",
    "UnitFactory",
    "FileWatcher",
    "ImportlibModuleResolver",
    "OsDirectoryLister",
    "ClassOptionsFactory",
    "default_find_constructor",
    "WatchBridge",
    "WatchdogWatcher",
    # Errors
    "LoaderError",
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorHandler",
    "ConfigError",
    "LoadFilesError",
    "FileLoadError",
    "DestroyFileError",
    "FileNotFoundError",
    "DuplicateUnitError",
]
