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

"""Pure path rules for flat and nested unit directories.

Flat layout: every eligible file directly inside the root is a unit and is
named after the file without its extension::

    plugins/
        a.py        -> "a"
        b.py        -> "b"

Nested layout: every folder directly inside the root is a unit, its main file
is what gets loaded, and the unit is named after the folder::

    modules/
        bakery/main.py  -> "bakery"
        cafe/main.py    -> "cafe"

Load paths are compared byte-exact. Names are compared case-insensitively,
always through normalize_name().
"""

from __future__ import annotations

import fnmatch
import os
from typing import Optional, Union
from collections.abc import Callable, Iterable

MainFileRule = Union[str, Callable[[str], str]]

DEFAULT_ALLOWED_EXTS: tuple[str, ...] = (".py", ".pyw")


def normalize_name(name: str) -> str:
    """Return the lookup key for a logical name."""
    return name.lower()


def normalize_path(path: Union[str, os.PathLike[str]]) -> str:
    """Return the absolute string form used as a load-path key."""
    return os.path.abspath(os.fspath(path))


def is_ignored(entry_name: str, ignored: Iterable[str]) -> bool:
    """Check an entry name against the ignore list.

    Entries match literally or as shell-style glob patterns.
    """
    for pattern in ignored:
        if entry_name == pattern or fnmatch.fnmatchcase(entry_name, pattern):
            return True
    return False


def is_eligible(
    entry_name: str,
    nested: bool,
    allowed_exts: Iterable[str] = DEFAULT_ALLOWED_EXTS,
    ignored: Iterable[str] = (),
) -> bool:
    """Decide whether a directory entry should be loaded as a unit.

    Nested entries are assumed to be folders when they have no extension;
    no stat call is made.

    Args:
        entry_name: Bare entry name as returned by a directory listing
        nested: Whether the directory uses the nested layout
        allowed_exts: Extensions accepted in flat mode (with leading dot)
        ignored: Entry names or glob patterns to skip

    Returns:
        True if the entry should be loaded
    """
    if entry_name.startswith(".") or entry_name == "__pycache__":
        return False

    ext = os.path.splitext(entry_name)[1].lower()

    if nested and ext:
        return False
    if not nested and ext not in {e.lower() for e in allowed_exts}:
        return False

    return not is_ignored(entry_name, ignored)


def resolve_load_path(
    entry_name: str,
    base_dir: str,
    nested: bool,
    main_file: Optional[MainFileRule] = None,
) -> str:
    """Compute the path that is actually loaded for a directory entry.

    Args:
        entry_name: Entry name inside base_dir
        base_dir: Directory containing the entry
        nested: Whether the entry is a unit folder
        main_file: Literal main file name, or a callable mapping the unit
            folder path to the file to load. Required when nested.

    Returns:
        Load path for the entry

    Raises:
        ValueError: If nested is set without a main file rule
    """
    path = os.path.join(base_dir, entry_name)

    if nested:
        if main_file is None:
            raise ValueError("A main file rule is required for nested directories")
        if callable(main_file):
            path = os.fspath(main_file(path))
        else:
            path = os.path.join(path, main_file)

    return path


def unit_dir_for(load_path: str, root: str) -> Optional[str]:
    """Return the unit folder of a nested load path: root plus its first segment."""
    if not is_within(load_path, root):
        return None
    parts = os.path.relpath(load_path, root).split(os.sep)
    if len(parts) < 2:
        return None
    return os.path.join(root, parts[0])


def derive_name(load_path: str, nested: bool, root: Optional[str] = None) -> str:
    """Extract the logical name from a load path.

    Nested: the folder containing the main file, or, when the root is known,
    the unit folder directly under it (main file rules may point deeper).
    Flat: the file name without its extension.
    """
    if nested:
        unit_dir = unit_dir_for(load_path, root) if root else os.path.dirname(load_path)
        if unit_dir:
            return os.path.basename(unit_dir)
    return os.path.splitext(os.path.basename(load_path))[0]


def watch_path_for(load_path: str, nested: bool, root: Optional[str] = None) -> str:
    """Return the path a watcher should observe for a loaded unit.

    Nested units are watched as whole folders, flat units as single files.
    """
    if nested:
        unit_dir = unit_dir_for(load_path, root) if root else os.path.dirname(load_path)
        if unit_dir:
            return unit_dir
    return load_path


def is_within(path: str, root: str) -> bool:
    """Check whether path lies strictly inside root."""
    try:
        return path != root and os.path.commonpath([path, root]) == root
    except ValueError:
        # different drives
        return False


def fold_changed_path(
    changed_path: str,
    root: str,
    nested: bool,
    main_file: Optional[MainFileRule] = None,
    allowed_exts: Iterable[str] = DEFAULT_ALLOWED_EXTS,
    ignored: Iterable[str] = (),
) -> Optional[str]:
    """Map a raw file-change path back to the load path of its unit.

    In nested mode any file inside a unit folder folds to that folder's main
    file. In flat mode the changed path is its own key, provided the file is
    eligible.

    Args:
        changed_path: Absolute path reported by the watcher
        root: Watched root directory
        nested: Layout of the root
        main_file: Main file rule for nested roots
        allowed_exts: Extensions accepted in flat mode
        ignored: Ignore list of the root

    Returns:
        The load path key, or None if the change does not belong to a unit
    """
    if not is_within(changed_path, root):
        return None

    parts = os.path.relpath(changed_path, root).split(os.sep)

    if nested:
        entry = parts[0]
        if not is_eligible(entry, True, allowed_exts, ignored):
            return None
        return resolve_load_path(entry, root, True, main_file)

    if len(parts) != 1 or not is_eligible(parts[0], False, allowed_exts, ignored):
        return None
    return changed_path


__all__ = [
    "MainFileRule",
    "DEFAULT_ALLOWED_EXTS",
    "normalize_name",
    "normalize_path",
    "is_ignored",
    "is_eligible",
    "resolve_load_path",
    "unit_dir_for",
    "derive_name",
    "watch_path_for",
    "is_within",
    "fold_changed_path",
]
