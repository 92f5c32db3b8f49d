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

"""Identity table for loaded units.

Each loaded unit is stored once as a UnitRecord and indexed three ways:

- path -> record (byte-exact path keys)
- name -> path (case-insensitive name keys)
- id(instance) -> path (instances need not be hashable)

All three indexes are written and cleared together, so a name or instance
lookup never resolves to a path that is no longer loaded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Generic, Optional, TypeVar
from collections.abc import Iterator, Mapping

from dirloader.errors import DuplicateUnitError
from dirloader.paths import normalize_name

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class UnitRecord(Generic[T]):
    """A single loaded unit.

    Attributes:
        path: Load path the unit was resolved from
        name: Registered logical name (original casing)
        instance: The stored unit, a module or an instance
    """

    path: str
    name: str
    instance: T


class IdentityTable(Generic[T]):
    """Three-way mapping between load paths, names and unit instances.

    Example:
        table = IdentityTable()
        table.put("/plugins/a.py", "a", unit)
        table.get_by_name("A") is unit  # True
        table.remove("/plugins/a.py")
    """

    def __init__(self) -> None:
        self._records: dict[str, UnitRecord[T]] = {}
        self._name_index: dict[str, str] = {}
        self._instance_index: dict[int, str] = {}
        self._units: dict[str, T] = {}
        self._view: Mapping[str, T] = MappingProxyType(self._units)

    # =========================================================================
    # Mutation
    # =========================================================================

    def put(self, path: str, name: str, instance: T) -> UnitRecord[T]:
        """Register a unit under its path and name.

        Re-putting an already registered path replaces its record.

        Raises:
            DuplicateUnitError: If the name belongs to a different path
        """
        key = normalize_name(name)
        existing_path = self._name_index.get(key)
        if existing_path is not None and existing_path != path:
            raise DuplicateUnitError(name, path, existing_path)

        if path in self._records:
            self.remove(path)

        record = UnitRecord(path=path, name=name, instance=instance)
        self._records[path] = record
        self._name_index[key] = path
        self._instance_index[id(instance)] = path
        self._units[path] = instance

        logger.debug(f"Registered unit '{name}' -> {path}")
        return record

    def remove(self, path: str) -> Optional[UnitRecord[T]]:
        """Remove every row for a path.

        Returns:
            The removed record, or None if the path was not registered
        """
        record = self._records.pop(path, None)
        if record is None:
            return None

        self._units.pop(path, None)
        key = normalize_name(record.name)
        if self._name_index.get(key) == path:
            del self._name_index[key]
        if self._instance_index.get(id(record.instance)) == path:
            del self._instance_index[id(record.instance)]

        logger.debug(f"Unregistered unit '{record.name}' -> {path}")
        return record

    def clear(self) -> None:
        """Remove all records."""
        self._records.clear()
        self._name_index.clear()
        self._instance_index.clear()
        self._units.clear()

    # =========================================================================
    # Lookup
    # =========================================================================

    def get_record(self, path: str) -> Optional[UnitRecord[T]]:
        return self._records.get(path)

    def get_by_path(self, path: str) -> Optional[T]:
        record = self._records.get(path)
        return record.instance if record else None

    def get_path_by_name(self, name: str) -> Optional[str]:
        return self._name_index.get(normalize_name(name))

    def get_by_name(self, name: str) -> Optional[T]:
        path = self.get_path_by_name(name)
        return self.get_by_path(path) if path is not None else None

    def get_name_by_path(self, path: str) -> Optional[str]:
        record = self._records.get(path)
        return record.name if record else None

    def get_record_by_instance(self, instance: Any) -> Optional[UnitRecord[T]]:
        path = self._instance_index.get(id(instance))
        if path is None:
            return None
        record = self._records.get(path)
        # id() values can be reused once an object is gone
        if record is None or record.instance is not instance:
            return None
        return record

    def get_name_by_instance(self, instance: Any) -> Optional[str]:
        record = self.get_record_by_instance(instance)
        return record.name if record else None

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def files(self) -> Mapping[str, T]:
        """Read-only live view of path -> unit."""
        return self._view

    def paths(self) -> list[str]:
        return list(self._records)

    def names(self) -> list[str]:
        return [record.name for record in self._records.values()]

    def values(self) -> list[T]:
        return [record.instance for record in self._records.values()]

    def records(self) -> list[UnitRecord[T]]:
        return list(self._records.values())

    def __contains__(self, path: object) -> bool:
        return path in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))


__all__ = ["UnitRecord", "IdentityTable"]
