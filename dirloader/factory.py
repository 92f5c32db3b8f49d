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

"""Unit construction from resolved modules.

A unit module exposes its constructor in one of these ways, checked in order
by default_find_constructor():

1. A module-level ``default`` attribute::

       class Greeter: ...
       default = Greeter

2. A class defined in the module whose name matches the unit name,
   ignoring case, underscores and hyphens (``bakery`` -> ``Bakery``,
   ``ice_cream`` -> ``IceCream``)

3. The only class defined in the module

A constructor may declare its own unit name with a ``__unit_name__`` class
attribute; that name then replaces the one derived from the file path.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Optional
from collections.abc import Awaitable

from dirloader.config import ClassOptions

logger = logging.getLogger(__name__)


def _squash(name: str) -> str:
    return name.replace("_", "").replace("-", "").lower()


def default_find_constructor(name: str, module: Any) -> Optional[Any]:
    """Locate the constructor of a unit module.

    Args:
        name: Logical unit name
        module: The resolved module

    Returns:
        The constructor, or None if the module should be stored as-is
    """
    default = getattr(module, "default", None)
    if default is not None:
        return default

    module_name = getattr(module, "__name__", None)
    classes = [
        obj
        for _, obj in inspect.getmembers(module, inspect.isclass)
        if obj.__module__ == module_name
    ]

    wanted = _squash(name)
    for cls in classes:
        if _squash(cls.__name__) == wanted:
            return cls

    if len(classes) == 1:
        return classes[0]

    return None


def declared_unit_name(constructor: Any) -> Optional[str]:
    """Return the name a constructor declares for itself, if any."""
    declared = getattr(constructor, "__unit_name__", None)
    if isinstance(declared, str) and declared.strip():
        return declared
    return None


class ClassOptionsFactory:
    """UnitFactory driven by ClassOptions.

    Example:
        factory = ClassOptionsFactory(ClassOptions(params=("hello",)))
        unit, declared = factory.construct("a", module)
    """

    def __init__(self, options: Optional[ClassOptions] = None) -> None:
        self.options = options or ClassOptions()

    def find_constructor(self, name: str, module: Any) -> Optional[Any]:
        if self.options.find_constructor is not None:
            return self.options.find_constructor(name, module)
        return default_find_constructor(name, module)

    def construct(self, name: str, module: Any) -> tuple[Any, Optional[str]]:
        """Build the unit stored for a module.

        When instantiation is disabled, or no callable constructor is found,
        the module itself is the unit.

        Returns:
            Tuple of (unit, declared_name)
        """
        if not self.options.instantiate:
            return module, None

        constructor = self.find_constructor(name, module)
        if not callable(constructor):
            logger.debug(f"No constructor found for '{name}', storing module")
            return module, None

        return constructor(*self.options.params), declared_unit_name(constructor)

    def destroy(self, instance: Any) -> Optional[Awaitable[None]]:
        if self.options.destroy is None:
            return None
        return self.options.destroy(instance)

    def rebuild(self, new_instance: Any, old_instance: Any) -> Optional[Awaitable[None]]:
        if self.options.rebuild is None:
            return None
        return self.options.rebuild(new_instance, old_instance)


__all__ = [
    "default_find_constructor",
    "declared_unit_name",
    "ClassOptionsFactory",
]
