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

"""Loader configuration models.

LoaderConfig is immutable once built. Most callers never construct it
directly and pass keyword options to Loader instead:

    loader = Loader(
        path="plugins",
        nested=True,
        main_file="main.py",
        classes={"params": ["hello"], "destroy": close_plugin},
    )

Validation failures surface as ConfigError, not pydantic.ValidationError.
LoaderSettings reads defaults for the event monitor from DIRLOADER_*
environment variables.
"""

from __future__ import annotations

import os
from typing import Any, Optional, Union
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dirloader.errors import ConfigError
from dirloader.paths import DEFAULT_ALLOWED_EXTS


class ClassOptions(BaseModel):
    """How units are built from resolved modules.

    Attributes:
        instantiate: Construct an instance, or store the raw module
        params: Positional arguments passed to the constructor
        find_constructor: (name, module) -> constructor or None. Defaults to
            dirloader.factory.default_find_constructor.
        destroy: Teardown hook, called before a unit is removed or replaced.
            May be a coroutine function.
        rebuild: (new_instance, old_instance) hook called after a reload to
            carry state over. May be a coroutine function.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    instantiate: bool = True
    params: tuple[Any, ...] = ()
    find_constructor: Optional[Callable[[str, Any], Any]] = None
    destroy: Optional[Callable[[Any], Any]] = None
    rebuild: Optional[Callable[[Any, Any], Any]] = None


class WatchOptions(BaseModel):
    """Options handed to the file watcher.

    Unknown keys are kept so custom watchers can read their own settings.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    debounce_delay: float = Field(0.1, ge=0.0, description="Seconds to coalesce bursts")
    recursive: bool = Field(True, description="Watch unit folders recursively")


class LoaderConfig(BaseModel):
    """Static loader configuration.

    Attributes:
        path: Root directory, stored as an absolute path
        nested: Each entry is a folder holding a main file
        main_file: Main file name, or callable (folder_path) -> file_path.
            Required when nested.
        ignored: Entry names (or glob patterns) to skip
        auto_load: Load the root directory on construction
        allowed_file_exts: Extensions loaded in flat mode
        classes: Instantiation options
        watch: Reload units when their files change
        watch_options: Options passed to the watcher
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, extra="forbid")

    path: str
    nested: bool = False
    main_file: Optional[Union[str, Callable[[str], str]]] = None
    ignored: tuple[str, ...] = ()
    auto_load: bool = True
    allowed_file_exts: tuple[str, ...] = DEFAULT_ALLOWED_EXTS
    classes: ClassOptions = Field(default_factory=ClassOptions)
    watch: bool = False
    watch_options: WatchOptions = Field(default_factory=WatchOptions)

    @field_validator("path", mode="before")
    @classmethod
    def validate_path(cls, v: Any) -> str:
        """Reject empty paths and make the root absolute."""
        if isinstance(v, os.PathLike):
            v = os.fspath(v)
        if not isinstance(v, str) or not v.strip():
            raise ValueError("path must be a non-empty string")
        return os.path.abspath(v)

    @field_validator("main_file")
    @classmethod
    def validate_main_file(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            raise ValueError("main_file must not be empty")
        return v

    @field_validator("allowed_file_exts")
    @classmethod
    def validate_exts(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Lowercase extensions and ensure the leading dot."""
        return tuple(ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in v)

    @model_validator(mode="after")
    def validate_nested_main_file(self) -> "LoaderConfig":
        if self.nested and self.main_file is None:
            raise ValueError("main_file is required when nested is enabled")
        return self

    @classmethod
    def build(cls, config: Optional["LoaderConfig"] = None, **options: Any) -> "LoaderConfig":
        """Build a config from keyword options, optionally on top of another.

        Raises:
            ConfigError: If the options are invalid
        """
        data: dict[str, Any] = {}
        if config is not None:
            data = {name: getattr(config, name) for name in cls.model_fields}
        data.update(options)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(
                f"Bad config, failed to initialize loader: {e.error_count()} validation error(s)",
                details={"errors": e.errors(include_url=False, include_context=False)},
                cause=e,
            ) from e


class LoaderSettings(BaseSettings):
    """Environment defaults for the event monitor (DIRLOADER_* variables)."""

    model_config = SettingsConfigDict(
        env_prefix="DIRLOADER_",
        env_file=".env" if not os.getenv("DIRLOADER_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    path: Optional[str] = None
    nested: bool = False
    main_file: Optional[str] = None
    ignored: list[str] = Field(default_factory=list)
    instantiate: bool = True
    watch: bool = False
    debounce_delay: float = 0.1
    log_level: str = "INFO"


__all__ = ["ClassOptions", "WatchOptions", "LoaderConfig", "LoaderSettings"]
