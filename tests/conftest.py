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

"""Shared pytest fixtures and configuration."""

import os
import sys
import textwrap
from pathlib import Path

import pytest

from dirloader.resolution import MODULE_PREFIX


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Isolate tests from DIRLOADER_* environment variables."""
    monkeypatch.setenv("DIRLOADER_SKIP_ENV_FILE", "1")
    for var in list(os.environ):
        if var.startswith("DIRLOADER_") and var != "DIRLOADER_SKIP_ENV_FILE":
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def drop_unit_modules():
    """Remove modules executed by the loader so tests do not share them."""
    yield
    for name in [n for n in sys.modules if n.startswith(MODULE_PREFIX)]:
        del sys.modules[name]


@pytest.fixture
def write_unit():
    """Write a unit source file, creating parent folders.

    Usage:
        write_unit(tmp_path / "a.py", "class A: ...")
    """

    def _write(path: Path, source: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def flat_dir(tmp_path, write_unit) -> Path:
    """Directory with a.py (class A) and b.py (class B)."""
    root = tmp_path / "plugins"
    write_unit(
        root / "a.py",
        """
        class A:
            def __init__(self, *args):
                self.args = args
        """,
    )
    write_unit(
        root / "b.py",
        """
        class B:
            def __init__(self, *args):
                self.args = args
        """,
    )
    return root


@pytest.fixture
def nested_dir(tmp_path, write_unit) -> Path:
    """Directory with bakery/main.py and cafe/main.py."""
    root = tmp_path / "modules"
    write_unit(
        root / "bakery" / "main.py",
        """
        class Bakery:
            def __init__(self, *args):
                self.args = args
        """,
    )
    write_unit(
        root / "cafe" / "main.py",
        """
        class Cafe:
            def __init__(self, *args):
                self.args = args
        """,
    )
    return root
