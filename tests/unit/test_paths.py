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

"""Tests for the flat and nested path rules."""

import os

import pytest

from dirloader.paths import (
    derive_name,
    fold_changed_path,
    is_eligible,
    is_ignored,
    is_within,
    normalize_name,
    normalize_path,
    resolve_load_path,
    unit_dir_for,
    watch_path_for,
)

ROOT = os.path.abspath(os.path.join(os.sep, "srv", "units"))


def _p(*parts: str) -> str:
    return os.path.join(ROOT, *parts)


class TestNormalization:
    """Tests for name and path normalization."""

    def test_names_compare_case_insensitively(self):
        assert normalize_name("Bakery") == normalize_name("bakery") == "bakery"

    def test_normalize_path_is_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert normalize_path("a.py") == os.path.join(os.getcwd(), "a.py")

    def test_normalize_path_accepts_pathlike(self, tmp_path):
        assert normalize_path(tmp_path / "a.py") == str(tmp_path / "a.py")


class TestEligibility:
    """Tests for is_eligible() and the ignore list."""

    def test_flat_accepts_allowed_extensions(self):
        assert is_eligible("a.py", nested=False)
        assert is_eligible("b.pyw", nested=False)

    def test_flat_rejects_other_extensions(self):
        assert not is_eligible("notes.txt", nested=False)
        assert not is_eligible("folder", nested=False)

    def test_flat_extension_match_ignores_case(self):
        assert is_eligible("A.PY", nested=False)

    def test_flat_custom_extensions(self):
        assert is_eligible("a.plugin", nested=False, allowed_exts=(".plugin",))
        assert not is_eligible("a.py", nested=False, allowed_exts=(".plugin",))

    def test_nested_accepts_entries_without_extension(self):
        assert is_eligible("bakery", nested=True)

    def test_nested_rejects_entries_with_extension(self):
        assert not is_eligible("readme.md", nested=True)
        assert not is_eligible("a.py", nested=True)

    def test_hidden_entries_and_bytecode_cache_are_skipped(self):
        assert not is_eligible(".hidden.py", nested=False)
        assert not is_eligible(".git", nested=True)
        assert not is_eligible("__pycache__", nested=True)

    def test_flat_ignore_matches_file_name_with_extension(self):
        assert not is_eligible("b.py", nested=False, ignored=["b.py"])
        assert is_eligible("b.py", nested=False, ignored=["b"])

    def test_nested_ignore_matches_directory_name(self):
        assert not is_eligible("cafe", nested=True, ignored=["cafe"])
        assert is_eligible("bakery", nested=True, ignored=["cafe"])

    def test_ignore_glob_patterns(self):
        assert is_ignored("test_a.py", ["test_*"])
        assert not is_ignored("a_test.py", ["test_*"])


class TestLoadPaths:
    """Tests for resolve_load_path() and the name and watch rules."""

    def test_flat_load_path_is_the_entry(self):
        assert resolve_load_path("a.py", ROOT, nested=False) == _p("a.py")

    def test_nested_literal_main_file(self):
        assert resolve_load_path("bakery", ROOT, True, "main.py") == _p("bakery", "main.py")

    def test_nested_callable_main_file(self):
        def main_file(folder: str) -> str:
            return os.path.join(folder, f"{os.path.basename(folder)}.py")

        assert resolve_load_path("cafe", ROOT, True, main_file) == _p("cafe", "cafe.py")

    def test_nested_without_main_file_raises(self):
        with pytest.raises(ValueError):
            resolve_load_path("bakery", ROOT, nested=True)

    def test_flat_name_drops_extension(self):
        assert derive_name(_p("a.py"), nested=False) == "a"

    def test_nested_name_is_folder(self):
        assert derive_name(_p("bakery", "main.py"), nested=True) == "bakery"

    def test_nested_name_with_deep_main_file_uses_root(self):
        load_path = _p("bakery", "src", "main.py")
        assert derive_name(load_path, nested=True, root=ROOT) == "bakery"
        assert unit_dir_for(load_path, ROOT) == _p("bakery")

    def test_watch_path_flat_is_file(self):
        assert watch_path_for(_p("a.py"), nested=False) == _p("a.py")

    def test_watch_path_nested_is_unit_folder(self):
        assert watch_path_for(_p("bakery", "src", "main.py"), True, ROOT) == _p("bakery")

    def test_is_within_is_strict(self):
        assert is_within(_p("a.py"), ROOT)
        assert not is_within(ROOT, ROOT)
        assert not is_within(ROOT + "-other", ROOT)


class TestFoldChangedPath:
    """Tests for mapping raw change paths back to load paths."""

    def test_nested_deep_change_folds_to_main_file(self):
        changed = _p("bakery", "lib", "helpers.py")
        assert fold_changed_path(changed, ROOT, True, "main.py") == _p("bakery", "main.py")

    def test_nested_main_file_change_folds_to_itself(self):
        changed = _p("cafe", "main.py")
        assert fold_changed_path(changed, ROOT, True, "main.py") == changed

    def test_nested_change_in_ignored_folder_is_dropped(self):
        changed = _p("cafe", "main.py")
        assert fold_changed_path(changed, ROOT, True, "main.py", ignored=["cafe"]) is None

    def test_nested_change_to_root_file_is_dropped(self):
        assert fold_changed_path(_p("setup.cfg"), ROOT, True, "main.py") is None

    def test_flat_change_is_its_own_key(self):
        assert fold_changed_path(_p("a.py"), ROOT, False) == _p("a.py")

    def test_flat_ineligible_change_is_dropped(self):
        assert fold_changed_path(_p("a.txt"), ROOT, False) is None
        assert fold_changed_path(_p("sub", "a.py"), ROOT, False) is None

    def test_change_outside_root_is_dropped(self):
        outside = os.path.join(os.path.dirname(ROOT), "a.py")
        assert fold_changed_path(outside, ROOT, False) is None
