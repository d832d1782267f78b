"""Tests for the System facade."""

from __future__ import annotations

import os
import platform
import sys
from pathlib import Path

import pytest

from procstream.system import UNDEFINED, System, SystemInfo

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture
def system() -> System:
    return System()


class TestIdentity:
    def test_info_fields_are_filled(self, system: System):
        info = system.info()
        assert isinstance(info, SystemInfo)
        for value in (info.os_id, info.os_name, info.os_version, info.os_architecture):
            assert value
        assert info.user_home_dir != UNDEFINED

    @pytest.mark.skipif(IS_WINDOWS, reason="uname is POSIX only")
    def test_architecture_matches_machine(self, system: System):
        assert system.os_architecture == platform.machine()

    @pytest.mark.skipif(IS_WINDOWS, reason="numeric uid is POSIX only")
    def test_user_id(self, system: System):
        assert system.user_id == os.getuid()

    def test_values_are_cached(self, system: System):
        assert system.os_architecture is system.os_architecture

    def test_info_serializes(self, system: System):
        data = system.info().model_dump()
        assert set(data) == {
            "os_id",
            "os_name",
            "os_version",
            "os_architecture",
            "user_name",
            "user_id",
            "user_home_dir",
        }


class TestEnvironment:
    def test_get_env_var(self, system: System, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PROCSTREAM_TEST_VALUE", "42")
        assert system.get_env_var("PROCSTREAM_TEST_VALUE") == "42"

    def test_get_env_var_default(self, system: System, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("PROCSTREAM_TEST_VALUE", raising=False)
        assert system.get_env_var("PROCSTREAM_TEST_VALUE") == ""
        assert system.get_env_var("PROCSTREAM_TEST_VALUE", "fallback") == "fallback"


class TestFileSystem:
    def test_write_then_read(self, system: System, tmp_path: Path):
        target = tmp_path / "note.txt"
        assert system.write_file(target, "héllo\n") is True
        assert system.file_exists(target)
        assert system.read_file(target) == "héllo\n"

    def test_read_missing_file(self, system: System, tmp_path: Path):
        assert system.read_file(tmp_path / "missing.txt") is None

    def test_read_directory_is_none(self, system: System, tmp_path: Path):
        assert system.read_file(tmp_path) is None

    def test_read_binary_file_is_none(self, system: System, tmp_path: Path):
        target = tmp_path / "blob.bin"
        target.write_bytes(b"\xff\xfe\x00")
        assert system.read_file(target) is None

    def test_write_into_missing_directory(self, system: System, tmp_path: Path):
        assert system.write_file(tmp_path / "no" / "such" / "file.txt", "x") is False

    def test_exists_checks(self, system: System, tmp_path: Path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        assert system.file_exists(target)
        assert not system.directory_exists(target)
        assert system.directory_exists(tmp_path)
        assert not system.file_exists(tmp_path)

    def test_make_directory(self, system: System, tmp_path: Path):
        nested = tmp_path / "a" / "b" / "c"
        assert system.make_directory(nested) is True
        assert nested.is_dir()
        # existing directory is not an error
        assert system.make_directory(nested) is True

    def test_make_directory_over_file(self, system: System, tmp_path: Path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        assert system.make_directory(target) is False

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("/tmp/archive.tar.gz", ("/tmp", "archive.tar", ".gz")),
            ("README", ("", "README", "")),
            ("dir/.bashrc", ("dir", ".bashrc", "")),
        ],
    )
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX path separators")
    def test_split_path(self, system: System, path: str, expected: tuple[str, str, str]):
        assert system.split_path(path) == expected


class TestStrings:
    @pytest.mark.parametrize(
        ("text", "separator", "expected"),
        [
            ("a,b,c", ",", ["a", "b", "c"]),
            ("a,,b", ",", ["a", "b"]),
            ("a,b,", ",", ["a", "b"]),
            ("abc", ",", ["abc"]),
            ("", ",", []),
            ("a,b", "", ["a,b"]),
            ("a,b", ",,", ["a,b"]),
        ],
    )
    def test_split_string(self, system: System, text: str, separator: str, expected: list[str]):
        assert system.split_string(text, separator) == expected

    def test_leading_separator_gives_empty_first_item(self, system: System):
        assert system.split_string(",a", ",") == ["", "a"]

    def test_string_to_markup(self, system: System):
        assert (
            system.string_to_markup("<a href=\"x\">Tom & Jerry's</a>")
            == "&lt;a href=&quot;x&quot;&gt;Tom &amp; Jerry&apos;s&lt;/a&gt;"
        )

    def test_string_to_markup_plain(self, system: System):
        assert system.string_to_markup("plain text") == "plain text"
