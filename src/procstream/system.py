"""System services facade.

Thin synchronous wrappers over OS and runtime facilities: host and user
identity, environment variables, filesystem probes and small text helpers.
None of these raise; failures come back as "Undefined", None or False and
are logged at DEBUG level.
"""

from __future__ import annotations

import getpass
import logging
import os
import platform
import sys
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .runtime.executor import IS_WINDOWS, run_synchronously

__all__ = ["System", "SystemInfo", "UNDEFINED"]

logger = logging.getLogger(__name__)

UNDEFINED = "Undefined"


class SystemInfo(BaseModel):
    """Snapshot of the host and current user."""

    model_config = ConfigDict(frozen=True)

    os_id: str
    os_name: str
    os_version: str
    os_architecture: str
    user_name: str
    user_id: int
    user_home_dir: str


def _os_release() -> dict[str, str]:
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


class System:
    """Host facade. Identity values are looked up once per instance.

    Example:
        system = System()
        if system.directory_exists("/etc"):
            print(system.os_name, system.os_architecture)
    """

    # ------------------------------------------------------------------
    # Host identity
    # ------------------------------------------------------------------

    @cached_property
    def _release(self) -> dict[str, str]:
        return _os_release() if sys.platform.startswith("linux") else {}

    @cached_property
    def os_id(self) -> str:
        """Short OS identifier, e.g. "ubuntu", "darwin", "win32"."""
        return self._release.get("ID") or sys.platform or UNDEFINED

    @cached_property
    def os_name(self) -> str:
        return self._release.get("NAME") or platform.system() or UNDEFINED

    @cached_property
    def os_version(self) -> str:
        return self._release.get("VERSION") or platform.release() or UNDEFINED

    @cached_property
    def os_architecture(self) -> str:
        """Machine architecture as reported by ``uname -m`` where available."""
        if not IS_WINDOWS:
            result = run_synchronously(["uname", "-m"], timeout=5.0)
            if result.success and result.stdout.strip():
                return result.stdout.strip()
        return platform.machine() or UNDEFINED

    # ------------------------------------------------------------------
    # Current user
    # ------------------------------------------------------------------

    @cached_property
    def user_name(self) -> str:
        try:
            return getpass.getuser()
        except (OSError, KeyError) as e:
            logger.debug(f"Cannot determine user name: {e}")
            return UNDEFINED

    @cached_property
    def user_id(self) -> int:
        """Numeric user id, -1 where the platform has none."""
        getuid = getattr(os, "getuid", None)
        return getuid() if getuid is not None else -1

    @cached_property
    def user_home_dir(self) -> str:
        try:
            return str(Path.home())
        except (RuntimeError, KeyError) as e:
            logger.debug(f"Cannot determine home directory: {e}")
            return UNDEFINED

    def info(self) -> SystemInfo:
        return SystemInfo(
            os_id=self.os_id,
            os_name=self.os_name,
            os_version=self.os_version,
            os_architecture=self.os_architecture,
            user_name=self.user_name,
            user_id=self.user_id,
            user_home_dir=self.user_home_dir,
        )

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def get_env_var(self, name: str, default: str = "") -> str:
        """Value of environment variable ``name``, or ``default`` if unset."""
        return os.environ.get(name, default)

    # ------------------------------------------------------------------
    # File system
    # ------------------------------------------------------------------

    def file_exists(self, path: str | os.PathLike) -> bool:
        try:
            return Path(path).is_file()
        except OSError:
            return False

    def directory_exists(self, path: str | os.PathLike) -> bool:
        try:
            return Path(path).is_dir()
        except OSError:
            return False

    def read_file(self, path: str | os.PathLike) -> str | None:
        """Read a UTF-8 text file.

        Returns:
            File content, or None if it is not a readable text file
        """
        if not self.file_exists(path):
            return None
        try:
            return Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Cannot read {path}: {e}")
            return None

    def write_file(self, path: str | os.PathLike, text: str) -> bool:
        """Create or overwrite a UTF-8 text file."""
        try:
            Path(path).write_text(text, encoding="utf-8")
            return True
        except OSError as e:
            logger.debug(f"Cannot write {path}: {e}")
            return False

    def make_directory(self, path: str | os.PathLike) -> bool:
        """Create ``path`` and any missing parents; an existing directory is fine."""
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.debug(f"Cannot create directory {path}: {e}")
            return False

    def split_path(self, path: str | os.PathLike) -> tuple[str, str, str]:
        """Split into (directory, stem, extension).

        >>> System().split_path("/tmp/archive.tar.gz")
        ('/tmp', 'archive.tar', '.gz')
        """
        directory, name = os.path.split(os.fspath(path))
        stem, extension = os.path.splitext(name)
        return directory, stem, extension

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    def split_string(self, text: str, separator: str) -> list[str]:
        """Split on a one-character separator, collapsing adjacent separators.

        Text without the separator (or an invalid separator) gives a one-item
        list; empty text gives an empty list.
        """
        if not text:
            return []
        if len(separator) != 1:
            return [text]

        parts: list[str] = []
        while text:
            index = text.find(separator)
            if index < 0:
                parts.append(text)
                break
            parts.append(text[:index])
            text = text[index + 1:].lstrip(separator)
        return parts

    def string_to_markup(self, text: str) -> str:
        """Escape text for use inside HTML markup."""
        return (text.replace("&", "&amp;")
                    .replace("<", "&lt;")
                    .replace(">", "&gt;")
                    .replace('"', "&quot;")
                    .replace("'", "&apos;"))
