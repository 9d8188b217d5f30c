from __future__ import annotations

import enum
import os
import re
import sys
from typing import Mapping


WINDOWS_OS_TYPE_PATTERN = re.compile(r"^(win|msys|cygwin)", re.IGNORECASE)
MACOS_OS_TYPE_PATTERN = re.compile(r"darwin", re.IGNORECASE)

DEFAULT_WORKDIR = "/workdir"
WINDOWS_DEFAULT_WORKDIR = "C:\\workdir"
DEFAULT_SHELL = ("/bin/sh", "-e", "-c")
WINDOWS_DEFAULT_SHELL = ("CMD.EXE", "/c")


class OsFamily(enum.Enum):
    WINDOWS = "windows"
    MACOS = "macos"
    OTHER = "other"

    @property
    def is_windows(self) -> bool:
        return self is OsFamily.WINDOWS

    @property
    def is_macos(self) -> bool:
        return self is OsFamily.MACOS

    @property
    def default_workdir(self) -> str:
        return WINDOWS_DEFAULT_WORKDIR if self.is_windows else DEFAULT_WORKDIR

    @property
    def default_shell(self) -> tuple[str, ...]:
        return WINDOWS_DEFAULT_SHELL if self.is_windows else DEFAULT_SHELL

    @property
    def tty_default(self) -> bool:
        return not self.is_windows

    @property
    def init_default(self) -> bool:
        return not self.is_windows

    @property
    def mount_agent_default(self) -> bool:
        return not self.is_macos


def detect_os_family(os_type: str | None) -> OsFamily:
    candidate = str(os_type or "").strip()
    if WINDOWS_OS_TYPE_PATTERN.match(candidate):
        return OsFamily.WINDOWS
    if MACOS_OS_TYPE_PATTERN.search(candidate):
        return OsFamily.MACOS
    return OsFamily.OTHER


def current_os_type(env: Mapping[str, str] | None = None) -> str:
    """OSTYPE is a shell variable that is rarely exported, so fall back to sys.platform."""
    source = os.environ if env is None else env
    return str(source.get("OSTYPE", "")).strip() or sys.platform
