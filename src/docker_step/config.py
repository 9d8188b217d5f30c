from __future__ import annotations

import enum
import os
import re
from types import MappingProxyType
from typing import Mapping

from docker_step.errors import ConfigurationError


PLUGIN_ENV_PREFIX = "BUILDKITE_PLUGIN_DOCKER_"
TRUTHY_TOKENS = frozenset({"true", "on", "1"})
FALSEY_TOKENS = frozenset({"false", "off", "0"})


class Toggle(enum.Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    USE_DEFAULT = "use_default"

    def resolve(self, default: bool) -> bool:
        if self is Toggle.USE_DEFAULT:
            return default
        return self is Toggle.ENABLED


def parse_toggle(raw_value: str | None) -> Toggle:
    normalized = str(raw_value or "").strip().lower()
    if not normalized:
        return Toggle.USE_DEFAULT
    if normalized in TRUTHY_TOKENS:
        return Toggle.ENABLED
    return Toggle.DISABLED


def is_falsey_token(raw_value: str | None) -> bool:
    return str(raw_value or "").strip().lower() in FALSEY_TOKENS


def option_key(name: str, prefix: str = PLUGIN_ENV_PREFIX) -> str:
    """Map an option name such as ``mount-checkout`` to ``BUILDKITE_PLUGIN_DOCKER_MOUNT_CHECKOUT``."""
    return prefix + name.upper().replace("-", "_")


class PluginConfig:
    """Read-only view over the plugin options the agent exports into the environment.

    Scalars are plain keys. Lists are indexed families (``KEY_0``, ``KEY_1``, ...)
    that end at the first missing or empty index.
    """

    def __init__(self, env: Mapping[str, str] | None = None, prefix: str = PLUGIN_ENV_PREFIX) -> None:
        self._env = MappingProxyType(dict(os.environ if env is None else env))
        self._prefix = prefix

    @property
    def env(self) -> Mapping[str, str]:
        return self._env

    def key(self, name: str) -> str:
        return option_key(name, self._prefix)

    def is_set(self, name: str) -> bool:
        return self.key(name) in self._env

    def value(self, name: str) -> str | None:
        raw = self._env.get(self.key(name))
        if raw is None or raw == "":
            return None
        return raw

    def toggle(self, name: str) -> Toggle:
        return parse_toggle(self._env.get(self.key(name)))

    def enabled(self, name: str, default: bool = False) -> bool:
        return self.toggle(name).resolve(default)

    def int_value(self, name: str, default: int) -> int:
        raw = self.value(name)
        if raw is None:
            return default
        try:
            parsed = int(raw.strip(), 10)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {self.key(name)}: {raw!r} (expected an integer)") from exc
        if parsed < 0:
            raise ConfigurationError(f"Invalid value for {self.key(name)}: {raw!r} (must not be negative)")
        return parsed

    def read_list(self, *names: str) -> list[str]:
        result: list[str] = []
        for name in names:
            prefix = self.key(name)
            if self._env.get(prefix):
                raise ConfigurationError(f"Plugin received a string for {prefix}, expected an array")
            index = 0
            while True:
                item = self._env.get(f"{prefix}_{index}")
                if not item:
                    break
                result.append(item)
                index += 1
        return result

    def scan_indexed(self, name: str) -> list[str]:
        """Collect every ``KEY_<n>`` entry in the environment, ordered by index.

        Unlike ``read_list`` this does not stop at a gap in the numbering.
        """
        pattern = re.compile(rf"^{re.escape(self.key(name))}_(\d+)$")
        matches: list[tuple[int, str]] = []
        for key, item in self._env.items():
            found = pattern.match(key)
            if found is None:
                continue
            matches.append((int(found.group(1), 10), item))
        matches.sort(key=lambda entry: entry[0])
        return [item for _, item in matches]

    def describe(self) -> dict[str, str]:
        return {key: item for key, item in sorted(self._env.items()) if key.startswith(self._prefix)}
