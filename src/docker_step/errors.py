from __future__ import annotations

import click


class PluginError(click.ClickException):
    """Fatal step failure. Raised before any container is started."""

    def __init__(self, message: str, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class ConfigurationError(PluginError):
    pass
