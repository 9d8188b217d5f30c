from __future__ import annotations

import logging
import shutil
import sys

import click

from docker_step.assembler import LOGGER, RunContext, assemble
from docker_step.config import PluginConfig
from docker_step.executor import exec_docker_run


LOG_LEVEL_CHOICES = ("debug", "info", "warning", "error")
DEFAULT_DOCKER_BINARY = "docker"


def _normalize_log_level(value: str | None) -> str:
    normalized = str(value or "").strip().lower()
    if normalized in LOG_LEVEL_CHOICES:
        return normalized
    return "info"


def _configure_logging(level: str) -> None:
    normalized = _normalize_log_level(level)
    handler = logging.StreamHandler(sys.__stderr__)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    LOGGER.handlers.clear()
    LOGGER.addHandler(handler)
    LOGGER.setLevel(getattr(logging, normalized.upper(), logging.INFO))
    LOGGER.propagate = False


@click.command(help="Run a Buildkite step inside a docker container built from plugin configuration")
@click.option(
    "--docker",
    "docker_binary",
    envvar="DOCKER_STEP_DOCKER_BINARY",
    default=DEFAULT_DOCKER_BINARY,
    show_default=True,
    help="Container runtime executable",
)
@click.option(
    "--log-level",
    envvar="DOCKER_STEP_LOG_LEVEL",
    type=click.Choice(LOG_LEVEL_CHOICES, case_sensitive=False),
    default="info",
    show_default=True,
)
@click.option(
    "--dry-run",
    envvar="DOCKER_STEP_DRY_RUN",
    is_flag=True,
    default=False,
    help="Print the docker run command without running it.",
)
def main(docker_binary: str, log_level: str, dry_run: bool) -> None:
    config = PluginConfig()
    _configure_logging("debug" if config.enabled("debug") else log_level)
    LOGGER.debug("Plugin configuration: %s", config.describe())

    if not dry_run and shutil.which(docker_binary) is None:
        raise click.ClickException(f"{docker_binary} command not found in PATH")

    context = RunContext.from_host(config.env, docker_binary=docker_binary)
    LOGGER.debug("Host os_family=%s cwd=%s", context.os_family.value, context.cwd)
    run_args = assemble(config, context)

    exit_code = exec_docker_run(
        docker_binary,
        run_args,
        image=config.value("image") or "",
        os_family=context.os_family,
        dry_run=dry_run,
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
