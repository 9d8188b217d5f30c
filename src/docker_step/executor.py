from __future__ import annotations

import os
import shlex
import subprocess
from typing import Iterable, Mapping

import click

from docker_step.host import OsFamily


MSYS_NO_PATHCONV_ENV = "MSYS_NO_PATHCONV"


def display_command(docker_binary: str, run_args: Iterable[str]) -> str:
    return " ".join(shlex.quote(token) for token in [docker_binary, "run", *run_args])


def child_environment(os_family: OsFamily, env: Mapping[str, str] | None = None) -> dict[str, str]:
    child_env = dict(os.environ if env is None else env)
    if os_family.is_windows:
        # stop MSYS from rewriting container paths such as /workdir into host paths
        child_env[MSYS_NO_PATHCONV_ENV] = "1"
    return child_env


def exec_docker_run(
    docker_binary: str,
    run_args: Iterable[str],
    *,
    image: str,
    os_family: OsFamily,
    dry_run: bool = False,
) -> int:
    """Hand the step over to ``docker run``.

    On POSIX hosts the current process is replaced, so this only returns for a
    dry run or on Windows, where the child's exit status is returned instead.
    """
    argv = [docker_binary, "run", *run_args]
    click.echo(f"--- :docker: Running {display_command(docker_binary, argv[2:])} in {image}", err=True)
    if dry_run:
        return 0

    child_env = child_environment(os_family)
    if os_family.is_windows:
        return subprocess.run(argv, env=child_env, check=False).returncode
    os.execvpe(docker_binary, argv, child_env)
    return 0  # pragma: no cover - execvpe does not return
