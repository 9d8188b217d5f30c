from __future__ import annotations

import shutil
import subprocess

from docker_step.errors import PluginError


AGENT_BINARY_NAME = "buildkite-agent"


def _run(cmd: list[str]) -> None:
    try:
        subprocess.run(cmd, check=True)
    except subprocess.CalledProcessError as exc:
        raise PluginError(f"Command failed with exit code {exc.returncode}: {' '.join(cmd)}", exit_code=exc.returncode)


def pull_image(docker: str, image: str, platform: str | None = None) -> int:
    cmd = [docker, "pull"]
    if platform:
        cmd.extend(["--platform", platform])
    cmd.append(image)
    return subprocess.run(cmd, check=False).returncode


def network_exists(docker: str, name: str) -> bool:
    result = subprocess.run(
        [docker, "network", "ls", "--filter", f"name={name}", "--format", "{{.Name}}"],
        check=False,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise PluginError(
            f"Unable to list docker networks (exit code {result.returncode}): {result.stderr.strip()}",
            exit_code=result.returncode,
        )
    # the name filter matches substrings, so compare listed names exactly
    return name in (line.strip() for line in result.stdout.splitlines())


def create_network(docker: str, name: str) -> None:
    _run([docker, "network", "create", name])


def find_agent_binary() -> str | None:
    return shutil.which(AGENT_BINARY_NAME)
