from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Union

import click

from docker_step import docker
from docker_step.config import PluginConfig, is_falsey_token
from docker_step.errors import ConfigurationError, PluginError
from docker_step.host import OsFamily, current_os_type, detect_os_family
from docker_step.paths import expand_relative_volume_path
from docker_step.retry import retry


LOGGER = logging.getLogger("docker_step")
LOGGER.addHandler(logging.NullHandler())

DEFAULT_PULL_RETRIES = 3
SSH_AGENT_CONTAINER_PATH = "/ssh-agent"
KNOWN_HOSTS_CONTAINER_PATH = "/root/.ssh/known_hosts"
AGENT_BINARY_CONTAINER_PATH = "/usr/bin/buildkite-agent"
AGENT_JOB_ENV_VARS = ("BUILDKITE_JOB_ID", "BUILDKITE_BUILD_ID", "BUILDKITE_AGENT_ACCESS_TOKEN")
JOB_ID_LABEL = "com.buildkite.job-id"
RUN_LABEL_ENV_VARS = (
    ("pipeline_name", "BUILDKITE_PIPELINE_NAME"),
    ("pipeline_slug", "BUILDKITE_PIPELINE_SLUG"),
    ("build_number", "BUILDKITE_BUILD_NUMBER"),
    ("job_label", "BUILDKITE_LABEL"),
    ("step_key", "BUILDKITE_STEP_KEY"),
    ("agent_name", "BUILDKITE_AGENT_NAME"),
    ("agent_id", "BUILDKITE_AGENT_ID"),
)
WINDOWS_COMMAND_SEPARATOR = " && "


@dataclass(frozen=True)
class EnvPassthrough:
    """``--env NAME``: docker copies the value from its own environment."""

    name: str

    def render(self) -> str:
        return self.name


@dataclass(frozen=True)
class EnvLiteral:
    name: str
    value: str

    def render(self) -> str:
        return f"{self.name}={self.value}"


EnvToken = Union[EnvPassthrough, EnvLiteral]


def env_token(entry: str) -> EnvToken:
    name, separator, value = entry.partition("=")
    if not separator:
        return EnvPassthrough(entry)
    return EnvLiteral(name, value)


class RunArguments:
    """Append-only ``docker run`` argument list."""

    def __init__(self) -> None:
        self._tokens: list[str] = []
        self._env: list[EnvToken] = []

    def add(self, *tokens: str) -> None:
        self._tokens.extend(str(token) for token in tokens)
        LOGGER.debug("Appended docker run arguments: %s", " ".join(str(token) for token in tokens))

    def add_env(self, token: EnvToken) -> None:
        self._env.append(token)
        self.add("--env", token.render())

    @property
    def tokens(self) -> list[str]:
        return list(self._tokens)

    @property
    def env(self) -> tuple[EnvToken, ...]:
        return tuple(self._env)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._tokens))

    def __len__(self) -> int:
        return len(self._tokens)


class ShellMode(enum.Enum):
    DISABLED = "disabled"
    DEFAULT = "default"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class ShellSpec:
    mode: ShellMode
    tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunContext:
    os_family: OsFamily
    cwd: str
    docker: str = "docker"
    uid: int | None = None
    gid: int | None = None

    @classmethod
    def from_host(cls, env: Mapping[str, str] | None = None, docker_binary: str = "docker") -> RunContext:
        getuid = getattr(os, "getuid", None)
        getgid = getattr(os, "getgid", None)
        return cls(
            os_family=detect_os_family(current_os_type(env)),
            cwd=os.getcwd(),
            docker=docker_binary,
            uid=getuid() if getuid else None,
            gid=getgid() if getgid else None,
        )


def resolve_shell(config: PluginConfig, os_family: OsFamily, *, entrypoint_set: bool) -> ShellSpec:
    mode = ShellMode.DISABLED if entrypoint_set else ShellMode.DEFAULT
    tokens: tuple[str, ...] = ()

    raw_shell = config.value("shell")
    if raw_shell is not None and is_falsey_token(raw_shell):
        mode = ShellMode.DISABLED
    elif raw_shell is not None:
        raise ConfigurationError(
            "The shell option can no longer be specified as a string, only as an array. "
            'Please update your pipeline.yml to use an array, for example: ["/bin/sh", "-e", "-u"]. '
            "Note that a shell is inferred when one is required, so you may be able to remove the option entirely."
        )
    else:
        explicit = config.read_list("shell")
        if explicit:
            mode = ShellMode.EXPLICIT
            tokens = tuple(explicit)

    if mode is ShellMode.DEFAULT:
        tokens = os_family.default_shell
    return ShellSpec(mode=mode, tokens=tokens)


def _effective_workdir(config: PluginConfig, context: RunContext, mount_checkout: bool) -> str:
    explicit = config.value("workdir")
    if explicit is None and not mount_checkout:
        return ""
    return explicit or context.os_family.default_workdir


def _add_user(args: RunArguments, config: PluginConfig, context: RunContext) -> None:
    user = config.value("user")
    propagate_uid_gid = config.enabled("propagate-uid-gid")
    if user and propagate_uid_gid:
        raise PluginError("Can't set both user and propagate-uid-gid")
    if user:
        args.add("-u", user)
    elif propagate_uid_gid:
        if context.uid is None or context.gid is None:
            raise PluginError("propagate-uid-gid is not supported on this host")
        args.add("-u", f"{context.uid}:{context.gid}")


def _add_ssh_agent(args: RunArguments, env: Mapping[str, str]) -> None:
    socket_path = str(env.get("SSH_AUTH_SOCK", "")).strip()
    if not socket_path:
        raise PluginError("$SSH_AUTH_SOCK isn't set, has ssh-agent started?")
    sock = Path(socket_path)
    if not sock.exists():
        raise PluginError(f"The file at {socket_path} does not exist, was ssh-agent started?")
    if not sock.is_socket():
        raise PluginError(f"The file at {socket_path} is not a socket, was ssh-agent started?")

    home = str(env.get("HOME", "")).strip() or str(Path.home())
    args.add_env(EnvLiteral("SSH_AUTH_SOCK", SSH_AGENT_CONTAINER_PATH))
    args.add("--volume", f"{socket_path}:{SSH_AGENT_CONTAINER_PATH}")
    args.add("--volume", f"{home}/.ssh/known_hosts:{KNOWN_HOSTS_CONTAINER_PATH}")


def _add_buildkite_agent(args: RunArguments, env: Mapping[str, str]) -> None:
    binary_path = str(env.get("BUILDKITE_AGENT_BINARY_PATH", "")).strip() or docker.find_agent_binary()
    if not binary_path:
        click.echo(
            f"Warning: failed to find {docker.AGENT_BINARY_NAME} in PATH to mount into container, "
            "you can disable this behaviour with 'mount-buildkite-agent: false'",
            err=True,
        )
        return
    for name in AGENT_JOB_ENV_VARS:
        args.add_env(EnvPassthrough(name))
    args.add("--volume", f"{binary_path}:{AGENT_BINARY_CONTAINER_PATH}")


def _add_propagated_environment(args: RunArguments, env: Mapping[str, str]) -> None:
    env_file = str(env.get("BUILDKITE_ENV_FILE", "")).strip()
    if not env_file:
        click.echo(
            "Warning: not propagating environment variables to container as $BUILDKITE_ENV_FILE is not set",
            err=True,
        )
        return
    # --env-file can't handle multi-line values or quotes, so pass each name through instead
    try:
        lines = Path(env_file).read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeError) as exc:
        raise PluginError(f"Unable to read environment file {env_file}: {exc}") from exc
    for line in lines:
        name = line.partition("=")[0].strip()
        if name:
            args.add_env(EnvPassthrough(name))


def _pull_image(config: PluginConfig, context: RunContext, image: str) -> None:
    retries = config.int_value("pull-retries", DEFAULT_PULL_RETRIES)
    platform = config.value("platform")
    click.echo(f"--- :docker: Pulling {image}", err=True)
    status = retry(retries, lambda: docker.pull_image(context.docker, image, platform))
    if status != 0:
        click.echo("!!! :docker: Pull failed.", err=True)
        raise PluginError(f"Pulling {image} failed with exit code {status}", exit_code=status)


def _ensure_network(context: RunContext, name: str) -> None:
    if docker.network_exists(context.docker, name):
        click.echo(f"Docker network {name} already exists", err=True)
        return
    click.echo(f"Creating network {name}", err=True)
    docker.create_network(context.docker, name)


def _add_resource_options(args: RunArguments, config: PluginConfig) -> None:
    for name, flag in (("runtime", "--runtime"), ("ipc", "--ipc"), ("shm-size", "--shm-size")):
        value = config.value(name)
        if value:
            args.add(flag, value)
    for name in ("cpus", "memory", "memory-swap", "memory-swappiness"):
        value = config.value(name)
        if value:
            args.add(f"--{name}={value}")
    for name, flag in (("gpus", "--gpus"), ("pid", "--pid"), ("platform", "--platform"), ("storage-opt", "--storage-opt")):
        value = config.value(name)
        if value:
            args.add(flag, value)
    for name, flag in (
        ("add-caps", "--cap-add"),
        ("drop-caps", "--cap-drop"),
        ("security-opts", "--security-opt"),
        ("ulimits", "--ulimit"),
    ):
        for value in config.read_list(name):
            args.add(flag, value)


def _step_command(env: Mapping[str, str], os_family: OsFamily) -> str:
    command = str(env.get("BUILDKITE_COMMAND", ""))
    if command and os_family.is_windows:
        # CMD.EXE only chains commands with &&
        return command.replace("\n", WINDOWS_COMMAND_SEPARATOR)
    return command


def assemble(config: PluginConfig, context: RunContext) -> RunArguments:
    env = config.env
    os_family = context.os_family
    args = RunArguments()

    image = config.value("image")
    if not image:
        raise ConfigurationError(f"{config.key('image')} is required")

    if config.enabled("tty", os_family.tty_default):
        args.add("-it")
    else:
        args.add("-i")

    args.add("--rm")

    if config.enabled("init", os_family.init_default):
        args.add("--init")

    for entry in config.read_list("tmpfs"):
        args.add("--tmpfs", expand_relative_volume_path(entry, context.cwd))

    mount_checkout = config.enabled("mount-checkout", True)
    workdir = _effective_workdir(config, context, mount_checkout)
    if mount_checkout:
        args.add("--volume", f"{context.cwd}:{workdir}")

    for entry in config.read_list("volumes", "mounts"):
        args.add("--volume", expand_relative_volume_path(entry, context.cwd))

    for entry in config.read_list("devices"):
        args.add("--device", entry)

    for entry in config.read_list("sysctls"):
        args.add("--sysctl", entry)

    if workdir:
        args.add("--workdir", workdir)

    _add_user(args, config, context)

    for entry in config.read_list("publish"):
        args.add("--publish", entry)

    for entry in config.scan_indexed("additional-groups"):
        args.add("--group-add", entry)

    privileged = config.enabled("privileged")
    userns = config.value("userns")
    if userns:
        # user namespaces can't be combined with --privileged unless remapping is disabled for the container
        args.add("--userns", "host" if privileged else userns)

    if config.enabled("mount-ssh-agent"):
        _add_ssh_agent(args, env)

    if config.enabled("mount-buildkite-agent", os_family.mount_agent_default):
        _add_buildkite_agent(args, env)

    for entry in config.scan_indexed("environment"):
        args.add_env(env_token(entry))

    for entry in config.scan_indexed("add-host"):
        args.add("--add-host", entry)

    if privileged:
        args.add("--privileged")

    if config.enabled("propagate-environment"):
        _add_propagated_environment(args, env)

    if config.enabled("always-pull"):
        _pull_image(config, context, image)

    network = config.value("network")
    if network:
        _ensure_network(context, network)
        args.add("--network", network)

    _add_resource_options(args, config)

    entrypoint_set = config.is_set("entrypoint")
    if entrypoint_set:
        args.add("--entrypoint", env.get(config.key("entrypoint"), ""))

    shell = resolve_shell(config, os_family, entrypoint_set=entrypoint_set)
    LOGGER.debug("Resolved shell mode=%s tokens=%s", shell.mode.value, list(shell.tokens))

    args.add("--label", f"{JOB_ID_LABEL}={env.get('BUILDKITE_JOB_ID', '')}")
    if config.enabled("run-labels"):
        for label, name in RUN_LABEL_ENV_VARS:
            value = env.get(name)
            if value:
                args.add("--label", f"com.buildkite.{label}={value}")

    args.add(image)

    command = config.read_list("command")
    step_command = _step_command(env, os_family)
    if command and step_command:
        raise PluginError("Can't use both a step level command and the command parameter of the plugin")

    if shell.mode is not ShellMode.DISABLED:
        args.add(*shell.tokens)

    if step_command:
        args.add(step_command)
    elif command:
        args.add(*command)

    LOGGER.debug("Assembled %d docker run arguments", len(args))
    return args
