from __future__ import annotations

import io
import logging
import sys
import unittest
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import docker_step.cli as step_cli
from docker_step.executor import MSYS_NO_PATHCONV_ENV, child_environment, display_command, exec_docker_run
from docker_step.host import OsFamily


BASE_ENV = {
    "OSTYPE": "linux-gnu",
    "BUILDKITE_JOB_ID": "job-1",
    "BUILDKITE_PLUGIN_DOCKER_IMAGE": "alpine:3",
    "BUILDKITE_PLUGIN_DOCKER_MOUNT_BUILDKITE_AGENT": "false",
}


class CliTests(unittest.TestCase):
    def _invoke(self, env: dict[str, str], args: list[str] | None = None):
        runner = CliRunner()
        return runner.invoke(step_cli.main, args or [], env={**BASE_ENV, **env})

    def test_execs_docker_run_with_assembled_arguments(self) -> None:
        with patch("docker_step.cli.shutil.which", return_value="/usr/bin/docker"), patch(
            "docker_step.executor.os.execvpe"
        ) as exec_mock:
            result = self._invoke(
                {
                    "BUILDKITE_PLUGIN_DOCKER_COMMAND_0": "echo",
                    "BUILDKITE_PLUGIN_DOCKER_COMMAND_1": "hi",
                }
            )

        self.assertEqual(result.exit_code, 0, msg=result.output)
        exec_mock.assert_called_once()
        binary, argv, child_env = exec_mock.call_args.args
        self.assertEqual(binary, "docker")
        self.assertEqual(argv[:4], ["docker", "run", "-it", "--rm"])
        self.assertEqual(argv[-6:], ["alpine:3", "/bin/sh", "-e", "-c", "echo", "hi"])
        self.assertNotIn(MSYS_NO_PATHCONV_ENV, child_env)
        self.assertIn("--- :docker: Running docker run -it --rm", result.output)
        self.assertIn("in alpine:3", result.output)

    def test_dry_run_prints_without_exec(self) -> None:
        with patch("docker_step.executor.os.execvpe") as exec_mock:
            result = self._invoke({}, ["--dry-run", "--docker", "podman"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        exec_mock.assert_not_called()
        self.assertIn("--- :docker: Running podman run -it --rm --init", result.output)

    def test_debug_option_logs_each_appended_argument_group(self) -> None:
        log_buffer = io.StringIO()
        with patch.object(sys, "__stderr__", log_buffer), patch("docker_step.executor.os.execvpe"):
            result = self._invoke(
                {
                    "BUILDKITE_PLUGIN_DOCKER_DEBUG": "true",
                    "BUILDKITE_PLUGIN_DOCKER_DEVICES_0": "/dev/fuse",
                },
                ["--dry-run"],
            )

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertEqual(step_cli.LOGGER.level, logging.DEBUG)
        log = log_buffer.getvalue()
        self.assertIn("Plugin configuration", log)
        self.assertIn("Appended docker run arguments: --device /dev/fuse", log)
        self.assertIn("Appended docker run arguments: alpine:3", log)

    def test_debug_lines_are_hidden_at_default_level(self) -> None:
        log_buffer = io.StringIO()
        with patch.object(sys, "__stderr__", log_buffer), patch("docker_step.executor.os.execvpe"):
            result = self._invoke({"BUILDKITE_PLUGIN_DOCKER_DEVICES_0": "/dev/fuse"}, ["--dry-run"])

        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertEqual(step_cli.LOGGER.level, logging.INFO)
        self.assertNotIn("Appended docker run arguments", log_buffer.getvalue())

    def test_missing_docker_binary_fails(self) -> None:
        with patch("docker_step.cli.shutil.which", return_value=None):
            result = self._invoke({})

        self.assertEqual(result.exit_code, 1)
        self.assertIn("docker command not found in PATH", result.output)

    def test_conflicting_user_options_exit_before_exec(self) -> None:
        with patch("docker_step.cli.shutil.which", return_value="/usr/bin/docker"), patch(
            "docker_step.executor.os.execvpe"
        ) as exec_mock:
            result = self._invoke(
                {
                    "BUILDKITE_PLUGIN_DOCKER_USER": "nobody",
                    "BUILDKITE_PLUGIN_DOCKER_PROPAGATE_UID_GID": "true",
                }
            )

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Can't set both user and propagate-uid-gid", result.output)
        exec_mock.assert_not_called()

    def test_pull_failure_exit_code_is_propagated(self) -> None:
        with patch("docker_step.cli.shutil.which", return_value="/usr/bin/docker"), patch(
            "docker_step.docker.pull_image", return_value=3
        ) as pull_mock, patch("docker_step.executor.os.execvpe") as exec_mock:
            result = self._invoke(
                {
                    "BUILDKITE_PLUGIN_DOCKER_ALWAYS_PULL": "true",
                    "BUILDKITE_PLUGIN_DOCKER_PULL_RETRIES": "0",
                }
            )

        self.assertEqual(result.exit_code, 3)
        self.assertEqual(pull_mock.call_count, 1)
        exec_mock.assert_not_called()


class ExecutorTests(unittest.TestCase):
    def test_display_command_quotes_each_token(self) -> None:
        rendered = display_command("docker", ["--volume", "/a b:/c", "alpine", "echo it's"])
        self.assertEqual(rendered, "docker run --volume '/a b:/c' alpine 'echo it'\"'\"'s'")

    def test_child_environment_disables_msys_path_conversion_on_windows(self) -> None:
        source = {"PATH": "/usr/bin"}
        self.assertEqual(child_environment(OsFamily.WINDOWS, source)[MSYS_NO_PATHCONV_ENV], "1")
        self.assertNotIn(MSYS_NO_PATHCONV_ENV, child_environment(OsFamily.OTHER, source))
        self.assertNotIn(MSYS_NO_PATHCONV_ENV, source)

    def test_windows_runs_subprocess_and_returns_status(self) -> None:
        with patch("docker_step.executor.subprocess.run") as run_mock, patch(
            "docker_step.executor.os.execvpe"
        ) as exec_mock:
            run_mock.return_value.returncode = 17
            status = exec_docker_run("docker", ["-i", "img"], image="img", os_family=OsFamily.WINDOWS)

        self.assertEqual(status, 17)
        exec_mock.assert_not_called()
        argv = run_mock.call_args.args[0]
        self.assertEqual(argv, ["docker", "run", "-i", "img"])
        self.assertEqual(run_mock.call_args.kwargs["env"][MSYS_NO_PATHCONV_ENV], "1")


if __name__ == "__main__":
    unittest.main()
