"""
Fakes for the two things tests cannot run for real: SSM Run Command on a
tagged fleet, and the git / Gradle subprocesses.
"""
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest
from botocore.exceptions import ClientError

from health_pipeline.config.settings import GRADLE_PROJECTS

INSTANCE_ID = "i-0123456789abcdef0"

StatusScript = Sequence[Union[None, str, List[str]]]


# list_command_invocations and get_command_invocation cut output off at these lengths
PLUGIN_OUTPUT_LIMIT = 2500
INVOCATION_OUTPUT_LIMIT = 24000


class FakeSSMClient:
    """Replays a scripted sequence of invocation statuses.

    Each entry of ``statuses`` is one poll: ``None`` for "no invocations yet",
    a status string for a single instance, or a list of statuses for a fleet.
    The last entry repeats once the script runs out. ``poll_errors`` maps a
    poll number to an error code raised on that poll instead.
    """

    def __init__(self, statuses: StatusScript = ("Success",), output: str = "",
                 send_error: Optional[str] = None, poll_errors: Optional[Dict[int, str]] = None):
        self.statuses = list(statuses)
        self.output = output
        self.send_error = send_error
        self.poll_errors = poll_errors or {}
        self.sent: List[Dict[str, Any]] = []
        self.polls = 0
        self.output_reads: List[str] = []

    def send_command(self, **kwargs):
        if self.send_error:
            raise ClientError({"Error": {"Code": self.send_error, "Message": "denied"}}, "SendCommand")
        self.sent.append(kwargs)
        return {"Command": {"CommandId": f"cmd-{len(self.sent)}"}}

    def list_command_invocations(self, CommandId: str, Details: bool = False):
        self.polls += 1
        if self.polls in self.poll_errors:
            code = self.poll_errors[self.polls]
            raise ClientError({"Error": {"Code": code, "Message": "Rate exceeded"}}, "ListCommandInvocations")
        entry = self.statuses[min(self.polls, len(self.statuses)) - 1]
        if entry is None:
            return {"CommandInvocations": []}
        statuses = entry if isinstance(entry, list) else [entry]
        return {
            "CommandInvocations": [
                {
                    "CommandId": CommandId,
                    "InstanceId": f"{INSTANCE_ID}{index}",
                    "Status": status,
                    "CommandPlugins": [
                        {"Name": "aws:runShellScript", "Output": self.output[:PLUGIN_OUTPUT_LIMIT]}
                    ],
                }
                for index, status in enumerate(statuses)
            ]
        }

    def get_command_invocation(self, CommandId: str, InstanceId: str):
        self.output_reads.append(InstanceId)
        return {
            "CommandId": CommandId,
            "InstanceId": InstanceId,
            "StandardOutputContent": self.output[:INVOCATION_OUTPUT_LIMIT],
        }


class FakeRunner:
    """Stands in for ``subprocess.run`` for git clones and Gradle builds.

    Clones create the target directory with a Gradle wrapper for Gradle
    projects and ``resources/frontend.conf`` for HealthCDK. Like git, a clone
    records its URL in ``.git/config`` and ``remote set-url`` rewrites it.
    """

    def __init__(self, fail_clone: Optional[str] = None, fail_build: Optional[str] = None,
                 clone_stderr: str = "fatal: Authentication failed"):
        self.fail_clone = fail_clone
        self.fail_build = fail_build
        self.clone_stderr = clone_stderr
        self.calls: List[Dict[str, Any]] = []

    @property
    def clones(self) -> List[List[str]]:
        return [c["cmd"] for c in self.calls if c["cmd"][:2] == ["git", "clone"]]

    @property
    def remote_updates(self) -> List[List[str]]:
        return [c["cmd"] for c in self.calls if c["cmd"][:2] == ["git", "-C"]]

    @property
    def builds(self) -> List[str]:
        return [Path(c["cwd"]).name for c in self.calls if c["cmd"][0] == "./gradlew"]

    def __call__(self, cmd, **kwargs):
        self.calls.append({"cmd": list(cmd), "cwd": kwargs.get("cwd")})
        if cmd[:2] == ["git", "clone"]:
            return self._clone(cmd)
        if cmd[:2] == ["git", "-C"] and cmd[3:5] == ["remote", "set-url"]:
            write_git_config(Path(cmd[2]), cmd[-1])
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        if cmd[0] == "./gradlew":
            project = Path(kwargs["cwd"]).name
            if project == self.fail_build:
                raise subprocess.CalledProcessError(1, cmd)
            return subprocess.CompletedProcess(cmd, 0)
        raise AssertionError(f"unexpected command {cmd}")

    def _clone(self, cmd):
        target = Path(cmd[-1])
        repo = cmd[-2].rsplit("/", 1)[-1][: -len(".git")]
        if repo == self.fail_clone:
            raise subprocess.CalledProcessError(128, cmd, output="", stderr=f"{self.clone_stderr} for '{cmd[-2]}'")
        target.mkdir(parents=True, exist_ok=True)
        write_git_config(target, cmd[-2])
        if repo in GRADLE_PROJECTS or repo == "HealthIntegrationTests":
            (target / "gradlew").write_text("#!/bin/sh\n")
        if repo == "HealthCDK":
            (target / "resources").mkdir()
            (target / "resources" / "frontend.conf").write_text("server { listen 443; }\n")
        if repo == "HealthWorkspace":
            (target / "docker-compose.yml").write_text("services: {}\n")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def write_git_config(checkout: Path, url: str) -> None:
    (checkout / ".git").mkdir(exist_ok=True)
    (checkout / ".git" / "config").write_text(f'[remote "origin"]\n\turl = {url}\n')


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def no_sleep():
    """Records requested delays instead of sleeping."""
    def sleep(seconds):
        sleep.calls.append(seconds)

    sleep.calls = []
    return sleep
