"""Structured command documents for AWS-RunShellScript.

A document is a named, versioned, ordered list of steps. It is rendered to
the ``commands`` parameter of ``AWS-RunShellScript`` only at dispatch time.
Every rendered step starts by echoing a marker line, so the invocation
output can be mapped back to the steps that ran.
"""
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

STEP_MARKER = "==> step"
FAIL_MARKER = "==> failed"

PROCESS_LISTING = "docker ps --format '{{.Names}} {{.Status}}'"

_STEP_LINE = re.compile(rf"^{re.escape(STEP_MARKER)} (\d+)/(\d+) (\S+)\s*$")
_FAIL_LINE = re.compile(rf"^{re.escape(FAIL_MARKER)} (\S+)\s*$")


class StepKind(str, Enum):
    SHELL = "shell"
    PROCESS_CHECK = "process-check"


@dataclass(frozen=True)
class CommandStep:
    """One step of a command document.

    ``fail_fast`` steps abort the whole script with exit code 1 when any of
    their commands fails; other steps are best effort. Process checks are
    always fail-fast and succeed only when every expected name shows up in
    the container listing.
    """
    name: str
    kind: StepKind = StepKind.SHELL
    commands: Tuple[str, ...] = ()
    expected: Tuple[str, ...] = ()
    fail_fast: bool = True
    description: str = ""

    def render(self) -> List[str]:
        if self.kind == StepKind.PROCESS_CHECK:
            return [
                f"{PROCESS_LISTING} | grep -q {name} || {self._abort(f'missing process {name}')}"
                for name in self.expected
            ]
        if not self.fail_fast:
            return list(self.commands)
        return [f"{cmd} || {self._abort()}" for cmd in self.commands]

    def _abort(self, reason: Optional[str] = None) -> str:
        suffix = f": {reason}" if reason else ""
        return f"{{ echo '{FAIL_MARKER} {self.name}{suffix}'; exit 1; }}"


def shell_step(name: str, *commands: str, fail_fast: bool = True, description: str = "") -> CommandStep:
    return CommandStep(name=name, kind=StepKind.SHELL, commands=tuple(commands),
                       fail_fast=fail_fast, description=description)


def process_check_step(name: str, processes: Iterable[str], description: str = "") -> CommandStep:
    return CommandStep(name=name, kind=StepKind.PROCESS_CHECK, expected=tuple(processes),
                       fail_fast=True, description=description)


@dataclass(frozen=True)
class CommandDocument:
    name: str
    version: str
    comment: str
    steps: Tuple[CommandStep, ...] = field(default_factory=tuple)

    def __post_init__(self):
        names = [step.name for step in self.steps]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate step names in {self.name}: {sorted(duplicates)}")
        for step_name in names:
            if not step_name or any(c.isspace() or c == "'" for c in step_name):
                raise ValueError(f"Invalid step name: {step_name!r}")

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def render(self) -> List[str]:
        """Flatten the document into shell lines."""
        total = len(self.steps)
        lines = [f"echo 'document {self.name} v{self.version}'"]
        for index, step in enumerate(self.steps, start=1):
            lines.append(f"echo '{STEP_MARKER} {index}/{total} {step.name}'")
            lines.extend(step.render())
        return lines

    def to_parameters(self) -> Dict[str, List[str]]:
        """Parameters for ``ssm.send_command`` with ``AWS-RunShellScript``."""
        return {"commands": self.render()}

    def to_json(self) -> str:
        return json.dumps(self.to_parameters(), indent=2)

    def describe(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "version": self.version,
            "comment": self.comment,
            "steps": [
                {
                    "name": step.name,
                    "kind": step.kind.value,
                    "fail_fast": step.fail_fast,
                    "description": step.description,
                }
                for step in self.steps
            ],
        }


def steps_reached(output: Optional[str]) -> List[str]:
    """Names of the steps whose start marker appears in the command output, in order."""
    reached = []
    for line in (output or "").splitlines():
        match = _STEP_LINE.match(line.strip())
        if match:
            reached.append(match.group(3))
    return reached


def failed_step(output: Optional[str]) -> Optional[str]:
    """Name of the step that aborted the script, if any."""
    for line in (output or "").splitlines():
        match = _FAIL_LINE.match(line.strip().split(":", 1)[0])
        if match:
            return match.group(1)
    return None
