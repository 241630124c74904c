"""Error taxonomy for pipeline stages.

Every error here is fatal to the stage that raises it. Nothing in the
pipeline catches and retries them; the runner records the classification and
stops.
"""
from typing import List, Optional


class PipelineError(Exception):
    """Base class for stage failures."""

    classification = "PipelineError"


class ConfigurationError(PipelineError):
    """Stage wiring is invalid (missing input artifact, duplicate output)."""

    classification = "ConfigurationError"


class FetchError(PipelineError):
    """A source checkout failed (authentication, network, missing ref)."""

    classification = "FetchError"

    def __init__(self, message: str, repository: Optional[str] = None):
        super().__init__(message)
        self.repository = repository


class BuildError(PipelineError):
    """A project's build tool exited non-zero, or packaging failed."""

    classification = "BuildError"

    def __init__(self, message: str, project: Optional[str] = None, returncode: Optional[int] = None):
        super().__init__(message)
        self.project = project
        self.returncode = returncode


class StorageError(PipelineError):
    """An Artifact Store operation failed."""

    classification = "StorageError"


class RemoteCommandError(PipelineError):
    """Base class for remote command outcomes other than success."""

    classification = "RemoteCommandError"

    def __init__(self, message: str, command_id: Optional[str] = None,
                 steps_reached: Optional[List[str]] = None):
        super().__init__(message)
        self.command_id = command_id
        self.steps_reached = steps_reached or []

    @property
    def last_step(self) -> Optional[str]:
        return self.steps_reached[-1] if self.steps_reached else None


class CommandFailed(RemoteCommandError):
    """The remote script returned non-zero. Target state is not rolled back."""

    classification = "CommandFailed"


class CommandTimeout(RemoteCommandError):
    """The poll budget ran out before a terminal status. Target state is unknown."""

    classification = "CommandTimeout"


class CommandNotSent(CommandFailed):
    """SSM rejected the command, so nothing ran on the fleet.

    Classified as ``CommandFailed`` for the run report; the target is untouched.
    """
