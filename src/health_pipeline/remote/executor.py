"""Shared plumbing for executors that run a command document on the dev fleet."""
import logging
from typing import Optional

from health_pipeline.config.settings import Settings
from health_pipeline.remote.commands import CommandDocument
from health_pipeline.remote.dispatcher import (
    CommandResult,
    RemoteCommandDispatcher,
    TargetSelector,
)

logger = logging.getLogger(__name__)


class RemoteExecutor:
    """Build a command document and run it through the dispatcher."""

    stage_name = ""

    def __init__(self, settings: Settings, dispatcher: Optional[RemoteCommandDispatcher] = None):
        self.settings = settings
        self.dispatcher = dispatcher

    @property
    def target(self) -> TargetSelector:
        return TargetSelector(self.settings.target_tag_key, self.settings.target_tag_value)

    @property
    def workspace_path(self) -> str:
        return f"{self.settings.remote_home}/workspace"

    def document(self) -> CommandDocument:
        raise NotImplementedError

    def run(self) -> CommandResult:
        document = self.document()
        logger.info(f"{self.stage_name}: {len(document.steps)} steps on {self.target}")
        if self.dispatcher is None:
            self.dispatcher = RemoteCommandDispatcher.from_settings(self.settings)
        return self.dispatcher.run(self.target, document, self.settings.command_timeout_seconds)
