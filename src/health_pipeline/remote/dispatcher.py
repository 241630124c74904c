"""Remote Command Dispatcher backed by AWS Systems Manager Run Command.

``dispatch`` sends a command document to every instance carrying a fleet
tag and returns at once. ``poll`` reads the aggregate status of the
invocations. ``wait`` is the polling policy: a fixed number of attempts
with a fixed delay, stopping on the first terminal status.

    Pending -> InProgress -> {Success, Failed, Timeout}
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from health_pipeline.aws.clients import get_ssm_client
from health_pipeline.config.settings import Settings
from health_pipeline.pipeline.errors import CommandFailed, CommandNotSent, CommandTimeout, StorageError
from health_pipeline.remote.commands import CommandDocument, failed_step, steps_reached
from health_pipeline.storage.artifact_store import ArtifactStore

logger = logging.getLogger(__name__)

DOCUMENT_NAME = "AWS-RunShellScript"

# Where SSM writes AWS-RunShellScript stdout when OutputS3BucketName is set
STDOUT_KEY = "{prefix}/{command_id}/{instance_id}/awsrunShellScript/0.awsrunShellScript/stdout"


class CommandStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCESS = "Success"
    FAILED = "Failed"
    TIMEOUT = "Timeout"

    @property
    def terminal(self) -> bool:
        return self in (CommandStatus.SUCCESS, CommandStatus.FAILED, CommandStatus.TIMEOUT)


# SSM invocation statuses -> dispatcher statuses. Cancelled and TimedOut are
# final on the SSM side, so they end polling as failures.
SSM_STATUS_MAP = {
    "Pending": CommandStatus.PENDING,
    "InProgress": CommandStatus.IN_PROGRESS,
    "Delayed": CommandStatus.IN_PROGRESS,
    "Cancelling": CommandStatus.IN_PROGRESS,
    "Success": CommandStatus.SUCCESS,
    "Failed": CommandStatus.FAILED,
    "Cancelled": CommandStatus.FAILED,
    "TimedOut": CommandStatus.FAILED,
}


@dataclass(frozen=True)
class TargetSelector:
    """Fleet tag addressing every instance with ``tag:<key> = <value>``."""
    key: str
    value: str

    def to_targets(self) -> List[Dict[str, Any]]:
        return [{"Key": f"tag:{self.key}", "Values": [self.value]}]

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


@dataclass(frozen=True)
class RemoteCommandRequest:
    target: TargetSelector
    document: CommandDocument
    timeout_seconds: int


@dataclass
class CommandHandle:
    command_id: str
    request: RemoteCommandRequest
    sent_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    status: CommandStatus = CommandStatus.PENDING
    outputs: Dict[str, str] = field(default_factory=dict)

    @property
    def output(self) -> str:
        return "\n".join(self.outputs.values())


@dataclass
class CommandResult:
    command_id: str
    status: CommandStatus
    attempts: int
    outputs: Dict[str, str] = field(default_factory=dict)

    @property
    def steps_reached(self) -> List[str]:
        return steps_reached("\n".join(self.outputs.values()))


def aggregate_status(invocations: List[Dict[str, Any]]) -> CommandStatus:
    """Fold per-instance statuses: any failure fails, all successes succeed."""
    if not invocations:
        return CommandStatus.PENDING
    statuses = []
    for invocation in invocations:
        raw = invocation.get("Status", "Pending")
        status = SSM_STATUS_MAP.get(raw)
        if status is None:
            logger.warning(f"Unknown SSM status {raw!r}, treating as in progress")
            status = CommandStatus.IN_PROGRESS
        statuses.append(status)
    if CommandStatus.FAILED in statuses:
        return CommandStatus.FAILED
    if all(s == CommandStatus.SUCCESS for s in statuses):
        return CommandStatus.SUCCESS
    if all(s == CommandStatus.PENDING for s in statuses):
        return CommandStatus.PENDING
    return CommandStatus.IN_PROGRESS


class RemoteCommandDispatcher:
    """Send command documents to a tagged fleet and poll them to completion.

    With an ``output_store`` the fleet also writes each instance's complete
    stdout to the deploy bucket, which is read back when a command fails.
    """

    def __init__(self, ssm_client: Optional[Any] = None,
                 poll_interval_seconds: float = 30,
                 max_attempts: int = 20,
                 sleep: Callable[[float], None] = time.sleep,
                 output_store: Optional[ArtifactStore] = None,
                 output_prefix: str = "ssm-output"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.ssm_client = ssm_client or get_ssm_client()
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.output_store = output_store
        self.output_prefix = output_prefix

    @classmethod
    def from_settings(cls, settings: Settings, ssm_client: Optional[Any] = None,
                      sleep: Callable[[float], None] = time.sleep,
                      output_store: Optional[ArtifactStore] = None) -> "RemoteCommandDispatcher":
        settings.check_timeouts()
        return cls(
            ssm_client=ssm_client,
            poll_interval_seconds=settings.poll_interval_seconds,
            max_attempts=settings.poll_attempts,
            sleep=sleep,
            output_store=output_store,
            output_prefix=settings.command_output_prefix,
        )

    def dispatch(self, target: TargetSelector, document: CommandDocument,
                 timeout_seconds: int) -> CommandHandle:
        """Send the command; does not wait for it.

        Raises:
            CommandNotSent: SSM refused the request and nothing ran
        """
        request = RemoteCommandRequest(target, document, timeout_seconds)
        params = dict(
            Targets=target.to_targets(),
            DocumentName=DOCUMENT_NAME,
            Comment=document.comment[:100],
            Parameters=document.to_parameters(),
            TimeoutSeconds=timeout_seconds,
        )
        if self.output_store is not None:
            params["OutputS3BucketName"] = self.output_store.bucket_name
            params["OutputS3KeyPrefix"] = self.output_prefix

        logger.info(f"Sending SSM command '{document.name}' v{document.version} to {target}")
        try:
            response = self.ssm_client.send_command(**params)
        except ClientError as e:
            logger.error(f"❌ Could not send SSM command '{document.name}': {e}")
            raise CommandNotSent(f"Could not send command {document.name}: {e}") from e

        command_id = response["Command"]["CommandId"]
        logger.info(f"SSM command sent: {command_id}")
        return CommandHandle(command_id=command_id, request=request)

    def poll(self, handle: CommandHandle) -> CommandStatus:
        """Read the current aggregate status of the command's invocations.

        A failed read keeps the last known status, so the attempt counts as
        non-terminal.
        """
        try:
            response = self.ssm_client.list_command_invocations(
                CommandId=handle.command_id,
                Details=True,
            )
        except ClientError as e:
            # The invocation list can lag behind send_command
            if e.response.get("Error", {}).get("Code") == "InvalidCommandId":
                return CommandStatus.PENDING
            logger.warning(f"Could not read status of {handle.command_id}: {e}")
            return handle.status
        except BotoCoreError as e:
            logger.warning(f"Could not read status of {handle.command_id}: {e}")
            return handle.status

        invocations = response.get("CommandInvocations", [])
        for invocation in invocations:
            plugins = invocation.get("CommandPlugins", [])
            handle.outputs[invocation.get("InstanceId", "unknown")] = "\n".join(
                plugin.get("Output", "") for plugin in plugins
            )
        handle.status = aggregate_status(invocations)
        return handle.status

    def fetch_full_output(self, handle: CommandHandle) -> None:
        """Replace each instance's truncated output with its complete stdout.

        ``list_command_invocations`` returns only the first 2500 characters.
        The output bucket holds the whole log; ``get_command_invocation``
        returns up to 24000 characters when no bucket is configured.
        """
        for instance_id in list(handle.outputs):
            full = self._stored_output(handle, instance_id)
            if full is None:
                full = self._invocation_output(handle, instance_id)
            if full:
                handle.outputs[instance_id] = full

    def _stored_output(self, handle: CommandHandle, instance_id: str) -> Optional[str]:
        if self.output_store is None:
            return None
        key = STDOUT_KEY.format(prefix=self.output_prefix, command_id=handle.command_id,
                                instance_id=instance_id)
        try:
            return self.output_store.get_object(key).decode("utf-8", errors="replace")
        except StorageError as e:
            logger.warning(f"No stored output for {instance_id}: {e}")
            return None

    def _invocation_output(self, handle: CommandHandle, instance_id: str) -> Optional[str]:
        try:
            response = self.ssm_client.get_command_invocation(
                CommandId=handle.command_id,
                InstanceId=instance_id,
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not read output of {handle.command_id} on {instance_id}: {e}")
            return None
        return response.get("StandardOutputContent")

    def wait(self, handle: CommandHandle) -> CommandResult:
        """Poll until a terminal status or until every attempt is used.

        Raises:
            CommandFailed: The remote script failed on any instance
            CommandTimeout: No terminal status within the attempt budget
        """
        name = handle.request.document.name
        for attempt in range(1, self.max_attempts + 1):
            status = self.poll(handle)
            logger.info(f"Current SSM status: {status.value} (attempt {attempt}/{self.max_attempts})")

            if status == CommandStatus.SUCCESS:
                logger.info(f"✅ {name} completed")
                return CommandResult(handle.command_id, status, attempt, dict(handle.outputs))

            if status == CommandStatus.FAILED:
                self.fetch_full_output(handle)
                reached = steps_reached(handle.output)
                culprit = failed_step(handle.output) or (reached[-1] if reached else None)
                where = f" at step {culprit}" if culprit else ""
                logger.error(f"❌ {name} failed{where}")
                raise CommandFailed(
                    f"Command {handle.command_id} ({name}) failed{where}",
                    command_id=handle.command_id,
                    steps_reached=reached,
                )

            self.sleep(self.poll_interval_seconds)

        handle.status = CommandStatus.TIMEOUT
        budget = self.max_attempts * self.poll_interval_seconds
        logger.error(f"⚠️ {name} timed out waiting for SSM command to finish ({budget:.0f}s)")
        raise CommandTimeout(
            f"Command {handle.command_id} ({name}) not finished after "
            f"{self.max_attempts} polls ({budget:.0f}s)",
            command_id=handle.command_id,
            steps_reached=steps_reached(handle.output),
        )

    def run(self, target: TargetSelector, document: CommandDocument,
            timeout_seconds: int) -> CommandResult:
        handle = self.dispatch(target, document, timeout_seconds)
        return self.wait(handle)
