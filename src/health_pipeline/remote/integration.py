"""Test Executor: run the integration suite against the deployed stack."""
from health_pipeline.remote.commands import CommandDocument, process_check_step, shell_step
from health_pipeline.remote.executor import RemoteExecutor

DOCUMENT_NAME = "integration-tests"
DOCUMENT_VERSION = "1"

TEST_PROJECT = "HealthIntegrationTests"


class IntegrationTestExecutor(RemoteExecutor):
    """Re-check the containers, then run one Gradle test suite.

    The stage passes only when the remote script exits 0. Failed tests are
    not retried.
    """

    stage_name = "IntegrationTests"

    def document(self) -> CommandDocument:
        s = self.settings
        return CommandDocument(
            name=DOCUMENT_NAME,
            version=DOCUMENT_VERSION,
            comment="Run Dev Integration Tests",
            steps=(
                process_check_step("verify-processes", s.expected_processes),
                shell_step(
                    "run-test-suite",
                    f"cd {self.workspace_path}/{TEST_PROJECT}",
                    "chmod +x gradlew",
                    f"./gradlew test --tests \"{s.integration_test_suite}\"",
                ),
            ),
        )
