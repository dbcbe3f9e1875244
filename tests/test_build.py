"""Tests for the build orchestrator and its CodeBuild client"""

import time

import boto3
import pytest
from botocore.stub import Stubber

from lifecycle import (
    BuildOrchestrator,
    CodeBuildClient,
    LifecycleRequest,
    StartFailure,
    Success,
    TerminalJobFailure,
    TimeoutFailure,
)
from lifecycle.build import (
    BUILD_POLL_INTERVAL,
    BUILD_TOTAL_TIMEOUT,
    BuildSource,
    classify_build_status,
)
from lifecycle.requests import JobStatus
from tests.fakes import FakeBuildClient


class TestClassifyBuildStatus:
    @pytest.mark.parametrize("status", ["FAILED", "FAULT", "STOPPED", "TIMED_OUT", "timed-out"])
    def test_terminal_failures(self, status):
        assert classify_build_status(status) is JobStatus.FAILED_TERMINAL

    def test_succeeded(self):
        assert classify_build_status("SUCCEEDED") is JobStatus.SUCCEEDED

    def test_queued_is_pending(self):
        assert classify_build_status("queued") is JobStatus.PENDING

    @pytest.mark.parametrize("status", ["IN_PROGRESS", "running", "SOMETHING_NEW"])
    def test_everything_else_is_in_progress(self, status):
        assert classify_build_status(status) is JobStatus.IN_PROGRESS


class TestOnEvent:
    def test_create_starts_exactly_one_build(self, build_client, build_properties):
        orchestrator = BuildOrchestrator(build_client)

        began = time.monotonic()
        job_id = orchestrator.on_event(LifecycleRequest.create(build_properties))
        duration = time.monotonic() - began

        assert duration < 1
        assert job_id == "api-initial-build:build-1"
        assert build_client.started == [BuildSource.from_properties(build_properties)]
        assert build_client.queries == []

    def test_missing_properties_fail_to_start(self, build_client):
        with pytest.raises(StartFailure, match="source_repo"):
            BuildOrchestrator(build_client).on_event(
                LifecycleRequest.create({"project_name": "p", "source_owner": "o"})
            )
        assert build_client.started == []

    @pytest.mark.parametrize("factory", [LifecycleRequest.update, LifecycleRequest.delete])
    def test_update_and_delete_echo_physical_id(self, build_client, build_properties, factory):
        orchestrator = BuildOrchestrator(build_client)

        assert orchestrator.on_event(factory("proj:abc", build_properties)) == "proj:abc"
        assert build_client.started == []

    def test_delete_without_physical_id(self, build_client):
        assert BuildOrchestrator(build_client).on_event(LifecycleRequest.delete(None)) == "initial-build"


class TestRun:
    def _run(self, client, properties, poll_options):
        provider = BuildOrchestrator(client).provider(**poll_options)
        return provider.run(LifecycleRequest.create(properties))

    def test_default_poll_parameters(self, build_client):
        provider = BuildOrchestrator(build_client).provider()

        assert provider.interval == BUILD_POLL_INTERVAL == 30
        assert provider.total_timeout == BUILD_TOTAL_TIMEOUT == 3600

    def test_waits_through_queued_and_running(self, build_properties, poll_options, clock):
        client = FakeBuildClient(["QUEUED", "IN_PROGRESS", "running", "SUCCEEDED"])

        outcome = self._run(client, build_properties, poll_options)

        assert outcome == Success("api-initial-build:build-1", {"build_status": "SUCCEEDED"})
        assert len(client.queries) == 4
        assert clock.waits == [30, 30, 30, 30]

    @pytest.mark.parametrize("status", ["FAILED", "FAULT", "STOPPED", "TIMED_OUT", "failed", "timed-out"])
    def test_terminal_status_carries_exact_string(self, build_properties, poll_options, status):
        client = FakeBuildClient(["IN_PROGRESS", status])

        outcome = self._run(client, build_properties, poll_options)

        assert isinstance(outcome.error, TerminalJobFailure)
        assert outcome.error.status == status
        assert status in outcome.reason
        assert len(client.queries) == 2

    def test_missing_build_is_terminal(self, build_properties, poll_options):
        client = FakeBuildClient(missing=True)

        outcome = self._run(client, build_properties, poll_options)

        assert isinstance(outcome.error, TerminalJobFailure)
        assert "disappeared" in outcome.reason
        assert outcome.error.status is None

    def test_slow_build_times_out(self, build_client, build_properties, poll_options):
        outcome = self._run(build_client, build_properties, poll_options)

        assert isinstance(outcome.error, TimeoutFailure)
        assert len(build_client.queries) == BUILD_TOTAL_TIMEOUT / BUILD_POLL_INTERVAL

    def test_delete_completes_without_queries(self, build_client, poll_options, clock):
        provider = BuildOrchestrator(build_client).provider(**poll_options)

        outcome = provider.run(LifecycleRequest.delete("proj:abc"))

        assert outcome == Success("proj:abc")
        assert build_client.queries == []
        assert clock.waits == []

    def test_update_completes_without_waiting(self, build_client, build_properties, poll_options, clock):
        provider = BuildOrchestrator(build_client).provider(**poll_options)

        outcome = provider.run(LifecycleRequest.update("proj:abc", build_properties))

        assert outcome == Success("proj:abc")
        assert build_client.started == [] and build_client.queries == []
        assert clock.waits == []


@pytest.fixture
def stubbed_codebuild():
    client = boto3.client(
        "codebuild",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


class TestCodeBuildClient:
    def test_start_build_overrides_source_and_repository(self, stubbed_codebuild, build_properties):
        client, stubber = stubbed_codebuild
        stubber.add_response(
            "start_build",
            {"build": {"id": "api-initial-build:1234"}},
            {
                "projectName": "api-initial-build",
                "sourceTypeOverride": "GITHUB",
                "sourceLocationOverride": "https://github.com/acme/api.git",
                "sourceVersion": "refs/heads/main",
                "environmentVariablesOverride": [
                    {"name": "IMAGE_REPO_NAME", "value": "acme-api", "type": "PLAINTEXT"}
                ],
            },
        )

        job_id = CodeBuildClient(client=client).start_build(BuildSource.from_properties(build_properties))

        assert job_id == "api-initial-build:1234"

    def test_start_build_error_is_start_failure(self, stubbed_codebuild, build_properties):
        client, stubber = stubbed_codebuild
        stubber.add_client_error("start_build", service_error_code="AccessDeniedException")

        with pytest.raises(StartFailure, match="api-initial-build"):
            CodeBuildClient(client=client).start_build(BuildSource.from_properties(build_properties))

    def test_get_build_status(self, stubbed_codebuild):
        client, stubber = stubbed_codebuild
        stubber.add_response(
            "batch_get_builds",
            {"builds": [{"id": "proj:1", "buildStatus": "TIMED_OUT"}]},
            {"ids": ["proj:1"]},
        )

        report = CodeBuildClient(client=client).get_build_status("proj:1")

        assert report.status == "TIMED_OUT"
        assert report.is_terminal_failure

    def test_unknown_build_is_none(self, stubbed_codebuild):
        client, stubber = stubbed_codebuild
        stubber.add_response(
            "batch_get_builds",
            {"builds": [], "buildsNotFound": ["proj:gone"]},
            {"ids": ["proj:gone"]},
        )

        assert CodeBuildClient(client=client).get_build_status("proj:gone") is None
