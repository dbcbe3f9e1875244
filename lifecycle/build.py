"""
Build orchestrator: seed an image registry with a first container image.

Create starts exactly one external build and returns its job id as the
PhysicalId; IsComplete polls that job until it succeeds or reaches a terminal
failure. Update and Delete are no-ops: later rebuilds are driven by a
separate continuous pipeline.

``CodeBuildClient`` is the boto3-backed implementation of ``BuildClient``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from lifecycle.errors import StartFailure, TerminalJobFailure
from lifecycle.provider import Provider
from lifecycle.requests import Completion, JobStatus, LifecycleRequest, RequestKind

logger = logging.getLogger(__name__)

BUILD_POLL_INTERVAL: float = 30.0
BUILD_TOTAL_TIMEOUT: float = 60 * 60.0

# Returned on Update/Delete when the pipeline has no PhysicalId to echo.
DEFAULT_PHYSICAL_ID = "initial-build"

TERMINAL_FAILURE_STATUSES = frozenset({"FAILED", "FAULT", "STOPPED", "TIMED_OUT"})
PENDING_STATUSES = frozenset({"QUEUED", "SUBMITTED"})
SUCCEEDED_STATUS = "SUCCEEDED"


def classify_build_status(status: str) -> JobStatus:
    """Map an external build status string onto ``JobStatus``.

    Unknown statuses count as in progress, so the poller keeps waiting.
    """
    normalized = status.strip().upper().replace("-", "_")
    if normalized in TERMINAL_FAILURE_STATUSES:
        return JobStatus.FAILED_TERMINAL
    if normalized == SUCCEEDED_STATUS:
        return JobStatus.SUCCEEDED
    if normalized in PENDING_STATUSES:
        return JobStatus.PENDING
    return JobStatus.IN_PROGRESS


@dataclass(frozen=True)
class BuildSource:
    """Where the build pulls source from and which registry it pushes to."""

    project_name: str
    source_owner: str
    source_repo: str
    source_branch: str
    image_repository_name: str

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "BuildSource":
        missing = [
            key
            for key in (
                "project_name",
                "source_owner",
                "source_repo",
                "source_branch",
                "image_repository_name",
            )
            if not properties.get(key)
        ]
        if missing:
            raise StartFailure(f"Missing build properties: {', '.join(missing)}")
        return cls(
            project_name=str(properties["project_name"]),
            source_owner=str(properties["source_owner"]),
            source_repo=str(properties["source_repo"]),
            source_branch=str(properties["source_branch"]),
            image_repository_name=str(properties["image_repository_name"]),
        )


@dataclass(frozen=True)
class BuildStatusReport:
    job_id: str
    status: str

    @property
    def job_status(self) -> JobStatus:
        return classify_build_status(self.status)

    @property
    def is_terminal_failure(self) -> bool:
        return self.job_status is JobStatus.FAILED_TERMINAL


class BuildClient(Protocol):
    """External build service."""

    def start_build(self, source: BuildSource) -> str:
        """Start a build and return its job id."""
        ...

    def get_build_status(self, job_id: str) -> Optional[BuildStatusReport]:
        """Return the job's status, or ``None`` if the job is unknown."""
        ...


class BuildOrchestrator:
    def __init__(self, client: BuildClient):
        self.client = client

    def on_event(self, request: LifecycleRequest) -> str:
        if request.kind is not RequestKind.CREATE:
            return request.physical_id or DEFAULT_PHYSICAL_ID

        source = BuildSource.from_properties(request.properties)
        job_id = self.client.start_build(source)
        logger.info(
            "Started build %s for %s/%s@%s -> %s",
            job_id,
            source.source_owner,
            source.source_repo,
            source.source_branch,
            source.image_repository_name,
        )
        return job_id

    def is_complete(self, request: LifecycleRequest, physical_id: str) -> Completion:
        if request.kind is not RequestKind.CREATE:
            return Completion(done=True)

        report = self.client.get_build_status(physical_id)
        if report is None:
            raise TerminalJobFailure(f"Build {physical_id} disappeared")
        if report.is_terminal_failure:
            raise TerminalJobFailure(
                f"Initial build failed: {report.status}", status=report.status
            )
        if report.job_status is JobStatus.SUCCEEDED:
            return Completion(done=True, data={"build_status": report.status})
        return Completion(done=False)

    def provider(self, **overrides: Any) -> Provider:
        options: dict[str, Any] = {
            "interval": BUILD_POLL_INTERVAL,
            "total_timeout": BUILD_TOTAL_TIMEOUT,
            "name": "initial-build",
            "poll_kinds": {RequestKind.CREATE},
        }
        options.update(overrides)
        return Provider(self.on_event, self.is_complete, **options)


class CodeBuildClient:
    """``BuildClient`` backed by AWS CodeBuild."""

    def __init__(self, region_name: str | None = None, client: Any = None):
        self._client = client or boto3.client("codebuild", region_name=region_name)

    def start_build(self, source: BuildSource) -> str:
        try:
            response = self._client.start_build(
                projectName=source.project_name,
                sourceTypeOverride="GITHUB",
                sourceLocationOverride=(
                    f"https://github.com/{source.source_owner}/{source.source_repo}.git"
                ),
                sourceVersion=f"refs/heads/{source.source_branch}",
                environmentVariablesOverride=[
                    {
                        "name": "IMAGE_REPO_NAME",
                        "value": source.image_repository_name,
                        "type": "PLAINTEXT",
                    }
                ],
            )
        except (ClientError, BotoCoreError) as exc:
            raise StartFailure(
                f"Failed to start build for project {source.project_name}: {exc}"
            ) from exc
        return response["build"]["id"]

    def get_build_status(self, job_id: str) -> Optional[BuildStatusReport]:
        response = self._client.batch_get_builds(ids=[job_id])
        builds = response.get("builds", [])
        if not builds:
            return None
        return BuildStatusReport(job_id=builds[0]["id"], status=builds[0]["buildStatus"])
