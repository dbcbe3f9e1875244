"""
AWS initial image build: CodeBuild project + a blocking "seed the registry" job.

This component creates a CodeBuild project that builds a GitHub repository's
Dockerfile and pushes ``:latest`` to an ECR repository, then runs that
project exactly once through the ``BuildJob`` dynamic resource. ``BuildJob``
does not finish creating until the build has succeeded, so anything that
depends on it (e.g. a container service that pulls ``:latest``) is never
created against an empty registry.

Later rebuilds belong to the continuous delivery pipeline: updating or
deleting the ``BuildJob`` does not start or stop any build.

The GitHub token is read from Secrets Manager by name and the CodeBuild
service role is passed in as an ARN; both are provided by the platform.
"""

from typing import Any, Callable, Optional

import pulumi
import pulumi_aws as aws
from pulumi.dynamic import CreateResult, Resource, ResourceProvider, UpdateResult

from components._helpers import branch_ref, github_source_location, initial_buildspec
from components._lifecycle import run_or_raise
from lifecycle import BuildOrchestrator, CodeBuildClient, LifecycleRequest
from lifecycle.build import BUILD_TOTAL_TIMEOUT, BuildClient

ID: str = "lifecycle:aws:InitialBuild"

# Pulumi's own create timeout must outlast the poll budget.
CREATE_TIMEOUT: str = f"{int(BUILD_TOTAL_TIMEOUT // 60) + 10}m"

BUILD_IMAGE: str = "aws/codebuild/standard:7.0"


class BuildJobProvider(ResourceProvider):
    """
    Dynamic provider running ``BuildOrchestrator`` through a lifecycle Provider.

    ``client_factory`` and ``poll_options`` exist for tests; in a deployment
    both stay ``None`` so the provider serializes without live clients.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[dict], BuildClient]] = None,
        poll_options: Optional[dict[str, Any]] = None,
    ):
        super().__init__()
        self.client_factory = client_factory
        self.poll_options = poll_options or {}

    def _orchestrator(self, props: dict) -> BuildOrchestrator:
        if self.client_factory is not None:
            return BuildOrchestrator(self.client_factory(props))
        return BuildOrchestrator(CodeBuildClient(region_name=props.get("region")))

    def create(self, props: dict) -> CreateResult:
        orchestrator = self._orchestrator(props)
        success = run_or_raise(
            orchestrator.provider(**self.poll_options), LifecycleRequest.create(props)
        )
        outs = {
            **props,
            "build_id": success.physical_id,
            "build_status": success.data.get("build_status"),
        }
        return CreateResult(id_=success.physical_id, outs=outs)

    def update(self, _id: str, _olds: dict, _news: dict) -> UpdateResult:
        orchestrator = self._orchestrator(_news)
        success = run_or_raise(
            orchestrator.provider(**self.poll_options), LifecycleRequest.update(_id, _news)
        )
        outs = {
            **_news,
            "build_id": success.physical_id,
            "build_status": _olds.get("build_status"),
        }
        return UpdateResult(outs=outs)

    def delete(self, _id: str, _props: dict) -> None:
        orchestrator = self._orchestrator(_props)
        run_or_raise(
            orchestrator.provider(**self.poll_options), LifecycleRequest.delete(_id, _props)
        )


class BuildJob(Resource):
    """One build of ``project_name``; creation blocks until it succeeds."""

    build_id: pulumi.Output[str]
    build_status: pulumi.Output[str]

    def __init__(
        self,
        name: str,
        project_name: pulumi.Input[str],
        source_owner: str,
        source_repo: str,
        source_branch: str,
        image_repository_name: pulumi.Input[str],
        region: str,
        opts: Optional[pulumi.ResourceOptions] = None,
    ):
        props = {
            "project_name": project_name,
            "source_owner": source_owner,
            "source_repo": source_repo,
            "source_branch": source_branch,
            "image_repository_name": image_repository_name,
            "region": region,
            "build_id": None,
            "build_status": None,
        }
        super().__init__(BuildJobProvider(), name, props, opts)


class InitialBuild(pulumi.ComponentResource):
    """
    CodeBuild project (privileged docker build) + one blocking BuildJob.

    Resources: SourceCredential (GitHub), Project, BuildJob.
    """

    def __init__(
        self,
        name: str,
        image_repository_name: pulumi.Input[str],
        service_role_arn: pulumi.Input[str],
        github_owner: str,
        github_repo: str,
        github_branch: str,
        github_token_secret_name: str,
        region: str,
    ):
        """
        Create the CodeBuild project and run the initial build.

        Args:
            name: Pulumi resource name prefix; also the CodeBuild project name.
            image_repository_name: ECR repository the build pushes to.
            service_role_arn: IAM role CodeBuild assumes (ECR push, logs).
            github_owner: GitHub user or organization of the source repo.
            github_repo: Source repository name.
            github_branch: Branch to build.
            github_token_secret_name: Secrets Manager secret holding a GitHub
                personal access token.
            region: AWS region of the project and the registry.

        Outputs (set on self, registered for the component):
            project_name: CodeBuild project name (reusable by pipelines).
            build_id: Id of the initial build.
        """
        super().__init__(ID, name)

        child_opts = pulumi.ResourceOptions(parent=self)

        # CodeBuild stores GitHub credentials per account and region.
        token = aws.secretsmanager.get_secret_version_output(
            secret_id=github_token_secret_name,
        )
        credential = aws.codebuild.SourceCredential(
            resource_name=f"{name}-github",
            auth_type="PERSONAL_ACCESS_TOKEN",
            server_type="GITHUB",
            token=pulumi.Output.secret(token.secret_string),
            opts=child_opts,
        )

        caller = aws.get_caller_identity_output()
        environment = aws.codebuild.ProjectEnvironmentArgs(
            compute_type="BUILD_GENERAL1_SMALL",
            image=BUILD_IMAGE,
            type="LINUX_CONTAINER",
            # docker build needs the privileged daemon.
            privileged_mode=True,
            environment_variables=[
                aws.codebuild.ProjectEnvironmentEnvironmentVariableArgs(
                    name="AWS_ACCOUNT_ID", value=caller.account_id
                ),
                aws.codebuild.ProjectEnvironmentEnvironmentVariableArgs(
                    name="AWS_DEFAULT_REGION", value=region
                ),
                aws.codebuild.ProjectEnvironmentEnvironmentVariableArgs(
                    name="IMAGE_REPO_NAME", value=image_repository_name
                ),
            ],
        )
        project = aws.codebuild.Project(
            resource_name=f"{name}-project",
            name=name,
            service_role=service_role_arn,
            artifacts=aws.codebuild.ProjectArtifactsArgs(type="NO_ARTIFACTS"),
            environment=environment,
            source=aws.codebuild.ProjectSourceArgs(
                type="GITHUB",
                location=github_source_location(github_owner, github_repo),
                buildspec=initial_buildspec(),
            ),
            source_version=branch_ref(github_branch),
            opts=pulumi.ResourceOptions(parent=self, depends_on=[credential]),
        )

        job_opts = pulumi.ResourceOptions(
            parent=self,
            depends_on=[project],
            custom_timeouts=pulumi.CustomTimeouts(create=CREATE_TIMEOUT),
        )
        self.build = BuildJob(
            name=f"{name}-build",
            project_name=project.name,
            source_owner=github_owner,
            source_repo=github_repo,
            source_branch=github_branch,
            image_repository_name=image_repository_name,
            region=region,
            opts=job_opts,
        )

        self.project_name: pulumi.Output[str] = project.name
        self.build_id: pulumi.Output[str] = self.build.build_id
        self.register_outputs(
            {
                "project_name": self.project_name,
                "build_id": self.build_id,
            }
        )
