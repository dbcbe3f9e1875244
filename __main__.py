"""
Initial build and front-end firewall - Pulumi entrypoint.

Wires two ComponentResources using Pulumi config:

- **InitialBuild**: CodeBuild project that builds the API image from GitHub
  and pushes it to ECR, plus one build that must succeed before the stack
  update completes. Anything that pulls ``:latest`` can depend on it.
- **AmplifyWaf**: IP allowlist web ACL attached to the Amplify front end.
  Only created when ``allowed_cidrs`` is configured.

Stack exports: initial_build_project, initial_build_id, and, with a firewall,
amplify_web_acl_arn.
"""

import pulumi

from components import AmplifyWaf, InitialBuild
from config import StackConfig


def _component_name(project_name: str, environment: str, prefix: str) -> str:
    return f"{prefix}-{project_name}-{environment}"


def main():
    """
    Build the InitialBuild and optional AmplifyWaf components and export outputs.
    """
    config = StackConfig.from_pulumi_config(pulumi.Config())

    def name(prefix: str) -> str:
        return _component_name(config.project_name, config.environment, prefix)

    initial_build = InitialBuild(
        name=name("initial-build"),
        image_repository_name=config.image_repository_name,
        service_role_arn=config.codebuild_service_role_arn,
        github_owner=config.github_owner,
        github_repo=config.github_repo,
        github_branch=config.github_branch,
        github_token_secret_name=config.github_token_secret_name,
        region=config.aws_region,
    )
    outputs = [
        ("initial_build_project", initial_build.project_name),
        ("initial_build_id", initial_build.build_id),
    ]

    if config.allowed_cidrs:
        waf = AmplifyWaf(
            name=name("amplify-waf"),
            app_id=config.amplify_app_id,
            allowed_cidrs=config.allowed_cidrs,
            region=config.aws_region,
        )
        outputs.append(("amplify_web_acl_arn", waf.web_acl_arn))

    for output_name, value in outputs:
        pulumi.export(output_name, value)


if __name__ == "__main__":
    main()
