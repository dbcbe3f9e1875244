"""
Stack configuration loaded from pulumi.Config().

Provides a typed, immutable view of stack settings. All settings are read from
Pulumi config (e.g. Pulumi.<stack>.yaml or pulumi config set). Every key is
required except allowed_cidrs. Used by __main__.main() to name resources,
point the initial build at its source and registry, and decide whether the
front end gets an IP allowlist.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

import pulumi


def _require_str(config: pulumi.Config, key: str) -> str:
    return config.require(key)


def _optional_str_list(config: pulumi.Config, key: str) -> list[str]:
    raw = config.get_object(key)
    if raw is None:
        return []
    if isinstance(raw, str):
        return [raw]
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ValueError(f"Config key {key!r} must be a list of strings")
    return raw


# (key, parser); parser receives (config, key) and returns value.
_CONFIG_SPEC: list[tuple[str, Callable[[pulumi.Config, str], Any]]] = [
    ("project_name", _require_str),
    ("environment", _require_str),
    ("aws_region", _require_str),
    ("github_owner", _require_str),
    ("github_repo", _require_str),
    ("github_branch", _require_str),
    ("github_token_secret_name", _require_str),
    ("image_repository_name", _require_str),
    ("codebuild_service_role_arn", _require_str),
    ("amplify_app_id", _require_str),
    ("allowed_cidrs", _optional_str_list),
]


@dataclass(frozen=True)
class StackConfig:
    """
    Stack configuration from Pulumi config.

    Attributes:
        project_name: Project name used in resource naming (required).
        environment: Environment label used in resource naming (required).
        aws_region: Region of the build project, registry and Amplify app (required).
        github_owner: Owner of the API source repository (required).
        github_repo: API source repository name (required).
        github_branch: Branch the initial image is built from (required).
        github_token_secret_name: Secrets Manager secret with a GitHub token (required).
        image_repository_name: ECR repository the initial image is pushed to (required).
        codebuild_service_role_arn: IAM role assumed by CodeBuild (required).
        amplify_app_id: Amplify app serving the front end (required).
        allowed_cidrs: IPv4 ranges allowed to reach the front end; no
            firewall is created when empty (optional).
    """

    project_name: str
    environment: str
    aws_region: str
    github_owner: str
    github_repo: str
    github_branch: str
    github_token_secret_name: str
    image_repository_name: str
    codebuild_service_role_arn: str
    amplify_app_id: str
    allowed_cidrs: list[str] = field(default_factory=list)

    @classmethod
    def from_pulumi_config(cls, config: pulumi.Config) -> "StackConfig":
        """
        Build StackConfig from pulumi.Config(). All keys in _CONFIG_SPEC are read.
        """
        kwargs = {key: parser(config, key) for key, parser in _CONFIG_SPEC}
        return cls(**kwargs)
