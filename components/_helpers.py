"""
Pure helpers for build sources and allowlists. Testable without Pulumi runtime.

Used by the InitialBuild component (github_source_location, branch_ref,
initial_buildspec) and the AmplifyWaf component (normalize_cidrs). No Pulumi
types; all functions accept and return plain Python types so they can be
unit-tested without a Pulumi stack.
"""

import ipaddress
import json


def github_source_location(
    owner: str,
    repo: str,
) -> str:
    """
    Return the HTTPS clone URL CodeBuild expects for a GitHub source.

    Args:
        owner: GitHub user or organization (e.g. "acme").
        repo: Repository name; a trailing ".git" is tolerated.

    Returns:
        URL like "https://github.com/acme/api.git".
    """
    repo = repo[: -len(".git")] if repo.endswith(".git") else repo
    return f"https://github.com/{owner}/{repo}.git"


def branch_ref(
    branch: str,
) -> str:
    """
    Return a fully qualified git ref for a branch name.

    Idempotent if the branch is already qualified ("refs/heads/main").
    """
    return branch if branch.startswith("refs/") else f"refs/heads/{branch}"


def initial_buildspec() -> str:
    """
    Return the buildspec for the one-shot registry seeding build.

    The build logs in to ECR, builds the repository's Dockerfile and pushes
    it as ``:latest``. AWS_ACCOUNT_ID, AWS_DEFAULT_REGION and IMAGE_REPO_NAME
    come from the project's environment variables. JSON is valid YAML, so
    CodeBuild accepts the serialized form as-is.
    """
    registry = "$AWS_ACCOUNT_ID.dkr.ecr.$AWS_DEFAULT_REGION.amazonaws.com"
    spec = {
        "version": "0.2",
        "phases": {
            "pre_build": {
                "commands": [
                    "aws ecr get-login-password --region $AWS_DEFAULT_REGION"
                    f" | docker login --username AWS --password-stdin {registry}",
                    f"REPOSITORY_URI={registry}/$IMAGE_REPO_NAME",
                ],
            },
            "build": {"commands": ["docker build -t $REPOSITORY_URI:latest ."]},
            "post_build": {"commands": ["docker push $REPOSITORY_URI:latest"]},
        },
    }
    return json.dumps(spec, indent=2)


def normalize_cidrs(
    cidrs: list[str],
) -> list[str]:
    """
    Validate and canonicalize IPv4 CIDRs for a WAF IP set.

    Bare addresses become /32 networks, host bits are rejected, and
    duplicates are dropped while keeping the caller's order.

    Raises:
        ValueError: if an entry is not an IPv4 address or network.
    """
    seen: dict[str, None] = {}
    for cidr in cidrs:
        network = ipaddress.ip_network(cidr.strip(), strict=True)
        if network.version != 4:
            raise ValueError(f"Only IPv4 ranges are supported: {cidr}")
        seen.setdefault(str(network), None)
    return list(seen)
