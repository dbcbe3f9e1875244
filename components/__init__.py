"""
Pulumi components wrapping the lifecycle orchestrators.

Each long-running external operation is a ComponentResource backed by a
``pulumi.dynamic`` resource, so ``pulumi up`` waits for it to converge and
``pulumi destroy`` tears it down tolerantly:

- **InitialBuild**: CodeBuild project + one blocking build that seeds the
  image registry; exposes project_name and build_id.
- **AmplifyWaf**: IP allowlist web ACL attached to an Amplify app; exposes
  web_acl_arn and ip_set_arn.
"""

from components.amplify_waf import AmplifyWaf
from components.initial_build import InitialBuild

__all__ = ["AmplifyWaf", "InitialBuild"]
