"""
IP allowlist firewall in front of an Amplify-hosted front end.

This component attaches a WAF web ACL that blocks everything except a list of
IPv4 ranges to an Amplify app. WAF has no Pulumi-native way to attach a
CLOUDFRONT-scope ACL to an Amplify app, so the IP set, the web ACL and the
association are managed by the ``FirewallAssociation`` dynamic resource,
whose id encodes every sub-resource identifier. Updating ``allowed_cidrs``
rewrites the IP set in place; the id never changes.
"""

from typing import Any, Callable, Optional

import pulumi
from pulumi.dynamic import CreateResult, DiffResult, Resource, ResourceProvider, UpdateResult

from components._helpers import normalize_cidrs
from components._lifecycle import run_or_raise
from lifecycle import FirewallHandles, FirewallOrchestrator, LifecycleRequest, WafFirewallClient
from lifecycle.firewall import DEFAULT_SCOPE, FirewallClient

ID: str = "lifecycle:aws:AmplifyWaf"

# Only allowed_cidrs (and region) change in place. WAF names are unique per
# scope, so a replacement deletes the old firewall first.
_REPLACE_KEYS = ("app_id", "ip_set_name", "policy_name", "scope")
_INPUT_KEYS = ("allowed_cidrs", "region") + _REPLACE_KEYS


def _handle_outputs(physical_id: str) -> dict[str, str]:
    handles = FirewallHandles.decode(physical_id)
    return {
        "web_acl_arn": handles.policy_arn,
        "web_acl_id": handles.policy_id,
        "ip_set_arn": handles.ip_set_arn,
        "ip_set_id": handles.ip_set_id,
    }


class FirewallProvider(ResourceProvider):
    """
    Dynamic provider running ``FirewallOrchestrator`` through a lifecycle Provider.

    ``client_factory`` exists for tests; in a deployment it stays ``None`` so
    the provider serializes without live clients.
    """

    def __init__(self, client_factory: Optional[Callable[[dict], FirewallClient]] = None):
        super().__init__()
        self.client_factory = client_factory

    def _orchestrator(self, props: dict) -> FirewallOrchestrator:
        if self.client_factory is not None:
            return FirewallOrchestrator(self.client_factory(props))
        client = WafFirewallClient(
            region_name=props.get("region"), scope=props.get("scope") or DEFAULT_SCOPE
        )
        return FirewallOrchestrator(client)

    def create(self, props: dict) -> CreateResult:
        success = run_or_raise(
            self._orchestrator(props).provider(), LifecycleRequest.create(props)
        )
        outs = {**props, **_handle_outputs(success.physical_id)}
        return CreateResult(id_=success.physical_id, outs=outs)

    def diff(self, _id: str, _olds: dict, _news: dict) -> DiffResult:
        changed = [key for key in _INPUT_KEYS if _olds.get(key) != _news.get(key)]
        replaces = [key for key in _REPLACE_KEYS if key in changed]
        return DiffResult(
            changes=bool(changed),
            replaces=replaces,
            delete_before_replace=bool(replaces),
        )

    def update(self, _id: str, _olds: dict, _news: dict) -> UpdateResult:
        success = run_or_raise(
            self._orchestrator(_news).provider(), LifecycleRequest.update(_id, _news)
        )
        return UpdateResult(outs={**_news, **_handle_outputs(success.physical_id)})

    def delete(self, _id: str, _props: dict) -> None:
        run_or_raise(
            self._orchestrator(_props).provider(), LifecycleRequest.delete(_id, _props)
        )


class FirewallAssociation(Resource):
    """IP set + default-deny web ACL associated with one Amplify app."""

    web_acl_arn: pulumi.Output[str]
    web_acl_id: pulumi.Output[str]
    ip_set_arn: pulumi.Output[str]
    ip_set_id: pulumi.Output[str]

    def __init__(
        self,
        name: str,
        app_id: pulumi.Input[str],
        allowed_cidrs: list[str],
        region: str,
        opts: Optional[pulumi.ResourceOptions] = None,
    ):
        props: dict[str, Any] = {
            "app_id": app_id,
            "allowed_cidrs": allowed_cidrs,
            "region": region,
            "ip_set_name": f"{name}-allowed-ips",
            "policy_name": f"{name}-waf",
            "web_acl_arn": None,
            "web_acl_id": None,
            "ip_set_arn": None,
            "ip_set_id": None,
        }
        super().__init__(FirewallProvider(), name, props, opts)


class AmplifyWaf(pulumi.ComponentResource):
    """
    WAF allowlist for an Amplify app.

    Resources: FirewallAssociation (IP set, web ACL and app association).
    """

    def __init__(
        self,
        name: str,
        app_id: pulumi.Input[str],
        allowed_cidrs: list[str],
        region: str,
    ):
        """
        Create the firewall and attach it to the app.

        Args:
            name: Pulumi resource name; also prefixes the IP set and web ACL
                names in WAF.
            app_id: Amplify app id (string or Output from an Amplify App).
            allowed_cidrs: IPv4 addresses or CIDRs allowed through. Bare
                addresses are normalized to /32 via normalize_cidrs.
            region: Region of the Amplify app. The WAF resources themselves
                live in us-east-1 (CLOUDFRONT scope).

        Outputs (set on self, registered for the component):
            web_acl_arn: ARN of the attached web ACL.
            ip_set_arn: ARN of the allowlist IP set.
        """
        super().__init__(ID, name)

        self.association = FirewallAssociation(
            name=name,
            app_id=app_id,
            allowed_cidrs=normalize_cidrs(allowed_cidrs),
            region=region,
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.web_acl_arn: pulumi.Output[str] = self.association.web_acl_arn
        self.ip_set_arn: pulumi.Output[str] = self.association.ip_set_arn
        self.register_outputs(
            {
                "web_acl_arn": self.web_acl_arn,
                "ip_set_arn": self.ip_set_arn,
            }
        )
