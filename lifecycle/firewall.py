"""
Firewall orchestrator: an IP allowlist plus a default-deny protection policy
attached to a front-end application.

Create builds the pair in order (ip set, policy, association) and encodes all
four sub-resource identifiers into the PhysicalId. Update and Delete receive
nothing but that string, so ``FirewallHandles.decode`` recovers every handle
they need and resource names are read back out of the ARNs.

Delete is tolerant: each teardown step runs independently, "already absent"
counts as success, and only unexpected errors fail the request.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

import boto3
from botocore.exceptions import ClientError

from lifecycle.errors import (
    ConcurrencyConflict,
    LifecycleError,
    MalformedState,
    ResourceNotFound,
    StartFailure,
    TeardownFailure,
)
from lifecycle.provider import Provider
from lifecycle.requests import LifecycleRequest, RequestKind

logger = logging.getLogger(__name__)

PHYSICAL_ID_VERSION = "waf1"
PHYSICAL_ID_SEPARATOR = "|"
DELETED_PHYSICAL_ID = "waf-deleted"

DEFAULT_SCOPE = "CLOUDFRONT"
ALLOW_RULE_NAME = "AllowSpecificIPs"

# WAF requires CLOUDFRONT-scope resources to be managed from us-east-1.
CLOUDFRONT_REGION = "us-east-1"


@dataclass(frozen=True)
class FirewallHandles:
    """Identifiers of every sub-resource a firewall Create produced."""

    policy_arn: str
    ip_set_arn: str
    ip_set_id: str
    policy_id: str

    def encode(self) -> str:
        parts = (self.policy_arn, self.ip_set_arn, self.ip_set_id, self.policy_id)
        return PHYSICAL_ID_SEPARATOR.join((PHYSICAL_ID_VERSION, *parts))

    @classmethod
    def decode(cls, physical_id: Optional[str]) -> "FirewallHandles":
        """
        Recover the handles from a PhysicalId.

        Accepts the versioned form and the unversioned four-part form written
        by earlier deployments. Raises ``MalformedState`` for anything else.
        """
        if not physical_id:
            raise MalformedState("No physical id to decode", physical_id)
        parts = physical_id.split(PHYSICAL_ID_SEPARATOR)
        if parts[0] == PHYSICAL_ID_VERSION:
            parts = parts[1:]
        if len(parts) != 4 or not all(parts):
            raise MalformedState(f"Unrecognized firewall physical id: {physical_id!r}", physical_id)
        return cls(*parts)


def resource_name_from_arn(arn: str) -> str:
    """Name segment of a WAF ARN (``.../ipset/<name>/<id>``)."""
    segments = arn.split("/")
    if len(segments) < 3 or not segments[-2]:
        raise MalformedState(f"Cannot read resource name from ARN {arn!r}")
    return segments[-2]


def _parse_cidrs(raw: Any) -> list[str]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise StartFailure(f"allowed_cidrs is not valid JSON: {raw!r}") from exc
    if not isinstance(raw, (list, tuple)) or not all(isinstance(c, str) for c in raw):
        raise StartFailure("allowed_cidrs must be a list of strings")
    return list(raw)


@dataclass(frozen=True)
class FirewallSettings:
    app_id: str
    allowed_cidrs: list[str]
    ip_set_name: str
    policy_name: str
    scope: str = DEFAULT_SCOPE

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "FirewallSettings":
        app_id = properties.get("app_id")
        if not app_id:
            raise StartFailure("Missing firewall property: app_id")
        return cls(
            app_id=str(app_id),
            allowed_cidrs=_parse_cidrs(properties.get("allowed_cidrs", [])),
            ip_set_name=properties.get("ip_set_name") or f"{app_id}-allowed-ips",
            policy_name=properties.get("policy_name") or f"{app_id}-waf",
            scope=properties.get("scope") or DEFAULT_SCOPE,
        )


@dataclass(frozen=True)
class ResourceRef:
    id: str
    arn: str


@dataclass(frozen=True)
class IpSetSnapshot:
    addresses: tuple[str, ...]
    lock_token: str


class FirewallClient(Protocol):
    """
    External firewall and front-end application APIs.

    ``get_*`` calls return the lock token the matching mutating call expects.
    Absent resources raise ``ResourceNotFound``; stale tokens raise
    ``ConcurrencyConflict``.
    """

    def create_ip_set(self, name: str, scope: str, addresses: Sequence[str]) -> ResourceRef: ...

    def get_ip_set(self, ip_set_id: str, name: str, scope: str) -> IpSetSnapshot: ...

    def update_ip_set(
        self, ip_set_id: str, name: str, scope: str, addresses: Sequence[str], lock_token: str
    ) -> None: ...

    def delete_ip_set(self, ip_set_id: str, name: str, scope: str, lock_token: str) -> None: ...

    def create_policy(self, name: str, scope: str, ip_set_arn: str) -> ResourceRef: ...

    def get_policy_lock_token(self, policy_id: str, name: str, scope: str) -> str: ...

    def delete_policy(self, policy_id: str, name: str, scope: str, lock_token: str) -> None: ...

    def associate(self, app_id: str, policy_arn: str) -> None: ...

    def disassociate(self, app_id: str) -> None: ...


class StepResult(str, enum.Enum):
    DELETED = "Deleted"
    ALREADY_ABSENT = "AlreadyAbsent"
    ERROR = "Error"


@dataclass(frozen=True)
class TeardownStep:
    name: str
    result: StepResult
    error: Optional[Exception] = None


def _teardown_step(name: str, action: Callable[[], None]) -> TeardownStep:
    try:
        action()
    except ResourceNotFound as exc:
        logger.info("Teardown %s: already absent (%s)", name, exc)
        return TeardownStep(name, StepResult.ALREADY_ABSENT)
    except Exception as exc:
        logger.exception("Teardown %s failed", name)
        return TeardownStep(name, StepResult.ERROR, exc)
    logger.info("Teardown %s: deleted", name)
    return TeardownStep(name, StepResult.DELETED)


class FirewallOrchestrator:
    """Synchronous orchestrator; it has no IsComplete phase."""

    def __init__(self, client: FirewallClient):
        self.client = client

    def on_event(self, request: LifecycleRequest) -> str:
        if request.kind is RequestKind.CREATE:
            return self.create(FirewallSettings.from_properties(request.properties))
        if request.kind is RequestKind.UPDATE:
            return self.update(request.physical_id, request.properties)
        return self.delete(request.physical_id, request.properties)

    def create(self, settings: FirewallSettings) -> str:
        ip_set = self.client.create_ip_set(
            settings.ip_set_name, settings.scope, settings.allowed_cidrs
        )
        logger.info("Created ip set %s with %d ranges", ip_set.id, len(settings.allowed_cidrs))
        policy = self.client.create_policy(settings.policy_name, settings.scope, ip_set.arn)
        logger.info("Created policy %s", policy.id)
        self.client.associate(settings.app_id, policy.arn)
        logger.info("Associated policy %s with app %s", policy.id, settings.app_id)
        return FirewallHandles(
            policy_arn=policy.arn,
            ip_set_arn=ip_set.arn,
            ip_set_id=ip_set.id,
            policy_id=policy.id,
        ).encode()

    def update(self, physical_id: Optional[str], properties: Mapping[str, Any]) -> str:
        handles = FirewallHandles.decode(physical_id)
        addresses = _parse_cidrs(properties.get("allowed_cidrs", []))
        scope = properties.get("scope") or DEFAULT_SCOPE
        name = resource_name_from_arn(handles.ip_set_arn)

        snapshot = self.client.get_ip_set(handles.ip_set_id, name, scope)
        self.client.update_ip_set(handles.ip_set_id, name, scope, addresses, snapshot.lock_token)
        logger.info("Updated ip set %s with %d ranges", handles.ip_set_id, len(addresses))
        return physical_id

    def delete(self, physical_id: Optional[str], properties: Mapping[str, Any]) -> str:
        try:
            handles = FirewallHandles.decode(physical_id)
        except MalformedState as exc:
            logger.warning("Nothing to delete: %s", exc)
            return physical_id or DELETED_PHYSICAL_ID

        scope = properties.get("scope") or DEFAULT_SCOPE
        steps = [
            _teardown_step("disassociate", lambda: self._disassociate(properties)),
            _teardown_step("policy", lambda: self._delete_policy(handles, scope)),
            _teardown_step("ip-set", lambda: self._delete_ip_set(handles, scope)),
        ]
        failed = [step for step in steps if step.result is StepResult.ERROR]
        if failed:
            details = "; ".join(f"{step.name}: {step.error}" for step in failed)
            raise TeardownFailure(
                f"Firewall teardown failed ({details})", [step.name for step in failed]
            )
        return physical_id

    def _disassociate(self, properties: Mapping[str, Any]) -> None:
        app_id = properties.get("app_id")
        if not app_id:
            raise ResourceNotFound("No app id recorded for this firewall")
        self.client.disassociate(str(app_id))

    def _delete_policy(self, handles: FirewallHandles, scope: str) -> None:
        name = resource_name_from_arn(handles.policy_arn)
        token = self.client.get_policy_lock_token(handles.policy_id, name, scope)
        self.client.delete_policy(handles.policy_id, name, scope, token)

    def _delete_ip_set(self, handles: FirewallHandles, scope: str) -> None:
        name = resource_name_from_arn(handles.ip_set_arn)
        snapshot = self.client.get_ip_set(handles.ip_set_id, name, scope)
        self.client.delete_ip_set(handles.ip_set_id, name, scope, snapshot.lock_token)

    def provider(self, **overrides: Any) -> Provider:
        options: dict[str, Any] = {"name": "firewall"}
        options.update(overrides)
        return Provider(self.on_event, None, **options)


def _visibility(metric_name: str) -> dict[str, Any]:
    return {
        "SampledRequestsEnabled": False,
        "CloudWatchMetricsEnabled": False,
        "MetricName": metric_name,
    }


def _translate(exc: ClientError, what: str) -> LifecycleError:
    code = exc.response.get("Error", {}).get("Code", "")
    if code in ("WAFNonexistentItemException", "NotFoundException"):
        return ResourceNotFound(f"{what} not found", what)
    if code == "WAFOptimisticLockException":
        return ConcurrencyConflict(f"{what} changed concurrently; lock token is stale")
    return StartFailure(f"{what}: {exc}")


class WafFirewallClient:
    """``FirewallClient`` backed by AWS WAFv2 and Amplify."""

    def __init__(
        self,
        region_name: str | None = None,
        waf_client: Any = None,
        amplify_client: Any = None,
        scope: str = DEFAULT_SCOPE,
    ):
        waf_region = CLOUDFRONT_REGION if scope == "CLOUDFRONT" else region_name
        self._waf = waf_client or boto3.client("wafv2", region_name=waf_region)
        self._amplify = amplify_client or boto3.client("amplify", region_name=region_name)

    def create_ip_set(self, name: str, scope: str, addresses: Sequence[str]) -> ResourceRef:
        try:
            response = self._waf.create_ip_set(
                Name=name, Scope=scope, IPAddressVersion="IPV4", Addresses=list(addresses)
            )
        except ClientError as exc:
            raise _translate(exc, f"ip set {name}") from exc
        return ResourceRef(id=response["Summary"]["Id"], arn=response["Summary"]["ARN"])

    def get_ip_set(self, ip_set_id: str, name: str, scope: str) -> IpSetSnapshot:
        try:
            response = self._waf.get_ip_set(Id=ip_set_id, Name=name, Scope=scope)
        except ClientError as exc:
            raise _translate(exc, f"ip set {ip_set_id}") from exc
        return IpSetSnapshot(
            addresses=tuple(response["IPSet"]["Addresses"]), lock_token=response["LockToken"]
        )

    def update_ip_set(
        self, ip_set_id: str, name: str, scope: str, addresses: Sequence[str], lock_token: str
    ) -> None:
        try:
            self._waf.update_ip_set(
                Id=ip_set_id, Name=name, Scope=scope,
                Addresses=list(addresses), LockToken=lock_token,
            )
        except ClientError as exc:
            raise _translate(exc, f"ip set {ip_set_id}") from exc

    def delete_ip_set(self, ip_set_id: str, name: str, scope: str, lock_token: str) -> None:
        try:
            self._waf.delete_ip_set(Id=ip_set_id, Name=name, Scope=scope, LockToken=lock_token)
        except ClientError as exc:
            raise _translate(exc, f"ip set {ip_set_id}") from exc

    def create_policy(self, name: str, scope: str, ip_set_arn: str) -> ResourceRef:
        rule = {
            "Name": ALLOW_RULE_NAME,
            "Priority": 1,
            "Statement": {"IPSetReferenceStatement": {"ARN": ip_set_arn}},
            "Action": {"Allow": {}},
            "VisibilityConfig": _visibility(ALLOW_RULE_NAME),
        }
        try:
            response = self._waf.create_web_acl(
                Name=name,
                Scope=scope,
                DefaultAction={"Block": {}},
                Rules=[rule],
                VisibilityConfig=_visibility(name.replace("-", "")),
            )
        except ClientError as exc:
            raise _translate(exc, f"web acl {name}") from exc
        return ResourceRef(id=response["Summary"]["Id"], arn=response["Summary"]["ARN"])

    def get_policy_lock_token(self, policy_id: str, name: str, scope: str) -> str:
        try:
            response = self._waf.get_web_acl(Id=policy_id, Name=name, Scope=scope)
        except ClientError as exc:
            raise _translate(exc, f"web acl {policy_id}") from exc
        return response["LockToken"]

    def delete_policy(self, policy_id: str, name: str, scope: str, lock_token: str) -> None:
        try:
            self._waf.delete_web_acl(Id=policy_id, Name=name, Scope=scope, LockToken=lock_token)
        except ClientError as exc:
            raise _translate(exc, f"web acl {policy_id}") from exc

    def _app_arn(self, app_id: str) -> str:
        try:
            response = self._amplify.get_app(appId=app_id)
        except ClientError as exc:
            raise _translate(exc, f"app {app_id}") from exc
        return response["app"]["appArn"]

    def associate(self, app_id: str, policy_arn: str) -> None:
        resource_arn = self._app_arn(app_id)
        try:
            self._waf.associate_web_acl(WebACLArn=policy_arn, ResourceArn=resource_arn)
        except ClientError as exc:
            raise _translate(exc, f"association for app {app_id}") from exc

    def disassociate(self, app_id: str) -> None:
        resource_arn = self._app_arn(app_id)
        try:
            current = self._waf.get_web_acl_for_resource(ResourceArn=resource_arn)
            if not current.get("WebACL"):
                raise ResourceNotFound(f"No web acl associated with app {app_id}", app_id)
            self._waf.disassociate_web_acl(ResourceArn=resource_arn)
        except ClientError as exc:
            raise _translate(exc, f"association for app {app_id}") from exc
