"""
Lifecycle orchestration for slow, external, non-transactional operations.

A provisioning pipeline hands each managed resource a Create, Update or
Delete request and expects an eventual success or failure. This package
splits that into two phases and a loop that joins them:

- **OnEvent** starts or mutates the external operation and returns a
  PhysicalId at once.
- **IsComplete** checks the operation's status.
- **Provider** calls OnEvent, then polls IsComplete on a fixed interval under
  a total timeout, and classifies everything into a ``Success``/``Failure``.

Two orchestrators use it:

- **BuildOrchestrator**: starts one container build and waits for it.
- **FirewallOrchestrator**: manages an IP allowlist + protection policy pair
  attached to a front-end application, with the PhysicalId as its only state.
"""

from lifecycle.build import BuildOrchestrator, BuildSource, CodeBuildClient
from lifecycle.errors import (
    ConcurrencyConflict,
    LifecycleError,
    MalformedState,
    OperationCancelled,
    ResourceNotFound,
    StartFailure,
    TeardownFailure,
    TerminalJobFailure,
    TimeoutFailure,
)
from lifecycle.firewall import FirewallHandles, FirewallOrchestrator, WafFirewallClient
from lifecycle.provider import Provider
from lifecycle.requests import (
    Completion,
    Failure,
    JobStatus,
    LifecycleRequest,
    Outcome,
    RequestKind,
    Success,
)

__all__ = [
    "BuildOrchestrator",
    "BuildSource",
    "CodeBuildClient",
    "Completion",
    "ConcurrencyConflict",
    "Failure",
    "FirewallHandles",
    "FirewallOrchestrator",
    "JobStatus",
    "LifecycleError",
    "LifecycleRequest",
    "MalformedState",
    "OperationCancelled",
    "Outcome",
    "Provider",
    "RequestKind",
    "ResourceNotFound",
    "StartFailure",
    "Success",
    "TeardownFailure",
    "TerminalJobFailure",
    "TimeoutFailure",
    "WafFirewallClient",
]
