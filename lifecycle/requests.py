"""
Lifecycle requests, poll results and outcomes.

A ``LifecycleRequest`` is what the provisioning pipeline hands to an
orchestrator: one Create, Update or Delete for one managed resource. The
``physical_id`` is the only state that survives between invocations; it is
produced by Create and echoed back by the pipeline on Update and Delete.

``Outcome`` is the tagged result the Provider returns to the pipeline:
``Success`` or ``Failure``. Failures carry the classified ``LifecycleError``
so callers can branch on its type (timeout vs terminal job failure, etc.).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from lifecycle.errors import LifecycleError


class RequestKind(str, enum.Enum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


class JobStatus(str, enum.Enum):
    """Status of an external job as observed by a poller."""

    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED_TERMINAL = "FailedTerminal"


@dataclass(frozen=True)
class LifecycleRequest:
    """
    One lifecycle event for a managed resource.

    Attributes:
        kind: Create, Update or Delete.
        properties: Desired configuration, e.g. build source or allowed CIDRs.
        physical_id: Identifier produced by Create; absent on Create itself.
    """

    kind: RequestKind
    properties: Mapping[str, Any] = field(default_factory=dict)
    physical_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind is RequestKind.CREATE and self.physical_id is not None:
            raise ValueError("A Create request cannot carry a physical id")

    @classmethod
    def create(cls, properties: Mapping[str, Any]) -> "LifecycleRequest":
        return cls(RequestKind.CREATE, properties)

    @classmethod
    def update(cls, physical_id: str, properties: Mapping[str, Any]) -> "LifecycleRequest":
        return cls(RequestKind.UPDATE, properties, physical_id)

    @classmethod
    def delete(
        cls, physical_id: str | None, properties: Mapping[str, Any] | None = None
    ) -> "LifecycleRequest":
        return cls(RequestKind.DELETE, properties or {}, physical_id)


@dataclass(frozen=True)
class Completion:
    """Result of one IsComplete check."""

    done: bool
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Success:
    physical_id: str
    data: Mapping[str, Any] = field(default_factory=dict)

    ok = True


@dataclass(frozen=True)
class Failure:
    error: LifecycleError
    physical_id: str | None = None

    ok = False

    @property
    def reason(self) -> str:
        return str(self.error)

    @property
    def retryable(self) -> bool:
        return self.error.retryable


Outcome = Union[Success, Failure]
