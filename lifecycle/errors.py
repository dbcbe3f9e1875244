"""Lifecycle error taxonomy.

Orchestrators raise these; the Provider classifies them into a tagged
``Failure`` outcome. ``retryable`` tells the caller whether re-running the
same request can succeed without changing its inputs.
"""


class LifecycleError(Exception):
    """Base exception for all lifecycle errors."""

    retryable: bool = False


class StartFailure(LifecycleError):
    """OnEvent could not start or mutate the external job/resource."""

    pass


class MalformedState(StartFailure):
    """A PhysicalId could not be decoded."""

    def __init__(self, message: str, physical_id: str | None = None):
        super().__init__(message)
        self.physical_id = physical_id


class ConcurrencyConflict(StartFailure):
    """A mutating call was rejected because its lock token was stale."""

    retryable = True


class TeardownFailure(StartFailure):
    """One or more Delete steps hit an unexpected error."""

    def __init__(self, message: str, failed_steps: list[str] | None = None):
        super().__init__(message)
        self.failed_steps = failed_steps or []


class TerminalJobFailure(LifecycleError):
    """The external job reached a failure status, or its status query failed."""

    def __init__(self, message: str, status: str | None = None):
        super().__init__(message)
        self.status = status


class TimeoutFailure(LifecycleError):
    """The poll budget ran out while the job was still non-terminal."""

    def __init__(self, elapsed: float, total_timeout: float):
        super().__init__(
            f"Gave up waiting after {elapsed:.0f}s (total timeout {total_timeout:.0f}s)"
        )
        self.elapsed = elapsed
        self.total_timeout = total_timeout


class OperationCancelled(LifecycleError):
    """Polling stopped because the surrounding process is shutting down."""

    pass


class ResourceNotFound(LifecycleError):
    """An external resource is already absent."""

    def __init__(self, message: str, resource_id: str | None = None):
        super().__init__(message)
        self.resource_id = resource_id
