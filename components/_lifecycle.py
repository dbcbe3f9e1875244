"""
Bridge between lifecycle Providers and Pulumi dynamic resource providers.

A Pulumi dynamic provider reports failure by raising, so ``run_or_raise``
unwraps a ``Success`` and turns a ``Failure`` back into an exception that
keeps the classified error as its cause.
"""

from lifecycle import Failure, LifecycleRequest, Provider, Success


class LifecycleProviderError(Exception):
    """Raised inside a dynamic provider when a lifecycle request fails."""

    def __init__(self, failure: Failure):
        super().__init__(f"{type(failure.error).__name__}: {failure.reason}")
        self.failure = failure


def run_or_raise(provider: Provider, request: LifecycleRequest) -> Success:
    try:
        outcome = provider.run(request)
    finally:
        provider.close()
    if isinstance(outcome, Failure):
        raise LifecycleProviderError(outcome) from outcome.error
    return outcome
