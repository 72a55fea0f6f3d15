"""
Ordered provider failover.

An operation is tried against each provider in turn until one succeeds.
Transient provider errors move on to the next provider; permanent ones
abort the chain, since another vendor cannot fix a malformed request.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence, Tuple, Union

from .errors import AllProvidersFailedError, ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Success:
    """A provider answered."""
    provider: str
    payload: Any


@dataclass(frozen=True)
class Failure:
    """A provider failed transiently."""
    provider: str
    error: ProviderError


AttemptOutcome = Union[Success, Failure]


@dataclass(frozen=True)
class ProviderResult:
    """Raw provider output tagged with who produced it."""
    payload: Any
    provider: str
    failures: Tuple[Failure, ...] = ()

    @property
    def fell_back(self) -> bool:
        return bool(self.failures)


class FailoverInvoker:
    """Runs an operation against an ordered list of providers."""

    def invoke(self, operation: Callable[[Any], Any], providers: Sequence) -> ProviderResult:
        """Try ``operation`` on each provider until one succeeds.

        Args:
            operation: Called with a provider client; returns the payload or
                raises ProviderError
            providers: Provider clients, first choice first; each needs a
                ``name`` attribute

        Returns:
            ProviderResult from the first provider that succeeded

        Raises:
            ValueError: If no providers are given
            ProviderError: If a provider failed non-transiently
            AllProvidersFailedError: If every provider failed transiently
        """
        if not providers:
            raise ValueError("providers is required and cannot be empty")

        failures: List[Failure] = []
        for provider in providers:
            outcome = self._attempt(operation, provider)
            if isinstance(outcome, Success):
                if failures:
                    logger.info("%s answered after %d failed provider(s)",
                                outcome.provider, len(failures))
                else:
                    logger.info("%s answered", outcome.provider)
                return ProviderResult(
                    payload=outcome.payload,
                    provider=outcome.provider,
                    failures=tuple(failures),
                )
            failures.append(outcome)

        logger.error("All %d providers failed; last error: %s",
                     len(failures), failures[-1].error)
        raise AllProvidersFailedError(failures)

    def _attempt(self, operation: Callable[[Any], Any], provider) -> AttemptOutcome:
        name = provider.name
        try:
            return Success(provider=name, payload=operation(provider))
        except ProviderError as e:
            if not e.transient:
                logger.error("%s rejected the request (%s), not trying other providers: %s",
                             name, e.kind.value, e.reason)
                raise
            logger.warning("%s failed (%s), trying next provider: %s",
                           name, e.kind.value, e.reason)
            return Failure(provider=name, error=e)
