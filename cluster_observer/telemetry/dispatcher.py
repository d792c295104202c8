"""
Telemetry - Dispatcher.

============================================================
RESPONSIBILITY
============================================================
Delivers one health report to every configured provider.

- No report: nothing is sent
- Providers are called in order, one at a time
- A failing provider does not stop the others
- Once cancellation is requested no new provider is called;
  a call already in flight is not aborted

============================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..cancellation import CancellationToken, ensure_token
from ..exceptions import CycleCancelledError, DeliveryError
from ..models import HealthReport
from .base import TelemetryProvider


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderOutcome:
    """Delivery outcome for one provider."""

    provider: str
    success: bool
    error: Optional[DeliveryError] = None


@dataclass
class DispatchResult:
    """Outcome of dispatching one report."""

    outcomes: List[ProviderOutcome] = field(default_factory=list)
    """Per-provider outcomes, in call order."""

    cancelled: bool = False
    """Whether cancellation stopped the dispatch before all providers ran."""

    @property
    def succeeded(self) -> bool:
        """True when nothing failed and nothing was cancelled."""
        return not self.cancelled and all(outcome.success for outcome in self.outcomes)

    @property
    def failures(self) -> List[ProviderOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def errors(self) -> List[DeliveryError]:
        return [outcome.error for outcome in self.outcomes if outcome.error is not None]

    @property
    def first_error(self) -> Optional[DeliveryError]:
        errors = self.errors
        return errors[0] if errors else None

    @property
    def delivered_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)


class TelemetryDispatcher:
    """
    Fans a health report out to an ordered list of providers.

    Unaware of the concrete provider types.
    """

    def __init__(self, providers: Optional[Iterable[TelemetryProvider]] = None) -> None:
        """
        Initialize dispatcher.

        Args:
            providers: Ordered telemetry providers
        """
        self._providers: List[TelemetryProvider] = []
        for provider in providers or ():
            self.add_provider(provider)

    @property
    def providers(self) -> List[TelemetryProvider]:
        return list(self._providers)

    @property
    def has_providers(self) -> bool:
        return bool(self._providers)

    def add_provider(self, provider: TelemetryProvider) -> None:
        """Append a provider (ignored if already registered)."""
        if provider not in self._providers:
            self._providers.append(provider)

    def remove_provider(self, provider: TelemetryProvider) -> None:
        """Remove a provider if registered."""
        if provider in self._providers:
            self._providers.remove(provider)

    async def dispatch(
        self,
        report: Optional[HealthReport],
        token: Optional[CancellationToken] = None,
    ) -> DispatchResult:
        """
        Deliver a report to all providers.

        Args:
            report: Report to deliver (None = suppressed, no-op)
            token: Cancellation token checked before each provider call

        Returns:
            DispatchResult with per-provider outcomes
        """
        result = DispatchResult()

        if report is None:
            return result

        if not report.description.strip():
            logger.warning("Refusing to dispatch a health report with an empty description")
            return result

        token = ensure_token(token)

        for provider in self._providers:
            if token.is_cancellation_requested:
                logger.info(f"Dispatch cancelled before provider {provider.name}")
                result.cancelled = True
                break

            try:
                await provider.report(report, token)
            except CycleCancelledError:
                logger.info(f"Dispatch cancelled at provider {provider.name}")
                result.cancelled = True
                break
            except DeliveryError as e:
                logger.warning(f"Telemetry provider {provider.name} failed: {e.message}")
                result.outcomes.append(ProviderOutcome(provider=provider.name, success=False, error=e))
            except Exception as e:
                logger.error(f"Telemetry provider {provider.name} raised unexpectedly: {e!r}")
                error = DeliveryError(f"Unexpected provider failure: {e!r}", provider=provider.name)
                error.__cause__ = e
                result.outcomes.append(ProviderOutcome(provider=provider.name, success=False, error=error))
            else:
                logger.info(
                    f"Health report delivered via {provider.name}: "
                    f"{report.scope.value}/{report.property_name}={report.state.value}"
                )
                result.outcomes.append(ProviderOutcome(provider=provider.name, success=True))

        return result

    async def close(self) -> None:
        """Close all providers."""
        for provider in self._providers:
            await provider.close()
