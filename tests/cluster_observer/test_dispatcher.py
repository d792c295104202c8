"""
Telemetry Dispatcher Tests.

============================================================
PURPOSE
============================================================
Tests for report fan-out across telemetry providers.

TEST CATEGORIES:
- Delivery to all providers in order
- Failure isolation
- Cancellation
- Suppressed reports

============================================================
"""

from typing import List, Optional

import pytest

from cluster_observer.cancellation import CancellationToken
from cluster_observer.exceptions import CycleCancelledError, DeliveryError
from cluster_observer.models import HealthReport, HealthScope, HealthState
from cluster_observer.telemetry import (
    LoggingTelemetryProvider,
    NullTelemetryProvider,
    TelemetryDispatcher,
    TelemetryProvider,
)


# =============================================================
# HELPERS
# =============================================================


class RecordingProvider(TelemetryProvider):
    """Records reports and optionally fails."""

    def __init__(self, label: str, calls: List[str], error: Optional[BaseException] = None,
                 cancel_token: Optional[CancellationToken] = None):
        self._label = label
        self._calls = calls
        self._error = error
        self._cancel_token = cancel_token
        self.closed = False

    @property
    def name(self) -> str:
        return self._label

    async def report_health(self, scope, property_name, state, description, source,
                            token=None, service_name=None, instance_name=None):
        self._calls.append(self._label)
        if self._cancel_token is not None:
            self._cancel_token.cancel("host shutdown")
        if self._error is not None:
            raise self._error

    async def close(self):
        self.closed = True


def make_report(description: str = "Node - Error: disk full") -> HealthReport:
    return HealthReport(
        scope=HealthScope.CLUSTER,
        property_name="AggregatedClusterHealth",
        state=HealthState.ERROR,
        description=description,
        source="ClusterObserver",
    )


# =============================================================
# DISPATCH
# =============================================================


class TestDispatch:
    """Tests for TelemetryDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_all_providers_called_in_order(self):
        calls: List[str] = []
        dispatcher = TelemetryDispatcher([
            RecordingProvider("first", calls),
            RecordingProvider("second", calls),
        ])

        result = await dispatcher.dispatch(make_report())

        assert calls == ["first", "second"]
        assert result.succeeded
        assert result.delivered_count == 2
        assert result.first_error is None

    @pytest.mark.asyncio
    async def test_none_report_is_noop(self):
        calls: List[str] = []
        dispatcher = TelemetryDispatcher([RecordingProvider("only", calls)])

        result = await dispatcher.dispatch(None)

        assert calls == []
        assert result.outcomes == []
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_empty_description_not_sent(self):
        calls: List[str] = []
        dispatcher = TelemetryDispatcher([RecordingProvider("only", calls)])

        result = await dispatcher.dispatch(make_report("  "))

        assert calls == []
        assert result.outcomes == []

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_others(self):
        """A failing provider is recorded and the next one still runs."""
        calls: List[str] = []
        failure = DeliveryError("rejected", status_code=403, response_body="invalid signature")
        dispatcher = TelemetryDispatcher([
            RecordingProvider("broken", calls, error=failure),
            RecordingProvider("healthy", calls),
        ])

        result = await dispatcher.dispatch(make_report())

        assert calls == ["broken", "healthy"]
        assert not result.succeeded
        assert result.delivered_count == 1
        assert [outcome.provider for outcome in result.failures] == ["broken"]
        assert result.first_error is failure
        assert result.first_error.response_body == "invalid signature"

    @pytest.mark.asyncio
    async def test_unexpected_exception_wrapped(self):
        calls: List[str] = []
        dispatcher = TelemetryDispatcher([RecordingProvider("buggy", calls, error=RuntimeError("boom"))])

        result = await dispatcher.dispatch(make_report())

        error = result.first_error
        assert isinstance(error, DeliveryError)
        assert error.provider == "buggy"
        assert isinstance(error.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_cancelled_before_first_provider(self):
        calls: List[str] = []
        dispatcher = TelemetryDispatcher([RecordingProvider("only", calls)])
        token = CancellationToken()
        token.cancel()

        result = await dispatcher.dispatch(make_report(), token)

        assert calls == []
        assert result.cancelled
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_cancellation_stops_remaining_providers(self):
        """The in-flight call completes, later providers are not called."""
        calls: List[str] = []
        token = CancellationToken()
        dispatcher = TelemetryDispatcher([
            RecordingProvider("first", calls, cancel_token=token),
            RecordingProvider("second", calls),
        ])

        result = await dispatcher.dispatch(make_report(), token)

        assert calls == ["first"]
        assert result.cancelled
        assert result.delivered_count == 1

    @pytest.mark.asyncio
    async def test_provider_cancellation_error(self):
        calls: List[str] = []
        dispatcher = TelemetryDispatcher([
            RecordingProvider("first", calls, error=CycleCancelledError()),
            RecordingProvider("second", calls),
        ])

        result = await dispatcher.dispatch(make_report())

        assert calls == ["first"]
        assert result.cancelled


# =============================================================
# PROVIDERS
# =============================================================


class TestProviders:
    """Tests for provider registration and built-in providers."""

    def test_add_and_remove(self):
        dispatcher = TelemetryDispatcher()
        provider = NullTelemetryProvider()

        assert not dispatcher.has_providers

        dispatcher.add_provider(provider)
        dispatcher.add_provider(provider)
        assert dispatcher.providers == [provider]

        dispatcher.remove_provider(provider)
        assert not dispatcher.has_providers

    @pytest.mark.asyncio
    async def test_logging_provider_history(self):
        provider = LoggingTelemetryProvider(max_history=2)
        dispatcher = TelemetryDispatcher([provider])

        for i in range(3):
            await dispatcher.dispatch(make_report(f"line {i}"))

        history = provider.get_history()
        assert [report.description for report in history] == ["line 1", "line 2"]

    @pytest.mark.asyncio
    async def test_close_closes_providers(self):
        calls: List[str] = []
        provider = RecordingProvider("only", calls)
        dispatcher = TelemetryDispatcher([provider])

        await dispatcher.close()

        assert provider.closed
