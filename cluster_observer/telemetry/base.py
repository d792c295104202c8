"""
Telemetry - Provider Interface.

============================================================
PURPOSE
============================================================
Capability interface every telemetry sink implements.

AVAILABLE PROVIDERS:
- LogAnalyticsTelemetry: signed HTTP ingestion (log_analytics.py)
- LoggingTelemetryProvider: writes reports to the log
- NullTelemetryProvider: discards reports

The dispatcher holds an ordered list of providers and does
not know their concrete types.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from ..cancellation import CancellationToken, ensure_token
from ..models import HealthReport, HealthScope, HealthState


logger = logging.getLogger(__name__)


class TelemetryProvider(ABC):
    """Abstract telemetry sink."""

    @property
    def name(self) -> str:
        """Provider name used in logs and dispatch results."""
        return type(self).__name__

    @abstractmethod
    async def report_health(
        self,
        scope: HealthScope,
        property_name: str,
        state: HealthState,
        description: str,
        source: str,
        token: Optional[CancellationToken] = None,
        service_name: Optional[str] = None,
        instance_name: Optional[str] = None,
    ) -> None:
        """
        Deliver one health report.

        Raises:
            DeliveryError: If delivery fails
            CycleCancelledError: If cancelled before sending
        """
        pass

    async def report(self, report: HealthReport, token: Optional[CancellationToken] = None) -> None:
        """Deliver a HealthReport value."""
        await self.report_health(
            scope=report.scope,
            property_name=report.property_name,
            state=report.state,
            description=report.description,
            source=report.source,
            token=token,
            service_name=report.service_name,
            instance_name=report.instance_name,
        )

    async def close(self) -> None:
        """Release resources."""
        return None


class NullTelemetryProvider(TelemetryProvider):
    """Discards every report."""

    async def report_health(
        self,
        scope: HealthScope,
        property_name: str,
        state: HealthState,
        description: str,
        source: str,
        token: Optional[CancellationToken] = None,
        service_name: Optional[str] = None,
        instance_name: Optional[str] = None,
    ) -> None:
        return None


class LoggingTelemetryProvider(TelemetryProvider):
    """Writes reports to the log and keeps a bounded history."""

    def __init__(self, level: int = logging.INFO, max_history: int = 100) -> None:
        self._level = level
        self._history: List[HealthReport] = []
        self._max_history = max_history

    async def report_health(
        self,
        scope: HealthScope,
        property_name: str,
        state: HealthState,
        description: str,
        source: str,
        token: Optional[CancellationToken] = None,
        service_name: Optional[str] = None,
        instance_name: Optional[str] = None,
    ) -> None:
        ensure_token(token).raise_if_cancellation_requested()

        report = HealthReport(
            scope=scope,
            property_name=property_name,
            state=state,
            description=description,
            source=source,
            service_name=service_name,
            instance_name=instance_name,
        )
        self._history.append(report)
        if len(self._history) > self._max_history:
            self._history.pop(0)

        logger.log(self._level, f"[{source}] {scope.value}/{property_name} is {state.value}:\n{description}")

    def get_history(self, limit: int = 10) -> List[HealthReport]:
        """Get the most recent reports."""
        return self._history[-limit:]
