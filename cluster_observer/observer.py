"""
Cluster Observer - Observation Cycle.

============================================================
RESPONSIBILITY
============================================================
Runs one observation cycle per scheduler trigger:

    RunGate -> HealthSnapshotSource -> HealthDiffEngine
            -> TelemetryDispatcher -> providers

- Owns the ObserverRunState (last run, previous state)
- Serializes cycles with a single lock
- Classifies fetch failures at the fetch boundary

============================================================
STATE UPDATES
============================================================
The run state changes only when a cycle completes:
- NO_REPORT, SUPPRESSED, REPORTED: previous state and last run
  are both recorded
- TELEMETRY_DISABLED: last run is recorded
- DELIVERY_FAILED: previous state is recorded, last run is not,
  so the next trigger runs a new cycle
- SKIPPED, CANCELLED, FETCH_FAILED: nothing changes
- FatalError: raised, nothing changes

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .cancellation import CancellationToken, ensure_token
from .clock import ClockProtocol, get_clock
from .config import DictSettingsSource, ObserverConfig, SettingsSource
from .constants import (
    CLUSTER_OBSERVER_CONFIGURATION_SECTION,
    EMIT_HEALTH_WARNING_EVALUATION_SETTING,
    EMIT_OK_HEALTH_STATE_SETTING,
)
from .diff_engine import DiffDecision, HealthDiffEngine
from .exceptions import (
    CycleCancelledError,
    ErrorKind,
    ObserverError,
    classify_fetch_error,
)
from .models import HealthReport, HealthState, ObserverRunState
from .run_gate import RunGate
from .sources import HealthSnapshotSource
from .telemetry.dispatcher import DispatchResult, TelemetryDispatcher


logger = logging.getLogger(__name__)


class CycleStatus(str, Enum):
    """Outcome of one observer cycle."""
    SKIPPED = "skipped"
    TELEMETRY_DISABLED = "telemetry_disabled"
    CANCELLED = "cancelled"
    FETCH_FAILED = "fetch_failed"
    NO_REPORT = "no_report"
    SUPPRESSED = "suppressed"
    REPORTED = "reported"
    DELIVERY_FAILED = "delivery_failed"


@dataclass(frozen=True)
class CycleResult:
    """Result of one observer cycle."""

    status: CycleStatus
    started_at: datetime
    decision: Optional[DiffDecision] = None
    report: Optional[HealthReport] = None
    dispatch: Optional[DispatchResult] = None
    error: Optional[ObserverError] = None

    @property
    def succeeded(self) -> bool:
        """Whether the cycle completed and its state was recorded."""
        return self.status in (
            CycleStatus.TELEMETRY_DISABLED,
            CycleStatus.NO_REPORT,
            CycleStatus.SUPPRESSED,
            CycleStatus.REPORTED,
        )


class ClusterObserver:
    """
    Observes aggregated cluster health and reports transitions.

    One instance owns one ObserverRunState; cycles on the same
    instance never overlap.
    """

    def __init__(
        self,
        source: HealthSnapshotSource,
        dispatcher: TelemetryDispatcher,
        settings: Optional[SettingsSource] = None,
        config: Optional[ObserverConfig] = None,
        diff_engine: Optional[HealthDiffEngine] = None,
        clock: Optional[ClockProtocol] = None,
        run_state: Optional[ObserverRunState] = None,
    ):
        """
        Initialize observer.

        Args:
            source: Cluster health snapshot source
            dispatcher: Telemetry dispatcher
            settings: Settings source for the emit toggles
            config: Observer configuration
            diff_engine: Diff engine (built from the observer name when None)
            clock: Clock for run gating
            run_state: Initial run state
        """
        self._config = config or ObserverConfig()
        self._source = source
        self._dispatcher = dispatcher
        self._settings = settings or DictSettingsSource()
        self._diff_engine = diff_engine or HealthDiffEngine(source=self._config.observer_name)
        self._clock = clock or get_clock()
        self._state = run_state or ObserverRunState()
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._config.observer_name

    @property
    def config(self) -> ObserverConfig:
        return self._config

    @property
    def run_state(self) -> ObserverRunState:
        """Copy of the current run state."""
        return self._state.copy()

    @property
    def is_telemetry_enabled(self) -> bool:
        return self._config.telemetry_enabled and self._dispatcher.has_providers

    # --------------------------------------------------------
    # CYCLE
    # --------------------------------------------------------

    async def observe(self, token: Optional[CancellationToken] = None) -> CycleResult:
        """
        Run one observation cycle.

        Args:
            token: Cancellation token

        Returns:
            CycleResult

        Raises:
            FatalError: If the snapshot fetch failed unexpectedly
        """
        async with self._lock:
            return await self._observe(ensure_token(token))

    async def _observe(self, token: CancellationToken) -> CycleResult:
        now = self._clock.now()

        if not RunGate.should_run(self._config.run_interval, self._state.last_run_timestamp, now):
            remaining = RunGate.time_until_next_run(
                self._config.run_interval, self._state.last_run_timestamp, now
            )
            logger.debug(f"{self.name}: run interval not elapsed, next run in {remaining}")
            return CycleResult(status=CycleStatus.SKIPPED, started_at=now)

        if token.is_cancellation_requested:
            return CycleResult(status=CycleStatus.CANCELLED, started_at=now)

        if not self.is_telemetry_enabled:
            logger.debug(f"{self.name}: telemetry disabled, nothing to report")
            self._state.last_run_timestamp = now
            return CycleResult(status=CycleStatus.TELEMETRY_DISABLED, started_at=now)

        self._settings.reload()
        emit_warning_details = self._settings.get_boolean_setting(
            CLUSTER_OBSERVER_CONFIGURATION_SECTION, EMIT_HEALTH_WARNING_EVALUATION_SETTING
        )
        emit_ok_health_state = self._settings.get_boolean_setting(
            CLUSTER_OBSERVER_CONFIGURATION_SECTION, EMIT_OK_HEALTH_STATE_SETTING
        )

        # Fetch
        try:
            snapshot = await self._source.get_cluster_health(
                self._config.cluster_operation_timeout_seconds, token
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classified = classify_fetch_error(e)

            if classified.kind == ErrorKind.CANCELLED:
                logger.info(f"{self.name}: cycle cancelled during cluster health fetch")
                return CycleResult(status=CycleStatus.CANCELLED, started_at=now, error=classified.error)

            logger.error(f"Unable to determine cluster health:\n{e!r}")

            if classified.is_recoverable:
                return CycleResult(status=CycleStatus.FETCH_FAILED, started_at=now, error=classified.error)

            raise classified.error from e

        # Diff
        previous_state = self._state.previous_aggregated_state
        try:
            diff = self._diff_engine.evaluate(
                snapshot,
                previous_state,
                emit_warning_details=emit_warning_details,
                emit_ok_health_state=emit_ok_health_state,
                token=token,
            )
        except CycleCancelledError as e:
            logger.info(f"{self.name}: cycle cancelled while describing cluster health")
            return CycleResult(status=CycleStatus.CANCELLED, started_at=now, error=e)

        if diff.report is None:
            self._commit(diff.new_state, now)
            status = CycleStatus.SUPPRESSED if diff.decision == DiffDecision.SUPPRESSED_WARNING else CycleStatus.NO_REPORT
            return CycleResult(status=status, started_at=now, decision=diff.decision)

        # Dispatch
        dispatch = await self._dispatcher.dispatch(diff.report, token)

        if dispatch.cancelled:
            return CycleResult(
                status=CycleStatus.CANCELLED,
                started_at=now,
                decision=diff.decision,
                report=diff.report,
                dispatch=dispatch,
            )

        if not dispatch.succeeded:
            error = dispatch.first_error
            self._record_state(diff.new_state)
            logger.warning(
                f"{self.name}: {len(dispatch.failures)} telemetry provider(s) failed, "
                f"last run kept at {self._state.last_run_timestamp}"
            )
            return CycleResult(
                status=CycleStatus.DELIVERY_FAILED,
                started_at=now,
                decision=diff.decision,
                report=diff.report,
                dispatch=dispatch,
                error=error,
            )

        self._commit(diff.new_state, now)
        return CycleResult(
            status=CycleStatus.REPORTED,
            started_at=now,
            decision=diff.decision,
            report=diff.report,
            dispatch=dispatch,
        )

    def _commit(self, new_state: HealthState, now: datetime) -> None:
        self._record_state(new_state)
        self._state.last_run_timestamp = now

    def _record_state(self, new_state: HealthState) -> None:
        if new_state != self._state.previous_aggregated_state:
            logger.info(
                f"{self.name}: aggregated cluster health "
                f"{self._state.previous_aggregated_state.value} -> {new_state.value}"
            )
        self._state.previous_aggregated_state = new_state

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def close(self) -> None:
        """Close the snapshot source and all providers."""
        await self._source.close()
        await self._dispatcher.close()

    async def __aenter__(self) -> "ClusterObserver":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
