"""
Cluster Observer - Health Diff Engine.

============================================================
RESPONSIBILITY
============================================================
Compares a fresh cluster health snapshot with the previously
recorded aggregated state and decides what to report.

DECISIONS:
- RECOVERY:           back to Ok from Error (or Warning)
- SUPPRESSED_WARNING: Warning while warning details are off
- DEGRADED:           unhealthy evaluations to describe
- NO_REPORT:          nothing worth sending

============================================================
RULES
============================================================
1. Recovery needs emit_ok_health_state, a new Ok state, and a
   previous Error state, or a previous Warning state when
   warning details are emitted.
2. Warning with warning details off is suppressed, but the
   Warning state is still recorded as the new baseline.
3. Ok without a recovery condition reports nothing.
4. Otherwise evaluations are walked in the order supplied,
   one line per evaluation followed by one line per unhealthy
   application. Duplicates are kept.
5. An empty description never produces a report.

The new aggregated state is always the snapshot's state.

============================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .cancellation import CancellationToken, ensure_token
from .constants import (
    AGGREGATED_CLUSTER_HEALTH_PROPERTY,
    CLUSTER_OBSERVER_NAME,
    RECOVERY_DESCRIPTION,
    UNHEALTHY_APPLICATION_PREFIX,
)
from .models import (
    ApplicationHealthState,
    ClusterHealthSnapshot,
    HealthEvaluation,
    HealthReport,
    HealthScope,
    HealthState,
)


logger = logging.getLogger(__name__)


class DiffDecision(str, Enum):
    """Outcome of comparing a snapshot with the previous state."""
    RECOVERY = "recovery"
    DEGRADED = "degraded"
    SUPPRESSED_WARNING = "suppressed_warning"
    NO_REPORT = "no_report"


@dataclass(frozen=True)
class DiffResult:
    """Result of one diff evaluation."""

    new_state: HealthState
    """State to record as the previous state for the next cycle."""

    decision: DiffDecision
    """Why a report was or was not produced."""

    report: Optional[HealthReport] = None
    """Report to dispatch, None when suppressed."""

    @property
    def should_report(self) -> bool:
        """Whether a report must be dispatched."""
        return self.report is not None


class HealthDiffEngine:
    """
    Stateless diff between snapshots and the previous aggregated state.

    The previous state is passed in and the new one returned;
    storing it is the observer's job.
    """

    def __init__(self, source: str = CLUSTER_OBSERVER_NAME) -> None:
        """
        Initialize diff engine.

        Args:
            source: Observer identity written into reports
        """
        self._source = source

    @property
    def source(self) -> str:
        return self._source

    def evaluate(
        self,
        snapshot: ClusterHealthSnapshot,
        previous_state: HealthState,
        emit_warning_details: bool,
        emit_ok_health_state: bool,
        token: Optional[CancellationToken] = None,
    ) -> DiffResult:
        """
        Decide whether the snapshot warrants a report.

        Args:
            snapshot: Freshly fetched cluster health
            previous_state: Last recorded aggregated state
            emit_warning_details: Whether Warning states are reported
            emit_ok_health_state: Whether recovery to Ok is reported
            token: Cancellation token checked before each evaluation

        Returns:
            DiffResult with the new state and optional report

        Raises:
            CycleCancelledError: If cancelled during the evaluation walk
        """
        token = ensure_token(token)
        new_state = snapshot.aggregated_state

        if self.is_recovery(new_state, previous_state, emit_warning_details, emit_ok_health_state):
            logger.info(f"Cluster recovered: {previous_state.value} -> {new_state.value}")
            return DiffResult(
                new_state=new_state,
                decision=DiffDecision.RECOVERY,
                report=self._build_report(HealthState.OK, RECOVERY_DESCRIPTION),
            )

        if new_state == HealthState.WARNING and not emit_warning_details:
            logger.debug("Cluster in Warning and warning details disabled, suppressing report")
            return DiffResult(new_state=new_state, decision=DiffDecision.SUPPRESSED_WARNING)

        if new_state == HealthState.OK:
            return DiffResult(new_state=new_state, decision=DiffDecision.NO_REPORT)

        description = self.describe(snapshot, emit_warning_details, token)

        if not description.strip():
            logger.debug(f"Cluster in {new_state.value} with no unhealthy evaluations to report")
            return DiffResult(new_state=new_state, decision=DiffDecision.NO_REPORT)

        return DiffResult(
            new_state=new_state,
            decision=DiffDecision.DEGRADED,
            report=self._build_report(new_state, description),
        )

    @staticmethod
    def is_recovery(
        new_state: HealthState,
        previous_state: HealthState,
        emit_warning_details: bool,
        emit_ok_health_state: bool,
    ) -> bool:
        """Check the recovery transition condition."""
        if not emit_ok_health_state or new_state != HealthState.OK:
            return False

        return previous_state == HealthState.ERROR or (
            emit_warning_details and previous_state == HealthState.WARNING
        )

    def describe(
        self,
        snapshot: ClusterHealthSnapshot,
        emit_warning_details: bool,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Render the unhealthy evaluations of a snapshot.

        Args:
            snapshot: Cluster health snapshot
            emit_warning_details: Whether Warning applications are listed
            token: Cancellation token checked before each evaluation

        Returns:
            Newline-joined description (may be empty)
        """
        token = ensure_token(token)
        lines: List[str] = []

        for evaluation in snapshot.evaluations:
            token.raise_if_cancellation_requested()

            lines.append(self.format_evaluation(evaluation))

            for app in snapshot.application_states:
                if self._is_reportable_application(app, emit_warning_details):
                    lines.append(f"{UNHEALTHY_APPLICATION_PREFIX}: {app.application_id}")

        return "\n".join(lines)

    @staticmethod
    def format_evaluation(evaluation: HealthEvaluation) -> str:
        """Format one evaluation line."""
        return f"{evaluation.kind} - {evaluation.aggregated_state.value}: {evaluation.description}"

    @staticmethod
    def _is_reportable_application(app: ApplicationHealthState, emit_warning_details: bool) -> bool:
        if app.aggregated_state == HealthState.OK:
            return False
        if not emit_warning_details and app.aggregated_state == HealthState.WARNING:
            return False
        return True

    def _build_report(self, state: HealthState, description: str) -> HealthReport:
        return HealthReport(
            scope=HealthScope.CLUSTER,
            property_name=AGGREGATED_CLUSTER_HEALTH_PROPERTY,
            state=state,
            description=description,
            source=self._source,
        )
