"""
Cluster Observer - Run Gate.

============================================================
RESPONSIBILITY
============================================================
Decides whether a scheduler trigger should run a cycle.

- No configured interval: every trigger runs
- Never ran before: the trigger runs
- Otherwise: runs once the interval has fully elapsed

A closed gate is a silent no-op, not an error. The caller
records the new last-run timestamp only after the cycle
completes successfully, so a failed cycle retries sooner.

============================================================
"""

from datetime import datetime, timedelta
from typing import Optional


# Sentinel for "no minimum interval"
NO_MINIMUM_INTERVAL: Optional[timedelta] = None


class RunGate:
    """Run-interval gating for observer cycles."""

    @staticmethod
    def should_run(
        interval: Optional[timedelta],
        last_run: Optional[datetime],
        now: datetime,
    ) -> bool:
        """
        Check if a cycle should execute now.

        Args:
            interval: Minimum time between cycles (None = no minimum)
            last_run: When the last successful cycle ran (None = never)
            now: Current time

        Returns:
            True if the cycle should run
        """
        if interval is NO_MINIMUM_INTERVAL:
            return True

        if last_run is None:
            return True

        return now - last_run >= interval

    @staticmethod
    def time_until_next_run(
        interval: Optional[timedelta],
        last_run: Optional[datetime],
        now: datetime,
    ) -> timedelta:
        """Time left until the gate opens (zero when already open)."""
        if interval is NO_MINIMUM_INTERVAL or last_run is None:
            return timedelta(0)

        remaining = interval - (now - last_run)
        return max(remaining, timedelta(0))
