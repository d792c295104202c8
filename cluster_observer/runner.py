"""
Cluster Observer - Runner and CLI.

============================================================
USAGE
============================================================
python -m cluster_observer --config settings.yaml
python -m cluster_observer --config settings.yaml --once
cluster-observer --log-level DEBUG --log-format text

The runner drives observer cycles on a fixed sleep cadence;
the RunGate inside the observer decides whether a trigger does
any work. SIGINT/SIGTERM stop the loop after the current cycle.

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from .cancellation import CancellationToken
from .config import ObserverConfig, SettingsSource, load_config, load_settings, set_config
from .exceptions import FatalError
from .observer import ClusterObserver, CycleResult, CycleStatus
from .sources import ClusterIdentityResolver, HttpClusterIdentityResolver, HttpHealthSnapshotSource
from .telemetry import TelemetryDispatcher, create_telemetry_providers


logger = logging.getLogger(__name__)


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up process logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Observer logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("cluster_observer")


# ============================================================
# RUNNER
# ============================================================

class ObserverRunner:
    """Drives observer cycles until cancelled."""

    def __init__(self, observer: ClusterObserver, sleep_seconds: float) -> None:
        self._observer = observer
        self._sleep_seconds = sleep_seconds
        self.cycles = 0

    async def run_once(self, token: Optional[CancellationToken] = None) -> CycleResult:
        """Run a single cycle and log its outcome."""
        result = await self._observer.observe(token)
        self.cycles += 1
        self._log_result(result)
        return result

    async def run(self, token: CancellationToken) -> None:
        """
        Run cycles until the token is cancelled.

        Raises:
            FatalError: If a cycle fails fatally
        """
        logger.info(f"{self._observer.name} started (sleep {self._sleep_seconds}s)")

        while not token.is_cancellation_requested:
            try:
                await self.run_once(token)
            except FatalError as e:
                logger.error(f"{self._observer.name} stopped on fatal error: {e.to_dict()}")
                raise

            await token.wait(self._sleep_seconds)

        logger.info(f"{self._observer.name} stopped after {self.cycles} cycle(s)")

    def _log_result(self, result: CycleResult) -> None:
        if result.status == CycleStatus.REPORTED:
            logger.info(f"Cycle reported {result.report.state.value} ({result.decision.value})")
        elif result.status == CycleStatus.DELIVERY_FAILED:
            logger.warning(f"Cycle delivery failed: {result.error.message if result.error else 'unknown'}")
        elif result.status == CycleStatus.FETCH_FAILED:
            logger.warning(f"Cycle fetch failed: {result.error.message if result.error else 'unknown'}")
        else:
            logger.debug(f"Cycle finished: {result.status.value}")


# ============================================================
# WIRING
# ============================================================

def build_observer(
    config: ObserverConfig,
    settings: SettingsSource,
    identity_resolver: Optional[ClusterIdentityResolver] = None,
) -> ClusterObserver:
    """
    Wire the observer from configuration.

    The identity resolver is borrowed; the caller closes it.
    """
    providers = create_telemetry_providers(config, identity_resolver=identity_resolver)

    return ClusterObserver(
        source=HttpHealthSnapshotSource(config.cluster_endpoint),
        dispatcher=TelemetryDispatcher(providers),
        settings=settings,
        config=config,
    )


# ============================================================
# CLI
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="cluster-observer",
        description="Observe aggregated cluster health and report transitions to Log Analytics",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to YAML settings file",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        default="text",
        choices=["text", "json"],
        help="Log format (default: text)",
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    config = load_config(settings)
    set_config(config)
    logger.info(f"Configuration: {config.to_dict()}")

    token = CancellationToken()
    loop = asyncio.get_running_loop()
    handled = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, f"received {sig.name}")
            handled.append(sig)
        except (NotImplementedError, RuntimeError):
            pass

    identity_resolver = HttpClusterIdentityResolver(config.cluster_endpoint)
    try:
        async with build_observer(config, settings, identity_resolver) as observer:
            runner = ObserverRunner(observer, config.loop_sleep_seconds)
            if args.once:
                result = await runner.run_once(token)
                return 0 if result.succeeded or result.status == CycleStatus.SKIPPED else 1
            await runner.run(token)
    except FatalError:
        return 2
    finally:
        await identity_resolver.close()
        for sig in handled:
            loop.remove_signal_handler(sig)

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Application entrypoint."""
    args = create_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_format)
    return asyncio.run(_run(args))
