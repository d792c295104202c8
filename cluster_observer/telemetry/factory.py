"""
Telemetry - Provider Factory.

Builds the ordered provider list from configuration. Missing or
invalid credentials are logged and leave the list empty, which
the observer treats as telemetry disabled.
"""

import logging
from typing import List, Optional

import aiohttp

from ..config import ObserverConfig
from ..exceptions import ConfigurationError
from ..sources import ClusterIdentityResolver
from .base import TelemetryProvider
from .log_analytics import LogAnalyticsTelemetry


logger = logging.getLogger(__name__)


def create_telemetry_providers(
    config: ObserverConfig,
    identity_resolver: Optional[ClusterIdentityResolver] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> List[TelemetryProvider]:
    """
    Create telemetry providers from configuration.

    Args:
        config: Observer configuration
        identity_resolver: Cluster identity lookup for documents
        session: Shared aiohttp session

    Returns:
        Ordered list of providers (may be empty)
    """
    providers: List[TelemetryProvider] = []

    if not config.telemetry_enabled:
        logger.info("Telemetry disabled by configuration")
        return providers

    la = config.log_analytics
    if not la.is_configured:
        logger.warning("Log Analytics workspace id or shared key missing, telemetry disabled")
        return providers

    try:
        providers.append(
            LogAnalyticsTelemetry(
                workspace_id=la.workspace_id,
                shared_key=la.shared_key,
                log_type=la.log_type,
                identity_resolver=identity_resolver,
                api_version=la.api_version,
                session=session,
                product_name=config.observer_name,
            )
        )
    except ConfigurationError as e:
        logger.warning(f"Invalid Log Analytics configuration, telemetry disabled: {e.message}")

    return providers
