"""
Cluster Observer - Telemetry Package.

============================================================
PURPOSE
============================================================
Delivery of cluster health reports to telemetry sinks.

PROVIDERS:
- LogAnalyticsTelemetry: signed HTTP ingestion
- LoggingTelemetryProvider: log output
- NullTelemetryProvider: discard

UTILITIES:
- TelemetryDispatcher: fan-out with per-provider isolation
- create_telemetry_providers: providers from configuration
- Signing helpers for the Data Collector API

============================================================
"""

from .base import (
    TelemetryProvider,
    NullTelemetryProvider,
    LoggingTelemetryProvider,
)
from .dispatcher import (
    TelemetryDispatcher,
    DispatchResult,
    ProviderOutcome,
)
from .log_analytics import (
    LogAnalyticsTelemetry,
    build_signing_string,
    build_authorization_header,
    compute_signature,
    decode_shared_key,
    format_rfc1123,
    serialize_document,
)
from .factory import create_telemetry_providers
from .logging_utils import mask_value, mask_headers


__all__ = [
    "TelemetryProvider",
    "NullTelemetryProvider",
    "LoggingTelemetryProvider",
    "TelemetryDispatcher",
    "DispatchResult",
    "ProviderOutcome",
    "LogAnalyticsTelemetry",
    "build_signing_string",
    "build_authorization_header",
    "compute_signature",
    "decode_shared_key",
    "format_rfc1123",
    "serialize_document",
    "create_telemetry_providers",
    "mask_value",
    "mask_headers",
]
