"""
Cluster Health Observer.

============================================================
PURPOSE
============================================================

Periodically inspects the aggregated health of a cluster,
detects transitions into and out of degraded states, and
forwards a description of each change to a telemetry sink
over a signed HTTP channel.

============================================================
FLOW
============================================================

RunGate -> HealthSnapshotSource -> HealthDiffEngine
        -> TelemetryDispatcher -> LogAnalyticsTelemetry

============================================================
USAGE
============================================================

```python
from cluster_observer import (
    ClusterObserver,
    HttpHealthSnapshotSource,
    TelemetryDispatcher,
    LogAnalyticsTelemetry,
)

provider = LogAnalyticsTelemetry(workspace_id, shared_key, "ClusterObserver")
observer = ClusterObserver(
    source=HttpHealthSnapshotSource("http://localhost:19080"),
    dispatcher=TelemetryDispatcher([provider]),
)

result = await observer.observe()
print(result.status)
```

============================================================
"""

from .models import (
    HealthState,
    HealthScope,
    HealthEvaluation,
    ApplicationHealthState,
    ClusterHealthSnapshot,
    ClusterIdentity,
    ObserverRunState,
    HealthReport,
    SignedRequest,
)
from .exceptions import (
    ErrorKind,
    ObserverError,
    ConfigurationError,
    TransientFetchError,
    DeliveryError,
    FatalError,
    RemoteManagementError,
    CycleCancelledError,
    ClassifiedError,
    classify_fetch_error,
)
from .config import (
    ObserverConfig,
    LogAnalyticsConfig,
    SettingsSource,
    DictSettingsSource,
    YamlSettingsSource,
    load_config,
    load_settings,
    get_config,
    set_config,
)
from .cancellation import CancellationToken
from .clock import ClockProtocol, SystemClock, MockClock
from .run_gate import RunGate, NO_MINIMUM_INTERVAL
from .diff_engine import HealthDiffEngine, DiffDecision, DiffResult
from .sources import (
    HealthSnapshotSource,
    StaticHealthSnapshotSource,
    HttpHealthSnapshotSource,
    ClusterIdentityResolver,
    StaticClusterIdentityResolver,
    HttpClusterIdentityResolver,
)
from .telemetry import (
    TelemetryProvider,
    NullTelemetryProvider,
    LoggingTelemetryProvider,
    TelemetryDispatcher,
    DispatchResult,
    LogAnalyticsTelemetry,
    create_telemetry_providers,
)
from .observer import ClusterObserver, CycleResult, CycleStatus


__version__ = "1.0.0"


__all__ = [
    # Models
    "HealthState",
    "HealthScope",
    "HealthEvaluation",
    "ApplicationHealthState",
    "ClusterHealthSnapshot",
    "ClusterIdentity",
    "ObserverRunState",
    "HealthReport",
    "SignedRequest",
    # Exceptions
    "ErrorKind",
    "ObserverError",
    "ConfigurationError",
    "TransientFetchError",
    "DeliveryError",
    "FatalError",
    "RemoteManagementError",
    "CycleCancelledError",
    "ClassifiedError",
    "classify_fetch_error",
    # Config
    "ObserverConfig",
    "LogAnalyticsConfig",
    "SettingsSource",
    "DictSettingsSource",
    "YamlSettingsSource",
    "load_config",
    "load_settings",
    "get_config",
    "set_config",
    # Core
    "CancellationToken",
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "RunGate",
    "NO_MINIMUM_INTERVAL",
    "HealthDiffEngine",
    "DiffDecision",
    "DiffResult",
    # Sources
    "HealthSnapshotSource",
    "StaticHealthSnapshotSource",
    "HttpHealthSnapshotSource",
    "ClusterIdentityResolver",
    "StaticClusterIdentityResolver",
    "HttpClusterIdentityResolver",
    # Telemetry
    "TelemetryProvider",
    "NullTelemetryProvider",
    "LoggingTelemetryProvider",
    "TelemetryDispatcher",
    "DispatchResult",
    "LogAnalyticsTelemetry",
    "create_telemetry_providers",
    # Observer
    "ClusterObserver",
    "CycleResult",
    "CycleStatus",
]
