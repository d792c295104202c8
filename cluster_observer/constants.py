"""
Cluster Observer - Constants.

============================================================
RESPONSIBILITY
============================================================
Fixed names shared across the observer, the diff engine and
the telemetry providers.

- Observer identity and report property names
- Configuration section and setting keys
- Telemetry document sentinels

============================================================
"""


# ============================================================
# OBSERVER IDENTITY
# ============================================================

CLUSTER_OBSERVER_NAME = "ClusterObserver"

AGGREGATED_CLUSTER_HEALTH_PROPERTY = "AggregatedClusterHealth"

RECOVERY_DESCRIPTION = "Cluster has recovered from previous Error/Warning state."

UNHEALTHY_APPLICATION_PREFIX = "Application in Error or Warning"


# ============================================================
# CONFIGURATION
# ============================================================

CLUSTER_OBSERVER_CONFIGURATION_SECTION = "ClusterObserverConfiguration"

EMIT_HEALTH_WARNING_EVALUATION_SETTING = "EmitHealthWarningEvaluationDetails"
EMIT_OK_HEALTH_STATE_SETTING = "EmitOkHealthStateTelemetry"

RUN_INTERVAL_SETTING = "RunInterval"
CLUSTER_OPERATION_TIMEOUT_SETTING = "ClusterOperationTimeoutSeconds"
ENABLE_TELEMETRY_SETTING = "EnableTelemetry"
CLUSTER_ENDPOINT_SETTING = "ClusterEndpoint"
LOOP_SLEEP_SETTING = "LoopSleepSeconds"

LOG_ANALYTICS_SECTION = "LogAnalytics"
LOG_ANALYTICS_WORKSPACE_ID_SETTING = "WorkspaceId"
LOG_ANALYTICS_SHARED_KEY_SETTING = "SharedKey"
LOG_ANALYTICS_LOG_TYPE_SETTING = "LogType"
LOG_ANALYTICS_API_VERSION_SETTING = "ApiVersion"

DEFAULT_CLUSTER_ENDPOINT = "http://localhost:19080"
DEFAULT_CLUSTER_OPERATION_TIMEOUT_SECONDS = 60.0
DEFAULT_LOOP_SLEEP_SECONDS = 30.0


# ============================================================
# TELEMETRY
# ============================================================

REPORT_ID_PREFIX = "CO_"

NOT_APPLICABLE = "N/A"

LOG_ANALYTICS_API_VERSION = "2016-04-01"
LOG_ANALYTICS_RESOURCE = "/api/logs"
LOG_ANALYTICS_CONTENT_TYPE = "application/json"
