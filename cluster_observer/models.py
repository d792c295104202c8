"""
Cluster Observer - Data Models.

============================================================
CORE DATA STRUCTURES
============================================================

Defines all data models for cluster health observation:
- HealthState: Aggregated health state of the cluster
- HealthScope: Entity a telemetry report describes
- HealthEvaluation: One reason behind a non-Ok state
- ApplicationHealthState: Health rollup of one application
- ClusterHealthSnapshot: Immutable snapshot fetched per cycle
- ObserverRunState: Mutable state carried across cycles
- HealthReport: Telemetry event built for a single cycle
- SignedRequest: One signed ingestion request

============================================================
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Union


# =============================================================
# ENUMS
# =============================================================


class HealthState(str, Enum):
    """
    Aggregated health state reported by the cluster management plane.

    Values are the wire names sent in telemetry documents.
    """
    UNKNOWN = "Unknown"
    OK = "Ok"
    WARNING = "Warning"
    ERROR = "Error"

    def is_degraded(self) -> bool:
        """Check if the state counts as degraded."""
        return self in (HealthState.WARNING, HealthState.ERROR)

    @classmethod
    def parse(cls, value: Union["HealthState", str, int]) -> "HealthState":
        """
        Parse a health state from a name or a management plane code.

        Args:
            value: Enum member, case-insensitive name, or numeric code

        Returns:
            HealthState

        Raises:
            ValueError: If the value is not a known health state
        """
        if isinstance(value, HealthState):
            return value

        if isinstance(value, bool):
            raise ValueError(f"Invalid health state: {value!r}")

        if isinstance(value, int):
            if value in _NUMERIC_STATES:
                return _NUMERIC_STATES[value]
            raise ValueError(f"Invalid health state code: {value}")

        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "invalid":
                return cls.UNKNOWN
            for member in cls:
                if member.value.lower() == normalized:
                    return member

        raise ValueError(f"Invalid health state: {value!r}")


# Management plane numeric codes (Invalid = 0, Unknown = 65535)
_NUMERIC_STATES: Dict[int, HealthState] = {
    0: HealthState.UNKNOWN,
    1: HealthState.OK,
    2: HealthState.WARNING,
    3: HealthState.ERROR,
    65535: HealthState.UNKNOWN,
}


class HealthScope(str, Enum):
    """Entity a health report describes."""
    CLUSTER = "Cluster"
    NODE = "Node"
    APPLICATION = "Application"
    SERVICE = "Service"
    PARTITION = "Partition"
    REPLICA = "Replica"
    INSTANCE = "Instance"


# =============================================================
# SNAPSHOT
# =============================================================


@dataclass(frozen=True)
class HealthEvaluation:
    """
    A structured reason contributing to a non-Ok aggregated state.
    """
    kind: str
    aggregated_state: HealthState
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthEvaluation":
        """Build from a REST payload entry (optionally wrapped in HealthEvaluation)."""
        if not isinstance(data, dict):
            raise ValueError(f"Health evaluation must be an object, got {type(data).__name__}")

        inner = data.get("HealthEvaluation", data)
        if not isinstance(inner, dict):
            raise ValueError("HealthEvaluation must be an object")

        try:
            kind = inner["Kind"]
            state = inner["AggregatedHealthState"]
        except KeyError as exc:
            raise ValueError(f"Health evaluation missing field: {exc.args[0]}") from exc

        return cls(
            kind=str(kind),
            aggregated_state=HealthState.parse(state),
            description=str(inner.get("Description") or ""),
        )


@dataclass(frozen=True)
class ApplicationHealthState:
    """Health rollup of one application."""
    application_id: str
    aggregated_state: HealthState

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApplicationHealthState":
        """Build from a REST payload entry."""
        if not isinstance(data, dict):
            raise ValueError(f"Application health state must be an object, got {type(data).__name__}")

        try:
            name = data["Name"]
            state = data["AggregatedHealthState"]
        except KeyError as exc:
            raise ValueError(f"Application health state missing field: {exc.args[0]}") from exc

        return cls(application_id=str(name), aggregated_state=HealthState.parse(state))


@dataclass(frozen=True)
class ClusterHealthSnapshot:
    """
    Aggregated cluster health fetched once per cycle.

    Never mutated after construction. Evaluation order is the
    order supplied by the management plane.
    """
    aggregated_state: HealthState
    evaluations: Tuple[HealthEvaluation, ...] = ()
    application_states: Tuple[ApplicationHealthState, ...] = ()

    def __post_init__(self) -> None:
        """Freeze sequences into tuples."""
        if not isinstance(self.evaluations, tuple):
            object.__setattr__(self, "evaluations", tuple(self.evaluations))
        if not isinstance(self.application_states, tuple):
            object.__setattr__(self, "application_states", tuple(self.application_states))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterHealthSnapshot":
        """
        Build a snapshot from the management plane's cluster health payload.

        Args:
            data: Decoded JSON payload

        Returns:
            ClusterHealthSnapshot

        Raises:
            ValueError: If the payload is malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"Cluster health payload must be an object, got {type(data).__name__}")

        if "AggregatedHealthState" not in data:
            raise ValueError("Cluster health payload missing AggregatedHealthState")

        evaluations = _as_list(data.get("UnhealthyEvaluations"), "UnhealthyEvaluations")
        applications = _as_list(data.get("ApplicationHealthStates"), "ApplicationHealthStates")

        return cls(
            aggregated_state=HealthState.parse(data["AggregatedHealthState"]),
            evaluations=tuple(HealthEvaluation.from_dict(item) for item in evaluations),
            application_states=tuple(ApplicationHealthState.from_dict(item) for item in applications),
        )


def _as_list(value: Optional[Iterable[Any]], name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list")
    return value


# =============================================================
# RUN STATE
# =============================================================


@dataclass
class ObserverRunState:
    """
    State owned by one observer instance across cycles.

    Updated only at the end of a successful cycle.
    """
    last_run_timestamp: Optional[datetime] = None
    previous_aggregated_state: HealthState = HealthState.UNKNOWN

    def copy(self) -> "ObserverRunState":
        """Return an independent copy."""
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "last_run_timestamp": self.last_run_timestamp.isoformat() if self.last_run_timestamp else None,
            "previous_aggregated_state": self.previous_aggregated_state.value,
        }


# =============================================================
# REPORTS
# =============================================================


@dataclass(frozen=True)
class HealthReport:
    """
    Telemetry event describing a cluster health change.

    Built by the diff engine for a single cycle and discarded
    after dispatch.
    """
    scope: HealthScope
    property_name: str
    state: HealthState
    description: str
    source: str
    service_name: Optional[str] = None
    instance_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "scope": self.scope.value,
            "property_name": self.property_name,
            "state": self.state.value,
            "description": self.description,
            "source": self.source,
            "service_name": self.service_name,
            "instance_name": self.instance_name,
        }


@dataclass(frozen=True)
class SignedRequest:
    """
    One signed ingestion request.

    Built fresh per delivery attempt; the date header is part
    of the signature so requests are never reused.
    """
    url: str
    body_json: str
    body_bytes: bytes
    date_header: str
    signature_header: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def content_length(self) -> int:
        """UTF-8 byte length of the body."""
        return len(self.body_bytes)


@dataclass(frozen=True)
class ClusterIdentity:
    """Identity of the observed cluster (any part may be missing)."""
    cluster_id: Optional[str] = None
    tenant_id: Optional[str] = None
    cluster_type: Optional[str] = None
