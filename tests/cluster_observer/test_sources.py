"""
Sources and Models Tests.

============================================================
PURPOSE
============================================================
Tests for payload parsing, snapshot sources, identity lookup,
error classification and cancellation tokens.

============================================================
"""

import asyncio
import threading
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from cluster_observer.cancellation import CancellationToken, ensure_token
from cluster_observer.exceptions import (
    ErrorKind,
    CycleCancelledError,
    FatalError,
    RemoteManagementError,
    TransientFetchError,
    classify_fetch_error,
)
from cluster_observer.models import (
    ClusterHealthSnapshot,
    HealthState,
    ObserverRunState,
)
from cluster_observer.sources import (
    HttpClusterIdentityResolver,
    HttpHealthSnapshotSource,
    StaticHealthSnapshotSource,
)


CLUSTER_HEALTH_PAYLOAD = {
    "AggregatedHealthState": "Error",
    "UnhealthyEvaluations": [
        {
            "HealthEvaluation": {
                "Kind": "Nodes",
                "AggregatedHealthState": "Error",
                "Description": "Unhealthy nodes: 1 of 5",
            }
        },
        {
            "Kind": "Applications",
            "AggregatedHealthState": 2,
            "Description": "Unhealthy applications: 1 of 3",
        },
    ],
    "ApplicationHealthStates": [
        {"Name": "fabric:/System", "AggregatedHealthState": "Ok"},
        {"Name": "fabric:/Orders", "AggregatedHealthState": "Error"},
    ],
}

SFRP_MANIFEST = """<ClusterManifest xmlns="http://schemas.microsoft.com/2011/01/fabric" Name="cluster">
  <FabricSettings>
    <Section Name="Security">
      <Parameter Name="ClusterId" Value="not-this-one" />
    </Section>
    <Section Name="Paas">
      <Parameter Name="ClusterId" Value="c0ffee00-1111-2222-3333-444455556666" />
      <Parameter Name="TenantId" Value="tenant-1" />
    </Section>
  </FabricSettings>
</ClusterManifest>
"""

STANDALONE_MANIFEST = """<ClusterManifest Name="dev">
  <FabricSettings>
    <Section Name="Setup"><Parameter Name="FabricDataRoot" Value="C:\\data" /></Section>
  </FabricSettings>
</ClusterManifest>
"""


def make_get_session(status=200, payload=None, text=""):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get = MagicMock(return_value=context)
    session.close = AsyncMock()
    return session


# =============================================================
# MODELS
# =============================================================


class TestHealthState:
    """Tests for HealthState parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("Ok", HealthState.OK),
        ("warning", HealthState.WARNING),
        ("ERROR", HealthState.ERROR),
        ("Unknown", HealthState.UNKNOWN),
        ("Invalid", HealthState.UNKNOWN),
        (1, HealthState.OK),
        (3, HealthState.ERROR),
        (65535, HealthState.UNKNOWN),
        (HealthState.WARNING, HealthState.WARNING),
    ])
    def test_parse(self, value, expected):
        assert HealthState.parse(value) == expected

    @pytest.mark.parametrize("value", ["Healthy", 7, True, None])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            HealthState.parse(value)

    def test_is_degraded(self):
        assert HealthState.ERROR.is_degraded()
        assert HealthState.WARNING.is_degraded()
        assert not HealthState.OK.is_degraded()
        assert not HealthState.UNKNOWN.is_degraded()


class TestSnapshotParsing:
    """Tests for ClusterHealthSnapshot.from_dict."""

    def test_from_dict(self):
        snapshot = ClusterHealthSnapshot.from_dict(CLUSTER_HEALTH_PAYLOAD)

        assert snapshot.aggregated_state == HealthState.ERROR
        assert [e.kind for e in snapshot.evaluations] == ["Nodes", "Applications"]
        assert snapshot.evaluations[1].aggregated_state == HealthState.WARNING
        assert snapshot.application_states[1].application_id == "fabric:/Orders"
        assert isinstance(snapshot.evaluations, tuple)

    def test_minimal_payload(self):
        snapshot = ClusterHealthSnapshot.from_dict({"AggregatedHealthState": "Ok"})

        assert snapshot.aggregated_state == HealthState.OK
        assert snapshot.evaluations == ()
        assert snapshot.application_states == ()

    @pytest.mark.parametrize("payload", [
        [],
        {},
        {"AggregatedHealthState": "Sideways"},
        {"AggregatedHealthState": "Ok", "UnhealthyEvaluations": "none"},
        {"AggregatedHealthState": "Ok", "UnhealthyEvaluations": [{"Kind": "Node"}]},
        {"AggregatedHealthState": "Ok", "ApplicationHealthStates": [{"AggregatedHealthState": "Ok"}]},
    ])
    def test_malformed_payload(self, payload):
        with pytest.raises(ValueError):
            ClusterHealthSnapshot.from_dict(payload)

    def test_lists_frozen(self):
        snapshot = ClusterHealthSnapshot(HealthState.OK, evaluations=[], application_states=[])
        assert snapshot.evaluations == ()
        assert snapshot.application_states == ()

    def test_run_state_copy_is_independent(self):
        state = ObserverRunState()
        copy = state.copy()
        copy.previous_aggregated_state = HealthState.ERROR

        assert state.previous_aggregated_state == HealthState.UNKNOWN
        assert state.to_dict() == {"last_run_timestamp": None, "previous_aggregated_state": "Unknown"}


# =============================================================
# SNAPSHOT SOURCES
# =============================================================


class TestStaticSource:
    """Tests for StaticHealthSnapshotSource."""

    @pytest.mark.asyncio
    async def test_serves_in_order_then_repeats(self):
        first = ClusterHealthSnapshot(HealthState.ERROR)
        second = ClusterHealthSnapshot(HealthState.OK)
        source = StaticHealthSnapshotSource([first, second])

        assert await source.get_cluster_health(60) is first
        assert await source.get_cluster_health(60) is second
        assert await source.get_cluster_health(60) is second
        assert source.calls == 3

    @pytest.mark.asyncio
    async def test_empty_source_raises(self):
        with pytest.raises(RemoteManagementError):
            await StaticHealthSnapshotSource().get_cluster_health(60)


class TestHttpSource:
    """Tests for HttpHealthSnapshotSource."""

    @pytest.mark.asyncio
    async def test_fetch(self):
        session = make_get_session(200, CLUSTER_HEALTH_PAYLOAD)
        source = HttpHealthSnapshotSource("http://cluster:19080/", session=session)

        snapshot = await source.get_cluster_health(30)

        assert snapshot.aggregated_state == HealthState.ERROR
        args, kwargs = session.get.call_args
        assert args[0] == "http://cluster:19080/$/GetClusterHealth"
        assert kwargs["params"] == {"api-version": "6.0", "timeout": "30"}

    @pytest.mark.asyncio
    async def test_non_200(self):
        session = make_get_session(503, text="gateway busy")
        source = HttpHealthSnapshotSource("http://cluster:19080", session=session)

        with pytest.raises(RemoteManagementError) as exc_info:
            await source.get_cluster_health(30)

        assert exc_info.value.status_code == 503
        assert exc_info.value.response_body == "gateway busy"

    @pytest.mark.asyncio
    async def test_invalid_timeout(self):
        source = HttpHealthSnapshotSource("http://cluster:19080", session=make_get_session())

        with pytest.raises(ValueError):
            await source.get_cluster_health(0)

    @pytest.mark.asyncio
    async def test_timeout_mapped(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=asyncio.TimeoutError())
        source = HttpHealthSnapshotSource("http://cluster:19080", session=session)

        with pytest.raises(TimeoutError):
            await source.get_cluster_health(5)

    @pytest.mark.asyncio
    async def test_connection_error_mapped(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        source = HttpHealthSnapshotSource("http://cluster:19080", session=session)

        with pytest.raises(RemoteManagementError):
            await source.get_cluster_health(5)

    @pytest.mark.asyncio
    async def test_cancelled(self):
        session = make_get_session(200, CLUSTER_HEALTH_PAYLOAD)
        source = HttpHealthSnapshotSource("http://cluster:19080", session=session)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CycleCancelledError):
            await source.get_cluster_health(30, token)

        session.get.assert_not_called()


# =============================================================
# CLUSTER IDENTITY
# =============================================================


class TestClusterIdentity:
    """Tests for HttpClusterIdentityResolver."""

    def test_parse_sfrp_manifest(self):
        identity = HttpClusterIdentityResolver.parse_manifest(SFRP_MANIFEST.strip())

        assert identity.cluster_id == "c0ffee00-1111-2222-3333-444455556666"
        assert identity.tenant_id == "tenant-1"
        assert identity.cluster_type == "SFRP"

    def test_parse_standalone_manifest(self):
        identity = HttpClusterIdentityResolver.parse_manifest(STANDALONE_MANIFEST)

        assert identity.cluster_id is None
        assert identity.cluster_type == "Standalone"

    @pytest.mark.asyncio
    async def test_lookup_cached(self):
        session = make_get_session(200, {"Manifest": SFRP_MANIFEST.strip()})
        resolver = HttpClusterIdentityResolver("http://cluster:19080", session=session)

        first = await resolver.get_cluster_id_and_type()
        second = await resolver.get_cluster_id_and_type()

        assert first == second
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_empty(self):
        session = make_get_session(500)
        resolver = HttpClusterIdentityResolver("http://cluster:19080", session=session)

        identity = await resolver.get_cluster_id_and_type()

        assert identity.cluster_id is None
        assert identity.cluster_type is None


# =============================================================
# ERROR CLASSIFICATION
# =============================================================


class TestClassifyFetchError:
    """Tests for classify_fetch_error."""

    @pytest.mark.parametrize("exc", [
        RemoteManagementError("down"),
        ValueError("bad"),
        TypeError("bad"),
        TimeoutError("slow"),
        asyncio.TimeoutError(),
    ])
    def test_transient(self, exc):
        classified = classify_fetch_error(exc)

        assert classified.kind == ErrorKind.TRANSIENT_FETCH
        assert isinstance(classified.error, TransientFetchError)
        assert classified.error.original_exception is exc
        assert classified.is_recoverable

    def test_cancelled(self):
        exc = CycleCancelledError()
        classified = classify_fetch_error(exc)

        assert classified.kind == ErrorKind.CANCELLED
        assert classified.error is exc

    def test_fatal(self):
        classified = classify_fetch_error(KeyError("missing"))

        assert classified.kind == ErrorKind.FATAL
        assert isinstance(classified.error, FatalError)
        assert not classified.is_recoverable


# =============================================================
# CANCELLATION
# =============================================================


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel(self):
        token = CancellationToken()
        token.cancel("shutdown")

        assert token.is_cancellation_requested
        assert token.reason == "shutdown"
        with pytest.raises(CycleCancelledError):
            token.raise_if_cancellation_requested()

    def test_default_token_never_cancelled(self):
        token = ensure_token(None)
        token.cancel()

        assert not token.is_cancellation_requested

    @pytest.mark.asyncio
    async def test_wait_timeout(self):
        assert await CancellationToken().wait(0.05) is False

    @pytest.mark.asyncio
    async def test_wait_returns_on_cancel(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        assert await token.wait(5) is True

    @pytest.mark.asyncio
    async def test_wait_wakes_immediately_from_thread(self):
        """A cancel from another thread wakes the waiter without polling delay."""
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        timer = threading.Timer(0.02, token.cancel, args=("signal",))

        started = loop.time()
        timer.start()
        try:
            cancelled = await token.wait(5)
        finally:
            timer.join()

        assert cancelled is True
        assert loop.time() - started < 0.5
        assert token.reason == "signal"

    @pytest.mark.asyncio
    async def test_wait_after_cancel_returns_at_once(self):
        token = CancellationToken()
        token.cancel()

        assert await token.wait() is True

    @pytest.mark.asyncio
    async def test_concurrent_waiters_all_woken(self):
        token = CancellationToken()
        waiters = [asyncio.ensure_future(token.wait(5)) for _ in range(3)]
        await asyncio.sleep(0)

        token.cancel()

        assert await asyncio.gather(*waiters) == [True, True, True]
