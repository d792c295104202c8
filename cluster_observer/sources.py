"""
Cluster Observer - Health and Identity Sources.

============================================================
PURPOSE
============================================================
External collaborators consumed by the observer:

- HealthSnapshotSource: aggregated cluster health on demand
- ClusterIdentityResolver: cluster id / tenant / type lookup

Production implementations talk to the cluster management
plane's HTTP gateway (default port 19080). Static
implementations serve tests and embedding.

============================================================
FAILURE CONTRACT
============================================================
Snapshot sources raise only recoverable errors for expected
problems:
- ValueError:            malformed payload or bad argument
- RemoteManagementError: non-200 answer or connection failure
- TimeoutError:          the bounded fetch timed out

Identity resolvers never raise; they return an empty identity.

============================================================
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Union

import aiohttp

from .cancellation import CancellationToken, ensure_token
from .exceptions import RemoteManagementError
from .models import ClusterHealthSnapshot, ClusterIdentity


logger = logging.getLogger(__name__)


MANAGEMENT_API_VERSION = "6.0"


# ============================================================
# HEALTH SNAPSHOT SOURCES
# ============================================================

class HealthSnapshotSource(ABC):
    """Supplies the aggregated cluster health snapshot."""

    @abstractmethod
    async def get_cluster_health(
        self,
        timeout_seconds: float,
        token: Optional[CancellationToken] = None,
    ) -> ClusterHealthSnapshot:
        """
        Fetch the current cluster health.

        Args:
            timeout_seconds: Upper bound for the fetch
            token: Cancellation token

        Returns:
            ClusterHealthSnapshot
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        return None


class StaticHealthSnapshotSource(HealthSnapshotSource):
    """
    Serves queued snapshots (or exceptions) in order.

    The last item is repeated once the queue is drained.
    """

    def __init__(self, items: Iterable[Union[ClusterHealthSnapshot, BaseException]] = ()) -> None:
        self._items: List[Union[ClusterHealthSnapshot, BaseException]] = list(items)
        self._last: Optional[Union[ClusterHealthSnapshot, BaseException]] = None
        self.calls = 0

    def push(self, item: Union[ClusterHealthSnapshot, BaseException]) -> None:
        """Queue a snapshot or an exception to raise."""
        self._items.append(item)

    async def get_cluster_health(
        self,
        timeout_seconds: float,
        token: Optional[CancellationToken] = None,
    ) -> ClusterHealthSnapshot:
        ensure_token(token).raise_if_cancellation_requested()
        self.calls += 1

        if self._items:
            self._last = self._items.pop(0)

        if self._last is None:
            raise RemoteManagementError("No cluster health snapshot available")

        if isinstance(self._last, BaseException):
            raise self._last

        return self._last


class HttpHealthSnapshotSource(HealthSnapshotSource):
    """
    Cluster health from the management plane HTTP gateway.

    GET {endpoint}/$/GetClusterHealth?api-version=6.0&timeout=N
    """

    def __init__(
        self,
        endpoint: str,
        session: Optional[aiohttp.ClientSession] = None,
        api_version: str = MANAGEMENT_API_VERSION,
    ) -> None:
        """
        Initialize source.

        Args:
            endpoint: Gateway base URL, e.g. http://localhost:19080
            session: Shared aiohttp session (created lazily when None)
            api_version: Management API version
        """
        self._endpoint = endpoint.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._api_version = api_version

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def get_cluster_health(
        self,
        timeout_seconds: float,
        token: Optional[CancellationToken] = None,
    ) -> ClusterHealthSnapshot:
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {timeout_seconds}")

        ensure_token(token).raise_if_cancellation_requested()

        url = f"{self._endpoint}/$/GetClusterHealth"
        params = {"api-version": self._api_version, "timeout": str(max(1, int(timeout_seconds)))}
        session = self._get_session()

        try:
            async with session.get(
                url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=timeout_seconds),
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    raise RemoteManagementError(
                        f"GetClusterHealth failed with HTTP {response.status}",
                        status_code=response.status,
                        response_body=body,
                    )
                payload = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"GetClusterHealth timed out after {timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise RemoteManagementError(f"GetClusterHealth request failed: {e}") from e

        return ClusterHealthSnapshot.from_dict(payload)

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this source created it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None


# ============================================================
# CLUSTER IDENTITY
# ============================================================

class ClusterIdentityResolver(ABC):
    """Resolves the identity of the observed cluster."""

    @abstractmethod
    async def get_cluster_id_and_type(
        self,
        token: Optional[CancellationToken] = None,
    ) -> ClusterIdentity:
        """
        Look up cluster id, tenant id and cluster type.

        Never raises; missing parts are None.
        """
        pass

    async def close(self) -> None:
        """Release resources."""
        return None


class StaticClusterIdentityResolver(ClusterIdentityResolver):
    """Returns a fixed identity."""

    def __init__(
        self,
        cluster_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        cluster_type: Optional[str] = None,
    ) -> None:
        self._identity = ClusterIdentity(cluster_id=cluster_id, tenant_id=tenant_id, cluster_type=cluster_type)

    async def get_cluster_id_and_type(
        self,
        token: Optional[CancellationToken] = None,
    ) -> ClusterIdentity:
        return self._identity


class HttpClusterIdentityResolver(ClusterIdentityResolver):
    """
    Cluster identity from the cluster manifest.

    GET {endpoint}/$/GetClusterManifest?api-version=6.0

    The manifest's Paas section carries ClusterId on managed
    (SFRP) clusters; its absence means a standalone cluster.
    A successful lookup is cached.
    """

    SFRP = "SFRP"
    STANDALONE = "Standalone"

    def __init__(
        self,
        endpoint: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: float = 30.0,
        api_version: str = MANAGEMENT_API_VERSION,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout_seconds = timeout_seconds
        self._api_version = api_version
        self._cached: Optional[ClusterIdentity] = None

    async def get_cluster_id_and_type(
        self,
        token: Optional[CancellationToken] = None,
    ) -> ClusterIdentity:
        if self._cached is not None:
            return self._cached

        if ensure_token(token).is_cancellation_requested:
            return ClusterIdentity()

        try:
            manifest = await self._fetch_manifest()
            identity = self.parse_manifest(manifest)
        except (aiohttp.ClientError, asyncio.TimeoutError, RemoteManagementError, ET.ParseError, ValueError) as e:
            logger.warning(f"Unable to resolve cluster identity: {e}")
            return ClusterIdentity()

        self._cached = identity
        return identity

    async def _fetch_manifest(self) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        async with self._session.get(
            f"{self._endpoint}/$/GetClusterManifest",
            params={"api-version": self._api_version},
            timeout=aiohttp.ClientTimeout(total=self._timeout_seconds),
        ) as response:
            if response.status != 200:
                raise RemoteManagementError(
                    f"GetClusterManifest failed with HTTP {response.status}",
                    status_code=response.status,
                )
            payload = await response.json(content_type=None)

        if not isinstance(payload, dict) or "Manifest" not in payload:
            raise ValueError("GetClusterManifest payload missing Manifest")

        return payload["Manifest"]

    @classmethod
    def parse_manifest(cls, manifest_xml: str) -> ClusterIdentity:
        """
        Extract identity from a cluster manifest.

        Args:
            manifest_xml: Cluster manifest XML document

        Returns:
            ClusterIdentity
        """
        root = ET.fromstring(manifest_xml)
        cluster_id = None
        tenant_id = None

        for section in root.iter():
            if _local_name(section.tag) != "Section" or section.get("Name") != "Paas":
                continue
            for parameter in section:
                if _local_name(parameter.tag) != "Parameter":
                    continue
                if parameter.get("Name") == "ClusterId":
                    cluster_id = parameter.get("Value") or None
                elif parameter.get("Name") == "TenantId":
                    tenant_id = parameter.get("Value") or None

        return ClusterIdentity(
            cluster_id=cluster_id,
            tenant_id=tenant_id,
            cluster_type=cls.SFRP if cluster_id else cls.STANDALONE,
        )

    async def close(self) -> None:
        """Close the HTTP session if this resolver created it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]
