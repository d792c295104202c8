"""
Telemetry - Log Analytics Provider.

============================================================
PURPOSE
============================================================
Delivers health reports to an Azure Log Analytics workspace
through the HTTP Data Collector API.

SAFETY FEATURES:
- Request signing (HMAC-SHA256 over a canonical string)
- Fresh date header and signature per request
- Signed content length is the UTF-8 byte length of the body
- Shared key never logged

============================================================
WIRE PROTOCOL
============================================================
POST https://{workspace}.ods.opinsights.azure.com/api/logs?api-version={v}
Content-Type: application/json
Log-Type: {log_type}
x-ms-date: {RFC 1123 UTC date}
Authorization: SharedKey {workspace}:{base64 signature}

Success: HTTP 200 or 202.

============================================================
"""

import asyncio
import base64
import binascii
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Optional
from uuid import uuid4

import aiohttp

from ..cancellation import CancellationToken, ensure_token
from ..clock import ClockProtocol, get_clock
from ..constants import (
    CLUSTER_OBSERVER_NAME,
    LOG_ANALYTICS_API_VERSION,
    LOG_ANALYTICS_CONTENT_TYPE,
    LOG_ANALYTICS_RESOURCE,
    NOT_APPLICABLE,
    REPORT_ID_PREFIX,
)
from ..exceptions import ConfigurationError, DeliveryError
from ..models import HealthScope, HealthState, SignedRequest
from ..sources import ClusterIdentityResolver
from .base import TelemetryProvider
from .logging_utils import mask_headers


logger = logging.getLogger(__name__)


SUCCESS_STATUSES = (200, 202)


# ============================================================
# SIGNING
# ============================================================

def format_rfc1123(moment: datetime) -> str:
    """Format a datetime as an RFC 1123 GMT date (e.g. 'Sun, 06 Nov 1994 08:49:37 GMT')."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return format_datetime(moment.astimezone(timezone.utc), usegmt=True)


def build_signing_string(
    method: str,
    content_length: int,
    content_type: str,
    date: str,
    resource: str,
) -> str:
    """
    Build the canonical string to sign.

    Args:
        method: HTTP method
        content_length: Body length in bytes as transmitted
        content_type: Body content type
        date: x-ms-date header value
        resource: Request path

    Returns:
        Canonical signing string
    """
    return f"{method}\n{content_length}\n{content_type}\nx-ms-date:{date}\n{resource}"


def decode_shared_key(shared_key: str) -> bytes:
    """
    Decode a base64 workspace shared key.

    Raises:
        ConfigurationError: If the key is empty or not valid base64
    """
    if not shared_key:
        raise ConfigurationError("Log Analytics shared key is empty", config_key="SharedKey")

    try:
        return base64.b64decode(shared_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("Log Analytics shared key is not valid base64", config_key="SharedKey") from exc


def compute_signature(shared_key: str, signing_string: str) -> str:
    """
    Compute base64(HMAC-SHA256(base64decode(shared_key), utf8(signing_string))).

    Pure function: identical inputs give identical output.
    """
    digest = hmac.new(
        decode_shared_key(shared_key),
        signing_string.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def build_authorization_header(workspace_id: str, signature: str) -> str:
    """Build the SharedKey authorization header value."""
    return f"SharedKey {workspace_id}:{signature}"


def serialize_document(document: Dict[str, Any]) -> str:
    """Serialize a telemetry document, keeping non-ASCII text as-is."""
    return json.dumps(document, ensure_ascii=False, separators=(",", ":"), default=str)


# ============================================================
# LOG ANALYTICS PROVIDER
# ============================================================

class LogAnalyticsTelemetry(TelemetryProvider):
    """
    Signed HTTP ingestion client for Log Analytics.

    Implements the TelemetryProvider interface.
    """

    def __init__(
        self,
        workspace_id: str,
        shared_key: str,
        log_type: str,
        identity_resolver: Optional[ClusterIdentityResolver] = None,
        api_version: str = LOG_ANALYTICS_API_VERSION,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Optional[ClockProtocol] = None,
        request_timeout_seconds: float = 100.0,
        product_name: str = CLUSTER_OBSERVER_NAME,
    ):
        """
        Initialize provider.

        Args:
            workspace_id: Log Analytics workspace id
            shared_key: Base64 workspace shared key
            log_type: Custom log type (Log-Type header)
            identity_resolver: Cluster identity lookup, not closed here (cluster id "" when None)
            api_version: Data Collector API version
            session: Shared aiohttp session (created lazily when None)
            clock: Clock for document and date header timestamps
            request_timeout_seconds: Total HTTP request timeout
            product_name: Value of the document's source field

        Raises:
            ConfigurationError: If workspace id or shared key are invalid
        """
        if not workspace_id:
            raise ConfigurationError("Log Analytics workspace id is empty", config_key="WorkspaceId")
        decode_shared_key(shared_key)

        self.workspace_id = workspace_id
        self._shared_key = shared_key
        self.log_type = log_type
        self.api_version = api_version
        self._identity_resolver = identity_resolver
        self._clock = clock or get_clock()
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._product_name = product_name

        self._session = session
        self._owns_session = session is None

    @property
    def name(self) -> str:
        return "LogAnalytics"

    @property
    def request_uri(self) -> str:
        return (
            f"https://{self.workspace_id}.ods.opinsights.azure.com"
            f"{LOG_ANALYTICS_RESOURCE}?api-version={self.api_version}"
        )

    # --------------------------------------------------------
    # REPORTING
    # --------------------------------------------------------

    async def report_health(
        self,
        scope: HealthScope,
        property_name: str,
        state: HealthState,
        description: str,
        source: str,
        token: Optional[CancellationToken] = None,
        service_name: Optional[str] = None,
        instance_name: Optional[str] = None,
    ) -> None:
        """
        Serialize a health report and send it.

        Raises:
            DeliveryError: On non-success status or transport failure
            CycleCancelledError: If cancelled before sending
        """
        token = ensure_token(token)
        token.raise_if_cancellation_requested()

        cluster_id = await self._resolve_cluster_id(token)

        document = self.build_document(
            scope=scope,
            property_name=property_name,
            state=state,
            description=description,
            cluster_id=cluster_id,
            service_name=service_name,
            instance_name=instance_name,
        )

        await self.send_json(serialize_document(document), token)

    def build_document(
        self,
        scope: HealthScope,
        property_name: str,
        state: HealthState,
        description: str,
        cluster_id: str = "",
        service_name: Optional[str] = None,
        instance_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Build the telemetry document (field order is the wire order)."""
        return {
            "id": f"{REPORT_ID_PREFIX}{uuid4()}",
            "datetime": self._clock.local_now().isoformat(),
            "clusterId": cluster_id or "",
            "source": self._product_name,
            "property": property_name,
            "healthScope": scope.value,
            "healthState": state.value,
            "healthEvaluation": description,
            "serviceName": service_name if service_name is not None else NOT_APPLICABLE,
            "instanceName": instance_name if instance_name is not None else NOT_APPLICABLE,
        }

    async def send_json(self, body_json: str, token: Optional[CancellationToken] = None) -> None:
        """
        Send an already serialized document.

        An empty document is a no-op.

        Raises:
            DeliveryError: On non-success status or transport failure
            CycleCancelledError: If cancelled before sending
        """
        if not body_json:
            return

        ensure_token(token).raise_if_cancellation_requested()

        request = self.build_request(body_json)
        logger.debug(
            f"POST {request.url} ({request.content_length} bytes) headers={mask_headers(request.headers)}"
        )

        session = self._get_session()

        try:
            async with session.post(
                request.url,
                data=request.body_bytes,
                headers=request.headers,
                timeout=self._timeout,
            ) as response:
                if response.status in SUCCESS_STATUSES:
                    return

                body = await response.text()
                err = f"Exception sending LogAnalytics Telemetry:\n{body}"
                logger.warning(err)
                raise DeliveryError(
                    err,
                    status_code=response.status,
                    response_body=body,
                    provider=self.name,
                )
        except asyncio.TimeoutError as e:
            logger.warning(f"LogAnalytics request timed out: {e!r}")
            raise DeliveryError("LogAnalytics request timed out", provider=self.name) from e
        except aiohttp.ClientError as e:
            logger.warning(f"LogAnalytics request failed: {e}")
            raise DeliveryError(f"LogAnalytics request failed: {e}", provider=self.name) from e

    # --------------------------------------------------------
    # SIGNING
    # --------------------------------------------------------

    def build_request(self, body_json: str, date_header: Optional[str] = None) -> SignedRequest:
        """
        Build a signed request for a serialized document.

        Args:
            body_json: Serialized document
            date_header: RFC 1123 date (current UTC time when None)

        Returns:
            SignedRequest
        """
        body_bytes = body_json.encode("utf-8")
        date_header = date_header or format_rfc1123(self._clock.now())
        signature_header = self.get_signature(len(body_bytes), date_header)

        headers = {
            "Content-Type": LOG_ANALYTICS_CONTENT_TYPE,
            "Log-Type": self.log_type,
            "x-ms-date": date_header,
            "Authorization": signature_header,
        }

        return SignedRequest(
            url=self.request_uri,
            body_json=body_json,
            body_bytes=body_bytes,
            date_header=date_header,
            signature_header=signature_header,
            headers=headers,
        )

    def get_signature(
        self,
        content_length: int,
        date: str,
        method: str = "POST",
        content_type: str = LOG_ANALYTICS_CONTENT_TYPE,
        resource: str = LOG_ANALYTICS_RESOURCE,
    ) -> str:
        """Get the Authorization header value for a request."""
        signing_string = build_signing_string(method, content_length, content_type, date, resource)
        return build_authorization_header(self.workspace_id, compute_signature(self._shared_key, signing_string))

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    async def _resolve_cluster_id(self, token: CancellationToken) -> str:
        if self._identity_resolver is None:
            return ""

        try:
            identity = await self._identity_resolver.get_cluster_id_and_type(token)
        except Exception as e:
            logger.warning(f"Cluster identity lookup failed, sending empty cluster id: {e!r}")
            return ""

        return identity.cluster_id or ""

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this provider created it."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None
