"""HTTP client for a remote receiver service."""

import json
import logging
from contextlib import ExitStack
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from fieldsync.config import settings
from fieldsync.services.errors import (
    ApplyError,
    PeerTimeoutError,
    PeerUnauthorizedError,
    PeerUnreachableError,
    SyncConnectionError,
)
from fieldsync.services.record_source import TableSpec

logger = logging.getLogger(__name__)

# (filename, path on disk)
FileUpload = Tuple[str, str]


class RemoteSyncClient:
    """Client for the receiver's `/api/sync/*` endpoints.

    Must be used as an async context manager. Timeouts and network errors
    are retried up to `retry_attempts` times with exponential backoff; a
    value of 1 disables retries.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_max_wait: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.username = username
        self.password = password
        self.timeout = timeout or settings.sync_timeout_seconds
        self.retry_attempts = max(1, retry_attempts or settings.sync_retry_attempts)
        self.retry_max_wait = retry_max_wait or settings.sync_retry_max_wait
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _auth_headers(self) -> Dict[str, str]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.username and self.password:
            headers["X-Username"] = self.username
            headers["X-Password"] = self.password
        return headers

    async def __aenter__(self):
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._auth_headers(),
            transport=self.transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("RemoteSyncClient must be used as async context manager")
        return self._client

    async def _send(self, method: str, endpoint: str, files: Optional[Sequence[FileUpload]] = None, **kwargs) -> httpx.Response:
        client = self._get_client()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=self.retry_max_wait),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            reraise=True,
        ):
            with attempt:
                with ExitStack() as stack:
                    if files is not None:
                        kwargs["files"] = [
                            ("files", (filename, stack.enter_context(open(path, "rb")), "application/octet-stream"))
                            for filename, path in files
                        ]
                    return await client.request(method, endpoint, **kwargs)

    async def _request(
        self,
        method: str,
        endpoint: str,
        apply_errors: bool = False,
        **kwargs,
    ) -> Dict[str, Any]:
        """Make a request and map failures to sync errors.

        Raises:
            PeerTimeoutError: If the request timed out.
            PeerUnreachableError: If the peer could not be reached.
            PeerUnauthorizedError: If the peer rejected the credentials.
            ApplyError: If `apply_errors` is set and the peer rolled back.
            SyncConnectionError: For any other unexpected response.
        """
        try:
            response = await self._send(method, endpoint, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout for {method} {self.base_url}{endpoint}")
            raise PeerTimeoutError(f"Request to {self.base_url} timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            logger.error(f"Network error for {method} {self.base_url}{endpoint}: {e}")
            raise PeerUnreachableError(f"Cannot reach {self.base_url}: {e}") from e

        if response.status_code in (401, 403):
            logger.error(f"Authentication rejected by {self.base_url} ({response.status_code})")
            raise PeerUnauthorizedError(f"Remote server rejected credentials ({response.status_code})")

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            error = error or (data.get("detail") if isinstance(data, dict) else None) or response.text[:200]
            logger.error(f"HTTP error {response.status_code} for {method} {endpoint}: {error}")
            if apply_errors and isinstance(data, dict) and data.get("success") is False:
                raise ApplyError(str(error), failed_index=data.get("failedIndex"))
            raise SyncConnectionError(f"Remote returned HTTP {response.status_code}: {error}")

        if not isinstance(data, dict):
            raise SyncConnectionError(f"Remote returned a non-JSON response for {endpoint}")
        return data

    async def status(self) -> Dict[str, Any]:
        """Fetch liveness, backing-store status and server version."""
        return await self._request("GET", "/api/sync/status")

    async def apply_database(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a database payload in one remote transaction."""
        return await self._request("POST", "/api/sync/database", apply_errors=True, json=body)

    async def upload_files(
        self,
        organization_id: int,
        uploads: Sequence[FileUpload],
        checksums: Dict[str, str],
    ) -> Dict[str, Any]:
        """Upload files for one organization as a multipart payload."""
        data = {"organizationId": str(organization_id), "checksums": json.dumps(checksums)}
        return await self._request("POST", "/api/sync/files", files=uploads, data=data)

    async def receive(
        self,
        body: Dict[str, Any],
        uploads: Sequence[FileUpload],
        checksums: Dict[str, str],
    ) -> Dict[str, Any]:
        """Send a database payload and files in one combined request."""
        data = {
            "organizationId": str(body["organizationId"]),
            "database": json.dumps(body),
            "checksums": json.dumps(checksums),
        }
        return await self._request("POST", "/api/sync/receive", apply_errors=True, files=uploads, data=data)

    async def file_manifest(self, organization_id: int) -> Dict[str, str]:
        """Return `{filename: checksum}` already stored on the remote."""
        data = await self._request("GET", "/api/sync/files", params={"organizationId": organization_id})
        return data.get("files", {})

    async def fetch_records(self, organization_id: int, tables: List[TableSpec]) -> Dict[str, List[Dict[str, Any]]]:
        """Pull the remote's current rows for the given tables."""
        body = {
            "organizationId": organization_id,
            "tables": [{"table": spec.name, "primaryKey": spec.primary_key} for spec in tables],
        }
        data = await self._request("POST", "/api/sync/records", json=body)
        return data.get("records", {})
