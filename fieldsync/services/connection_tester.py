"""Connection tester for prospective sync peers."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fieldsync.services.errors import SyncConnectionError
from fieldsync.services.remote_client import RemoteSyncClient

logger = logging.getLogger(__name__)


@dataclass
class ConnectionTestResult:
    """Outcome of a connection probe."""

    success: bool
    server_version: Optional[str] = None
    database: Optional[str] = None
    server_time: Optional[str] = None
    failure: Optional[str] = None  # Unreachable, Unauthorized, Timeout
    message: str = ""


class ConnectionTester:
    """Probes a peer's status endpoint with the supplied credentials."""

    def __init__(self, client_factory: Callable[..., RemoteSyncClient] = RemoteSyncClient):
        self.client_factory = client_factory

    async def test(
        self,
        server_url: str,
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> ConnectionTestResult:
        """Send one authenticated health probe.

        Nothing is persisted; failures are reported in the result rather
        than raised.
        """
        try:
            async with self.client_factory(
                server_url,
                api_key=api_key,
                username=username,
                password=password,
                retry_attempts=1,
            ) as client:
                status = await client.status()
        except SyncConnectionError as e:
            logger.warning(f"Connection test to {server_url} failed ({e.kind}): {e}")
            return ConnectionTestResult(success=False, failure=e.kind, message=str(e))

        version = status.get("version")
        logger.info(f"Connection test to {server_url} succeeded (version {version})")
        return ConnectionTestResult(
            success=True,
            server_version=version,
            database=status.get("database"),
            server_time=status.get("serverTime"),
            message="Connection successful",
        )
