"""Registry of active sync runs keyed by configuration."""

import logging
import threading
import uuid
from typing import Any, Dict, List

from fieldsync.services.errors import SyncInProgressError

logger = logging.getLogger(__name__)


class RunRegistry:
    """Keyed lease: configuration id -> run token.

    A lease is taken before a run is accepted and must be released on every
    terminal transition. Releasing with a stale token is ignored, so a late
    release cannot drop a newer run's lease.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._leases: Dict[int, str] = {}
        self._runs: Dict[int, Any] = {}

    def acquire(self, configuration_id: int) -> str:
        """Take the lease for a configuration.

        Raises:
            SyncInProgressError: If the configuration already has an active run.
        """
        with self._lock:
            if configuration_id in self._leases:
                logger.warning(f"Sync already in progress for configuration {configuration_id}")
                raise SyncInProgressError(
                    f"A sync operation is already in progress for configuration {configuration_id}"
                )
            token = uuid.uuid4().hex
            self._leases[configuration_id] = token
            return token

    def release(self, configuration_id: int, token: str) -> bool:
        with self._lock:
            if self._leases.get(configuration_id) != token:
                return False
            del self._leases[configuration_id]
            self._runs.pop(configuration_id, None)
            return True

    def is_active(self, configuration_id: int) -> bool:
        with self._lock:
            return configuration_id in self._leases

    def attach(self, configuration_id: int, token: str, run: Any) -> None:
        """Associate run details with a held lease."""
        with self._lock:
            if self._leases.get(configuration_id) == token:
                self._runs[configuration_id] = run

    def runs(self) -> List[Any]:
        with self._lock:
            return list(self._runs.values())

    def active(self) -> Dict[int, str]:
        with self._lock:
            return dict(self._leases)


run_registry = RunRegistry()
