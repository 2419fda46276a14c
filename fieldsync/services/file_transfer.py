"""File transfer agent: checksummed file packaging for a peer."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from fieldsync.services.checksum import checksum_file
from fieldsync.services.file_store import FileStore
from fieldsync.services.remote_client import RemoteSyncClient

logger = logging.getLogger(__name__)


@dataclass
class FilePart:
    """One file tagged for transfer."""

    organization_id: int
    filename: str
    path: str
    checksum: str
    size: int


@dataclass
class FileTransferPlan:
    to_send: List[FilePart] = field(default_factory=list)
    skipped: List[FilePart] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.to_send) + len(self.skipped)

    @property
    def is_empty(self) -> bool:
        return not self.to_send

    def uploads(self) -> List[tuple]:
        return [(part.filename, part.path) for part in self.to_send]

    def checksums(self) -> Dict[str, str]:
        return {part.filename: part.checksum for part in self.to_send}


@dataclass
class FileTransferResult:
    total: int = 0
    verified: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    mismatched: List[str] = field(default_factory=list)

    @property
    def files_synced(self) -> int:
        return len(self.verified) + len(self.skipped)


class FileTransferAgent:
    """Packages an organization's files and verifies what the peer received.

    Files whose checksum already matches the peer's manifest are skipped.
    A sent file only counts as synced when the checksum the peer computed
    on the received bytes equals the one computed here before sending.
    """

    def __init__(self, file_store: FileStore):
        self.file_store = file_store

    def collect(self, organization_id: int) -> List[FilePart]:
        return [
            FilePart(
                organization_id=stored.organization_id,
                filename=stored.filename,
                path=stored.path,
                checksum=checksum_file(stored.path),
                size=stored.size,
            )
            for stored in self.file_store.list_files(organization_id)
        ]

    def plan(self, parts: List[FilePart], remote_manifest: Dict[str, str]) -> FileTransferPlan:
        plan = FileTransferPlan()
        for part in parts:
            if remote_manifest.get(part.filename) == part.checksum:
                plan.skipped.append(part)
            else:
                plan.to_send.append(part)
        logger.info(f"File plan: {len(plan.to_send)} to send, {len(plan.skipped)} already on remote")
        return plan

    async def prepare(self, client: RemoteSyncClient, organization_id: int) -> FileTransferPlan:
        """Collect local files and drop those the peer already holds."""
        parts = self.collect(organization_id)
        if not parts:
            return FileTransferPlan()
        manifest = await client.file_manifest(organization_id)
        return self.plan(parts, manifest)

    def verify(self, plan: FileTransferPlan, response: Dict[str, Any]) -> FileTransferResult:
        """Compare the peer's computed checksums with the ones sent."""
        result = FileTransferResult(total=plan.total, skipped=[p.filename for p in plan.skipped])
        received = {item.get("filename"): item.get("checksum") for item in response.get("files", [])}

        for part in plan.to_send:
            if received.get(part.filename) == part.checksum:
                result.verified.append(part.filename)
            else:
                logger.warning(
                    f"Checksum mismatch for {part.filename}: sent {part.checksum}, "
                    f"remote computed {received.get(part.filename)}"
                )
                result.mismatched.append(part.filename)
        return result
