"""
Blob storage for payment attachments (remittance advice, bank slips).

The workflow only keeps the returned AttachmentRef on the Payment; the
bytes themselves are never read back by the core.
"""
import hashlib
import logging
import re
from pathlib import Path
from typing import Protocol

from models.invoice import AttachmentRef

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class AttachmentStore(Protocol):
    def put(self, data: bytes, name: str) -> AttachmentRef:
        """Store data and return an opaque reference to it."""


class LocalAttachmentStore:
    """
    Content-addressed store on the local filesystem.

    Files live at <root>/<first 2 hex chars>/<sha256>-<name>; storing the same
    bytes twice under the same name is a no-op.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        root.mkdir(parents=True, exist_ok=True)

    def put(self, data: bytes, name: str) -> AttachmentRef:
        digest = hashlib.sha256(data).hexdigest()
        safe_name = _UNSAFE_CHARS.sub("_", Path(name).name) or "attachment"
        rel_path = Path(digest[:2]) / f"{digest}-{safe_name}"
        dest = self.root / rel_path
        if not dest.exists():
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
            logger.debug("Stored attachment %s (%d bytes)", rel_path, len(data))
        return AttachmentRef(
            id=digest,
            name=safe_name,
            size=len(data),
            storage_path=rel_path.as_posix(),
        )

    def path_for(self, ref: AttachmentRef) -> Path:
        return self.root / ref.storage_path
