import logging
from typing import Optional, Protocol

from ..errors import LedgerConflict
from ..models import DuplicateCheck, Fingerprint, LedgerWrite

logger = logging.getLogger(__name__)


class FingerprintLedger(Protocol):
    def exists(self, message_id: Optional[str], content_sha256: str) -> Optional[str]: ...

    def insert(self, fingerprint: Fingerprint, ref: str) -> None: ...


class DeduplicationGate:
    """Short-circuits inputs whose fingerprint is already in the ledger."""

    def __init__(self, ledger: FingerprintLedger):
        self.ledger = ledger

    def is_duplicate(self, fp: Fingerprint) -> DuplicateCheck:
        # message id first; the ledger falls back to the content hash
        if fp.message_id:
            ref = self.ledger.exists(fp.message_id, "")
            if ref is not None:
                logger.info("duplicate by message-id %s -> %s", fp.message_id, ref)
                return DuplicateCheck(True, ref, "message_id")

        ref = self.ledger.exists(None, fp.content_sha256)
        if ref is not None:
            logger.info("duplicate by content hash %s -> %s", fp.content_sha256[:12], ref)
            return DuplicateCheck(True, ref, "content_sha256")
        return DuplicateCheck(False)

    def record_processed(self, fp: Fingerprint, ref: str) -> LedgerWrite:
        """Insert the ledger row. Never raises: a lost race or a write failure is a status."""
        try:
            self.ledger.insert(fp, ref)
        except LedgerConflict as conflict:
            logger.info("lost ledger race for %s, already recorded as %s", ref, conflict.existing_ref)
            return LedgerWrite(recorded=False, duplicate_of=conflict.existing_ref)
        except Exception as e:  # any backend
            logger.warning("ledger write failed for %s: %s", ref, e)
            return LedgerWrite(recorded=False, warning=f"fingerprint ledger write failed: {e}")
        return LedgerWrite(recorded=True)
