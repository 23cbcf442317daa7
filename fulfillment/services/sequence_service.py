"""
Document Sequence Service
Issues human-readable document numbers such as ALLOC-00001 and PW-00001
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from fulfillment.core.config import settings
from fulfillment.models.system import DocumentSequence

logger = logging.getLogger(__name__)

ALLOCATION_PREFIX = "ALLOC"
WAVE_PREFIX = "PW"
TASK_PREFIX = "PICK"
TRANSACTION_PREFIX = "TXN"

# Movement numbers are issued far more often than other documents
_WIDTHS = {TRANSACTION_PREFIX: 8}


class SequenceGenerator:
    """
    Counter-row number generator.
    The counter row is locked for update, so numbers are unique across
    concurrent transactions and a rolled back transaction does not burn one.
    """

    def __init__(self, db: Session):
        self.db = db

    def next_value(self, prefix: str) -> int:
        seq = self.db.query(DocumentSequence).filter(
            DocumentSequence.prefix == prefix
        ).with_for_update().first()

        if seq is None:
            seq = DocumentSequence(prefix=prefix, next_value=1)
            self.db.add(seq)

        value = seq.next_value
        seq.next_value = value + 1
        self.db.flush()
        return value

    def next_code(self, prefix: str, width: Optional[int] = None) -> str:
        """Return the next code for prefix, e.g. next_code("PW") -> "PW-00001" """
        width = width or _WIDTHS.get(prefix, settings.SEQUENCE_PAD_WIDTH)
        value = self.next_value(prefix)
        code = f"{prefix}-{value:0{width}d}"
        logger.debug(f"Issued document number {code}")
        return code
