"""Transaction store: per-correlation-id buffers and their idle eviction."""

import logging
from dataclasses import dataclass, field

from correlator.models import Record

logger = logging.getLogger(__name__)


@dataclass
class Transaction:
    correlation_id: str
    triggered: bool = False
    records: list[Record] = field(default_factory=list)

    def add(self, record: Record):
        self.records.append(record)

    def drain(self) -> list[Record]:
        """Return the buffered records oldest first and empty the buffer."""
        drained = self.records
        self.records = []
        return drained

    def age(self, now: int) -> int:
        """Time since the newest buffered record; 0 once drained or when empty."""
        if not self.records:
            return 0
        last = self.records[-1].received_at
        return now - last if now > last else 0


class TransactionStore:
    """Owns every live Transaction, keyed by correlation id.

    Only the engine's consumer thread touches the store, so no locking.
    """

    def __init__(self, timeout_ms: int):
        self._timeout_ms = timeout_ms
        self._transactions: dict[str, Transaction] = {}

    @property
    def timeout_ms(self) -> int:
        return self._timeout_ms

    def get_or_create(self, correlation_id: str) -> Transaction:
        trx = self._transactions.get(correlation_id)
        if trx is None:
            trx = Transaction(correlation_id)
            self._transactions[correlation_id] = trx
        return trx

    def get(self, correlation_id: str) -> Transaction | None:
        return self._transactions.get(correlation_id)

    def remove(self, correlation_id: str):
        self._transactions.pop(correlation_id, None)

    def sweep(self, now: int) -> list[str]:
        """Drop every transaction idle for longer than the timeout.

        Nothing is emitted: buffered records of evicted transactions are lost.
        Returns the evicted ids.
        """
        expired = [
            tid for tid, trx in self._transactions.items()
            if trx.age(now) > self._timeout_ms
        ]
        for tid in expired:
            del self._transactions[tid]
        if expired:
            logger.debug("Swept %d idle transaction(s), %d live", len(expired), len(self._transactions))
        return expired

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, correlation_id: str) -> bool:
        return correlation_id in self._transactions
