"""
Ledger Runtime Collaborators
Addressable record storage with create-if-absent semantics, the time oracle,
an in-memory settlement ledger and the append-only event/log sink
"""

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type

logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1

# ============================================================================
# EXCEPTIONS
# ============================================================================


class WalletError(Exception):
    """Base exception for ring wallet operations"""
    pass


class StorageCollision(WalletError):
    """A record already exists at the target address"""
    pass


class AlreadyInitialized(StorageCollision):
    """The registry singleton already exists"""
    pass


class RecordNotFound(WalletError):
    """No record at the requested address"""
    pass


class VersionConflict(WalletError):
    """Record changed since it was read"""
    pass


class SettlementError(WalletError):
    """Fund movement failed; no balances were changed"""
    pass


class InsufficientFunds(SettlementError):
    """Source account cannot cover the transfer"""
    pass


# ============================================================================
# RECORD STORAGE
# ============================================================================


@dataclass(frozen=True)
class StoredRecord:
    address: bytes
    owner: bytes
    data: bytes
    version: int = 0


class RecordStore:
    """Addressable records. ``create`` is atomic create-if-absent: when two
    writers race for one address exactly one wins and the other gets
    StorageCollision."""

    def __init__(self):
        self._records: Dict[bytes, StoredRecord] = {}
        self._lock = threading.RLock()

    def create(self, address: bytes, owner: bytes, data: bytes) -> StoredRecord:
        with self._lock:
            if address in self._records:
                raise StorageCollision(f"Record already exists at {address.hex()}")
            record = StoredRecord(address=bytes(address), owner=bytes(owner),
                                  data=bytes(data), version=0)
            self._records[record.address] = record
            return record

    def get(self, address: bytes) -> StoredRecord:
        with self._lock:
            record = self._records.get(bytes(address))
        if record is None:
            raise RecordNotFound(f"No record at {address.hex()}")
        return record

    def find(self, address: bytes) -> Optional[StoredRecord]:
        with self._lock:
            return self._records.get(bytes(address))

    def contains(self, address: bytes) -> bool:
        with self._lock:
            return bytes(address) in self._records

    def update(self, address: bytes, data: bytes, expected_version: int) -> StoredRecord:
        with self._lock:
            current = self.get(address)
            if current.version != expected_version:
                raise VersionConflict(
                    f"Record at {address.hex()} is at version {current.version}, expected {expected_version}")
            record = StoredRecord(address=current.address, owner=current.owner,
                                  data=bytes(data), version=current.version + 1)
            self._records[record.address] = record
            return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# ============================================================================
# TIME ORACLE
# ============================================================================


class LedgerClock:
    def unix_timestamp(self) -> int:
        return int(time.time())


class ManualClock(LedgerClock):
    """Deterministic clock for tests and demos"""

    def __init__(self, start: int = 1_700_000_000):
        self._now = start

    def unix_timestamp(self) -> int:
        return self._now

    def advance(self, seconds: int):
        self._now += seconds


# ============================================================================
# SETTLEMENT
# ============================================================================


class SettlementLedger:
    """In-memory lamport balances; every transfer is all-or-nothing"""

    def __init__(self):
        self._balances: Dict[bytes, int] = defaultdict(int)
        self._lock = threading.RLock()
        self.transfer_count = 0

    def fund(self, account: bytes, amount: int):
        if amount < 0:
            raise SettlementError("Funding amount must be non-negative")
        with self._lock:
            if self._balances[account] + amount > U64_MAX:
                raise SettlementError("Balance would overflow")
            self._balances[account] += amount

    def balance(self, account: bytes) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def transfer(self, source: bytes, destination: bytes, amount: int):
        if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= U64_MAX:
            raise SettlementError(f"Invalid transfer amount: {amount!r}")

        with self._lock:
            available = self._balances.get(source, 0)
            if available < amount:
                raise InsufficientFunds(
                    f"Account {source.hex()[:16]} holds {available} lamports, needs {amount}")
            if source != destination and self._balances.get(destination, 0) + amount > U64_MAX:
                raise SettlementError("Destination balance would overflow")

            self._balances[source] = available - amount
            self._balances[destination] += amount
            self.transfer_count += 1

    def snapshot(self) -> Dict[bytes, int]:
        with self._lock:
            return dict(self._balances)


# ============================================================================
# EVENT / LOG SINK
# ============================================================================


class EventLog:
    """Append-only sink for structured events and diagnostic messages"""

    def __init__(self):
        self._events: List[Any] = []
        self._messages: List[str] = []
        self._lock = threading.Lock()

    def emit(self, event: Any):
        with self._lock:
            self._events.append(event)
        logger.info(f"Event emitted: {event}")

    def log(self, message: str):
        with self._lock:
            self._messages.append(message)
        logger.info(message)

    @property
    def events(self) -> List[Any]:
        with self._lock:
            return list(self._events)

    @property
    def messages(self) -> List[str]:
        with self._lock:
            return list(self._messages)

    def events_of(self, event_type: Type) -> List[Any]:
        return [event for event in self.events if isinstance(event, event_type)]
