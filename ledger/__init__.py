"""Ledger-side state: record storage, settlement, events and the cloud registry."""

from .ledger_runtime import (
    WalletError,
    StorageCollision,
    AlreadyInitialized,
    RecordNotFound,
    VersionConflict,
    SettlementError,
    InsufficientFunds,
    StoredRecord,
    RecordStore,
    LedgerClock,
    ManualClock,
    SettlementLedger,
    EventLog,
)
from .cloud_registry import (
    MIN_RING_SIZE,
    MAX_RING_SIZE,
    CloudError,
    RingTooSmall,
    RingTooLarge,
    DuplicateRingMember,
    InvalidRingMember,
    CloudNotFound,
    RecordDecodeError,
    Registry,
    ProbabilityCloud,
    RegistryStore,
    CloudStore,
    derive_address,
    registry_address,
    cloud_address,
    key_image_address,
)

__all__ = [
    'WalletError', 'StorageCollision', 'AlreadyInitialized', 'RecordNotFound',
    'VersionConflict', 'SettlementError', 'InsufficientFunds',
    'StoredRecord', 'RecordStore', 'LedgerClock', 'ManualClock',
    'SettlementLedger', 'EventLog',
    'MIN_RING_SIZE', 'MAX_RING_SIZE',
    'CloudError', 'RingTooSmall', 'RingTooLarge', 'DuplicateRingMember',
    'InvalidRingMember', 'CloudNotFound', 'RecordDecodeError',
    'Registry', 'ProbabilityCloud', 'RegistryStore', 'CloudStore',
    'derive_address', 'registry_address', 'cloud_address', 'key_image_address',
]
