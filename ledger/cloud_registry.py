"""
Probability Cloud Registry
Deterministic addressing, on-ledger record layouts, the registry singleton
and the store that materializes rings of member keys
"""

import hashlib
import logging
import struct
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from .ledger_runtime import (
    AlreadyInitialized,
    EventLog,
    LedgerClock,
    RecordStore,
    StorageCollision,
    WalletError,
)

logger = logging.getLogger(__name__)

MIN_RING_SIZE = 2
MAX_RING_SIZE = 20
KEY_SIZE = 32
U64_MAX = 2**64 - 1

REGISTRY_SEED = b"registry"
CLOUD_SEED = b"cloud"
KEY_IMAGE_SEED = b"key_image"
DOMAIN_ADDRESS = b"RingWallet_Address_v1"


class CloudError(WalletError):
    """Base exception for cloud creation and lookup"""
    pass


class RingTooSmall(CloudError):
    """Ring size must be at least 2"""
    pass


class RingTooLarge(CloudError):
    """Ring size cannot exceed 20"""
    pass


class DuplicateRingMember(CloudError):
    """A key appears more than once in the ring"""
    pass


class InvalidRingMember(CloudError):
    """A ring key is not a valid Ed25519 public key"""
    pass


class CloudNotFound(CloudError):
    """No probability cloud at the requested address"""
    pass


class RecordDecodeError(WalletError):
    """Stored bytes do not match the expected record layout"""
    pass


# ============================================================================
# DETERMINISTIC ADDRESSING
# ============================================================================


def _check_caller(caller: bytes):
    if not isinstance(caller, (bytes, bytearray)) or len(caller) != KEY_SIZE:
        raise ValueError("caller must be a 32-byte public key")


def derive_address(program_id: bytes, *seeds: bytes) -> bytes:
    hasher = hashlib.sha256(DOMAIN_ADDRESS)
    hasher.update(program_id)
    for seed in seeds:
        hasher.update(struct.pack('<I', len(seed)))
        hasher.update(seed)
    return hasher.digest()


def registry_address(program_id: bytes) -> bytes:
    return derive_address(program_id, REGISTRY_SEED)


def cloud_address(program_id: bytes, authority: bytes, cloud_id: int) -> bytes:
    return derive_address(program_id, CLOUD_SEED, authority, struct.pack('<Q', cloud_id))


def key_image_address(program_id: bytes, cloud: bytes, key_image: bytes) -> bytes:
    return derive_address(program_id, KEY_IMAGE_SEED, cloud, key_image)


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


# ============================================================================
# RECORD LAYOUTS
# ============================================================================


@dataclass
class Registry:
    authority: bytes
    cloud_count: int = 0

    DISCRIMINATOR = account_discriminator("Registry")

    def serialize(self) -> bytes:
        return self.DISCRIMINATOR + self.authority + struct.pack('<Q', self.cloud_count)

    @classmethod
    def deserialize(cls, data: bytes) -> 'Registry':
        if len(data) != 8 + KEY_SIZE + 8 or data[:8] != cls.DISCRIMINATOR:
            raise RecordDecodeError("Not a registry record")
        authority = data[8:8 + KEY_SIZE]
        (cloud_count,) = struct.unpack('<Q', data[8 + KEY_SIZE:])
        return cls(authority=authority, cloud_count=cloud_count)


@dataclass(frozen=True)
class ProbabilityCloud:
    """A ring of member keys stored at a deterministic address.

    Key order is part of every statement signed against the ring, so the
    tuple is kept exactly as supplied at creation.
    """
    address: bytes
    authority: bytes
    cloud_id: int
    ring_public_keys: Tuple[bytes, ...]
    created_at: int

    DISCRIMINATOR = account_discriminator("ProbabilityCloud")

    @property
    def ring_size(self) -> int:
        return len(self.ring_public_keys)

    def contains(self, public_key: bytes) -> bool:
        return bytes(public_key) in self.ring_public_keys

    def serialize(self) -> bytes:
        out = bytearray(self.DISCRIMINATOR)
        out += self.authority
        out += struct.pack('<QBI', self.cloud_id, self.ring_size, self.ring_size)
        for key in self.ring_public_keys:
            out += key
        out += struct.pack('<q', self.created_at)
        return bytes(out)

    @classmethod
    def deserialize(cls, address: bytes, data: bytes) -> 'ProbabilityCloud':
        header = 8 + KEY_SIZE + struct.calcsize('<QBI')
        if len(data) < header or data[:8] != cls.DISCRIMINATOR:
            raise RecordDecodeError("Not a probability cloud record")

        authority = data[8:8 + KEY_SIZE]
        cloud_id, ring_size, key_count = struct.unpack(
            '<QBI', data[8 + KEY_SIZE:header])
        if ring_size != key_count:
            raise RecordDecodeError(
                f"ring_size {ring_size} does not match {key_count} stored keys")
        if len(data) != header + key_count * KEY_SIZE + 8:
            raise RecordDecodeError("Probability cloud record has the wrong length")

        keys = tuple(
            data[header + i * KEY_SIZE:header + (i + 1) * KEY_SIZE]
            for i in range(key_count))
        (created_at,) = struct.unpack('<q', data[header + key_count * KEY_SIZE:])

        return cls(address=bytes(address), authority=authority, cloud_id=cloud_id,
                   ring_public_keys=keys, created_at=created_at)


# ============================================================================
# REGISTRY
# ============================================================================


class RegistryStore:
    """The deployment-wide registry singleton"""

    def __init__(self, store: RecordStore, program_id: bytes):
        self.store = store
        self.program_id = program_id
        self.address = registry_address(program_id)

    def initialize(self, caller: bytes) -> Registry:
        _check_caller(caller)
        registry = Registry(authority=bytes(caller), cloud_count=0)
        try:
            self.store.create(self.address, caller, registry.serialize())
        except StorageCollision:
            raise AlreadyInitialized("Registry already initialized")
        logger.info(f"Registry initialized by {caller.hex()[:16]}")
        return registry

    def load(self) -> Optional[Registry]:
        record = self.store.find(self.address)
        if record is None:
            return None
        return Registry.deserialize(record.data)

    def record_cloud_created(self) -> Optional[Registry]:
        """Bump ``cloud_count``; a missing registry is not an error"""
        record = self.store.find(self.address)
        if record is None:
            return None
        registry = Registry.deserialize(record.data)
        registry.cloud_count += 1
        self.store.update(self.address, registry.serialize(), record.version)
        return registry


# ============================================================================
# CLOUD STORE
# ============================================================================


class CloudStore:
    """Creates and reads probability clouds"""

    def __init__(self, store: RecordStore, program_id: bytes, clock: LedgerClock,
                 registry: Optional[RegistryStore] = None, events: Optional[EventLog] = None,
                 key_validator: Optional[Callable[[bytes], bool]] = None,
                 reject_duplicate_members: bool = True):
        self.store = store
        self.program_id = program_id
        self.clock = clock
        self.registry = registry
        self.events = events
        self.key_validator = key_validator
        self.reject_duplicate_members = reject_duplicate_members

    def cloud_address(self, authority: bytes, cloud_id: int) -> bytes:
        return cloud_address(self.program_id, authority, cloud_id)

    def _validate_ring(self, ring_public_keys: Sequence[bytes]):
        if len(ring_public_keys) < MIN_RING_SIZE:
            raise RingTooSmall(
                f"Ring size {len(ring_public_keys)} is below the minimum of {MIN_RING_SIZE}")
        if len(ring_public_keys) > MAX_RING_SIZE:
            raise RingTooLarge(
                f"Ring size {len(ring_public_keys)} exceeds the maximum of {MAX_RING_SIZE}")

        for index, key in enumerate(ring_public_keys):
            if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
                raise InvalidRingMember(f"Ring member {index} is not a 32-byte key")
            if self.key_validator is not None and not self.key_validator(bytes(key)):
                raise InvalidRingMember(f"Ring member {index} is not a valid Ed25519 point")

        if self.reject_duplicate_members and len(set(map(bytes, ring_public_keys))) != len(ring_public_keys):
            raise DuplicateRingMember("Ring contains the same key more than once")

    def create_cloud(self, caller: bytes, ring_public_keys: Sequence[bytes], cloud_id: int) -> ProbabilityCloud:
        _check_caller(caller)
        if isinstance(cloud_id, bool) or not isinstance(cloud_id, int) or not 0 <= cloud_id <= U64_MAX:
            raise ValueError("cloud_id must fit in an unsigned 64-bit integer")

        self._validate_ring(ring_public_keys)

        address = self.cloud_address(caller, cloud_id)
        cloud = ProbabilityCloud(
            address=address,
            authority=bytes(caller),
            cloud_id=cloud_id,
            ring_public_keys=tuple(bytes(key) for key in ring_public_keys),
            created_at=self.clock.unix_timestamp(),
        )

        self.store.create(address, caller, cloud.serialize())

        if self.registry is not None:
            self.registry.record_cloud_created()

        message = f"Probability cloud created with {cloud.ring_size} addresses"
        if self.events is not None:
            self.events.log(message)
        else:
            logger.info(message)

        return cloud

    def get_cloud(self, address: bytes) -> ProbabilityCloud:
        record = self.store.find(address)
        if record is None:
            raise CloudNotFound(f"No probability cloud at {address.hex()}")
        return ProbabilityCloud.deserialize(address, record.data)

    def find_cloud(self, authority: bytes, cloud_id: int) -> Optional[ProbabilityCloud]:
        address = self.cloud_address(authority, cloud_id)
        if not self.store.contains(address):
            return None
        return self.get_cloud(address)
