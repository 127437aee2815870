"""
Zero-Knowledge Proof Primitives for the Ring Wallet
Ed25519 prime-order group arithmetic (libsodium via PyNaCl), Fiat-Shamir
transcripts, proof wire helpers and the verification outcome shared by the
ring signature and holdings threshold verifiers
"""

import hashlib
import logging
import secrets
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import nacl.bindings
from nacl.exceptions import CryptoError

# Production logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# CURVE CONSTANTS
# ============================================================================

# Order of the Ed25519 prime-order subgroup
CURVE_ORDER = 2**252 + 27742317777372353535851937790883648493
POINT_SIZE = 32
SCALAR_SIZE = 32

# Compressed encoding of the neutral element (x = 0, y = 1)
IDENTITY_POINT = b'\x01' + b'\x00' * 31

DOMAIN_HASH_TO_POINT = b"RingWallet_HashToPoint_v1"
DOMAIN_TRANSCRIPT = b"RingWallet_Transcript_v1"

# ============================================================================
# EXCEPTIONS
# ============================================================================


class ZKError(Exception):
    """Base exception for proof operations"""
    pass


class GroupElementError(ZKError):
    """Bytes do not encode a usable group element"""
    pass


class ProofEncodingError(ZKError):
    """Proof bytes do not follow the wire layout"""
    pass


class ProofGenerationError(ZKError):
    """Proof generation failed"""
    pass


# ============================================================================
# VERIFICATION OUTCOMES
# ============================================================================


class ProofType(Enum):
    RING_SIGNATURE = "ring_signature"
    HOLDINGS_THRESHOLD = "holdings_threshold"


class RejectionReason(Enum):
    EMPTY_PROOF = "empty_proof"
    EMPTY_PUBLIC_INPUTS = "empty_public_inputs"
    MALFORMED_PROOF = "malformed_proof"
    MALFORMED_PUBLIC_INPUTS = "malformed_public_inputs"
    DOMAIN_MISMATCH = "domain_mismatch"
    STATEMENT_MISMATCH = "statement_mismatch"
    THRESHOLD_OUT_OF_RANGE = "threshold_out_of_range"
    RING_SIZE_MISMATCH = "ring_size_mismatch"
    INVALID_RING_MEMBER = "invalid_ring_member"
    INVALID_KEY_IMAGE = "invalid_key_image"
    SIGNATURE_MISMATCH = "signature_mismatch"
    COMMITMENT_MISMATCH = "commitment_mismatch"
    RANGE_PROOF_INVALID = "range_proof_invalid"
    KEY_IMAGE_SPENT = "key_image_spent"

    @property
    def concerns_public_inputs(self) -> bool:
        """True when the rejection is about the statement rather than the proof"""
        return self in (
            RejectionReason.EMPTY_PUBLIC_INPUTS,
            RejectionReason.MALFORMED_PUBLIC_INPUTS,
            RejectionReason.DOMAIN_MISMATCH,
            RejectionReason.STATEMENT_MISMATCH,
            RejectionReason.THRESHOLD_OUT_OF_RANGE,
        )


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a verifier run. Never identifies a ring member."""
    proof_type: ProofType
    accepted: bool
    reason: Optional[RejectionReason] = None
    key_image: Optional[bytes] = None
    detail: str = ""

    @classmethod
    def accept(cls, proof_type: ProofType, key_image: Optional[bytes] = None) -> 'VerificationResult':
        return cls(proof_type=proof_type, accepted=True, key_image=key_image)

    @classmethod
    def reject(cls, proof_type: ProofType, reason: RejectionReason, detail: str = "") -> 'VerificationResult':
        return cls(proof_type=proof_type, accepted=False, reason=reason, detail=detail)


# ============================================================================
# ED25519 GROUP ARITHMETIC
# ============================================================================


class Ed25519Group:
    """Scalar and point operations on the Ed25519 prime-order subgroup.

    Scalars are Python ints reduced modulo CURVE_ORDER. Points are 32-byte
    compressed encodings. libsodium refuses the identity as a multiplication
    operand and refuses zero scalars, so both are handled here before the
    call reaches it.
    """

    @staticmethod
    def scalar_to_bytes(value: int) -> bytes:
        return (value % CURVE_ORDER).to_bytes(SCALAR_SIZE, 'little')

    @staticmethod
    def decode_scalar(data: bytes) -> int:
        """Decode a canonical scalar, rejecting encodings >= CURVE_ORDER"""
        if len(data) != SCALAR_SIZE:
            raise ProofEncodingError(
                f"Scalar must be {SCALAR_SIZE} bytes, got {len(data)}")
        value = int.from_bytes(data, 'little')
        if value >= CURVE_ORDER:
            raise ProofEncodingError("Non-canonical scalar encoding")
        return value

    @staticmethod
    def random_scalar() -> int:
        while True:
            value = int.from_bytes(secrets.token_bytes(64), 'little') % CURVE_ORDER
            if value:
                return value

    @staticmethod
    def is_valid_point(point: bytes) -> bool:
        """Canonical, on-curve, prime-order and not of small order"""
        if not isinstance(point, (bytes, bytearray)) or len(point) != POINT_SIZE:
            return False
        try:
            return bool(nacl.bindings.crypto_core_ed25519_is_valid_point(bytes(point)))
        except CryptoError:
            return False

    @staticmethod
    def base_mult(scalar: int) -> bytes:
        scalar %= CURVE_ORDER
        if scalar == 0:
            return IDENTITY_POINT
        return nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(
            Ed25519Group.scalar_to_bytes(scalar))

    @staticmethod
    def mult(scalar: int, point: bytes) -> bytes:
        scalar %= CURVE_ORDER
        if scalar == 0 or point == IDENTITY_POINT:
            return IDENTITY_POINT
        try:
            return nacl.bindings.crypto_scalarmult_ed25519_noclamp(
                Ed25519Group.scalar_to_bytes(scalar), point)
        except CryptoError as e:
            raise GroupElementError(f"Scalar multiplication rejected point: {e}")

    @staticmethod
    def add(p: bytes, q: bytes) -> bytes:
        if p == IDENTITY_POINT:
            return q
        if q == IDENTITY_POINT:
            return p
        try:
            return nacl.bindings.crypto_core_ed25519_add(p, q)
        except CryptoError as e:
            raise GroupElementError(f"Point addition failed: {e}")

    @staticmethod
    def sub(p: bytes, q: bytes) -> bytes:
        if q == IDENTITY_POINT:
            return p
        try:
            return nacl.bindings.crypto_core_ed25519_sub(p, q)
        except CryptoError as e:
            raise GroupElementError(f"Point subtraction failed: {e}")

    @staticmethod
    def sum_points(points: Iterable[bytes]) -> bytes:
        total = IDENTITY_POINT
        for point in points:
            total = Ed25519Group.add(total, point)
        return total

    @staticmethod
    def hash_to_point(data: bytes) -> bytes:
        """Map bytes to a prime-order point with unknown discrete log.

        Try-and-increment over SHA-256 candidates; each decodable candidate
        is multiplied by the cofactor (three doublings) and kept if the
        result lies in the prime-order subgroup.
        """
        for counter in range(256):
            candidate = hashlib.sha256(
                DOMAIN_HASH_TO_POINT + data + bytes([counter])).digest()
            try:
                point = candidate
                for _ in range(3):
                    point = nacl.bindings.crypto_core_ed25519_add(point, point)
            except CryptoError:
                continue
            if Ed25519Group.is_valid_point(point):
                return point
        raise GroupElementError("hash_to_point exhausted its counter space")



# ============================================================================
# FIAT-SHAMIR TRANSCRIPT AND WIRE HELPERS
# ============================================================================


class Transcript:
    """Labelled SHA-512 transcript; challenges are reduced modulo CURVE_ORDER"""

    def __init__(self, label: bytes):
        self._hasher = hashlib.sha512()
        self.append(b"dom-sep", DOMAIN_TRANSCRIPT + label)

    def append(self, label: bytes, data: bytes) -> 'Transcript':
        self._hasher.update(struct.pack('<I', len(label)) + label)
        self._hasher.update(struct.pack('<I', len(data)) + bytes(data))
        return self

    def append_u64(self, label: bytes, value: int) -> 'Transcript':
        return self.append(label, struct.pack('<Q', value))

    def fork(self) -> 'Transcript':
        forked = Transcript.__new__(Transcript)
        forked._hasher = self._hasher.copy()
        return forked

    def challenge_scalar(self, label: bytes) -> int:
        hasher = self._hasher.copy()
        hasher.update(struct.pack('<I', len(label)) + label)
        return int.from_bytes(hasher.digest(), 'little') % CURVE_ORDER


class ByteReader:
    """Sequential reader over proof bytes; every short read is an encoding error"""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._offset = 0

    def read(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise ProofEncodingError(
                f"Truncated proof: need {size} bytes at offset {self._offset}")
        chunk = self._data[self._offset:end]
        self._offset = end
        return chunk

    def read_u8(self) -> int:
        return self.read(1)[0]

    def read_point(self) -> bytes:
        return self.read(POINT_SIZE)

    def read_scalar(self) -> int:
        return Ed25519Group.decode_scalar(self.read(SCALAR_SIZE))

    def finish(self):
        if self._offset != len(self._data):
            raise ProofEncodingError(
                f"{len(self._data) - self._offset} trailing bytes after proof")
