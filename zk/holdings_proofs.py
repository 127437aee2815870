"""
Aggregate Holdings Threshold Proofs
Pedersen commitments to member balances, a confidential balance registry and
a bit-decomposition range proof showing that a ring's combined balance meets
a threshold without disclosing any member balance
"""

import logging
import struct
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from .zk_proofs import (
    CURVE_ORDER,
    ByteReader,
    Ed25519Group,
    GroupElementError,
    ProofEncodingError,
    ProofGenerationError,
    ProofType,
    RejectionReason,
    Transcript,
    VerificationResult,
)

logger = logging.getLogger(__name__)

HOLDINGS_PROOF_VERSION = 1
DEFAULT_RANGE_BITS = 72
U64_MAX = 2**64 - 1

DOMAIN_PEDERSEN_H = b"RingWallet_Pedersen_H_v1"
DOMAIN_HOLDINGS = b"RingWallet_Holdings_v1"

# Second Pedersen generator; its discrete log relative to the base point is unknown
PEDERSEN_H = Ed25519Group.hash_to_point(DOMAIN_PEDERSEN_H)


# ============================================================================
# PEDERSEN COMMITMENTS
# ============================================================================


@dataclass(frozen=True)
class BalanceOpening:
    """Secret opening (value, blinding) of a balance commitment"""
    value: int
    blinding: int

    @classmethod
    def random(cls, value: int) -> 'BalanceOpening':
        if not 0 <= value <= U64_MAX:
            raise ValueError("Balance must fit in an unsigned 64-bit integer")
        return cls(value=value, blinding=Ed25519Group.random_scalar())

    def commitment(self) -> bytes:
        return pedersen_commit(self.value, self.blinding)


def pedersen_commit(value: int, blinding: int) -> bytes:
    """C = value*H + blinding*G"""
    return Ed25519Group.add(
        Ed25519Group.mult(value, PEDERSEN_H),
        Ed25519Group.base_mult(blinding))


def unique_keys(public_keys: Iterable[bytes]) -> List[bytes]:
    """Keys in ring order with repeats dropped; each account is counted once"""
    return list(dict.fromkeys(bytes(key) for key in public_keys))


class ConfidentialBalanceRegistry:
    """Attested balance commitments, one per account key.

    Accounts without an attestation are treated as holding zero: the
    commitment used for them is the identity point.
    """

    def __init__(self):
        self._commitments: Dict[bytes, bytes] = {}
        self._lock = threading.RLock()

    def attest(self, public_key: bytes, commitment: bytes):
        if len(public_key) != 32:
            raise ValueError("Account key must be 32 bytes")
        if not Ed25519Group.is_valid_point(commitment):
            raise GroupElementError("Balance commitment is not a valid point")
        with self._lock:
            self._commitments[bytes(public_key)] = bytes(commitment)
        logger.debug(f"Balance commitment attested for {public_key.hex()[:16]}")

    def commitment_for(self, public_key: bytes) -> Optional[bytes]:
        with self._lock:
            return self._commitments.get(bytes(public_key))

    def aggregate(self, public_keys: Iterable[bytes]) -> bytes:
        with self._lock:
            return Ed25519Group.sum_points(
                self._commitments[key] for key in unique_keys(public_keys)
                if key in self._commitments)

    def __len__(self) -> int:
        with self._lock:
            return len(self._commitments)


# ============================================================================
# RANGE PROOF ARTIFACTS
# ============================================================================


@dataclass(frozen=True)
class BitProof:
    """Commitment to one bit plus a CDS OR-proof that it opens to 0 or 1"""
    commitment: bytes
    e0: int
    e1: int
    z0: int
    z1: int

    def serialize(self) -> bytes:
        return (self.commitment
                + Ed25519Group.scalar_to_bytes(self.e0)
                + Ed25519Group.scalar_to_bytes(self.e1)
                + Ed25519Group.scalar_to_bytes(self.z0)
                + Ed25519Group.scalar_to_bytes(self.z1))


@dataclass(frozen=True)
class HoldingsRangeProof:
    bits: List[BitProof] = field(default_factory=list)

    def serialize(self) -> bytes:
        out = bytearray(struct.pack('<BB', HOLDINGS_PROOF_VERSION, len(self.bits)))
        for bit in self.bits:
            out += bit.serialize()
        return bytes(out)

    @classmethod
    def deserialize(cls, data: bytes) -> 'HoldingsRangeProof':
        reader = ByteReader(data)
        version = reader.read_u8()
        if version != HOLDINGS_PROOF_VERSION:
            raise ProofEncodingError(f"Unsupported holdings proof version {version}")
        count = reader.read_u8()
        bits = []
        for _ in range(count):
            bits.append(BitProof(
                commitment=reader.read_point(),
                e0=reader.read_scalar(),
                e1=reader.read_scalar(),
                z0=reader.read_scalar(),
                z1=reader.read_scalar(),
            ))
        reader.finish()
        return cls(bits=bits)


@dataclass(frozen=True)
class HoldingsProof:
    proof_bytes: bytes
    threshold: int


def _holdings_transcript(cloud_address: bytes, threshold: int, excess_commitment: bytes,
                         range_bits: int) -> Transcript:
    transcript = Transcript(DOMAIN_HOLDINGS)
    transcript.append(b"cloud", cloud_address)
    transcript.append_u64(b"threshold", threshold)
    transcript.append(b"excess", excess_commitment)
    transcript.append_u64(b"range-bits", range_bits)
    return transcript


def _bit_challenge(base: Transcript, index: int, commitment: bytes,
                   a0: bytes, a1: bytes) -> int:
    step = base.fork()
    step.append_u64(b"bit", index)
    step.append(b"B", commitment)
    step.append(b"A0", a0)
    step.append(b"A1", a1)
    return step.challenge_scalar(b"challenge")


def excess_commitment(aggregate: bytes, threshold: int) -> bytes:
    """Commitment to (sum of balances - threshold) under the summed blinding"""
    return Ed25519Group.sub(aggregate, Ed25519Group.mult(threshold, PEDERSEN_H))


# ============================================================================
# PROVER
# ============================================================================


class HoldingsProver:
    """Client-side prover; needs the openings of the members' commitments"""

    def __init__(self, range_bits: int = DEFAULT_RANGE_BITS):
        self.range_bits = range_bits

    def prove(self, cloud_address: bytes, ring_public_keys: Iterable[bytes],
              openings: Mapping[bytes, BalanceOpening], threshold: int) -> HoldingsProof:
        if not 0 <= threshold <= U64_MAX:
            raise ProofGenerationError("Threshold must fit in an unsigned 64-bit integer")

        ring_public_keys = list(ring_public_keys)
        members = [openings[key] for key in unique_keys(ring_public_keys) if key in openings]
        total = sum(opening.value for opening in members)
        blinding = sum(opening.blinding for opening in members) % CURVE_ORDER

        excess = total - threshold
        if excess < 0:
            raise ProofGenerationError("Aggregate holdings are below the threshold")
        if excess >= 2**self.range_bits:
            raise ProofGenerationError(
                f"Aggregate surplus does not fit in {self.range_bits} bits")

        aggregate = Ed25519Group.sum_points(opening.commitment() for opening in members)
        target = excess_commitment(aggregate, threshold)
        base = _holdings_transcript(cloud_address, threshold, target, self.range_bits)

        bit_blindings = [0] + [Ed25519Group.random_scalar()
                               for _ in range(1, self.range_bits)]
        bit_blindings[0] = (blinding - sum(
            (1 << j) * r for j, r in enumerate(bit_blindings))) % CURVE_ORDER

        proofs = []
        for j in range(self.range_bits):
            bit = (excess >> j) & 1
            proofs.append(self._prove_bit(base, j, bit, bit_blindings[j]))

        return HoldingsProof(
            proof_bytes=HoldingsRangeProof(bits=proofs).serialize(),
            threshold=threshold)

    def _prove_bit(self, base: Transcript, index: int, bit: int, blinding: int) -> BitProof:
        commitment = pedersen_commit(bit, blinding)
        # statements: Y0 = B (bit 0), Y1 = B - H (bit 1); both claim Y = r*G
        statements = (commitment, Ed25519Group.sub(commitment, PEDERSEN_H))
        fake = 1 - bit

        fake_e = Ed25519Group.random_scalar()
        fake_z = Ed25519Group.random_scalar()
        fake_a = Ed25519Group.sub(
            Ed25519Group.base_mult(fake_z),
            Ed25519Group.mult(fake_e, statements[fake]))

        nonce = Ed25519Group.random_scalar()
        real_a = Ed25519Group.base_mult(nonce)

        a_points = [None, None]
        a_points[bit] = real_a
        a_points[fake] = fake_a

        challenge = _bit_challenge(base, index, commitment, a_points[0], a_points[1])
        real_e = (challenge - fake_e) % CURVE_ORDER
        real_z = (nonce + real_e * blinding) % CURVE_ORDER

        e = [0, 0]
        z = [0, 0]
        e[bit], z[bit] = real_e, real_z
        e[fake], z[fake] = fake_e, fake_z

        return BitProof(commitment=commitment, e0=e[0], e1=e[1], z0=z[0], z1=z[1])


# ============================================================================
# VERIFIER
# ============================================================================


class HoldingsThresholdVerifier:
    """Checks that a ring's attested holdings sum to at least a threshold"""

    def __init__(self, balance_source: ConfidentialBalanceRegistry,
                 range_bits: int = DEFAULT_RANGE_BITS, max_proof_bytes: int = 16384):
        self.balance_source = balance_source
        self.range_bits = range_bits
        self.max_proof_bytes = max_proof_bytes

    def _reject(self, reason: RejectionReason, detail: str = "") -> VerificationResult:
        logger.debug(f"Holdings proof rejected: {reason.value} {detail}")
        return VerificationResult.reject(ProofType.HOLDINGS_THRESHOLD, reason, detail)

    def verify(self, cloud, proof_bytes: bytes, threshold: int) -> VerificationResult:
        if not proof_bytes:
            return self._reject(RejectionReason.EMPTY_PROOF)
        if isinstance(threshold, bool) or not isinstance(threshold, int) or not 0 <= threshold <= U64_MAX:
            return self._reject(RejectionReason.THRESHOLD_OUT_OF_RANGE)
        if len(proof_bytes) > self.max_proof_bytes:
            return self._reject(RejectionReason.MALFORMED_PROOF, "proof too large")

        start_time = time.time()

        try:
            proof = HoldingsRangeProof.deserialize(proof_bytes)
        except ProofEncodingError as e:
            return self._reject(RejectionReason.MALFORMED_PROOF, str(e))

        if len(proof.bits) != self.range_bits:
            return self._reject(RejectionReason.MALFORMED_PROOF,
                                f"expected {self.range_bits} bit proofs")
        if not all(Ed25519Group.is_valid_point(bit.commitment) for bit in proof.bits):
            return self._reject(RejectionReason.MALFORMED_PROOF, "invalid bit commitment")

        try:
            aggregate = self.balance_source.aggregate(cloud.ring_public_keys)
            target = excess_commitment(aggregate, threshold)

            recombined = Ed25519Group.sum_points(
                Ed25519Group.mult(1 << j, bit.commitment)
                for j, bit in enumerate(proof.bits))
            if recombined != target:
                return self._reject(RejectionReason.COMMITMENT_MISMATCH)

            base = _holdings_transcript(cloud.address, threshold, target, self.range_bits)
            for j, bit in enumerate(proof.bits):
                if not self._verify_bit(base, j, bit):
                    return self._reject(RejectionReason.RANGE_PROOF_INVALID, f"bit {j}")
        except GroupElementError as e:
            return self._reject(RejectionReason.MALFORMED_PROOF, str(e))

        verification_time = time.time() - start_time
        logger.info(
            f"Verified holdings proof for threshold {threshold} in {verification_time:.3f}s")

        return VerificationResult.accept(ProofType.HOLDINGS_THRESHOLD)

    @staticmethod
    def _verify_bit(base: Transcript, index: int, bit: BitProof) -> bool:
        y0 = bit.commitment
        y1 = Ed25519Group.sub(bit.commitment, PEDERSEN_H)
        a0 = Ed25519Group.sub(Ed25519Group.base_mult(bit.z0), Ed25519Group.mult(bit.e0, y0))
        a1 = Ed25519Group.sub(Ed25519Group.base_mult(bit.z1), Ed25519Group.mult(bit.e1, y1))
        challenge = _bit_challenge(base, index, bit.commitment, a0, a1)
        return (bit.e0 + bit.e1) % CURVE_ORDER == challenge
