"""
Linkable Ring Signatures for Anonymous Transfer Authorization
bLSAG signatures over Ed25519 ring keys, canonical transfer statements and
the verifier that checks a proof against a stored probability cloud
"""

import hashlib
import hmac
import json
import logging
import secrets
import struct
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, PublicFormat,
)

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

RING_PROOF_VERSION = 1
MAX_SIGNATURE_RING = 255
U64_MAX = 2**64 - 1
MIN_NONCE_BYTES = 16
MAX_NONCE_BYTES = 32
# canonical statements are under 400 bytes
MAX_PUBLIC_INPUT_BYTES = 1024

DOMAIN_RING_CHALLENGE = b"RingWallet_bLSAG_v1"
DOMAIN_KEY_IMAGE = b"RingWallet_KeyImage_v1"
DOMAIN_TRANSFER = b"RingWallet_Transfer_v1"

STATEMENT_FIELDS = ("amount", "domain", "nonce", "recipient", "sender", "version")


class LinkScope(Enum):
    # one key image per (member, cloud, nonce): replays of the same proof link
    TRANSFER = "transfer"
    # one key image per (member, cloud): any two spends by a member link
    CLOUD = "cloud"


# ============================================================================
# RING MEMBER KEYS
# ============================================================================


@dataclass(frozen=True)
class RingMemberKey:
    """An Ed25519 key usable as a ring member.

    The signing scalar is derived exactly as Ed25519 derives it from a seed,
    so ``public_key`` is the ordinary Ed25519 public key of the same wallet.
    """
    seed: bytes = field(repr=False)
    scalar: int = field(repr=False)
    public_key: bytes

    @classmethod
    def generate(cls) -> 'RingMemberKey':
        private_key = Ed25519PrivateKey.generate()
        seed = private_key.private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        return cls.from_seed(seed)

    @classmethod
    def from_seed(cls, seed: bytes) -> 'RingMemberKey':
        if len(seed) != 32:
            raise ValueError("Ed25519 seed must be 32 bytes")

        digest = bytearray(hashlib.sha512(seed).digest()[:32])
        digest[0] &= 248
        digest[31] &= 127
        digest[31] |= 64
        scalar = int.from_bytes(bytes(digest), 'little') % CURVE_ORDER
        public_key = Ed25519Group.base_mult(scalar)

        expected = Ed25519PrivateKey.from_private_bytes(seed).public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw)
        if not hmac.compare_digest(public_key, expected):
            raise ProofGenerationError(
                "Derived ring key does not match the Ed25519 public key")

        return cls(seed=bytes(seed), scalar=scalar, public_key=public_key)


# ============================================================================
# TRANSFER STATEMENT (PUBLIC INPUTS)
# ============================================================================


@dataclass(frozen=True)
class TransferStatement:
    """The public inputs a ring signature commits to.

    ``domain`` is the address of the cloud the proof was made for, which
    keeps a proof from being replayed against a different ring.
    """
    domain: bytes
    sender: bytes
    recipient: bytes
    amount: int
    nonce: bytes
    version: int = RING_PROOF_VERSION

    def __post_init__(self):
        for name in ("domain", "sender", "recipient"):
            value = getattr(self, name)
            if not isinstance(value, bytes) or len(value) != 32:
                raise ValueError(f"{name} must be 32 bytes")
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("amount must be an integer")
        if not 0 <= self.amount <= U64_MAX:
            raise ValueError("amount must fit in an unsigned 64-bit integer")
        if not isinstance(self.nonce, bytes) or not MIN_NONCE_BYTES <= len(self.nonce) <= MAX_NONCE_BYTES:
            raise ValueError(
                f"nonce must be {MIN_NONCE_BYTES}-{MAX_NONCE_BYTES} bytes")
        if self.version != RING_PROOF_VERSION:
            raise ValueError(f"Unsupported statement version {self.version}")

    @classmethod
    def create(cls, domain: bytes, sender: bytes, recipient: bytes, amount: int,
               nonce: Optional[bytes] = None) -> 'TransferStatement':
        if nonce is None:
            nonce = secrets.token_bytes(MIN_NONCE_BYTES)
        return cls(domain=domain, sender=sender, recipient=recipient,
                   amount=amount, nonce=nonce)

    def encode(self) -> bytes:
        payload = {
            'version': self.version,
            'domain': self.domain.hex(),
            'sender': self.sender.hex(),
            'recipient': self.recipient.hex(),
            'amount': self.amount,
            'nonce': self.nonce.hex(),
        }
        return json.dumps(payload, sort_keys=True, separators=(',', ':')).encode()

    @classmethod
    def decode(cls, data: bytes) -> 'TransferStatement':
        """Parse canonical public inputs; any other encoding raises ValueError"""
        if len(data) > MAX_PUBLIC_INPUT_BYTES:
            raise ValueError(
                f"Public inputs exceed {MAX_PUBLIC_INPUT_BYTES} bytes")
        try:
            payload = json.loads(bytes(data).decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            raise ValueError(f"Public inputs are not valid JSON: {e}")

        if not isinstance(payload, dict) or tuple(sorted(payload)) != STATEMENT_FIELDS:
            raise ValueError("Public inputs have unexpected fields")

        fields = {}
        for name in ("domain", "sender", "recipient", "nonce"):
            if not isinstance(payload[name], str):
                raise ValueError(f"{name} must be a hex string")
            fields[name] = bytes.fromhex(payload[name])

        statement = cls(amount=payload['amount'],
                        version=payload['version'], **fields)
        if statement.encode() != bytes(data):
            raise ValueError("Public inputs are not canonically encoded")
        return statement

    def message_digest(self) -> bytes:
        return hashlib.sha512(DOMAIN_TRANSFER + self.encode()).digest()

    def link_tag(self, scope: LinkScope) -> bytes:
        if scope is LinkScope.CLOUD:
            return self.domain
        return self.domain + struct.pack('<B', len(self.nonce)) + self.nonce


def link_base(link_tag: bytes) -> bytes:
    """Generator the key image is computed over for one link tag"""
    return Ed25519Group.hash_to_point(DOMAIN_KEY_IMAGE + link_tag)


# ============================================================================
# bLSAG SIGNATURE
# ============================================================================


@dataclass(frozen=True)
class LSAGSignature:
    key_image: bytes
    c0: int
    responses: List[int]

    def serialize(self) -> bytes:
        if len(self.responses) > MAX_SIGNATURE_RING:
            raise ProofEncodingError("Ring too large to encode")
        out = bytearray()
        out += struct.pack('<B', RING_PROOF_VERSION)
        out += self.key_image
        out += Ed25519Group.scalar_to_bytes(self.c0)
        out += struct.pack('<B', len(self.responses))
        for s in self.responses:
            out += Ed25519Group.scalar_to_bytes(s)
        return bytes(out)

    @classmethod
    def deserialize(cls, data: bytes) -> 'LSAGSignature':
        reader = ByteReader(data)
        version = reader.read_u8()
        if version != RING_PROOF_VERSION:
            raise ProofEncodingError(f"Unsupported ring proof version {version}")
        key_image = reader.read_point()
        c0 = reader.read_scalar()
        count = reader.read_u8()
        responses = [reader.read_scalar() for _ in range(count)]
        reader.finish()
        return cls(key_image=key_image, c0=c0, responses=responses)

    def link(self, other: 'LSAGSignature') -> bool:
        """True when both signatures were produced by the same member under one link tag"""
        return hmac.compare_digest(self.key_image, other.key_image)


def _ring_transcript(ring: Sequence[bytes], key_image: bytes,
                     message_digest: bytes, link_tag: bytes) -> Transcript:
    transcript = Transcript(DOMAIN_RING_CHALLENGE)
    transcript.append_u64(b"ring-size", len(ring))
    for member in ring:
        transcript.append(b"member", member)
    transcript.append(b"key-image", key_image)
    transcript.append(b"message", message_digest)
    transcript.append(b"link-tag", link_tag)
    return transcript


def _challenge(base: Transcript, l_point: bytes, r_point: bytes) -> int:
    step = base.fork()
    step.append(b"L", l_point)
    step.append(b"R", r_point)
    return step.challenge_scalar(b"challenge")


def lsag_sign(message_digest: bytes, ring: Sequence[bytes], signer_index: int,
              signer_scalar: int, link_tag: bytes) -> LSAGSignature:
    n = len(ring)
    if n == 0:
        raise ProofGenerationError("Cannot sign for an empty ring")
    if not 0 <= signer_index < n:
        raise ProofGenerationError("Signer index outside the ring")
    if Ed25519Group.base_mult(signer_scalar) != ring[signer_index]:
        raise ProofGenerationError("Signing key is not the ring member at the signer index")

    hs = link_base(link_tag)
    key_image = Ed25519Group.mult(signer_scalar, hs)
    base = _ring_transcript(ring, key_image, message_digest, link_tag)

    challenges = [0] * n
    responses = [0] * n

    alpha = Ed25519Group.random_scalar()
    next_index = (signer_index + 1) % n
    challenges[next_index] = _challenge(
        base, Ed25519Group.base_mult(alpha), Ed25519Group.mult(alpha, hs))

    i = next_index
    while i != signer_index:
        responses[i] = Ed25519Group.random_scalar()
        l_point = Ed25519Group.add(
            Ed25519Group.base_mult(responses[i]),
            Ed25519Group.mult(challenges[i], ring[i]))
        r_point = Ed25519Group.add(
            Ed25519Group.mult(responses[i], hs),
            Ed25519Group.mult(challenges[i], key_image))
        challenges[(i + 1) % n] = _challenge(base, l_point, r_point)
        i = (i + 1) % n

    responses[signer_index] = (
        alpha - challenges[signer_index] * signer_scalar) % CURVE_ORDER

    return LSAGSignature(key_image=key_image, c0=challenges[0], responses=responses)


def lsag_verify(message_digest: bytes, ring: Sequence[bytes], link_tag: bytes,
                signature: LSAGSignature) -> bool:
    """Recompute the challenge chain; raises GroupElementError on bad points"""
    if len(signature.responses) != len(ring) or not ring:
        return False

    hs = link_base(link_tag)
    base = _ring_transcript(ring, signature.key_image, message_digest, link_tag)

    challenge = signature.c0
    for member, response in zip(ring, signature.responses):
        l_point = Ed25519Group.add(
            Ed25519Group.base_mult(response),
            Ed25519Group.mult(challenge, member))
        r_point = Ed25519Group.add(
            Ed25519Group.mult(response, hs),
            Ed25519Group.mult(challenge, signature.key_image))
        challenge = _challenge(base, l_point, r_point)

    return hmac.compare_digest(
        Ed25519Group.scalar_to_bytes(challenge),
        Ed25519Group.scalar_to_bytes(signature.c0))


# ============================================================================
# PROOF ARTIFACT, SIGNER AND VERIFIER
# ============================================================================


@dataclass(frozen=True)
class RingProof:
    signature_bytes: bytes
    public_inputs: bytes


def sign_transfer(statement: TransferStatement, ring: Sequence[bytes], signer: RingMemberKey,
                  link_scope: LinkScope = LinkScope.TRANSFER) -> RingProof:
    """Produce a ring proof that some member of ``ring`` authorized ``statement``"""
    ring = [bytes(member) for member in ring]
    try:
        signer_index = ring.index(signer.public_key)
    except ValueError:
        raise ProofGenerationError("Signer is not a member of the ring")

    signature = lsag_sign(
        statement.message_digest(), ring, signer_index,
        signer.scalar, statement.link_tag(link_scope))

    return RingProof(signature_bytes=signature.serialize(),
                     public_inputs=statement.encode())


class RingSignatureVerifier:
    """Checks that some member of a cloud's ring authorized a transfer statement.

    Verification is a pure function of the cloud and the proof: nothing is
    cached and the result never says which member signed.
    """

    def __init__(self, link_scope: LinkScope = LinkScope.TRANSFER, max_proof_bytes: int = 4096,
                 max_public_input_bytes: int = MAX_PUBLIC_INPUT_BYTES):
        self.link_scope = link_scope
        self.max_proof_bytes = max_proof_bytes
        self.max_public_input_bytes = min(max_public_input_bytes, MAX_PUBLIC_INPUT_BYTES)

    def _reject(self, reason: RejectionReason, detail: str = "") -> VerificationResult:
        logger.debug(f"Ring proof rejected: {reason.value} {detail}")
        return VerificationResult.reject(ProofType.RING_SIGNATURE, reason, detail)

    def verify(self, cloud, proof: RingProof) -> VerificationResult:
        """Verify ``proof`` against ``cloud.address`` and ``cloud.ring_public_keys``"""
        if not proof.signature_bytes:
            return self._reject(RejectionReason.EMPTY_PROOF)
        if not proof.public_inputs:
            return self._reject(RejectionReason.EMPTY_PUBLIC_INPUTS)
        if len(proof.signature_bytes) > self.max_proof_bytes:
            return self._reject(RejectionReason.MALFORMED_PROOF, "proof too large")
        if len(proof.public_inputs) > self.max_public_input_bytes:
            return self._reject(RejectionReason.MALFORMED_PUBLIC_INPUTS, "public inputs too large")

        start_time = time.time()

        try:
            statement = TransferStatement.decode(proof.public_inputs)
        except ValueError as e:
            return self._reject(RejectionReason.MALFORMED_PUBLIC_INPUTS, str(e))

        if not hmac.compare_digest(statement.domain, cloud.address):
            return self._reject(RejectionReason.DOMAIN_MISMATCH)

        try:
            signature = LSAGSignature.deserialize(proof.signature_bytes)
        except ProofEncodingError as e:
            return self._reject(RejectionReason.MALFORMED_PROOF, str(e))

        ring = list(cloud.ring_public_keys)
        if len(signature.responses) != len(ring):
            return self._reject(RejectionReason.RING_SIZE_MISMATCH)

        if not Ed25519Group.is_valid_point(signature.key_image):
            return self._reject(RejectionReason.INVALID_KEY_IMAGE)

        if not all(Ed25519Group.is_valid_point(member) for member in ring):
            return self._reject(RejectionReason.INVALID_RING_MEMBER)

        try:
            valid = lsag_verify(statement.message_digest(), ring,
                                statement.link_tag(self.link_scope), signature)
        except GroupElementError as e:
            return self._reject(RejectionReason.MALFORMED_PROOF, str(e))

        if not valid:
            return self._reject(RejectionReason.SIGNATURE_MISMATCH)

        verification_time = time.time() - start_time
        logger.info(
            f"Verified ring signature over {len(ring)} members in {verification_time:.3f}s")

        return VerificationResult.accept(ProofType.RING_SIGNATURE, key_image=signature.key_image)
