import dataclasses
import json

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding, NoEncryption, PrivateFormat, PublicFormat,
)

from zk import ring_signatures
from zk.ring_signatures import (
    LinkScope,
    LSAGSignature,
    RingMemberKey,
    RingProof,
    RingSignatureVerifier,
    TransferStatement,
    sign_transfer,
)
from zk.zk_proofs import (
    CURVE_ORDER,
    ProofEncodingError,
    ProofGenerationError,
    RejectionReason,
)

SENDER = b"\x01" * 32
RECIPIENT = b"\x02" * 32


def statement_for(cloud, amount=100, nonce=None):
    return TransferStatement.create(cloud.address, SENDER, RECIPIENT, amount, nonce=nonce)


def test_member_key_is_standard_ed25519_key():
    private_key = Ed25519PrivateKey.generate()
    expected = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    seed = private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())

    assert RingMemberKey.from_seed(seed).public_key == expected


def test_every_member_can_authorize(keys, make_cloud):
    ring = [key.public_key for key in keys[:5]]
    cloud = make_cloud(ring)
    verifier = RingSignatureVerifier()

    for signer in keys[:5]:
        proof = sign_transfer(statement_for(cloud), ring, signer)
        result = verifier.verify(cloud, proof)
        assert result.accepted, f"member {ring.index(signer.public_key)} rejected: {result.reason}"


def test_non_member_cannot_sign_for_ring(keys, make_cloud):
    a, b, c, d = keys[:4]
    cloud = make_cloud([a.public_key, b.public_key, c.public_key])

    with pytest.raises(ProofGenerationError):
        sign_transfer(statement_for(cloud), cloud.ring_public_keys, d)

    # D signs over a ring it belongs to and submits against {A, B, C}
    forged = sign_transfer(statement_for(cloud), [a.public_key, b.public_key, d.public_key], d)
    result = RingSignatureVerifier().verify(cloud, forged)

    assert not result.accepted
    assert result.reason == RejectionReason.SIGNATURE_MISMATCH


def test_proof_is_bound_to_cloud_address(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud_a = make_cloud(ring, label=b"cloud-a")
    cloud_b = make_cloud(ring, label=b"cloud-b")

    proof = sign_transfer(statement_for(cloud_a), ring, keys[0])
    result = RingSignatureVerifier().verify(cloud_b, proof)

    assert result.reason == RejectionReason.DOMAIN_MISMATCH


def test_tampered_statement_is_rejected(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    statement = statement_for(cloud, amount=100)
    proof = sign_transfer(statement, ring, keys[1])

    inflated = dataclasses.replace(statement, amount=1_000_000)
    result = RingSignatureVerifier().verify(
        cloud, RingProof(proof.signature_bytes, inflated.encode()))

    assert result.reason == RejectionReason.SIGNATURE_MISMATCH


def test_tampered_response_is_rejected(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    proof = sign_transfer(statement_for(cloud), ring, keys[2])

    signature = LSAGSignature.deserialize(proof.signature_bytes)
    responses = list(signature.responses)
    responses[0] = (responses[0] + 1) % CURVE_ORDER
    tampered = dataclasses.replace(signature, responses=responses)

    result = RingSignatureVerifier().verify(
        cloud, RingProof(tampered.serialize(), proof.public_inputs))
    assert not result.accepted


def test_ring_order_matters(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    proof = sign_transfer(statement_for(make_cloud(ring)), ring, keys[0])

    reordered = make_cloud(list(reversed(ring)))
    assert not RingSignatureVerifier().verify(reordered, proof).accepted


def test_ring_size_mismatch(keys, make_cloud):
    small_ring = [key.public_key for key in keys[:3]]
    large_cloud = make_cloud([key.public_key for key in keys[:4]])
    proof = sign_transfer(statement_for(large_cloud), small_ring, keys[0])

    result = RingSignatureVerifier().verify(large_cloud, proof)
    assert result.reason == RejectionReason.RING_SIZE_MISMATCH


def test_empty_inputs_rejected_without_cryptography(keys, make_cloud, monkeypatch):
    def explode(*args, **kwargs):
        raise AssertionError("cryptographic work performed on empty input")

    monkeypatch.setattr(ring_signatures, "lsag_verify", explode)
    monkeypatch.setattr(TransferStatement, "decode", classmethod(explode))

    cloud = make_cloud([key.public_key for key in keys[:3]])
    verifier = RingSignatureVerifier()

    assert verifier.verify(cloud, RingProof(b"", b"{}")).reason == RejectionReason.EMPTY_PROOF
    assert verifier.verify(cloud, RingProof(b"\x01", b"")).reason == RejectionReason.EMPTY_PUBLIC_INPUTS


def test_malformed_inputs(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    proof = sign_transfer(statement_for(cloud), ring, keys[0])
    verifier = RingSignatureVerifier()

    garbage_inputs = verifier.verify(cloud, RingProof(proof.signature_bytes, b"not json"))
    assert garbage_inputs.reason == RejectionReason.MALFORMED_PUBLIC_INPUTS

    truncated = verifier.verify(cloud, RingProof(proof.signature_bytes[:-1], proof.public_inputs))
    assert truncated.reason == RejectionReason.MALFORMED_PROOF

    oversized = RingSignatureVerifier(max_proof_bytes=64).verify(cloud, proof)
    assert oversized.reason == RejectionReason.MALFORMED_PROOF

    long_inputs = RingSignatureVerifier(max_public_input_bytes=16).verify(cloud, proof)
    assert long_inputs.reason == RejectionReason.MALFORMED_PUBLIC_INPUTS


def test_deeply_nested_public_inputs_are_rejected(keys, make_cloud):
    ring = [key.public_key for key in keys[:2]]
    cloud = make_cloud(ring)
    nested = b"[" * 200_000 + b"]" * 200_000

    result = RingSignatureVerifier().verify(cloud, RingProof(b"\x01", nested))
    assert result.reason == RejectionReason.MALFORMED_PUBLIC_INPUTS

    with pytest.raises(ValueError):
        TransferStatement.decode(nested)


def test_invalid_key_image_rejected(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    proof = sign_transfer(statement_for(cloud), ring, keys[0])

    signature = LSAGSignature.deserialize(proof.signature_bytes)
    identity_image = dataclasses.replace(signature, key_image=b"\x01" + b"\x00" * 31)

    result = RingSignatureVerifier().verify(
        cloud, RingProof(identity_image.serialize(), proof.public_inputs))
    assert result.reason == RejectionReason.INVALID_KEY_IMAGE


def test_verification_is_pure_and_idempotent(keys, make_cloud):
    ring = [key.public_key for key in keys[:4]]
    cloud = make_cloud(ring)
    proof = sign_transfer(statement_for(cloud), ring, keys[3])
    verifier = RingSignatureVerifier()

    first = verifier.verify(cloud, proof)
    second = verifier.verify(cloud, proof)

    assert first == second
    assert first.accepted
    assert first.key_image not in ring


def test_transfer_scope_links_only_identical_statements(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    nonce = b"\x07" * 16

    first = LSAGSignature.deserialize(
        sign_transfer(statement_for(cloud, nonce=nonce), ring, keys[0]).signature_bytes)
    replay = LSAGSignature.deserialize(
        sign_transfer(statement_for(cloud, nonce=nonce), ring, keys[0]).signature_bytes)
    fresh = LSAGSignature.deserialize(
        sign_transfer(statement_for(cloud), ring, keys[0]).signature_bytes)

    assert first.link(replay)
    assert not first.link(fresh)


def test_cloud_scope_links_every_spend_by_a_member(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    verifier = RingSignatureVerifier(link_scope=LinkScope.CLOUD)

    a1 = sign_transfer(statement_for(cloud, amount=1), ring, keys[0], LinkScope.CLOUD)
    a2 = sign_transfer(statement_for(cloud, amount=2), ring, keys[0], LinkScope.CLOUD)
    b1 = sign_transfer(statement_for(cloud, amount=1), ring, keys[1], LinkScope.CLOUD)

    images = [verifier.verify(cloud, proof).key_image for proof in (a1, a2, b1)]

    assert images[0] == images[1]
    assert images[0] != images[2]


def test_scope_mismatch_fails_verification(keys, make_cloud):
    ring = [key.public_key for key in keys[:3]]
    cloud = make_cloud(ring)
    proof = sign_transfer(statement_for(cloud), ring, keys[0], LinkScope.CLOUD)

    result = RingSignatureVerifier(link_scope=LinkScope.TRANSFER).verify(cloud, proof)
    assert result.reason == RejectionReason.SIGNATURE_MISMATCH


def test_statement_requires_canonical_encoding(make_cloud, keys):
    cloud = make_cloud([key.public_key for key in keys[:2]])
    statement = statement_for(cloud)

    assert TransferStatement.decode(statement.encode()) == statement

    pretty = json.dumps(json.loads(statement.encode()), indent=2).encode()
    with pytest.raises(ValueError):
        TransferStatement.decode(pretty)

    with pytest.raises(ValueError):
        TransferStatement.decode(b'{"amount":1}')


def test_statement_field_validation():
    with pytest.raises(ValueError):
        TransferStatement.create(b"\x00" * 31, SENDER, RECIPIENT, 1)
    with pytest.raises(ValueError):
        TransferStatement.create(b"\x00" * 32, SENDER, RECIPIENT, 2**64)
    with pytest.raises(ValueError):
        TransferStatement.create(b"\x00" * 32, SENDER, RECIPIENT, 1, nonce=b"short")


def test_signature_decoding_rejects_noncanonical_scalars(keys, make_cloud):
    ring = [key.public_key for key in keys[:2]]
    proof = sign_transfer(statement_for(make_cloud(ring)), ring, keys[0])

    data = bytearray(proof.signature_bytes)
    # c0 follows the version byte and the key image
    data[33:65] = b"\xff" * 32
    with pytest.raises(ProofEncodingError):
        LSAGSignature.deserialize(bytes(data))

    with pytest.raises(ProofEncodingError):
        LSAGSignature.deserialize(proof.signature_bytes + b"\x00")
