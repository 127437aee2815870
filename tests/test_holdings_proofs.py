import pytest

from zk.holdings_proofs import (
    BalanceOpening,
    ConfidentialBalanceRegistry,
    HoldingsProver,
    HoldingsThresholdVerifier,
    pedersen_commit,
)
from zk.zk_proofs import (
    Ed25519Group,
    GroupElementError,
    ProofGenerationError,
    RejectionReason,
)

BALANCES = [100, 250, 0]
TOTAL = sum(BALANCES)


@pytest.fixture
def ring(keys):
    return [key.public_key for key in keys[:3]]


@pytest.fixture
def openings(ring):
    return {key: BalanceOpening.random(value) for key, value in zip(ring, BALANCES)}


@pytest.fixture
def balance_source(ring, openings):
    registry = ConfidentialBalanceRegistry()
    # the zero-balance member is deliberately left unattested
    for key in ring[:2]:
        registry.attest(key, openings[key].commitment())
    return registry


@pytest.fixture
def cloud(make_cloud, ring):
    return make_cloud(ring)


@pytest.fixture
def verifier(balance_source):
    return HoldingsThresholdVerifier(balance_source)


def test_commitments_are_additive():
    a = BalanceOpening(value=40, blinding=7)
    b = BalanceOpening(value=2, blinding=11)

    combined = Ed25519Group.add(a.commitment(), b.commitment())
    assert combined == pedersen_commit(42, 18)


@pytest.mark.parametrize("threshold", [0, 1, TOTAL - 1, TOTAL])
def test_accepts_thresholds_up_to_total(cloud, openings, verifier, threshold):
    proof = HoldingsProver().prove(cloud.address, cloud.ring_public_keys, openings, threshold)
    result = verifier.verify(cloud, proof.proof_bytes, threshold)

    assert result.accepted, result.reason


def test_prover_refuses_threshold_above_total(cloud, openings):
    with pytest.raises(ProofGenerationError):
        HoldingsProver().prove(cloud.address, cloud.ring_public_keys, openings, TOTAL + 1)


def test_inflated_openings_do_not_match_attested_commitments(cloud, ring, openings, verifier):
    inflated = dict(openings)
    inflated[ring[0]] = BalanceOpening.random(10_000)

    proof = HoldingsProver().prove(cloud.address, ring, inflated, TOTAL + 1)
    result = verifier.verify(cloud, proof.proof_bytes, TOTAL + 1)

    assert result.reason == RejectionReason.COMMITMENT_MISMATCH


def test_proof_does_not_transfer_to_higher_threshold(cloud, openings, verifier):
    proof = HoldingsProver().prove(cloud.address, cloud.ring_public_keys, openings, TOTAL)

    result = verifier.verify(cloud, proof.proof_bytes, TOTAL + 1)
    assert not result.accepted


def test_proof_is_bound_to_cloud(make_cloud, ring, openings, verifier):
    cloud_a = make_cloud(ring, label=b"cloud-a")
    cloud_b = make_cloud(ring, label=b"cloud-b")
    proof = HoldingsProver().prove(cloud_a.address, ring, openings, 50)

    result = verifier.verify(cloud_b, proof.proof_bytes, 50)
    assert result.reason == RejectionReason.RANGE_PROOF_INVALID


def test_rejects_empty_and_out_of_range_inputs(cloud, verifier):
    assert verifier.verify(cloud, b"", 10).reason == RejectionReason.EMPTY_PROOF
    assert verifier.verify(cloud, b"\x01", -1).reason == RejectionReason.THRESHOLD_OUT_OF_RANGE
    assert verifier.verify(cloud, b"\x01", 2**64).reason == RejectionReason.THRESHOLD_OUT_OF_RANGE


def test_rejects_malformed_proofs(cloud, openings, verifier):
    proof = HoldingsProver().prove(cloud.address, cloud.ring_public_keys, openings, 10)

    assert verifier.verify(cloud, proof.proof_bytes[:-5], 10).reason == RejectionReason.MALFORMED_PROOF

    short_range = HoldingsProver(range_bits=16).prove(
        cloud.address, cloud.ring_public_keys, openings, 10)
    assert verifier.verify(cloud, short_range.proof_bytes, 10).reason == RejectionReason.MALFORMED_PROOF


def test_tampered_bit_proof_is_rejected(cloud, openings, verifier):
    proof = HoldingsProver().prove(cloud.address, cloud.ring_public_keys, openings, 10)

    data = bytearray(proof.proof_bytes)
    # first byte of bit 3's z0 response: header(2) + 3 bits * 160 + commitment + e0 + e1
    offset = 2 + 3 * 160 + 32 + 64
    data[offset] ^= 0x01

    result = verifier.verify(cloud, bytes(data), 10)
    assert result.reason == RejectionReason.RANGE_PROOF_INVALID


def test_verification_leaves_balance_source_untouched(cloud, openings, verifier, balance_source, ring):
    before = [balance_source.commitment_for(key) for key in ring]
    proof = HoldingsProver().prove(cloud.address, ring, openings, TOTAL)

    verifier.verify(cloud, proof.proof_bytes, TOTAL)
    verifier.verify(cloud, proof.proof_bytes, TOTAL)

    assert [balance_source.commitment_for(key) for key in ring] == before
    assert len(balance_source) == 2


def test_registry_rejects_invalid_commitments(ring):
    registry = ConfidentialBalanceRegistry()
    with pytest.raises(GroupElementError):
        registry.attest(ring[0], b"\x01" + b"\x00" * 31)
    with pytest.raises(ValueError):
        registry.attest(b"\x00" * 5, pedersen_commit(1, 1))


def test_repeated_ring_member_is_counted_once(make_cloud, ring, openings, verifier, balance_source):
    repeated = [ring[0], ring[1], ring[0]]
    cloud = make_cloud(repeated)

    assert balance_source.aggregate(repeated) == balance_source.aggregate(ring[:2])

    proof = HoldingsProver().prove(cloud.address, repeated, openings, TOTAL)
    assert verifier.verify(cloud, proof.proof_bytes, TOTAL).accepted

    with pytest.raises(ProofGenerationError):
        HoldingsProver().prove(cloud.address, repeated, openings, TOTAL + BALANCES[0])
