import stat

import pytest

from wallet.address_cloud import AddressCloud
from zk.ring_signatures import RingProof, RingSignatureVerifier


def test_generate_respects_size_bounds():
    with pytest.raises(ValueError):
        AddressCloud.generate(1)
    with pytest.raises(ValueError):
        AddressCloud.generate(21)

    cloud = AddressCloud.generate(4, cloud_id=17)
    assert len(cloud.addresses) == 4
    assert len(set(cloud.addresses)) == 4
    assert 0 <= cloud.user_index < 4
    assert cloud.cloud_id == 17


def test_describe_reports_anonymity_set():
    cloud = AddressCloud.generate(6, cloud_id=3)
    info = cloud.describe()

    assert info['total_addresses'] == 6
    assert info['anonymity_set'] == "1 of 6"
    assert info['user_address'] in info['all_addresses']


def test_save_and_load(tmp_path):
    cloud = AddressCloud.generate(3, cloud_id=5)
    path = tmp_path / "clouds" / "cloud.json"

    cloud.save(path)
    restored = AddressCloud.load(path)

    assert restored.addresses == cloud.addresses
    assert restored.user_index == cloud.user_index
    assert restored.cloud_id == 5
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_signed_transfer_verifies_against_cloud(make_cloud):
    keys = AddressCloud.generate(5)
    cloud = make_cloud(keys.addresses)

    proof, public_inputs = keys.sign_transfer(
        cloud.address, keys.user_key.public_key, b"\x03" * 32, 42)
    result = RingSignatureVerifier().verify(cloud, RingProof(proof, public_inputs))

    assert result.accepted
