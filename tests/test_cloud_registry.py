import threading

import pytest

from ledger.cloud_registry import (
    CloudNotFound,
    CloudStore,
    DuplicateRingMember,
    InvalidRingMember,
    ProbabilityCloud,
    RecordDecodeError,
    Registry,
    RegistryStore,
    RingTooLarge,
    RingTooSmall,
    cloud_address,
)
from ledger.ledger_runtime import (
    AlreadyInitialized,
    EventLog,
    ManualClock,
    RecordStore,
    StorageCollision,
    VersionConflict,
)
from zk.zk_proofs import IDENTITY_POINT, Ed25519Group

PROGRAM_ID = b"\x42" * 32


@pytest.fixture
def store():
    return RecordStore()


@pytest.fixture
def registry(store):
    return RegistryStore(store, PROGRAM_ID)


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def clouds(store, registry, events):
    return CloudStore(store, PROGRAM_ID, ManualClock(start=1_234), registry=registry,
                      events=events, key_validator=Ed25519Group.is_valid_point)


@pytest.mark.parametrize("size", range(0, 26))
def test_ring_size_bounds(clouds, keys, authority, size):
    ring = [key.public_key for key in keys[:size]]

    if size < 2:
        with pytest.raises(RingTooSmall):
            clouds.create_cloud(authority, ring, size)
    elif size > 20:
        with pytest.raises(RingTooLarge):
            clouds.create_cloud(authority, ring, size)
    else:
        cloud = clouds.create_cloud(authority, ring, size)
        assert cloud.ring_size == size


def test_created_cloud_keeps_ring_verbatim(clouds, keys, authority, events):
    ring = [key.public_key for key in keys[:7]]
    cloud = clouds.create_cloud(authority, ring, 99)

    stored = clouds.get_cloud(cloud.address)
    assert stored == cloud
    assert list(stored.ring_public_keys) == ring
    assert stored.ring_size == 7
    assert stored.created_at == 1_234
    assert stored.address == cloud_address(PROGRAM_ID, authority, 99)
    assert events.messages == ["Probability cloud created with 7 addresses"]


def test_collision_never_overwrites(clouds, keys, authority, store):
    original = clouds.create_cloud(authority, [k.public_key for k in keys[:3]], 5)
    before = store.get(original.address)

    with pytest.raises(StorageCollision):
        clouds.create_cloud(authority, [k.public_key for k in keys[3:8]], 5)

    assert store.get(original.address) == before
    assert clouds.get_cloud(original.address).ring_size == 3


def test_cloud_address_depends_on_authority_and_id(clouds, keys):
    ring = [key.public_key for key in keys[:2]]
    first = clouds.create_cloud(keys[20].public_key, ring, 1)
    other_authority = clouds.create_cloud(keys[21].public_key, ring, 1)
    other_id = clouds.create_cloud(keys[20].public_key, ring, 2)

    assert len({first.address, other_authority.address, other_id.address}) == 3


def test_invalid_ring_members(clouds, keys, authority):
    good = keys[0].public_key
    with pytest.raises(InvalidRingMember):
        clouds.create_cloud(authority, [good, good[:31]], 1)
    with pytest.raises(InvalidRingMember):
        clouds.create_cloud(authority, [good, IDENTITY_POINT], 1)
    with pytest.raises(InvalidRingMember):
        clouds.create_cloud(authority, [good, b"\xff" * 32], 1)


def test_duplicate_members(store, keys, authority):
    ring = [keys[0].public_key, keys[1].public_key, keys[0].public_key]

    strict = CloudStore(store, PROGRAM_ID, ManualClock())
    with pytest.raises(DuplicateRingMember):
        strict.create_cloud(authority, ring, 1)

    lenient = CloudStore(store, PROGRAM_ID, ManualClock(), reject_duplicate_members=False)
    assert lenient.create_cloud(authority, ring, 1).ring_size == 3


def test_cloud_id_must_be_u64(clouds, keys, authority):
    ring = [key.public_key for key in keys[:2]]
    with pytest.raises(ValueError):
        clouds.create_cloud(authority, ring, -1)
    with pytest.raises(ValueError):
        clouds.create_cloud(authority, ring, 2**64)


def test_registry_lifecycle(registry, clouds, keys, authority):
    assert registry.load() is None

    created = registry.initialize(authority)
    assert created == Registry(authority=authority, cloud_count=0)

    with pytest.raises(AlreadyInitialized):
        registry.initialize(keys[0].public_key)

    clouds.create_cloud(authority, [k.public_key for k in keys[:2]], 1)
    clouds.create_cloud(authority, [k.public_key for k in keys[:3]], 2)

    loaded = registry.load()
    assert loaded.authority == authority
    assert loaded.cloud_count == 2


def test_clouds_work_without_registry(clouds, registry, keys, authority):
    cloud = clouds.create_cloud(authority, [k.public_key for k in keys[:2]], 1)

    assert registry.load() is None
    assert clouds.find_cloud(authority, 1) == cloud


def test_lookup_of_missing_cloud(clouds, authority):
    assert clouds.find_cloud(authority, 12345) is None
    with pytest.raises(CloudNotFound):
        clouds.get_cloud(b"\x00" * 32)


def test_record_decoding_rejects_bad_layouts(clouds, keys, authority):
    cloud = clouds.create_cloud(authority, [k.public_key for k in keys[:3]], 1)
    data = bytearray(cloud.serialize())

    wrong_discriminator = b"\x00" * 8 + bytes(data[8:])
    with pytest.raises(RecordDecodeError):
        ProbabilityCloud.deserialize(cloud.address, wrong_discriminator)

    # ring_size byte sits after discriminator, authority and cloud_id
    data[8 + 32 + 8] = 4
    with pytest.raises(RecordDecodeError):
        ProbabilityCloud.deserialize(cloud.address, bytes(data))

    with pytest.raises(RecordDecodeError):
        Registry.deserialize(cloud.serialize())


def test_versioned_updates(store):
    store.create(b"a" * 32, b"o" * 32, b"v0")
    store.update(b"a" * 32, b"v1", expected_version=0)

    with pytest.raises(VersionConflict):
        store.update(b"a" * 32, b"v2", expected_version=0)
    assert store.get(b"a" * 32).data == b"v1"


def test_concurrent_creates_have_one_winner(store):
    address = b"\x05" * 32
    outcomes = []
    barrier = threading.Barrier(8)

    def worker(index):
        barrier.wait()
        try:
            store.create(address, bytes([index]) * 32, bytes([index]))
            outcomes.append("won")
        except StorageCollision:
            outcomes.append("collided")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("won") == 1
    assert outcomes.count("collided") == 7


def test_caller_must_be_a_full_key(store, registry, clouds, keys, authority):
    ring = [key.public_key for key in keys[:2]]

    with pytest.raises(ValueError):
        registry.initialize(b"short")
    assert registry.load() is None

    with pytest.raises(ValueError):
        clouds.create_cloud(b"short", ring, 1)
    assert not store.contains(cloud_address(PROGRAM_ID, b"short", 1))
    assert len(store) == 0

    registry.initialize(authority)
    clouds.create_cloud(authority, ring, 1)
    assert registry.load().cloud_count == 1
