import hashlib
import sys
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.config import SystemConfig, RingConfig  # noqa: E402
from ledger.cloud_registry import ProbabilityCloud  # noqa: E402
from ledger.ledger_runtime import ManualClock  # noqa: E402
from ring_wallet_system import RingWalletProgram  # noqa: E402
from zk.ring_signatures import RingMemberKey  # noqa: E402


def member_key(index: int) -> RingMemberKey:
    return RingMemberKey.from_seed(hashlib.sha256(f"member-{index}".encode()).digest())


@pytest.fixture(scope="session")
def keys():
    """26 deterministic, distinct ring member keys"""
    return [member_key(i) for i in range(26)]


@pytest.fixture
def authority():
    return member_key(1000).public_key


@pytest.fixture
def config(tmp_path):
    return SystemConfig(log_dir=tmp_path / "logs", results_dir=tmp_path / "results")


@pytest.fixture
def cloud_scope_config(tmp_path):
    return SystemConfig(ring_config=RingConfig(link_scope="cloud"),
                        log_dir=tmp_path / "logs", results_dir=tmp_path / "results")


@pytest.fixture
def clock():
    return ManualClock(start=1_700_000_000)


@pytest.fixture
def program(config, clock):
    return RingWalletProgram(config, clock=clock)


@pytest.fixture
def make_cloud():
    """Build a ProbabilityCloud in memory, for verifier tests that need no ledger"""
    def _make(public_keys, label: bytes = b"cloud-a", cloud_id: int = 1):
        return ProbabilityCloud(
            address=hashlib.sha256(label).digest(),
            authority=b"\x11" * 32,
            cloud_id=cloud_id,
            ring_public_keys=tuple(public_keys),
            created_at=0,
        )
    return _make
