"""
Client-side Address Clouds
Generates a ring of fresh member keys with one of them belonging to the user,
signs transfers on the user's behalf and persists the cloud locally
"""

import json
import logging
import os
import secrets
import stat
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from zk.ring_signatures import (
    LinkScope,
    RingMemberKey,
    TransferStatement,
    sign_transfer,
)

logger = logging.getLogger(__name__)

MIN_CLOUD_SIZE = 2
MAX_CLOUD_SIZE = 20
DEFAULT_CLOUD_SIZE = 10


@dataclass
class AddressCloud:
    keys: List[RingMemberKey]
    cloud_id: int
    user_index: int

    @classmethod
    def generate(cls, size: int = DEFAULT_CLOUD_SIZE, cloud_id: Optional[int] = None) -> 'AddressCloud':
        """Create ``size`` fresh keys and pick one at random as the user's"""
        if size < MIN_CLOUD_SIZE or size > MAX_CLOUD_SIZE:
            raise ValueError(
                f"Cloud size must be between {MIN_CLOUD_SIZE} and {MAX_CLOUD_SIZE}")

        keys = [RingMemberKey.generate() for _ in range(size)]
        if cloud_id is None:
            cloud_id = int(time.time() * 1000)

        cloud = cls(keys=keys, cloud_id=cloud_id, user_index=secrets.randbelow(size))
        logger.info(f"Generated address cloud {cloud_id} with {size} addresses")
        return cloud

    @property
    def addresses(self) -> List[bytes]:
        return [key.public_key for key in self.keys]

    @property
    def user_key(self) -> RingMemberKey:
        return self.keys[self.user_index]

    def sign_transfer(self, cloud_address: bytes, sender: bytes, recipient: bytes, amount: int,
                      nonce: Optional[bytes] = None,
                      link_scope: LinkScope = LinkScope.TRANSFER) -> Tuple[bytes, bytes]:
        """Return ``(proof, public_inputs)`` for a transfer out of this cloud"""
        statement = TransferStatement.create(
            domain=cloud_address, sender=sender, recipient=recipient,
            amount=amount, nonce=nonce)
        proof = sign_transfer(statement, self.addresses, self.user_key, link_scope)
        return proof.signature_bytes, proof.public_inputs

    def describe(self) -> Dict[str, Any]:
        return {
            'total_addresses': len(self.keys),
            'cloud_id': self.cloud_id,
            'user_address': self.user_key.public_key.hex(),
            'all_addresses': [address.hex() for address in self.addresses],
            'anonymity_set': f"1 of {len(self.keys)}",
        }

    def save(self, path: Path):
        """Write the cloud, seeds included, readable by the owner only"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            'cloud_id': self.cloud_id,
            'user_index': self.user_index,
            'seeds': [key.seed.hex() for key in self.keys],
        }

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
                     stat.S_IRUSR | stat.S_IWUSR)
        with os.fdopen(fd, 'w') as f:
            json.dump(payload, f, indent=2)
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)

        logger.info(f"Address cloud {self.cloud_id} saved to {path}")

    @classmethod
    def load(cls, path: Path) -> 'AddressCloud':
        with open(path, 'r') as f:
            payload = json.load(f)

        keys = [RingMemberKey.from_seed(bytes.fromhex(seed)) for seed in payload['seeds']]
        user_index = payload['user_index']
        if not 0 <= user_index < len(keys):
            raise ValueError("Stored user index is outside the cloud")

        return cls(keys=keys, cloud_id=payload['cloud_id'], user_index=user_index)
