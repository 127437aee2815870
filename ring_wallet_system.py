#!/usr/bin/env python3
"""
Ring Wallet Program
===================
Anonymous ring authorization over a ledger registry: rings of Ed25519 keys
("probability clouds") authorize transfers with linkable ring signatures and
attest aggregate holdings with range proofs, without revealing which member
acted.

Public operations: initialize, create_cloud, transfer_with_ring_proof,
prove_holdings.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from config.config import SystemConfig
from ledger.cloud_registry import (
    CloudStore,
    ProbabilityCloud,
    Registry,
    RegistryStore,
    key_image_address,
)
from ledger.ledger_runtime import (
    EventLog,
    LedgerClock,
    RecordStore,
    SettlementError,
    SettlementLedger,
    WalletError,
)
from zk.zk_proofs import Ed25519Group, RejectionReason, VerificationResult
from zk.ring_signatures import (
    LinkScope,
    RingProof,
    RingSignatureVerifier,
    TransferStatement,
)
from zk.holdings_proofs import ConfidentialBalanceRegistry, HoldingsThresholdVerifier

logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1

# ============================================================================
# ERRORS AND EVENTS
# ============================================================================


class InvalidProof(WalletError):
    """Proof is empty, malformed or does not verify"""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        super().__init__(f"Invalid proof: {reason.value}" + (f" ({detail})" if detail else ""))


class InvalidPublicInputs(WalletError):
    """Public inputs are empty, malformed or do not match the request"""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        super().__init__(f"Invalid public inputs: {reason.value}" + (f" ({detail})" if detail else ""))


class ProofReplayed(InvalidProof):
    """The proof's key image was already spent against this cloud"""

    def __init__(self, detail: str = ""):
        super().__init__(RejectionReason.KEY_IMAGE_SPENT, detail)


def rejection_error(result: VerificationResult) -> WalletError:
    if result.reason.concerns_public_inputs:
        return InvalidPublicInputs(result.reason, result.detail)
    return InvalidProof(result.reason, result.detail)


@dataclass(frozen=True)
class HoldingsProofVerified:
    cloud_id: int
    threshold: int
    timestamp: int


@dataclass(frozen=True)
class RingTransferExecuted:
    cloud_id: int
    amount: int
    timestamp: int


class TransferPhase(Enum):
    VERIFYING = "verifying"
    SETTLING = "settling"
    REJECTED = "rejected"


@dataclass
class TransferReceipt:
    cloud_address: bytes
    recipient: bytes
    amount: int
    key_image: bytes
    phase: TransferPhase
    timestamp: int
    verification_time: float


# ============================================================================
# TRANSFER ORCHESTRATOR
# ============================================================================


class TransferOrchestrator:
    """Verify a ring proof, then settle. Nothing moves unless the proof holds."""

    def __init__(self, verifier: RingSignatureVerifier, settlement: SettlementLedger,
                 store: RecordStore, program_id: bytes, clock: LedgerClock, events: EventLog):
        self.verifier = verifier
        self.settlement = settlement
        self.store = store
        self.program_id = program_id
        self.clock = clock
        self.events = events

    def execute(self, cloud: ProbabilityCloud, proof: bytes, public_inputs: bytes,
                sender: bytes, recipient: bytes, amount: int) -> TransferReceipt:
        phase = TransferPhase.VERIFYING
        start_time = time.time()

        try:
            statement = self._check_request(cloud, proof, public_inputs, sender, recipient, amount)

            result = self.verifier.verify(cloud, RingProof(proof, public_inputs))
            if not result.accepted:
                raise rejection_error(result)

            spent_address = key_image_address(self.program_id, cloud.address, result.key_image)
            if self.store.contains(spent_address):
                raise ProofReplayed("key image already used for this cloud")
        except WalletError as e:
            logger.warning(f"  ✗ Transfer rejected while {phase.value}: {e}")
            raise

        verification_time = time.time() - start_time
        logger.info(f"  ✓ Ring proof verified in {verification_time:.3f}s")

        phase = TransferPhase.SETTLING
        try:
            self.settlement.transfer(sender, recipient, amount)
        except SettlementError as e:
            logger.warning(f"  ✗ Transfer rejected while {phase.value}: {e}")
            raise
        logger.info(f"  ✓ Settled {amount} lamports")

        self.store.create(spent_address, cloud.address, result.key_image)

        timestamp = self.clock.unix_timestamp()
        self.events.emit(RingTransferExecuted(
            cloud_id=cloud.cloud_id, amount=amount, timestamp=timestamp))
        self.events.log(f"Transfer of {statement.amount} lamports executed with ring signature")

        return TransferReceipt(
            cloud_address=cloud.address,
            recipient=recipient,
            amount=amount,
            key_image=result.key_image,
            phase=phase,
            timestamp=timestamp,
            verification_time=verification_time,
        )

    def _check_request(self, cloud: ProbabilityCloud, proof: bytes, public_inputs: bytes,
                       sender: bytes, recipient: bytes, amount: int) -> TransferStatement:
        if not proof:
            raise InvalidProof(RejectionReason.EMPTY_PROOF)
        if not public_inputs:
            raise InvalidPublicInputs(RejectionReason.EMPTY_PUBLIC_INPUTS)
        if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= U64_MAX:
            raise InvalidPublicInputs(RejectionReason.MALFORMED_PUBLIC_INPUTS,
                                      "amount must fit in an unsigned 64-bit integer")

        try:
            statement = TransferStatement.decode(public_inputs)
        except ValueError as e:
            raise InvalidPublicInputs(RejectionReason.MALFORMED_PUBLIC_INPUTS, str(e))

        if statement.domain != cloud.address:
            raise InvalidPublicInputs(RejectionReason.DOMAIN_MISMATCH)
        if (statement.sender, statement.recipient, statement.amount) != (bytes(sender), bytes(recipient), amount):
            raise InvalidPublicInputs(RejectionReason.STATEMENT_MISMATCH,
                                      "sender, recipient or amount differ from the signed statement")
        # only an account in the ring can be debited by the ring's signature
        if not cloud.contains(sender):
            raise InvalidPublicInputs(RejectionReason.STATEMENT_MISMATCH,
                                      "sender is not a member of the cloud")
        return statement


# ============================================================================
# RING WALLET PROGRAM
# ============================================================================


class RingWalletProgram:
    """
    Public operation surface of the ring wallet:
    1. initialize: create the registry singleton
    2. create_cloud: materialize a ring of member keys
    3. transfer_with_ring_proof: move funds on a verified ring signature
    4. prove_holdings: attest that a ring's holdings meet a threshold

    State-mutating operations run one at a time under a single lock.
    """

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        store: Optional[RecordStore] = None,
        settlement: Optional[SettlementLedger] = None,
        clock: Optional[LedgerClock] = None,
        events: Optional[EventLog] = None,
        balance_source: Optional[ConfidentialBalanceRegistry] = None,
    ):
        self.config = config or SystemConfig()
        self.program_id = self.config.ledger_config.program_id()

        self.store = store or RecordStore()
        self.settlement = settlement or SettlementLedger()
        self.clock = clock or LedgerClock()
        self.events = events or EventLog()
        self.balance_source = balance_source or ConfidentialBalanceRegistry()

        ring_config = self.config.ring_config
        holdings_config = self.config.holdings_config

        self.registry = RegistryStore(self.store, self.program_id)
        self.clouds = CloudStore(
            self.store, self.program_id, self.clock,
            registry=self.registry,
            events=self.events,
            key_validator=Ed25519Group.is_valid_point,
            reject_duplicate_members=ring_config.reject_duplicate_members,
        )

        self.ring_verifier = RingSignatureVerifier(
            link_scope=LinkScope(ring_config.link_scope),
            max_proof_bytes=ring_config.max_proof_bytes,
            max_public_input_bytes=ring_config.max_public_input_bytes)
        self.holdings_verifier = HoldingsThresholdVerifier(
            self.balance_source,
            range_bits=holdings_config.range_bits,
            max_proof_bytes=holdings_config.max_proof_bytes)

        self.orchestrator = TransferOrchestrator(
            self.ring_verifier, self.settlement, self.store,
            self.program_id, self.clock, self.events)

        self.transfers_executed = 0
        self.holdings_attested = 0
        self._lock = asyncio.Lock()

        logger.info(f" Ring wallet program ready (link scope: {ring_config.link_scope})")

    async def initialize(self, caller: bytes) -> Registry:
        async with self._lock:
            return self.registry.initialize(caller)

    async def create_cloud(self, caller: bytes, ring_public_keys: Sequence[bytes],
                           cloud_id: int) -> ProbabilityCloud:
        async with self._lock:
            return self.clouds.create_cloud(caller, ring_public_keys, cloud_id)

    async def transfer_with_ring_proof(self, cloud_address: bytes, proof: bytes,
                                       public_inputs: bytes, sender: bytes,
                                       recipient: bytes, amount: int) -> TransferReceipt:
        """
        Transfer workflow:
        1. Reject empty proof or public inputs without any cryptographic work
        2. Check the signed statement against the request and the sender against the ring
        3. Verify the ring signature against the stored ring
        4. Settle the transfer, spend the key image and emit the event
        """
        async with self._lock:
            cloud = self.clouds.get_cloud(cloud_address)
            logger.info(f" Ring transfer of {amount} lamports from cloud {cloud.cloud_id}")

            receipt = self.orchestrator.execute(
                cloud, proof, public_inputs, sender, recipient, amount)
            self.transfers_executed += 1
            return receipt

    async def prove_holdings(self, cloud_address: bytes, proof: bytes,
                             threshold: int) -> HoldingsProofVerified:
        async with self._lock:
            cloud = self.clouds.get_cloud(cloud_address)

            result = self.holdings_verifier.verify(cloud, proof, threshold)
            if not result.accepted:
                raise rejection_error(result)

            event = HoldingsProofVerified(
                cloud_id=cloud.cloud_id,
                threshold=threshold,
                timestamp=self.clock.unix_timestamp())
            self.events.emit(event)
            self.holdings_attested += 1
            return event

    def get_cloud(self, authority: bytes, cloud_id: int) -> ProbabilityCloud:
        return self.clouds.get_cloud(self.clouds.cloud_address(authority, cloud_id))

    def get_system_metrics(self) -> Dict[str, Any]:
        registry = self.registry.load()
        return {
            'program_id': self.program_id.hex(),
            'registry_initialized': registry is not None,
            'cloud_count': registry.cloud_count if registry else 0,
            'records_stored': len(self.store),
            'transfers_executed': self.transfers_executed,
            'holdings_attested': self.holdings_attested,
            'settlement_transfers': self.settlement.transfer_count,
            'events_emitted': len(self.events.events),
            'attested_balances': len(self.balance_source),
            'link_scope': self.ring_verifier.link_scope.value,
        }

# ============================================================================
# DEMONSTRATION
# ============================================================================


async def demonstrate_ring_wallet(config: Optional[SystemConfig] = None, ring_size: int = 5,
                                  transfers: int = 2) -> Dict[str, Any]:
    """Walk through registry setup, cloud creation, ring transfers and a holdings attestation"""
    from wallet.address_cloud import AddressCloud
    from zk.holdings_proofs import BalanceOpening, HoldingsProver

    print("\n" + "="*80)
    print("  RING WALLET DEMONSTRATION")
    print("="*80 + "\n")

    program = RingWalletProgram(config)
    funding = program.config.ledger_config.demo_funding_lamports
    authority = Ed25519Group.base_mult(Ed25519Group.random_scalar())

    await program.initialize(authority)
    print(" Registry initialized\n")

    cloud_keys = AddressCloud.generate(ring_size)
    cloud = await program.create_cloud(authority, cloud_keys.addresses, cloud_keys.cloud_id)
    info = cloud_keys.describe()
    print(f" Cloud {cloud.cloud_id} created with {cloud.ring_size} addresses")
    print(f"  Anonymity set: {info['anonymity_set']}\n")

    sender = cloud_keys.user_key.public_key
    program.settlement.fund(sender, funding)

    print(" Executing ring-authorized transfers...")
    receipts = []
    amount = funding // (4 * max(transfers, 1))
    for i in range(transfers):
        recipient = Ed25519Group.base_mult(Ed25519Group.random_scalar())
        proof, public_inputs = cloud_keys.sign_transfer(cloud.address, sender, recipient, amount)
        receipt = await program.transfer_with_ring_proof(
            cloud.address, proof, public_inputs, sender, recipient, amount)
        receipts.append(receipt)
        print(f"  ✓ Transfer {i}: {amount} lamports (key image {receipt.key_image.hex()[:16]}...)")
    print()

    print(" Attesting aggregate holdings...")
    openings = {}
    for key in cloud_keys.keys:
        opening = BalanceOpening.random(program.settlement.balance(key.public_key))
        openings[key.public_key] = opening
        program.balance_source.attest(key.public_key, opening.commitment())

    total = sum(opening.value for opening in openings.values())
    threshold = total // 2
    prover = HoldingsProver(range_bits=program.config.holdings_config.range_bits)
    holdings_proof = prover.prove(cloud.address, cloud.ring_public_keys, openings, threshold)
    event = await program.prove_holdings(cloud.address, holdings_proof.proof_bytes, threshold)
    print(f"  ✓ Holdings of cloud {event.cloud_id} meet threshold {event.threshold}\n")

    metrics = program.get_system_metrics()

    print("="*80)
    print(" DEMONSTRATION COMPLETE")
    print("="*80 + "\n")

    return {
        'success': True,
        'cloud': info,
        'cloud_address': cloud.address.hex(),
        'transfers': [
            {
                'amount': receipt.amount,
                'recipient': receipt.recipient.hex(),
                'key_image': receipt.key_image.hex(),
                'verification_time': receipt.verification_time,
            }
            for receipt in receipts
        ],
        'holdings_threshold': threshold,
        'metrics': metrics,
    }


if __name__ == "__main__":
    asyncio.run(demonstrate_ring_wallet())
