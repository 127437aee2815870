"""
Zero-Knowledge Proof Module for the Ring Wallet
Linkable ring signatures and aggregate holdings threshold proofs over Ed25519
"""

from .zk_proofs import (
    # Core types
    Ed25519Group,
    Transcript,
    ProofType,
    RejectionReason,
    VerificationResult,
    IDENTITY_POINT,

    # Exceptions
    ZKError,
    GroupElementError,
    ProofEncodingError,
    ProofGenerationError,
)
from .ring_signatures import (
    LinkScope,
    LSAGSignature,
    RingMemberKey,
    RingProof,
    RingSignatureVerifier,
    TransferStatement,
    sign_transfer,
)
from .holdings_proofs import (
    BalanceOpening,
    ConfidentialBalanceRegistry,
    HoldingsProof,
    HoldingsProver,
    HoldingsThresholdVerifier,
    pedersen_commit,
)

__version__ = "1.0.0"
__author__ = "Ring Wallet Team"

__all__ = [
    # Classes
    'Ed25519Group',
    'Transcript',
    'ProofType',
    'RejectionReason',
    'VerificationResult',
    'IDENTITY_POINT',
    'LinkScope',
    'LSAGSignature',
    'RingMemberKey',
    'RingProof',
    'RingSignatureVerifier',
    'TransferStatement',
    'sign_transfer',
    'BalanceOpening',
    'ConfidentialBalanceRegistry',
    'HoldingsProof',
    'HoldingsProver',
    'HoldingsThresholdVerifier',
    'pedersen_commit',

    # Exceptions
    'ZKError',
    'GroupElementError',
    'ProofEncodingError',
    'ProofGenerationError',
]
