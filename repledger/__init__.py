"""
Encrypted Reputation Ledger - private forum reputation with verifiable badges.

This package computes forum-participation reputation scores over activity
counters that stay encrypted end-to-end, and mints a badge at most once per
user after an authenticated out-of-band decryption.
"""

__version__ = "0.4.0"

# Errors
from .errors import (
    LedgerError,
    NotFound,
    CiphertextFormatError,
    AlreadyMinted,
    UnknownRequest,
    RequestExpired,
    InvalidProof,
)

# Ciphertext arithmetic
from .ciphertext import Ciphertext, CiphertextAdapterInterface, PaillierAdapter, generate_context

# Ledger components
from .activity import EncryptedActivity, ActivityStoreInterface, MemoryActivityStore
from .state import ReputationState, DecryptionRequest, RequestStatus, MemoryLedgerState
from .aggregator import ReputationAggregator
from .oracle import (
    DecryptionOracleInterface,
    LocalDecryptionOracle,
    ProofVerifier,
    generate_oracle_identity,
)
from .badges import (
    AlreadyIssued,
    BadgeIssuanceGate,
    IssuedBadge,
    MemoryMinter,
    MintCapabilityInterface,
)
from .ledger import EncryptedReputationLedger

# Config & observability
from .config import LedgerConfig
from .metrics import LedgerMetrics, get_metrics


__all__ = [
    "__version__",
    # Errors
    "LedgerError",
    "NotFound",
    "CiphertextFormatError",
    "AlreadyMinted",
    "UnknownRequest",
    "RequestExpired",
    "InvalidProof",
    # Ciphertext
    "Ciphertext",
    "CiphertextAdapterInterface",
    "PaillierAdapter",
    "generate_context",
    # Activity
    "EncryptedActivity",
    "ActivityStoreInterface",
    "MemoryActivityStore",
    # State
    "ReputationState",
    "DecryptionRequest",
    "RequestStatus",
    "MemoryLedgerState",
    # Aggregation
    "ReputationAggregator",
    # Oracle
    "DecryptionOracleInterface",
    "LocalDecryptionOracle",
    "ProofVerifier",
    "generate_oracle_identity",
    # Badges
    "AlreadyIssued",
    "BadgeIssuanceGate",
    "IssuedBadge",
    "MemoryMinter",
    "MintCapabilityInterface",
    # Ledger
    "EncryptedReputationLedger",
    # Config & metrics
    "LedgerConfig",
    "LedgerMetrics",
    "get_metrics",
]
