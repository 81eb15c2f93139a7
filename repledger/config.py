# repledger/config.py
"""
Centralized configuration for the Encrypted Reputation Ledger.

All configurable values are read from environment variables with sensible defaults.
This allows different environments (dev, staging, production) to use different
settings without code changes.

Usage:
    from repledger.config import LedgerConfig

    ledger = EncryptedReputationLedger(adapter, oracle, verifier, minter,
                                       config=LedgerConfig.from_env())

Environment Variables:
    REPLEDGER_PAILLIER_KEY_BITS: Paillier modulus size for new contexts (default: 2048)
    REPLEDGER_REQUEST_TTL_SECONDS: Decryption request lifetime (default: unset, never expire)
    REPLEDGER_FREEZE_MINTED_SCORES: Reject aggregation after mint (default: true)
    REPLEDGER_ORACLE_PRIVATE_KEY: Oracle signing key used by the demo (default: generated)
    REPLEDGER_ORACLE_PUBLIC_KEY: Oracle key trusted by the demo verifier (default: derived)
    REPLEDGER_POSTS_WEIGHT / _REPLIES_WEIGHT / _LIKES_WEIGHT: Score weights (1 / 2 / 3)
    REPLEDGER_BRONZE_THRESHOLD / _SILVER_THRESHOLD / _GOLD_THRESHOLD: Badge tiers (50 / 150 / 300)
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Final, Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


# =============================================================================
# Encryption Context
# =============================================================================

# Modulus size used when generating a fresh Paillier context
PAILLIER_KEY_BITS: Final[int] = int(os.getenv("REPLEDGER_PAILLIER_KEY_BITS", "2048"))

# =============================================================================
# Ledger Policy
# =============================================================================

# Seconds a decryption request stays resolvable. Unset means forever.
REQUEST_TTL_SECONDS: Final[Optional[int]] = _env_optional_int("REPLEDGER_REQUEST_TTL_SECONDS")

# Once a badge is minted the encrypted score may no longer be overwritten
FREEZE_MINTED_SCORES: Final[bool] = _env_bool("REPLEDGER_FREEZE_MINTED_SCORES", "true")

# =============================================================================
# Decryption Oracle
# =============================================================================

# Ed25519 JWKs as printed by `repledger init-oracle --env`. Unset means the
# demo generates a throwaway identity.
ORACLE_PRIVATE_KEY: Final[Optional[str]] = os.getenv("REPLEDGER_ORACLE_PRIVATE_KEY") or None
ORACLE_PUBLIC_KEY: Final[Optional[str]] = os.getenv("REPLEDGER_ORACLE_PUBLIC_KEY") or None

# =============================================================================
# Scoring
# =============================================================================

POSTS_WEIGHT: Final[int] = int(os.getenv("REPLEDGER_POSTS_WEIGHT", "1"))
REPLIES_WEIGHT: Final[int] = int(os.getenv("REPLEDGER_REPLIES_WEIGHT", "2"))
LIKES_WEIGHT: Final[int] = int(os.getenv("REPLEDGER_LIKES_WEIGHT", "3"))

# Minimum decrypted score for each badge tier
BRONZE_THRESHOLD: Final[int] = int(os.getenv("REPLEDGER_BRONZE_THRESHOLD", "50"))
SILVER_THRESHOLD: Final[int] = int(os.getenv("REPLEDGER_SILVER_THRESHOLD", "150"))
GOLD_THRESHOLD: Final[int] = int(os.getenv("REPLEDGER_GOLD_THRESHOLD", "300"))


@dataclass
class LedgerConfig:
    """
    Runtime policy for one ledger instance.

    Unset fields take the REPLEDGER_* environment settings read at import
    time, so LedgerConfig() and LedgerConfig.from_env() are equivalent.

    Attributes:
        weights: Plaintext weight per activity counter.
        tier_thresholds: Minimum score per badge tier.
        request_ttl_seconds: Decryption request lifetime, None for no expiry.
        freeze_minted_scores: Reject aggregation for users whose badge is minted.
    """

    weights: Dict[str, int] = field(
        default_factory=lambda: {"posts": POSTS_WEIGHT, "replies": REPLIES_WEIGHT, "likes": LIKES_WEIGHT}
    )
    tier_thresholds: Dict[str, int] = field(
        default_factory=lambda: {
            "Gold": GOLD_THRESHOLD,
            "Silver": SILVER_THRESHOLD,
            "Bronze": BRONZE_THRESHOLD,
        }
    )
    request_ttl_seconds: Optional[int] = REQUEST_TTL_SECONDS
    freeze_minted_scores: bool = FREEZE_MINTED_SCORES

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Build a config from the module-level environment settings."""
        return cls()


# =============================================================================
# Configuration Summary (for debugging)
# =============================================================================

def print_config() -> None:
    """Print current configuration (useful for debugging)."""
    print("Encrypted Reputation Ledger Configuration:")
    print(f"  PAILLIER_KEY_BITS:    {PAILLIER_KEY_BITS}")
    print(f"  REQUEST_TTL_SECONDS:  {REQUEST_TTL_SECONDS}")
    print(f"  FREEZE_MINTED_SCORES: {FREEZE_MINTED_SCORES}")
    print(f"  ORACLE_KEY:           {'configured' if ORACLE_PRIVATE_KEY else 'generated per run'}")
    print(f"  WEIGHTS:              posts={POSTS_WEIGHT} replies={REPLIES_WEIGHT} likes={LIKES_WEIGHT}")
    print(f"  TIERS:                bronze={BRONZE_THRESHOLD} silver={SILVER_THRESHOLD} gold={GOLD_THRESHOLD}")


if __name__ == "__main__":
    print_config()
