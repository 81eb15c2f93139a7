"""
Shared pytest fixtures for Encrypted Reputation Ledger tests.
"""

import pytest

from repledger import (
    EncryptedReputationLedger,
    LedgerConfig,
    LocalDecryptionOracle,
    MemoryMinter,
    PaillierAdapter,
    ProofVerifier,
    generate_context,
    generate_oracle_identity,
)

# Short modulus keeps key generation fast; security is irrelevant here.
TEST_KEY_BITS = 1024


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def context() -> tuple:
    """One Paillier context shared by the whole session."""
    return generate_context(n_length=TEST_KEY_BITS)


@pytest.fixture(scope="session")
def foreign_context() -> tuple:
    """A second, unrelated Paillier context."""
    return generate_context(n_length=TEST_KEY_BITS)


@pytest.fixture
def adapter(context) -> PaillierAdapter:
    return context[0]


@pytest.fixture
def private_key(context):
    """Decryption key, available to the test harness only."""
    return context[1]


@pytest.fixture
def oracle_keypair() -> tuple:
    """Fresh Ed25519 oracle identity (private JWK, public JWK)."""
    return generate_oracle_identity()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oracle(private_key, oracle_keypair, adapter, clock) -> LocalDecryptionOracle:
    signing_key, _ = oracle_keypair
    return LocalDecryptionOracle(private_key, signing_key, key_id=adapter.key_id, clock=clock)


@pytest.fixture
def proof_verifier(oracle_keypair, adapter) -> ProofVerifier:
    _, public_key = oracle_keypair
    return ProofVerifier([public_key], key_id=adapter.key_id)


@pytest.fixture
def minter() -> MemoryMinter:
    return MemoryMinter()


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig()


@pytest.fixture
def ledger(adapter, oracle, proof_verifier, minter, ledger_config, clock) -> EncryptedReputationLedger:
    """A ledger wired to an in-process oracle and minter."""
    return EncryptedReputationLedger(
        adapter=adapter,
        oracle=oracle,
        proof_verifier=proof_verifier,
        minter=minter,
        config=ledger_config,
        clock=clock,
    )


@pytest.fixture
def encrypt(adapter):
    """Encrypt raw counters the way the ingestion pipeline would."""

    def _encrypt(posts: int, replies: int, likes: int) -> tuple:
        return (
            adapter.encrypt_constant(posts),
            adapter.encrypt_constant(replies),
            adapter.encrypt_constant(likes),
        )

    return _encrypt


@pytest.fixture
def tamper():
    """Flip one character inside the signature segment of a compact JWS."""

    def _tamper(proof: str) -> str:
        header, payload, signature = proof.split(".")
        index = len(signature) // 2
        replacement = "A" if signature[index] != "A" else "B"
        return ".".join(
            [header, payload, signature[:index] + replacement + signature[index + 1:]]
        )

    return _tamper
