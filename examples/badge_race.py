#!/usr/bin/env python3
"""
badge_race.py - Two Decryptions, One Badge

Aggregate encrypted forum activity, request two decryptions for the same
user, deliver the oracle's answers out of order and watch only one mint happen.

Run: python badge_race.py
"""

import asyncio

from repledger import (
    EncryptedReputationLedger,
    LocalDecryptionOracle,
    MemoryMinter,
    ProofVerifier,
    UnknownRequest,
    generate_context,
    generate_oracle_identity,
)

print("Encrypted Reputation Ledger")
print("=" * 50)


async def main():
    # =============================================================================
    # Setup
    # =============================================================================

    adapter, private_key = generate_context(n_length=1024)
    oracle_private, oracle_public = generate_oracle_identity()
    oracle = LocalDecryptionOracle(private_key, oracle_private, key_id=adapter.key_id)
    minter = MemoryMinter()

    ledger = EncryptedReputationLedger(
        adapter=adapter,
        oracle=oracle,
        proof_verifier=ProofVerifier([oracle_public], key_id=adapter.key_id),
        minter=minter,
    )
    print(f"Encryption context: {adapter.key_id}")

    # =============================================================================
    # Submit encrypted activity (the ingestion pipeline encrypts before calling in)
    # =============================================================================

    user_id = 7
    ids = []
    for posts, replies, likes in [(20, 10, 5), (12, 30, 9)]:
        ids.append(
            await ledger.submit_activity(
                user_id,
                adapter.encrypt_constant(posts),
                adapter.encrypt_constant(replies),
                adapter.encrypt_constant(likes),
            )
        )
    print(f"\nSubmitted activities: {ids}")

    await ledger.aggregate_many(ids, user_id)
    print("Aggregated score (still encrypted)")

    # =============================================================================
    # Two outstanding decryption requests
    # =============================================================================

    first = await ledger.request_decryption(user_id, recipient="0xF0r0m")
    second = await ledger.request_decryption(user_id, recipient="0xF0r0m")
    print(f"\nPending requests: {[r.request_id for r in await ledger.pending_requests(user_id)]}")

    # Oracle answers arrive in reverse order
    for request_id in (second, first):
        cleartext, proof = await oracle.fulfill(request_id)
        outcome = await ledger.on_decryption_callback(request_id, cleartext, proof)
        print(f"   request {request_id}: {type(outcome).__name__}")

    # =============================================================================
    # Replay is refused
    # =============================================================================

    try:
        await ledger.on_decryption_callback(first, cleartext, proof)
    except UnknownRequest as e:
        print(f"\nReplay refused: {e}")

    badge = ledger.gate.get_badge(user_id)
    print(f"\nMint calls: {len(minter.calls)}")
    print(f"Badge: {badge.tier} (score {badge.score}) -> {badge.recipient}")


if __name__ == "__main__":
    asyncio.run(main())
