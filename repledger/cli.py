"""
Encrypted Reputation Ledger Command Line Interface.

Provides commands for generating an oracle identity, inspecting configuration
and running an end-to-end demo of the ledger in memory.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from repledger.badges import IssuedBadge, MemoryMinter
from repledger.ciphertext import generate_context
from repledger.config import ORACLE_PRIVATE_KEY, ORACLE_PUBLIC_KEY, LedgerConfig, print_config
from repledger.errors import LedgerError
from repledger.ledger import EncryptedReputationLedger
from repledger.oracle import LocalDecryptionOracle, ProofVerifier, generate_oracle_identity


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s'
    )


def cmd_init_oracle(args: argparse.Namespace) -> int:
    """Generate a new Ed25519 keypair for a decryption oracle."""
    private_key, public_key = generate_oracle_identity()

    if args.env:
        print(f"export REPLEDGER_ORACLE_PRIVATE_KEY='{private_key}'")
        print(f"export REPLEDGER_ORACLE_PUBLIC_KEY='{public_key}'")
    else:
        print("NEW ORACLE IDENTITY GENERATED\n")
        print("--- PRIVATE KEY (Oracle only, keep secret) ---")
        print(private_key)
        print("\n--- PUBLIC KEY (Give to the ledger's ProofVerifier) ---")
        print(public_key)

    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """Print the effective configuration."""
    print_config()
    return 0


async def run_demo(
    user_id: int,
    posts: int,
    replies: int,
    likes: int,
    key_bits: int,
    signing_key: Optional[str] = None,
    trusted_key: Optional[str] = None,
) -> IssuedBadge:
    """
    Submit one activity, aggregate it, decrypt through a local oracle and mint.

    The oracle signs with signing_key (a fresh identity when None) and the
    ledger trusts trusted_key (the oracle's own public key when None).
    """
    adapter, private_key = generate_context(n_length=key_bits)
    if signing_key is None:
        signing_key, _ = generate_oracle_identity()
    oracle = LocalDecryptionOracle(private_key, signing_key, key_id=adapter.key_id)

    ledger = EncryptedReputationLedger(
        adapter=adapter,
        oracle=oracle,
        proof_verifier=ProofVerifier(
            [trusted_key or oracle.get_public_key_jwk()], key_id=adapter.key_id
        ),
        minter=MemoryMinter(),
        config=LedgerConfig.from_env(),
    )

    activity_id = await ledger.submit_activity(
        user_id,
        adapter.encrypt_constant(posts),
        adapter.encrypt_constant(replies),
        adapter.encrypt_constant(likes),
    )
    await ledger.compute_one(activity_id)

    request_id = await ledger.request_decryption(user_id)
    cleartext, proof = await oracle.fulfill(request_id)
    return await ledger.on_decryption_callback(request_id, cleartext, proof)


def cmd_demo(args: argparse.Namespace) -> int:
    """Run the ledger end-to-end in memory."""
    try:
        badge = asyncio.run(
            run_demo(
                args.user,
                args.posts,
                args.replies,
                args.likes,
                args.key_bits,
                signing_key=ORACLE_PRIVATE_KEY,
                trusted_key=ORACLE_PUBLIC_KEY,
            )
        )
    except (LedgerError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(badge.to_dict(), indent=2))
    else:
        print(f"MINTED {badge.tier} badge")
        print(f"   User:      {badge.user_id}")
        print(f"   Recipient: {badge.recipient}")
        print(f"   Score:     {badge.score}")
        print(f"   Receipt:   {badge.receipt}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='repledger',
        description='Encrypted Reputation Ledger CLI - private forum reputation and badges'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # init-oracle command
    p_init = subparsers.add_parser('init-oracle', help='Generate a decryption oracle identity')
    p_init.add_argument('--env', action='store_true', help='Output as environment variables')

    # config command
    subparsers.add_parser('config', help='Show effective configuration')

    # demo command
    p_demo = subparsers.add_parser('demo', help='Run an end-to-end demo in memory')
    p_demo.add_argument('--user', type=int, default=7, help='User id')
    p_demo.add_argument('--posts', type=int, default=2, help='Post count')
    p_demo.add_argument('--replies', type=int, default=1, help='Reply count')
    p_demo.add_argument('--likes', type=int, default=0, help='Like count')
    p_demo.add_argument('--key-bits', type=int, default=1024, help='Paillier modulus size')
    p_demo.add_argument('--json', action='store_true', help='Output as JSON')

    return parser


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command == 'init-oracle':
        return cmd_init_oracle(args)
    elif args.command == 'config':
        return cmd_config(args)
    elif args.command == 'demo':
        return cmd_demo(args)
    else:
        parser.print_help()
        return 0


if __name__ == '__main__':
    sys.exit(main())
