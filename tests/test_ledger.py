"""
Integration tests for the decryption request/callback protocol.
"""

import asyncio

import pytest

from repledger import EncryptedReputationLedger, LedgerConfig
from repledger.badges import AlreadyIssued, IssuedBadge
from repledger.errors import (
    AlreadyMinted,
    InvalidProof,
    NotFound,
    RequestExpired,
    UnknownRequest,
)
from repledger.state import RequestStatus


async def scored_user(ledger, encrypt, user_id=7, counts=(2, 1, 0)):
    """Submit and aggregate one activity so the user has a score."""
    activity_id = await ledger.submit_activity(user_id, *encrypt(*counts))
    await ledger.compute_one(activity_id)
    return activity_id


class TestRequestDecryption:
    """Tests for request_decryption()."""

    @pytest.mark.asyncio
    async def test_records_pending_request(self, ledger, oracle, encrypt, clock):
        await scored_user(ledger, encrypt)

        request_id = await ledger.request_decryption(7, recipient="0xabc")

        request = await ledger.get_request(request_id)
        assert request.user_id == 7
        assert request.recipient == "0xabc"
        assert request.requested_at == int(clock.now)
        assert request.status is RequestStatus.PENDING
        assert oracle.pending_ids == [request_id]

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger):
        with pytest.raises(NotFound):
            await ledger.request_decryption(7)

    @pytest.mark.asyncio
    async def test_unknown_users_leave_no_locks(self, ledger):
        """Requests for users without state do not grow the lock table."""
        before = len(ledger._locks)

        for user_id in range(1000, 1100):
            with pytest.raises(NotFound):
                await ledger.request_decryption(user_id)

        assert len(ledger._locks) == before

    def test_aggregator_shares_user_locks(self, ledger):
        assert ledger.aggregator._locks is ledger._locks

    @pytest.mark.asyncio
    async def test_multiple_outstanding_requests(self, ledger, encrypt):
        """Repeated requests produce independent ids for the same user."""
        await scored_user(ledger, encrypt)

        first = await ledger.request_decryption(7)
        second = await ledger.request_decryption(7)

        assert first != second
        pending = await ledger.pending_requests(7)
        assert [r.request_id for r in pending] == [first, second]

    @pytest.mark.asyncio
    async def test_after_mint_creates_no_request(self, ledger, oracle, encrypt):
        """AlreadyMinted is raised and no request is recorded."""
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(request_id)
        await ledger.on_decryption_callback(request_id, cleartext, proof)

        with pytest.raises(AlreadyMinted):
            await ledger.request_decryption(7)

        assert await ledger.pending_requests(7) == []
        assert oracle.pending_ids == []

    @pytest.mark.asyncio
    async def test_get_unknown_request(self, ledger):
        with pytest.raises(NotFound):
            await ledger.get_request(5)


class TestDecryptionCallback:
    """Tests for on_decryption_callback()."""

    @pytest.mark.asyncio
    async def test_scenario_mints_score(self, ledger, oracle, minter, encrypt):
        """posts=2, replies=1, likes=0 decrypts to 4 and mints once."""
        await scored_user(ledger, encrypt, counts=(2, 1, 0))
        request_id = await ledger.request_decryption(7)

        cleartext, proof = await oracle.fulfill(request_id)
        badge = await ledger.on_decryption_callback(request_id, cleartext, proof)

        assert cleartext == 4
        assert isinstance(badge, IssuedBadge)
        assert badge.score == 4
        assert badge.recipient == "7"
        assert minter.calls == [{"token_id": 1, "recipient": "7", "score": 4}]
        assert (await ledger.get_state(7)).minted_badge is True
        assert (await ledger.get_request(request_id)).status is RequestStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_two_requests_mint_once(self, ledger, oracle, minter, encrypt):
        """Two valid callbacks for the same user produce exactly one mint."""
        await scored_user(ledger, encrypt)
        first = await ledger.request_decryption(7)
        second = await ledger.request_decryption(7)

        # Answers arrive in reverse order.
        outcome_second = await ledger.on_decryption_callback(second, *await oracle.fulfill(second))
        outcome_first = await ledger.on_decryption_callback(first, *await oracle.fulfill(first))

        assert isinstance(outcome_second, IssuedBadge)
        assert isinstance(outcome_first, AlreadyIssued)
        assert len(minter.calls) == 1
        for request_id in (first, second):
            assert (await ledger.get_request(request_id)).status is RequestStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_concurrent_callbacks_mint_once(self, ledger, oracle, minter, encrypt):
        """Callbacks racing on the event loop still mint once."""
        await scored_user(ledger, encrypt)
        request_ids = [await ledger.request_decryption(7) for _ in range(5)]
        answers = [await oracle.fulfill(r) for r in request_ids]

        outcomes = await asyncio.gather(
            *[
                ledger.on_decryption_callback(r, cleartext, proof)
                for r, (cleartext, proof) in zip(request_ids, answers)
            ]
        )

        assert sum(isinstance(o, IssuedBadge) for o in outcomes) == 1
        assert len(minter.calls) == 1
        assert await ledger.pending_requests(7) == []

    @pytest.mark.asyncio
    async def test_unknown_request(self, ledger, oracle, encrypt):
        """An unknown request id fails closed."""
        await scored_user(ledger, encrypt)

        with pytest.raises(UnknownRequest):
            await ledger.on_decryption_callback(99, 4, oracle.sign_result(99, 4))

        assert (await ledger.get_state(7)).minted_badge is False

    @pytest.mark.asyncio
    async def test_replayed_callback(self, ledger, oracle, minter, encrypt):
        """A second callback for a resolved request is refused."""
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(request_id)
        await ledger.on_decryption_callback(request_id, cleartext, proof)

        with pytest.raises(UnknownRequest):
            await ledger.on_decryption_callback(request_id, cleartext, proof)

        assert len(minter.calls) == 1

    @pytest.mark.asyncio
    async def test_tampered_proof_then_retry(self, ledger, oracle, minter, encrypt, tamper):
        """A bad proof changes nothing and the request can still be resolved."""
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(request_id)

        with pytest.raises(InvalidProof):
            await ledger.on_decryption_callback(request_id, cleartext, tamper(proof))

        assert (await ledger.get_state(7)).minted_badge is False
        assert (await ledger.get_request(request_id)).is_pending
        assert minter.calls == []

        badge = await ledger.on_decryption_callback(request_id, cleartext, proof)
        assert isinstance(badge, IssuedBadge)

    @pytest.mark.asyncio
    async def test_forged_cleartext(self, ledger, oracle, encrypt):
        """A valid proof cannot be reused with a different score."""
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        _, proof = await oracle.fulfill(request_id)

        with pytest.raises(InvalidProof):
            await ledger.on_decryption_callback(request_id, 10_000, proof)

        assert (await ledger.get_state(7)).minted_badge is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cleartext", [1.0, True])
    async def test_non_integer_cleartext(self, ledger, oracle, minter, encrypt, cleartext):
        """A valid proof for 1 does not admit 1.0 or True as the score."""
        await scored_user(ledger, encrypt, counts=(1, 0, 0))
        request_id = await ledger.request_decryption(7)
        score, proof = await oracle.fulfill(request_id)
        assert score == 1

        with pytest.raises(InvalidProof, match="integer"):
            await ledger.on_decryption_callback(request_id, cleartext, proof)

        assert minter.calls == []
        assert (await ledger.get_request(request_id)).is_pending
        badge = await ledger.on_decryption_callback(request_id, score, proof)
        assert badge.score == 1

    @pytest.mark.asyncio
    async def test_proof_for_other_request(self, ledger, oracle, encrypt):
        """A proof cannot be redirected to another user's request."""
        await scored_user(ledger, encrypt, user_id=7)
        await scored_user(ledger, encrypt, user_id=8)
        mine = await ledger.request_decryption(7)
        theirs = await ledger.request_decryption(8)
        cleartext, proof = await oracle.fulfill(mine)

        with pytest.raises(InvalidProof):
            await ledger.on_decryption_callback(theirs, cleartext, proof)

        assert (await ledger.get_state(8)).minted_badge is False

    @pytest.mark.asyncio
    async def test_mint_failure_keeps_request_pending(
        self, adapter, oracle, proof_verifier, encrypt
    ):
        """Errors from the mint capability propagate and leave state untouched."""

        class BrokenMinter:
            async def mint(self, recipient, score):
                raise ConnectionError("mint contract unreachable")

        ledger = EncryptedReputationLedger(adapter, oracle, proof_verifier, BrokenMinter())
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(request_id)

        with pytest.raises(ConnectionError):
            await ledger.on_decryption_callback(request_id, cleartext, proof)

        assert (await ledger.get_request(request_id)).is_pending
        assert (await ledger.get_state(7)).minted_badge is False

    @pytest.mark.asyncio
    async def test_users_are_independent(self, ledger, oracle, minter, encrypt):
        """Minting one user does not affect another."""
        await scored_user(ledger, encrypt, user_id=7)
        await scored_user(ledger, encrypt, user_id=8, counts=(100, 10, 10))
        mine = await ledger.request_decryption(7)
        theirs = await ledger.request_decryption(8)

        await ledger.on_decryption_callback(mine, *await oracle.fulfill(mine))
        badge = await ledger.on_decryption_callback(theirs, *await oracle.fulfill(theirs))

        assert badge.score == 150
        assert badge.tier == "Silver"
        assert len(minter.calls) == 2


class TestRequestExpiry:
    """Tests for decryption request expiry."""

    @pytest.fixture
    def ledger_config(self) -> LedgerConfig:
        return LedgerConfig(request_ttl_seconds=3600)

    @pytest.mark.asyncio
    async def test_late_callback_rejected(self, ledger, oracle, minter, encrypt, clock):
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(request_id)

        clock.advance(3601)

        with pytest.raises(RequestExpired):
            await ledger.on_decryption_callback(request_id, cleartext, proof)

        assert minter.calls == []
        assert (await ledger.get_request(request_id)).status is RequestStatus.EXPIRED
        # Expired requests stay dead.
        with pytest.raises(UnknownRequest):
            await ledger.on_decryption_callback(request_id, cleartext, proof)

    @pytest.mark.asyncio
    async def test_unauthenticated_late_callback_keeps_request(
        self, ledger, oracle, encrypt, clock, tamper
    ):
        """A bad proof on a stale request is rejected without settling it."""
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(request_id)
        clock.advance(3601)

        with pytest.raises(InvalidProof):
            await ledger.on_decryption_callback(request_id, cleartext, tamper(proof))

        assert (await ledger.get_request(request_id)).status is RequestStatus.PENDING
        assert await ledger.expire_stale_requests() == 1

    @pytest.mark.asyncio
    async def test_callback_within_ttl(self, ledger, oracle, encrypt, clock):
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        clock.advance(3599)

        badge = await ledger.on_decryption_callback(request_id, *await oracle.fulfill(request_id))

        assert isinstance(badge, IssuedBadge)

    @pytest.mark.asyncio
    async def test_sweep(self, ledger, encrypt, clock):
        """expire_stale_requests() expires only requests past the TTL."""
        await scored_user(ledger, encrypt)
        old = await ledger.request_decryption(7)
        clock.advance(2000)
        fresh = await ledger.request_decryption(7)
        clock.advance(2000)

        assert await ledger.expire_stale_requests() == 1

        assert (await ledger.get_request(old)).status is RequestStatus.EXPIRED
        assert (await ledger.get_request(fresh)).is_pending
        # A new request is still possible after expiry.
        assert await ledger.request_decryption(7) > fresh

    @pytest.mark.asyncio
    async def test_no_ttl_never_expires(self, adapter, oracle, proof_verifier, minter, encrypt, clock):
        ledger = EncryptedReputationLedger(
            adapter, oracle, proof_verifier, minter, config=LedgerConfig(), clock=clock
        )
        await scored_user(ledger, encrypt)
        request_id = await ledger.request_decryption(7)
        clock.advance(10 * 365 * 86400)

        assert await ledger.expire_stale_requests() == 0
        badge = await ledger.on_decryption_callback(request_id, *await oracle.fulfill(request_id))
        assert isinstance(badge, IssuedBadge)


class TestLedgerReads:
    """Read interface."""

    @pytest.mark.asyncio
    async def test_encrypted_score_is_ciphertext(self, ledger, adapter, encrypt):
        await scored_user(ledger, encrypt)

        score = await ledger.get_encrypted_score(7)

        assert adapter.validate(score) is score

    @pytest.mark.asyncio
    async def test_encrypted_score_unknown_user(self, ledger):
        with pytest.raises(NotFound):
            await ledger.get_encrypted_score(7)

    @pytest.mark.asyncio
    async def test_state_snapshots_are_copies(self, ledger, encrypt):
        """Mutating a returned snapshot does not change the ledger."""
        await scored_user(ledger, encrypt)

        snapshot = await ledger.get_state(7)
        snapshot.minted_badge = True

        assert (await ledger.get_state(7)).minted_badge is False


class TestLedgerMetrics:
    """Metrics emitted by ledger operations."""

    @pytest.mark.asyncio
    async def test_protocol_counters(self, ledger, oracle, encrypt, tamper):
        await scored_user(ledger, encrypt)
        first = await ledger.request_decryption(7)
        second = await ledger.request_decryption(7)
        cleartext, proof = await oracle.fulfill(first)

        with pytest.raises(InvalidProof):
            await ledger.on_decryption_callback(first, cleartext, tamper(proof))
        await ledger.on_decryption_callback(first, cleartext, proof)
        await ledger.on_decryption_callback(second, *await oracle.fulfill(second))
        with pytest.raises(UnknownRequest):
            await ledger.on_decryption_callback(second, cleartext, proof)

        stats = ledger.metrics.get_stats()
        assert stats["submissions"] == 1
        assert stats["aggregations_single"] == 1
        assert stats["decryption_requests"] == 2
        assert stats["callbacks_invalid_proof"] == 1
        assert stats["callbacks_resolved"] == 1
        assert stats["callbacks_duplicate_mint_skipped"] == 1
        assert stats["callbacks_unknown"] == 1
        assert stats["badges_minted"] == 1
