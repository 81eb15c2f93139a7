"""
Encrypted Reputation Ledger.

Ingests encrypted activity, aggregates it into encrypted reputation scores,
runs the asynchronous decryption request/callback protocol with an external
oracle and enforces at-most-once badge issuance per user.

Every state transition on a user runs under that user's lock, so operations
on one user apply one at a time while different users proceed independently.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Union

from repledger.activity import ActivityStoreInterface, EncryptedActivity, MemoryActivityStore
from repledger.aggregator import ReputationAggregator
from repledger.badges import AlreadyIssued, BadgeIssuanceGate, IssuedBadge, MintCapabilityInterface
from repledger.ciphertext import Ciphertext, CiphertextAdapterInterface
from repledger.config import LedgerConfig
from repledger.errors import (
    AlreadyMinted,
    InvalidProof,
    LedgerError,
    NotFound,
    RequestExpired,
    UnknownRequest,
)
from repledger.metrics import LedgerMetrics
from repledger.oracle import DecryptionOracleInterface, ProofVerifier
from repledger.state import (
    DecryptionRequest,
    KeyedLock,
    LedgerStateInterface,
    MemoryLedgerState,
    ReputationState,
    RequestStatus,
)

logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1


def _check_id(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 0 or value > U64_MAX:
        raise ValueError(f"{name} must be within 0..{U64_MAX}, got {value}")
    return value


class EncryptedReputationLedger:
    """
    High-level ledger over encrypted forum activity.

    Features:
    - Append-only encrypted activity log with monotonic ids
    - Weighted score aggregation in ciphertext space
    - Decryption requests correlated with oracle callbacks by request id
    - Proof-authenticated callbacks that fail closed
    - At most one badge mint per user, however many requests resolve

    Example:
        >>> adapter, private_key = generate_context()
        >>> oracle = LocalDecryptionOracle(private_key, oracle_private_jwk)
        >>> ledger = EncryptedReputationLedger(
        ...     adapter=adapter,
        ...     oracle=oracle,
        ...     proof_verifier=ProofVerifier([oracle.get_public_key_jwk()]),
        ...     minter=MemoryMinter(),
        ... )
        >>>
        >>> activity_id = await ledger.submit_activity(7, enc_posts, enc_replies, enc_likes)
        >>> await ledger.compute_one(activity_id)
        >>> request_id = await ledger.request_decryption(7)
        >>>
        >>> # Later, when the oracle answers
        >>> badge = await ledger.on_decryption_callback(request_id, cleartext, proof)
    """

    def __init__(
        self,
        adapter: CiphertextAdapterInterface,
        oracle: DecryptionOracleInterface,
        proof_verifier: ProofVerifier,
        minter: MintCapabilityInterface,
        activities: Optional[ActivityStoreInterface] = None,
        state: Optional[LedgerStateInterface] = None,
        config: Optional[LedgerConfig] = None,
        metrics: Optional[LedgerMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the ledger.

        Args:
            adapter: Ciphertext arithmetic adapter for the encryption context.
            oracle: Outbound decryption capability.
            proof_verifier: Authenticates oracle callbacks.
            minter: Outbound mint capability.
            activities: Activity store backend.
            state: Reputation and request table backend.
            config: Ledger policy (weights, tiers, expiry, freeze).
            metrics: Metrics collector.
            clock: Time source (seconds).
        """
        self._adapter = adapter
        self._oracle = oracle
        self._verifier = proof_verifier
        self._activities = activities or MemoryActivityStore()
        self._state = state or MemoryLedgerState()
        self._config = config or LedgerConfig()
        self._metrics = metrics or LedgerMetrics()
        self._clock = clock
        self._locks = KeyedLock()

        self.aggregator = ReputationAggregator(
            adapter=adapter,
            activities=self._activities,
            state=self._state,
            locks=self._locks,
            config=self._config,
            metrics=self._metrics,
            clock=clock,
        )
        self.gate = BadgeIssuanceGate(
            minter=minter,
            state=self._state,
            config=self._config,
            metrics=self._metrics,
            clock=clock,
        )

    @property
    def metrics(self) -> LedgerMetrics:
        return self._metrics

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit_activity(
        self, user_id: int, posts: Ciphertext, replies: Ciphertext, likes: Ciphertext
    ) -> int:
        """
        Append an encrypted activity record.

        Returns:
            The new activity id.

        Raises:
            CiphertextFormatError: If a counter is not a ciphertext of this context.
        """
        _check_id(user_id, "user_id")
        for counter in (posts, replies, likes):
            self._adapter.validate(counter)

        record = await self._activities.append(
            user_id, posts, replies, likes, submitted_at=int(self._clock())
        )

        logger.debug(f"Stored activity {record.activity_id} for user {user_id}")
        self._metrics.record_submission()
        return record.activity_id

    async def get_activity(self, activity_id: int) -> EncryptedActivity:
        """Get an activity record. Raises NotFound for unassigned ids."""
        return await self._activities.get(activity_id)

    async def list_activities(self, user_id: int) -> List[EncryptedActivity]:
        """All activity records for a user, oldest first."""
        return await self._activities.list_for_user(user_id)

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------

    async def compute_one(self, activity_id: int) -> Ciphertext:
        """Replace the user's score with the score of a single record."""
        return await self.aggregator.compute_one(activity_id)

    async def aggregate_many(self, activity_ids: Iterable[int], user_id: int) -> Ciphertext:
        """Replace the user's score with the sum over a batch of records."""
        _check_id(user_id, "user_id")
        return await self.aggregator.aggregate_many(list(activity_ids), user_id)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_encrypted_score(self, user_id: int) -> Ciphertext:
        """The user's current encrypted score. Never returns plaintext."""
        state = await self._state.get_state(user_id)
        if state is None:
            raise NotFound(f"No reputation state for user {user_id}")
        return state.encrypted_score

    async def get_state(self, user_id: int) -> Optional[ReputationState]:
        """Snapshot of the user's reputation state, or None."""
        return await self._state.get_state(user_id)

    async def get_request(self, request_id: int) -> DecryptionRequest:
        """Snapshot of a decryption request. Raises NotFound if never issued."""
        request = await self._state.get_request(request_id)
        if request is None:
            raise NotFound(f"Unknown decryption request: {request_id}")
        return request

    async def pending_requests(self, user_id: Optional[int] = None) -> List[DecryptionRequest]:
        """Outstanding decryption requests, optionally for one user."""
        return await self._state.list_requests(user_id=user_id, status=RequestStatus.PENDING)

    # -------------------------------------------------------------------------
    # Decryption protocol
    # -------------------------------------------------------------------------

    async def request_decryption(self, user_id: int, recipient: Optional[str] = None) -> int:
        """
        Submit the user's current encrypted score to the decryption oracle.

        Repeated calls before any callback produce independent requests for
        the same user.

        Args:
            user_id: The forum user.
            recipient: Address to mint the badge to (defaults to str(user_id)).

        Returns:
            The oracle-assigned request id.

        Raises:
            NotFound: If the user has no reputation state.
            AlreadyMinted: If the user's badge was already issued.
        """
        if await self._state.get_state(user_id) is None:
            raise NotFound(f"No reputation state for user {user_id}")

        async with self._locks(user_id):
            state = await self._state.get_state(user_id)
            if state.minted_badge:
                raise AlreadyMinted(f"Badge already minted for user {user_id}")

            request_id = await self._oracle.submit_for_decryption(state.encrypted_score)
            if await self._state.get_request(request_id) is not None:
                raise LedgerError(f"Oracle reused request id {request_id}")

            await self._state.put_request(
                DecryptionRequest(
                    request_id=request_id,
                    user_id=user_id,
                    recipient=recipient or str(user_id),
                    requested_at=int(self._clock()),
                )
            )

        logger.info(f"Decryption request {request_id} pending for user {user_id}")
        self._metrics.record_decryption_request()
        return request_id

    async def on_decryption_callback(
        self, request_id: int, cleartext: int, proof: Union[str, bytes]
    ) -> Union[IssuedBadge, AlreadyIssued]:
        """
        Handle the oracle's answer to a decryption request.

        On a valid proof the user's badge is minted, unless another request
        already minted it, and the request is marked resolved either way.

        Returns:
            IssuedBadge if this callback minted, AlreadyIssued otherwise.

        Raises:
            UnknownRequest: If the request was never issued or is settled.
            RequestExpired: If the request outlived its time-to-live.
            InvalidProof: If the proof does not authenticate or the cleartext
                is not an integer; the request stays pending, even when stale.
        """
        request = await self._state.get_request(request_id)
        if request is None or not request.is_pending:
            self._reject_unknown(request_id, request)

        async with self._locks(request.user_id):
            # Another callback may have settled it while we waited.
            request = await self._state.get_request(request_id)
            if not request.is_pending:
                self._reject_unknown(request_id, request)

            try:
                self._verifier.verify(request_id, cleartext, proof)
            except InvalidProof as e:
                logger.warning(f"Rejected callback for request {request_id}: {e}")
                self._metrics.record_callback("invalid_proof")
                raise

            # Only an authenticated answer may settle a stale request.
            if self._is_stale(request):
                await self._settle(request, RequestStatus.EXPIRED)
                logger.warning(f"Rejected callback for expired request {request_id}")
                self._metrics.record_callback("expired")
                raise RequestExpired(f"Decryption request {request_id} has expired")

            outcome = await self.gate.try_issue(request.user_id, cleartext, request.recipient)
            await self._settle(request, RequestStatus.RESOLVED)

        if isinstance(outcome, AlreadyIssued):
            logger.info(
                f"Request {request_id} resolved; badge for user {request.user_id} already minted"
            )
            self._metrics.record_callback("duplicate_mint_skipped")
        else:
            logger.info(f"Request {request_id} resolved for user {request.user_id}")
            self._metrics.record_callback("resolved")
        return outcome

    async def expire_stale_requests(self) -> int:
        """
        Expire every pending request older than the configured TTL.

        Returns:
            Number of requests expired (always 0 when no TTL is configured).
        """
        if self._config.request_ttl_seconds is None:
            return 0

        expired = 0
        for candidate in await self.pending_requests():
            if not self._is_stale(candidate):
                continue
            async with self._locks(candidate.user_id):
                request = await self._state.get_request(candidate.request_id)
                if request.is_pending and self._is_stale(request):
                    await self._settle(request, RequestStatus.EXPIRED)
                    expired += 1

        if expired:
            logger.info(f"Expired {expired} stale decryption requests")
        return expired

    def _is_stale(self, request: DecryptionRequest) -> bool:
        ttl = self._config.request_ttl_seconds
        return ttl is not None and self._clock() - request.requested_at > ttl

    async def _settle(self, request: DecryptionRequest, status: RequestStatus) -> None:
        await self._state.put_request(
            replace(request, status=status, settled_at=int(self._clock()))
        )

    def _reject_unknown(self, request_id: int, request: Optional[DecryptionRequest]) -> None:
        state = request.status.value if request else "never issued"
        logger.warning(f"Rejected callback for request {request_id} ({state})")
        self._metrics.record_callback("unknown")
        raise UnknownRequest(f"No pending decryption request {request_id}")
