"""
Reputation Aggregator.

Computes encrypted reputation scores from encrypted activity records using a
fixed weighting formula, entirely in ciphertext space:

    points = posts * w_posts + replies * w_replies + likes * w_likes

with default weights 1, 2 and 3. Weights are plaintext scalars applied to
encrypted counters, which is a homomorphic operation and not a decryption.
"""

import logging
import time
from typing import Callable, Iterable, List, Optional

from repledger.activity import ActivityStoreInterface, EncryptedActivity
from repledger.ciphertext import Ciphertext, CiphertextAdapterInterface
from repledger.config import LedgerConfig
from repledger.errors import AlreadyMinted
from repledger.metrics import LedgerMetrics
from repledger.state import KeyedLock, LedgerStateInterface, ReputationState

logger = logging.getLogger(__name__)


class ReputationAggregator:
    """
    Folds encrypted activity into a user's encrypted reputation score.

    Scoring:
    - compute_one: score of a single record, replacing the stored score
    - aggregate_many: sum over the matching records of a batch, replacing the stored score
    - Records of other users in a batch are skipped, not rejected
    - With freeze_minted_scores, a minted user's score can no longer be written

    Example:
        >>> aggregator = ReputationAggregator(adapter, activities, state, locks)
        >>> encrypted = await aggregator.aggregate_many([1, 2, 3], user_id=7)
    """

    def __init__(
        self,
        adapter: CiphertextAdapterInterface,
        activities: ActivityStoreInterface,
        state: LedgerStateInterface,
        locks: Optional[KeyedLock] = None,
        config: Optional[LedgerConfig] = None,
        metrics: Optional[LedgerMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the aggregator.

        Args:
            adapter: Ciphertext arithmetic adapter.
            activities: Activity store to read records from.
            state: Reputation state table to write scores into.
            locks: Per-user lock registry shared with the rest of the ledger.
            config: Weights and freeze policy.
            metrics: Optional metrics collector.
            clock: Time source (seconds).
        """
        self._adapter = adapter
        self._activities = activities
        self._state = state
        self._locks = locks if locks is not None else KeyedLock()
        self._config = config or LedgerConfig()
        self._metrics = metrics
        self._clock = clock

    def weigh(self, activity: EncryptedActivity) -> Ciphertext:
        """Weighted encrypted score of a single record."""
        weights = self._config.weights
        points = self._adapter.scalar_multiply(activity.posts, weights["posts"])
        points = self._adapter.add(
            points, self._adapter.scalar_multiply(activity.replies, weights["replies"])
        )
        points = self._adapter.add(
            points, self._adapter.scalar_multiply(activity.likes, weights["likes"])
        )
        return points

    async def compute_one(self, activity_id: int) -> Ciphertext:
        """
        Recompute the score from one record and store it for the record's user.

        The stored score is replaced (last write wins), discarding any
        previously aggregated history.

        Raises:
            NotFound: If the activity id was never assigned.
            AlreadyMinted: If the user's score is frozen.
            CiphertextFormatError: If a counter is not a valid ciphertext.
        """
        record = await self._activities.get(activity_id)

        async with self._locks(record.user_id):
            current = await self._state.get_state(record.user_id)
            self._check_writable(current, record.user_id)

            score = self.weigh(record)
            await self._write(record.user_id, score, current)

        logger.debug(f"Computed score for user {record.user_id} from activity {activity_id}")
        if self._metrics:
            self._metrics.record_aggregation("single")
        return score

    async def aggregate_many(self, activity_ids: Iterable[int], user_id: int) -> Ciphertext:
        """
        Sum the weighted scores of a batch of records for one user.

        Starts from an encrypted zero and folds records in the supplied order.
        Records belonging to other users are skipped. Every id is resolved
        before anything is written.

        Raises:
            NotFound: If any activity id was never assigned.
            AlreadyMinted: If the user's score is frozen.
            CiphertextFormatError: If a counter is not a valid ciphertext.
        """
        records: List[EncryptedActivity] = [
            await self._activities.get(activity_id) for activity_id in activity_ids
        ]

        async with self._locks(user_id):
            current = await self._state.get_state(user_id)
            self._check_writable(current, user_id)

            total = self._adapter.encrypt_constant(0)
            folded = 0
            for record in records:
                if record.user_id != user_id:
                    logger.debug(
                        f"Skipping activity {record.activity_id}: belongs to user {record.user_id}"
                    )
                    continue
                total = self._adapter.add(total, self.weigh(record))
                folded += 1

            await self._write(user_id, total, current)

        logger.debug(f"Aggregated {folded}/{len(records)} activities for user {user_id}")
        if self._metrics:
            self._metrics.record_aggregation("batch")
        return total

    def _check_writable(self, current: Optional[ReputationState], user_id: int) -> None:
        if current and current.minted_badge and self._config.freeze_minted_scores:
            raise AlreadyMinted(f"Score for user {user_id} is frozen after badge issuance")

    async def _write(
        self, user_id: int, score: Ciphertext, current: Optional[ReputationState]
    ) -> None:
        await self._state.put_state(
            ReputationState(
                user_id=user_id,
                encrypted_score=score,
                minted_badge=current.minted_badge if current else False,
                updated_at=int(self._clock()),
            )
        )
