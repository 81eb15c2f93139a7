"""
Badge Issuance Gate.

Turns a decrypted, proof-validated score into exactly one badge mint per
user. Deduplication relies solely on the ReputationState.minted_badge flag,
never on the mint capability.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Union

from repledger.config import LedgerConfig
from repledger.errors import NotFound
from repledger.metrics import LedgerMetrics
from repledger.state import LedgerStateInterface

logger = logging.getLogger(__name__)

DEFAULT_TIER = "Member"


def tier_for(score: int, thresholds: Dict[str, int]) -> str:
    """Highest tier whose threshold the score reaches."""
    for name, minimum in sorted(thresholds.items(), key=lambda item: item[1], reverse=True):
        if score >= minimum:
            return name
    return DEFAULT_TIER


@dataclass
class IssuedBadge:
    """
    A badge that has been minted.

    Attributes:
        user_id: The forum user.
        recipient: Address the badge was minted to.
        score: Decrypted reputation score at mint time.
        tier: Badge tier derived from the score.
        receipt: Whatever the mint capability returned (e.g. a token id).
        issued_at: Unix timestamp of issuance.
    """

    user_id: int
    recipient: str
    score: int
    tier: str
    receipt: Any
    issued_at: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AlreadyIssued:
    """Outcome of try_issue when the user's badge exists already."""

    user_id: int


class MintCapabilityInterface(ABC):
    """Outbound capability: mint a badge credential."""

    @abstractmethod
    async def mint(self, recipient: str, score: int) -> Any:
        """Mint a badge for recipient and return a receipt."""
        pass


class MemoryMinter(MintCapabilityInterface):
    """
    In-memory mint capability for testing and local runs.

    Records every call; receipts are sequential token ids.
    """

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def mint(self, recipient: str, score: int) -> int:
        async with self._lock:
            token_id = len(self.calls) + 1
            self.calls.append({"token_id": token_id, "recipient": recipient, "score": score})
            return token_id


class BadgeIssuanceGate:
    """
    Guards the mint capability so each user is minted at most once.

    The caller must hold the user's ledger lock and pass a score that has
    already been decrypted and proof-validated. Ciphertexts are never accepted.
    """

    def __init__(
        self,
        minter: MintCapabilityInterface,
        state: LedgerStateInterface,
        config: Optional[LedgerConfig] = None,
        metrics: Optional[LedgerMetrics] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._minter = minter
        self._state = state
        self._config = config or LedgerConfig()
        self._metrics = metrics
        self._clock = clock
        self._issued: Dict[int, IssuedBadge] = {}

    async def try_issue(
        self, user_id: int, score: int, recipient: Optional[str] = None
    ) -> Union[IssuedBadge, AlreadyIssued]:
        """
        Mint the user's badge unless it was minted before.

        Args:
            user_id: The forum user.
            score: Decrypted score.
            recipient: Mint recipient (defaults to str(user_id)).

        Returns:
            IssuedBadge on the first call for a user, AlreadyIssued afterwards.

        Raises:
            NotFound: If the user has no reputation state.
            ValueError: If score is not a plaintext integer.
        """
        if isinstance(score, bool) or not isinstance(score, int):
            raise ValueError("Badge issuance requires a decrypted integer score")

        current = await self._state.get_state(user_id)
        if current is None:
            raise NotFound(f"No reputation state for user {user_id}")
        if current.minted_badge:
            return AlreadyIssued(user_id=user_id)

        recipient = recipient or str(user_id)
        # The flag is only set once the mint call has returned.
        receipt = await self._minter.mint(recipient, score)
        await self._state.put_state(replace(current, minted_badge=True))

        badge = IssuedBadge(
            user_id=user_id,
            recipient=recipient,
            score=score,
            tier=tier_for(score, self._config.tier_thresholds),
            receipt=receipt,
            issued_at=int(self._clock()),
        )
        self._issued[user_id] = badge

        logger.info(f"Minted {badge.tier} badge for user {user_id} (score {score}) to {recipient}")
        if self._metrics:
            self._metrics.record_mint(badge.tier)
        return badge

    def get_badge(self, user_id: int) -> Optional[IssuedBadge]:
        """The badge issued to a user through this gate, if any."""
        return self._issued.get(user_id)
