"""
Ledger state tables.

Holds the per-user ReputationState table and the DecryptionRequest table,
plus the per-key lock registry used to serialize transitions on one user.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Hashable, List, Optional

from repledger.ciphertext import Ciphertext

logger = logging.getLogger(__name__)


class RequestStatus(Enum):
    """Lifecycle of a decryption request. Transitions only move forward."""

    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"


@dataclass
class ReputationState:
    """
    Encrypted reputation for one user.

    Attributes:
        user_id: The forum user.
        encrypted_score: Current weighted score, encrypted.
        minted_badge: True once the badge has been issued. Never reset.
        updated_at: Unix timestamp of the last score write.
    """

    user_id: int
    encrypted_score: Ciphertext
    minted_badge: bool = False
    updated_at: Optional[int] = None


@dataclass
class DecryptionRequest:
    """
    An outstanding or settled request to decrypt a user's score.

    Attributes:
        request_id: Oracle-assigned id.
        user_id: The user whose score was submitted.
        recipient: Address the badge is minted to.
        requested_at: Unix timestamp of the request.
        status: PENDING until a validated callback or expiry settles it.
        settled_at: Unix timestamp of resolution or expiry.
    """

    request_id: int
    user_id: int
    recipient: str
    requested_at: int
    status: RequestStatus = RequestStatus.PENDING
    settled_at: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING


class KeyedLock:
    """
    Registry of asyncio locks, one per key.

    Example:
        >>> locks = KeyedLock()
        >>> async with locks(user_id):
        ...     ...
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

    def __call__(self, key: Hashable) -> asyncio.Lock:
        return self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class LedgerStateInterface(ABC):
    """Abstract interface for the reputation and request tables."""

    @abstractmethod
    async def get_state(self, user_id: int) -> Optional[ReputationState]:
        """Get a snapshot of the user's reputation state."""
        pass

    @abstractmethod
    async def put_state(self, state: ReputationState) -> None:
        """Insert or replace the user's reputation state."""
        pass

    @abstractmethod
    async def get_request(self, request_id: int) -> Optional[DecryptionRequest]:
        """Get a snapshot of a decryption request."""
        pass

    @abstractmethod
    async def put_request(self, request: DecryptionRequest) -> None:
        """Insert or replace a decryption request."""
        pass

    @abstractmethod
    async def list_requests(
        self, user_id: Optional[int] = None, status: Optional[RequestStatus] = None
    ) -> List[DecryptionRequest]:
        """List requests, optionally filtered by user and status."""
        pass


class MemoryLedgerState(LedgerStateInterface):
    """
    In-memory state tables for testing and single-instance deployments.

    Reads return copies so callers cannot mutate the tables in place.
    """

    def __init__(self):
        self._states: Dict[int, ReputationState] = {}
        self._requests: Dict[int, DecryptionRequest] = {}
        self._lock = asyncio.Lock()

    async def get_state(self, user_id: int) -> Optional[ReputationState]:
        async with self._lock:
            state = self._states.get(user_id)
            return replace(state) if state else None

    async def put_state(self, state: ReputationState) -> None:
        async with self._lock:
            self._states[state.user_id] = replace(state)

    async def get_request(self, request_id: int) -> Optional[DecryptionRequest]:
        async with self._lock:
            request = self._requests.get(request_id)
            return replace(request) if request else None

    async def put_request(self, request: DecryptionRequest) -> None:
        async with self._lock:
            self._requests[request.request_id] = replace(request)

    async def list_requests(
        self, user_id: Optional[int] = None, status: Optional[RequestStatus] = None
    ) -> List[DecryptionRequest]:
        async with self._lock:
            return [
                replace(r)
                for r in sorted(self._requests.values(), key=lambda r: r.request_id)
                if (user_id is None or r.user_id == user_id)
                and (status is None or r.status is status)
            ]
