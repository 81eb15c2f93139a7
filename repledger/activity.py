"""
Activity Store.

Append-only ledger of encrypted forum activity submissions, keyed by a
monotonically increasing activity id. Records are never mutated or deleted.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List

from repledger.ciphertext import Ciphertext
from repledger.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptedActivity:
    """
    One encrypted activity submission.

    Attributes:
        activity_id: Unique, monotonically increasing id (starts at 1).
        user_id: The forum user the counters belong to.
        posts: Encrypted post count.
        replies: Encrypted reply count.
        likes: Encrypted like count.
        submitted_at: Unix timestamp of submission.
    """

    activity_id: int
    user_id: int
    posts: Ciphertext
    replies: Ciphertext
    likes: Ciphertext
    submitted_at: int


class ActivityStoreInterface(ABC):
    """Abstract interface for activity storage backends."""

    @abstractmethod
    async def append(
        self,
        user_id: int,
        posts: Ciphertext,
        replies: Ciphertext,
        likes: Ciphertext,
        submitted_at: int,
    ) -> EncryptedActivity:
        """Store a new record under the next activity id."""
        pass

    @abstractmethod
    async def get(self, activity_id: int) -> EncryptedActivity:
        """Get a record by id. Raises NotFound if never assigned."""
        pass

    @abstractmethod
    async def list_for_user(self, user_id: int) -> List[EncryptedActivity]:
        """All records for a user, in activity id order."""
        pass

    @abstractmethod
    async def last_id(self) -> int:
        """The most recently assigned activity id (0 if none)."""
        pass


class MemoryActivityStore(ActivityStoreInterface):
    """
    In-memory activity store for testing and single-instance deployments.

    Example:
        >>> store = MemoryActivityStore()
        >>> record = await store.append(7, posts, replies, likes, int(time.time()))
        >>> record.activity_id
        1
    """

    def __init__(self):
        self._records: Dict[int, EncryptedActivity] = {}
        self._by_user: Dict[int, List[int]] = defaultdict(list)
        self._counter = 0
        self._lock = asyncio.Lock()

    async def append(
        self,
        user_id: int,
        posts: Ciphertext,
        replies: Ciphertext,
        likes: Ciphertext,
        submitted_at: int,
    ) -> EncryptedActivity:
        async with self._lock:
            self._counter += 1
            record = EncryptedActivity(
                activity_id=self._counter,
                user_id=user_id,
                posts=posts,
                replies=replies,
                likes=likes,
                submitted_at=submitted_at,
            )
            self._records[record.activity_id] = record
            self._by_user[user_id].append(record.activity_id)
            return record

    async def get(self, activity_id: int) -> EncryptedActivity:
        async with self._lock:
            record = self._records.get(activity_id)
        if record is None:
            raise NotFound(f"Unknown activity id: {activity_id}")
        return record

    async def list_for_user(self, user_id: int) -> List[EncryptedActivity]:
        async with self._lock:
            return [self._records[i] for i in self._by_user.get(user_id, [])]

    async def last_id(self) -> int:
        async with self._lock:
            return self._counter
