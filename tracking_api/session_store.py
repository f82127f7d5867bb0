"""
In-process conversation memory: a bounded, ordered window of recent turns per user.

The window is model context only. It is never persisted as live state and is
lost when the process restarts.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

ROLES = ("user", "assistant", "system")


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid role: {self.role}")

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class _Entry:
    turns: List[ConversationTurn] = field(default_factory=list)
    touched_at: float = 0.0


@dataclass
class _UserLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class ConversationSessionStore:
    """Maps user id to their most recent `max_turns` conversation turns.

    Eviction is plain truncation: after each append only the newest
    `max_turns` turns are kept, oldest dropped first.

    When `expire_after` (seconds) is set, a user's window is discarded once it
    has not been touched for that long. `clock` returns seconds and defaults to
    `time.monotonic`.
    """

    def __init__(
        self,
        max_turns: int = 5,
        expire_after: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be positive")
        self.max_turns = max_turns
        self.expire_after = expire_after
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._locks: Dict[str, _UserLock] = {}

    def _live_entry(self, user_id: str) -> Optional[_Entry]:
        entry = self._entries.get(user_id)
        if entry is not None and self._is_expired(entry, self._clock()):
            del self._entries[user_id]
            return None
        return entry

    def _is_expired(self, entry: _Entry, now: float) -> bool:
        return self.expire_after is not None and now - entry.touched_at > self.expire_after

    def append_turn(self, user_id: str, turn: ConversationTurn):
        entry = self._live_entry(user_id)
        if entry is None:
            entry = self._entries[user_id] = _Entry()
        entry.turns.append(turn)
        if len(entry.turns) > self.max_turns:
            entry.turns = entry.turns[-self.max_turns:]
        entry.touched_at = self._clock()

    def get_context(self, user_id: str) -> List[ConversationTurn]:
        entry = self._live_entry(user_id)
        return list(entry.turns) if entry else []

    def reset(self, user_id: str):
        self._entries.pop(user_id, None)

    def prune(self) -> int:
        """Drop every expired window. Returns the number removed."""
        if self.expire_after is None:
            return 0
        now = self._clock()
        expired = [uid for uid, entry in self._entries.items() if self._is_expired(entry, now)]
        for user_id in expired:
            del self._entries[user_id]
        return len(expired)

    @asynccontextmanager
    async def lock_for(self, user_id: str):
        """Hold the per-user lock that serializes submissions for the same user.

        The lock exists only while someone holds or waits for it.
        """
        entry = self._locks.get(user_id)
        if entry is None:
            entry = self._locks[user_id] = _UserLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[user_id]

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    def __len__(self) -> int:
        return len(self._entries)
