from __future__ import annotations

import threading
from collections import OrderedDict, deque

from .settings import settings


class ConversationHistory:
    """Recent turns per user, capped per user and by user count (LRU)."""

    def __init__(self, max_turns: int | None = None, max_users: int | None = None) -> None:
        self.max_turns = settings.history_max_turns if max_turns is None else max_turns
        self.max_users = max_users or settings.history_max_users
        self._turns: OrderedDict[str, deque[tuple[str, str]]] = OrderedDict()
        self._lock = threading.Lock()

    def recent(self, user_id: str) -> list[tuple[str, str]]:
        with self._lock:
            turns = self._turns.get(user_id)
            return list(turns) if turns else []

    def add(self, user_id: str, role: str, text: str, max_chars: int = 500) -> None:
        if not user_id or self.max_turns == 0:
            return
        with self._lock:
            turns = self._turns.get(user_id)
            if turns is None:
                turns = deque(maxlen=self.max_turns)
                self._turns[user_id] = turns
            self._turns.move_to_end(user_id)
            turns.append((role, text[:max_chars]))
            while len(self._turns) > self.max_users:
                self._turns.popitem(last=False)

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._turns.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._turns)
