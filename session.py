import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

logger = logging.getLogger(__name__)


class SessionNudgeCounter:
    """Nudges delivered per conversation, owned by the session layer.

    Handed to the decision engine by value via `count()`. Use `turn()` around
    a whole decide-and-record cycle so concurrent turns of one conversation
    cannot both nudge.
    """

    def __init__(self):
        self._counts: Dict[str, int] = {}
        self._turn_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def count(self, conversation_id: str) -> int:
        with self._guard:
            return self._counts.get(conversation_id, 0)

    def increment(self, conversation_id: str) -> int:
        with self._guard:
            self._counts[conversation_id] = self._counts.get(conversation_id, 0) + 1
            return self._counts[conversation_id]

    def reset(self, conversation_id: str) -> None:
        with self._guard:
            # The turn lock stays; a turn may be in progress
            self._counts.pop(conversation_id, None)
        logger.debug("Reset nudge count for conversation %s", conversation_id)

    @contextmanager
    def turn(self, conversation_id: str) -> Iterator[int]:
        """Serialize turns of one conversation; yields the current count."""
        with self._guard:
            lock = self._turn_locks.setdefault(conversation_id, threading.Lock())
        with lock:
            yield self.count(conversation_id)
