"""Debounced optimistic writes with rollback, one timer per key.

Each key moves through ``idle -> pending -> committing -> committed`` or
``rolled_back``. A new value while pending restarts the quiet period; a
commit that is already in flight is never cancelled, and the next commit for
the same key waits for it to finish.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.5


class WriteState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class _Entry:
    value: Any = None
    committed: Any = None
    state: WriteState = WriteState.IDLE
    generation: int = 0
    committed_generation: int = 0
    timer: Optional[asyncio.Task] = field(default=None, repr=False)
    # Commits for one key go out one at a time, in the order they were scheduled
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


CommitFn = Callable[[Hashable, Any, Any], Awaitable[None]]


class DebouncedWriter:
    """Coalesces rapid local edits into one ``commit(key, value, committed_value)`` call."""

    def __init__(self, commit: CommitFn, delay: float = DEBOUNCE_SECONDS):
        self._commit = commit
        self.delay = delay
        self._entries: Dict[Hashable, _Entry] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _entry(self, key) -> _Entry:
        return self._entries.setdefault(key, _Entry())

    def load(self, key, value):
        """Seed a key with a value already known to be committed."""
        entry = self._entry(key)
        entry.value = entry.committed = value
        entry.state = WriteState.IDLE

    def value(self, key, default=None):
        entry = self._entries.get(key)
        return default if entry is None else entry.value

    def committed(self, key, default=None):
        entry = self._entries.get(key)
        return default if entry is None else entry.committed

    def state(self, key) -> WriteState:
        entry = self._entries.get(key)
        return WriteState.IDLE if entry is None else entry.state

    def set(self, key, value):
        entry = self._entry(key)
        entry.value = value
        entry.generation += 1
        if entry.state == WriteState.PENDING and entry.timer is not None:
            entry.timer.cancel()
        entry.state = WriteState.PENDING
        task = asyncio.get_running_loop().create_task(self._fire(key, entry, entry.generation))
        entry.timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire(self, key, entry: _Entry, generation: int):
        await asyncio.sleep(self.delay)
        async with entry.lock:
            entry.state = WriteState.COMMITTING
            value = entry.value
            try:
                await self._commit(key, value, entry.committed)
            except Exception:
                logger.warning("Write for %r rejected, rolling back", key, exc_info=True)
                if entry.generation == generation:
                    entry.value = entry.committed
                    entry.state = WriteState.ROLLED_BACK
                return
            if generation > entry.committed_generation:
                entry.committed = value
                entry.committed_generation = generation
            if entry.generation == generation:
                entry.state = WriteState.COMMITTED
            elif entry.state == WriteState.IDLE:
                # A newer edit was cancelled while this one was in flight
                entry.value = entry.committed

    async def flush(self):
        """Wait for every scheduled write to commit or roll back."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self):
        for entry in self._entries.values():
            if entry.state == WriteState.PENDING and entry.timer is not None:
                entry.timer.cancel()
                entry.value = entry.committed
                entry.state = WriteState.IDLE
