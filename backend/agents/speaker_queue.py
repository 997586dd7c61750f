"""
Speaker Queue — ordered pending actors for the current sub-phase.

The queue holds ids only; liveness is supplied by the caller so the queue
never reaches into the roster itself.
"""
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel


class SpeakerQueue(BaseModel):
    pending: List[str] = []
    current: Optional[str] = None

    def enqueue(self, player_ids: Iterable[str]) -> None:
        """Replace the pending queue. Duplicates are dropped, first position kept."""
        seen = set()
        batch: List[str] = []
        for pid in player_ids:
            if pid not in seen:
                seen.add(pid)
                batch.append(pid)
        self.pending = batch
        self.current = None

    def pop(self, is_alive: Callable[[str], bool]) -> Optional[str]:
        """
        Pop the next live id and make it the current speaker.
        Players who died while queued are skipped. Returns None once drained.
        """
        while self.pending:
            pid = self.pending.pop(0)
            if is_alive(pid):
                self.current = pid
                return pid
        self.current = None
        return None

    def clear(self) -> None:
        self.pending = []
        self.current = None
