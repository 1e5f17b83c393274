"""
Duplicate suppression keyed on the rolling counter broadcast with each reading.

Broadcasters repeat the same advertisement many times until the next reading
is taken, bumping a one-byte counter when the value changes. A reading is new
whenever its counter differs from the last accepted one; wraparound from 255
to 0 is therefore a new reading like any other change.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from typing import Optional, Tuple


class Decision(str, enum.Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class SequencerState:
    # None until the first reading of a session is accepted
    last_counter: Optional[int] = None

    @property
    def tracking(self) -> bool:
        return self.last_counter is not None


def observe(state: SequencerState, counter: int) -> Tuple[SequencerState, Decision]:
    if not 0 <= counter <= 0xFF:
        raise ValueError(f"counter must be in 0..255, got {counter}")
    if state.last_counter == counter:
        return state, Decision.DUPLICATE
    return SequencerState(last_counter=counter), Decision.ACCEPTED


class DuplicateSequencer:
    """Lock-guarded owner of a :class:`SequencerState` for one scan session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = SequencerState()
        self.accepted = 0
        self.duplicates = 0

    @property
    def state(self) -> SequencerState:
        with self._lock:
            return self._state

    def observe(self, counter: int) -> Decision:
        with self._lock:
            self._state, decision = observe(self._state, counter)
            if decision is Decision.ACCEPTED:
                self.accepted += 1
            else:
                self.duplicates += 1
            return decision

    def reset(self) -> None:
        with self._lock:
            self._state = SequencerState()
            self.accepted = 0
            self.duplicates = 0
