# gridpilot/agent/memory.py
"""
Rolling decision memory for one simulation run.

Bounded FIFO: remember() appends and, once at capacity, evicts the oldest
entry. Notes are capped at the same capacity. Learned constraints are
de-duplicated and kept in insertion order.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from gridpilot.core.types import Action


@dataclass(frozen=True)
class DecisionOutcome:
    cost_usd: float
    peak_kw: float
    comfort_violation: float


@dataclass(frozen=True)
class MemoryEntry:
    step: int
    summary: str
    action: Action
    outcome: DecisionOutcome


@dataclass
class DecisionMemory:
    capacity: int = 20
    brief_decisions: int = 5
    brief_constraints: int = 3
    _entries: Deque[MemoryEntry] = field(init=False, repr=False)
    learned_constraints: List[str] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    evicted: int = 0

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ValueError(f"memory capacity must be > 0, got {self.capacity}")
        self._entries = deque()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[MemoryEntry, ...]:
        return tuple(self._entries)

    def remember(self, entry: MemoryEntry) -> Optional[MemoryEntry]:
        """Append an entry; returns the evicted entry when capacity was exceeded."""
        self._entries.append(entry)
        if len(self._entries) > self.capacity:
            self.evicted += 1
            return self._entries.popleft()
        return None

    def add_constraint(self, text: str) -> bool:
        if text in self.learned_constraints:
            return False
        self.learned_constraints.append(text)
        return True

    def add_note(self, text: str) -> None:
        """Notes share the entry capacity; the oldest notes are dropped first."""
        self.notes.append(text)
        if len(self.notes) > self.capacity:
            del self.notes[: len(self.notes) - self.capacity]

    def recent_steps(self, n: int) -> List[int]:
        if n <= 0:
            return []
        return [e.step for e in list(self._entries)[-n:]]

    def brief(self) -> str:
        recent = ",".join(f"#{s}" for s in self.recent_steps(self.brief_decisions)) or "none"
        tail = self.learned_constraints[-self.brief_constraints:] if self.brief_constraints > 0 else []
        constraints = "; ".join(tail) or "none"
        return f"Recent:[{recent}] Constraints:[{constraints}]"

    def to_dict(self) -> Dict[str, object]:
        return {
            "capacity": self.capacity,
            "size": len(self._entries),
            "evicted": self.evicted,
            "steps": [e.step for e in self._entries],
            "learned_constraints": list(self.learned_constraints),
            "notes": list(self.notes),
        }
