# src/consensus/tally.py
"""
Quorum Tally - per-round accumulation of received values and quorum rules

Ben-Or thresholds:
- n = total processes
- f = max faulty processes tolerated
- propose quorum = decide quorum = n - f received messages
- proposal majority: count > n / 2
- vote majority: count >= f + 1

For n=4 processes:
- f = 1
- quorum = 3, proposal majority needs 3, vote majority needs 2
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Any

from .messages import Value

logger = logging.getLogger("benor.consensus.tally")


class Tally:
    """
    Round -> received values, for one message kind.

    Entries only accumulate; old rounds are kept for the life of the process.
    """

    def __init__(self):
        self._rounds: Dict[int, List[Value]] = defaultdict(list)

    def record(self, round: int, value: Value) -> int:
        """Append a value for the round. Returns the round's new size."""
        values = self._rounds[round]
        values.append(value)
        return len(values)

    def size(self, round: int) -> int:
        """Number of values recorded for the round, placeholders included"""
        return len(self._rounds.get(round, ()))

    def count(self, round: int) -> Tuple[int, int]:
        """(zeros, ones) recorded for the round; "?" is not counted"""
        zeros = ones = 0
        for value in self._rounds.get(round, ()):
            if value is Value.ZERO:
                zeros += 1
            elif value is Value.ONE:
                ones += 1
        return zeros, ones

    def values(self, round: int) -> List[Value]:
        return list(self._rounds.get(round, ()))

    def rounds(self) -> List[int]:
        return sorted(self._rounds)


@dataclass(frozen=True)
class QuorumRules:
    """
    Thresholds used by the state machine.

    The proposal phase only needs a simple majority of the whole group to pick
    a candidate; the decision needs f + 1 matching votes.
    """

    n: int
    f: int

    def __post_init__(self):
        if self.n < 1:
            raise ValueError(f"Group needs at least one process, got n={self.n}")
        if not 0 <= self.f < self.n:
            raise ValueError(f"Fault tolerance must satisfy 0 <= f < n, got n={self.n}, f={self.f}")
        if 2 * self.f >= self.n:
            logger.warning(
                f"f={self.f} is not below n/2 for n={self.n}: "
                f"termination and agreement are not guaranteed"
            )

    @property
    def quorum_size(self) -> int:
        """Messages needed before a phase can act (n - f)"""
        return self.n - self.f

    @property
    def propose_quorum(self) -> int:
        return self.quorum_size

    @property
    def decide_quorum(self) -> int:
        return self.quorum_size

    @property
    def decide_threshold(self) -> int:
        """Matching votes needed to decide (f + 1)"""
        return self.f + 1

    def has_propose_quorum(self, size: int) -> bool:
        return size >= self.propose_quorum

    def has_decide_quorum(self, size: int) -> bool:
        return size >= self.decide_quorum

    def proposal_majority(self, zeros: int, ones: int) -> Optional[Value]:
        """Value held by more than half of the group, if any"""
        if zeros > self.n / 2:
            return Value.ZERO
        if ones > self.n / 2:
            return Value.ONE
        return None

    def vote_majority(self, zeros: int, ones: int) -> Optional[Value]:
        """
        Value to decide on, if any count reaches f + 1.

        When both counts reach the threshold the larger one wins and a tie
        resolves to ONE.
        """
        if zeros < self.decide_threshold and ones < self.decide_threshold:
            return None
        return Value.ZERO if zeros > ones else Value.ONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n": self.n,
            "f": self.f,
            "quorum_size": self.quorum_size,
            "decide_threshold": self.decide_threshold,
        }
