# src/consensus/messages.py
"""
Message Envelope - wire shape of Ben-Or propose/vote messages

Wire body (JSON):
    {"k": <round>, "x": 0 | 1 | "?", "messageType": "propose" | "vote"}
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class Value(Enum):
    """Binary consensus value plus the "no opinion" placeholder"""
    ZERO = 0
    ONE = 1
    UNKNOWN = "?"    # Tallying placeholder, never decided

    @classmethod
    def from_bit(cls, bit: int) -> "Value":
        return cls.ONE if bit else cls.ZERO

    @property
    def is_binary(self) -> bool:
        return self is not Value.UNKNOWN


class MessageKind(str, Enum):
    """Protocol message kinds"""
    PROPOSE = "propose"
    VOTE = "vote"


@dataclass(frozen=True)
class Envelope:
    """One protocol message: (round, value, kind)"""
    round: int
    value: Value
    kind: MessageKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "k": self.round,
            "x": self.value.value,
            "messageType": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Envelope":
        return cls(
            round=int(data["k"]),
            value=Value(data["x"]),
            kind=MessageKind(data["messageType"]),
        )

    @classmethod
    def propose(cls, round: int, value: Value) -> "Envelope":
        return cls(round=round, value=value, kind=MessageKind.PROPOSE)

    @classmethod
    def vote(cls, round: int, value: Value) -> "Envelope":
        return cls(round=round, value=value, kind=MessageKind.VOTE)
