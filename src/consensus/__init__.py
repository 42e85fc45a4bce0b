# src/consensus/__init__.py
"""
Ben-Or Consensus Module - randomized binary agreement core

Per round:
- PROPOSE: every process broadcasts its current value
- VOTE: after n - f proposals, vote for the majority (or a random bit)
- DECIDE: after n - f votes, decide on a value with f + 1 votes,
  otherwise start the next round with a random value
"""

from .messages import Envelope, MessageKind, Value
from .tally import QuorumRules, Tally
from .state_machine import (
    BenOrNode,
    NodePhase,
    NodeState,
    InvalidTransitionError,
    VALID_TRANSITIONS,
)

__all__ = [
    # Message envelope
    "Envelope",
    "MessageKind",
    "Value",
    # Quorum tally
    "QuorumRules",
    "Tally",
    # State machine
    "BenOrNode",
    "NodePhase",
    "NodeState",
    "InvalidTransitionError",
    "VALID_TRANSITIONS",
]
