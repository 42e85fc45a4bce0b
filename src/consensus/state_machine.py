# src/consensus/state_machine.py
"""
Consensus State Machine - per-process Ben-Or protocol driver

Each round k:
1. PROPOSE: broadcast (k, x, propose)
2. VOTE: after n - f proposals for k, vote for the proposal majority
   (or a random bit when there is none)
3. DECIDE: after n - f votes for k, decide if a value has f + 1 votes,
   otherwise move to round k + 1 with a fresh random value
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Dict, Any, List, Callable, Set

from .messages import Envelope, MessageKind, Value
from .tally import QuorumRules, Tally

logger = logging.getLogger("benor.consensus.state_machine")

Broadcast = Callable[[Envelope], None]


class NodePhase(str, Enum):
    """Protocol phases of a single process"""
    PROPOSING = "proposing"                    # Created, initial proposal not sent yet
    AWAITING_PROPOSALS = "awaiting_proposals"  # Waiting for n - f proposals
    AWAITING_VOTES = "awaiting_votes"          # Waiting for n - f votes
    DECIDED = "decided"                        # Final value chosen
    FAULTY = "faulty"                          # Configured faulty or stopped


# Valid phase transitions
VALID_TRANSITIONS: Dict[NodePhase, Set[NodePhase]] = {
    NodePhase.PROPOSING: {
        NodePhase.AWAITING_PROPOSALS, NodePhase.AWAITING_VOTES, NodePhase.DECIDED, NodePhase.FAULTY,
    },
    NodePhase.AWAITING_PROPOSALS: {
        NodePhase.AWAITING_PROPOSALS, NodePhase.AWAITING_VOTES, NodePhase.DECIDED, NodePhase.FAULTY,
    },
    NodePhase.AWAITING_VOTES: {
        NodePhase.AWAITING_PROPOSALS, NodePhase.AWAITING_VOTES, NodePhase.DECIDED, NodePhase.FAULTY,
    },
    NodePhase.DECIDED: {NodePhase.FAULTY},
    NodePhase.FAULTY: set(),  # Terminal state
}


class InvalidTransitionError(Exception):
    """Raised when an invalid phase transition is attempted"""
    def __init__(self, node_id: int, from_phase: NodePhase, to_phase: NodePhase):
        self.node_id = node_id
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(
            f"Invalid transition for node {node_id}: {from_phase.value} → {to_phase.value}"
        )


@dataclass
class NodeState:
    """Externally observable state of a process"""
    killed: bool = False
    x: Optional[Value] = None          # Current value
    decided: Optional[bool] = None
    k: Optional[int] = None            # Current round

    @classmethod
    def initial(cls, value: Value, is_faulty: bool) -> "NodeState":
        if is_faulty:
            return cls()
        return cls(killed=False, x=value, decided=False, k=1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "killed": self.killed,
            "x": self.x.value if self.x is not None else None,
            "decided": self.decided,
            "k": self.k,
        }


class BenOrNode:
    """
    One participant in the consensus group.

    All mutation goes through the node's lock, so concurrent deliveries are
    applied one at a time. The broadcast callable must not block: it hands
    envelopes to the transport and returns.
    """

    def __init__(
        self,
        node_id: int,
        n: int,
        f: int,
        initial_value: Value,
        is_faulty: bool = False,
        broadcast: Optional[Broadcast] = None,
        rng: Optional[random.Random] = None,
    ):
        self.node_id = node_id
        self.rules = QuorumRules(n=n, f=f)
        self.is_faulty = is_faulty
        self._broadcast = broadcast
        self._rng = rng or random.Random()

        self._state = NodeState.initial(initial_value, is_faulty)
        self._phase = NodePhase.FAULTY if is_faulty else NodePhase.PROPOSING
        self._started = False

        self.proposals = Tally()
        self.votes = Tally()
        # Rounds whose quorum has already been acted on, per tally
        self._proposals_acted: Set[int] = set()
        self._votes_acted: Set[int] = set()
        # Rounds this node has already broadcast a proposal for
        self._proposed: Set[int] = set()

        self._lock = asyncio.Lock()
        self._decision_callbacks: List[Callable] = []

        self.stats = {
            "messages_received": 0,
            "proposals_sent": 0,
            "votes_sent": 0,
            "rounds_advanced": 0,
        }

    @property
    def n(self) -> int:
        return self.rules.n

    @property
    def f(self) -> int:
        return self.rules.f

    @property
    def phase(self) -> NodePhase:
        return self._phase

    @property
    def killed(self) -> bool:
        return self._state.killed

    @property
    def is_silent(self) -> bool:
        """True when the process takes no protocol action"""
        return self.is_faulty or self._state.killed

    def set_broadcast(self, broadcast: Broadcast):
        """Set the fan-out used to send envelopes to the group"""
        self._broadcast = broadcast

    def on_decision(self, callback: Callable):
        """Register callback(node_id, value) for when the node decides"""
        self._decision_callbacks.append(callback)

    # =========================================================================
    # External operations
    # =========================================================================

    async def start(self):
        """Broadcast the initial proposal for the current round"""
        async with self._lock:
            if self.is_silent:
                logger.debug(f"Node {self.node_id}: start ignored (faulty or stopped)")
                return
            if self._started:
                logger.warning(f"Node {self.node_id}: already started, ignoring start")
                return
            self._started = True
            if self._phase == NodePhase.DECIDED:
                return

            if self._phase == NodePhase.PROPOSING:
                self._transition_to(NodePhase.AWAITING_PROPOSALS)
            if not self._propose():
                logger.info(f"Node {self.node_id}: started, round {self._state.k} proposal already sent")
                return
            logger.info(f"Node {self.node_id}: started round {self._state.k} with x={self._state.x.value}")

    async def deliver(self, envelope: Envelope):
        """Feed one received envelope into the state machine"""
        decision = None
        async with self._lock:
            if self.is_silent:
                return

            self.stats["messages_received"] += 1
            if envelope.kind == MessageKind.PROPOSE:
                self._handle_proposal(envelope.round, envelope.value)
            elif envelope.kind == MessageKind.VOTE:
                decision = self._handle_vote(envelope.round, envelope.value)

        if decision is not None:
            await self._notify_decision(decision)

    async def stop(self):
        """Kill the process: clear its state and ignore all further input"""
        async with self._lock:
            if self._phase != NodePhase.FAULTY:
                self._transition_to(NodePhase.FAULTY)
            self._state = NodeState(killed=True, x=None, decided=None, k=None)
            logger.info(f"Node {self.node_id}: stopped")

    def get_state(self) -> NodeState:
        """Snapshot of the observable state"""
        return replace(self._state)

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "phase": self._phase.value,
            "faulty": self.is_faulty,
            "state": self._state.to_dict(),
            "quorum": self.rules.to_dict(),
            "stats": self.get_stats(),
        }

    # =========================================================================
    # Protocol handlers (called with the lock held)
    # =========================================================================

    def _handle_proposal(self, k: int, x: Value):
        size = self.proposals.record(k, x)
        if self._phase == NodePhase.DECIDED:
            return
        if k in self._proposals_acted or not self.rules.has_propose_quorum(size):
            return
        self._proposals_acted.add(k)

        zeros, ones = self.proposals.count(k)
        vote = self.rules.proposal_majority(zeros, ones)
        if vote is None:
            vote = self._random_value()
            logger.debug(
                f"Node {self.node_id}: no proposal majority in round {k} "
                f"(zeros={zeros}, ones={ones}), random vote {vote.value}"
            )

        self._send(Envelope.vote(k, vote))
        if k == self._state.k:
            self._transition_to(NodePhase.AWAITING_VOTES)

    def _handle_vote(self, k: int, x: Value) -> Optional[Value]:
        """Record a vote. Returns the decided value if this vote decided."""
        size = self.votes.record(k, x)
        if self._phase == NodePhase.DECIDED:
            return None
        if k in self._votes_acted or not self.rules.has_decide_quorum(size):
            return None
        self._votes_acted.add(k)

        if k < self._state.k:
            logger.debug(f"Node {self.node_id}: stale vote quorum for round {k}, now in round {self._state.k}")
            return None

        zeros, ones = self.votes.count(k)
        decision = self.rules.vote_majority(zeros, ones)
        if decision is not None:
            self._state.x = decision
            self._state.decided = True
            self._state.k = k
            self._transition_to(NodePhase.DECIDED)
            logger.info(
                f"Node {self.node_id}: DECIDED {decision.value} in round {k} "
                f"(zeros={zeros}, ones={ones})"
            )
            return decision

        self._state.k = k + 1
        self._state.x = self._random_value()
        self.stats["rounds_advanced"] += 1
        self._transition_to(NodePhase.AWAITING_PROPOSALS)
        logger.info(
            f"Node {self.node_id}: no decision in round {k} (zeros={zeros}, ones={ones}), "
            f"advancing to round {self._state.k} with x={self._state.x.value}"
        )
        self._propose()
        return None

    # =========================================================================
    # Helpers
    # =========================================================================

    def _random_value(self) -> Value:
        return Value.from_bit(self._rng.randint(0, 1))

    def _propose(self) -> bool:
        """Broadcast the proposal for the current round, at most once per round"""
        k = self._state.k
        if k in self._proposed:
            logger.debug(f"Node {self.node_id}: proposal for round {k} already sent")
            return False
        self._proposed.add(k)
        self._send(Envelope.propose(k, self._state.x))
        return True

    def _send(self, envelope: Envelope):
        if self._broadcast is None:
            logger.warning(f"Node {self.node_id}: no broadcast configured, dropping {envelope}")
            return
        if envelope.kind == MessageKind.PROPOSE:
            self.stats["proposals_sent"] += 1
        else:
            self.stats["votes_sent"] += 1
        self._broadcast(envelope)

    def _transition_to(self, new_phase: NodePhase):
        if new_phase not in VALID_TRANSITIONS.get(self._phase, set()):
            raise InvalidTransitionError(self.node_id, self._phase, new_phase)
        if new_phase != self._phase:
            logger.debug(f"Node {self.node_id}: {self._phase.value} → {new_phase.value}")
        self._phase = new_phase

    async def _notify_decision(self, value: Value):
        """Notify callbacks of the decision"""
        for callback in self._decision_callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(self.node_id, value)
                else:
                    callback(self.node_id, value)
            except Exception as e:
                logger.error(f"Decision callback error on node {self.node_id}: {e}")
