# tests/test_tally.py
"""
Quorum Tally and Message Envelope Tests

Covers:
1. Envelope wire format
2. Per-round recording and counting ("?" excluded)
3. Quorum thresholds: n - f, > n/2, >= f + 1
"""

import logging

import pytest

from src.consensus import Envelope, MessageKind, QuorumRules, Tally, Value


class TestEnvelope:
    """Tests for the propose/vote envelope"""

    def test_to_dict_uses_wire_keys(self):
        envelope = Envelope.propose(3, Value.ONE)

        assert envelope.to_dict() == {"k": 3, "x": 1, "messageType": "propose"}

    def test_from_dict_accepts_placeholder(self):
        envelope = Envelope.from_dict({"k": 2, "x": "?", "messageType": "vote"})

        assert envelope.round == 2
        assert envelope.value is Value.UNKNOWN
        assert envelope.kind == MessageKind.VOTE

    def test_envelope_is_immutable(self):
        envelope = Envelope.vote(1, Value.ZERO)

        with pytest.raises(AttributeError):
            envelope.round = 2

    def test_value_from_bit(self):
        assert Value.from_bit(0) is Value.ZERO
        assert Value.from_bit(1) is Value.ONE
        assert Value.UNKNOWN.is_binary is False


class TestTally:
    """Tests for per-round value accumulation"""

    def test_empty_round(self):
        tally = Tally()

        assert tally.size(1) == 0
        assert tally.count(1) == (0, 0)

    def test_record_returns_round_size(self):
        tally = Tally()

        assert tally.record(1, Value.ZERO) == 1
        assert tally.record(1, Value.ONE) == 2
        assert tally.record(2, Value.ONE) == 1

    def test_count_excludes_placeholder(self):
        tally = Tally()
        for value in (Value.ZERO, Value.ONE, Value.ONE, Value.UNKNOWN):
            tally.record(1, value)

        assert tally.count(1) == (1, 2)
        assert tally.size(1) == 4

    def test_rounds_are_independent_and_kept(self):
        tally = Tally()
        tally.record(1, Value.ZERO)
        tally.record(2, Value.ONE)
        tally.record(2, Value.ONE)

        assert tally.count(1) == (1, 0)
        assert tally.count(2) == (0, 2)
        assert tally.rounds() == [1, 2]
        assert tally.values(2) == [Value.ONE, Value.ONE]


class TestQuorumRules:
    """Tests for quorum and majority thresholds"""

    def test_quorum_configuration(self):
        """n=4, f=1: quorum 3, decide threshold 2"""
        rules = QuorumRules(n=4, f=1)

        assert rules.propose_quorum == 3
        assert rules.decide_quorum == 3
        assert rules.decide_threshold == 2

    def test_has_quorum(self):
        rules = QuorumRules(n=4, f=1)

        assert rules.has_propose_quorum(2) is False
        assert rules.has_propose_quorum(3) is True
        assert rules.has_decide_quorum(4) is True

    def test_proposal_majority_needs_more_than_half(self):
        rules = QuorumRules(n=4, f=1)

        assert rules.proposal_majority(0, 3) is Value.ONE
        assert rules.proposal_majority(3, 0) is Value.ZERO
        assert rules.proposal_majority(1, 2) is None  # 2 is not > 4/2
        assert rules.proposal_majority(2, 2) is None

    def test_vote_majority_needs_f_plus_one(self):
        rules = QuorumRules(n=5, f=2)

        assert rules.vote_majority(1, 1) is None
        assert rules.vote_majority(0, 3) is Value.ONE
        assert rules.vote_majority(3, 0) is Value.ZERO

    def test_vote_majority_when_both_reach_threshold(self):
        rules = QuorumRules(n=7, f=1)

        assert rules.vote_majority(4, 2) is Value.ZERO
        assert rules.vote_majority(2, 4) is Value.ONE
        assert rules.vote_majority(3, 3) is Value.ONE

    def test_invalid_configuration(self):
        with pytest.raises(ValueError, match="at least one process"):
            QuorumRules(n=0, f=0)
        with pytest.raises(ValueError, match="0 <= f < n"):
            QuorumRules(n=4, f=4)
        with pytest.raises(ValueError, match="0 <= f < n"):
            QuorumRules(n=4, f=-1)

    def test_warns_when_f_not_below_half(self, caplog):
        with caplog.at_level(logging.WARNING, logger="benor.consensus.tally"):
            rules = QuorumRules(n=4, f=2)

        assert rules.quorum_size == 2
        assert "not guaranteed" in caplog.text
