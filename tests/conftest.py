"""
pytest configuration for the Ben-Or simulator test suite
"""

import pytest
from unittest.mock import MagicMock

from src.consensus import BenOrNode, Value


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "asyncio: mark test as async")
    config.addinivalue_line("markers", "e2e: starts real HTTP servers on localhost")


@pytest.fixture
def sent():
    """Envelopes broadcast by nodes under test, in send order"""
    return []


@pytest.fixture
def fixed_rng():
    """Random source whose tie-break bit is always 0"""
    rng = MagicMock()
    rng.randint.return_value = 0
    return rng


@pytest.fixture
def make_node(sent):
    """Factory for a node whose broadcasts land in `sent`"""
    def _make(node_id=0, n=4, f=1, value=Value.ONE, is_faulty=False, rng=None):
        return BenOrNode(
            node_id=node_id,
            n=n,
            f=f,
            initial_value=value,
            is_faulty=is_faulty,
            broadcast=sent.append,
            rng=rng,
        )
    return _make
