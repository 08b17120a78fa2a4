"""
conftest.py - Shared pytest fixtures for paymatch tests

Provides common fixtures used across unit, conformance and functional tests:
- A manual clock starting at a fixed instant
- A seeded RNG so generated codes are reproducible
- Individual registries and a fully wired PaymentService
"""

import random
from datetime import datetime, timezone

import pytest

from paymatch import (
    ManualClock,
    MatchingConfig,
    WalletLedger,
    CodeRegistry,
    PresenceRegistry,
    NearbyRequestRegistry,
    PaymentService,
)


START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

class SequenceRandom:
    """Stand-in random source that replays a fixed list of values for randrange()."""

    def __init__(self, values):
        self._values = list(values)
        self.draws = 0

    def randrange(self, *args, **kwargs):
        self.draws += 1
        return self._values.pop(0)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def config():
    return MatchingConfig()


@pytest.fixture
def wallet(clock, config):
    return WalletLedger(clock, config)


@pytest.fixture
def codes(clock, config, rng):
    return CodeRegistry(clock, config, rng)


@pytest.fixture
def presence(clock, config):
    return PresenceRegistry(clock, config)


@pytest.fixture
def nearby(clock, config):
    return NearbyRequestRegistry(clock, config)


@pytest.fixture
def service(clock, config, rng):
    return PaymentService(clock=clock, config=config, rng=rng)


@pytest.fixture
def sequence_rng():
    """Factory for a SequenceRandom replaying the given values."""
    return SequenceRandom

