"""
test_clock_config.py - Unit tests for clocks, identifiers and MatchingConfig
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from paymatch import (
    ManualClock, SystemClock, Clock, MatchingConfig, DEFAULT_CONFIG, UnknownCurrency, new_id,
)


class TestManualClock:

    def test_advance_returns_new_time(self, clock):
        start = clock.now()
        assert clock.advance(30) == start + timedelta(seconds=30)
        assert clock.advance(delta=timedelta(minutes=1)) == start + timedelta(seconds=90)

    def test_cannot_go_backwards(self, clock):
        with pytest.raises(ValueError):
            clock.advance(-1)
        with pytest.raises(ValueError):
            clock.set_time(clock.now() - timedelta(seconds=1))

    def test_set_time_forward(self, clock):
        target = clock.now() + timedelta(days=1)
        clock.set_time(target)
        assert clock.now() == target

    def test_naive_start_becomes_utc(self):
        clock = ManualClock(datetime(2025, 6, 1))
        assert clock.now().tzinfo is timezone.utc


class TestSystemClock:

    def test_is_a_clock(self):
        assert isinstance(SystemClock(), Clock)
        assert isinstance(ManualClock(), Clock)

    def test_monotonic(self):
        clock = SystemClock()
        readings = [clock.now() for _ in range(100)]
        assert readings == sorted(readings)
        assert readings[0].tzinfo is not None


class TestNewId:

    def test_prefix_and_uniqueness(self, clock):
        ids = {new_id("pay", clock) for _ in range(1000)}
        assert len(ids) == 1000
        assert all(i.startswith("pay_") for i in ids)


class TestMatchingConfig:

    def test_defaults(self):
        assert DEFAULT_CONFIG.code_ttl == timedelta(minutes=10)
        assert DEFAULT_CONFIG.request_ttl == timedelta(minutes=2)
        assert DEFAULT_CONFIG.settlement_delay == timedelta(seconds=1)
        assert DEFAULT_CONFIG.presence_timeout == timedelta(seconds=30)
        assert DEFAULT_CONFIG.code_space == 1_000_000

    def test_presence_must_decay_faster_than_intent(self):
        with pytest.raises(ValueError):
            MatchingConfig(presence_timeout=timedelta(minutes=5))

    @pytest.mark.parametrize("kwargs", [
        {"code_length": 0},
        {"code_ttl": timedelta(0)},
        {"settlement_delay": timedelta(seconds=-1)},
        {"starting_balances": {"USD": Decimal("-1")}},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            MatchingConfig(**kwargs)

    def test_unknown_starting_currency_rejected(self):
        with pytest.raises(UnknownCurrency):
            MatchingConfig(starting_balances={"EUR": Decimal("1")})

    def test_starting_balance_override_truncated(self):
        config = MatchingConfig(starting_balances={"USD": Decimal("5.129")})
        assert config.starting_balance("USD") == Decimal("5.12")
        assert config.starting_balance("BTC") == Decimal("0")
