"""
config.py - Tunable timing and allocation parameters

Defaults come from the constants in core.py. Registries take a MatchingConfig
through their constructor; DEFAULT_CONFIG is used when none is given.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional

from .core import (
    CODE_LENGTH, CODE_TTL, REQUEST_TTL, SETTLEMENT_DELAY, PRESENCE_TIMEOUT,
    get_currency,
)


@dataclass(frozen=True, slots=True)
class MatchingConfig:
    """
    Timing and allocation parameters for one matching core instance.

    Attributes:
        code_ttl: Lifetime of a payment code.
        code_length: Number of digits in a payment code.
        request_ttl: Lifetime of a nearby payment request.
        settlement_delay: Delay between acceptance and completion of a nearby request.
        presence_timeout: A presence record is live while younger than this.
        starting_balances: Per-currency overrides of the starting allocation.
    """
    code_ttl: timedelta = CODE_TTL
    code_length: int = CODE_LENGTH
    request_ttl: timedelta = REQUEST_TTL
    settlement_delay: timedelta = SETTLEMENT_DELAY
    presence_timeout: timedelta = PRESENCE_TIMEOUT
    starting_balances: Dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        if self.code_length <= 0:
            raise ValueError(f"code_length must be positive, got {self.code_length}")
        for name in ("code_ttl", "request_ttl", "presence_timeout"):
            if getattr(self, name) <= timedelta(0):
                raise ValueError(f"{name} must be positive")
        if self.settlement_delay < timedelta(0):
            raise ValueError("settlement_delay cannot be negative")
        # Liveness decays faster than payment intent.
        if self.presence_timeout >= min(self.code_ttl, self.request_ttl):
            raise ValueError("presence_timeout must be shorter than code and request TTLs")
        for symbol, amount in self.starting_balances.items():
            get_currency(symbol)
            if amount < 0:
                raise ValueError(f"Starting balance for {symbol} cannot be negative")

    @property
    def code_space(self) -> int:
        return 10 ** self.code_length

    def starting_balance(self, currency: str) -> Decimal:
        unit = get_currency(currency)
        override: Optional[Decimal] = self.starting_balances.get(currency)
        if override is None:
            return unit.starting_balance
        return unit.round(override)


DEFAULT_CONFIG = MatchingConfig()

