"""
Core types and pure functions for the payment matching core.

This module provides the foundational data structures shared by every registry:
1. Currencies: the fixed currency table and truncating rounding rules
2. Immutable records: TransactionRecord, PaymentCode, PresenceRecord, NearbyPaymentRequest
3. Outcomes: Outcome enum and the Result wrapper returned by every user-facing call
4. Exceptions: PaymatchError and the caller-fault error types

All records are frozen. Registries hand out these objects by value, so a caller
holding a record can never mutate registry state through it.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Context, Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_EVEN, localcontext
from enum import Enum
from typing import Any, Dict, Optional


# ============================================================================
# CONSTANTS
# ============================================================================

CURRENCY_KIND_FIAT = "FIAT"
CURRENCY_KIND_CRYPTO = "CRYPTO"

# Per-kind precision. Rounding is always truncation, applied once at storage.
DECIMAL_PRECISION = {
    CURRENCY_KIND_FIAT: 2,
    CURRENCY_KIND_CRYPTO: 8,
}

CODE_LENGTH = 6
CODE_TTL = timedelta(minutes=10)
REQUEST_TTL = timedelta(minutes=2)
SETTLEMENT_DELAY = timedelta(seconds=1)
PRESENCE_TIMEOUT = timedelta(seconds=30)

# Signal strength drops one point per 100ms since the last heartbeat.
SIGNAL_MAX = 100
SIGNAL_DECAY_MS = 100

TRANSACTION_STATUS_COMPLETED = "completed"


# ============================================================================
# DECIMAL CONTEXT
# ============================================================================
#
# Amount arithmetic runs in a private context instead of the thread-local
# default (28 digits), so worker threads see the same precision as the main
# thread. Use it as: with localcontext(AMOUNT_CONTEXT): ...
#
#   - prec=50: MAX_AMOUNT at crypto precision needs 39 digits; the rest is
#     headroom for balances accumulated from many maximal credits
#   - traps: InvalidOperation is still raised if a result cannot be represented
#
AMOUNT_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)

# Largest single amount accepted from callers, in whole units.
MAX_AMOUNT = Decimal("1E+30")


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PaymatchError(Exception):
    """Base exception for programming faults inside the matching core."""
    pass


class UnknownCurrency(PaymatchError):
    """Raised when a currency symbol is not part of the fixed currency table."""
    pass


class InvariantViolation(PaymatchError):
    """Raised when an internal invariant no longer holds."""
    pass


class CodeSpaceExhausted(PaymatchError):
    """Raised when every payment code value is held by a live code."""
    pass


# ============================================================================
# CURRENCIES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Currency:
    """
    Definition of a currency a wallet can hold.

    Attributes:
        symbol: Short identifier (e.g., "USD", "BTC").
        name: Human-readable name.
        kind: CURRENCY_KIND_FIAT or CURRENCY_KIND_CRYPTO.
        decimal_places: Digits kept after the decimal point.
        starting_balance: Balance reported for an account that has never been touched.
    """
    symbol: str
    name: str
    kind: str
    decimal_places: int
    starting_balance: Decimal = Decimal("0")

    def round(self, value: Decimal) -> Decimal:
        """Truncate a value to this currency's precision."""
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        with localcontext(AMOUNT_CONTEXT):
            return value.quantize(quantizer, rounding=ROUND_DOWN)

    @property
    def is_fiat(self) -> bool:
        return self.kind == CURRENCY_KIND_FIAT


def fiat(symbol: str, name: str, starting_balance: Decimal = Decimal("0")) -> Currency:
    """Create a fiat currency tracked to cents."""
    return Currency(
        symbol=symbol,
        name=name,
        kind=CURRENCY_KIND_FIAT,
        decimal_places=DECIMAL_PRECISION[CURRENCY_KIND_FIAT],
        starting_balance=starting_balance,
    )


def crypto(symbol: str, name: str) -> Currency:
    """Create a crypto currency tracked to 8 decimal places."""
    return Currency(
        symbol=symbol,
        name=name,
        kind=CURRENCY_KIND_CRYPTO,
        decimal_places=DECIMAL_PRECISION[CURRENCY_KIND_CRYPTO],
    )


# Only the fiat currency carries a nonzero starting allocation.
CURRENCIES: Dict[str, Currency] = {
    c.symbol: c for c in (
        fiat("USD", "US Dollar", starting_balance=Decimal("100.00")),
        crypto("BTC", "Bitcoin"),
        crypto("ETH", "Ethereum"),
        crypto("SOL", "Solana"),
        crypto("USDT", "Tether"),
        crypto("BNB", "BNB"),
    )
}


def get_currency(symbol: str) -> Currency:
    """Look up a currency, raising UnknownCurrency for symbols outside the table."""
    try:
        return CURRENCIES[symbol]
    except KeyError:
        raise UnknownCurrency(f"Currency {symbol} not supported") from None


def to_amount(currency: str, value: Any) -> Decimal:
    """
    Convert a caller-supplied amount to the stored representation.

    The value is truncated to the currency's precision. Amounts must be
    finite, at most MAX_AMOUNT, and strictly positive after truncation.

    Raises:
        UnknownCurrency: If the currency is not supported.
        ValueError: If the amount is not a positive finite number within MAX_AMOUNT.
    """
    unit = get_currency(currency)
    if isinstance(value, bool):
        raise ValueError(f"Amount must be numeric, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Amount must be numeric, got {value!r}") from None
    if amount.is_nan() or amount.is_infinite():
        raise ValueError(f"Amount must be finite, got {amount}")
    if amount > MAX_AMOUNT:
        raise ValueError(f"Amount {amount} exceeds maximum of {MAX_AMOUNT} {currency}")
    try:
        stored = unit.round(amount)
    except InvalidOperation:
        raise ValueError(f"Amount {amount} cannot be stored in {currency}") from None
    if stored <= 0:
        raise ValueError(f"Amount must be positive, got {amount} {currency}")
    return stored


# ============================================================================
# ENUMS
# ============================================================================

class Direction(Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class CodeStatus(Enum):
    """
    Lifecycle of a payment code.

    NOT_FOUND only appears on status views, never on a stored code.
    """
    PENDING = "pending"
    MATCHED = "matched"
    COMPLETED = "completed"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


class RequestStatus(Enum):
    """
    Lifecycle of a nearby payment request.

    EXPIRED and NOT_FOUND only appear on status views.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.REJECTED, RequestStatus.COMPLETED)


class Outcome(Enum):
    """
    Result of a matching or settlement call.

    OK: The call succeeded.
    NOT_FOUND: Code or request unknown or already swept.
    ALREADY_USED: Code already redeemed or settled.
    ALREADY_TERMINAL: Request already answered.
    EXPIRED: TTL passed; the entity was swept while detecting this.
    UNAUTHORIZED: Caller is not entitled to the transition.
    SELF_PAY: Sender and recipient are the same principal.
    INSUFFICIENT_FUNDS: The sender's balance does not cover the amount.
    """
    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    ALREADY_TERMINAL = "already_terminal"
    EXPIRED = "expired"
    UNAUTHORIZED = "unauthorized"
    SELF_PAY = "self_pay"
    INSUFFICIENT_FUNDS = "insufficient_funds"


OUTCOME_MESSAGES = {
    Outcome.OK: "",
    Outcome.NOT_FOUND: "Invalid or expired code",
    Outcome.ALREADY_USED: "This code has already been used",
    Outcome.ALREADY_TERMINAL: "This request has already been answered",
    Outcome.EXPIRED: "Code has expired",
    Outcome.UNAUTHORIZED: "Unauthorized",
    Outcome.SELF_PAY: "Cannot send payment to yourself",
    Outcome.INSUFFICIENT_FUNDS: "Insufficient balance",
}


@dataclass(frozen=True, slots=True)
class Result:
    """
    Structured outcome of a user-facing call.

    Attributes:
        outcome: What happened.
        value: Payload on success (record, id, view), None otherwise.
        detail: Optional override for the user-facing message.
    """
    outcome: Outcome
    value: Any = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def message(self) -> str:
        return self.detail if self.detail is not None else OUTCOME_MESSAGES[self.outcome]

    def __repr__(self) -> str:
        if self.ok:
            return f"Result(ok, {self.value!r})"
        return f"Result({self.outcome.value}: {self.message})"


def success(value: Any = None) -> Result:
    return Result(Outcome.OK, value)


def failure(outcome: Outcome, detail: Optional[str] = None) -> Result:
    if outcome is Outcome.OK:
        raise InvariantViolation("failure() called with Outcome.OK")
    return Result(outcome, None, detail)


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """
    Immutable ledger entry, created in the same unit of work as its balance change.

    Attributes:
        id: Opaque transaction identifier.
        principal: Account owner.
        direction: DEBIT or CREDIT.
        currency: Currency symbol.
        amount: Stored (already truncated) amount, always positive.
        timestamp: Clock time of the mutation.
        sequence: Monotonic ordering within the ledger.
        counterparty_name: Display name of the other side, if known.
        note: Free-form note supplied by the sender.
        reference: Code or request id this entry settles.
        status: Always "completed" once recorded.
    """
    id: str
    principal: str
    direction: Direction
    currency: str
    amount: Decimal
    timestamp: datetime
    sequence: int
    counterparty_name: Optional[str] = None
    note: Optional[str] = None
    reference: Optional[str] = None
    status: str = TRANSACTION_STATUS_COMPLETED

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction is Direction.CREDIT else -self.amount

    def __repr__(self) -> str:
        arrow = "+" if self.direction is Direction.CREDIT else "-"
        return f"TransactionRecord({self.principal} {arrow}{self.amount} {self.currency} #{self.sequence})"


@dataclass(frozen=True, slots=True)
class PaymentCode:
    """
    Short numeric code a sender reserves and a recipient redeems.

    Transitions: pending -> matched -> completed. Expired and cancelled
    codes are removed rather than given a status.
    """
    code: str
    sender_id: str
    sender_name: str
    amount: Decimal
    currency: str
    created_at: datetime
    expires_at: datetime
    payment_id: str
    note: Optional[str] = None
    status: CodeStatus = CodeStatus.PENDING
    recipient_id: Optional[str] = None
    recipient_name: Optional[str] = None
    transaction_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True, slots=True)
class GeneratedCode:
    code: str
    expires_at: datetime
    payment_id: str


@dataclass(frozen=True, slots=True)
class Confirmation:
    code: str
    transaction_id: str
    completed_at: datetime


@dataclass(frozen=True, slots=True)
class CodeStatusView:
    """Polling view of a payment code."""
    exists: bool
    status: CodeStatus
    is_matched: bool = False
    recipient_name: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PresenceRecord:
    principal_id: str
    display_name: str
    device_label: str
    last_seen_at: datetime


@dataclass(frozen=True, slots=True)
class PresentPrincipal:
    """A discoverable principal as shown to other participants."""
    principal_id: str
    display_name: str
    device_label: str
    signal_strength: int


@dataclass(frozen=True, slots=True)
class NearbyPaymentRequest:
    """
    Payment proposal from a sender to one specific present recipient.

    Transitions: pending -> accepted -> completed, or pending -> rejected.
    Rejected and completed are terminal.
    """
    id: str
    sender_id: str
    sender_name: str
    recipient_id: str
    amount: Decimal
    currency: str
    created_at: datetime
    expires_at: datetime
    note: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True, slots=True)
class RequestStatusView:
    """Polling view of a nearby payment request."""
    found: bool
    status: RequestStatus
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
