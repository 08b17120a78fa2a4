"""
paymatch - Peer-to-peer payment matching and settlement core

Turns an out-of-band payment agreement (a typed code, or a nearby handshake)
into a balance mutation recorded in a per-user wallet ledger.

Usage:
    from decimal import Decimal
    from paymatch import PaymentService, ManualClock

    service = PaymentService(clock=ManualClock())

    # Code match: sender reserves, recipient redeems, recipient confirms
    code = service.generate_code("alice", "Alice", Decimal("10.00"), "USD").value.code
    service.verify_code(code, "bob", "Bob")
    service.confirm_payment(code, "bob")

    # Nearby: announce, target, accept
    service.register_nearby("bob", "Bob", "Pixel 8")
    request_id = service.send_nearby_payment("alice", "Alice", "bob", Decimal("5"), "USD").value
    service.respond_to_nearby_payment(request_id, "bob", accept=True)
"""

# Core types
from .core import (
    Currency,
    CURRENCIES,
    get_currency,
    to_amount,
    Direction,
    CodeStatus,
    RequestStatus,
    Outcome,
    Result,
    TransactionRecord,
    PaymentCode,
    GeneratedCode,
    Confirmation,
    CodeStatusView,
    PresenceRecord,
    PresentPrincipal,
    NearbyPaymentRequest,
    RequestStatusView,
    PaymatchError,
    UnknownCurrency,
    InvariantViolation,
    CodeSpaceExhausted,
    CODE_TTL,
    REQUEST_TTL,
    PRESENCE_TIMEOUT,
    SETTLEMENT_DELAY,
    MAX_AMOUNT,
)

# Time and ids
from .clock import Clock, SystemClock, ManualClock, new_id

# Configuration
from .config import MatchingConfig, DEFAULT_CONFIG

# Registries
from .wallet import WalletLedger
from .codes import CodeRegistry
from .presence import PresenceRegistry, signal_strength
from .nearby import NearbyRequestRegistry
from .scheduler import Task, TaskScheduler

# Facade
from .service import PaymentService

# Logging
from .logging_config import StructuredFormatter, configure_logging, get_logger, reset_logging
