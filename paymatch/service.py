"""
service.py - Request/response surface of the matching core

PaymentService wires the registries to one WalletLedger and exposes the calls
clients make, under the names clients use for them. It owns settlement: a
confirmed code or an accepted nearby request moves funds from sender to
recipient exactly once, inside the owning registry's critical section, with
the code or request id as the ledger settlement reference.

Lock order is always registry lock -> wallet account locks.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, List, Optional
import random

from .clock import Clock, SystemClock
from .codes import CodeRegistry
from .config import MatchingConfig, DEFAULT_CONFIG
from .core import (
    CodeStatusView, NearbyPaymentRequest, PaymentCode, PresentPrincipal, RequestStatusView,
    Result, TransactionRecord, success,
)
from .nearby import NearbyRequestRegistry
from .presence import PresenceRegistry
from .wallet import WalletLedger


class PaymentService:
    """
    Matching and settlement core for one process.

    Example:
        service = PaymentService()
        code = service.generate_code("alice", "Alice", "10.00", "USD").value.code
        service.verify_code(code, "bob", "Bob")
        service.confirm_payment(code, "bob")
        service.get_balance("bob", "USD")   # Decimal("110.00")
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        config: Optional[MatchingConfig] = None,
        rng: Optional[random.Random] = None,
        wallet: Optional[WalletLedger] = None,
    ):
        self.clock = clock or SystemClock()
        self.config = config or DEFAULT_CONFIG
        self.wallet = wallet or WalletLedger(self.clock, self.config)
        self.codes = CodeRegistry(self.clock, self.config, rng)
        self.presence = PresenceRegistry(self.clock, self.config)
        self.nearby = NearbyRequestRegistry(self.clock, self.config)

    # ========================================================================
    # SETTLEMENT
    # ========================================================================

    def _settle_code(self, entry: PaymentCode) -> bool:
        return self.wallet.transfer(
            entry.sender_id,
            entry.recipient_id,
            entry.currency,
            entry.amount,
            note=entry.note,
            sender_name=entry.sender_name,
            recipient_name=entry.recipient_name,
            reference=f"code:{entry.payment_id}",
        )

    def _settle_request(self, request: NearbyPaymentRequest) -> bool:
        return self.wallet.transfer(
            request.sender_id,
            request.recipient_id,
            request.currency,
            request.amount,
            note=request.note,
            sender_name=request.sender_name,
            reference=f"nearby:{request.id}",
        )

    # ========================================================================
    # CODE MATCH
    # ========================================================================

    def generate_code(
        self,
        sender_id: str,
        sender_name: str,
        amount: Any,
        currency: str = "USD",
        note: Optional[str] = None,
    ) -> Result:
        return self.codes.generate_code(sender_id, sender_name, amount, currency, note)

    def verify_code(self, code: str, recipient_id: str, recipient_name: str) -> Result:
        """Redeem a code. On success the value is the matched PaymentCode."""
        return self.codes.redeem(code, recipient_id, recipient_name)

    def confirm_payment(self, code: str, recipient_id: str) -> Result:
        """Complete a matched code and move the funds from sender to recipient."""
        return self.codes.confirm(code, recipient_id, settle=self._settle_code)

    def cancel_payment(self, code: str, sender_id: str) -> Result:
        return self.codes.cancel(code, sender_id)

    def get_payment_status(self, code: str) -> CodeStatusView:
        return self.codes.get_status(code)

    # ========================================================================
    # PRESENCE
    # ========================================================================

    def register_nearby(self, user_id: str, user_name: str, device_name: str) -> Result:
        self.presence.announce(user_id, user_name, device_name)
        return success()

    def heartbeat(self, user_id: str) -> Result:
        # Always OK: a heartbeat for an unknown principal is a no-op.
        self.presence.heartbeat(user_id)
        return success()

    def unregister_nearby(self, user_id: str) -> Result:
        self.presence.withdraw(user_id)
        return success()

    def get_nearby_users(self, user_id: str) -> List[PresentPrincipal]:
        return self.presence.list_present(excluding=user_id)

    # ========================================================================
    # NEARBY REQUESTS
    # ========================================================================

    def send_nearby_payment(
        self,
        sender_id: str,
        sender_name: str,
        recipient_id: str,
        amount: Any,
        currency: str = "USD",
        note: Optional[str] = None,
    ) -> Result:
        return self.nearby.create(sender_id, sender_name, recipient_id, amount, currency, note)

    def respond_to_nearby_payment(self, request_id: str, recipient_id: str, accept: bool) -> Result:
        """Accept (settling immediately) or reject a nearby payment request."""
        return self.nearby.respond(request_id, recipient_id, accept, settle=self._settle_request)

    def get_nearby_payment_status(self, request_id: str) -> RequestStatusView:
        return self.nearby.get_status(request_id)

    def get_pending_nearby_payments(self, user_id: str) -> List[NearbyPaymentRequest]:
        return self.nearby.pending_for_recipient(user_id)

    # ========================================================================
    # WALLET (read-only)
    # ========================================================================

    def get_balance(self, user_id: str, currency: str) -> Decimal:
        return self.wallet.get_balance(user_id, currency)

    def get_balances(self, user_id: str) -> Dict[str, Decimal]:
        return self.wallet.get_balances(user_id)

    def get_transactions(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TransactionRecord]:
        return self.wallet.history(user_id, limit, offset)
