"""
codes.py - Code Match Registry

A sender reserves a short numeric code bound to an amount; a recipient redeems
it exactly once; the bound recipient confirms, which settles the payment.

    pending --redeem--> matched --confirm--> completed
    pending --cancel (sender)--> removed
    any     --ttl--> removed

Expired codes are swept on every mutating or listing call. Completed codes are
kept read-only until their TTL passes, so the value is never recycled while a
poller may still ask about it.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional
import random
import threading

from .clock import Clock, SystemClock, new_id
from .config import MatchingConfig, DEFAULT_CONFIG
from .core import (
    CodeStatus, CodeStatusView, Confirmation, GeneratedCode, Outcome, PaymentCode, Result,
    CodeSpaceExhausted,
    failure, success, to_amount,
)
from .logging_config import get_logger

logger = get_logger(__name__)

# Settlement callback: receives the matched code, returns False on insufficient funds.
Settle = Callable[[PaymentCode], bool]


class CodeRegistry:
    """
    Owner of every live payment code.

    All operations run under one re-entrant lock, so two concurrent redeem
    calls on the same code cannot both succeed.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        config: Optional[MatchingConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.clock = clock or SystemClock()
        self.config = config or DEFAULT_CONFIG
        self._rng = rng or random.SystemRandom()
        self._codes: Dict[str, PaymentCode] = {}
        self._lock = threading.RLock()

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _sweep(self) -> int:
        """Delete every code whose expires_at has passed, regardless of status."""
        now = self.clock.now()
        expired = [code for code, entry in self._codes.items() if entry.is_expired(now)]
        for code in expired:
            del self._codes[code]
        if expired:
            logger.debug("Swept %d expired payment codes", len(expired))
        return len(expired)

    def _next_code(self) -> str:
        """
        Draw a code uniformly from the values not held by a live code.

        A collision triggers another draw. The registry lock is held, so the
        drawn value cannot be taken between the check and the insert.
        """
        space = self.config.code_space
        if len(self._codes) >= space:
            raise CodeSpaceExhausted(f"All {space} payment codes are in use")
        while True:
            code = f"{self._rng.randrange(space):0{self.config.code_length}d}"
            if code not in self._codes:
                return code
            logger.debug("Payment code collision, drawing again")

    def _validate_code(self, code: Any) -> str:
        if (
            not isinstance(code, str)
            or len(code) != self.config.code_length
            or not code.isdigit()
        ):
            raise ValueError(f"Payment code must be {self.config.code_length} digits, got {code!r}")
        return code

    def _lookup(self, code: str) -> Result:
        """
        Find a code, expiring it on direct lookup.

        Returns OK with the entry, NOT_FOUND, or EXPIRED (entry removed).
        """
        entry = self._codes.get(code)
        if entry is None:
            return failure(Outcome.NOT_FOUND)
        if entry.is_expired(self.clock.now()):
            del self._codes[code]
            logger.info("Payment code %s expired", code)
            return failure(Outcome.EXPIRED)
        return success(entry)

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def generate_code(
        self,
        sender_id: str,
        sender_name: str,
        amount: Any,
        currency: str,
        note: Optional[str] = None,
    ) -> Result:
        """
        Reserve a new payment code.

        Args:
            sender_id: Principal paying
            sender_name: Display name shown to the recipient
            amount: Amount to pay (truncated to the currency's precision)
            currency: Currency symbol
            note: Optional note

        Returns:
            Result with a GeneratedCode (code, expires_at, payment_id).

        Raises:
            ValueError: If the amount is not positive.
            UnknownCurrency: If the currency is not supported.
            CodeSpaceExhausted: If every code value is taken.
        """
        stored = to_amount(currency, amount)
        with self._lock:
            self._sweep()
            code = self._next_code()
            now = self.clock.now()
            entry = PaymentCode(
                code=code,
                sender_id=sender_id,
                sender_name=sender_name,
                amount=stored,
                currency=currency,
                created_at=now,
                expires_at=now + self.config.code_ttl,
                payment_id=new_id("pay", self.clock),
                note=note,
            )
            self._codes[code] = entry

        logger.info("Payment code generated: %s for %s (%s %s)", code, sender_name, stored, currency)
        return success(GeneratedCode(code=code, expires_at=entry.expires_at, payment_id=entry.payment_id))

    def redeem(self, code: str, recipient_id: str, recipient_name: str) -> Result:
        """
        Claim a pending code for a recipient.

        Returns:
            Result with the matched PaymentCode on success, or one of
            NOT_FOUND, EXPIRED, ALREADY_USED, SELF_PAY.
        """
        code = self._validate_code(code)
        with self._lock:
            found = self._lookup(code)
            self._sweep()
            if not found.ok:
                return found
            entry: PaymentCode = found.value

            if entry.status is not CodeStatus.PENDING:
                return failure(Outcome.ALREADY_USED)
            if entry.sender_id == recipient_id:
                return failure(Outcome.SELF_PAY)

            matched = replace(
                entry,
                status=CodeStatus.MATCHED,
                recipient_id=recipient_id,
                recipient_name=recipient_name,
            )
            self._codes[code] = matched

        logger.info("Payment code verified: %s by %s", code, recipient_name)
        return success(matched)

    def confirm(self, code: str, recipient_id: str, settle: Optional[Settle] = None) -> Result:
        """
        Complete a matched code.

        Args:
            code: The payment code
            recipient_id: Must be the recipient bound by redeem()
            settle: Optional settlement step run inside the critical section.
                    Returning False leaves the code matched and reports
                    INSUFFICIENT_FUNDS.

        Returns:
            Result with a Confirmation. Repeating the call for a completed code
            returns the original confirmation without settling again.
        """
        code = self._validate_code(code)
        with self._lock:
            found = self._lookup(code)
            if not found.ok:
                return found
            entry: PaymentCode = found.value

            if entry.recipient_id != recipient_id:
                return failure(Outcome.UNAUTHORIZED)
            if entry.status is CodeStatus.COMPLETED:
                return success(Confirmation(code, entry.transaction_id, entry.completed_at))

            if settle is not None and not settle(entry):
                logger.warning("Settlement failed for payment code %s", code)
                return failure(Outcome.INSUFFICIENT_FUNDS)

            completed = replace(
                entry,
                status=CodeStatus.COMPLETED,
                transaction_id=new_id("TXN", self.clock),
                completed_at=self.clock.now(),
            )
            self._codes[code] = completed

        logger.info("Payment completed: %s (code %s)", completed.transaction_id, code)
        return success(Confirmation(code, completed.transaction_id, completed.completed_at))

    def cancel(self, code: str, sender_id: str) -> Result:
        """
        Withdraw an unredeemed code.

        Returns:
            OK, NOT_FOUND, EXPIRED, UNAUTHORIZED (not the creator) or
            ALREADY_USED (redeemed codes cannot be cancelled).
        """
        code = self._validate_code(code)
        with self._lock:
            found = self._lookup(code)
            self._sweep()
            if not found.ok:
                return found
            entry: PaymentCode = found.value
            if entry.sender_id != sender_id:
                return failure(Outcome.UNAUTHORIZED)
            if entry.status is not CodeStatus.PENDING:
                return failure(Outcome.ALREADY_USED)
            del self._codes[code]

        logger.info("Payment code %s cancelled by sender", code)
        return success()

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_status(self, code: str) -> CodeStatusView:
        """
        Poll a code's status.

        Safe to repeat arbitrarily often: the only side effect is removing the
        code once its TTL has passed.
        """
        code = self._validate_code(code)
        with self._lock:
            found = self._lookup(code)
            if found.outcome is Outcome.EXPIRED:
                return CodeStatusView(exists=True, status=CodeStatus.EXPIRED)
            if not found.ok:
                return CodeStatusView(exists=False, status=CodeStatus.NOT_FOUND)
            entry: PaymentCode = found.value
            return CodeStatusView(
                exists=True,
                status=entry.status,
                is_matched=entry.recipient_id is not None,
                recipient_name=entry.recipient_name,
                amount=entry.amount,
                currency=entry.currency,
            )

    def codes_for_sender(self, sender_id: str) -> List[PaymentCode]:
        """Live codes created by a sender, oldest first."""
        with self._lock:
            self._sweep()
            return sorted(
                (e for e in self._codes.values() if e.sender_id == sender_id),
                key=lambda e: e.created_at,
            )

    def live_count(self) -> int:
        with self._lock:
            self._sweep()
            return len(self._codes)
