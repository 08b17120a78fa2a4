"""
nearby.py - Nearby Request Registry

Two-phase payment requests between a sender and one specific present
recipient.

    pending --accept--> accepted --(settlement_delay)--> completed
    pending --reject--> rejected
    any     --ttl--> removed

Only the named recipient can move a request out of pending. Rejected and
completed are terminal. The accepted -> completed step is a scheduled task
that runs lazily on the next access after settlement_delay, and does nothing
unless the request still exists and is still accepted.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import threading

from .clock import Clock, SystemClock, new_id
from .config import MatchingConfig, DEFAULT_CONFIG
from .core import (
    NearbyPaymentRequest, Outcome, RequestStatus, RequestStatusView, Result,
    failure, success, to_amount,
)
from .scheduler import TaskScheduler
from .logging_config import get_logger

logger = get_logger(__name__)

ACTION_COMPLETE = "complete"

# Settlement callback: receives the request being accepted, returns False on insufficient funds.
Settle = Callable[[NearbyPaymentRequest], bool]


class NearbyRequestRegistry:
    """Owner of every nearby payment request, guarded by one re-entrant lock."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        config: Optional[MatchingConfig] = None,
    ):
        self.clock = clock or SystemClock()
        self.config = config or DEFAULT_CONFIG
        self._requests: Dict[str, NearbyPaymentRequest] = {}
        self._lock = threading.RLock()
        self._scheduler = TaskScheduler()
        self._scheduler.register(ACTION_COMPLETE, self._complete)

    # ========================================================================
    # INTERNALS (caller holds self._lock)
    # ========================================================================

    def _complete(self, request_id: str) -> None:
        request = self._requests.get(request_id)
        if request is None or request.status is not RequestStatus.ACCEPTED:
            return
        self._requests[request_id] = replace(request, status=RequestStatus.COMPLETED)
        logger.info("Nearby payment %s completed", request_id)

    def _maintain(self, now: Optional[datetime] = None) -> None:
        """Run due completions, then sweep expired requests."""
        now = now or self.clock.now()
        self._scheduler.run_due(now)
        expired = [rid for rid, r in self._requests.items() if r.is_expired(now)]
        for rid in expired:
            del self._requests[rid]
            self._scheduler.cancel(rid)
        if expired:
            logger.debug("Swept %d expired nearby payment requests", len(expired))

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def create(
        self,
        sender_id: str,
        sender_name: str,
        recipient_id: str,
        amount: Any,
        currency: str,
        note: Optional[str] = None,
    ) -> Result:
        """
        Record a payment proposal.

        Recipient presence is not checked here; callers target a principal
        obtained from the presence registry.

        Returns:
            Result with the new request id, or SELF_PAY.
        """
        stored = to_amount(currency, amount)
        if sender_id == recipient_id:
            return failure(Outcome.SELF_PAY)
        with self._lock:
            self._maintain()
            now = self.clock.now()
            request = NearbyPaymentRequest(
                id=new_id("npr", self.clock),
                sender_id=sender_id,
                sender_name=sender_name,
                recipient_id=recipient_id,
                amount=stored,
                currency=currency,
                created_at=now,
                expires_at=now + self.config.request_ttl,
                note=note,
            )
            self._requests[request.id] = request

        logger.info(
            "Nearby payment request %s from %s to %s", request.id, sender_name, recipient_id,
        )
        return success(request.id)

    def respond(
        self,
        request_id: str,
        recipient_id: str,
        accept: bool,
        settle: Optional[Settle] = None,
    ) -> Result:
        """
        Accept or reject a pending request.

        Args:
            request_id: Request to answer
            recipient_id: Must be the request's recipient
            accept: True to accept, False to reject
            settle: Optional settlement step run inside the critical section
                    before the request becomes accepted. Returning False
                    leaves the request pending and reports INSUFFICIENT_FUNDS.

        Returns:
            Result with the new RequestStatus, or NOT_FOUND, EXPIRED,
            UNAUTHORIZED, ALREADY_TERMINAL.
        """
        with self._lock:
            now = self.clock.now()
            self._scheduler.run_due(now)
            request = self._requests.get(request_id)
            self._maintain(now)
            if request is None:
                return failure(Outcome.NOT_FOUND, "Request not found")
            if request.is_expired(now):
                return failure(Outcome.EXPIRED, "Request has expired")

            if request.recipient_id != recipient_id:
                return failure(Outcome.UNAUTHORIZED)
            if request.status is not RequestStatus.PENDING:
                return failure(Outcome.ALREADY_TERMINAL)

            if not accept:
                self._requests[request_id] = replace(request, status=RequestStatus.REJECTED)
                logger.info("Nearby payment %s rejected by %s", request_id, recipient_id)
                return success(RequestStatus.REJECTED)

            if settle is not None and not settle(request):
                logger.warning("Settlement failed for nearby payment %s", request_id)
                return failure(Outcome.INSUFFICIENT_FUNDS)

            self._requests[request_id] = replace(request, status=RequestStatus.ACCEPTED)
            self._scheduler.schedule(
                now + self.config.settlement_delay, request_id, ACTION_COMPLETE,
            )

        logger.info("Nearby payment %s accepted by %s", request_id, recipient_id)
        return success(RequestStatus.ACCEPTED)

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_status(self, request_id: str) -> RequestStatusView:
        """
        Poll a request's status.

        Repeating the call never settles anything; it only lets due
        completions run and expired requests disappear.
        """
        with self._lock:
            now = self.clock.now()
            self._scheduler.run_due(now)
            request = self._requests.get(request_id)
            self._maintain(now)
            if request is None:
                return RequestStatusView(found=False, status=RequestStatus.NOT_FOUND)
            if request.is_expired(now):
                return RequestStatusView(found=False, status=RequestStatus.EXPIRED)
            current = self._requests[request_id]
            return RequestStatusView(
                found=True,
                status=current.status,
                amount=current.amount,
                currency=current.currency,
            )

    def get(self, request_id: str) -> Optional[NearbyPaymentRequest]:
        with self._lock:
            self._maintain()
            return self._requests.get(request_id)

    def pending_for_recipient(self, recipient_id: str) -> List[NearbyPaymentRequest]:
        """Live pending requests addressed to a recipient, oldest first."""
        with self._lock:
            self._maintain()
            pending = [
                r for r in self._requests.values()
                if r.recipient_id == recipient_id and r.status is RequestStatus.PENDING
            ]
        return sorted(pending, key=lambda r: r.created_at)

    def requests_for_sender(self, sender_id: str) -> List[NearbyPaymentRequest]:
        with self._lock:
            self._maintain()
            sent = [r for r in self._requests.values() if r.sender_id == sender_id]
        return sorted(sent, key=lambda r: r.created_at)

    def pending_tasks(self) -> int:
        with self._lock:
            return self._scheduler.pending_count()
