"""
wallet.py - Per-principal multi-currency wallet ledger

The WalletLedger is the authoritative balance store. It is the only module that
mutates balances, and every mutation is recorded in the same unit of work.

Key responsibilities:
    - Reports balances, defaulting unseen accounts to their starting allocation
    - Applies debits, credits and two-legged transfers atomically
    - Keeps an append-only transaction history per principal
    - Verifies that balances and history agree (audit)

Thread Safety:
    One lock per principal. Reads take the lock too, so a balance is never
    observed without its transaction record. Transfers hold both principals'
    locks, acquired in sorted order, for the whole debit-and-credit.
"""

from __future__ import annotations
from contextlib import ExitStack
from decimal import Decimal, localcontext
from typing import Any, Dict, List, Optional, Set, Tuple
import itertools
import threading

from .clock import Clock, SystemClock, new_id
from .config import MatchingConfig, DEFAULT_CONFIG
from .core import (
    AMOUNT_CONTEXT, CURRENCIES, Direction, InvariantViolation, TransactionRecord,
    get_currency, to_amount,
)
from .logging_config import get_logger

logger = get_logger(__name__)


class _Account:
    """Mutable state for one principal. Only touched while its lock is held."""

    __slots__ = ("lock", "balances", "history")

    def __init__(self):
        self.lock = threading.RLock()
        self.balances: Dict[str, Decimal] = {}
        self.history: List[TransactionRecord] = []


class WalletLedger:
    """
    Balance store with an append-only transaction history.

    Example:
        wallet = WalletLedger()
        wallet.credit("alice", "SOL", Decimal("30"), counterparty_name="Faucet")
        wallet.transfer("alice", "bob", "SOL", Decimal("25"))
        wallet.get_balance("bob", "SOL")   # Decimal("25.00000000")
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        config: Optional[MatchingConfig] = None,
    ):
        self.clock = clock or SystemClock()
        self.config = config or DEFAULT_CONFIG
        self._accounts: Dict[str, _Account] = {}
        self._accounts_guard = threading.Lock()
        self._sequence = itertools.count()
        self._settled_references: Set[str] = set()
        self._references_guard = threading.Lock()

    # ========================================================================
    # ACCOUNT ACCESS
    # ========================================================================

    @staticmethod
    def _check_principal(principal: str) -> None:
        if not principal or not principal.strip():
            raise ValueError("Principal cannot be empty")

    def _account(self, principal: str) -> _Account:
        """Get or create an account. Only mutating paths create accounts."""
        self._check_principal(principal)
        with self._accounts_guard:
            account = self._accounts.get(principal)
            if account is None:
                account = _Account()
                self._accounts[principal] = account
            return account

    def _existing(self, principal: str) -> Optional[_Account]:
        """Look up an account without creating it."""
        self._check_principal(principal)
        with self._accounts_guard:
            return self._accounts.get(principal)

    def _current(self, account: _Account, currency: str) -> Decimal:
        if currency in account.balances:
            return account.balances[currency]
        return self.config.starting_balance(currency)

    def _record(
        self,
        account: _Account,
        principal: str,
        direction: Direction,
        currency: str,
        amount: Decimal,
        counterparty_name: Optional[str],
        note: Optional[str],
        reference: Optional[str],
    ) -> TransactionRecord:
        """Apply a balance change and append its record. Caller holds account.lock."""
        unit = get_currency(currency)
        current = self._current(account, currency)
        with localcontext(AMOUNT_CONTEXT):
            if direction is Direction.DEBIT:
                new_balance = unit.round(current - amount)
            else:
                new_balance = unit.round(current + amount)
        if new_balance < 0:
            raise InvariantViolation(f"{principal} {currency} would go negative: {new_balance}")

        record = TransactionRecord(
            id=new_id("tx", self.clock),
            principal=principal,
            direction=direction,
            currency=currency,
            amount=amount,
            timestamp=self.clock.now(),
            sequence=next(self._sequence),
            counterparty_name=counterparty_name,
            note=note,
            reference=reference,
        )
        account.balances[currency] = new_balance
        account.history.append(record)
        return record

    # ========================================================================
    # READ-ONLY
    # ========================================================================

    def _snapshot(self, principal: str) -> Tuple[Dict[str, Decimal], List[TransactionRecord]]:
        """
        Balances for every currency plus a copy of the history, read under the account lock.

        Unseen principals get starting allocations and an empty history;
        no account is created for them.
        """
        account = self._existing(principal)
        if account is None:
            return {symbol: self.config.starting_balance(symbol) for symbol in CURRENCIES}, []
        with account.lock:
            balances = {symbol: self._current(account, symbol) for symbol in CURRENCIES}
            return balances, list(account.history)

    def get_balance(self, principal: str, currency: str) -> Decimal:
        """
        Return a principal's balance in one currency.

        Unseen accounts report the currency's starting allocation.

        Raises:
            UnknownCurrency: If the currency is not supported.
        """
        get_currency(currency)
        account = self._existing(principal)
        if account is None:
            return self.config.starting_balance(currency)
        with account.lock:
            return self._current(account, currency)

    def get_balances(self, principal: str) -> Dict[str, Decimal]:
        """Return balances for every supported currency."""
        balances, _ = self._snapshot(principal)
        return balances

    def has_enough_balance(self, principal: str, currency: str, amount: Any) -> bool:
        return self.get_balance(principal, currency) >= to_amount(currency, amount)

    def history(
        self,
        principal: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[TransactionRecord]:
        """
        Return a principal's transaction history, newest first.

        Args:
            principal: Account owner
            limit: Maximum number of records (None = all)
            offset: Number of newest records to skip
        """
        _, records = self._snapshot(principal)
        newest_first = list(reversed(records))
        end = None if limit is None else offset + limit
        return newest_first[offset:end]

    def principals(self) -> List[str]:
        """Principals touched by a mutating call, sorted. Reads never add to this list."""
        with self._accounts_guard:
            return sorted(self._accounts)

    def is_settled(self, reference: str) -> bool:
        with self._references_guard:
            return reference in self._settled_references

    def audit(self, principal: str) -> Dict[str, Any]:
        """
        Verify that balances agree with the transaction history.

        For every currency: balance == starting allocation + credits - debits.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every currency reconciles
            - 'balances': Dict[str, Decimal] - Current balance per currency
            - 'discrepancies': List[Dict] - currency, expected, actual, difference
        """
        balances, history = self._snapshot(principal)

        discrepancies = []
        with localcontext(AMOUNT_CONTEXT):
            for symbol, actual in balances.items():
                expected = self.config.starting_balance(symbol) + sum(
                    (r.signed_amount for r in history if r.currency == symbol),
                    Decimal("0"),
                )
                if expected != actual or actual < 0:
                    discrepancies.append({
                        'currency': symbol,
                        'expected': expected,
                        'actual': actual,
                        'difference': actual - expected,
                    })

        return {
            'valid': len(discrepancies) == 0,
            'balances': balances,
            'discrepancies': discrepancies,
        }


    # ========================================================================
    # MUTATING
    # ========================================================================

    def debit(
        self,
        principal: str,
        currency: str,
        amount: Any,
        counterparty_name: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        """
        Remove funds from a principal's balance.

        Returns:
            True if applied, False if the balance does not cover the amount.
            A failed debit leaves both balance and history untouched.
        """
        amount = to_amount(currency, amount)
        account = self._account(principal)
        with account.lock:
            current = self._current(account, currency)
            if amount > current:
                logger.info(
                    "Insufficient %s balance for %s: have %s, need %s",
                    currency, principal, current, amount,
                )
                return False
            self._record(account, principal, Direction.DEBIT, currency, amount,
                         counterparty_name, note, None)
        logger.info("Debited %s %s from %s", amount, currency, principal)
        return True

    def credit(
        self,
        principal: str,
        currency: str,
        amount: Any,
        counterparty_name: Optional[str] = None,
        note: Optional[str] = None,
    ) -> None:
        """Add funds to a principal's balance. Always succeeds for a valid amount."""
        amount = to_amount(currency, amount)
        account = self._account(principal)
        with account.lock:
            self._record(account, principal, Direction.CREDIT, currency, amount,
                         counterparty_name, note, None)
        logger.info("Credited %s %s to %s", amount, currency, principal)

    def transfer(
        self,
        sender: str,
        recipient: str,
        currency: str,
        amount: Any,
        note: Optional[str] = None,
        sender_name: Optional[str] = None,
        recipient_name: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> bool:
        """
        Move funds from sender to recipient.

        Both legs are applied while both accounts are locked, so no other
        operation can observe the sender debited without the recipient credited.

        Args:
            sender: Principal to debit
            recipient: Principal to credit
            currency: Currency symbol
            amount: Amount to move (truncated to the currency's precision)
            note: Note recorded on both records
            sender_name: Counterparty name shown in the recipient's history
            recipient_name: Counterparty name shown in the sender's history
            reference: Settlement reference. A reference that was already
                       settled is not applied again and reports success.

        Returns:
            True if applied (or already applied), False on insufficient funds.

        Raises:
            ValueError: If sender and recipient are the same principal.
        """
        if sender == recipient:
            raise ValueError("Source and destination must be different")
        amount = to_amount(currency, amount)

        with self._locked(sender, recipient) as (src, dst):
            if reference is not None and self.is_settled(reference):
                logger.info("Settlement %s already applied", reference)
                return True

            current = self._current(src, currency)
            if amount > current:
                logger.warning(
                    "Transfer rejected: %s has %s %s, needs %s",
                    sender, current, currency, amount,
                )
                return False

            self._record(src, sender, Direction.DEBIT, currency, amount,
                         recipient_name or recipient, note, reference)
            self._record(dst, recipient, Direction.CREDIT, currency, amount,
                         sender_name or sender, note, reference)
            if reference is not None:
                with self._references_guard:
                    self._settled_references.add(reference)

        logger.info("Transferred %s %s from %s to %s", amount, currency, sender, recipient)
        return True

    def _locked(self, *principals: str) -> "_MultiLock":
        return _MultiLock([(p, self._account(p)) for p in principals])


class _MultiLock:
    """Acquire several account locks in principal order; yields accounts in argument order."""

    def __init__(self, pairs: List[Tuple[str, _Account]]):
        self._pairs = pairs
        self._stack = ExitStack()

    def __enter__(self) -> Tuple[_Account, ...]:
        for _, account in sorted(self._pairs, key=lambda pair: pair[0]):
            self._stack.enter_context(account.lock)
        return tuple(account for _, account in self._pairs)

    def __exit__(self, *exc_info) -> None:
        self._stack.close()
