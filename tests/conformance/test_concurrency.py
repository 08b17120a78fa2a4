"""
Concurrency Conformance Tests

INVARIANT: Registry and wallet invariants hold when many callers race on
the same entities.

    concurrent redeem(c) by N recipients ⟹ exactly one OK
    concurrent debits on one account ⟹ balance ≥ 0, history reconciles
    concurrent respond(r) ⟹ exactly one OK, at most one settlement
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from paymatch import (
    PaymentService, WalletLedger, PresenceRegistry, ManualClock, Outcome, RequestStatus,
)

WORKERS = 16


def _race(fn, args_list):
    """Run fn over args_list from many threads released at the same moment."""
    barrier = threading.Barrier(len(args_list))

    def call(args):
        barrier.wait()
        return fn(*args)

    with ThreadPoolExecutor(max_workers=len(args_list)) as pool:
        return list(pool.map(call, args_list))


class TestConcurrentRedeem:

    def test_exactly_one_recipient_wins(self):
        service = PaymentService(clock=ManualClock())
        code = service.generate_code("alice", "Alice", "10", "USD").value.code

        results = _race(
            service.verify_code,
            [(code, f"user{i}", f"User {i}") for i in range(WORKERS)],
        )

        winners = [r for r in results if r.ok]
        assert len(winners) == 1
        assert all(r.outcome is Outcome.ALREADY_USED for r in results if not r.ok)

    def test_concurrent_confirm_settles_once(self):
        service = PaymentService(clock=ManualClock())
        code = service.generate_code("alice", "Alice", "10", "USD").value.code
        service.verify_code(code, "bob", "Bob")

        results = _race(service.confirm_payment, [(code, "bob")] * WORKERS)

        assert all(r.ok for r in results)
        assert len({r.value.transaction_id for r in results}) == 1
        assert service.get_balance("alice", "USD") == Decimal("90.00")
        assert len(service.get_transactions("bob")) == 1


class TestConcurrentWallet:

    def test_racing_debits_never_overdraw(self):
        wallet = WalletLedger(ManualClock())
        results = _race(wallet.debit, [("alice", "USD", "30")] * WORKERS)

        assert sum(results) == 3
        assert wallet.get_balance("alice", "USD") == Decimal("10.00")
        assert wallet.audit("alice")['valid']

    def test_opposing_transfers_do_not_deadlock(self):
        wallet = WalletLedger(ManualClock())
        args = [
            ("alice", "bob", "USD", "1") if i % 2 else ("bob", "alice", "USD", "1")
            for i in range(WORKERS)
        ]
        results = _race(wallet.transfer, args)

        assert all(results)
        assert wallet.get_balance("alice", "USD") + wallet.get_balance("bob", "USD") == Decimal("200.00")
        assert wallet.audit("alice")['valid']
        assert wallet.audit("bob")['valid']


class TestConcurrentCodes:

    def test_parallel_generation_yields_distinct_codes(self):
        service = PaymentService(clock=ManualClock())
        results = _race(
            service.generate_code,
            [(f"user{i}", f"User {i}", "1", "USD") for i in range(WORKERS)],
        )
        codes = [r.value.code for r in results]
        assert len(set(codes)) == WORKERS


class TestConcurrentNearby:

    def test_repeated_accept_settles_once(self):
        service = PaymentService(clock=ManualClock())
        request_id = service.send_nearby_payment("alice", "Alice", "bob", "5", "USD").value

        results = _race(
            service.respond_to_nearby_payment,
            [(request_id, "bob", True)] * WORKERS,
        )

        winners = [r for r in results if r.ok]
        assert len(winners) == 1
        assert winners[0].value is RequestStatus.ACCEPTED
        assert all(r.outcome is Outcome.ALREADY_TERMINAL for r in results if not r.ok)
        assert len(service.get_transactions("alice")) == 1
        assert service.get_balance("alice", "USD") == Decimal("95.00")
        assert service.get_nearby_payment_status(request_id).status is RequestStatus.ACCEPTED

    def test_accept_racing_reject_has_one_answer(self):
        service = PaymentService(clock=ManualClock())
        request_id = service.send_nearby_payment("alice", "Alice", "bob", "10", "USD").value

        results = _race(
            service.respond_to_nearby_payment,
            [(request_id, "bob", i % 2 == 0) for i in range(WORKERS)],
        )

        winners = [r for r in results if r.ok]
        assert len(winners) == 1
        assert all(r.outcome is Outcome.ALREADY_TERMINAL for r in results if not r.ok)

        final = service.get_nearby_payment_status(request_id).status
        assert final is winners[0].value
        if final is RequestStatus.ACCEPTED:
            assert len(service.get_transactions("alice")) == 1
            assert service.get_balance("alice", "USD") == Decimal("90.00")
        else:
            assert final is RequestStatus.REJECTED
            assert service.get_transactions("alice") == []
            assert service.get_balance("alice", "USD") == Decimal("100.00")


class TestConcurrentPresence:

    def test_announce_heartbeat_withdraw_race(self):
        presence = PresenceRegistry(ManualClock())
        users = [f"user{i}" for i in range(4)]
        args = []
        for i in range(WORKERS):
            uid = users[i % len(users)]
            args.append((["announce", "heartbeat", "withdraw"][i % 3], uid))

        def act(action, uid):
            if action == "announce":
                return presence.announce(uid, uid.title(), "phone")
            return getattr(presence, action)(uid)

        _race(act, args)

        listed = [p.principal_id for p in presence.list_present()]
        assert len(listed) == len(set(listed))
        assert set(listed) <= set(users)
        for uid in users:
            assert presence.is_present(uid) == (uid in listed)

    def test_withdraw_after_race_empties_registry(self):
        presence = PresenceRegistry(ManualClock())
        users = [f"user{i}" for i in range(WORKERS)]

        _race(presence.announce, [(uid, uid.title(), "phone") for uid in users])
        assert len(presence.list_present()) == WORKERS

        results = _race(presence.heartbeat, [(uid,) for uid in users])
        assert all(results)

        results = _race(presence.withdraw, [(uid,) for uid in users])
        assert all(results)
        assert presence.list_present() == []
