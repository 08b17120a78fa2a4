"""
Expiry Conformance Tests

INVARIANT: Once now > expires_at, a code or request is never observable
again in any state other than EXPIRED / NOT_FOUND, and no operation can
revive it.

    ∀ entity e, ∀ t > e.expires_at: lookup(e, t) ∈ {EXPIRED, NOT_FOUND}
"""

from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from paymatch import (
    PaymentService, ManualClock, CodeStatus, RequestStatus, Outcome,
)

EXPIRED_OR_GONE = {Outcome.EXPIRED, Outcome.NOT_FOUND}


class TestExpiryProperties:

    @given(
        extra=st.integers(min_value=1, max_value=3600),
        calls=st.lists(st.sampled_from(["redeem", "confirm", "cancel", "status"]), max_size=10),
    )
    @settings(max_examples=100, deadline=None)
    def test_expired_code_stays_dead(self, extra, calls):
        """
        PROPERTY: After the TTL, every call reports the code expired or missing.
        """
        clock = ManualClock()
        service = PaymentService(clock=clock)
        code = service.generate_code("alice", "Alice", "1", "USD").value.code
        clock.advance(delta=timedelta(minutes=10, seconds=extra))

        for call in calls:
            if call == "redeem":
                assert service.verify_code(code, "bob", "Bob").outcome in EXPIRED_OR_GONE
            elif call == "confirm":
                assert service.confirm_payment(code, "bob").outcome in EXPIRED_OR_GONE
            elif call == "cancel":
                assert service.cancel_payment(code, "alice").outcome in EXPIRED_OR_GONE
            else:
                assert service.get_payment_status(code).status in {
                    CodeStatus.EXPIRED, CodeStatus.NOT_FOUND,
                }
        assert service.codes.live_count() == 0
        assert service.get_transactions("alice") == []

    @given(extra=st.integers(min_value=1, max_value=3600))
    @settings(max_examples=50, deadline=None)
    def test_expired_request_cannot_be_accepted(self, extra):
        clock = ManualClock()
        service = PaymentService(clock=clock)
        request_id = service.send_nearby_payment("alice", "Alice", "bob", "1", "USD").value
        clock.advance(delta=timedelta(minutes=2, seconds=extra))

        result = service.respond_to_nearby_payment(request_id, "bob", accept=True)
        assert result.outcome in EXPIRED_OR_GONE
        assert service.get_nearby_payment_status(request_id).status is RequestStatus.NOT_FOUND
        assert service.get_transactions("bob") == []


class TestExpiryExamples:

    def test_matched_code_expires_before_confirm(self, service, clock):
        code = service.generate_code("alice", "Alice", "1", "USD").value.code
        service.verify_code(code, "bob", "Bob")
        clock.advance(delta=timedelta(minutes=11))
        assert service.confirm_payment(code, "bob").outcome is Outcome.EXPIRED
        assert service.get_balance("alice", "USD") == 100

    def test_new_code_after_expiry_is_independent(self, service, clock):
        old = service.generate_code("alice", "Alice", "1", "USD").value
        clock.advance(delta=timedelta(minutes=11))
        new = service.generate_code("alice", "Alice", "2", "USD").value
        assert new.payment_id != old.payment_id
        assert service.get_payment_status(new.code).amount == 2
