"""
Presence Decay Conformance Tests

INVARIANT: A principal is listed iff its last heartbeat is younger than the
presence timeout.

    ∀ p, t: p ∈ list_present(t) ⟺ t − last_seen(p) < presence_timeout

Heartbeats never recreate a decayed or withdrawn record.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from paymatch import PresenceRegistry, ManualClock


class TestPresenceDecayProperties:

    @given(st.lists(
        st.tuples(st.sampled_from(["heartbeat", "wait"]), st.integers(min_value=0, max_value=40)),
        max_size=30,
    ))
    @settings(max_examples=100, deadline=None)
    def test_listed_iff_recent(self, script):
        """
        PROPERTY: Liveness tracks the last successful heartbeat exactly.
        """
        clock = ManualClock()
        presence = PresenceRegistry(clock)
        presence.announce("alice", "Alice", "iPhone")
        last_seen = clock.now()
        alive = True

        for action, seconds in script:
            if action == "wait":
                clock.advance(seconds)
            else:
                refreshed = presence.heartbeat("alice")
                alive = alive and (clock.now() - last_seen).total_seconds() < 30
                assert refreshed == alive
                if refreshed:
                    last_seen = clock.now()

            expected = alive and (clock.now() - last_seen).total_seconds() < 30
            listed = [p.principal_id for p in presence.list_present(excluding="bob")]
            assert listed == (["alice"] if expected else [])
            if not expected:
                alive = False


class TestPresenceDecayExamples:

    def test_29_then_31_seconds(self, presence, clock):
        presence.announce("alice", "Alice", "iPhone")
        clock.advance(29)
        assert presence.is_present("alice")
        clock.advance(2)
        assert not presence.is_present("alice")

    def test_signal_reaches_zero_before_decay(self, presence, clock):
        presence.announce("alice", "Alice", "iPhone")
        clock.advance(15)
        [entry] = presence.list_present(excluding="bob")
        assert entry.signal_strength == 0
