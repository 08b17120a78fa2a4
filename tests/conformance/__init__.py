"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the matching core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. uniqueness.py - No two live codes share a value
2. at_most_once.py - A code is redeemed and settled at most once
3. conservation.py - No negative balances; history reconciles with balances
4. expiry.py - Expired codes and requests never come back
5. presence_decay.py - Silent principals disappear after the presence timeout
6. self_pay.py - Sender and recipient always differ
7. concurrency.py - The above hold under concurrent callers

These tests use hypothesis for property-based testing.
"""
