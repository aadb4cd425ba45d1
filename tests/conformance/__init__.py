"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the solvency engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. solvency.py - No operation leaves its caller below the minimum health factor
2. atomicity.py - All-or-nothing operation semantics
3. conservation.py - Engine ledgers agree with collaborator ledgers
4. round_trip.py - USD valuation and its inverse agree within rounding

These tests use hypothesis for property-based testing.
"""
