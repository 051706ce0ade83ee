"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the engine.

The tests are organized by invariant:
1. test_solvency.py - Health factor and conversion properties
2. test_atomicity.py - All-or-nothing operation semantics
3. test_conservation.py - Supply and custody accounting
4. test_determinism.py - Reproducible behavior

These tests use hypothesis for property-based testing.
"""
