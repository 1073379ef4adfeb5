"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the multisig engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. validation.py - Unique owners and threshold bounds
2. idempotency.py - Repeated approvals change nothing
3. invalidation.py - Owner-set changes orphan pending proposals
4. terminality.py - Executed proposals stay executed
5. atomicity.py - All-or-nothing execution
6. determinism.py - Reproducible derivations and encodings

These tests use hypothesis for property-based testing.
"""
