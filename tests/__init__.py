"""
ProofPay Test Suite
===================

Test organization:
- tests/unit/          - Unit tests (in-memory SQLite, mocked prover/ledger/provider)

Run tests:
    pytest                          # All tests
    pytest tests/unit               # Unit tests only
"""
