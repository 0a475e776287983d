"""
Unit tests for log processors.
"""

import structlog

from proofpay.logging import bind_context, clear_context
from proofpay.logging.logger import _censor_secrets, _truncate_blobs


class TestLogProcessors:
    """Tests for censoring and blob truncation."""

    def test_censors_signatures_and_witness(self) -> None:
        """Test that signatures and witness data never reach the logs."""
        event = _censor_secrets(
            None,
            "info",
            {
                "event": "proof_submission_started",
                "wallet_signature": "sig",
                "request": {"witness": {"income": 1}, "circuit": "verifyIncome"},
            },
        )

        assert event["wallet_signature"] == "***REDACTED***"
        assert event["request"]["witness"] == "***REDACTED***"
        assert event["request"]["circuit"] == "verifyIncome"

    def test_truncates_long_proof(self) -> None:
        """Test that large proof blobs are shortened."""
        event = _truncate_blobs(None, "debug", {"event": "x", "proof": "a" * 1000})

        assert event["proof"].startswith("a" * 64)
        assert event["proof"].endswith("(1000 chars)")

    def test_short_values_untouched(self) -> None:
        """Test that short values pass through."""
        event = _truncate_blobs(None, "debug", {"event": "x", "tx": "abc"})

        assert event["tx"] == "abc"


class TestContext:
    """Tests for contextvars binding."""

    def test_bind_and_clear(self) -> None:
        """Test that bound values are visible until cleared."""
        clear_context()
        bind_context(request_id="req-1", proof_id="proof_abc")

        assert structlog.contextvars.get_contextvars() == {
            "request_id": "req-1",
            "proof_id": "proof_abc",
        }

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
