"""
Unit tests for the host application endpoints and error mapping.
"""

import json
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from proofpay.database.postgres import PostgresClient
from proofpay.exceptions import DuplicateNullifier
from proofpay.ledger import MockLedgerClient, reset_ledger_client, set_ledger_client
from proofpay.main import app, proofpay_exception_handler
from proofpay.payments import MockPaymentProvider
from proofpay.pipeline import build_pipeline
from proofpay.zk import ProofGenerationClient


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: MockLedgerClient,
    provider: MockPaymentProvider,
) -> AsyncGenerator[AsyncClient, None]:
    """Test client with a pipeline on mocks, without running the lifespan."""
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True})),
        base_url="http://prover.test",
    )
    prover = ProofGenerationClient(base_url="http://prover.test", client=http)
    app.state.proof_service = build_pipeline(
        session_factory=session_factory,
        prover=prover,
        ledger=ledger,
        provider=provider,
    )
    set_ledger_client(ledger)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    reset_ledger_client()


class TestHealth:
    """Tests for health endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        """Test the aggregated health report."""
        with patch.object(
            PostgresClient,
            "health_check",
            AsyncMock(return_value={"status": "healthy", "latency_ms": 0.1}),
        ):
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "proofpay"
        assert body["status"] == "healthy"
        assert set(body["components"]) == {"postgres", "prover", "ledger", "poller"}
        assert body["components"]["poller"]["running"] is False

    @pytest.mark.asyncio
    async def test_health_degraded(self, client: AsyncClient, ledger: MockLedgerClient) -> None:
        """Test that an unavailable ledger degrades the service."""
        ledger.available = False

        with patch.object(
            PostgresClient,
            "health_check",
            AsyncMock(return_value={"status": "healthy"}),
        ):
            response = await client.get("/health")

        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient) -> None:
        """Test the root endpoint."""
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "ProofPay"


class TestErrorMapping:
    """Tests for pipeline error responses."""

    @pytest.mark.asyncio
    async def test_pipeline_error_uses_http_status(self) -> None:
        """Test that pipeline errors map to their status and code."""
        request = MagicMock()
        request.url.path = "/api/v1/proofs/submit"

        response = await proofpay_exception_handler(request, DuplicateNullifier("nf-1"))

        assert response.status_code == 409
        body = json.loads(response.body)
        assert body["success"] is False
        assert body["error_code"] == "NULLIFIER_ALREADY_USED"
        assert body["details"] == {"nullifier": "nf-1"}


class TestRequestContext:
    """Tests for the request id middleware."""

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client: AsyncClient) -> None:
        """Test that a caller-supplied request id is returned."""
        response = await client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["x-request-id"] == "req-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, client: AsyncClient) -> None:
        """Test that a request id is generated when none is supplied."""
        response = await client.get("/")

        assert len(response.headers["x-request-id"]) == 32
        assert structlog.contextvars.get_contextvars() == {}
