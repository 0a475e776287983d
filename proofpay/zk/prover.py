"""
Proof Generation Client
=======================

HTTP client for the external proof server.

Attempts each request up to `max_retries` times with exponential backoff
(base 1s, cap 10s) plus up to 30% jitter. Failures are classified before the
retry decision:

    connection refused        -> ProverUnavailable   (not retried)
    malformed response        -> ProverProtocolError (not retried, even on 200)
    timeout                   -> ProverTimeout       (retried)
    5xx                       -> ProverUnavailable   (retried)
    network unreachable       -> ProverUnavailable   (retried)
    4xx                       -> ProverRejected      (not retried)

Version: 0.1.0
"""

import asyncio
import errno
import random
import time
from collections.abc import Awaitable, Callable
from numbers import Real
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from proofpay.config import settings
from proofpay.exceptions import (
    ProverError,
    ProverProtocolError,
    ProverRejected,
    ProverTimeout,
    ProverUnavailable,
)
from proofpay.logging import get_logger
from proofpay.zk.models import CircuitType, PublicInputs, PublicOutputs, Witness, ZKProof


logger = get_logger(__name__)

_UNREACHABLE_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH}
_UNREACHABLE_MESSAGES = ("network is unreachable", "no route to host")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProverError) and exc.retryable


def _is_network_unreachable(exc: BaseException) -> bool:
    """Walk the exception chain looking for an unreachable-network OSError."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and current.errno in _UNREACHABLE_ERRNOS:
            return True
        if any(m in str(current).lower() for m in _UNREACHABLE_MESSAGES):
            return True
        current = current.__cause__ or current.__context__
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


class ProofGenerationClient:
    """
    Client for the external proof server.

    Usage:
        async with ProofGenerationClient() as prover:
            proof = await prover.generate(
                CircuitType.VERIFY_INCOME,
                witness,
                PublicInputs(threshold=50000),
            )
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_cap: float | None = None,
        jitter_ratio: float | None = None,
        call_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """
        Initialize the prover client.

        Args:
            base_url: Proof server URL (default from settings)
            timeout: Per-request timeout in seconds
            max_retries: Maximum attempts per generate() call
            backoff_base: First retry delay in seconds
            backoff_cap: Upper bound for any single retry delay
            jitter_ratio: Maximum random jitter as a fraction of the delay
            call_timeout: Deadline for a whole generate() call, retries included
            client: Pre-built httpx client (tests inject a MockTransport here)
            sleep: Coroutine used between attempts (default asyncio.sleep)
        """
        cfg = settings.prover
        self._base_url = base_url or cfg.url
        self._timeout = timeout if timeout is not None else cfg.timeout_seconds
        self._max_retries = max_retries if max_retries is not None else cfg.max_retries
        self._backoff_base = backoff_base if backoff_base is not None else cfg.backoff_base_seconds
        self._backoff_cap = backoff_cap if backoff_cap is not None else cfg.backoff_cap_seconds
        self._jitter_ratio = jitter_ratio if jitter_ratio is not None else cfg.jitter_ratio
        self._call_timeout = call_timeout if call_timeout is not None else cfg.call_timeout_seconds
        self._sleep = sleep or asyncio.sleep

        if self._max_retries < 1:
            raise ValueError("max_retries must be >= 1")

        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers={"Content-Type": "application/json"},
        )

        logger.debug(
            "prover_client_initialized",
            base_url=self._base_url,
            max_retries=self._max_retries,
        )

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def backoff_cap(self) -> float:
        return self._backoff_cap

    async def __aenter__(self) -> "ProofGenerationClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # =========================================================================
    # Backoff
    # =========================================================================

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay before the retry that follows `attempt` (1-based).

        Exponential with jitter, never above the cap.
        """
        delay = min(self._backoff_base * 2 ** (attempt - 1), self._backoff_cap)
        jitter = random.uniform(0, self._jitter_ratio * delay)
        return min(delay + jitter, self._backoff_cap)

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff_delay(retry_state.attempt_number)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "prover_retry",
            attempt=retry_state.attempt_number,
            max_attempts=self._max_retries,
            delay_seconds=round(delay, 3),
            error=str(exc),
            error_type=type(exc).__name__,
        )

    # =========================================================================
    # Proof generation
    # =========================================================================

    async def generate(
        self,
        circuit: CircuitType | str,
        witness: Witness | dict[str, Any],
        public_inputs: PublicInputs,
    ) -> ZKProof:
        """
        Generate a zero-knowledge proof.

        Args:
            circuit: Circuit to prove against
            witness: Private witness data
            public_inputs: Public inputs (threshold)

        Returns:
            ZKProof ready for submission

        Raises:
            ProverUnavailable: Server unreachable or 5xx after all attempts
            ProverTimeout: Request or whole-call deadline exceeded
            ProverRejected: Server rejected the request (4xx)
            ProverProtocolError: Response structurally invalid
        """
        circuit = CircuitType(circuit)
        request = {
            "circuit": circuit.value,
            "witness": (
                witness.model_dump(by_alias=True) if isinstance(witness, Witness) else witness
            ),
            "publicInputs": public_inputs.model_dump(),
        }

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        start_time = time.perf_counter()
        try:
            async with asyncio.timeout(self._call_timeout):
                async for attempt in retrying:
                    with attempt:
                        outputs, blob = await self._prove_once(
                            request,
                            attempt.retry_state.attempt_number,
                        )
        except TimeoutError as e:
            logger.error(
                "proof_generation_deadline_exceeded",
                circuit=circuit.value,
                call_timeout_seconds=self._call_timeout,
            )
            raise ProverTimeout(
                f"Proof generation exceeded {self._call_timeout}s including retries"
            ) from e
        except ProverError as e:
            logger.error(
                "proof_generation_failed",
                circuit=circuit.value,
                error=e.message,
                error_type=type(e).__name__,
            )
            raise

        logger.info(
            "proof_generated",
            circuit=circuit.value,
            nullifier=outputs.nullifier,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )

        return ZKProof(
            proof=blob,
            public_inputs=[str(public_inputs.threshold)],
            public_outputs=outputs,
        )

    async def _prove_once(
        self,
        request: dict[str, Any],
        attempt: int,
    ) -> tuple[PublicOutputs, str]:
        """Single POST /prove, translating every failure into a ProverError."""
        logger.debug(
            "proof_generation_attempt",
            circuit=request["circuit"],
            attempt=attempt,
            max_attempts=self._max_retries,
        )

        try:
            response = await self._client.post("/prove", json=request)
        except httpx.TimeoutException as e:
            raise ProverTimeout(
                f"Proof server timeout after {self._timeout}s "
                f"(attempt {attempt}/{self._max_retries})"
            ) from e
        except httpx.ConnectError as e:
            if _is_network_unreachable(e):
                raise ProverUnavailable(
                    f"Network error connecting to proof server at {self._base_url}",
                    retryable=True,
                ) from e
            raise ProverUnavailable(
                "Proof server is not available. Ensure the proof server is running "
                f"at {self._base_url}."
            ) from e
        except httpx.RequestError as e:
            raise ProverUnavailable(
                "No response received from proof server. "
                "The server may be overloaded or unreachable."
            ) from e

        if response.status_code >= 500:
            raise ProverUnavailable(
                f"Proof server returned error status: {response.status_code}",
                retryable=True,
                status_code=response.status_code,
            )
        if 400 <= response.status_code < 500:
            raise self._rejection(response)
        if response.status_code != 200:
            raise ProverProtocolError(
                f"Unexpected proof server status: {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProverProtocolError("Proof server returned a non-JSON body") from e

        return self._parse_proof_response(data)

    @staticmethod
    def _rejection(response: httpx.Response) -> ProverRejected:
        reason_code = str(response.status_code)
        message = f"Proof server returned error status: {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            reason_code = str(error.get("code") or reason_code)
            message = (
                f"Proof server error ({response.status_code}): "
                f"{error.get('message', '')} [{reason_code}]"
            )
        return ProverRejected(message, reason_code=reason_code, status_code=response.status_code)

    @staticmethod
    def _parse_proof_response(data: Any) -> tuple[PublicOutputs, str]:
        """Validate the /prove body: proof blob plus nullifier, timestamp, expiresAt."""
        if not isinstance(data, dict) or not isinstance(data.get("proof"), str):
            raise ProverProtocolError("Invalid proof response structure: missing proof blob")

        outputs = data.get("publicOutputs")
        if (
            not isinstance(outputs, dict)
            or not isinstance(outputs.get("nullifier"), str)
            or not outputs["nullifier"]
            or not _is_number(outputs.get("timestamp"))
            or not _is_number(outputs.get("expiresAt"))
        ):
            raise ProverProtocolError(
                "Invalid proof response structure: incomplete public outputs"
            )

        return PublicOutputs.model_validate(outputs), data["proof"]

    # =========================================================================
    # Server status
    # =========================================================================

    async def health_check(self) -> bool:
        """Check the proof server's /health endpoint."""
        try:
            response = await self._client.get("/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("prover_health_check_failed", error=str(e))
            return False

    async def server_info(self) -> dict[str, Any]:
        """Circuits available, server version, etc."""
        try:
            response = await self._client.get("/info", timeout=5.0)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("prover_info_failed", error=str(e))
            raise ProverUnavailable("Could not retrieve proof server information") from e
