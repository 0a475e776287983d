"""
Payment Provider Interface
==========================

Settlement only needs one capability from a payment provider: issue an
amount to a destination and get back the provider's transaction id.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from proofpay.config import PaymentMode, settings
from proofpay.exceptions import PaymentProviderError
from proofpay.logging import get_logger

logger = get_logger(__name__)


class PaymentProvider(ABC):
    """
    Abstract payment provider.

    Implementations raise PaymentProviderError on any failure; the message is
    persisted on the payment record as-is.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @abstractmethod
    async def issue(self, destination: str, amount: Decimal) -> str:
        """
        Issue funds to a destination.

        Args:
            destination: Provider wallet address or handle
            amount: Amount in the settlement currency

        Returns:
            Provider transaction identifier

        Raises:
            PaymentProviderError: Issuance failed
        """
        ...

    async def close(self) -> None:
        """Release network resources."""


class HttpPaymentProvider(PaymentProvider):
    """Payment provider reached over a JSON HTTP API (`POST /issue`)."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url or settings.payment.api_url
        key = api_key if api_key is not None else settings.payment.api_key.get_secret_value()
        headers = {"Content-Type": "application/json"}
        if key:
            headers["Authorization"] = f"Bearer {key}"
        self._client = client or httpx.AsyncClient(
            base_url=self._api_url,
            timeout=httpx.Timeout(timeout or settings.payment.timeout_seconds),
            headers=headers,
        )

        logger.debug("http_payment_provider_initialized", api_url=self._api_url)

    @property
    def name(self) -> str:
        return "http"

    async def close(self) -> None:
        await self._client.aclose()

    # Only connection failures are retried: the request never reached the
    # provider, so a second attempt cannot double-issue.
    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "payment_provider_retry",
            attempt=retry_state.attempt_number,
        ),
    )
    async def _post_issue(self, payload: dict[str, Any]) -> httpx.Response:
        return await self._client.post("/issue", json=payload)

    async def issue(self, destination: str, amount: Decimal) -> str:
        payload = {"destination": destination, "amount": str(amount)}
        try:
            response = await self._post_issue(payload)
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"Payment provider unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            raise PaymentProviderError(
                message or f"Payment provider returned error status: {response.status_code}",
                status_code=response.status_code,
            )

        transaction_id = data.get("transaction_id") if isinstance(data, dict) else None
        if not transaction_id:
            raise PaymentProviderError("Payment provider returned no transaction id")
        return str(transaction_id)


# Global provider instance
_provider: PaymentProvider | None = None


def get_payment_provider() -> PaymentProvider:
    """
    Get the configured payment provider instance.

    Returns:
        PaymentProvider instance based on settings
    """
    global _provider

    if _provider is None:
        mode = settings.payment.mode

        if mode == PaymentMode.MOCK:
            from proofpay.payments.mock import MockPaymentProvider

            _provider = MockPaymentProvider()
        elif mode == PaymentMode.HTTP:
            _provider = HttpPaymentProvider()
        else:
            raise ValueError(f"Unknown payment mode: {mode}")

        logger.info("payment_provider_initialized", mode=mode.value)

    return _provider


def set_payment_provider(provider: PaymentProvider) -> None:
    """Set a custom payment provider."""
    global _provider
    _provider = provider
    logger.info("payment_provider_set", provider=provider.name)


def reset_payment_provider() -> None:
    """Reset the provider to be re-initialized."""
    global _provider
    _provider = None
