"""Payment provider interface and implementations.

The hosted checkout page is opaque to the rest of the system: a provider only
has to hand out a checkout URL for a reference and report the transaction's
status for that reference later.
"""
import enum
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from eventpass.config import settings

logger = logging.getLogger(__name__)


class ProviderStatus(str, enum.Enum):
    success = "success"
    pending = "pending"
    abandoned = "abandoned"
    failed = "failed"


class PaymentProviderError(Exception):
    """The provider could not be reached or returned an unusable response."""


class PaymentProvider(ABC):
    """Interface every payment provider implements."""

    @abstractmethod
    def initialize(self, reference: str, amount_minor: int, currency: str, email: str) -> str:
        """Start a transaction and return the hosted checkout URL."""
        ...

    @abstractmethod
    def verify(self, reference: str) -> ProviderStatus:
        """Ask the provider for the transaction's current status."""
        ...


# Paystack transaction statuses that are still in flight map to pending.
_PAYSTACK_STATUS_MAP = {
    "success": ProviderStatus.success,
    "abandoned": ProviderStatus.abandoned,
    "failed": ProviderStatus.failed,
    "reversed": ProviderStatus.failed,
}


class PaystackProvider(PaymentProvider):
    """Paystack's transaction API over httpx."""

    def __init__(self, secret_key: str, base_url: str, callback_url: str, timeout: float = 30.0):
        self.callback_url = callback_url
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {secret_key}", "Content-Type": "application/json"},
        )

    def _call(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Paystack %s %s failed: %s", method, path, exc)
            raise PaymentProviderError(str(exc)) from exc
        if not body.get("status") or "data" not in body:
            raise PaymentProviderError(body.get("message") or "Invalid Paystack response")
        return body["data"]

    def initialize(self, reference: str, amount_minor: int, currency: str, email: str) -> str:
        data = self._call(
            "POST",
            "/transaction/initialize",
            json={
                "reference": reference,
                "amount": amount_minor,
                "currency": currency,
                "email": email,
                "callback_url": self.callback_url,
            },
        )
        return data["authorization_url"]

    def verify(self, reference: str) -> ProviderStatus:
        data = self._call("GET", f"/transaction/verify/{reference}")
        return _PAYSTACK_STATUS_MAP.get(data.get("status", ""), ProviderStatus.pending)


class SimulatedProvider(PaymentProvider):
    """In-process provider used when no Paystack key is configured.

    Transactions stay pending until ``resolve`` is called, which stands in
    for the payer finishing (or giving up on) the hosted checkout page.
    """

    checkout_base = "https://checkout.simulated.local/pay"

    def __init__(self):
        self._lock = threading.Lock()
        self._transactions: dict[str, ProviderStatus] = {}

    def initialize(self, reference: str, amount_minor: int, currency: str, email: str) -> str:
        with self._lock:
            self._transactions[reference] = ProviderStatus.pending
        logger.info("Simulated checkout opened for %s (%d %s)", reference, amount_minor, currency)
        return f"{self.checkout_base}/{reference}"

    def verify(self, reference: str) -> ProviderStatus:
        with self._lock:
            status = self._transactions.get(reference)
        if status is None:
            raise PaymentProviderError(f"Unknown transaction reference {reference}")
        return status

    def resolve(self, reference: str, status: ProviderStatus) -> None:
        with self._lock:
            self._transactions[reference] = status


_provider: Optional[PaymentProvider] = None


def get_payment_provider() -> PaymentProvider:
    """FastAPI dependency returning the configured provider (process-wide)."""
    global _provider
    if _provider is None:
        if settings.PAYSTACK_SECRET_KEY:
            _provider = PaystackProvider(
                secret_key=settings.PAYSTACK_SECRET_KEY,
                base_url=settings.PAYSTACK_BASE_URL,
                callback_url=settings.PAYMENT_CALLBACK_URL,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        else:
            logger.warning("PAYSTACK_SECRET_KEY not configured; using the simulated payment provider")
            _provider = SimulatedProvider()
    return _provider
