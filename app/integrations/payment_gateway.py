"""Payment gateway adapters.

Every interaction with the external payment processor goes through a
PaymentGateway. The lifecycle services only see GatewayResult objects and the
gateway exceptions, so the simulated processor and the HTTP processor are
interchangeable.

Public methods validate their input, then run the adapter hook under an
explicit timeout. A timeout or transport failure becomes
GatewayUnavailableException; a processor that answers "no" returns a
GatewayResult with success=False.
"""

import asyncio
import hashlib
import hmac
import logging
import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Optional, TypeVar

import httpx
from dateutil.relativedelta import relativedelta

from app.core.config import settings
from app.models.billing_enums import BillingCycle
from app.utils.exceptions import (
    GatewayUnavailableException,
    InvalidAmountException,
    MissingPaymentMethodException,
    ValidationException,
)
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_CHARGE_AMOUNT = Decimal("0.01")

DECLINE_REASONS = (
    "Insufficient funds",
    "Card declined",
    "Invalid card number",
    "Expired card",
    "CVV mismatch",
)

DEFAULT_SUCCESS_RATES = {
    "charge": 0.95,
    "refund": 0.98,
    "create_subscription": 0.92,
    "cancel_subscription": 0.99,
}

DEFAULT_LATENCY_MS = {
    "charge": (1000, 3000),
    "refund": (800, 2000),
    "create_subscription": (1500, 4000),
    "cancel_subscription": (500, 1500),
    "status": (200, 500),
}


@dataclass
class GatewayCustomer:
    id: str
    email: str


@dataclass
class GatewayResult:
    """Outcome of a gateway operation.

    `reference` is the processor's id for the created object: a transaction id
    for charges, a refund id for refunds, a subscription id for remote
    subscriptions.
    """

    success: bool
    reference: Optional[str]
    status: str
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    raw: dict[str, Any] = field(default_factory=dict)


def next_billing_date(cycle: BillingCycle, start: Optional[datetime] = None) -> datetime:
    """Add one billing period in calendar months."""
    start = start or utcnow()
    return start + relativedelta(months=BillingCycle(cycle).months)


class PaymentGateway:
    """Base adapter. Subclasses implement the `_`-prefixed hooks."""

    def __init__(self, api_key: str, secret_key: str, base_url: str, timeout_seconds: float = 10.0):
        if not api_key or not secret_key:
            raise RuntimeError(
                "Payment gateway credentials not configured. "
                "Set PAYMENT_GATEWAY_API_KEY and PAYMENT_GATEWAY_SECRET."
            )
        self.api_key = api_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    # ---------- Validation ----------

    @staticmethod
    def validate_charge(amount: Decimal, payment_method: Optional[str], customer: Optional[GatewayCustomer]) -> None:
        if amount is None or Decimal(amount) < MIN_CHARGE_AMOUNT:
            raise InvalidAmountException("Invalid payment amount", details={"min": str(MIN_CHARGE_AMOUNT)})
        if not payment_method:
            raise MissingPaymentMethodException()
        if customer is None or not customer.email:
            raise ValidationException("Customer email is required")

    # ---------- Public contract ----------

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str,
        customer: GatewayCustomer,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> GatewayResult:
        """Charge a customer. `reference` is our payment id, echoed back in webhooks."""
        self.validate_charge(amount, payment_method, customer)
        return await self._bounded(
            "charge", self._charge(Decimal(amount), currency, payment_method, customer, description, reference)
        )

    async def refund(self, transaction_id: str, amount: Decimal, reason: Optional[str] = None) -> GatewayResult:
        if not transaction_id:
            raise ValidationException("Transaction ID is required")
        if amount is None or Decimal(amount) <= 0:
            raise InvalidAmountException("Invalid refund amount")
        return await self._bounded("refund", self._refund(transaction_id, Decimal(amount), reason or "Customer request"))

    async def create_remote_subscription(
        self,
        plan_id: str,
        customer: GatewayCustomer,
        payment_method: str,
        amount: Decimal,
        currency: str,
        billing_cycle: BillingCycle,
    ) -> GatewayResult:
        if not plan_id:
            raise ValidationException("Plan ID is required")
        if customer is None or not customer.id:
            raise ValidationException("Customer ID is required")
        if not payment_method:
            raise MissingPaymentMethodException()
        if amount is None or Decimal(amount) <= 0:
            raise InvalidAmountException("Invalid subscription amount")
        return await self._bounded(
            "create_subscription",
            self._create_remote_subscription(plan_id, customer, payment_method, Decimal(amount), currency, BillingCycle(billing_cycle)),
        )

    async def cancel_remote_subscription(self, subscription_id: str) -> GatewayResult:
        if not subscription_id:
            raise ValidationException("Subscription ID is required")
        return await self._bounded("cancel_subscription", self._cancel_remote_subscription(subscription_id))

    async def get_status(self) -> dict[str, Any]:
        return await self._bounded("status", self._get_status())

    def generate_signature(self, payload: bytes) -> str:
        """Hex HMAC-SHA256 of the raw payload with the shared secret."""
        return hmac.new(self.secret_key.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        if not signature:
            return False
        expected = self.generate_signature(payload)
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("ascii", "ignore"))

    # ---------- Hooks ----------

    async def _charge(self, amount, currency, payment_method, customer, description, reference) -> GatewayResult:
        raise NotImplementedError

    async def _refund(self, transaction_id, amount, reason) -> GatewayResult:
        raise NotImplementedError

    async def _create_remote_subscription(self, plan_id, customer, payment_method, amount, currency, billing_cycle) -> GatewayResult:
        raise NotImplementedError

    async def _cancel_remote_subscription(self, subscription_id) -> GatewayResult:
        raise NotImplementedError

    async def _get_status(self) -> dict[str, Any]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Payment gateway %s timed out after %.1fs", operation, self.timeout_seconds)
            raise GatewayUnavailableException(
                f"Payment gateway timed out during {operation}",
                details={"operation": operation},
            )
        except httpx.HTTPError as exc:
            logger.error("Payment gateway %s transport failure: %s", operation, exc)
            raise GatewayUnavailableException(
                f"Payment gateway unreachable during {operation}",
                details={"operation": operation},
            )


class SimulatedPaymentGateway(PaymentGateway):
    """Gateway that simulates processor latency and a fixed success rate per operation."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str = "https://api.paymentgateway.com",
        timeout_seconds: float = 10.0,
        success_rates: Optional[dict[str, float]] = None,
        latency_ms: Optional[dict[str, tuple[int, int]]] = None,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(api_key, secret_key, base_url, timeout_seconds)
        self.success_rates = {**DEFAULT_SUCCESS_RATES, **(success_rates or {})}
        self.latency_ms = {**DEFAULT_LATENCY_MS, **(latency_ms or {})}
        self.rng = rng or random.Random()

    async def _simulate_delay(self, operation: str) -> None:
        low, high = self.latency_ms[operation]
        delay_ms = low if high <= low else self.rng.uniform(low, high)
        await asyncio.sleep(delay_ms / 1000.0)

    def _succeeds(self, operation: str) -> bool:
        return self.rng.random() < self.success_rates[operation]

    async def _charge(self, amount, currency, payment_method, customer, description, reference) -> GatewayResult:
        await self._simulate_delay("charge")
        transaction_id = f"txn_{secrets.token_hex(16)}"
        raw = {"amount": str(amount), "currency": currency, "payment_method": payment_method, "reference": reference}
        if self._succeeds("charge"):
            return GatewayResult(True, transaction_id, "completed", processed_at=utcnow(), raw=raw)
        reason = self.rng.choice(DECLINE_REASONS)
        return GatewayResult(False, transaction_id, "failed", failure_reason=reason, processed_at=utcnow(), raw=raw)

    async def _refund(self, transaction_id, amount, reason) -> GatewayResult:
        await self._simulate_delay("refund")
        refund_id = f"ref_{secrets.token_hex(16)}"
        raw = {"transaction_id": transaction_id, "amount": str(amount), "reason": reason}
        if self._succeeds("refund"):
            return GatewayResult(True, refund_id, "refunded", processed_at=utcnow(), raw=raw)
        return GatewayResult(False, refund_id, "failed", failure_reason="Refund processing failed", processed_at=utcnow(), raw=raw)

    async def _create_remote_subscription(self, plan_id, customer, payment_method, amount, currency, billing_cycle) -> GatewayResult:
        await self._simulate_delay("create_subscription")
        subscription_id = f"sub_{secrets.token_hex(16)}"
        raw = {
            "plan_id": plan_id,
            "customer_id": customer.id,
            "billing_cycle": billing_cycle.value,
            "next_billing_date": next_billing_date(billing_cycle).isoformat(),
        }
        if self._succeeds("create_subscription"):
            return GatewayResult(True, subscription_id, "active", processed_at=utcnow(), raw=raw)
        return GatewayResult(False, subscription_id, "failed", failure_reason="Subscription creation failed", processed_at=utcnow(), raw=raw)

    async def _cancel_remote_subscription(self, subscription_id) -> GatewayResult:
        await self._simulate_delay("cancel_subscription")
        if self._succeeds("cancel_subscription"):
            return GatewayResult(True, subscription_id, "cancelled", processed_at=utcnow())
        return GatewayResult(False, subscription_id, "failed", failure_reason="Subscription cancellation failed", processed_at=utcnow())

    async def _get_status(self) -> dict[str, Any]:
        await self._simulate_delay("status")
        return {
            "status": "operational",
            "uptime": 99.9,
            "responseTime": round(self.rng.random() * 100 + 50, 2),
            "lastChecked": utcnow().isoformat(),
        }


class HttpPaymentGateway(PaymentGateway):
    """Gateway backed by a processor's REST API.

    Expects JSON responses shaped like {"success": bool, "id": str,
    "status": str, "failure_reason": str | null}. 4xx answers are treated as
    declines, 5xx answers as unavailability.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, secret_key, base_url, timeout_seconds)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[dict[str, Any]] = None) -> GatewayResult:
        response = await self._client.request(method, path, json=json)
        if response.status_code >= 500:
            logger.error("Payment gateway %s %s returned %s", method, path, response.status_code)
            raise GatewayUnavailableException(
                "Payment gateway error", details={"status_code": response.status_code}
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            if response.status_code < 400:
                logger.error("Payment gateway %s %s returned a malformed body", method, path)
                raise GatewayUnavailableException(
                    "Payment gateway returned a malformed response",
                    details={"status_code": response.status_code},
                )
            body = {}
        if response.status_code >= 400:
            return GatewayResult(
                False,
                body.get("id"),
                "failed",
                failure_reason=body.get("failure_reason") or body.get("message") or "Declined by processor",
                processed_at=utcnow(),
                raw=body,
            )
        return GatewayResult(
            bool(body.get("success", True)),
            body.get("id"),
            body.get("status", "completed"),
            failure_reason=body.get("failure_reason"),
            processed_at=utcnow(),
            raw=body,
        )

    async def _charge(self, amount, currency, payment_method, customer, description, reference) -> GatewayResult:
        return await self._request(
            "POST",
            "/v1/charges",
            json={
                "amount": str(amount),
                "currency": currency,
                "payment_method": payment_method,
                "description": description,
                "reference": reference,
                "customer": {"id": customer.id, "email": customer.email},
            },
        )

    async def _refund(self, transaction_id, amount, reason) -> GatewayResult:
        return await self._request(
            "POST",
            "/v1/refunds",
            json={"transaction_id": transaction_id, "amount": str(amount), "reason": reason},
        )

    async def _create_remote_subscription(self, plan_id, customer, payment_method, amount, currency, billing_cycle) -> GatewayResult:
        return await self._request(
            "POST",
            "/v1/subscriptions",
            json={
                "plan_id": plan_id,
                "customer_id": customer.id,
                "payment_method": payment_method,
                "amount": str(amount),
                "currency": currency,
                "billing_cycle": billing_cycle.value,
            },
        )

    async def _cancel_remote_subscription(self, subscription_id) -> GatewayResult:
        return await self._request("DELETE", f"/v1/subscriptions/{subscription_id}")

    async def _get_status(self) -> dict[str, Any]:
        response = await self._client.get("/v1/status")
        response.raise_for_status()
        try:
            body = response.json()
        except ValueError:
            body = None
        return body if isinstance(body, dict) else {"status": "unknown"}


_gateway: Optional[PaymentGateway] = None


def build_payment_gateway() -> PaymentGateway:
    mode = settings.PAYMENT_GATEWAY_MODE.lower()
    if mode == "http":
        return HttpPaymentGateway(
            api_key=settings.PAYMENT_GATEWAY_API_KEY,
            secret_key=settings.PAYMENT_GATEWAY_SECRET,
            base_url=settings.PAYMENT_GATEWAY_URL,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    if mode == "simulated":
        return SimulatedPaymentGateway(
            api_key=settings.PAYMENT_GATEWAY_API_KEY,
            secret_key=settings.PAYMENT_GATEWAY_SECRET,
            base_url=settings.PAYMENT_GATEWAY_URL,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    raise RuntimeError(f"Unknown PAYMENT_GATEWAY_MODE: {settings.PAYMENT_GATEWAY_MODE}")


def init_payment_gateway() -> PaymentGateway:
    """Build the configured gateway once; raises at startup if credentials are missing."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
        logger.info("Payment gateway initialised (mode=%s)", settings.PAYMENT_GATEWAY_MODE)
    return _gateway


def get_payment_gateway() -> PaymentGateway:
    return init_payment_gateway()


async def close_payment_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
    _gateway = None
