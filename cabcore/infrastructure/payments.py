"""
Payment gateway client (Razorpay-compatible REST API).

Amounts cross this boundary in rupees and are sent to the gateway in paise.
Ids are checked locally against the gateway's formats before any call goes
out.  Gateway status codes map onto local error kinds:

====== =============================================
400    ``ValidationError``
401    ``ServiceUnavailableError`` (our credentials rejected)
404    ``NotFoundError``
5xx    ``PaymentGatewayError`` (also transport errors / timeouts)
====== =============================================
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from typing import Any, Optional

import httpx

from cabcore.domain.errors import (
    NotFoundError,
    PaymentGatewayError,
    ServiceUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PAYMENT_ID_RE = re.compile(r"^pay_[A-Za-z0-9]+$")
ORDER_ID_RE = re.compile(r"^order_[A-Za-z0-9]+$")
REFUND_ID_RE = re.compile(r"^rfnd_[A-Za-z0-9]+$")
RECEIPT_RE = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_RECEIPT_LENGTH = 40
MAX_AMOUNT_PAISE = 10_000_000


def to_paise(amount: int) -> int:
    return int(amount) * 100


def _check_id(value: str, pattern: re.Pattern, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Valid {label} is required")
    value = value.strip()
    if not pattern.match(value):
        raise ValidationError(f"Invalid {label} format")
    return value


def validate_amount(paise: int) -> int:
    if isinstance(paise, bool) or not isinstance(paise, int):
        raise ValidationError("Amount must be a valid number")
    if paise <= 0:
        raise ValidationError("Amount must be greater than zero")
    if paise > MAX_AMOUNT_PAISE:
        raise ValidationError("Amount exceeds maximum limit")
    return paise


def validate_receipt(receipt: str) -> str:
    receipt = (receipt or "").strip()
    if not receipt:
        raise ValidationError("Receipt ID is required")
    if len(receipt) > MAX_RECEIPT_LENGTH:
        raise ValidationError(f"Receipt ID too long (max {MAX_RECEIPT_LENGTH} characters)")
    if not RECEIPT_RE.match(receipt):
        raise ValidationError("Receipt ID contains invalid characters")
    return receipt


class PaymentGatewayClient:
    def __init__(
        self,
        base_url: str,
        key_id: Optional[str],
        key_secret: Optional[str],
        timeout: float = 10.0,
        currency: str = "INR",
    ):
        self.base_url = base_url.rstrip("/")
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout
        self.currency = currency

    @classmethod
    def from_settings(cls, config) -> PaymentGatewayClient:
        return cls(
            base_url=config.payment_gateway_base_url,
            key_id=config.payment_key_id,
            key_secret=config.payment_key_secret,
            timeout=config.payment_timeout_seconds,
            currency=config.currency,
        )

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    # ── Orders ────────────────────────────────────────────────────────

    async def create_order(
        self, amount: int, receipt: str, notes: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        """Create an order for *amount* rupees."""
        body = {
            "amount": validate_amount(to_paise(amount)),
            "currency": self.currency,
            "receipt": validate_receipt(receipt),
            "notes": notes or {},
        }
        order = await self._request("POST", "/orders", json=body)
        logger.info("Payment order %s created for receipt %s", order.get("id"), receipt)
        return order

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        order_id = _check_id(order_id, ORDER_ID_RE, "order ID")
        return await self._request("GET", f"/orders/{order_id}")

    async def fetch_order_payments(self, order_id: str) -> list[dict[str, Any]]:
        order_id = _check_id(order_id, ORDER_ID_RE, "order ID")
        data = await self._request("GET", f"/orders/{order_id}/payments")
        return list(data.get("items", []))

    # ── Payments ──────────────────────────────────────────────────────

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 of ``order_id|payment_id``, compared in constant time."""
        order_id = _check_id(order_id, ORDER_ID_RE, "order_id")
        payment_id = _check_id(payment_id, PAYMENT_ID_RE, "payment_id")
        if not isinstance(signature, str) or not signature.strip():
            raise ValidationError("Valid signature is required")
        self._require_credentials()
        expected = hmac.new(
            self.key_secret.encode(),
            f"{order_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        valid = hmac.compare_digest(expected, signature.strip())
        if not valid:
            logger.warning("Payment signature mismatch for order %s", order_id)
        return valid

    async def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        payment_id = _check_id(payment_id, PAYMENT_ID_RE, "payment ID")
        return await self._request("GET", f"/payments/{payment_id}")

    # ── Refunds ───────────────────────────────────────────────────────

    async def refund(
        self,
        payment_id: str,
        amount: int,
        notes: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        """Refund *amount* rupees of a captured payment."""
        payment_id = _check_id(payment_id, PAYMENT_ID_RE, "payment ID")
        body = {"amount": validate_amount(to_paise(amount)), "notes": notes or {}}
        refund = await self._request("POST", f"/payments/{payment_id}/refund", json=body)
        logger.info("Refund %s issued for payment %s", refund.get("id"), payment_id)
        return refund

    async def fetch_refund(self, refund_id: str) -> dict[str, Any]:
        refund_id = _check_id(refund_id, REFUND_ID_RE, "refund ID")
        return await self._request("GET", f"/refunds/{refund_id}")

    # ── Transport ─────────────────────────────────────────────────────

    def _require_credentials(self) -> None:
        if not self.configured:
            raise ServiceUnavailableError("Payment gateway credentials are not configured")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        self._require_credentials()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Payment gateway timed out on %s %s", method, path)
            raise PaymentGatewayError(
                f"Payment gateway timed out after {self.timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Payment gateway unreachable on %s %s: %s", method, path, exc)
            raise PaymentGatewayError("Payment gateway unreachable") from exc

        if response.status_code < 400:
            return response.json()

        description = _error_description(response)
        if response.status_code == 400:
            raise ValidationError(f"Invalid payment request: {description}")
        if response.status_code == 401:
            raise ServiceUnavailableError("Payment service authentication failed")
        if response.status_code == 404:
            raise NotFoundError(f"Payment resource not found: {path}")
        logger.error(
            "Payment gateway error %d on %s %s: %s",
            response.status_code, method, path, description,
        )
        raise PaymentGatewayError(
            f"Payment gateway error {response.status_code}",
            {"status_code": response.status_code},
        )


def _error_description(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["description"]
    except (ValueError, KeyError, TypeError):
        return response.text[:200]
