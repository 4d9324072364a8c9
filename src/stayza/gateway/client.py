"""Thin wrapper around the payment gateway Orders and Refunds APIs.

Purpose:
- Encapsulate gateway HTTP calls so domain code doesn't build requests.
- Send an idempotency key for safe retries.
- Never log full gateway payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

import logging
import os
from typing import Any

import requests

from stayza.errors import GatewayError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.razorpay.com/v1"
HTTP_TIMEOUT = int(os.environ.get("GATEWAY_HTTP_TIMEOUT", "15"))

# Gateway limit on receipt length
MAX_RECEIPT_LENGTH = 40


class GatewayClient:
    """Client for creating gateway orders and refunding captured payments.

    Usage:
        client = GatewayClient()  # reads GATEWAY_KEY_ID / GATEWAY_KEY_SECRET
        order = client.create_order(
            amount_minor=612000,
            currency="INR",
            receipt="rcpt_0a1b2c3d4e",
            idempotency_key="reservation:abc:order",
        )
        print(order["order_id"])
    """

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        api_base: str | None = None,
    ) -> None:
        """Initialize the gateway client.

        Raises:
            RuntimeError: If credentials are not provided or found in environment.
        """
        self._key_id = key_id or os.environ.get("GATEWAY_KEY_ID")
        self._key_secret = key_secret or os.environ.get("GATEWAY_KEY_SECRET")
        if not self._key_id or not self._key_secret:
            raise RuntimeError(
                "Gateway credentials not provided. "
                "Set GATEWAY_KEY_ID and GATEWAY_KEY_SECRET."
            )
        self._api_base = (
            api_base or os.environ.get("GATEWAY_API_BASE") or DEFAULT_API_BASE
        ).rstrip("/")

    @property
    def key_id(self) -> str:
        """Public key id, handed to the checkout client."""
        return self._key_id

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        idempotency_key: str,
        notes: dict[str, str] | None = None,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a gateway order for a pending charge.

        Args:
            amount_minor: Amount in minor currency units.
            currency: Currency code.
            receipt: Merchant receipt token (< 40 chars).
            idempotency_key: Idempotency key for safe retries.
            notes: Optional metadata attached to the order.
            correlation_id: Optional correlation ID for logging.

        Returns:
            Dict with order_id, amount_minor, currency and status.

        Raises:
            ValueError: If the receipt is too long or the amount not positive.
            GatewayError: If the gateway call fails.
        """
        if len(receipt) >= MAX_RECEIPT_LENGTH:
            raise ValueError("receipt must be shorter than 40 characters")
        if amount_minor <= 0:
            raise ValueError("amount_minor must be positive")

        body: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
        }
        if notes:
            body["notes"] = notes

        try:
            response = requests.post(
                f"{self._api_base}/orders",
                json=body,
                auth=(self._key_id, self._key_secret),
                headers={
                    "Idempotency-Key": idempotency_key,
                    "X-Correlation-Id": correlation_id or "",
                },
                timeout=HTTP_TIMEOUT,
            )
            response.raise_for_status()
            order = response.json()
        except requests.RequestException as e:
            logger.error(
                "gateway order creation failed",
                extra={"receipt": receipt, "error": type(e).__name__},
            )
            raise GatewayError("Failed to create payment order") from e
        except ValueError as e:
            raise GatewayError("Gateway returned an invalid response") from e

        order_id = order.get("id")
        if not order_id:
            raise GatewayError("Gateway response has no order id")

        # Log only IDs, never full payload
        logger.info(
            "gateway_order_created",
            extra={"order_id": order_id, "correlation_id": correlation_id},
        )

        return {
            "order_id": order_id,
            "amount_minor": order.get("amount", amount_minor),
            "currency": order.get("currency", currency),
            "status": order.get("status"),
        }

    def refund_payment(
        self,
        *,
        payment_id: str,
        amount_minor: int,
        idempotency_key: str,
        correlation_id: str | None = None,
    ) -> dict[str, Any]:
        """Refund a captured payment.

        Args:
            payment_id: Gateway payment id.
            amount_minor: Amount to refund in minor currency units.
            idempotency_key: Idempotency key; a retry returns the same refund.
            correlation_id: Optional correlation ID for logging.

        Returns:
            Dict with refund_id, amount_minor and status.

        Raises:
            ValueError: If the amount is not positive.
            GatewayError: If the gateway call fails.
        """
        if amount_minor <= 0:
            raise ValueError("amount_minor must be positive")

        try:
            response = requests.post(
                f"{self._api_base}/payments/{payment_id}/refund",
                json={"amount": amount_minor},
                auth=(self._key_id, self._key_secret),
                headers={
                    "Idempotency-Key": idempotency_key,
                    "X-Correlation-Id": correlation_id or "",
                },
                timeout=HTTP_TIMEOUT,
            )
            response.raise_for_status()
            refund = response.json()
        except requests.RequestException as e:
            logger.error(
                "gateway refund failed",
                extra={"payment_id": payment_id, "error": type(e).__name__},
            )
            raise GatewayError("Failed to refund payment") from e
        except ValueError as e:
            raise GatewayError("Gateway returned an invalid response") from e

        refund_id = refund.get("id")
        if not refund_id:
            raise GatewayError("Gateway response has no refund id")

        logger.info(
            "gateway_refund_created",
            extra={
                "refund_id": refund_id,
                "payment_id": payment_id,
                "correlation_id": correlation_id,
            },
        )

        return {
            "refund_id": refund_id,
            "amount_minor": refund.get("amount", amount_minor),
            "status": refund.get("status"),
        }
