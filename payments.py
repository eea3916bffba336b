"""
Payment routes: creates a Razorpay order for the checkout widget.

No payment state is kept locally; the gateway order and the publishable key
are handed straight back to the client.
"""

import logging
import uuid
from typing import Any, Dict, Optional, Tuple

import requests
from fastapi import APIRouter, Depends

import settings
from errors import UpstreamError
from schemas import CamelModel
from security import Principal, current_principal
import validators

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payment"])


def new_receipt_id() -> str:
    return f"rcpt_{uuid.uuid4().hex[:20]}"


def create_payment_order(amount: Any) -> Tuple[Dict[str, Any], str]:
    """Create a gateway order for `amount` major units; returns (order, key_id)."""
    value = validators.validate_amount(amount)
    if not settings.RAZORPAY_KEY_ID or not settings.RAZORPAY_KEY_SECRET:
        raise UpstreamError("Payment gateway not configured")

    options = {
        "amount": int(round(value * 100)),
        "currency": settings.PAYMENT_CURRENCY,
        "receipt": new_receipt_id(),
    }
    try:
        response = requests.post(
            f"{settings.RAZORPAY_API_URL}/orders",
            json=options,
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET),
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        logger.error("Razorpay order error: %s", e)
        raise UpstreamError("Failed to create payment order")

    if not response.ok:
        logger.error("Razorpay order failed (%s): %s", response.status_code, response.text[:200])
        raise UpstreamError("Failed to create payment order")

    order = response.json()
    logger.info("Payment order %s created for %s %s", order.get("id"), options["amount"], options["currency"])
    return order, settings.RAZORPAY_KEY_ID


class PaymentOrderIn(CamelModel):
    amount: Optional[Any] = None


@router.post("/payment/create-order", status_code=201)
def create_payment_order_route(data: PaymentOrderIn, principal: Principal = Depends(current_principal)):
    order, key = create_payment_order(data.amount)
    return {"success": True, "order": order, "key": key}
