import hashlib
import hmac
import time
from typing import Any, Callable, Dict, Optional

import razorpay

from aggregates import round_half_up
from document_store import utc_now
from errors import NotFound, ValidationError

PAYMENT_ORDERS = "payment_orders"
ENROLLMENTS = "enrollments"
CURRENCY = "INR"


def sign_payment(order_id: str, payment_id: str, key_secret: str) -> str:
    """HMAC-SHA256 hex digest over 'orderId|paymentId'"""
    body = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(key_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, key_secret: str) -> bool:
    if not key_secret or not signature:
        return False
    return hmac.compare_digest(sign_payment(order_id, payment_id, key_secret), signature)


class RazorpayGateway:
    """Creates orders through the Razorpay SDK using credentials from the config cache"""

    def __init__(self, credentials: Callable[[], Dict[str, str]]):
        self._credentials = credentials

    def create_order(self, amount_minor_units: int, currency: str, metadata: Dict[str, Any],
                     receipt: Optional[str] = None) -> Dict[str, Any]:
        creds = self._credentials()
        client = razorpay.Client(auth=(creds["key_id"], creds["key_secret"]))
        order = client.order.create({
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt,
            "notes": metadata,
        })
        print(f"✅ [PAYMENT] Razorpay order {order['id']} created ({amount_minor_units} {currency})")
        return {"orderId": order["id"], "status": order.get("status", "created")}


def create_payment_order(store, gateway, credentials: Callable[[], Dict[str, str]],
                         course_id: str, batch_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Create a gateway order for a course fee and keep a copy in payment_orders"""
    if not course_id or not batch_id:
        raise ValidationError("Course ID and Batch ID are required")

    course = store.get("courses", course_id)
    if not course:
        raise NotFound("Course not found")

    amount = course.get("course_fee") or 0
    receipt = f"receipt_{int(time.time() * 1000)}"
    order = gateway.create_order(
        round_half_up(float(amount) * 100),
        CURRENCY,
        {"courseId": course_id, "batchId": batch_id, "userId": user_id or "guest"},
        receipt=receipt,
    )

    store.set(PAYMENT_ORDERS, order["orderId"], {
        "orderId": order["orderId"],
        "courseId": course_id,
        "batchId": batch_id,
        "userId": user_id or "guest",
        "amount": amount,
        "currency": CURRENCY,
        "receipt": receipt,
        "status": order["status"],
        "createdAt": utc_now(),
    })

    return {
        "orderId": order["orderId"],
        "amount": amount,
        "currency": CURRENCY,
        "key_id": credentials()["key_id"],
    }


def payment_status(store, order_id: str) -> Dict[str, Any]:
    order = store.get(PAYMENT_ORDERS, order_id)
    if not order:
        raise NotFound("Order not found")
    return {
        "orderId": order.get("orderId", order_id),
        "status": order.get("status"),
        "paymentId": order.get("paymentId"),
    }
