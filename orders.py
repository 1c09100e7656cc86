"""
Checkout and order management.

A checkout is validated, recorded as a pending payment attempt, charged
through the gateway with immediate settlement and, only when the gateway
reports success, persisted as an Order. The attempt record is what lets an
operator reconcile a charge whose order insert never happened.
"""
import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from bson import ObjectId
from braintree.exceptions.braintree_error import BraintreeError
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents, now, populate, to_object_id
from errors import Conflict, GatewayError, ServiceError, ValidationFailed
from payments import result_snapshot
from schemas import Order, OrderStatus, PaymentAttempt, PaymentState

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

FREE = "free"
FORWARD = "forward"

# Used only under the "forward" policy. Re-setting the current status is always allowed.
FORWARD_TRANSITIONS = {
    OrderStatus.NOT_PROCESS: {OrderStatus.PROCESSING, OrderStatus.CANCEL},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCEL},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCEL},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCEL: set(),
}


def status_policy() -> str:
    policy = os.getenv("ORDER_STATUS_POLICY", FREE).lower()
    return policy if policy in (FREE, FORWARD) else FREE


def is_valid_transition(current: str, target: str, policy: str = FORWARD) -> bool:
    target = OrderStatus(target)
    if policy == FREE:
        return True
    try:
        current = OrderStatus(current)
    except ValueError:
        # A stored status outside the enum has no forward move
        return False
    return current == target or target in FORWARD_TRANSITIONS[current]


def cart_total(cart: List[Dict[str, Any]]) -> Decimal:
    total = Decimal("0")
    for item in cart:
        price = item.get("price") if isinstance(item, dict) else None
        if price is None or isinstance(price, bool):
            raise ValidationFailed("Cart item price is invalid")
        try:
            amount = Decimal(str(price))
        except InvalidOperation:
            raise ValidationFailed("Cart item price is invalid")
        if not amount.is_finite() or amount < 0:
            raise ValidationFailed("Cart item price is invalid")
        total += amount
    return total.quantize(CENTS)


def cart_products(cart: List[Dict[str, Any]]) -> List[Any]:
    """Product references for the order; lines without a usable id stay as snapshots"""
    products: List[Any] = []
    for item in cart:
        ref = item.get("_id") or item.get("id")
        if isinstance(ref, str) and ObjectId.is_valid(ref):
            products.append(ObjectId(ref))
        else:
            products.append(item)
    return products


def client_token(gateway) -> Dict[str, Any]:
    try:
        token = gateway.client_token.generate()
    except BraintreeError as e:
        logger.warning("braintree refused client token: %r", e)
        raise GatewayError("Error while generating payment token", error=str(e) or type(e).__name__)
    except Exception as e:
        logger.exception("client token generation failed")
        raise ServiceError(500, "Error while generating payment token", error=str(e))
    return {"success": True, "clientToken": token}


def _mark_attempt(db: Database, attempt_id: ObjectId, **fields) -> None:
    fields["updated_at"] = now()
    db["paymentattempt"].update_one({"_id": attempt_id}, {"$set": fields})


def process_payment(db: Database, gateway, nonce: Optional[str], cart: Optional[List[Dict[str, Any]]], buyer_id: Any) -> Dict[str, Any]:
    if not nonce:
        raise ValidationFailed("Nonce is empty")
    if not cart:
        raise ValidationFailed("Cart is empty")
    if not buyer_id:
        raise ValidationFailed("User id is empty")

    buyer = to_object_id(buyer_id, "user id")
    amount = cart_total(cart)
    products = cart_products(cart)

    attempt_id = create_document(db, "paymentattempt", PaymentAttempt(
        buyer=buyer,
        products=products,
        amount=str(amount),
    ))

    try:
        result = gateway.transaction.sale({
            "amount": str(amount),
            "payment_method_nonce": nonce,
            "options": {"submit_for_settlement": True},
        })
    except Exception as e:
        logger.exception("sale request for attempt %s failed", attempt_id)
        _mark_attempt(db, attempt_id, state=PaymentState.FAILED.value, gateway_result={"success": False, "message": str(e)})
        raise GatewayError("Payment gateway unavailable", error=str(e))

    payment = result_snapshot(result)
    if not payment["success"]:
        logger.info("sale declined for attempt %s: %s", attempt_id, payment.get("message"))
        _mark_attempt(db, attempt_id, state=PaymentState.FAILED.value, gateway_result=payment)
        raise GatewayError(payment.get("message") or "Transaction failed", error=payment)

    # Charged from here on; the attempt keeps the transaction until the order exists
    _mark_attempt(db, attempt_id, gateway_result=payment)
    order_id = save_order(db, {"products": products, "payment": payment, "buyer": buyer})
    _mark_attempt(db, attempt_id, state=PaymentState.SETTLED.value, order_id=order_id)
    logger.info("order %s created for buyer %s, amount %s", order_id, buyer, amount)
    return {"ok": True}


def _populated(db: Database, orders: List[dict]) -> List[dict]:
    populate(db, orders, "products", "product", {"photo": 0})
    populate(db, orders, "buyer", "user", {"password": 0, "answer": 0})
    return orders


def buyer_orders(db: Database, buyer_id: Any) -> List[dict]:
    orders = get_documents(db, "order", {"buyer": to_object_id(buyer_id, "user id")}, sort=[("created_at", DESCENDING)])
    return _populated(db, orders)


def all_orders(db: Database) -> List[dict]:
    orders = get_documents(db, "order", {}, sort=[("created_at", DESCENDING)])
    return _populated(db, orders)


def validate_order(data: Dict[str, Any]) -> Order:
    try:
        return Order(**data)
    except ValidationError as e:
        raise ValidationFailed("Invalid order", error=e.errors(include_url=False, include_context=False, include_input=False))


def save_order(db: Database, data: Dict[str, Any]) -> ObjectId:
    return create_document(db, "order", validate_order(data))


def update_order_status(db: Database, order_id: str, status: Optional[str], policy: Optional[str] = None) -> Optional[dict]:
    """Set an order's status; returns the updated order, or None when it does not exist"""
    if not status:
        raise ValidationFailed("Status is required")
    try:
        target = OrderStatus(status)
    except ValueError:
        raise ValidationFailed("Invalid order status")
    oid = to_object_id(order_id, "order id")
    policy = policy or status_policy()

    query: Dict[str, Any] = {"_id": oid}
    if policy == FORWARD:
        current = db["order"].find_one({"_id": oid}, {"status": 1})
        if not current:
            return None
        if not is_valid_transition(current["status"], target, FORWARD):
            raise Conflict(f"Cannot change order status from {current['status']} to {target.value}")
        # Only apply if nobody moved the order since we read it
        query["status"] = current["status"]

    updated = db["order"].find_one_and_update(
        query,
        {"$set": {"status": target.value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None and policy == FORWARD:
        raise Conflict("Order status changed concurrently, please retry")
    return updated
