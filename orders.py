"""
Order lifecycle.

Checkout creates an order as pending/pending. From there Stripe webhook
events drive status and payment status (see apply_payment_event), and admins
may edit a fixed set of fields.
"""

import logging
import math
import re
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import stripe
from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, EmailStr, Field
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, serialize_doc, to_object_id
from errors import ExternalServiceError, NotFoundError, ValidationError
from gate import require_admin
from schemas import Order, OrderItem, OrderStatus, PaymentInfo, PaymentStatus, Pricing, ShippingAddress

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])

ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_ATTEMPTS = 5
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

ADMIN_UPDATABLE_FIELDS = ("status", "paymentStatus", "trackingNumber", "estimatedDelivery", "notes")
ADMIN_SORT_FIELDS = ("createdAt", "updatedAt", "orderNumber", "pricing.total", "status", "paymentStatus")


def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(6))
    return f"{ORDER_NUMBER_PREFIX}-{timestamp[-6:]}-{suffix}"


# ---------------------- Creation ----------------------

class OrderCreate(BaseModel):
    customerEmail: Optional[EmailStr] = None
    items: List[OrderItem] = Field(..., min_length=1)
    shippingAddress: ShippingAddress
    paymentInfo: PaymentInfo
    pricing: Pricing


def create_order(db, payload: OrderCreate, user_id: Optional[str] = None) -> Dict[str, Any]:
    for attempt in range(ORDER_NUMBER_ATTEMPTS):
        order = Order(
            orderNumber=generate_order_number(),
            userId=user_id,
            customerEmail=payload.customerEmail or payload.shippingAddress.email,
            items=payload.items,
            shippingAddress=payload.shippingAddress,
            paymentInfo=payload.paymentInfo,
            pricing=payload.pricing,
        )
        doc = order.model_dump(mode="json")
        try:
            inserted_id = create_document("order", doc, database=db)
        except DuplicateKeyError:
            logger.warning("Order number collision on %s, retrying", doc["orderNumber"])
            continue
        return db["order"].find_one({"_id": to_object_id(inserted_id)})
    raise ExternalServiceError("Could not allocate an order number")


# ---------------------- Payment events ----------------------

def _intent_filter(intent_id: str) -> Dict[str, Any]:
    return {"paymentInfo.stripePaymentIntentId": intent_id}


def _set(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {"$set": {**fields, "updatedAt": datetime.now(timezone.utc)}}


def _payment_succeeded(db, intent: Dict[str, Any]) -> bool:
    orders = db["order"]
    intent_id = intent.get("id")
    existing = orders.find_one(_intent_filter(intent_id))
    if existing is not None:
        result = orders.update_one(
            {
                "_id": existing["_id"],
                "paymentStatus": {"$in": [PaymentStatus.PENDING.value, PaymentStatus.REQUIRES_ACTION.value, PaymentStatus.FAILED.value]},
            },
            _set({"paymentStatus": PaymentStatus.SUCCEEDED.value, "status": OrderStatus.CONFIRMED.value}),
        )
        if not result.modified_count:
            logger.info("Payment %s already applied to order %s", intent_id, existing.get("orderNumber"))
        return True

    # The order may have been saved without the intent id; fall back to the
    # newest pending order with the same total.
    amount = intent.get("amount")
    if amount is None:
        logger.warning("No order for payment intent %s", intent_id)
        return False
    candidate = orders.find_one(
        {
            "pricing.total": round(amount / 100, 2),
            "paymentStatus": PaymentStatus.PENDING.value,
            "paymentInfo.stripePaymentIntentId": None,
        },
        sort=[("createdAt", DESCENDING)],
    )
    if candidate is None:
        logger.warning("No order for payment intent %s (amount %s)", intent_id, amount)
        return False
    orders.update_one(
        {"_id": candidate["_id"], "paymentStatus": PaymentStatus.PENDING.value},
        _set({
            "paymentStatus": PaymentStatus.SUCCEEDED.value,
            "status": OrderStatus.CONFIRMED.value,
            "paymentInfo.stripePaymentIntentId": intent_id,
        }),
    )
    logger.info("Matched payment intent %s to order %s by amount", intent_id, candidate.get("orderNumber"))
    return True


def _payment_failed(db, intent: Dict[str, Any]) -> bool:
    result = db["order"].update_one(
        {
            **_intent_filter(intent.get("id")),
            "paymentStatus": {"$in": [PaymentStatus.PENDING.value, PaymentStatus.REQUIRES_ACTION.value]},
        },
        _set({"paymentStatus": PaymentStatus.FAILED.value, "status": OrderStatus.CANCELLED.value}),
    )
    return bool(result.matched_count) or _exists(db, intent.get("id"))


def _payment_requires_action(db, intent: Dict[str, Any]) -> bool:
    result = db["order"].update_one(
        {**_intent_filter(intent.get("id")), "paymentStatus": PaymentStatus.PENDING.value},
        _set({"paymentStatus": PaymentStatus.REQUIRES_ACTION.value}),
    )
    return bool(result.matched_count) or _exists(db, intent.get("id"))


def _charge_succeeded(db, charge: Dict[str, Any]) -> bool:
    intent_id = charge.get("payment_intent")
    if not isinstance(intent_id, str):
        return False
    card = (charge.get("payment_method_details") or {}).get("card") or {}
    result = db["order"].update_one(
        _intent_filter(intent_id),
        _set({
            "paymentInfo.cardLastFour": card.get("last4") or "",
            "paymentInfo.cardBrand": card.get("brand") or "",
            "paymentInfo.cardExpMonth": card.get("exp_month"),
            "paymentInfo.cardExpYear": card.get("exp_year"),
        }),
    )
    return bool(result.matched_count)


def _charge_refunded(db, charge: Dict[str, Any]) -> bool:
    intent_id = charge.get("payment_intent")
    if not isinstance(intent_id, str) or not charge.get("refunded"):
        return False
    result = db["order"].update_one(
        {**_intent_filter(intent_id), "paymentStatus": PaymentStatus.SUCCEEDED.value},
        _set({"paymentStatus": PaymentStatus.REFUNDED.value, "status": OrderStatus.REFUNDED.value}),
    )
    return bool(result.matched_count) or _exists(db, intent_id)


def _dispute_intent_id(dispute: Dict[str, Any]) -> Optional[str]:
    intent_id = dispute.get("payment_intent")
    if isinstance(intent_id, str):
        return intent_id
    charge_id = dispute.get("charge")
    if not isinstance(charge_id, str):
        return None
    try:
        charge = stripe.Charge.retrieve(charge_id)
    except stripe.StripeError as exc:
        logger.error("Could not load charge %s for dispute: %s", charge_id, exc)
        return None
    intent_id = getattr(charge, "payment_intent", None)
    return intent_id if isinstance(intent_id, str) else None


def _dispute_created(db, dispute: Dict[str, Any]) -> bool:
    intent_id = _dispute_intent_id(dispute)
    if not intent_id:
        return False
    order = db["order"].find_one(_intent_filter(intent_id))
    if order is None:
        return False
    note = f"Dispute created: {dispute.get('reason', 'unknown')}"
    notes = f"{order['notes']}\n{note}" if order.get("notes") else note
    db["order"].update_one(
        {"_id": order["_id"]},
        _set({"status": OrderStatus.DISPUTED.value, "notes": notes}),
    )
    return True


def _exists(db, intent_id: Optional[str]) -> bool:
    return bool(intent_id) and db["order"].count_documents(_intent_filter(intent_id), limit=1) > 0


PAYMENT_EVENT_HANDLERS = {
    "payment_intent.succeeded": _payment_succeeded,
    "payment_intent.payment_failed": _payment_failed,
    "payment_intent.canceled": _payment_failed,
    "payment_intent.requires_action": _payment_requires_action,
    "charge.succeeded": _charge_succeeded,
    "charge.refunded": _charge_refunded,
    "charge.dispute.created": _dispute_created,
}


def apply_payment_event(db, event: Dict[str, Any]) -> bool:
    """Apply a verified Stripe event. Returns False when no order matched."""
    event_type = event.get("type")
    handler = PAYMENT_EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Ignoring Stripe event %s", event_type)
        return False
    obj = (event.get("data") or {}).get("object") or {}
    matched = handler(db, obj)
    if not matched:
        logger.warning("Stripe event %s (%s) matched no order", event_type, obj.get("id"))
    return matched


# ---------------------- Admin ----------------------

class AdminOrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    paymentStatus: Optional[PaymentStatus] = None
    trackingNumber: Optional[str] = None
    estimatedDelivery: Optional[datetime] = None
    notes: Optional[str] = None


def _is_member(value: Any, enum) -> bool:
    return isinstance(value, str) and value in {s.value for s in enum}


def update_order_admin(db, order_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    filtered = {k: v for k, v in data.items() if k in ADMIN_UPDATABLE_FIELDS}
    if "status" in filtered and not _is_member(filtered["status"], OrderStatus):
        raise ValidationError("Invalid status value", [{"field": "status", "message": "unknown status"}])
    if "paymentStatus" in filtered and not _is_member(filtered["paymentStatus"], PaymentStatus):
        raise ValidationError("Invalid payment status value", [{"field": "paymentStatus", "message": "unknown payment status"}])
    try:
        update = AdminOrderUpdate(**filtered)
    except ValueError as exc:
        raise ValidationError("Validation error", [{"field": "", "message": str(exc)}])

    fields = update.model_dump(exclude_unset=True)
    for key in ("status", "paymentStatus"):
        if fields.get(key) is not None:
            fields[key] = fields[key].value

    obj_id = to_object_id(order_id)
    if obj_id is None:
        raise NotFoundError("Order not found")
    if fields:
        db["order"].update_one({"_id": obj_id}, _set(fields))
    order = db["order"].find_one({"_id": obj_id})
    if not order:
        raise NotFoundError("Order not found")
    return order


def order_stats(db) -> Dict[str, Any]:
    stats = {
        "totalOrders": 0,
        "totalRevenue": 0,
        "avgOrderValue": 0,
    }
    grouped = list(db["order"].aggregate([
        {"$group": {
            "_id": None,
            "totalOrders": {"$sum": 1},
            "totalRevenue": {"$sum": "$pricing.total"},
            "avgOrderValue": {"$avg": "$pricing.total"},
        }},
    ]))
    if grouped:
        stats.update({k: v for k, v in grouped[0].items() if k != "_id"})
    for status in (OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
        stats[f"{status.value}Orders"] = db["order"].count_documents({"status": status.value})
    return stats


# ---------------------- Routes ----------------------

@router.post("/api/orders", status_code=201)
def place_order(payload: OrderCreate, x_user_id: Optional[str] = Header(default=None), db=Depends(get_db)):
    order = create_order(db, payload, user_id=x_user_id)
    logger.info("Created order %s", order["orderNumber"])
    return {
        "success": True,
        "order": {
            "id": str(order["_id"]),
            "orderNumber": order["orderNumber"],
            "status": order["status"],
            "total": order["pricing"]["total"],
            "estimatedDelivery": order.get("estimatedDelivery"),
        },
    }


@router.get("/api/orders/{order_number}")
def order_summary(order_number: str, db=Depends(get_db)):
    order = db["order"].find_one({"orderNumber": order_number})
    if not order:
        raise NotFoundError("Order not found")
    return {
        "orderNumber": order["orderNumber"],
        "status": order["status"],
        "paymentStatus": order["paymentStatus"],
        "items": order.get("items", []),
        "pricing": order.get("pricing"),
        "trackingNumber": order.get("trackingNumber"),
        "estimatedDelivery": order.get("estimatedDelivery"),
        "createdAt": order.get("createdAt"),
    }


@router.get("/api/admin/orders")
def admin_list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    paymentStatus: Optional[str] = None,
    search: Optional[str] = None,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    query: Dict[str, Any] = {}
    if status and status != "all":
        query["status"] = status
    if paymentStatus and paymentStatus != "all":
        query["paymentStatus"] = paymentStatus
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"orderNumber": pattern},
            {"customerEmail": pattern},
            {"shippingAddress.firstName": pattern},
            {"shippingAddress.lastName": pattern},
        ]
    sort_field = sortBy if sortBy in ADMIN_SORT_FIELDS else "createdAt"
    direction = 1 if sortOrder == "asc" else -1
    skip = (page - 1) * limit

    orders = list(db["order"].find(query).sort(sort_field, direction).skip(skip).limit(limit))
    total = db["order"].count_documents(query)
    return {
        "success": True,
        "data": {
            "orders": [serialize_doc(o) for o in orders],
            "pagination": {
                "current": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
                "hasNext": page * limit < total,
                "hasPrev": page > 1,
            },
            "stats": order_stats(db),
        },
    }


@router.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    obj_id = to_object_id(order_id)
    order = db["order"].find_one({"_id": obj_id}) if obj_id else None
    if not order:
        raise NotFoundError("Order not found")
    return {"success": True, "data": serialize_doc(order)}


@router.put("/api/admin/orders/{order_id}")
def admin_update_order(order_id: str, data: Dict[str, Any], admin: dict = Depends(require_admin), db=Depends(get_db)):
    order = update_order_admin(db, order_id, data)
    logger.info("Admin %s updated order %s", admin.get("email"), order.get("orderNumber"))
    return {"success": True, "data": serialize_doc(order), "message": "Order updated successfully"}


@router.delete("/api/admin/orders/{order_id}")
def admin_delete_order(order_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    obj_id = to_object_id(order_id)
    res = db["order"].delete_one({"_id": obj_id}) if obj_id else None
    if not res or res.deleted_count == 0:
        raise NotFoundError("Order not found")
    return {"success": True, "message": "Order deleted successfully"}
