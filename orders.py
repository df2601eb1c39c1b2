"""Checkout and the order ledger.

MongoDB only guarantees atomicity per document, so checkout runs as a saga of
single-document writes, each with a compensating action:

1. reserve stock per product (conditional ``$inc``),
2. insert the order, keyed by ``checkout_key`` = ``<user_id>:<cart_version>``,
3. clear the cart with a compare-and-set on ``cart_version``.

A failure in step 1 or 2 releases the reserved stock. Losing the race in
step 3 deletes the order and releases the stock. If the process dies between
steps 2 and 3, the cart is still at the same version, so the next checkout
finds the existing order by its key and finishes step 3 instead of placing a
duplicate.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

import settings
from auth import get_current_user
from cart import cart_version_filter
from catalog import effective_price, get_products_by_ids, to_money
from database import get_db, serialize_doc, to_object_id
from errors import ConflictError, EmptyCartError, InsufficientStockError, NotFoundError, ValidationError
from schemas import UPI_METHODS, Order as OrderSchema, OrderProductSnapshot, PaymentMethod, PlaceOrderBody

logger = structlog.get_logger(__name__)

PAYMENT_METHODS = PaymentMethod.__args__


def _validate_checkout(address, payment_method, upi_id):
    if not address or not str(address).strip():
        raise ValidationError("Address is required")
    if not payment_method:
        raise ValidationError("Payment type is required")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Unsupported payment type: {payment_method}")
    if payment_method in UPI_METHODS and not (upi_id or "").strip():
        raise ValidationError(f"UPI id is required for {payment_method}")


def snapshot_cart(entries: list) -> List[OrderProductSnapshot]:
    """Copy name, current price and quantity of every cart entry."""
    products = get_products_by_ids(e["product_id"] for e in entries)
    snapshots = []
    for entry in entries:
        product = products.get(entry["product_id"])
        if product is None:
            raise NotFoundError(f"Product {entry['product_id']} is no longer available")
        snapshots.append(
            OrderProductSnapshot(
                product_id=str(product["_id"]),
                name=product.get("name", ""),
                unit_price=float(effective_price(product)),
                quantity=entry["quantity"],
                image=product.get("image"),
            )
        )
    return snapshots


def order_total(snapshots: List[OrderProductSnapshot]) -> float:
    total = sum((to_money(s.unit_price) * s.quantity for s in snapshots), Decimal(0))
    return float(to_money(total))


def _reserve_stock(snapshots: List[OrderProductSnapshot]) -> List[OrderProductSnapshot]:
    products = get_db()["product"]
    reserved = []
    for snap in snapshots:
        res = products.update_one(
            {"_id": ObjectId(snap.product_id), "stock": {"$gte": snap.quantity}},
            {"$inc": {"stock": -snap.quantity}},
        )
        if res.modified_count == 0:
            _release_stock(reserved)
            raise InsufficientStockError(f"Insufficient stock for {snap.name}")
        reserved.append(snap)
    return reserved


def _release_stock(reserved: List[OrderProductSnapshot]) -> None:
    products = get_db()["product"]
    for snap in reserved:
        products.update_one({"_id": ObjectId(snap.product_id)}, {"$inc": {"stock": snap.quantity}})


def _clear_checked_out_cart(user_oid, user: dict, checkout_key: str) -> bool:
    res = get_db()["user"].update_one(
        cart_version_filter(user_oid, user),
        {
            "$set": {"cart": [], "last_checkout_key": checkout_key, "updated_at": datetime.now(timezone.utc)},
            "$inc": {"cart_version": 1},
        },
    )
    return res.matched_count == 1


def _checkout_already_cleared(user_oid, checkout_key: str) -> bool:
    """True when the cart was emptied by a concurrent request for the same checkout."""
    user = get_db()["user"].find_one({"_id": user_oid}, {"last_checkout_key": 1})
    return user is not None and user.get("last_checkout_key") == checkout_key


def place_order(user_id: str, address: str, payment_method: str, upi_id: Optional[str] = None) -> dict:
    """Turn the user's cart into an order and empty the cart."""
    db = get_db()
    user_oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": user_oid}, {"cart": 1, "cart_version": 1})
    if user is None:
        raise NotFoundError("User not found")

    entries = user.get("cart") or []
    if not entries:
        raise EmptyCartError("Cart is empty")
    _validate_checkout(address, payment_method, upi_id)

    checkout_key = f"{user_id}:{user.get('cart_version', 0)}"
    existing = db["order"].find_one({"checkout_key": checkout_key})
    if existing is not None:
        return _finish_replayed_checkout(user_oid, user, existing)

    snapshots = snapshot_cart(entries)
    now = datetime.now(timezone.utc)
    order = OrderSchema(
        user_id=user_id,
        products=snapshots,
        total_amount=order_total(snapshots),
        shipping_address=address.strip(),
        payment_method=payment_method,
        upi_id=upi_id.strip() if payment_method in UPI_METHODS else None,
        status="Processing",
        expected_delivery=now + timedelta(days=settings.DELIVERY_DAYS),
    )
    doc = order.model_dump()
    doc.update(user_id=user_oid, checkout_key=checkout_key, created_at=now, updated_at=now)

    reserved = _reserve_stock(snapshots)
    try:
        order_id = db["order"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        # another request placed the order for this cart version first
        _release_stock(reserved)
        existing = db["order"].find_one({"checkout_key": checkout_key})
        if existing is None:
            raise
        return _finish_replayed_checkout(user_oid, user, existing)
    except Exception:
        _release_stock(reserved)
        raise

    doc["_id"] = order_id
    if not _clear_checked_out_cart(user_oid, user, checkout_key):
        if _checkout_already_cleared(user_oid, checkout_key):
            # a replay of this checkout found the order and emptied the cart first
            logger.info("checkout_completed_by_replay", user_id=user_id, order_id=str(order_id))
            return public_order(doc)
        db["order"].delete_one({"_id": order_id})
        _release_stock(reserved)
        logger.warning("checkout_conflict", user_id=user_id, checkout_key=checkout_key)
        raise ConflictError("Cart changed during checkout, please review it and try again")

    logger.info(
        "order_placed",
        user_id=user_id,
        order_id=str(order_id),
        total_amount=doc["total_amount"],
        items=len(snapshots),
        payment_method=payment_method,
    )
    return public_order(doc)


def _finish_replayed_checkout(user_oid, user: dict, order: dict) -> dict:
    checkout_key = order["checkout_key"]
    if not _clear_checked_out_cart(user_oid, user, checkout_key) and not _checkout_already_cleared(
        user_oid, checkout_key
    ):
        raise ConflictError("Cart changed during checkout, please review it and try again")
    logger.info("checkout_replayed", user_id=str(user_oid), order_id=str(order["_id"]))
    return public_order(order)


def public_order(order: dict) -> dict:
    doc = serialize_doc(order)
    doc.pop("checkout_key", None)
    return doc


def list_orders(user_id: str, skip: int = 0, limit: Optional[int] = None) -> list:
    cursor = (
        get_db()["order"]
        .find({"user_id": to_object_id(user_id)})
        .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
        .skip(skip)
    )
    if limit:
        cursor = cursor.limit(limit)
    return [public_order(o) for o in cursor]


def get_order(user_id: str, order_id: str) -> dict:
    order = get_db()["order"].find_one({"_id": to_object_id(order_id, "orderId"), "user_id": to_object_id(user_id)})
    if not order:
        raise NotFoundError("Order not found")
    return public_order(order)


# ----------------------- Routes -----------------------
order_router = APIRouter(prefix="/user/orders", tags=["orders"])


@order_router.post("", status_code=201)
def place_order_route(body: PlaceOrderBody, user_id: str = Depends(get_current_user)):
    order = place_order(user_id, body.address, body.payment_type, body.upi_id)
    return {"message": "Order placed successfully", "order_id": order["id"], "order": order}


@order_router.get("/my-orders")
def my_orders(skip: int = 0, limit: Optional[int] = None, user_id: str = Depends(get_current_user)):
    if skip < 0 or (limit is not None and limit < 1):
        raise ValidationError("skip must be >= 0 and limit >= 1")
    return {"orders": list_orders(user_id, skip=skip, limit=limit)}


@order_router.get("/{order_id}")
def get_order_route(order_id: str, user_id: str = Depends(get_current_user)):
    return get_order(user_id, order_id)
