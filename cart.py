"""Cart store: per-user product -> quantity entries nested on the user document.

Every write is a compare-and-set on ``cart_version``. A write that finds the
version moved since it read the cart raises ConflictError instead of
overwriting the other request's change.
"""
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from fastapi import APIRouter, Depends

from auth import get_current_user
from catalog import effective_price, get_product, get_products_by_ids, public_product, to_money
from database import get_db, to_object_id
from errors import ConflictError, NotFoundError, ValidationError
from schemas import MAX_CART_QUANTITY, CartAddBody, CartQuantityBody

logger = structlog.get_logger(__name__)


def _load_user_cart(user_oid) -> dict:
    user = get_db()["user"].find_one({"_id": user_oid}, {"cart": 1, "cart_version": 1})
    if user is None:
        raise NotFoundError("User not found")
    return user


def cart_version_filter(user_oid, user: dict) -> dict:
    """Match the user only while the cart is still at the version that was read."""
    if "cart_version" in user:
        return {"_id": user_oid, "cart_version": user["cart_version"]}
    return {"_id": user_oid, "cart_version": {"$exists": False}}


def _write_cart(user_oid, user: dict, entries: list) -> None:
    res = get_db()["user"].update_one(
        cart_version_filter(user_oid, user),
        {
            "$set": {"cart": entries, "updated_at": datetime.now(timezone.utc)},
            "$inc": {"cart_version": 1},
        },
    )
    if res.matched_count == 0:
        logger.warning("cart_write_conflict", user_id=str(user_oid), read_version=user.get("cart_version", 0))
        raise ConflictError("Cart was modified by another request, please retry")


def _validate_quantity(quantity) -> int:
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise ValidationError("Quantity must be a positive integer")
    if quantity > MAX_CART_QUANTITY:
        raise ValidationError(f"Quantity cannot exceed {MAX_CART_QUANTITY}")
    return quantity


def resolve_cart(entries: list) -> dict:
    """Join cart entries against live product data."""
    products = get_products_by_ids(e["product_id"] for e in entries)
    items = []
    subtotal = Decimal(0)
    for entry in entries:
        product = products.get(entry["product_id"])
        added_at = entry.get("added_at")
        item = {
            "product_id": str(entry["product_id"]),
            "quantity": entry["quantity"],
            "added_at": added_at.isoformat() if added_at else None,
            "product": None,
            "unit_price": None,
            "line_total": None,
        }
        if product is not None:
            unit_price = effective_price(product)
            line_total = to_money(unit_price * entry["quantity"])
            subtotal += line_total
            item.update(
                product=public_product(product),
                unit_price=float(unit_price),
                line_total=float(line_total),
            )
        items.append(item)
    return {
        "items": items,
        "item_count": sum(e["quantity"] for e in entries),
        "subtotal": float(subtotal),
    }


def get_cart(user_id: str) -> dict:
    user = _load_user_cart(to_object_id(user_id))
    return resolve_cart(user.get("cart") or [])


def add_item(user_id: str, product_id, quantity: int = 1) -> dict:
    """Merge ``quantity`` into the entry for the product, or insert a new entry."""
    _validate_quantity(quantity)
    product = get_product(product_id)
    user_oid = to_object_id(user_id)
    user = _load_user_cart(user_oid)

    entries = [dict(e) for e in user.get("cart") or []]
    existing = next((e for e in entries if e["product_id"] == product["_id"]), None)
    if existing:
        existing["quantity"] = _validate_quantity(existing["quantity"] + quantity)
    else:
        entries.append(
            {
                "product_id": product["_id"],
                "quantity": quantity,
                "added_at": datetime.now(timezone.utc),
            }
        )
    _write_cart(user_oid, user, entries)
    logger.info("cart_item_added", user_id=user_id, product_id=str(product["_id"]), quantity=quantity)
    return resolve_cart(entries)


def set_quantity(user_id: str, product_id, quantity: int) -> dict:
    _validate_quantity(quantity)
    product_oid = to_object_id(product_id, "productId")
    user_oid = to_object_id(user_id)
    user = _load_user_cart(user_oid)
    if "cart" not in user:
        raise NotFoundError("Cart not found")

    entries = [dict(e) for e in user["cart"]]
    entry = next((e for e in entries if e["product_id"] == product_oid), None)
    if entry is None:
        raise NotFoundError("Item not found in cart")
    previous = entry["quantity"]
    entry["quantity"] = quantity
    _write_cart(user_oid, user, entries)
    logger.info(
        "cart_quantity_updated",
        user_id=user_id,
        product_id=str(product_oid),
        previous_quantity=previous,
        new_quantity=quantity,
    )
    return resolve_cart(entries)


def remove_item(user_id: str, product_id) -> dict:
    """Drop the product's entry. Removing an entry that is not there is a no-op."""
    product_oid = to_object_id(product_id, "productId")
    user_oid = to_object_id(user_id)
    user = _load_user_cart(user_oid)
    if "cart" not in user:
        raise NotFoundError("Cart not found")

    entries = [e for e in user["cart"] if e["product_id"] != product_oid]
    if len(entries) != len(user["cart"]):
        _write_cart(user_oid, user, entries)
        logger.info("cart_item_removed", user_id=user_id, product_id=str(product_oid))
    return resolve_cart(entries)


def clear_cart(user_id: str) -> dict:
    user_oid = to_object_id(user_id)
    user = _load_user_cart(user_oid)
    if user.get("cart"):
        _write_cart(user_oid, user, [])
        logger.info("cart_cleared", user_id=user_id)
    return resolve_cart([])


# ----------------------- Routes -----------------------
cart_router = APIRouter(prefix="/user/cart", tags=["cart"])


@cart_router.get("")
def get_cart_route(user_id: str = Depends(get_current_user)):
    return get_cart(user_id)


@cart_router.post("")
def add_to_cart(body: CartAddBody, user_id: str = Depends(get_current_user)):
    cart = add_item(user_id, body.product_id, body.quantity)
    return {"message": "Added to cart", "cart": cart}


# declared before /{product_id} so "clear" is not taken for an id
@cart_router.delete("/clear")
def clear_cart_route(user_id: str = Depends(get_current_user)):
    cart = clear_cart(user_id)
    return {"message": "Cart cleared", "cart": cart}


@cart_router.put("/{product_id}")
def update_cart_quantity(product_id: str, body: CartQuantityBody, user_id: str = Depends(get_current_user)):
    cart = set_quantity(user_id, product_id, body.quantity)
    return {"message": "Cart updated", "cart": cart}


@cart_router.delete("/{product_id}")
def remove_from_cart(product_id: str, user_id: str = Depends(get_current_user)):
    cart = remove_item(user_id, product_id)
    return {"message": "Removed from cart", "cart": cart}
