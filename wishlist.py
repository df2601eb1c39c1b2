"""Wishlist store: a per-user set of product references on the user document."""
import structlog
from fastapi import APIRouter, Depends

from auth import get_current_user
from catalog import get_product, get_products_by_ids, public_product
from database import get_db, to_object_id
from errors import NotFoundError
from schemas import WishlistBody

logger = structlog.get_logger(__name__)


def _wishlist_ids(user_oid) -> list:
    user = get_db()["user"].find_one({"_id": user_oid}, {"wishlist": 1})
    if user is None:
        raise NotFoundError("User not found")
    return user.get("wishlist") or []


def get_wishlist(user_id: str) -> dict:
    ids = _wishlist_ids(to_object_id(user_id))
    products = get_products_by_ids(ids)
    items = []
    for pid in ids:
        product = products.get(pid)
        items.append({"product_id": str(pid), "product": public_product(product) if product else None})
    return {"items": items, "count": len(items)}


def add_item(user_id: str, product_id) -> dict:
    product = get_product(product_id)
    # $addToSet keeps the set free of duplicates even under concurrent adds
    res = get_db()["user"].update_one({"_id": to_object_id(user_id)}, {"$addToSet": {"wishlist": product["_id"]}})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    if res.modified_count:
        logger.info("wishlist_item_added", user_id=user_id, product_id=str(product["_id"]))
    return get_wishlist(user_id)


def remove_item(user_id: str, product_id) -> dict:
    product_oid = to_object_id(product_id, "productId")
    res = get_db()["user"].update_one({"_id": to_object_id(user_id)}, {"$pull": {"wishlist": product_oid}})
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    if res.modified_count:
        logger.info("wishlist_item_removed", user_id=user_id, product_id=str(product_oid))
    return get_wishlist(user_id)


def toggle_item(user_id: str, product_id) -> bool:
    """Remove the product if wishlisted, otherwise add it. Returns the new membership."""
    product_oid = to_object_id(product_id, "productId")
    user_oid = to_object_id(user_id)
    res = get_db()["user"].update_one({"_id": user_oid, "wishlist": product_oid}, {"$pull": {"wishlist": product_oid}})
    if res.modified_count:
        logger.info("wishlist_item_removed", user_id=user_id, product_id=str(product_oid))
        return False
    add_item(user_id, product_oid)
    return True


# ----------------------- Routes -----------------------
wishlist_router = APIRouter(prefix="/user/wishlist", tags=["wishlist"])


@wishlist_router.get("")
def get_wishlist_route(user_id: str = Depends(get_current_user)):
    return get_wishlist(user_id)


@wishlist_router.post("")
def add_to_wishlist(body: WishlistBody, user_id: str = Depends(get_current_user)):
    wishlist = add_item(user_id, body.product_id)
    return {"message": "Added to wishlist", "wishlist": wishlist}


@wishlist_router.post("/toggle")
def toggle_wishlist(body: WishlistBody, user_id: str = Depends(get_current_user)):
    in_wishlist = toggle_item(user_id, body.product_id)
    return {
        "message": "Added to wishlist" if in_wishlist else "Removed from wishlist",
        "in_wishlist": in_wishlist,
        "wishlist": get_wishlist(user_id),
    }


@wishlist_router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, user_id: str = Depends(get_current_user)):
    wishlist = remove_item(user_id, product_id)
    return {"message": "Removed from wishlist", "wishlist": wishlist}
