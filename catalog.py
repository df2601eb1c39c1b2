"""Product catalog: read-only listing and lookup, discount-aware pricing."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter

from database import create_document, get_db, get_documents, serialize_doc, to_object_id
from errors import NotFoundError
from schemas import Product as ProductSchema

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def effective_price(product: dict) -> Decimal:
    """Unit price after the product's percentage discount."""
    price = Decimal(str(product.get("price") or 0))
    discount = Decimal(str(product.get("discount") or 0))
    return to_money(price * (100 - discount) / 100)


def public_product(product: dict) -> dict:
    doc = serialize_doc(product)
    doc["effective_price"] = float(effective_price(product))
    return doc


def list_products(category: Optional[str] = None, search: Optional[str] = None, limit: int = 100):
    filt = {}
    if category and category != "All":
        filt["category"] = category
    if search:
        filt["name"] = {"$regex": search, "$options": "i"}
    return get_documents("product", filt, limit=limit)


def get_product(product_id) -> dict:
    oid = to_object_id(product_id, "productId")
    product = get_db()["product"].find_one({"_id": oid})
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_products_by_ids(product_ids: Iterable[ObjectId]) -> Dict[ObjectId, dict]:
    ids = list(product_ids)
    if not ids:
        return {}
    return {p["_id"]: p for p in get_db()["product"].find({"_id": {"$in": ids}})}


# ----------------------- Routes -----------------------
product_router = APIRouter(prefix="/products", tags=["products"])


@product_router.get("")
def list_products_route(category: Optional[str] = None, search: Optional[str] = None, q: Optional[str] = None):
    items = list_products(category=category, search=search or q)
    return [public_product(i) for i in items]


@product_router.get("/{product_id}")
def get_product_route(product_id: str):
    return public_product(get_product(product_id))


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Cotton Kurta",
        "description": "Breathable handloom cotton kurta for everyday wear.",
        "price": 1299,
        "discount": 10,
        "stock": 40,
        "category": "Fashion",
        "image": "https://images.unsplash.com/photo-1583391733956-6c78276477e2",
    },
    {
        "name": "Running Shoes",
        "description": "Lightweight mesh upper with cushioned sole.",
        "price": 3499,
        "discount": 20,
        "stock": 25,
        "category": "Footwear",
        "image": "https://images.unsplash.com/photo-1542291026-7eec264c27ff",
    },
    {
        "name": "Wireless Earbuds",
        "description": "Bluetooth 5.3 earbuds with 24h case battery.",
        "price": 2499,
        "discount": 15,
        "stock": 60,
        "category": "Electronics",
        "image": "https://images.unsplash.com/photo-1590658268037-6bf12165a8df",
    },
    {
        "name": "Steel Water Bottle",
        "description": "Insulated 1L bottle, keeps drinks cold for 24 hours.",
        "price": 699,
        "discount": 0,
        "stock": 100,
        "category": "Home",
        "image": "https://images.unsplash.com/photo-1602143407151-7111542de6e8",
    },
    {
        "name": "Smartwatch",
        "description": "Fitness tracking, heart-rate and notifications.",
        "price": 6999,
        "discount": 25,
        "stock": 15,
        "category": "Electronics",
        "image": "https://images.unsplash.com/photo-1512086734732-172b66a17c72",
    },
    {
        "name": "Leather Wallet",
        "description": "Slim bifold wallet in full-grain leather.",
        "price": 899,
        "discount": 5,
        "stock": 0,
        "category": "Accessories",
        "image": "https://images.unsplash.com/photo-1627123424574-724758594e93",
    },
]


def seed_products() -> int:
    """Insert the demo catalog when the product collection is empty."""
    db = get_db()
    if db["product"].count_documents({}) > 0:
        return 0
    for p in DEMO_PRODUCTS:
        create_document("product", ProductSchema(**p))
    logger.info("catalog_seeded", count=len(DEMO_PRODUCTS))
    return len(DEMO_PRODUCTS)
