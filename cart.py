"""
Cart routes and the cart engine.

Each user owns at most one cart document. Every mutation recomputes
total_amount in the same update that writes the items, guarded by the
cart's `version` so a concurrent writer can never be silently overwritten.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db, now_utc, parse_object_id, serialize_doc
from errors import ConflictError, InsufficientStock, ItemNotInCart, NoCartExists, NotFoundError, ValidationError
from schemas import Cart as CartSchema, CamelModel, CartLine
from security import Principal, require_user
import validators

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cart"])


def cart_total(items: List[Dict[str, Any]]) -> float:
    return round(sum(item["price"] * item["quantity"] for item in items), 2)


def version_filter(cart: dict) -> dict:
    version = cart.get("version")
    if version is None:
        return {"_id": cart["_id"], "version": {"$exists": False}}
    return {"_id": cart["_id"], "version": version}


def get_cart(db: Database, user_id: str) -> dict:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NoCartExists()
    return cart


def populate_lines(db: Database, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach the current product document to each line (None if it was deleted)."""
    ids = [parse_object_id(item["product_id"]) for item in items]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}
    return [{**item, "product": products.get(item["product_id"])} for item in items]


def populate_cart(db: Database, cart: dict) -> dict:
    return {**cart, "items": populate_lines(db, cart.get("items", []))}


def _save_cart(db: Database, user_id: str, cart: Optional[dict], items: List[Dict[str, Any]]) -> dict:
    total = cart_total(items)
    stamp = now_utc()
    if cart is None:
        doc = CartSchema(user_id=user_id, items=items, total_amount=total, version=1).model_dump()
        doc.update(created_at=stamp, updated_at=stamp)
        try:
            result = db["cart"].insert_one(doc)
        except DuplicateKeyError:
            logger.warning("Concurrent cart creation for user %s", user_id)
            raise ConflictError("Cart was modified concurrently, retry")
        return db["cart"].find_one({"_id": result.inserted_id})

    saved = db["cart"].find_one_and_update(
        version_filter(cart),
        {"$set": {"items": items, "total_amount": total, "updated_at": stamp}, "$inc": {"version": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if saved is None:
        logger.warning("Lost cart update for user %s (version %s)", user_id, cart.get("version"))
        raise ConflictError("Cart was modified concurrently, retry")
    return saved


def apply_cart_action(db: Database, user_id: str, product_id: str, action: str, quantity: int = 1) -> dict:
    """Apply add/increase/decrease/remove for one product and persist the cart.

    Rejections (bad input, stock ceiling, missing line) leave the stored cart
    untouched. Returns the saved cart document.
    """
    validators.validate_cart_action(action)
    product_oid = parse_object_id(product_id, "product")
    if action == "add":
        validators.validate_quantity(quantity)

    product = db["product"].find_one({"_id": product_oid})
    if not product:
        raise NotFoundError("Product not found")
    product_id = str(product_oid)
    stock = product.get("stock", 0)

    cart = db["cart"].find_one({"user_id": user_id})
    items = copy.deepcopy(cart.get("items", [])) if cart else []
    index = next((i for i, item in enumerate(items) if item["product_id"] == product_id), None)

    if action == "add":
        if index is None:
            if quantity > stock:
                raise InsufficientStock(stock)
            line = CartLine(product_id=product_id, price=product["sale_price"], quantity=quantity)
            items.append(line.model_dump())
        else:
            if items[index]["quantity"] + quantity > stock:
                raise InsufficientStock(stock)
            items[index]["quantity"] += quantity
    elif index is None:
        raise ItemNotInCart()
    elif action == "increase":
        if items[index]["quantity"] >= stock:
            raise InsufficientStock(stock, "No more stock available")
        items[index]["quantity"] += 1
    elif action == "decrease":
        if items[index]["quantity"] <= 1:
            del items[index]
        else:
            items[index]["quantity"] -= 1
    else:
        del items[index]

    saved = _save_cart(db, user_id, cart, items)
    logger.debug("Cart %s: %s %s -> total %s", user_id, action, product_id, saved["total_amount"])
    return saved


# Request models
class CartItemIn(CamelModel):
    product_id: Optional[str] = None
    action: Optional[str] = None
    quantity: Any = 1


# Routes
@router.get("/cart")
def get_cart_route(user: Principal = Depends(require_user), db: Database = Depends(get_db)):
    cart = get_cart(db, user.id)
    return {"success": True, "cart": serialize_doc(populate_cart(db, cart))}


@router.patch("/cart/item")
def update_cart_item_route(data: CartItemIn, user: Principal = Depends(require_user), db: Database = Depends(get_db)):
    if not data.product_id:
        raise ValidationError("Product ID is required", field="productId")
    cart = apply_cart_action(db, user.id, data.product_id, data.action, data.quantity)
    return {"success": True, "message": "Cart updated", "cart": serialize_doc(populate_cart(db, cart))}
