"""
Order routes: placement from the cart, history, cancellation and the
admin status override.
"""

import copy
import logging
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from cart import populate_lines, version_filter
from database import create_document, get_db, get_documents, now_utc, parse_object_id, serialize_doc
from errors import (
    AlreadyCancelled,
    CancellationWindowClosed,
    ConflictError,
    EmptyCart,
    NoCartExists,
    NotFoundError,
    UpstreamError,
)
from schemas import CamelModel, Order as OrderSchema
from security import Principal, current_principal, require_admin, require_user
import validators

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])

# Forward moves of the order lifecycle; anything else is an admin override.
TRANSITIONS: Dict[str, set] = {
    "pending": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}
CLOSED_FOR_CANCELLATION = ("shipped", "delivered")


def is_forward_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def place_order(db: Database, user_id: str, shipping_address: Optional[str]) -> dict:
    """Snapshot the user's cart into a pending order and empty the cart.

    The cart is cleared first with a version-guarded write, so a concurrent
    cart change aborts the placement before anything is created. If the order
    insert then fails, the cart contents are put back.
    """
    address = validators.validate_shipping_address(shipping_address)

    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NoCartExists()
    if not cart.get("items"):
        raise EmptyCart()

    order = OrderSchema(
        user_id=user_id,
        items=copy.deepcopy(cart["items"]),
        total_amount=cart["total_amount"],
        shipping_address=address,
        status="pending",
    )

    cleared = db["cart"].update_one(
        version_filter(cart),
        {"$set": {"items": [], "total_amount": 0, "updated_at": now_utc()}, "$inc": {"version": 1}},
    )
    if cleared.matched_count == 0:
        logger.warning("Cart for user %s changed while placing order", user_id)
        raise ConflictError("Cart was modified concurrently, retry")

    try:
        order_id = create_document(db, "order", order)
    except PyMongoError:
        logger.exception("Order insert failed for user %s, restoring cart", user_id)
        restored = db["cart"].update_one(
            {"_id": cart["_id"], "version": cart.get("version", 0) + 1},
            {"$set": {"items": cart["items"], "total_amount": cart["total_amount"], "updated_at": now_utc()},
             "$inc": {"version": 1}},
        )
        if restored.matched_count == 0:
            logger.error("Could not restore cart %s after failed order insert", cart["_id"])
        raise UpstreamError("Failed to place order")

    logger.info("Order %s placed by %s for %s", order_id, user_id, order.total_amount)
    return db["order"].find_one({"_id": parse_object_id(order_id)})


def _scoped_query(principal: Principal, order_id: str) -> dict:
    query = {"_id": parse_object_id(order_id, "order")}
    if not principal.is_admin:
        query["user_id"] = principal.id
    return query


def attach_users(db: Database, orders: List[dict]) -> List[dict]:
    ids = {o["user_id"] for o in orders}
    users = {}
    if ids:
        oids = [ObjectId(i) for i in ids if ObjectId.is_valid(i)]
        for u in db["user"].find({"_id": {"$in": oids}}, {"name": 1, "email": 1}):
            users[str(u["_id"])] = {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
    return [{**o, "user": users.get(o["user_id"])} for o in orders]


def populate_orders(db: Database, orders: List[dict]) -> List[dict]:
    """Attach live products to order lines; the stored price snapshot is left as is."""
    return [{**o, "items": populate_lines(db, o.get("items", []))} for o in orders]


def get_order(db: Database, principal: Principal, order_id: str) -> dict:
    # Orders of other users are reported as missing, not forbidden.
    order = db["order"].find_one(_scoped_query(principal, order_id))
    if not order:
        raise NotFoundError("Order not found")
    if principal.is_admin:
        order = attach_users(db, [order])[0]
    return populate_orders(db, [order])[0]


def list_user_orders(db: Database, user_id: str) -> List[dict]:
    return populate_orders(db, get_documents(db, "order", {"user_id": user_id}))


def list_all_orders(db: Database) -> List[dict]:
    return populate_orders(db, attach_users(db, get_documents(db, "order")))


def cancel_order(db: Database, principal: Principal, order_id: str) -> dict:
    order = db["order"].find_one(_scoped_query(principal, order_id))
    if not order:
        raise NotFoundError("Order not found")
    if order["status"] in CLOSED_FOR_CANCELLATION:
        raise CancellationWindowClosed()
    if order["status"] == "cancelled":
        raise AlreadyCancelled()

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": order["status"]},
        {"$set": {"status": "cancelled", "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise ConflictError("Order status changed concurrently, retry")
    logger.info("Order %s cancelled by %s (was %s)", order_id, principal.id, order["status"])
    return updated


def admin_update_order_status(db: Database, order_id: str, status: Optional[str]) -> dict:
    """Overwrite the status with any valid value.

    Non-forward moves (e.g. delivered -> pending) are allowed as an admin
    override and only logged.
    """
    validators.validate_order_status(status)
    oid = parse_object_id(order_id, "order")
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise NotFoundError("Order not found")

    current = order["status"]
    if status != current and not is_forward_transition(current, status):
        logger.warning("Admin override on order %s: %s -> %s", order_id, current, status)

    updated = db["order"].find_one_and_update(
        {"_id": oid},
        {"$set": {"status": status, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFoundError("Order not found")
    logger.info("Order %s status %s -> %s", order_id, current, status)
    return populate_orders(db, attach_users(db, [updated]))[0]


# Request models
class PlaceOrderIn(CamelModel):
    shipping_address: Optional[str] = None


class OrderStatusIn(CamelModel):
    status: Optional[str] = None


# Routes
@router.post("/order/place", status_code=201)
def place_order_route(data: PlaceOrderIn, user: Principal = Depends(require_user), db: Database = Depends(get_db)):
    order = place_order(db, user.id, data.shipping_address)
    return {"success": True, "message": "Order placed successfully", "order": serialize_doc(order)}


@router.get("/orders")
def list_orders_route(user: Principal = Depends(require_user), db: Database = Depends(get_db)):
    return {"success": True, "orders": [serialize_doc(o) for o in list_user_orders(db, user.id)]}


@router.get("/order/{order_id}")
def get_order_route(order_id: str, principal: Principal = Depends(current_principal), db: Database = Depends(get_db)):
    return {"success": True, "order": serialize_doc(get_order(db, principal, order_id))}


@router.put("/order/cancel/{order_id}")
def cancel_order_route(order_id: str, principal: Principal = Depends(current_principal),
                       db: Database = Depends(get_db)):
    order = cancel_order(db, principal, order_id)
    return {"success": True, "message": "Order cancelled successfully", "order": serialize_doc(order)}


@router.get("/admin/orders")
def admin_list_orders_route(admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "orders": [serialize_doc(o) for o in list_all_orders(db)]}


@router.put("/admin/order/status/{order_id}")
def admin_update_status_route(order_id: str, data: OrderStatusIn, admin: Principal = Depends(require_admin),
                              db: Database = Depends(get_db)):
    order = admin_update_order_status(db, order_id, data.status)
    return {"success": True, "message": "Order status updated", "order": serialize_doc(order)}
