"""
Catalog routes: product CRUD, paginated listing and search.
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, now_utc, parse_object_id, serialize_doc
from errors import NotFoundError, ValidationError
from schemas import CamelModel, Product as ProductSchema
from security import Principal, require_admin
import validators

logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])

SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "name": "name",
    "salePrice": "sale_price",
    "costPrice": "cost_price",
    "stock": "stock",
}


def get_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def create_product(db: Database, seller_id: str, payload: Dict[str, Any]) -> dict:
    validators.validate_product(payload)
    product = ProductSchema(seller_id=seller_id, **payload)
    product_id = create_document(db, "product", product)
    logger.info("Product %s created by %s", product_id, seller_id)
    return db["product"].find_one({"_id": parse_object_id(product_id)})


def update_product(db: Database, product_id: str, changes: Dict[str, Any]) -> dict:
    existing = get_product(db, product_id)
    validators.validate_product_update(changes, existing)
    updated = db["product"].find_one_and_update(
        {"_id": existing["_id"]},
        {"$set": {**changes, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("Product not found")
    logger.info("Product %s updated: %s", product_id, sorted(changes))
    return updated


def delete_product(db: Database, product_id: str) -> dict:
    deleted = db["product"].find_one_and_delete({"_id": parse_object_id(product_id, "product")})
    if not deleted:
        raise NotFoundError("Product not found")
    logger.info("Product %s deleted", product_id)
    return deleted


def list_products(db: Database, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    if page < 1:
        raise ValidationError("Page must be at least 1", field="page")
    if limit < 1:
        raise ValidationError("Limit must be at least 1", field="limit")
    collection = db["product"]
    total = collection.count_documents({})
    cursor = collection.find({}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": math.ceil(total / limit),
        "products": list(cursor),
    }


def search_products(db: Database, name: Optional[str] = None, category: Optional[str] = None,
                    min_price: Optional[float] = None, max_price: Optional[float] = None,
                    sort_by: str = "createdAt", order: str = "desc") -> List[dict]:
    query: Dict[str, Any] = {}
    if name:
        query["name"] = {"$regex": re.escape(name), "$options": "i"}
    if category:
        query["category"] = category
    price_filter: Dict[str, Any] = {}
    if min_price is not None:
        price_filter["$gte"] = float(min_price)
    if max_price is not None:
        price_filter["$lte"] = float(max_price)
    if price_filter:
        query["sale_price"] = price_filter

    if sort_by not in SORT_FIELDS:
        raise ValidationError(f"Cannot sort by {sort_by}", field="sortBy")
    if order not in ("asc", "desc"):
        raise ValidationError("Order must be asc or desc", field="order")
    direction = -1 if order == "desc" else 1
    return list(db["product"].find(query).sort(SORT_FIELDS[sort_by], direction))


# Request models
class ProductIn(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    cost_price: Optional[float] = None
    sale_price: Optional[float] = None
    category: Optional[str] = None
    stock: Optional[int] = None
    images: Optional[List[str]] = None


# Routes
@router.post("/product", status_code=201)
def create_product_route(data: ProductIn, admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    payload = data.model_dump(exclude_none=True)
    product = create_product(db, admin.id, payload)
    return {"success": True, "message": "Product created successfully", "product": serialize_doc(product)}


@router.get("/product/search")
def search_products_route(
    name: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(default=None, alias="minPrice"),
    max_price: Optional[float] = Query(default=None, alias="maxPrice"),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    order: str = "desc",
    db: Database = Depends(get_db),
):
    products = search_products(db, name, category, min_price, max_price, sort_by, order)
    return {"success": True, "products": [serialize_doc(p) for p in products]}


@router.get("/product")
def list_products_route(page: int = 1, limit: int = 20, db: Database = Depends(get_db)):
    result = list_products(db, page, limit)
    return {"success": True, **serialize_doc(result)}


@router.get("/product/{product_id}")
def get_product_route(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, "product": serialize_doc(get_product(db, product_id))}


@router.put("/product/{product_id}")
def update_product_route(product_id: str, data: ProductIn, admin: Principal = Depends(require_admin),
                         db: Database = Depends(get_db)):
    product = update_product(db, product_id, data.model_dump(exclude_none=True))
    return {"success": True, "message": "Product updated successfully", "product": serialize_doc(product)}


@router.delete("/product/{product_id}")
def delete_product_route(product_id: str, admin: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    product = delete_product(db, product_id)
    return {"success": True, "message": "Product deleted successfully", "product": serialize_doc(product)}
