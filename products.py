import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pymongo.database import Database

import config
from auth import authorize
from database import create_document, get_db, parse_object_id, serialize
from errors import InvalidOperation, NotFound
from hierarchy import find_category
from query_builder import build_product_query, run_query
from reviews import present_reviews
from schemas import Product, ProductUpdate, StockUpdate
from uploads import LocalImageStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

STOCK_OPERATIONS = ("add", "subtract", "set")


# Helpers

def find_product(db: Database, product_id: Any) -> dict:
    oid = parse_object_id(product_id, "Product")
    product = db["product"].find_one({"_id": oid})
    if product is None:
        raise NotFound("Product not found")
    return product


def apply_discount(price: float, discount: Optional[dict]) -> Optional[dict]:
    if not discount:
        return discount
    discount = dict(discount)
    percentage = discount.get("percentage") or 0
    discount["discounted_price"] = round(price * (1 - percentage / 100), 2)
    return discount


def final_price(product: dict) -> Optional[float]:
    price = product.get("price")
    if price is None:
        return None
    percentage = (product.get("discount") or {}).get("percentage") or 0
    if percentage > 0:
        return round(price * (1 - percentage / 100), 2)
    return price


def apply_stock_operation(current: int, quantity: int, operation: str) -> int:
    if operation == "add":
        return current + quantity
    if operation == "subtract":
        return max(0, current - quantity)
    if operation == "set":
        return quantity
    raise InvalidOperation("Operation must be add, subtract, or set")


def present(db: Database, products: List[dict]) -> List[dict]:
    """Serialize products with their category reduced to id, name and slug."""
    category_ids = {p["category"] for p in products if isinstance(p.get("category"), ObjectId)}
    categories = {}
    if category_ids:
        for c in db["category"].find({"_id": {"$in": list(category_ids)}}, {"name": 1, "slug": 1}):
            categories[c["_id"]] = serialize(c)

    out = []
    for product in products:
        data = serialize(product)
        if "category" in product:
            data["category"] = categories.get(product["category"], data["category"])
        if "price" in product:
            data["final_price"] = final_price(product)
        out.append(data)
    return out


# Routes

@router.get("")
def list_products(request: Request, db: Database = Depends(get_db)):
    query = build_product_query(request.query_params)
    products, _, pagination = run_query(db["product"], query)
    return {
        "success": True,
        "count": len(products),
        "pagination": pagination,
        "data": present(db, products),
    }


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = find_product(db, product_id)
    data = present(db, [product])[0]
    reviews = db["review"].find({"product": product["_id"]}).sort("created_at", -1)
    data["reviews"] = present_reviews(db, list(reviews))
    return {"success": True, "data": data}


@router.post("", status_code=201)
def create_product(payload: Product, db: Database = Depends(get_db), user: dict = Depends(authorize("admin"))):
    category = find_category(db, payload.category)

    doc = payload.model_dump(exclude_none=True)
    doc["category"] = category["_id"]
    doc["rating"] = 0
    doc["num_reviews"] = 0
    doc["created_by"] = user["_id"]
    if "discount" in doc:
        doc["discount"] = apply_discount(doc["price"], doc["discount"])

    pid = create_document(db, "product", doc)
    logger.info("Product %s created by %s", pid, user["_id"])
    product = db["product"].find_one({"_id": ObjectId(pid)})
    return {"success": True, "data": present(db, [product])[0]}


@router.put("/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db),
                   user: dict = Depends(authorize("admin"))):
    product = find_product(db, product_id)

    changes: Dict[str, Any] = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if "category" in changes:
        changes["category"] = find_category(db, changes["category"])["_id"]
    if "price" in changes or "discount" in changes:
        price = changes.get("price", product["price"])
        discount = changes.get("discount", product.get("discount"))
        if discount:
            changes["discount"] = apply_discount(price, discount)

    changes["updated_at"] = datetime.now(timezone.utc)
    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    product = db["product"].find_one({"_id": product["_id"]})
    return {"success": True, "data": present(db, [product])[0]}


@router.delete("/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), user: dict = Depends(authorize("admin")),
                   storage: LocalImageStorage = Depends(get_storage)):
    product = find_product(db, product_id)

    for image in product.get("images", []):
        storage.delete(image)

    # Reviews are kept; they still reference the deleted product id
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", product["_id"], user["_id"])
    return {"success": True, "data": {}}


@router.put("/{product_id}/images")
def upload_product_images(product_id: str, images: Optional[List[UploadFile]] = File(None),
                          alt: Optional[str] = Form(None), db: Database = Depends(get_db),
                          user: dict = Depends(authorize("admin")),
                          storage: LocalImageStorage = Depends(get_storage)):
    product = find_product(db, product_id)

    if not images:
        raise InvalidOperation("Please upload at least one image")
    if len(images) > config.MAX_UPLOAD_FILES:
        raise InvalidOperation(f"You can upload at most {config.MAX_UPLOAD_FILES} images")

    uploaded = [storage.save(image, "products", alt=alt or product["name"]) for image in images]

    db["product"].update_one(
        {"_id": product["_id"]},
        {"$push": {"images": {"$each": uploaded}}, "$set": {"updated_at": datetime.now(timezone.utc)}},
    )
    return {"success": True, "data": uploaded}


@router.put("/{product_id}/stock")
def update_stock(product_id: str, payload: StockUpdate, db: Database = Depends(get_db),
                 user: dict = Depends(authorize("admin"))):
    if payload.operation not in STOCK_OPERATIONS:
        raise InvalidOperation("Operation must be add, subtract, or set")

    product = find_product(db, product_id)
    stock = apply_stock_operation(product.get("stock", 0), payload.quantity, payload.operation)

    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"stock": stock, "updated_at": datetime.now(timezone.utc)}},
    )
    product = db["product"].find_one({"_id": product["_id"]})
    return {"success": True, "data": present(db, [product])[0]}
