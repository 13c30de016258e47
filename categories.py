import logging
import math
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from pymongo import ASCENDING
from pymongo.database import Database

import hierarchy
from auth import authorize
from database import get_db, get_documents, serialize
from errors import InvalidOperation, NotFound
from query_builder import parse_pagination, parse_sort
from schemas import Category, CategoryUpdate
from uploads import LocalImageStorage, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"])

CATEGORY_PRODUCT_FIELDS = {"name": 1, "price": 1, "images": 1, "rating": 1, "stock": 1}


@router.get("")
def list_categories(db: Database = Depends(get_db)):
    categories = get_documents(db, "category", {"is_active": True}, sort=[("name", ASCENDING)])
    return {"success": True, "count": len(categories), "data": serialize(categories)}


@router.get("/hierarchy/tree")
def get_category_tree(db: Database = Depends(get_db)):
    return {"success": True, "data": hierarchy.build_tree(db)}


@router.get("/slug/{slug}")
def get_category_by_slug(slug: str, db: Database = Depends(get_db)):
    category = db["category"].find_one({"slug": slug, "is_active": True})
    if category is None:
        raise NotFound("Category not found")
    return {"success": True, "data": serialize(category)}


@router.get("/{category_id}")
def get_category(category_id: str, request: Request, db: Database = Depends(get_db)):
    """Category with a page of its active products and its active subcategories."""
    category = hierarchy.find_category(db, category_id)
    page, limit = parse_pagination(request.query_params)
    product_filter = {"category": category["_id"], "is_active": True}

    total = db["product"].count_documents(product_filter)
    products = (
        db["product"].find(product_filter, CATEGORY_PRODUCT_FIELDS)
        .sort(parse_sort(request.query_params.get("sort")))
        .skip((page - 1) * limit)
        .limit(limit)
    )
    subcategories = db["category"].find({"parent_category": category["_id"], "is_active": True})

    return {
        "success": True,
        "data": {
            "category": serialize(category),
            "products": {
                "data": serialize(list(products)),
                "total": total,
                "page": page,
                "pages": math.ceil(total / limit),
            },
            "subcategories": serialize(list(subcategories)),
        },
    }


@router.post("", status_code=201)
def create_category(payload: Category, db: Database = Depends(get_db), user: dict = Depends(authorize("admin"))):
    category = hierarchy.create_category(db, payload)
    logger.info("Category %s created by %s", category["_id"], user["_id"])
    return {"success": True, "data": serialize(category)}


@router.put("/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, db: Database = Depends(get_db),
                    user: dict = Depends(authorize("admin"))):
    changes = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k == "parent_category"
    }
    category = hierarchy.update_category(db, category_id, changes)
    return {"success": True, "data": serialize(category)}


@router.delete("/{category_id}")
def delete_category(category_id: str, db: Database = Depends(get_db), user: dict = Depends(authorize("admin")),
                    storage: LocalImageStorage = Depends(get_storage)):
    category = hierarchy.delete_category(db, category_id)
    storage.delete(category.get("image"))
    logger.info("Category %s deleted by %s", category["_id"], user["_id"])
    return {"success": True, "data": {}}


@router.put("/{category_id}/image")
def upload_category_image(category_id: str, image: Optional[UploadFile] = File(None),
                          db: Database = Depends(get_db), user: dict = Depends(authorize("admin")),
                          storage: LocalImageStorage = Depends(get_storage)):
    category = hierarchy.find_category(db, category_id)
    if image is None:
        raise InvalidOperation("Please upload an image")

    descriptor = storage.save(image, "categories", alt=category["name"])
    db["category"].update_one(
        {"_id": category["_id"]},
        {"$set": {"image": descriptor, "updated_at": datetime.now(timezone.utc)}},
    )
    # the replaced file is no longer referenced
    storage.delete(category.get("image"))
    return {"success": True, "data": descriptor}
