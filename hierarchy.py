"""
Category hierarchy: parent/child rules and the tree projection.

Categories reference their parent through ``parent_category``. The relation
must stay a forest, so reparenting is refused when the new parent is the
category itself or one of its descendants, and deletion is refused while
products or subcategories still point at the category.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING
from pymongo.database import Database
from slugify import slugify

from database import create_document, parse_object_id
from errors import Conflict, InvalidOperation, NotFound
from schemas import Category

logger = logging.getLogger(__name__)


def find_category(db: Database, category_id: Any) -> dict:
    oid = parse_object_id(category_id, "Category")
    category = db["category"].find_one({"_id": oid})
    if category is None:
        raise NotFound("Category not found")
    return category


def _resolve_parent(db: Database, parent_id: Any) -> ObjectId:
    oid = parse_object_id(parent_id, "Parent category")
    if db["category"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFound("Parent category not found")
    return oid


def _is_descendant(db: Database, candidate: ObjectId, category_id: ObjectId) -> bool:
    """Walk up from candidate; True when category_id is among its ancestors (or is candidate)."""
    steps = db["category"].count_documents({})
    current: Optional[ObjectId] = candidate
    seen = set()
    for _ in range(steps + 1):
        if current is None:
            return False
        if current == category_id:
            return True
        if current in seen:
            # stored loop that does not pass through category_id
            return False
        seen.add(current)
        doc = db["category"].find_one({"_id": current}, {"parent_category": 1})
        if doc is None:
            return False
        current = doc.get("parent_category")
    return False


def create_category(db: Database, payload: Category) -> dict:
    doc = payload.model_dump(exclude_none=True)
    doc.pop("parent_category", None)
    if payload.parent_category:
        doc["parent_category"] = _resolve_parent(db, payload.parent_category)
    doc["slug"] = slugify(payload.name)
    cid = create_document(db, "category", doc)
    return db["category"].find_one({"_id": ObjectId(cid)})


def update_category(db: Database, category_id: Any, changes: Dict[str, Any]) -> dict:
    """
    Apply a partial update. ``changes`` holds only the fields the caller set;
    an explicit ``parent_category: None`` moves the category to the root.
    """
    category = find_category(db, category_id)
    oid = category["_id"]
    update = dict(changes)

    if "parent_category" in update:
        parent = update["parent_category"]
        if parent is None:
            update["parent_category"] = None
        else:
            if str(parent) == str(oid):
                raise InvalidOperation("Category cannot be its own parent")
            parent_oid = _resolve_parent(db, parent)
            if _is_descendant(db, parent_oid, oid):
                raise InvalidOperation("Category cannot be moved under one of its own subcategories")
            update["parent_category"] = parent_oid

    if update.get("name"):
        update["slug"] = slugify(update["name"])

    update["updated_at"] = datetime.now(timezone.utc)
    db["category"].update_one({"_id": oid}, {"$set": update})
    return db["category"].find_one({"_id": oid})


def delete_category(db: Database, category_id: Any) -> dict:
    """Delete a category with no dependents and return the removed document."""
    category = find_category(db, category_id)
    oid = category["_id"]

    product_count = db["product"].count_documents({"category": oid})
    if product_count > 0:
        logger.info("Refused to delete category %s: %d products", oid, product_count)
        raise Conflict(f"Cannot delete category with {product_count} products. Move products first.")

    subcategory_count = db["category"].count_documents({"parent_category": oid})
    if subcategory_count > 0:
        logger.info("Refused to delete category %s: %d subcategories", oid, subcategory_count)
        raise Conflict(
            f"Cannot delete category with {subcategory_count} subcategories. Delete subcategories first."
        )

    db["category"].delete_one({"_id": oid})
    return category


def _tree_node(category: dict) -> dict:
    return {
        "id": str(category["_id"]),
        "name": category["name"],
        "slug": category.get("slug"),
        "description": category.get("description"),
        "image": category.get("image"),
        "children": [],
    }


def build_tree(db: Database) -> List[dict]:
    """
    Nest the active categories under their parents, starting from the roots.

    Only nodes reachable from a parentless root appear, so members of a
    stored cycle (and children of inactive categories) are left out. The
    nesting uses an explicit stack, so depth is not bounded by recursion.
    """
    categories = db["category"].find({"is_active": True}).sort("name", ASCENDING)
    by_parent = defaultdict(list)
    for category in categories:
        by_parent[category.get("parent_category")].append(category)

    roots = [_tree_node(category) for category in by_parent.get(None, [])]
    pending = list(zip(by_parent.get(None, []), roots))
    while pending:
        category, node = pending.pop()
        for child in by_parent.get(category["_id"], []):
            child_node = _tree_node(child)
            node["children"].append(child_node)
            pending.append((child, child_node))
    return roots
