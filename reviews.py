import logging
from datetime import datetime, timezone
from typing import Any, List

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Request
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import ratings
from auth import get_current_user
from database import create_document, get_db, parse_object_id, serialize
from errors import InvalidOperation, NotFound
from query_builder import pagination_links, parse_pagination
from schemas import Review, ReviewUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])

# kind -> (voter list, counter, verb, past tense); voter lists are never returned
VOTES = {
    "helpful": ("helpful_voters", "helpful_votes", "vote on", "voted on"),
    "report": ("reporters", "report_count", "report", "reported"),
}
VOTER_FIELDS = tuple(voters for voters, _, _, _ in VOTES.values())


def present_reviews(db: Database, reviews: List[dict]) -> List[dict]:
    """Serialize reviews with the author reduced to id and name."""
    user_ids = list({r["user"] for r in reviews})
    users = {}
    if user_ids:
        for u in db["user"].find({"_id": {"$in": user_ids}}, {"name": 1}):
            users[u["_id"]] = serialize(u)
    out = []
    for review in reviews:
        data = serialize({k: v for k, v in review.items() if k not in VOTER_FIELDS})
        data["user"] = users.get(review["user"], data["user"])
        out.append(data)
    return out


def _product_exists(db: Database, product_id: Any) -> ObjectId:
    oid = parse_object_id(product_id, "Product")
    if db["product"].find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFound("Product not found")
    return oid


def find_review(db: Database, review_id: Any) -> dict:
    review = db["review"].find_one({"_id": parse_object_id(review_id, "Review")})
    if review is None:
        raise NotFound("Review not found")
    return review


@router.get("/product/{product_id}")
def get_product_reviews(product_id: str, request: Request, db: Database = Depends(get_db)):
    oid = _product_exists(db, product_id)
    page, limit = parse_pagination(request.query_params)

    total = db["review"].count_documents({"product": oid})
    reviews = (
        db["review"].find({"product": oid})
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    data = present_reviews(db, list(reviews))
    return {
        "success": True,
        "count": len(data),
        "pagination": pagination_links(page, limit, total),
        "data": data,
    }


@router.post("/product/{product_id}", status_code=201)
def add_review(product_id: str, payload: Review, db: Database = Depends(get_db),
               user: dict = Depends(get_current_user)):
    oid = _product_exists(db, product_id)

    doc = payload.model_dump(exclude_none=True)
    doc.update({
        "product": oid, "user": user["_id"],
        "helpful_votes": 0, "helpful_voters": [], "report_count": 0, "reporters": [],
    })
    try:
        rid = create_document(db, "review", doc)
    except DuplicateKeyError:
        raise InvalidOperation("You have already reviewed this product")

    ratings.recompute(db, oid)
    review = db["review"].find_one({"_id": ObjectId(rid)})
    return {"success": True, "data": present_reviews(db, [review])[0]}


@router.put("/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, db: Database = Depends(get_db),
                  user: dict = Depends(get_current_user)):
    review = find_review(db, review_id)
    if review["user"] != user["_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to update this review")

    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    changes["updated_at"] = datetime.now(timezone.utc)
    db["review"].update_one({"_id": review["_id"]}, {"$set": changes})

    if "rating" in changes and changes["rating"] != review["rating"]:
        ratings.recompute(db, review["product"])

    review = db["review"].find_one({"_id": review["_id"]})
    return {"success": True, "data": present_reviews(db, [review])[0]}


@router.delete("/{review_id}")
def delete_review(review_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    review = find_review(db, review_id)
    if review["user"] != user["_id"] and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Not authorized to delete this review")

    db["review"].delete_one({"_id": review["_id"]})
    ratings.recompute(db, review["product"])
    logger.info("Review %s deleted by %s", review["_id"], user["_id"])
    return {"success": True, "data": {}}


def _record_vote(db: Database, review_id: str, user: dict, kind: str) -> dict:
    """Count one vote per user; authors cannot vote on their own review."""
    voters, counter, verb, done = VOTES[kind]
    review = find_review(db, review_id)
    if review["user"] == user["_id"]:
        raise InvalidOperation(f"You cannot {verb} your own review")

    result = db["review"].update_one(
        {"_id": review["_id"], voters: {"$ne": user["_id"]}},
        {"$addToSet": {voters: user["_id"]}, "$inc": {counter: 1}},
    )
    if result.modified_count == 0:
        raise InvalidOperation(f"You have already {done} this review")
    return db["review"].find_one({"_id": review["_id"]})


@router.put("/{review_id}/helpful")
def mark_helpful(review_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    review = _record_vote(db, review_id, user, "helpful")
    return {"success": True, "data": present_reviews(db, [review])[0]}


@router.put("/{review_id}/report")
def report_review(review_id: str, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    review = _record_vote(db, review_id, user, "report")
    logger.info("Review %s reported by %s", review["_id"], user["_id"])
    return {"success": True, "data": present_reviews(db, [review])[0]}
