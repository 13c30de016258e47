import logging
from datetime import datetime, timezone
from typing import Tuple

from bson import ObjectId
from pymongo.database import Database

logger = logging.getLogger(__name__)


def recompute(db: Database, product_id: ObjectId) -> Tuple[float, int]:
    """
    Recalculate a product's rating and num_reviews from its reviews.

    Called by the review write path after every create, rating change and
    delete. Touches only the product document; a product that has since been
    deleted is left alone. Store errors propagate to the caller, so a failed
    recompute leaves the cached aggregate stale until the next review write.
    """
    stats = list(db["review"].aggregate([
        {"$match": {"product": product_id}},
        {"$group": {
            "_id": "$product",
            "average_rating": {"$avg": "$rating"},
            "number_of_reviews": {"$sum": 1},
        }},
    ]))

    if stats:
        rating = float(stats[0]["average_rating"])
        num_reviews = int(stats[0]["number_of_reviews"])
    else:
        rating, num_reviews = 0.0, 0

    result = db["product"].update_one(
        {"_id": product_id},
        {"$set": {"rating": rating, "num_reviews": num_reviews, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.matched_count == 0:
        logger.info("Skipped rating update for missing product %s", product_id)
    else:
        logger.debug("Product %s rating=%.2f num_reviews=%d", product_id, rating, num_reviews)
    return rating, num_reviews
