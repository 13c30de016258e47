"""
Translate product listing query parameters into a MongoDB query.

Stages, always applied in this order:

1. field filters, with ``field[gt|gte|lt|lte|in]=value`` operators
2. ``search``: case-insensitive substring match on name, description, brand
3. ``select``: comma separated field projection
4. ``sort``: comma separated fields, ``-`` prefix for descending
5. ``page`` / ``limit`` pagination

Filter fields are checked against PRODUCT_FILTER_FIELDS and their values are
coerced to the stored type, so ``price[lt]=1000`` compares numbers.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection

import config
from errors import ValidationFailed

RESERVED_PARAMS = {"select", "sort", "page", "limit", "search"}
OPERATORS = {"gt", "gte", "lt", "lte", "in"}
SEARCH_FIELDS = ("name", "description", "brand")
DEFAULT_SORT = [("created_at", DESCENDING)]

_FILTER_KEY = re.compile(r"^(?P<field>[A-Za-z_][\w.]*)(?:\[(?P<op>\w+)\])?$")


def _to_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValueError(value)


def _to_object_id(value: str) -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValueError(value)
    return ObjectId(value)


PRODUCT_FILTER_FIELDS: Dict[str, Callable[[str], Any]] = {
    "name": str,
    "description": str,
    "brand": str,
    "sku": str,
    "price": float,
    "stock": int,
    "rating": float,
    "num_reviews": int,
    "category": _to_object_id,
    "is_active": _to_bool,
    "discount.percentage": float,
    "discount.discounted_price": float,
    "created_at": datetime.fromisoformat,
    "updated_at": datetime.fromisoformat,
}

PRODUCT_FIELDS = set(PRODUCT_FILTER_FIELDS) | {"images", "features", "specifications", "discount", "created_by"}


@dataclass
class ProductQuery:
    filter: Dict[str, Any] = field(default_factory=dict)
    projection: Optional[Dict[str, int]] = None
    sort: List[Tuple[str, int]] = field(default_factory=lambda: list(DEFAULT_SORT))
    page: int = 1
    limit: int = config.DEFAULT_PAGE_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def _coerce(field_name: str, raw: str) -> Any:
    try:
        return PRODUCT_FILTER_FIELDS[field_name](raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"Invalid value '{raw}' for filter '{field_name}'")


def parse_filters(params: Mapping[str, str]) -> Dict[str, Any]:
    conditions: Dict[str, Dict[str, Any]] = {}
    for key, raw in params.items():
        if key in RESERVED_PARAMS:
            continue
        match = _FILTER_KEY.match(key)
        if not match or match.group("field") not in PRODUCT_FILTER_FIELDS:
            raise ValidationFailed(f"Unknown filter field '{key}'")
        name, op = match.group("field"), match.group("op")
        if op is None:
            conditions.setdefault(name, {})["$eq"] = _coerce(name, raw)
        elif op in OPERATORS:
            if op == "in":
                value = [_coerce(name, part.strip()) for part in raw.split(",") if part.strip()]
            else:
                value = _coerce(name, raw)
            conditions.setdefault(name, {})["$" + op] = value
        else:
            raise ValidationFailed(f"Unknown filter operator '{op}'")

    # plain equality stays a literal value
    return {
        name: cond["$eq"] if list(cond) == ["$eq"] else cond
        for name, cond in conditions.items()
    }


def search_clause(text: str) -> Dict[str, Any]:
    pattern = re.escape(text)
    return {"$or": [{name: {"$regex": pattern, "$options": "i"}} for name in SEARCH_FIELDS]}


def _field_list(raw: str, param: str) -> List[str]:
    names = [part.strip() for part in raw.split(",") if part.strip()]
    for name in names:
        if name.lstrip("-") not in PRODUCT_FIELDS:
            raise ValidationFailed(f"Unknown field '{name.lstrip('-')}' in {param}")
    return names


def parse_projection(raw: Optional[str]) -> Optional[Dict[str, int]]:
    """``select=name,price`` keeps those fields; ``select=-brand`` drops brand."""
    if not raw:
        return None
    names = _field_list(raw, "select")
    excluded = [name for name in names if name.startswith("-")]
    if excluded and len(excluded) != len(names):
        raise ValidationFailed("select cannot mix included and excluded fields")
    if excluded:
        return {name[1:]: 0 for name in excluded}
    return {name: 1 for name in names} or None


def parse_sort(raw: Optional[str]) -> List[Tuple[str, int]]:
    if not raw:
        return list(DEFAULT_SORT)
    sort = [
        (name[1:], DESCENDING) if name.startswith("-") else (name, ASCENDING)
        for name in _field_list(raw, "sort")
    ]
    return sort or list(DEFAULT_SORT)


def _positive_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def parse_pagination(params: Mapping[str, str], default_limit: int = config.DEFAULT_PAGE_LIMIT) -> Tuple[int, int]:
    page = _positive_int(params.get("page"), 1)
    limit = min(_positive_int(params.get("limit"), default_limit), config.MAX_PAGE_LIMIT)
    return page, limit


def pagination_links(page: int, limit: int, total: int) -> Dict[str, Dict[str, int]]:
    pagination = {}
    if page * limit < total:
        pagination["next"] = {"page": page + 1, "limit": limit}
    if (page - 1) * limit > 0:
        pagination["prev"] = {"page": page - 1, "limit": limit}
    return pagination


def build_product_query(params: Mapping[str, str]) -> ProductQuery:
    query_filter = parse_filters(params)

    search = (params.get("search") or "").strip()
    if search:
        if query_filter:
            query_filter = {"$and": [query_filter, search_clause(search)]}
        else:
            query_filter = search_clause(search)

    page, limit = parse_pagination(params)
    return ProductQuery(
        filter=query_filter,
        projection=parse_projection(params.get("select")),
        sort=parse_sort(params.get("sort")),
        page=page,
        limit=limit,
    )


def run_query(collection: Collection, query: ProductQuery) -> Tuple[List[dict], int, Dict[str, Dict[str, int]]]:
    """Return (page of documents, total matches, pagination links)."""
    total = collection.count_documents(query.filter)
    cursor = (
        collection.find(query.filter, query.projection)
        .sort(query.sort)
        .skip(query.skip)
        .limit(query.limit)
    )
    return list(cursor), total, pagination_links(query.page, query.limit, total)
