"""
Catalog query builder and storefront product routes.

A listing request names a category and a path segment. The segment is either
"all", a literal the category knows (e.g. "lab", "womens"), or a
"<dimension>-<value>" shorthand such as "metal-rose-gold" or "shape-round".
Comma separated query parameters for the same dimension replace whatever the
segment implied.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from pymongo.errors import PyMongoError

import schemas
from database import get_db, serialize_doc, to_object_id
from errors import ExternalServiceError, NotFoundError, ValidationError
from schemas import MetalColor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

DEFAULT_LIMIT = 12
MAX_LIMIT = 100

NON_GOLD_METALS = {MetalColor.PLATINUM.value, MetalColor.PALLADIUM.value}


# ---------------------- Segment value parsing ----------------------

def title_words(value: str) -> str:
    """'nature-inspired' -> 'Nature Inspired'"""
    return " ".join(word[:1].upper() + word[1:] for word in value.split("-") if word)


def upper_value(value: str) -> str:
    return value.upper()


def metal_color(value: str) -> str:
    """'rose-gold' and 'rose' -> 'Rose Gold'; 'platinum' -> 'Platinum'."""
    if value in ("two-tone", "two-tone-gold"):
        return MetalColor.TWO_TONE_GOLD.value
    color = title_words(value)
    if "Gold" in color.split() or color in NON_GOLD_METALS:
        return color
    return f"{color} Gold"


@dataclass(frozen=True)
class SegmentRule:
    prefix: str
    field: str
    parse: Callable[[str], Any] = title_words


@dataclass(frozen=True)
class CategorySpec:
    slug: str
    label: str
    collection: str
    schema: Type[BaseModel]
    visibility_field: str
    sort_options: Mapping[str, List[Tuple[str, int]]]
    price_mode: str = "dual"  # dual | single | metal
    price_field: str = "price"
    literal_segments: Mapping[str, Dict[str, Any]] = field(default_factory=dict)
    segment_rules: Tuple[SegmentRule, ...] = ()
    fallback_field: Optional[str] = None
    list_params: Mapping[str, str] = field(default_factory=dict)
    range_params: Tuple[Tuple[str, str, str], ...] = ()
    search_field: Optional[str] = None
    finish_param: Optional[str] = None
    projection: Tuple[str, ...] = ()


DUAL_PRICE_SORTS = {
    "price-asc": [("salePrice", 1), ("price", 1)],
    "price-desc": [("salePrice", -1), ("price", -1)],
    "newest": [("createdAt", -1)],
}

STONE_SORTS = {
    **DUAL_PRICE_SORTS,
    "carat-asc": [("carat", 1)],
    "carat-desc": [("carat", -1)],
}

NAMED_SORTS = {
    **DUAL_PRICE_SORTS,
    "name-asc": [("name", 1)],
    "name-desc": [("name", -1)],
}

BASE_PRICE_SORTS = {
    "price-asc": [("basePrice", 1)],
    "price-desc": [("basePrice", -1)],
    "newest": [("createdAt", -1)],
}

RING_PROJECTION = (
    "slug", "title", "SKU", "basePrice", "metalOptions", "metalColorImages",
    "media", "style", "type",
)
FINE_JEWELRY_PROJECTION = (
    "slug", "name", "sku", "price", "salePrice", "type", "metal", "style",
    "images", "isAvailable",
)
FINE_JEWELRY_RULES = (
    SegmentRule("type-", "type"),
    SegmentRule("metal-", "metal"),
    SegmentRule("style-", "style"),
)
FINE_JEWELRY_PARAMS = {"types": "type", "metals": "metal", "styles": "style"}


CATALOG: Dict[str, CategorySpec] = {
    spec.slug: spec for spec in (
        CategorySpec(
            slug="diamond",
            label="diamonds",
            collection="diamond",
            schema=schemas.Diamond,
            visibility_field="isActive",
            sort_options=STONE_SORTS,
            literal_segments={"natural": {"type": "natural"}, "lab": {"type": "lab"}},
            segment_rules=(
                SegmentRule("shape-", "shape"),
                SegmentRule("color-", "color", upper_value),
                SegmentRule("clarity-", "clarity", upper_value),
                SegmentRule("fancy-", "fancyColor"),
            ),
            list_params={
                "shapes": "shape", "colors": "color", "clarities": "clarity",
                "cuts": "cut", "types": "type", "polish": "polish",
                "symmetry": "symmetry", "fluorescence": "fluorescence",
            },
            range_params=(("carat", "minCarat", "maxCarat"),),
            projection=(
                "slug", "title", "SKU", "price", "salePrice", "shape", "carat",
                "color", "clarity", "cut", "polish", "symmetry",
                "fluorescence", "type", "media", "certificate",
            ),
        ),
        CategorySpec(
            slug="gemstone",
            label="gemstones",
            collection="gemstone",
            schema=schemas.Gemstone,
            visibility_field="isAvailable",
            sort_options=STONE_SORTS,
            literal_segments={"natural": {"source": "natural"}, "lab": {"source": "lab"}},
            segment_rules=(
                SegmentRule("type-", "type"),
                SegmentRule("shape-", "shape"),
                SegmentRule("color-", "color"),
            ),
            # "ruby", "blue-sapphire" and friends name the gemstone type
            fallback_field="type",
            list_params={
                "types": "type", "shapes": "shape", "colors": "color",
                "clarities": "clarity", "cuts": "cut", "sources": "source",
                "origins": "origin", "treatments": "treatment",
            },
            range_params=(("carat", "minCarat", "maxCarat"),),
            projection=(
                "slug", "sku", "type", "source", "carat", "shape", "color",
                "clarity", "cut", "origin", "treatment", "price", "salePrice",
                "media", "isAvailable",
            ),
        ),
        CategorySpec(
            slug="settings",
            label="settings",
            collection="setting",
            schema=schemas.Setting,
            visibility_field="isActive",
            sort_options={**BASE_PRICE_SORTS, "popular": [("isFeatured", -1), ("basePrice", 1)]},
            price_mode="single",
            price_field="basePrice",
            segment_rules=(
                SegmentRule("style-", "style"),
                SegmentRule("metal-", "metalOptions.color", metal_color),
                SegmentRule("type-", "type"),
                SegmentRule("stone-shape-", "compatibleStoneShapes"),
            ),
            list_params={
                "styles": "style", "types": "type",
                "metalColors": "metalOptions.color",
                "stoneShapes": "compatibleStoneShapes",
            },
            projection=RING_PROJECTION + (
                "description", "isFeatured", "canAcceptStone",
                "compatibleStoneShapes", "settingHeight", "bandWidth", "createdAt",
            ),
        ),
        CategorySpec(
            slug="wedding",
            label="wedding rings",
            collection="weddingring",
            schema=schemas.WeddingRing,
            visibility_field="isActive",
            sort_options={
                "price-asc": [("metalOptions.price", 1)],
                "price-desc": [("metalOptions.price", -1)],
                "newest": [("createdAt", -1)],
            },
            price_mode="metal",
            literal_segments={
                "womens": {"subcategory": "Women's Wedding Rings"},
                "women-s-wedding-rings": {"subcategory": "Women's Wedding Rings"},
                "mens": {"subcategory": "Men's Wedding Rings"},
                "men-s-wedding-rings": {"subcategory": "Men's Wedding Rings"},
                "matching-sets": {"subcategory": "His & Her Matching Sets"},
            },
            segment_rules=(
                SegmentRule("metal-", "metalOptions.color", metal_color),
                SegmentRule("style-", "style"),
            ),
            list_params={
                "subcategories": "subcategory", "styles": "style",
                "types": "type", "metalColors": "metalOptions.color",
            },
            finish_param="finishTypes",
            projection=RING_PROJECTION + ("subcategory",),
        ),
        CategorySpec(
            slug="engagement",
            label="engagement rings",
            collection="engagementring",
            schema=schemas.EngagementRing,
            visibility_field="isActive",
            sort_options=BASE_PRICE_SORTS,
            price_mode="single",
            price_field="basePrice",
            segment_rules=(
                SegmentRule("metal-", "metalOptions.color", metal_color),
                SegmentRule("style-", "style"),
            ),
            fallback_field="type",
            list_params={"styles": "style", "metalColors": "metalOptions.color", "types": "type"},
            projection=RING_PROJECTION + ("main_stone",),
        ),
        CategorySpec(
            slug="earring",
            label="earrings",
            collection="earring",
            schema=schemas.Earring,
            visibility_field="isAvailable",
            sort_options=NAMED_SORTS,
            segment_rules=FINE_JEWELRY_RULES + (SegmentRule("back-", "backType"),),
            list_params={**FINE_JEWELRY_PARAMS, "backTypes": "backType"},
            search_field="name",
            projection=FINE_JEWELRY_PROJECTION + ("backType",),
        ),
        CategorySpec(
            slug="mens-jewelry",
            label="men's jewelry",
            collection="mensjewelry",
            schema=schemas.MensJewelry,
            visibility_field="isAvailable",
            sort_options=NAMED_SORTS,
            segment_rules=FINE_JEWELRY_RULES + (SegmentRule("finish-", "finish"),),
            list_params={**FINE_JEWELRY_PARAMS, "finishes": "finish", "sizes": "size"},
            range_params=(("length", "minLength", "maxLength"), ("width", "minWidth", "maxWidth")),
            search_field="name",
            projection=FINE_JEWELRY_PROJECTION + ("finish", "size", "length", "width"),
        ),
        CategorySpec(
            slug="bracelet",
            label="bracelets",
            collection="bracelet",
            schema=schemas.Bracelet,
            visibility_field="isAvailable",
            sort_options=NAMED_SORTS,
            segment_rules=FINE_JEWELRY_RULES,
            list_params=FINE_JEWELRY_PARAMS,
            range_params=(("length", "minLength", "maxLength"),),
            search_field="name",
            projection=FINE_JEWELRY_PROJECTION + ("length",),
        ),
        CategorySpec(
            slug="necklace",
            label="necklaces",
            collection="necklace",
            schema=schemas.Necklace,
            visibility_field="isAvailable",
            sort_options=NAMED_SORTS,
            segment_rules=FINE_JEWELRY_RULES,
            list_params=FINE_JEWELRY_PARAMS,
            range_params=(("length", "minLength", "maxLength"),),
            search_field="name",
            projection=FINE_JEWELRY_PROJECTION + ("length",),
        ),
    )
}


def get_category(slug: str) -> CategorySpec:
    spec = CATALOG.get(slug)
    if spec is None:
        raise NotFoundError(f"Unknown product category: {slug}")
    return spec


# ---------------------- Query building ----------------------

@dataclass
class CatalogQuery:
    filter: Dict[str, Any]
    sort: List[Tuple[str, int]]
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _number(params: Mapping[str, str], name: str) -> Optional[float]:
    raw = params.get(name)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"Invalid number for {name}", [{"field": name, "message": "must be a number"}])


def _int(params: Mapping[str, str], name: str, default: int, minimum: int = 1, maximum: Optional[int] = None) -> int:
    raw = params.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"Invalid integer for {name}", [{"field": name, "message": "must be an integer"}])
    if value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}", [{"field": name, "message": f"must be >= {minimum}"}])
    if maximum is not None:
        value = min(value, maximum)
    return value


def _range(low: Optional[float], high: Optional[float]) -> Dict[str, float]:
    condition = {}
    if low is not None:
        condition["$gte"] = low
    if high is not None:
        condition["$lte"] = high
    return condition


def segment_conditions(spec: CategorySpec, segment: str) -> Dict[str, Any]:
    if not segment or segment == "all":
        return {}
    if segment in spec.literal_segments:
        return dict(spec.literal_segments[segment])
    # longest prefix first so "stone-shape-" wins over "shape-"
    for rule in sorted(spec.segment_rules, key=lambda r: len(r.prefix), reverse=True):
        if segment.startswith(rule.prefix):
            value = segment[len(rule.prefix):]
            return {rule.field: rule.parse(value)} if value else {}
    if spec.fallback_field:
        return {spec.fallback_field: title_words(segment)}
    return {}


def build_filter(spec: CategorySpec, segment: str, params: Mapping[str, str]) -> Dict[str, Any]:
    conditions: Dict[str, Any] = {spec.visibility_field: True}
    conditions.update(segment_conditions(spec, segment))
    or_groups: List[List[Dict[str, Any]]] = []

    for param, field_name in spec.list_params.items():
        values = split_list(params.get(param))
        if values:
            conditions[field_name] = {"$in": values}

    if spec.finish_param:
        finishes = split_list(params.get(spec.finish_param))
        if "Polished" in finishes:
            # unset finish means polished
            or_groups.append([
                {"metalOptions.finish_type": {"$in": finishes}},
                {"metalOptions.finish_type": {"$exists": False}},
                {"metalOptions.finish_type": None},
            ])
        elif finishes:
            conditions["metalOptions.finish_type"] = {"$in": finishes}

    for field_name, min_param, max_param in spec.range_params:
        condition = _range(_number(params, min_param), _number(params, max_param))
        if condition:
            conditions[field_name] = condition

    price = _range(_number(params, "minPrice"), _number(params, "maxPrice"))
    if price:
        if spec.price_mode == "dual":
            or_groups.append([
                {"price": price},
                {"salePrice": {**price, "$ne": None}},
            ])
        elif spec.price_mode == "metal":
            conditions["metalOptions"] = {"$elemMatch": {"price": price}}
        else:
            conditions[spec.price_field] = price

    search = (params.get("search") or "").strip()
    if spec.search_field and search:
        conditions[spec.search_field] = {"$regex": re.escape(search), "$options": "i"}

    if len(or_groups) == 1:
        conditions["$or"] = or_groups[0]
    elif or_groups:
        conditions["$and"] = [{"$or": group} for group in or_groups]
    return conditions


def build_sort(spec: CategorySpec, sort: Optional[str]) -> List[Tuple[str, int]]:
    return list(spec.sort_options.get(sort or "price-asc") or spec.sort_options["price-asc"])


def build_catalog_query(spec: CategorySpec, segment: str, params: Mapping[str, str]) -> CatalogQuery:
    return CatalogQuery(
        filter=build_filter(spec, segment, params),
        sort=build_sort(spec, params.get("sort")),
        page=_int(params, "page", 1),
        limit=_int(params, "limit", DEFAULT_LIMIT, maximum=MAX_LIMIT),
    )


def paginate(total: int, page: int, limit: int, returned: int) -> Dict[str, Any]:
    has_more = (page - 1) * limit + returned < total
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
        "hasMore": has_more,
        "hasNextPage": has_more,
    }


def run_catalog_query(db, spec: CategorySpec, query: CatalogQuery) -> Dict[str, Any]:
    collection = db[spec.collection]
    projection = {name: 1 for name in spec.projection} if spec.projection else None
    total = collection.count_documents(query.filter)
    cursor = collection.find(query.filter, projection).sort(query.sort).skip(query.skip).limit(query.limit)
    products = [serialize_doc(doc) for doc in cursor]
    return {"products": products, "pagination": paginate(total, query.page, query.limit, len(products))}


# ---------------------- Routes ----------------------

@router.get("/{category}/detail/{item_id}")
def product_detail(category: str, item_id: str, db=Depends(get_db)):
    spec = get_category(category)
    obj_id = to_object_id(item_id)
    lookup = {"_id": obj_id} if obj_id else {"slug": item_id}
    lookup[spec.visibility_field] = True
    try:
        doc = db[spec.collection].find_one(lookup)
    except PyMongoError as exc:
        logger.error("Error fetching %s %s: %s", spec.label, item_id, exc)
        raise ExternalServiceError(f"Failed to fetch {spec.label}")
    if not doc:
        raise NotFoundError("Product not found")
    return serialize_doc(doc)


@router.get("/{category}/{segment}")
def list_products(category: str, segment: str, request: Request, db=Depends(get_db)):
    spec = get_category(category)
    query = build_catalog_query(spec, segment, request.query_params)
    logger.debug("Catalog query %s/%s: %s", category, segment, query.filter)
    try:
        return run_catalog_query(db, spec, query)
    except PyMongoError as exc:
        logger.error("Error fetching %s: %s", spec.label, exc)
        raise ExternalServiceError(f"Failed to fetch {spec.label}")
