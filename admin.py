"""Admin catalog management, one set of routes for every product category."""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as PydanticValidationError

from catalog import CategorySpec, get_category
from database import get_db, serialize_doc, to_object_id
from errors import NotFoundError, ValidationError, field_errors
from gate import require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/products", tags=["admin"])

# Set by the server, never taken from the request body
SYSTEM_FIELDS = ("_id", "id", "createdAt", "updatedAt", "createdBy", "updatedBy")


def validate_item(spec: CategorySpec, data: Dict[str, Any]) -> Dict[str, Any]:
    clean = {k: v for k, v in data.items() if k not in SYSTEM_FIELDS}
    try:
        item = spec.schema(**clean)
    except PydanticValidationError as exc:
        raise ValidationError("Validation error", field_errors(exc.errors()))
    return item.model_dump(mode="json")


def create_item(db, spec: CategorySpec, data: Dict[str, Any], admin_id: str) -> Dict[str, Any]:
    doc = validate_item(spec, data)
    now = datetime.now(timezone.utc)
    doc.update({"createdBy": admin_id, "updatedBy": admin_id, "createdAt": now, "updatedAt": now})
    result = db[spec.collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def update_item(db, spec: CategorySpec, item_id: str, data: Dict[str, Any], admin_id: str) -> Dict[str, Any]:
    existing = _find_item(db, spec, item_id)
    doc = validate_item(spec, {**existing, **data})
    doc.update({"updatedBy": admin_id, "updatedAt": datetime.now(timezone.utc)})
    db[spec.collection].update_one({"_id": existing["_id"]}, {"$set": doc})
    return db[spec.collection].find_one({"_id": existing["_id"]})


def _find_item(db, spec: CategorySpec, item_id: str) -> Dict[str, Any]:
    obj_id = to_object_id(item_id)
    doc = db[spec.collection].find_one({"_id": obj_id}) if obj_id else None
    if not doc:
        raise NotFoundError(f"{spec.label.capitalize()} item not found")
    return doc


@router.get("/{category}")
def list_items(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    db=Depends(get_db),
):
    spec = get_category(category)
    collection = db[spec.collection]
    total = collection.count_documents({})
    docs = collection.find({}).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    return {
        "success": True,
        "data": [serialize_doc(d) for d in docs],
        "pagination": {"current": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@router.post("/{category}", status_code=201)
def create(category: str, data: Dict[str, Any], admin: dict = Depends(require_admin), db=Depends(get_db)):
    spec = get_category(category)
    doc = create_item(db, spec, data, str(admin["_id"]))
    logger.info("Admin %s created %s item %s", admin.get("email"), spec.slug, doc["_id"])
    return {"success": True, "data": serialize_doc(doc)}


@router.get("/{category}/{item_id}")
def get_item(category: str, item_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    spec = get_category(category)
    return {"success": True, "data": serialize_doc(_find_item(db, spec, item_id))}


@router.put("/{category}/{item_id}")
def update(category: str, item_id: str, data: Dict[str, Any], admin: dict = Depends(require_admin), db=Depends(get_db)):
    spec = get_category(category)
    doc = update_item(db, spec, item_id, data, str(admin["_id"]))
    logger.info("Admin %s updated %s item %s", admin.get("email"), spec.slug, item_id)
    return {"success": True, "data": serialize_doc(doc)}


@router.delete("/{category}/{item_id}")
def delete(category: str, item_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    spec = get_category(category)
    doc = _find_item(db, spec, item_id)
    db[spec.collection].delete_one({"_id": doc["_id"]})
    logger.info("Admin %s deleted %s item %s", admin.get("email"), spec.slug, item_id)
    return {"success": True, "message": "Item deleted successfully"}
