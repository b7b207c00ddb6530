from fastapi import APIRouter, Depends, Query
from pymongo import DESCENDING

from auth import public_user
from database import get_db, serialize_doc
from gate import get_current_user

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    profile = public_user(user)
    profile.update({
        "phoneNumber": user.get("phoneNumber"),
        "lastLogin": user.get("lastLogin"),
        "createdAt": user.get("createdAt"),
    })
    return profile


@router.get("/orders")
def my_orders(
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    # Orders placed before sign-up are linked by email only
    query = {"$or": [{"userId": str(user["_id"])}, {"customerEmail": user["email"]}]}
    orders = db["order"].find(query).sort("createdAt", DESCENDING).limit(limit)
    return {"orders": [serialize_doc(o) for o in orders]}
