"""
Cart aggregation.

The cart lives on the client. These endpoints take the client's current
items, apply one change and hand the new list back; nothing is stored.
"""

import time
from typing import Callable, Dict, List

from fastapi import APIRouter
from pydantic import BaseModel, Field

from errors import NotFoundError
from schemas import CartItem

router = APIRouter(prefix="/api/cart", tags=["cart"])


def cart_item_key(item: CartItem, clock: Callable[[], float] = time.time) -> str:
    """Dedup key: same product, metal, size and type share a key.

    Customized items are keyed by time so they never share one.
    """
    if item.is_customized:
        return f"{item.product_id}-{int(clock() * 1000)}"
    metal = item.metalOption
    parts = [
        item.product_id,
        metal.karat if metal and metal.karat else "",
        metal.color if metal and metal.color else "",
        f"{item.size:g}" if item.size is not None else "",
        item.productType or "",
    ]
    return "-".join(parts)


def _unique_key(key: str, items: List[CartItem]) -> str:
    taken = {i.cartItemId for i in items}
    candidate, n = key, 1
    while candidate in taken:
        n += 1
        candidate = f"{key}-{n}"
    return candidate


def add_item(items: List[CartItem], new_item: CartItem, clock: Callable[[], float] = time.time) -> List[CartItem]:
    updated = [i.model_copy() for i in items]
    if not new_item.is_customized:
        key = cart_item_key(new_item, clock)
        for index, existing in enumerate(updated):
            if existing.is_customized:
                continue
            if (existing.cartItemId or cart_item_key(existing)) == key:
                updated[index] = existing.model_copy(update={
                    "cartItemId": key,
                    "quantity": existing.quantity + new_item.quantity,
                })
                return updated
        updated.append(new_item.model_copy(update={"cartItemId": key}))
        return updated

    key = _unique_key(cart_item_key(new_item, clock), updated)
    updated.append(new_item.model_copy(update={"cartItemId": key}))
    return updated


def remove_item(items: List[CartItem], cart_item_id: str) -> List[CartItem]:
    remaining = [i for i in items if i.cartItemId != cart_item_id]
    if len(remaining) == len(items):
        raise NotFoundError("Cart item not found")
    return remaining


def update_quantity(items: List[CartItem], cart_item_id: str, quantity: int) -> List[CartItem]:
    if quantity <= 0:
        return remove_item(items, cart_item_id)
    found = False
    updated = []
    for item in items:
        if item.cartItemId == cart_item_id:
            item = item.model_copy(update={"quantity": quantity})
            found = True
        updated.append(item)
    if not found:
        raise NotFoundError("Cart item not found")
    return updated


def summarize(items: List[CartItem]) -> Dict[str, float]:
    return {
        "itemCount": sum(i.quantity for i in items),
        "subtotal": round(sum(i.price * i.quantity for i in items), 2),
    }


# ---------------------- Routes ----------------------

class CartState(BaseModel):
    items: List[CartItem] = Field(default_factory=list)


class AddToCart(CartState):
    item: CartItem


class UpdateCartItem(CartState):
    cartItemId: str
    quantity: int


class RemoveCartItem(CartState):
    cartItemId: str


def _cart_response(items: List[CartItem]):
    return {"items": [i.model_dump(by_alias=True) for i in items], **summarize(items)}


@router.post("/add")
def add_to_cart(payload: AddToCart):
    return _cart_response(add_item(payload.items, payload.item))


@router.post("/update")
def update_cart(payload: UpdateCartItem):
    return _cart_response(update_quantity(payload.items, payload.cartItemId, payload.quantity))


@router.post("/remove")
def remove_from_cart(payload: RemoveCartItem):
    return _cart_response(remove_item(payload.items, payload.cartItemId))


@router.post("/summary")
def cart_summary(payload: CartState):
    return _cart_response(payload.items)
