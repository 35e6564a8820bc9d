from datetime import datetime
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from database import get_db
from config.constants import ROLE_CUSTOMER
from utils.checkout import build_cart_items
from utils.errors import NotFoundError, ValidationError
from utils.guards import parse_object_id
from utils.responses import success_response
from utils.security import require_role

router = APIRouter(prefix="/api/cart", tags=["Cart"])


class CartAddItem(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)


class CartUpdateItem(BaseModel):
    quantity: int = Field(..., gt=0)


async def _active_product(db, product_id: str, quantity: int):
    pid = parse_object_id(product_id, "product_id")

    product = await db.products.find_one({"_id": pid, "active": True})
    if not product:
        raise NotFoundError("Product not found / Məhsul tapılmadı")

    if quantity > product.get("stock", 0):
        raise ValidationError("Quantity exceeds available stock / Miqdar mövcud stokdan çoxdur")

    return pid


async def _save_cart(db, buyer, cart):
    await db.users.update_one(
        {"_id": buyer["_id"]},
        {"$set": {"cart": cart, "updated_at": datetime.utcnow()}},
    )


@router.get("")
async def get_cart(
    buyer=Depends(require_role(ROLE_CUSTOMER)),
    db=Depends(get_db),
):
    items = await build_cart_items(db, buyer.get("cart") or [])
    for item in items:
        item["line_total"] = round(item["price"] * item["quantity"], 2)

    return success_response({
        "count": len(items),
        "items": items,
        "subtotal": round(sum(i["line_total"] for i in items), 2),
    })


@router.post("/add")
async def add_to_cart(
    data: CartAddItem,
    buyer=Depends(require_role(ROLE_CUSTOMER)),
    db=Depends(get_db),
):
    product_id = await _active_product(db, data.product_id, data.quantity)
    now = datetime.utcnow()

    cart = buyer.get("cart") or []
    for item in cart:
        if item.get("product_id") == product_id:
            item["quantity"] = data.quantity
            item["updated_at"] = now
            break
    else:
        cart.append({
            "product_id": product_id,
            "quantity": data.quantity,
            "added_at": now,
            "updated_at": now,
        })

    await _save_cart(db, buyer, cart)
    return success_response(None, "Cart updated / Səbət yeniləndi")


@router.patch("/item/{product_id}")
async def update_cart_item(
    product_id: str,
    data: CartUpdateItem,
    buyer=Depends(require_role(ROLE_CUSTOMER)),
    db=Depends(get_db),
):
    pid = await _active_product(db, product_id, data.quantity)

    cart = buyer.get("cart") or []
    for item in cart:
        if item.get("product_id") == pid:
            item["quantity"] = data.quantity
            item["updated_at"] = datetime.utcnow()
            break
    else:
        raise NotFoundError("Item not found in cart / Məhsul səbətdə tapılmadı")

    await _save_cart(db, buyer, cart)
    return success_response(None, "Cart item updated / Səbət məhsulu yeniləndi")


@router.delete("/item/{product_id}")
async def remove_cart_item(
    product_id: str,
    buyer=Depends(require_role(ROLE_CUSTOMER)),
    db=Depends(get_db),
):
    res = await db.users.update_one(
        {"_id": buyer["_id"]},
        {"$pull": {"cart": {"product_id": parse_object_id(product_id, "product_id")}}},
    )
    if res.modified_count == 0:
        raise NotFoundError("Item not found in cart / Məhsul səbətdə tapılmadı")

    return success_response(None, "Item removed / Məhsul silindi")


@router.delete("")
async def clear_cart(
    buyer=Depends(require_role(ROLE_CUSTOMER)),
    db=Depends(get_db),
):
    await _save_cart(db, buyer, [])
    return success_response(None, "Cart cleared / Səbət təmizləndi")
