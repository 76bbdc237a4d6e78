import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinicflow.api.auth import get_current_user, require_roles
from clinicflow.database.connection import get_db
from clinicflow.database.models import User, UserRole
from clinicflow.services import fulfillment
from clinicflow.services.fulfillment import InventoryItemRequest, InventoryItemUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pharmacy", tags=["Pharmacy"])

pharmacy_staff = require_roles(UserRole.PHARMACY, UserRole.ADMIN)

# ==================== ORDERS ====================

@router.get("/orders", response_model=dict)
async def get_orders(
    current_user: User = Depends(pharmacy_staff),
    db: Session = Depends(get_db)
):
    orders = fulfillment.list_pharmacy_orders(db)
    return {
        "status": "success",
        "orders": [fulfillment.serialize_order(o) for o in orders],
    }


@router.get("/orders/my-orders", response_model=dict)
async def get_my_orders(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    orders = fulfillment.list_patient_orders(db, current_user.id)
    return {
        "status": "success",
        "orders": [fulfillment.serialize_order(o) for o in orders],
    }


@router.patch("/orders/{order_id}/complete", response_model=dict)
async def complete_order(
    order_id: str,
    current_user: User = Depends(pharmacy_staff),
    db: Session = Depends(get_db)
):
    order = fulfillment.complete_pharmacy_order(db, order_id)
    return {
        "status": "success",
        "message": "Order completed successfully",
        "order": fulfillment.serialize_order(order),
    }

# ==================== INVENTORY ====================

@router.get("/inventory", response_model=dict)
async def get_inventory(
    current_user: User = Depends(pharmacy_staff),
    db: Session = Depends(get_db)
):
    items = fulfillment.list_inventory(db, current_user.id)
    return {
        "status": "success",
        "items": [fulfillment.serialize_inventory_item(i) for i in items],
    }


@router.post("/inventory", response_model=dict, status_code=201)
async def add_inventory_item(
    request: InventoryItemRequest,
    current_user: User = Depends(pharmacy_staff),
    db: Session = Depends(get_db)
):
    item = fulfillment.add_inventory_item(db, current_user.id, request)
    return {
        "status": "success",
        "message": "Item added to inventory",
        "item": fulfillment.serialize_inventory_item(item),
    }


@router.put("/inventory/{item_id}", response_model=dict)
async def update_inventory_item(
    item_id: int,
    request: InventoryItemUpdate,
    current_user: User = Depends(pharmacy_staff),
    db: Session = Depends(get_db)
):
    item = fulfillment.update_inventory_item(db, current_user.id, item_id, request)
    return {
        "status": "success",
        "message": "Inventory item updated",
        "item": fulfillment.serialize_inventory_item(item),
    }


@router.delete("/inventory/{item_id}", response_model=dict)
async def delete_inventory_item(
    item_id: int,
    current_user: User = Depends(pharmacy_staff),
    db: Session = Depends(get_db)
):
    fulfillment.delete_inventory_item(db, current_user.id, item_id)
    return {"status": "success", "message": "Item removed from inventory"}
