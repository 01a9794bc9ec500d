from typing import Dict, List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, require_role
from crud import inventory as inventory_crud
from db.database import get_async_session
from db.users import ROLE_MANAGER, User
from schemas.inventory import AddStockRequest, AdjustStockRequest
from services.transfer_engine import TransferEngine, get_transfer_engine

router = APIRouter()


@router.get("", response_model=List[Dict])
async def list_inventory(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return await inventory_crud.list_inventory(db)


@router.get("/dashboard", response_model=Dict)
async def get_dashboard(
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    return await inventory_crud.get_dashboard(db)


@router.post("/stock", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def add_stock(
    payload: AddStockRequest,
    user: User = Depends(require_role(ROLE_MANAGER)),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """
    Add new units of an item at a location (purchases, initial counts).

    Does not create a transfer record.
    """
    quantity = await engine.add_stock(payload.item_id, payload.owner_id, payload.quantity, actor=user.id)
    return {"item_id": payload.item_id, "owner_id": payload.owner_id, "quantity": quantity}


@router.post("/adjust", response_model=Dict)
async def adjust_stock(
    payload: AdjustStockRequest,
    user: User = Depends(require_role(ROLE_MANAGER)),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """Correct a holding by a signed delta; a result of 0 removes the holding."""
    quantity = await engine.adjust_stock(
        payload.item_id,
        payload.owner_id,
        payload.delta,
        notes=payload.notes,
        actor=user.id,
    )
    return {"item_id": payload.item_id, "owner_id": payload.owner_id, "quantity": quantity}
