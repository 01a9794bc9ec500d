from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, require_role
from core.logging_config import get_logger
from crud import inventory as inventory_crud
from crud import owners as owners_crud
from db.database import get_async_session
from db.users import ROLE_MANAGER, User
from schemas.owners import OwnerCreate, OwnerType, OwnerUpdate
from services.transfer_engine import TransferEngine, get_transfer_engine

router = APIRouter()
logger = get_logger("api.owners")


async def _get_active_owner_or_404(db: AsyncSession, owner_id: int):
    owner = await owners_crud.get_owner(db, owner_id)
    if not owner or owner.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")
    return owner


@router.get("", response_model=List[Dict])
async def list_owners(
    type: Optional[OwnerType] = Query(default=None),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    owners = await owners_crud.list_owners(db, owner_type=type)
    return [o.to_schema for o in owners]


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_owner(
    payload: OwnerCreate,
    user: User = Depends(require_role(ROLE_MANAGER)),
    db: AsyncSession = Depends(get_async_session),
):
    owner = await owners_crud.create_owner(db, payload.name, payload.type)
    logger.info("owner_created", extra={"owner_id": owner.id, "owner_name": owner.name, "owner_type": owner.type})
    return owner.to_schema


@router.get("/{owner_id}", response_model=Dict)
async def get_owner(
    owner_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    owner = await _get_active_owner_or_404(db, owner_id)
    return owner.to_schema


@router.put("/{owner_id}", response_model=Dict)
async def rename_owner(
    owner_id: int,
    payload: OwnerUpdate,
    user: User = Depends(require_role(ROLE_MANAGER)),
    db: AsyncSession = Depends(get_async_session),
):
    owner = await owners_crud.update_owner_name(db, owner_id, payload.name)
    if not owner:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")
    logger.info("owner_renamed", extra={"owner_id": owner.id, "owner_name": owner.name})
    return owner.to_schema


@router.delete("/{owner_id}", response_model=Dict)
async def delete_owner(
    owner_id: int,
    user: User = Depends(require_role(ROLE_MANAGER)),
    engine: TransferEngine = Depends(get_transfer_engine),
):
    """Soft-delete an owner. Rejected with 409 while the owner still holds anything."""
    await engine.delete_owner(owner_id, actor=user.id)
    return {"status": "deleted", "id": owner_id}


@router.get("/{owner_id}/inventory", response_model=List[Dict])
async def get_owner_inventory(
    owner_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    await _get_active_owner_or_404(db, owner_id)
    return await inventory_crud.get_owner_inventory(db, owner_id)
