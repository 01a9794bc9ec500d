from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user, require_role
from core.config import settings
from core.logging_config import get_logger
from crud import inventory as inventory_crud
from crud import items as items_crud
from db.database import get_async_session
from db.users import ROLE_MANAGER, User
from schemas.items import ItemCreate, ItemStatus, ItemUpdate

router = APIRouter()
logger = get_logger("api.items")

# Leading bytes of the accepted image formats
IMAGE_SIGNATURES = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
)


def sniff_image_mime(data: bytes) -> Optional[str]:
    """MIME type detected from the file contents, or None for anything but JPEG/PNG."""
    for signature, mime in IMAGE_SIGNATURES:
        if data.startswith(signature):
            return mime
    return None


async def _get_active_item_or_404(db: AsyncSession, item_id: int):
    item = await items_crud.get_item(db, item_id)
    if not item or item.is_deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return item


@router.get("", response_model=List[Dict])
async def list_items(
    status_filter: Optional[ItemStatus] = Query(default=None, alias="status"),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    items = await items_crud.list_items(db, status=status_filter)
    return [i.to_schema for i in items]


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_item(
    payload: ItemCreate,
    user: User = Depends(require_role(ROLE_MANAGER)),
    db: AsyncSession = Depends(get_async_session),
):
    item = await items_crud.create_item(db, payload.name, payload.description, payload.status)
    logger.info("item_created", extra={"item_id": item.id, "item_name": item.name})
    return item.to_schema


@router.get("/{item_id}", response_model=Dict)
async def get_item(
    item_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    """Item details plus who currently holds it."""
    item = await _get_active_item_or_404(db, item_id)
    out = item.to_schema
    out["distribution"] = await inventory_crud.get_item_distribution(db, item_id)
    return out


@router.put("/{item_id}", response_model=Dict)
async def update_item(
    item_id: int,
    payload: ItemUpdate,
    user: User = Depends(require_role(ROLE_MANAGER)),
    db: AsyncSession = Depends(get_async_session),
):
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name cannot be empty")
    if "status" in changes and changes["status"] is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid status")
    item = await items_crud.update_item(db, item_id, changes)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    logger.info("item_updated", extra={"item_id": item.id, "item_name": item.name, "item_status": item.status})
    return item.to_schema


@router.delete("/{item_id}", response_model=Dict)
async def delete_item(
    item_id: int,
    user: User = Depends(require_role(ROLE_MANAGER)),
    db: AsyncSession = Depends(get_async_session),
):
    ok = await items_crud.soft_delete_item(db, item_id)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    logger.info("item_deleted", extra={"item_id": item_id})
    return {"status": "deleted", "id": item_id}


@router.put("/{item_id}/image", response_model=Dict)
async def upload_item_image(
    item_id: int,
    file: UploadFile = File(...),
    user: User = Depends(require_role(ROLE_MANAGER)),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Store the uploaded image as-is (no resizing or re-encoding).

    The type is taken from the bytes, not the client's Content-Type; only JPEG
    and PNG are accepted.
    """
    # Read one byte past the limit to detect oversize uploads without buffering them whole
    data = await file.read(settings.max_image_bytes + 1)
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="image file required")
    if len(data) > settings.max_image_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File size exceeds maximum allowed size of {settings.max_image_bytes // (1024 * 1024)}MB",
        )
    content_type = sniff_image_mime(data)
    if content_type is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be a JPEG or PNG image")

    ok = await items_crud.set_item_image(db, item_id, data, content_type)
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    logger.info("item_image_uploaded", extra={"item_id": item_id, "size": len(data), "mime": content_type})
    return {"status": "uploaded", "id": item_id, "image_mime": content_type, "size": len(data)}


@router.get("/{item_id}/image")
async def get_item_image(
    item_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    image = await items_crud.get_item_image(db, item_id)
    if image is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no image")
    data, mime = image
    return Response(content=data, media_type=mime, headers={"Cache-Control": "private, max-age=3600"})


@router.get("/{item_id}/history", response_model=List[Dict])
async def get_item_history(
    item_id: int,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_async_session),
):
    await _get_active_item_or_404(db, item_id)
    return await inventory_crud.get_item_history(db, item_id)
