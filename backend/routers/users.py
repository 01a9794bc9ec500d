from typing import Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi_users import InvalidPasswordException, exceptions
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import UserManager, current_active_user, get_user_manager, require_role
from core.logging_config import get_logger
from crud import users as users_crud
from db.database import get_async_session
from db.users import ROLE_ADMIN, User
from schemas.users import OwnPasswordChange, PasswordChange, RoleUpdate, UserCreate, UserRead, UserUpdate

router = APIRouter()
logger = get_logger("api.users")


def _read(user: User) -> Dict:
    return UserRead.model_validate(user).model_dump()


async def _get_active_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user or user.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def _set_password(user_manager: UserManager, user: User, password: str, safe: bool) -> User:
    try:
        return await user_manager.update(UserUpdate(password=password), user, safe=safe)
    except InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)


@router.get("/me", response_model=Dict)
async def get_me(user: User = Depends(current_active_user)):
    return _read(user)


@router.patch("/me", response_model=Dict)
async def change_my_password(
    payload: OwnPasswordChange,
    user: User = Depends(current_active_user),
    user_manager: UserManager = Depends(get_user_manager),
):
    """Change the caller's own password; the current one must be supplied."""
    verified, _ = user_manager.password_helper.verify_and_update(payload.current_password, user.hashed_password)
    if not verified:
        logger.warning("password_change_rejected", extra={"user_id": user.id})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="current password is incorrect")
    user = await _set_password(user_manager, user, payload.password, safe=True)
    logger.info("password_changed", extra={"user_id": user.id})
    return _read(user)


@router.get("", response_model=List[Dict])
async def list_users(
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_async_session),
):
    return [_read(u) for u in await users_crud.list_active_users(db)]


@router.post("", response_model=Dict, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    if await users_crud.get_user_by_username(db, payload.username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="username already exists")

    payload = payload.model_copy(
        update={"is_superuser": payload.role == ROLE_ADMIN, "is_active": True, "is_verified": True}
    )
    try:
        user = await user_manager.create(payload, safe=False)
    except exceptions.UserAlreadyExists:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="email already exists")
    except InvalidPasswordException as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.reason)
    logger.info("user_created", extra={"new_user": user.username, "role": user.role})
    return _read(user)


@router.get("/{user_id}", response_model=Dict)
async def get_user(
    user_id: UUID,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_async_session),
):
    return _read(await _get_active_user_or_404(db, user_id))


@router.put("/{user_id}", response_model=Dict)
async def change_role(
    user_id: UUID,
    payload: RoleUpdate,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    user = await _get_active_user_or_404(db, user_id)
    user = await user_manager.set_role(user, payload.role)
    logger.info("user_role_changed", extra={"target_user": user.username, "role": user.role})
    return _read(user)


@router.delete("/{user_id}", response_model=Dict)
async def delete_user(
    user_id: UUID,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    """Soft-delete: the user can no longer log in and the username becomes free."""
    if user_id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot delete yourself")
    user = await _get_active_user_or_404(db, user_id)
    await user_manager.soft_delete(user)
    logger.info("user_deleted", extra={"target_user": user.username})
    return {"status": "deleted", "id": user_id}


@router.put("/{user_id}/password", response_model=Dict)
async def reset_password(
    user_id: UUID,
    payload: PasswordChange,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    user = await _get_active_user_or_404(db, user_id)
    user = await _set_password(user_manager, user, payload.password, safe=False)
    logger.info("password_reset", extra={"target_user": user.username})
    return _read(user)
