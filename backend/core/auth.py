import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi_users import BaseUserManager, FastAPIUsers, InvalidPasswordException, UUIDIDMixin, exceptions
from fastapi_users.authentication import AuthenticationBackend, BearerTransport, JWTStrategy
from fastapi_users.jwt import decode_jwt, generate_jwt
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.logging_config import LogContext, get_logger
from crud import tokens as tokens_crud
from crud.settings import get_or_create_jwt_secret
from db.database import get_async_session, utcnow
from db.users import ROLE_ADMIN, User, UserDatabase, role_at_least

logger = get_logger("auth")

MIN_PASSWORD_LENGTH = 8

_generated_secret: Optional[str] = None


async def get_user_db(session: AsyncSession = Depends(get_async_session)):
    yield UserDatabase(session, User)


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):

    async def validate_password(self, password: str, user) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordException(
                reason=f"Password should be at least {MIN_PASSWORD_LENGTH} characters"
            )

    async def authenticate(self, credentials) -> Optional[User]:
        """Accept either the username or the email in the login form's ``username`` field."""
        user = await self.user_db.get_by_username(credentials.username)
        if user is None:
            try:
                user = await self.get_by_email(credentials.username)
            except exceptions.UserNotExists:
                # Hash anyway so unknown users take as long as wrong passwords
                self.password_helper.hash(credentials.password)
                return None

        verified, updated_password_hash = self.password_helper.verify_and_update(
            credentials.password, user.hashed_password
        )
        if not verified:
            return None
        if updated_password_hash is not None:
            await self.user_db.update(user, {"hashed_password": updated_password_hash})
        return user

    async def set_role(self, user: User, role: str) -> User:
        # is_superuser mirrors the admin role
        return await self.user_db.update(user, {"role": role, "is_superuser": role == ROLE_ADMIN})

    async def soft_delete(self, user: User) -> User:
        """Deactivate the user and free its username and email for reuse."""
        return await self.user_db.update(
            user,
            {
                "deleted_at": utcnow(),
                "is_active": False,
                "email": f"deleted-{user.id.hex}-{user.email}",
            },
        )

    async def on_after_login(self, user: User, request: Optional[Request] = None, response=None):
        logger.info("user_logged_in", extra={"user_id": user.id, "username": user.username})


async def get_user_manager(user_db: UserDatabase = Depends(get_user_db)):
    yield UserManager(user_db)


async def get_jwt_secret(session: AsyncSession) -> str:
    global _generated_secret
    if settings.jwt_secret:
        return settings.jwt_secret
    if _generated_secret is None:
        _generated_secret = await get_or_create_jwt_secret(session)
    return _generated_secret


def reset_jwt_secret_cache() -> None:
    global _generated_secret
    _generated_secret = None


bearer_transport = BearerTransport(tokenUrl="api/auth/jwt/login")


class RevocableJWTStrategy(JWTStrategy):
    """
    JWT strategy whose tokens can be revoked on logout.

    Every token carries a random ``jti``; logout stores it in ``revoked_tokens``
    and ``read_token`` refuses any token whose id is stored there.
    """

    def __init__(self, secret: str, lifetime_seconds: int, session: AsyncSession):
        super().__init__(secret=secret, lifetime_seconds=lifetime_seconds)
        self.session = session

    def _claims(self, token: str) -> Optional[dict]:
        try:
            return decode_jwt(token, self.decode_key, self.token_audience, algorithms=[self.algorithm])
        except jwt.PyJWTError:
            return None

    async def write_token(self, user: User) -> str:
        data = {"sub": str(user.id), "aud": self.token_audience, "jti": secrets.token_hex(16)}
        return generate_jwt(data, self.encode_key, self.lifetime_seconds, algorithm=self.algorithm)

    async def read_token(self, token: Optional[str], user_manager) -> Optional[User]:
        if token is None:
            return None
        claims = self._claims(token)
        if claims is None or not claims.get("jti"):
            return None
        if await tokens_crud.is_token_revoked(self.session, claims["jti"]):
            return None
        return await super().read_token(token, user_manager)

    async def destroy_token(self, token: str, user: User) -> None:
        claims = self._claims(token)
        if claims is None or not claims.get("jti"):
            return
        expires_at = datetime.fromtimestamp(claims["exp"], tz=timezone.utc)
        await tokens_crud.revoke_token(self.session, claims["jti"], expires_at)
        logger.info("token_revoked", extra={"user_id": user.id})


async def get_jwt_strategy(session: AsyncSession = Depends(get_async_session)) -> RevocableJWTStrategy:
    secret = await get_jwt_secret(session)
    return RevocableJWTStrategy(secret, settings.jwt_lifetime_seconds, session)


auth_backend = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

fastapi_users = FastAPIUsers[User, uuid.UUID](get_user_manager, [auth_backend])

_current_active_user = fastapi_users.current_user(active=True)


async def current_active_user(request: Request, user: User = Depends(_current_active_user)) -> User:
    LogContext.set(actor=user.username)
    # Read back by the request logging middleware
    request.state.actor = user.username
    return user


def require_role(minimum: str):
    """Dependency factory: the authenticated user must hold ``minimum`` or a higher role."""

    async def dependency(user: User = Depends(current_active_user)) -> User:
        if not role_at_least(user.role, minimum):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
        return user

    return dependency
