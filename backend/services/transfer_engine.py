"""
Transfer engine: the only code path that mutates the holdings ledger.

Every operation runs in its own session inside a write scope that takes the
write lock before the first read:

- SQLite: ``BEGIN IMMEDIATE`` (requested through the ``sqlite_begin``
  execution option, see ``db.database``). Waiting is bounded by the driver's
  busy timeout.
- PostgreSQL: the owner rows and holding rows involved are read
  ``SELECT ... FOR UPDATE`` in ascending owner id order, with
  ``SET LOCAL lock_timeout`` bounding the wait.

Read-check-write therefore never interleaves with another writer touching the
same pair, and transfer ids follow commit order.

Errors:
- Domain errors (``core.exceptions``) roll the whole transaction back.
- Lock wait exhaustion -> StorageContentionError.
- Deadline expiry -> DeadlineExceededError (a StorageContentionError).
- Any other database error -> StorageFailureError.

Nothing is retried here.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import (
    DeadlineExceededError,
    InsufficientQuantityError,
    InvalidAdjustmentError,
    InvalidQuantityError,
    InventoryError,
    ItemNotFoundError,
    OwnerHasInventoryError,
    OwnerNotFoundError,
    OwnerVariantMismatchError,
    SelfTransferError,
    StorageContentionError,
    StorageError,
    StorageFailureError,
)
from core.logging_config import get_logger
from db.database import SQLITE_BEGIN_OPTION, utcnow
from db.inventory.holding import Holding
from db.inventory.transfer import Transfer
from db.item import Item
from db.owner import OWNER_TYPE_LOCATION, Owner

logger = get_logger("services.transfer_engine")

# Holding.quantity is a signed 64-bit column
MAX_QUANTITY = 2**63 - 1

# lock_not_available, serialization_failure, deadlock_detected, unique_violation
_PG_CONTENTION_CODES = {"55P03", "40001", "40P01", "23505"}
_SQLITE_CONTENTION_MESSAGES = ("database is locked", "database is busy", "database table is locked")

_LOCK_ROWS = "inventory_lock_rows"


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _is_contention(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    if isinstance(exc, DBAPIError):
        if _sqlstate(exc) in _PG_CONTENTION_CODES:
            return True
        if isinstance(exc, OperationalError):
            message = str(exc.orig).lower()
            return any(m in message for m in _SQLITE_CONTENTION_MESSAGES)
    return False


def translate_storage_error(operation: str, exc: SQLAlchemyError) -> StorageError:
    if _is_contention(exc):
        return StorageContentionError(operation)
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        detail = str(exc.orig)
    else:
        detail = str(exc)
    return StorageFailureError(operation, detail)


def _check_quantity(quantity: int) -> None:
    if quantity <= 0:
        raise InvalidQuantityError(quantity)
    if quantity > MAX_QUANTITY:
        raise InvalidQuantityError(quantity, reason=f"must not exceed {MAX_QUANTITY}")


class TransferEngine:
    """Atomic, serialized mutations of the holdings ledger and the transfer log.

    ``default_timeout`` applies to operations called without an explicit
    ``timeout``; None means no deadline. ``lock_timeout`` bounds lock waits on
    PostgreSQL (SQLite uses the engine's busy timeout instead).
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        *,
        default_timeout: Optional[float] = None,
        lock_timeout: Optional[float] = None,
    ):
        self._session_maker = session_maker
        self._default_timeout = default_timeout
        self._lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def execute(
        self,
        item_id: int,
        from_owner_id: int,
        to_owner_id: int,
        quantity: int,
        *,
        notes: Optional[str] = None,
        actor: Optional[UUID] = None,
        timeout: Optional[float] = None,
    ) -> Transfer:
        """Move ``quantity`` units of an item from one owner to another.

        Decrements the source holding (removing it at zero), increments or
        creates the destination holding and appends one Transfer row, all in
        one transaction.
        """

        async def body() -> Transfer:
            if from_owner_id == to_owner_id:
                raise SelfTransferError(from_owner_id)
            _check_quantity(quantity)

            async with self._write_scope("transfer") as session:
                await self._require_item(session, item_id)
                await self._lock_owners(session, (from_owner_id, to_owner_id))
                held = await self._read_holdings(session, item_id, (from_owner_id, to_owner_id))

                source = held.get(from_owner_id)
                available = int(source.quantity) if source is not None else 0
                if available < quantity:
                    raise InsufficientQuantityError(item_id, from_owner_id, available, quantity)

                dest = held.get(to_owner_id)
                current_dest = int(dest.quantity) if dest is not None else 0
                if current_dest + quantity > MAX_QUANTITY:
                    raise InvalidQuantityError(
                        current_dest + quantity, reason=f"at destination must not exceed {MAX_QUANTITY}"
                    )

                if available == quantity:
                    await session.delete(source)
                else:
                    source.quantity = available - quantity

                if dest is not None:
                    dest.quantity = current_dest + quantity
                else:
                    session.add(Holding(item_id=item_id, owner_id=to_owner_id, quantity=quantity))

                transfer = Transfer(
                    item_id=item_id,
                    from_owner_id=from_owner_id,
                    to_owner_id=to_owner_id,
                    quantity=quantity,
                    notes=notes or None,
                    transferred_at=utcnow(),
                    transferred_by=actor,
                )
                session.add(transfer)
                await session.flush()
            return transfer

        transfer = await self._run("transfer", body, timeout)
        logger.info(
            "transfer_created",
            extra={
                "transfer_id": transfer.id,
                "item_id": item_id,
                "from_owner_id": from_owner_id,
                "to_owner_id": to_owner_id,
                "quantity": quantity,
                "actor_id": actor,
            },
        )
        return transfer

    async def add_stock(
        self,
        item_id: int,
        owner_id: int,
        quantity: int,
        *,
        actor: Optional[UUID] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Add new units at a location. Writes no transfer row. Returns the new quantity."""

        async def body() -> int:
            _check_quantity(quantity)
            async with self._write_scope("add_stock") as session:
                await self._require_item(session, item_id)
                owners = await self._lock_owners(session, (owner_id,))
                owner = owners[owner_id]
                if owner.type != OWNER_TYPE_LOCATION:
                    raise OwnerVariantMismatchError(owner_id, owner.type, expected=OWNER_TYPE_LOCATION)

                held = await self._read_holdings(session, item_id, (owner_id,))
                holding = held.get(owner_id)
                current = int(holding.quantity) if holding is not None else 0
                new_quantity = current + quantity
                if new_quantity > MAX_QUANTITY:
                    raise InvalidQuantityError(new_quantity, reason=f"must not exceed {MAX_QUANTITY}")
                if holding is not None:
                    holding.quantity = new_quantity
                else:
                    session.add(Holding(item_id=item_id, owner_id=owner_id, quantity=new_quantity))
            return new_quantity

        new_quantity = await self._run("add_stock", body, timeout)
        logger.info(
            "stock_added",
            extra={
                "item_id": item_id,
                "owner_id": owner_id,
                "quantity": quantity,
                "new_quantity": new_quantity,
                "actor_id": actor,
            },
        )
        return new_quantity

    async def adjust_stock(
        self,
        item_id: int,
        owner_id: int,
        delta: int,
        *,
        notes: Optional[str] = None,
        actor: Optional[UUID] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Correct a holding by ``delta``. Returns the new quantity; 0 means the row is gone.

        Adjustments are not transfers: ``notes`` and ``actor`` only reach the log.
        """

        async def body() -> int:
            if delta == 0:
                raise InvalidAdjustmentError(None, delta)
            async with self._write_scope("adjust_stock") as session:
                await self._require_item(session, item_id)
                await self._lock_owners(session, (owner_id,))
                held = await self._read_holdings(session, item_id, (owner_id,))
                holding = held.get(owner_id)
                current = int(holding.quantity) if holding is not None else 0
                new_quantity = current + delta
                if new_quantity < 0:
                    raise InvalidAdjustmentError(current, delta)
                if new_quantity > MAX_QUANTITY:
                    raise InvalidQuantityError(new_quantity, reason=f"must not exceed {MAX_QUANTITY}")

                if new_quantity == 0:
                    await session.delete(holding)
                elif holding is not None:
                    holding.quantity = new_quantity
                else:
                    session.add(Holding(item_id=item_id, owner_id=owner_id, quantity=new_quantity))
            return new_quantity

        new_quantity = await self._run("adjust_stock", body, timeout)
        logger.info(
            "stock_adjusted",
            extra={
                "item_id": item_id,
                "owner_id": owner_id,
                "delta": delta,
                "new_quantity": new_quantity,
                "notes": notes,
                "actor_id": actor,
            },
        )
        return new_quantity

    async def delete_owner(
        self,
        owner_id: int,
        *,
        actor: Optional[UUID] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Soft-delete an owner that holds nothing."""

        async def body() -> None:
            async with self._write_scope("delete_owner") as session:
                await self._lock_owners(session, (owner_id,))
                q = select(Holding).where(Holding.owner_id == owner_id)
                if session.info.get(_LOCK_ROWS):
                    q = q.with_for_update()
                entries = len((await session.execute(q)).scalars().all())
                if entries:
                    raise OwnerHasInventoryError(owner_id, entries)
                owner = await session.get(Owner, owner_id)
                owner.deleted_at = utcnow()

        await self._run("delete_owner", body, timeout)
        logger.info("owner_deleted", extra={"owner_id": owner_id, "actor_id": actor})

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    async def _run(self, operation: str, fn, timeout: Optional[float]):
        if timeout is None:
            timeout = self._default_timeout
        try:
            if timeout is None:
                return await fn()
            try:
                return await asyncio.wait_for(fn(), timeout)
            except asyncio.TimeoutError:
                raise DeadlineExceededError(operation, timeout) from None
        except StorageContentionError as exc:
            logger.warning(
                "inventory_operation_contention",
                extra={"operation": operation, "error_code": exc.code, "detail": exc.detail},
            )
            raise
        except StorageError as exc:
            logger.error(
                "inventory_operation_failed",
                extra={"operation": operation, "error_code": exc.code},
                exc_info=exc,
            )
            raise
        except InventoryError as exc:
            logger.warning(
                "inventory_operation_rejected",
                extra={"operation": operation, "error_code": exc.code, "reason": str(exc)},
            )
            raise

    @asynccontextmanager
    async def _write_scope(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session + transaction holding the write lock; commits only if the body completes."""
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    await self._acquire_write_lock(session)
                    yield session
            except SQLAlchemyError as exc:
                raise translate_storage_error(operation, exc) from exc

    async def _acquire_write_lock(self, session: AsyncSession) -> None:
        # First statement of the transaction: on SQLite this is BEGIN IMMEDIATE
        conn = await session.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})
        if conn.dialect.name == "sqlite":
            session.info[_LOCK_ROWS] = False
            return
        session.info[_LOCK_ROWS] = True
        if conn.dialect.name == "postgresql" and self._lock_timeout:
            millis = max(1, int(self._lock_timeout * 1000))
            await session.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))

    async def _require_item(self, session: AsyncSession, item_id: int) -> Item:
        item = await session.get(Item, item_id)
        if item is None or item.is_deleted:
            raise ItemNotFoundError(item_id)
        return item

    async def _lock_owners(self, session: AsyncSession, owner_ids: Iterable[int]) -> Dict[int, Owner]:
        """Load (and on row-locking backends lock) owners; deleted owners count as missing."""
        owner_ids = list(owner_ids)
        q = select(Owner).where(Owner.id.in_(owner_ids)).order_by(Owner.id)
        if session.info.get(_LOCK_ROWS):
            q = q.with_for_update()
        owners = {o.id: o for o in (await session.execute(q)).scalars().all()}
        for owner_id in owner_ids:
            owner = owners.get(owner_id)
            if owner is None or owner.is_deleted:
                raise OwnerNotFoundError(owner_id)
        return owners

    async def _read_holdings(
        self, session: AsyncSession, item_id: int, owner_ids: Iterable[int]
    ) -> Dict[int, Holding]:
        q = (
            select(Holding)
            .where(Holding.item_id == item_id, Holding.owner_id.in_(list(owner_ids)))
            .order_by(Holding.owner_id)
        )
        if session.info.get(_LOCK_ROWS):
            q = q.with_for_update()
        return {h.owner_id: h for h in (await session.execute(q)).scalars().all()}


_default_engine: Optional[TransferEngine] = None


def get_transfer_engine() -> TransferEngine:
    """FastAPI dependency returning the process-wide engine bound to the configured database."""
    global _default_engine
    if _default_engine is None:
        from core.config import settings
        from db.database import async_session_maker

        _default_engine = TransferEngine(
            async_session_maker,
            default_timeout=settings.operation_timeout_seconds,
            lock_timeout=settings.lock_timeout_seconds,
        )
    return _default_engine
