"""
Transfer engine behaviour: the documented scenarios, validation order and
ledger invariants (conservation, no zero rows, atomic failure).
"""

import pytest
from sqlalchemy import select

from core.exceptions import (
    ImmutabilityViolationError,
    InsufficientQuantityError,
    InvalidAdjustmentError,
    InvalidQuantityError,
    ItemNotFoundError,
    OwnerHasInventoryError,
    OwnerNotFoundError,
    OwnerVariantMismatchError,
    SelfTransferError,
)
from crud import items as items_crud
from crud import owners as owners_crud
from db.inventory.holding import Holding
from db.inventory.transfer import Transfer
from db.owner import OWNER_TYPE_PERSON
from services.transfer_engine import MAX_QUANTITY


class TestScenarios:

    async def test_a_partial_transfer(self, transfer_engine, storage_and_alice, holding_of, transfer_count):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 10)

        transfer = await transfer_engine.execute(widget.id, storage.id, alice.id, 3)

        assert await holding_of(widget.id, storage.id) == 7
        assert await holding_of(widget.id, alice.id) == 3
        assert await transfer_count() == 1
        assert transfer.quantity == 3
        assert transfer.from_owner_id == storage.id
        assert transfer.to_owner_id == alice.id

    async def test_b_full_transfer_removes_source_row(self, transfer_engine, storage_and_alice, holding_of, session_maker):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)

        await transfer_engine.execute(widget.id, storage.id, alice.id, 5)

        assert await holding_of(widget.id, storage.id) is None
        assert await holding_of(widget.id, alice.id) == 5
        async with session_maker() as s:
            rows = (await s.execute(select(Holding).where(Holding.owner_id == storage.id))).scalars().all()
        assert rows == []

    async def test_c_insufficient_quantity_changes_nothing(self, transfer_engine, storage_and_alice, holding_of, transfer_count):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)

        with pytest.raises(InsufficientQuantityError) as exc_info:
            await transfer_engine.execute(widget.id, storage.id, alice.id, 10)

        assert exc_info.value.available == 5
        assert exc_info.value.requested == 10
        assert await holding_of(widget.id, storage.id) == 5
        assert await holding_of(widget.id, alice.id) is None
        assert await transfer_count() == 0

    async def test_d_negative_adjustment_writes_no_transfer(self, transfer_engine, storage_and_alice, holding_of, transfer_count):
        widget, storage, _ = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 10)

        result = await transfer_engine.adjust_stock(widget.id, storage.id, -3, notes="lost")

        assert result == 7
        assert await holding_of(widget.id, storage.id) == 7
        assert await transfer_count() == 0

    async def test_e_add_stock_to_person_rejected(self, transfer_engine, storage_and_alice, holding_of):
        widget, _, alice = storage_and_alice

        with pytest.raises(OwnerVariantMismatchError) as exc_info:
            await transfer_engine.add_stock(widget.id, alice.id, 10)

        assert exc_info.value.owner_type == OWNER_TYPE_PERSON
        assert await holding_of(widget.id, alice.id) is None

    async def test_f_delete_owner_with_inventory_rejected(self, transfer_engine, storage_and_alice, session_maker):
        widget, storage, _ = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)

        with pytest.raises(OwnerHasInventoryError) as exc_info:
            await transfer_engine.delete_owner(storage.id)

        assert exc_info.value.entries == 1
        async with session_maker() as s:
            assert await owners_crud.owner_exists(s, storage.id)


class TestExecuteValidation:

    async def test_self_transfer_checked_before_lookup(self, transfer_engine):
        # Neither the item nor the owner exist: the self-transfer check still wins
        with pytest.raises(SelfTransferError):
            await transfer_engine.execute(999, 1, 1, 5)

    async def test_self_transfer_checked_before_quantity(self, transfer_engine, storage_and_alice):
        widget, storage, _ = storage_and_alice
        with pytest.raises(SelfTransferError):
            await transfer_engine.execute(widget.id, storage.id, storage.id, 0)

    @pytest.mark.parametrize("quantity", [0, -1])
    async def test_non_positive_quantity(self, transfer_engine, storage_and_alice, quantity):
        widget, storage, alice = storage_and_alice
        with pytest.raises(InvalidQuantityError):
            await transfer_engine.execute(widget.id, storage.id, alice.id, quantity)

    async def test_quantity_above_column_range(self, transfer_engine, storage_and_alice):
        widget, storage, alice = storage_and_alice
        with pytest.raises(InvalidQuantityError):
            await transfer_engine.execute(widget.id, storage.id, alice.id, MAX_QUANTITY + 1)

    async def test_unknown_item(self, transfer_engine, storage_and_alice):
        _, storage, alice = storage_and_alice
        with pytest.raises(ItemNotFoundError):
            await transfer_engine.execute(999, storage.id, alice.id, 1)

    async def test_deleted_item(self, transfer_engine, storage_and_alice, session_maker):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)
        async with session_maker() as s:
            await items_crud.soft_delete_item(s, widget.id)

        with pytest.raises(ItemNotFoundError):
            await transfer_engine.execute(widget.id, storage.id, alice.id, 1)

    async def test_unknown_destination(self, transfer_engine, storage_and_alice):
        widget, storage, _ = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)

        with pytest.raises(OwnerNotFoundError) as exc_info:
            await transfer_engine.execute(widget.id, storage.id, 999, 1)
        assert exc_info.value.owner_id == 999

    async def test_deleted_destination(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)
        await transfer_engine.delete_owner(alice.id)

        with pytest.raises(OwnerNotFoundError):
            await transfer_engine.execute(widget.id, storage.id, alice.id, 1)
        assert await holding_of(widget.id, storage.id) == 5

    async def test_absent_source_counts_as_zero(self, transfer_engine, storage_and_alice):
        widget, storage, alice = storage_and_alice
        with pytest.raises(InsufficientQuantityError) as exc_info:
            await transfer_engine.execute(widget.id, alice.id, storage.id, 1)
        assert exc_info.value.available == 0


class TestExecute:

    async def test_transfer_into_existing_holding_increments(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 10)
        await transfer_engine.execute(widget.id, storage.id, alice.id, 2)
        await transfer_engine.execute(widget.id, storage.id, alice.id, 4)

        assert await holding_of(widget.id, storage.id) == 4
        assert await holding_of(widget.id, alice.id) == 6

    async def test_person_may_transfer_back(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 3)
        await transfer_engine.execute(widget.id, storage.id, alice.id, 3)
        await transfer_engine.execute(widget.id, alice.id, storage.id, 3)

        assert await holding_of(widget.id, storage.id) == 3
        assert await holding_of(widget.id, alice.id) is None

    async def test_records_notes_and_actor(self, transfer_engine, storage_and_alice, make_user, session_maker):
        widget, storage, alice = storage_and_alice
        actor = await make_user("clerk")
        await transfer_engine.add_stock(widget.id, storage.id, 3)

        transfer = await transfer_engine.execute(widget.id, storage.id, alice.id, 1, notes="for the fair", actor=actor.id)

        async with session_maker() as s:
            stored = await s.get(Transfer, transfer.id)
        assert stored.notes == "for the fair"
        assert stored.transferred_by == actor.id
        assert stored.transferred_at is not None

    async def test_item_status_never_blocks_movement(self, transfer_engine, make_item, storage_and_alice, holding_of):
        _, storage, alice = storage_and_alice
        broken = await make_item("Broken lamp", status="damaged")
        await transfer_engine.add_stock(broken.id, storage.id, 1)

        await transfer_engine.execute(broken.id, storage.id, alice.id, 1)

        assert await holding_of(broken.id, alice.id) == 1

    async def test_conservation_across_many_transfers(self, transfer_engine, make_owner, make_item, session_maker):
        widget = await make_item("Widget")
        storage = await make_owner("Storage")
        people = [await make_owner(name, OWNER_TYPE_PERSON) for name in ("Alice", "Bob", "Cene")]
        await transfer_engine.add_stock(widget.id, storage.id, 50)

        moves = [
            (storage, people[0], 10),
            (storage, people[1], 7),
            (people[0], people[2], 4),
            (people[2], storage, 4),
            (people[1], people[0], 7),
            (people[0], storage, 13),
        ]
        for src, dst, qty in moves:
            await transfer_engine.execute(widget.id, src.id, dst.id, qty)

        async with session_maker() as s:
            rows = (await s.execute(select(Holding).where(Holding.item_id == widget.id))).scalars().all()
        assert sum(r.quantity for r in rows) == 50
        assert all(r.quantity > 0 for r in rows)
        assert {r.owner_id: r.quantity for r in rows} == {storage.id: 50}


class TestAddStock:

    async def test_creates_then_increments(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, _ = storage_and_alice
        assert await transfer_engine.add_stock(widget.id, storage.id, 4) == 4
        assert await transfer_engine.add_stock(widget.id, storage.id, 6) == 10
        assert await holding_of(widget.id, storage.id) == 10

    async def test_writes_no_transfer(self, transfer_engine, storage_and_alice, transfer_count):
        widget, storage, _ = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 4)
        assert await transfer_count() == 0

    async def test_zero_quantity(self, transfer_engine, storage_and_alice):
        widget, storage, _ = storage_and_alice
        with pytest.raises(InvalidQuantityError):
            await transfer_engine.add_stock(widget.id, storage.id, 0)

    async def test_unknown_owner(self, transfer_engine, storage_and_alice):
        widget, _, _ = storage_and_alice
        with pytest.raises(OwnerNotFoundError):
            await transfer_engine.add_stock(widget.id, 999, 1)

    async def test_unknown_item(self, transfer_engine, storage_and_alice):
        _, storage, _ = storage_and_alice
        with pytest.raises(ItemNotFoundError):
            await transfer_engine.add_stock(999, storage.id, 1)


class TestAdjustStock:

    async def test_positive_delta_creates_holding(self, transfer_engine, storage_and_alice, holding_of):
        widget, _, alice = storage_and_alice
        # Adjustments are not restricted to locations
        assert await transfer_engine.adjust_stock(widget.id, alice.id, 2, notes="found") == 2
        assert await holding_of(widget.id, alice.id) == 2

    async def test_to_zero_removes_row(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, _ = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 3)

        assert await transfer_engine.adjust_stock(widget.id, storage.id, -3) == 0
        assert await holding_of(widget.id, storage.id) is None

    async def test_below_zero_rejected(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, _ = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 3)

        with pytest.raises(InvalidAdjustmentError) as exc_info:
            await transfer_engine.adjust_stock(widget.id, storage.id, -4)

        assert exc_info.value.current == 3
        assert exc_info.value.delta == -4
        assert await holding_of(widget.id, storage.id) == 3

    async def test_negative_on_absent_holding_rejected(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, _ = storage_and_alice
        with pytest.raises(InvalidAdjustmentError):
            await transfer_engine.adjust_stock(widget.id, storage.id, -1)
        assert await holding_of(widget.id, storage.id) is None

    async def test_zero_delta_rejected(self, transfer_engine, storage_and_alice):
        widget, storage, _ = storage_and_alice
        with pytest.raises(InvalidAdjustmentError):
            await transfer_engine.adjust_stock(widget.id, storage.id, 0)

    async def test_holding_lifecycle_repeats(self, transfer_engine, storage_and_alice, holding_of):
        widget, storage, alice = storage_and_alice
        for _ in range(3):
            await transfer_engine.add_stock(widget.id, storage.id, 2)
            await transfer_engine.execute(widget.id, storage.id, alice.id, 2)
            assert await holding_of(widget.id, storage.id) is None
            await transfer_engine.adjust_stock(widget.id, alice.id, -2)
            assert await holding_of(widget.id, alice.id) is None


class TestDeleteOwner:

    async def test_empty_owner_is_soft_deleted(self, transfer_engine, storage_and_alice, session_maker):
        _, _, alice = storage_and_alice
        await transfer_engine.delete_owner(alice.id)

        async with session_maker() as s:
            owner = await owners_crud.get_owner(s, alice.id)
            listed = await owners_crud.list_owners(s)
        assert owner.deleted_at is not None
        assert alice.id not in [o.id for o in listed]

    async def test_owner_emptied_by_transfer_can_be_deleted(self, transfer_engine, storage_and_alice):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 2)
        await transfer_engine.execute(widget.id, storage.id, alice.id, 2)

        await transfer_engine.delete_owner(storage.id)

    async def test_unknown_owner(self, transfer_engine):
        with pytest.raises(OwnerNotFoundError):
            await transfer_engine.delete_owner(999)

    async def test_already_deleted(self, transfer_engine, storage_and_alice):
        _, _, alice = storage_and_alice
        await transfer_engine.delete_owner(alice.id)
        with pytest.raises(OwnerNotFoundError):
            await transfer_engine.delete_owner(alice.id)


class TestTransferImmutability:

    async def test_update_rejected(self, transfer_engine, storage_and_alice, session_maker):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)
        transfer = await transfer_engine.execute(widget.id, storage.id, alice.id, 2)

        async with session_maker() as s:
            stored = await s.get(Transfer, transfer.id)
            stored.quantity = 5
            with pytest.raises(ImmutabilityViolationError):
                await s.commit()

        async with session_maker() as s:
            assert (await s.get(Transfer, transfer.id)).quantity == 2

    async def test_delete_rejected(self, transfer_engine, storage_and_alice, session_maker, transfer_count):
        widget, storage, alice = storage_and_alice
        await transfer_engine.add_stock(widget.id, storage.id, 5)
        transfer = await transfer_engine.execute(widget.id, storage.id, alice.id, 2)

        async with session_maker() as s:
            stored = await s.get(Transfer, transfer.id)
            await s.delete(stored)
            with pytest.raises(ImmutabilityViolationError):
                await s.commit()

        assert await transfer_count() == 1
