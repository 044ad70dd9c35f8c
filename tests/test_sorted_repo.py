"""Tests for the sorted repository functions."""

import pytest
from sqlalchemy import func, select

from crudkit.config.loader import OrderingSettings
from crudkit.database.errors import ExceptionLookup
from crudkit.database.sorted_repo import (
    archive_item,
    archive_range,
    create_sorted,
    delete_sorted,
    delete_sorted_range,
    find_target,
    move_item,
    restore_item,
    restore_range,
    update_item,
    update_range,
)
from crudkit.errors import NotFoundError, ProgrammerError, StoreError
from crudkit.monitoring.monitors import ListMonitor, PropertyMonitor
from sample_models import Dog, Owner, positions, same_owner


def _dog_count(session) -> int:
    return session.scalar(select(func.count(Dog.id)))


def test_find_target(session, owners, make_dogs):
    ann, _ = owners
    make_dogs(ann, "Rex")

    dog = find_target(session, Dog, Dog.name == "Rex")

    assert dog.owner_id == ann.id


def test_find_target_not_found_uses_override(session, owners):
    with pytest.raises(NotFoundError, match="Dog not found"):
        find_target(session, Dog, Dog.name == "Nobody")

    with pytest.raises(NotFoundError, match="No such pup"):
        find_target(session, Dog, Dog.name == "Nobody", message="No such pup")

    lookup = ExceptionLookup(not_found="Gone fishing")
    with pytest.raises(NotFoundError, match="Gone fishing"):
        find_target(session, Dog, Dog.name == "Nobody", messages=lookup)


def test_create_sorted_with_modify(session, owners):
    ann, _ = owners

    def cheer(dog):
        dog.happiness = 10

    dog = create_sorted(session, Dog, {"name": "Rex", "owner_id": ann.id}, modify=cheer, subset=same_owner)

    assert dog.index == 0
    assert dog.happiness == 10


@pytest.mark.parametrize("execution", ["batch", "in_memory"])
def test_create_sorted_through_relationship(session, owners, execution):
    """Test that a subset key set through a relationship is seen when placing the row."""
    ann, bob = owners
    settings = OrderingSettings(execution=execution)

    for name in ("A", "B"):
        create_sorted(session, Dog, {"name": name, "owner": ann}, subset=same_owner, settings=settings)
    create_sorted(session, Dog, {"name": "X", "owner": bob}, subset=same_owner, settings=settings)

    assert positions(session, ann.id) == {"A": 0, "B": 1}
    assert positions(session, bob.id) == {"X": 0}


def test_create_sorted_without_save_only_flushes(session, owners):
    ann, _ = owners

    dog = create_sorted(session, Dog, {"name": "Rex", "owner_id": ann.id}, subset=same_owner, save=False)
    assert dog.id is not None

    session.rollback()
    assert _dog_count(session) == 0


def test_create_sorted_rejects_unknown_field(session, owners):
    ann, _ = owners
    with pytest.raises(ProgrammerError):
        create_sorted(session, Dog, {"name": "Rex", "owner_id": ann.id, "wings": 2})


def test_create_sorted_null_column_reports_phase(session, owners):
    ann, _ = owners

    with pytest.raises(StoreError) as exc_info:
        create_sorted(session, Dog, {"owner_id": ann.id}, subset=same_owner)

    assert exc_info.value.phase == "insert"
    assert exc_info.value.action == "create"
    assert "name" in exc_info.value.message
    assert _dog_count(session) == 0


def test_delete_sorted_closes_gap(session, owners, make_dogs):
    ann, _ = owners
    _, b, _ = make_dogs(ann, "A", "B", "C")

    delete_sorted(session, b, subset=same_owner)

    assert positions(session, ann.id) == {"A": 0, "C": 1}


def test_delete_sorted_range(session, owners, make_dogs):
    ann, _ = owners
    a, _, c = make_dogs(ann, "A", "B", "C")

    assert delete_sorted_range(session, [a, c], subset=same_owner) == 2
    assert positions(session, ann.id) == {"B": 0}


def test_bulk_delete_without_save_is_rejected(session, owners, make_dogs):
    ann, _ = owners
    dogs = make_dogs(ann, "A", "B")

    with pytest.raises(ProgrammerError, match="You cannot mass delete sorted models without saving"):
        delete_sorted_range(session, dogs, subset=same_owner, save=False)

    assert _dog_count(session) == 2


def test_archive_restore_round_trip(session, owners, make_dogs):
    ann, _ = owners
    _, b, _ = make_dogs(ann, "A", "B", "C")

    archive_item(session, b, subset=same_owner)
    assert b.archived_at is not None
    assert positions(session, ann.id) == {"A": 0, "B": -1, "C": 1}

    restore_item(session, b, subset=same_owner)
    assert b.archived_at is None
    assert positions(session, ann.id) == {"A": 0, "B": 2, "C": 1}


def test_archive_twice_leaves_row_alone(session, owners, make_dogs):
    ann, _ = owners
    (a,) = make_dogs(ann, "A")

    archive_item(session, a, subset=same_owner)
    stamp = a.archived_at
    archive_item(session, a, subset=same_owner)

    assert a.archived_at == stamp


def test_archive_without_index_update_keeps_position(session, owners, make_dogs):
    ann, _ = owners
    a, _ = make_dogs(ann, "A", "B")

    archive_item(session, a, update_index=False)

    assert positions(session, ann.id) == {"A": 0, "B": 1}


def test_archive_requires_archivable_model(session, owners):
    ann, _ = owners
    with pytest.raises(ProgrammerError):
        archive_item(session, ann)


def test_archive_and_restore_ranges(session, owners, make_dogs):
    ann, _ = owners
    a, b, c, d = make_dogs(ann, "A", "B", "C", "D")

    archived = archive_range(session, [a, c], subset=same_owner)
    assert archived == [a, c]
    assert positions(session, ann.id) == {"A": -1, "B": 0, "C": -1, "D": 1}

    restored = restore_range(session, [c, a, b], subset=same_owner)
    assert restored == [c, a]
    assert positions(session, ann.id) == {"A": 3, "B": 0, "C": 2, "D": 1}


@pytest.mark.parametrize("func", [archive_range, restore_range])
def test_bulk_archive_without_save_is_rejected(session, owners, make_dogs, func):
    ann, _ = owners
    dogs = make_dogs(ann, "A", "B")

    with pytest.raises(ProgrammerError, match="without saving"):
        func(session, dogs, subset=same_owner, save=False)


def test_bulk_archive_without_index_may_skip_save(session, owners, make_dogs):
    ann, _ = owners
    dogs = make_dogs(ann, "A", "B")

    archived = archive_range(session, dogs, update_index=False, save=False)

    assert len(archived) == 2
    session.rollback()
    assert all(dog.archived_at is None for dog in dogs)


def test_move_item_always_saves(session, owners, make_dogs):
    ann, _ = owners
    _, b, _ = make_dogs(ann, "A", "B", "C")

    move_item(session, b, 0, subset=same_owner, safe=False)
    session.rollback()

    assert positions(session, ann.id) == {"A": 1, "B": 0, "C": 2}


def test_update_changing_owner_transfers_to_tail(session, owners, make_dogs):
    """Test that D alone under Ann moves to the tail of Bob's dogs."""
    ann, bob = owners
    (d,) = make_dogs(ann, "D")
    make_dogs(bob, "E", "F")

    update_item(session, d, {"owner_id": bob.id}, parents=[Dog.owner_id])

    assert d.index == 2
    assert positions(session, ann.id) == {}
    assert positions(session, bob.id) == {"D": 2, "E": 0, "F": 1}


def test_update_transfer_closes_old_gap(session, owners, make_dogs):
    ann, bob = owners
    a, _, _ = make_dogs(ann, "A", "B", "C")
    make_dogs(bob, "X")

    update_item(session, a, {"owner": bob}, parents=[PropertyMonitor(Dog.owner)])

    assert positions(session, ann.id) == {"B": 0, "C": 1}
    assert positions(session, bob.id) == {"A": 1, "X": 0}


@pytest.mark.parametrize("execution", ["batch", "in_memory"])
def test_update_range_transfers_each_row(session, owners, make_dogs, execution):
    ann, bob = owners
    a, _, c = make_dogs(ann, "A", "B", "C")
    make_dogs(bob, "D")
    settings = OrderingSettings(execution=execution)

    update_range(session, [a, c], {"owner_id": bob.id}, parents=[Dog.owner_id], settings=settings)

    assert positions(session, ann.id) == {"B": 0}
    assert positions(session, bob.id) == {"A": 1, "C": 2, "D": 0}


def test_bulk_update_with_parents_without_save_is_rejected(session, owners, make_dogs):
    ann, bob = owners
    dogs = make_dogs(ann, "A", "B")

    with pytest.raises(ProgrammerError, match="You cannot mass update sorted models without saving"):
        update_range(session, dogs, {"owner_id": bob.id}, parents=[Dog.owner_id], save=False)


def test_update_without_subset_change_keeps_index(session, owners, make_dogs):
    ann, _ = owners
    _, b = make_dogs(ann, "A", "B")
    mood = PropertyMonitor(Dog.happiness)
    owner = PropertyMonitor(Dog.owner_id)

    update_item(session, b, {"happiness": 7}, monitors=[mood], parents=[owner])

    assert mood.changed is True
    assert mood.old_value == 0
    assert mood.new_value == 7
    assert owner.changed is False
    assert positions(session, ann.id) == {"A": 0, "B": 1}


def test_update_rejects_list_monitor_as_parent(session, owners, make_dogs):
    ann, _ = owners
    (a,) = make_dogs(ann, "A")

    with pytest.raises(ProgrammerError):
        update_item(session, a, {"happiness": 1}, parents=[ListMonitor(lambda dog: [dog.owner_id])])


def test_borrowed_transaction_is_committed_by_its_owner(session, owners):
    ann, _ = owners
    ann_id = ann.id
    session.commit()

    with session.begin():
        create_sorted(session, Dog, {"name": "Rex", "owner_id": ann_id}, subset=same_owner)
        create_sorted(session, Dog, {"name": "Max", "owner_id": ann_id}, subset=same_owner)

    assert positions(session, ann_id) == {"Rex": 0, "Max": 1}


def test_borrowed_transaction_rolls_back_with_owner(session, owners):
    ann, _ = owners
    ann_id = ann.id
    session.commit()

    with pytest.raises(RuntimeError):
        with session.begin():
            create_sorted(session, Dog, {"name": "Rex", "owner_id": ann_id}, subset=same_owner)
            raise RuntimeError("abort")

    assert _dog_count(session) == 0


def test_owner_model_has_no_ordering(session):
    with pytest.raises(ProgrammerError):
        create_sorted(session, Owner, {"name": "Cat"})
