# tests/test_db_query.py
import asyncio
import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from mailgate.db.query import Paginator, with_soft_delete_filter
from mailgate.db.session import transaction
from mailgate.models.enums import Bit, ItemStatus, PasswordStatus
from mailgate.models.login_session import LoginSession
from mailgate.models.sequence_counter import SequenceCounter
from mailgate.services.login_session_service import login_session_repository
from mailgate.services.password_service import password_repository
from mailgate.services.sequence_counter_service import get_next_number, sequence_counter_repository
from mailgate.services.user_service import user_repository


def _names(n: int):
    tag = uuid.uuid4().hex[:8]
    return [f"counter-{tag}-{i}" for i in range(n)]


async def _seed_counters(names):
    return [
        await sequence_counter_repository.save({"name": name, "current_count": i})
        for i, name in enumerate(names)
    ]


async def _new_user():
    suffix = uuid.uuid4().hex[:12]
    return await user_repository.save({
        "first_name": "Chidi",
        "last_name": "Eze",
        "email": f"repo_{suffix}@example.com",
        "phone": "081" + str(uuid.uuid4().int)[:8],
        "gender": "male",
    })


# --- soft delete filter（純函式）---
def test_soft_delete_filter_adds_clause_without_mutating_input():
    original = {"name": "x"}
    final = with_soft_delete_filter(SequenceCounter, original)
    assert final == {"name": "x", "status": {"$ne": ItemStatus.DELETED.value}}
    assert original == {"name": "x"}


def test_soft_delete_filter_respects_explicit_status():
    original = {"status": ItemStatus.DELETED.value}
    assert with_soft_delete_filter(SequenceCounter, original) == original


def test_soft_delete_filter_ignores_models_without_soft_delete():
    assert with_soft_delete_filter(LoginSession, {"user_id": "u"}) == {"user_id": "u"}


# --- Paginator ---
def test_paginator_metadata_is_consistent():
    p = Paginator.build(items_count=5, items_per_page=2, current_page=2)
    assert p.total_pages == 3
    assert p.has_next_page is True and p.next_page == 3
    assert p.has_previous_page is True and p.previous_page == 1
    assert p.serial_number == 3


def test_paginator_with_no_items():
    p = Paginator.build(items_count=0, items_per_page=10, current_page=1)
    assert p.total_pages == 0
    assert p.has_next_page is False and p.next_page is None
    assert p.has_previous_page is False and p.previous_page is None
    assert p.serial_number == 1


# --- CRUD ---
@pytest.mark.asyncio
async def test_save_ignores_unknown_fields_and_applies_defaults():
    name = _names(1)[0]
    counter = await sequence_counter_repository.save({"name": name, "current_count": 3, "not_a_column": 1})
    assert len(counter.id) == 32
    assert counter.status == ItemStatus.ACTIVE.value
    assert counter.created_at is not None


@pytest.mark.asyncio
async def test_save_many_returns_inserted_ids():
    names = _names(3)
    result = await sequence_counter_repository.save_many([{"name": n, "current_count": 0} for n in names])
    assert result.acknowledged is True
    assert len(result.inserted_ids) == 3
    assert await sequence_counter_repository.count({"name": {"$in": names}}) == 3


@pytest.mark.asyncio
async def test_find_skips_soft_deleted_and_find_deleted_returns_them():
    names = _names(3)
    counters = await _seed_counters(names)
    await sequence_counter_repository.update_by_id(counters[0].id, {"status": ItemStatus.DELETED.value})

    query = {"name": {"$in": names}}
    visible = await sequence_counter_repository.find(query)
    assert {c.name for c in visible} == set(names[1:])
    # 呼叫端的 filter 不應被改動
    assert query == {"name": {"$in": names}}

    deleted = await sequence_counter_repository.find_deleted({"name": {"$in": names}})
    assert [c.id for c in deleted] == [counters[0].id]

    explicit = await sequence_counter_repository.find({"name": {"$in": names}, "status": ItemStatus.DELETED.value})
    assert [c.id for c in explicit] == [counters[0].id]

    # by id 不套用軟刪除
    assert (await sequence_counter_repository.find_by_id(counters[0].id)) is not None
    assert (await sequence_counter_repository.find_one({"name": names[0]})) is None


@pytest.mark.asyncio
async def test_find_limit_sort_and_operators():
    names = _names(5)
    await _seed_counters(names)

    top = await sequence_counter_repository.find({"name": {"$in": names}}, limit=2, sort={"current_count": -1})
    assert [c.current_count for c in top] == [4, 3]

    ranged = await sequence_counter_repository.find(
        {"name": {"$in": names}, "current_count": {"$gte": 1, "$lt": 3}}, sort={"current_count": 1}
    )
    assert [c.current_count for c in ranged] == [1, 2]

    either = await sequence_counter_repository.find(
        {"$or": [{"name": names[0]}, {"name": names[4]}]}, sort={"current_count": 1}
    )
    assert [c.name for c in either] == [names[0], names[4]]

    excluded = await sequence_counter_repository.find(
        {"name": {"$in": names, "$nin": names[:4]}}
    )
    assert [c.name for c in excluded] == [names[4]]


@pytest.mark.asyncio
async def test_unknown_filter_field_raises():
    with pytest.raises(ValueError):
        await sequence_counter_repository.find({"nope": 1})


@pytest.mark.asyncio
async def test_fields_selection_loads_requested_columns():
    name = _names(1)[0]
    counter = await sequence_counter_repository.save({"name": name, "current_count": 7})
    loaded = await sequence_counter_repository.find_by_id(counter.id, fields=["name", "current_count"])
    assert loaded.name == name
    assert loaded.current_count == 7


@pytest.mark.asyncio
async def test_paginate_returns_items_and_paginator():
    names = _names(5)
    await _seed_counters(names)

    result = await sequence_counter_repository.paginate(
        {"name": {"$in": names}}, page_size=2, page=3, sort={"current_count": 1}
    )
    assert [c.name for c in result.items] == [names[4]]
    p = result.paginator
    assert p.items_count == 5
    assert p.items_per_page == 2
    assert p.current_page == 3
    assert p.total_pages == 3
    assert p.has_next_page is False and p.next_page is None
    assert p.has_previous_page is True and p.previous_page == 2
    assert p.serial_number == 5

    beyond = await sequence_counter_repository.paginate({"name": {"$in": names}}, page_size=2, page=9)
    assert beyond.items == []
    assert beyond.paginator.has_next_page is False


@pytest.mark.asyncio
async def test_populate_loads_relationship():
    user = await _new_user()
    login_session = await login_session_repository.save({"user_id": user.id, "status": Bit.OFF.value})

    loaded = await login_session_repository.find_by_id_and_populate(login_session.id, ["user"])
    assert loaded.user.email == user.email

    found = await login_session_repository.find_one_and_populate({"user_id": user.id}, ["user"])
    assert found.user.id == user.id

    many = await login_session_repository.find_and_populate({"user_id": user.id}, ["user"])
    assert [s.user.id for s in many] == [user.id]


@pytest.mark.asyncio
async def test_login_session_validity_is_computed_per_row():
    user = await _new_user()
    first = await login_session_repository.save({"user_id": user.id})
    second = await login_session_repository.save({"user_id": user.id})
    assert first.status == Bit.OFF.value
    assert second.validity_end_date >= first.validity_end_date


# --- update ---
@pytest.mark.asyncio
async def test_update_one_returns_new_document_or_none():
    name = _names(1)[0]
    await sequence_counter_repository.save({"name": name, "current_count": 1})

    updated = await sequence_counter_repository.update_one({"name": name}, {"$inc": {"current_count": 4}})
    assert updated.current_count == 5

    assert await sequence_counter_repository.update_one({"name": "missing-" + name}, {"current_count": 1}) is None
    assert await sequence_counter_repository.update_by_id("0" * 32, {"current_count": 1}) is None


@pytest.mark.asyncio
async def test_update_many_reports_counts_and_skips_deleted():
    names = _names(3)
    counters = await _seed_counters(names)
    await sequence_counter_repository.update_by_id(counters[2].id, {"status": ItemStatus.DELETED.value})

    result = await sequence_counter_repository.update_many({"name": {"$in": names}}, {"current_count": 42})
    assert result.acknowledged is True
    assert result.matched_count == 2
    assert result.modified_count == 2

    untouched = await sequence_counter_repository.find_by_id(counters[2].id)
    assert untouched.current_count == 2


@pytest.mark.asyncio
async def test_update_or_create_new_upserts():
    name = _names(1)[0]
    created = await sequence_counter_repository.update_or_create_new({"name": name}, {"current_count": 10})
    assert created.name == name and created.current_count == 10

    updated = await sequence_counter_repository.update_or_create_new({"name": name}, {"$inc": {"current_count": 1}})
    assert updated.id == created.id
    assert updated.current_count == 11


@pytest.mark.asyncio
async def test_get_next_number_increments_or_creates():
    name = _names(1)[0]
    assert await get_next_number(name) == 1
    assert await get_next_number(name) == 2
    assert await get_next_number(name) == 3
    assert await sequence_counter_repository.count({"name": name}) == 1


@pytest.mark.asyncio
async def test_get_next_number_concurrent_first_use_hands_out_distinct_numbers():
    name = _names(1)[0]
    results = await asyncio.gather(*[get_next_number(name) for _ in range(4)])
    assert sorted(results) == [1, 2, 3, 4]
    assert await sequence_counter_repository.count({"name": name}) == 1


@pytest.mark.asyncio
async def test_update_or_create_new_conflicting_with_deleted_row_raises():
    name = _names(1)[0]
    counter = await sequence_counter_repository.save({"name": name, "current_count": 5})
    await sequence_counter_repository.update_by_id(counter.id, {"status": ItemStatus.DELETED.value})

    with pytest.raises(IntegrityError):
        await get_next_number(name)
    assert (await sequence_counter_repository.find_by_id(counter.id)).current_count == 5


# --- partial unique indexes ---
@pytest.mark.asyncio
async def test_only_one_active_login_session_per_user():
    user = await _new_user()
    await login_session_repository.save({"user_id": user.id, "status": Bit.ON.value})
    # OFF 的可以有很多筆
    await login_session_repository.save({"user_id": user.id, "status": Bit.OFF.value})
    await login_session_repository.save({"user_id": user.id, "status": Bit.OFF.value})

    with pytest.raises(IntegrityError):
        await login_session_repository.save({"user_id": user.id, "status": Bit.ON.value})
    assert await login_session_repository.count({"user_id": user.id, "status": Bit.ON.value}) == 1


@pytest.mark.asyncio
async def test_only_one_active_password_per_email():
    user = await _new_user()
    await password_repository.save({"password": "hash-1", "email": user.email, "user_id": user.id})
    await password_repository.save({
        "password": "hash-0", "email": user.email, "user_id": user.id, "status": PasswordStatus.DEACTIVATED.value,
    })

    with pytest.raises(IntegrityError):
        await password_repository.save({"password": "hash-2", "email": user.email, "user_id": user.id})
    assert await password_repository.count({"email": user.email, "status": PasswordStatus.ACTIVE.value}) == 1


# --- delete ---
@pytest.mark.asyncio
async def test_delete_operations():
    names = _names(4)
    counters = await _seed_counters(names)

    removed = await sequence_counter_repository.delete_by_id(counters[0].id)
    assert removed.id == counters[0].id
    assert await sequence_counter_repository.find_by_id(counters[0].id) is None

    one = await sequence_counter_repository.delete_one({"name": names[1]})
    assert one.name == names[1]
    assert await sequence_counter_repository.delete_one({"name": names[1]}) is None

    result = await sequence_counter_repository.delete_many({"name": {"$in": names}})
    assert result.acknowledged is True
    assert result.deleted_count == 2
    assert await sequence_counter_repository.count({"name": {"$in": names}}) == 0


# --- transaction ---
@pytest.mark.asyncio
async def test_transaction_rolls_back_every_write_on_error():
    names = _names(2)
    with pytest.raises(RuntimeError):
        async with transaction() as session:
            await sequence_counter_repository.save({"name": names[0], "current_count": 1}, session=session)
            await sequence_counter_repository.save({"name": names[1], "current_count": 1}, session=session)
            raise RuntimeError("boom")

    assert await sequence_counter_repository.count({"name": {"$in": names}}) == 0


@pytest.mark.asyncio
async def test_transaction_commits_and_propagates_integrity_errors():
    name = _names(1)[0]
    async with transaction() as session:
        await sequence_counter_repository.save({"name": name, "current_count": 1}, session=session)
    assert await sequence_counter_repository.count({"name": name}) == 1

    with pytest.raises(IntegrityError):
        await sequence_counter_repository.save({"name": name, "current_count": 2})
