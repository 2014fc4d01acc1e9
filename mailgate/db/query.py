# mailgate/db/query.py
"""
通用資料存取層 DBQuery。

每個 entity 的 repository 都繼承自 DBQuery[Model, CreatePayload]，
共用同一套 CRUD / 分頁 / populate / 軟刪除過濾。

- filter 採文件式寫法：{field: value}、{field: {"$ne": v}}、{"$or": [...]}
- sort 為 {field: 1 | -1}，預設 {"created_at": -1}
- update 為欄位值 dict，可帶 {"$inc": {field: n}}

每個操作都可傳入 session（transaction() 開出來的 AsyncSession）：
有傳就只 flush，由交易擁有者決定 commit / rollback；
沒傳就自己開一個短命 session 並在成功後 commit。
"""
from __future__ import annotations

import math
import operator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Dict, Generic, List, Mapping, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel
from sqlalchemy import and_, delete, func, or_, select, true
from sqlalchemy import update as sa_update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import load_only, selectinload
from sqlalchemy.sql import ColumnElement, Select

from mailgate.db import session as db_session
from mailgate.models.base import Base
from mailgate.models.enums import ItemStatus

ModelT = TypeVar("ModelT", bound=Base)
CreateT = TypeVar("CreateT")

Filter = Mapping[str, Any]
Sort = Mapping[str, int]

# 支援 ON CONFLICT 的方言
CONFLICT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}

DEFAULT_SORT: Dict[str, int] = {"created_at": -1}


# === Result types ===
@dataclass
class InsertManyResult:
    acknowledged: bool
    inserted_ids: List[str] = field(default_factory=list)


@dataclass
class UpdateResult:
    acknowledged: bool
    matched_count: int
    modified_count: int
    upserted_count: int = 0


@dataclass
class DeleteResult:
    acknowledged: bool
    deleted_count: int


@dataclass
class Paginator:
    items_count: int
    items_per_page: int
    current_page: int
    next_page: Optional[int]
    previous_page: Optional[int]
    has_previous_page: bool
    has_next_page: bool
    total_pages: int
    serial_number: int

    @classmethod
    def build(cls, items_count: int, items_per_page: int, current_page: int) -> "Paginator":
        total_pages = math.ceil(items_count / items_per_page) if items_count else 0
        has_next = current_page < total_pages
        has_prev = current_page > 1
        return cls(
            items_count=items_count,
            items_per_page=items_per_page,
            current_page=current_page,
            next_page=current_page + 1 if has_next else None,
            previous_page=current_page - 1 if has_prev else None,
            has_previous_page=has_prev,
            has_next_page=has_next,
            total_pages=total_pages,
            serial_number=(current_page - 1) * items_per_page + 1,
        )


@dataclass
class PaginatedResult(Generic[ModelT]):
    items: List[ModelT]
    paginator: Paginator


# === Soft delete ===
def with_soft_delete_filter(model: Type[Base], filter: Optional[Filter] = None) -> Dict[str, Any]:
    """
    回傳一個新的 filter：支援軟刪除的 model 且呼叫端沒指定 status 時，
    補上 status != deleted。呼叫端傳入的 dict 不會被修改。
    """
    base = dict(filter or {})
    if not getattr(model, "__soft_delete__", False) or "status" in base:
        return base
    return {**base, "status": {"$ne": ItemStatus.DELETED.value}}


# === Filter / sort / update 轉換 ===
def _ne(col, value):
    # 與文件式查詢一致：$ne 也要涵蓋 NULL 欄位
    if value is None:
        return col.is_not(None)
    return or_(col != value, col.is_(None))


_OPERATORS = {
    "$eq": lambda col, v: col.is_(None) if v is None else col == v,
    "$ne": _ne,
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
    "$in": lambda col, v: col.in_(list(v)),
    "$nin": lambda col, v: col.not_in(list(v)),
}


def _column(model: Type[Base], name: str):
    if name not in sa_inspect(model).column_attrs:
        raise ValueError(f"Unknown field '{name}' for {model.__name__}")
    return getattr(model, name)


def build_where(model: Type[Base], filter: Optional[Filter]) -> List[ColumnElement]:
    clauses: List[ColumnElement] = []
    for key, value in (filter or {}).items():
        if key == "$or":
            clauses.append(or_(*[and_(*(build_where(model, f) or [true()])) for f in value]))
            continue
        if key == "$and":
            clauses.extend(c for f in value for c in build_where(model, f))
            continue

        col = _column(model, key)
        if isinstance(value, Mapping) and value and all(str(k).startswith("$") for k in value):
            for op, operand in value.items():
                try:
                    fn = _OPERATORS[op]
                except KeyError:
                    raise ValueError(f"Unsupported operator '{op}'") from None
                clauses.append(fn(col, operand))
        elif value is None:
            clauses.append(col.is_(None))
        else:
            clauses.append(col == value)
    return clauses


def build_order_by(model: Type[Base], sort: Optional[Sort]) -> List[ColumnElement]:
    return [
        _column(model, name).desc() if int(direction) < 0 else _column(model, name).asc()
        for name, direction in (sort or DEFAULT_SORT).items()
    ]


def build_values(model: Type[Base], data: Mapping[str, Any]) -> Dict[str, Any]:
    """update dict 轉成 UPDATE 的 SET 值；$inc 轉成 col = col + n"""
    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key == "$inc":
            for name, amount in value.items():
                col = _column(model, name)
                values[name] = col + amount
        elif key == "$set":
            for name, v in value.items():
                _column(model, name)
                values[name] = v
        else:
            _column(model, key)
            values[key] = value
    return values


def _payload_dict(model: Type[Base], payload: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    # 只保留 model 有的欄位，多餘的 key 直接略過
    data = payload.model_dump(exclude_unset=True) if isinstance(payload, BaseModel) else dict(payload)
    columns = sa_inspect(model).column_attrs
    return {k: v for k, v in data.items() if k in columns}


class DBQuery(Generic[ModelT, CreateT]):
    model: Type[ModelT]

    def __init__(self, model: Type[ModelT]):
        self.model = model

    # ---- session handling ----
    @asynccontextmanager
    async def _scope(self, session: Optional[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
        if session is not None:
            yield session
            await session.flush()
            return
        own: AsyncSession = db_session.AsyncSessionLocal()
        try:
            yield own
            await own.commit()
        except BaseException:
            await own.rollback()
            raise
        finally:
            await own.close()

    # ---- statement helpers ----
    def _where(self, filter: Optional[Filter]) -> List[ColumnElement]:
        return build_where(self.model, with_soft_delete_filter(self.model, filter))

    def _select(
        self,
        where: Sequence[ColumnElement],
        fields: Optional[Sequence[str]] = None,
        populate: Optional[Sequence[str]] = None,
        sort: Optional[Sort] = None,
    ) -> Select:
        stmt = select(self.model).where(*where)
        if fields:
            stmt = stmt.options(load_only(*[_column(self.model, f) for f in fields]))
        for rel in populate or []:
            stmt = stmt.options(selectinload(getattr(self.model, rel)))
        if sort is not None:
            stmt = stmt.order_by(*build_order_by(self.model, sort))
        return stmt

    async def _reload(self, s: AsyncSession, id: str, fields: Optional[Sequence[str]] = None) -> Optional[ModelT]:
        stmt = self._select([self.model.id == id], fields=fields).execution_options(populate_existing=True)
        return (await s.execute(stmt)).scalar_one_or_none()

    # ---- create ----
    async def save(self, data: CreateT, session: Optional[AsyncSession] = None) -> ModelT:
        obj = self.model(**_payload_dict(self.model, data))
        async with self._scope(session) as s:
            s.add(obj)
            await s.flush()
        return obj

    async def save_many(self, data: Sequence[CreateT], session: Optional[AsyncSession] = None) -> InsertManyResult:
        objs = [self.model(**_payload_dict(self.model, d)) for d in data]
        async with self._scope(session) as s:
            s.add_all(objs)
            await s.flush()
        return InsertManyResult(acknowledged=True, inserted_ids=[o.id for o in objs])

    async def update_or_create_new(
        self,
        filter: Filter,
        update: Mapping[str, Any],
        session: Optional[AsyncSession] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> ModelT:
        """
        有符合的文件就更新並回傳更新後結果；否則用 filter 的等值欄位加上 update 建立新文件。

        建立時用 INSERT ... ON CONFLICT DO NOTHING：同時建立時輸的一方不會炸 IntegrityError，
        而是回頭走更新。
        """
        data = {
            k: (v["$eq"] if isinstance(v, Mapping) else v)
            for k, v in filter.items()
            if not k.startswith("$") and (not isinstance(v, Mapping) or set(v) == {"$eq"})
        }
        for key, value in update.items():
            if key in ("$inc", "$set"):
                data.update(value)
            else:
                data[key] = value
        values = _payload_dict(self.model, data)

        async with self._scope(session) as s:
            where = self._where(filter)
            for _ in range(2):
                existing_id = (await s.execute(select(self.model.id).where(*where).limit(1))).scalar_one_or_none()
                if existing_id is not None:
                    await s.execute(
                        sa_update_stmt(self.model, [self.model.id == existing_id], update)
                    )
                    return await self._reload(s, existing_id, fields)

                inserted_id = (await s.execute(self._insert_ignoring_conflicts(s, values))).scalar_one_or_none()
                if inserted_id is not None:
                    return await self._reload(s, inserted_id, fields)

            # 撞到的是 filter 看不到的列（例如已軟刪除），讓唯一索引的錯誤照常拋出
            obj = self.model(**values)
            s.add(obj)
            await s.flush()
            return obj

    def _insert_ignoring_conflicts(self, s: AsyncSession, values: Mapping[str, Any]):
        dialect = s.get_bind().dialect.name
        if dialect not in CONFLICT_INSERTS:
            raise ValueError(f"update_or_create_new is not supported on {dialect}")
        return (
            CONFLICT_INSERTS[dialect](self.model)
            .values(**values)
            .on_conflict_do_nothing()
            .returning(self.model.id)
        )

    # ---- read ----
    async def count(self, filter: Optional[Filter] = None, session: Optional[AsyncSession] = None) -> int:
        async with self._scope(session) as s:
            stmt = select(func.count()).select_from(self.model).where(*self._where(filter))
            return int((await s.execute(stmt)).scalar_one())

    async def find(
        self,
        filter: Optional[Filter] = None,
        limit: Optional[int] = 10,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[Sort] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[ModelT]:
        stmt = self._select(self._where(filter), fields=fields, sort=sort or DEFAULT_SORT).limit(limit or 10)
        async with self._scope(session) as s:
            return list((await s.execute(stmt)).scalars().all())

    async def find_and_populate(
        self,
        filter: Optional[Filter] = None,
        populate: Optional[Sequence[str]] = None,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[Sort] = None,
        session: Optional[AsyncSession] = None,
    ) -> List[ModelT]:
        stmt = self._select(self._where(filter), fields=fields, populate=populate, sort=sort or DEFAULT_SORT)
        async with self._scope(session) as s:
            return list((await s.execute(stmt)).scalars().all())

    async def find_deleted(self, filter: Optional[Filter] = None, sort: Optional[Sort] = None) -> List[ModelT]:
        final = {**dict(filter or {}), "status": ItemStatus.DELETED.value}
        stmt = self._select(build_where(self.model, final), sort=sort or DEFAULT_SORT)
        async with self._scope(None) as s:
            return list((await s.execute(stmt)).scalars().all())

    async def paginate(
        self,
        filter: Optional[Filter] = None,
        page_size: int = 10,
        page: int = 1,
        sort: Optional[Sort] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> PaginatedResult[ModelT]:
        return await self.paginate_and_populate(filter, page_size, page, None, fields, sort)

    async def paginate_and_populate(
        self,
        filter: Optional[Filter] = None,
        page_size: int = 10,
        page: int = 1,
        populate: Optional[Sequence[str]] = None,
        fields: Optional[Sequence[str]] = None,
        sort: Optional[Sort] = None,
    ) -> PaginatedResult[ModelT]:
        page_size = max(1, int(page_size or 10))
        page = max(1, int(page or 1))
        where = self._where(filter)
        async with self._scope(None) as s:
            total = int((await s.execute(select(func.count()).select_from(self.model).where(*where))).scalar_one())
            stmt = (
                self._select(where, fields=fields, populate=populate, sort=sort or DEFAULT_SORT)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = list((await s.execute(stmt)).scalars().all())
        return PaginatedResult(items=items, paginator=Paginator.build(total, page_size, page))

    async def find_by_id(
        self, id: str, fields: Optional[Sequence[str]] = None, session: Optional[AsyncSession] = None
    ) -> Optional[ModelT]:
        return await self.find_by_id_and_populate(id, None, fields, session)

    async def find_by_id_and_populate(
        self,
        id: str,
        populate: Optional[Sequence[str]] = None,
        fields: Optional[Sequence[str]] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ModelT]:
        stmt = self._select([self.model.id == id], fields=fields, populate=populate)
        async with self._scope(session) as s:
            return (await s.execute(stmt)).scalar_one_or_none()

    async def find_one(
        self, filter: Optional[Filter] = None, fields: Optional[Sequence[str]] = None, session: Optional[AsyncSession] = None
    ) -> Optional[ModelT]:
        return await self.find_one_and_populate(filter, None, fields, session)

    async def find_one_and_populate(
        self,
        filter: Optional[Filter] = None,
        populate: Optional[Sequence[str]] = None,
        fields: Optional[Sequence[str]] = None,
        session: Optional[AsyncSession] = None,
    ) -> Optional[ModelT]:
        stmt = self._select(self._where(filter), fields=fields, populate=populate).limit(1)
        async with self._scope(session) as s:
            return (await s.execute(stmt)).scalars().first()

    # ---- update ----
    async def update_by_id(
        self,
        id: str,
        update: Mapping[str, Any],
        session: Optional[AsyncSession] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> Optional[ModelT]:
        async with self._scope(session) as s:
            result = await s.execute(sa_update_stmt(self.model, [self.model.id == id], update))
            if not result.rowcount:
                return None
            return await self._reload(s, id, fields)

    async def update_one(
        self,
        filter: Filter,
        update: Mapping[str, Any],
        session: Optional[AsyncSession] = None,
        fields: Optional[Sequence[str]] = None,
    ) -> Optional[ModelT]:
        async with self._scope(session) as s:
            target = (await s.execute(select(self.model.id).where(*self._where(filter)).limit(1))).scalar_one_or_none()
            if target is None:
                return None
            await s.execute(sa_update_stmt(self.model, [self.model.id == target], update))
            return await self._reload(s, target, fields)

    async def update_many(
        self, filter: Filter, update: Mapping[str, Any], session: Optional[AsyncSession] = None
    ) -> UpdateResult:
        async with self._scope(session) as s:
            result = await s.execute(sa_update_stmt(self.model, self._where(filter), update))
        count = int(result.rowcount or 0)
        return UpdateResult(acknowledged=True, matched_count=count, modified_count=count)

    # ---- delete ----
    async def delete_many(self, filter: Filter, session: Optional[AsyncSession] = None) -> DeleteResult:
        stmt = delete(self.model).where(*self._where(filter)).execution_options(synchronize_session=False)
        async with self._scope(session) as s:
            result = await s.execute(stmt)
        return DeleteResult(acknowledged=True, deleted_count=int(result.rowcount or 0))

    async def delete_one(self, filter: Filter, session: Optional[AsyncSession] = None) -> Optional[ModelT]:
        stmt = self._select(self._where(filter)).limit(1)
        async with self._scope(session) as s:
            obj = (await s.execute(stmt)).scalars().first()
            if obj is not None:
                await s.delete(obj)
        return obj

    async def delete_by_id(self, id: str, session: Optional[AsyncSession] = None) -> Optional[ModelT]:
        async with self._scope(session) as s:
            obj = await s.get(self.model, id)
            if obj is not None:
                await s.delete(obj)
        return obj


def sa_update_stmt(model: Type[Base], where: Sequence[ColumnElement], data: Mapping[str, Any]):
    return (
        sa_update(model)
        .where(*where)
        .values(**build_values(model, data))
        .execution_options(synchronize_session=False)
    )
