"""Table-oriented database capability over SQLAlchemy.

`Database` exposes the four operations the chat core relies on (insert,
select, update, subscribe-to-inserts) against tables addressed by name, plus a
grouped `count_by` for summaries. Rows travel as plain dictionaries. Every
blocking SQLAlchemy call runs in a worker thread so callers on the event loop
never stall on I/O.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Table, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from clientdesk.backend.errors import DatabaseError
from clientdesk.backend.realtime import (
    InsertHandler,
    RealtimeBroker,
    RealtimeChannel,
    RowFilter,
    StatusHandler,
)
from clientdesk.db.session import Base
from clientdesk.db.time import as_utc

# Populates Base.metadata with every chat table.
import clientdesk.models  # noqa: E402,F401

logger = logging.getLogger(__name__)

Record = dict[str, Any]
OrderBy = Sequence[tuple[str, bool]]


@dataclass(frozen=True)
class In:
    """Membership filter produced by `in_`."""

    values: tuple[Any, ...]


def in_(values: Iterable[Any]) -> In:
    """Match rows whose column value is one of `values`."""
    return In(tuple(values))


def _normalize(record: Mapping[str, Any]) -> Record:
    return {
        key: as_utc(value) if isinstance(value, datetime) else value
        for key, value in record.items()
    }


class Database:
    """Async facade over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker, broker: RealtimeBroker) -> None:
        self._session_factory = session_factory
        self._broker = broker

    @property
    def broker(self) -> RealtimeBroker:
        return self._broker

    async def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        """Insert `record` and return the stored row, then publish it."""
        row = await asyncio.to_thread(self._insert_sync, table, dict(record))
        self._broker.publish(table, row)
        return row

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order: OrderBy = (),
        *,
        limit: int | None = None,
        columns: Sequence[str] | None = None,
    ) -> list[Record]:
        """Return rows matching every filter, in the requested order."""
        return await asyncio.to_thread(
            self._select_sync, table, dict(filters or {}), tuple(order), limit, columns
        )

    async def count_by(
        self,
        table: str,
        column: str,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[Any, int]:
        """Return `{value of column: matching row count}` for rows matching `filters`."""
        return await asyncio.to_thread(self._count_by_sync, table, column, dict(filters or {}))

    async def update(self, table: str, row_id: Any, patch: Mapping[str, Any]) -> int:
        """Apply `patch` to the row with primary key `row_id`."""
        return await self.update_where(table, {"id": row_id}, patch)

    async def update_where(
        self,
        table: str,
        filters: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> int:
        """Apply `patch` to every row matching `filters`; return rows touched."""
        return await asyncio.to_thread(self._update_sync, table, dict(filters), dict(patch))

    async def subscribe(
        self,
        table: str,
        row_filter: RowFilter | None,
        on_insert: InsertHandler,
        on_status: StatusHandler | None = None,
        *,
        name: str | None = None,
    ) -> RealtimeChannel:
        """Open a realtime channel for inserts on `table`."""
        self._table(table)
        channel_name = name or f"{table}:{row_filter or '*'}"
        channel = self._broker.channel(channel_name, table, row_filter, on_insert, on_status)
        return await channel.subscribe()

    def _table(self, name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise DatabaseError(f"Unknown table {name!r}")
        return table

    def _model(self, name: str) -> type[Base]:
        for mapper in Base.registry.mappers:
            if getattr(mapper.class_, "__tablename__", None) == name:
                return mapper.class_
        raise DatabaseError(f"Unknown table {name!r}")

    def _column(self, table: Table, name: str) -> Any:
        try:
            return table.c[name]
        except KeyError as err:
            raise DatabaseError(f"Unknown column {name!r} on {table.name}") from err

    def _where(self, table: Table, filters: Mapping[str, Any]) -> list[Any]:
        clauses = []
        for name, value in filters.items():
            column = self._column(table, name)
            if isinstance(value, In):
                clauses.append(column.in_(value.values))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        return clauses

    def _insert_sync(self, table: str, record: Record) -> Record:
        model = self._model(table)
        columns = model.__table__.c
        unknown = [key for key in record if key not in columns]
        if unknown:
            raise DatabaseError(f"Unknown column(s) {', '.join(unknown)} on {table}")

        with self._session_factory() as session:
            try:
                obj = model(**record)
                session.add(obj)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Insert into %s failed: %s", table, exc)
                raise DatabaseError(f"Insert into {table} failed") from exc
            return _normalize({column.key: getattr(obj, column.key) for column in columns})

    def _select_sync(
        self,
        table: str,
        filters: Record,
        order: tuple[tuple[str, bool], ...],
        limit: int | None,
        columns: Sequence[str] | None,
    ) -> list[Record]:
        target = self._table(table)
        selected = [self._column(target, name) for name in columns] if columns else [target]
        stmt = select(*selected).where(*self._where(target, filters))
        for name, ascending in order:
            column = self._column(target, name)
            stmt = stmt.order_by(column.asc() if ascending else column.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self._session_factory() as session:
            try:
                rows = session.execute(stmt).mappings().all()
            except SQLAlchemyError as exc:
                logger.error("Select from %s failed: %s", table, exc)
                raise DatabaseError(f"Select from {table} failed") from exc
        return [_normalize(row) for row in rows]

    def _count_by_sync(self, table: str, column: str, filters: Record) -> dict[Any, int]:
        target = self._table(table)
        key = self._column(target, column)
        stmt = (
            select(key, func.count())
            .where(*self._where(target, filters))
            .group_by(key)
        )

        with self._session_factory() as session:
            try:
                rows = session.execute(stmt).all()
            except SQLAlchemyError as exc:
                logger.error("Count on %s failed: %s", table, exc)
                raise DatabaseError(f"Count on {table} failed") from exc
        return {value: int(total) for value, total in rows}

    def _update_sync(self, table: str, filters: Record, patch: Record) -> int:
        target = self._table(table)
        for name in patch:
            self._column(target, name)
        stmt = update(target).where(*self._where(target, filters)).values(**patch)

        with self._session_factory() as session:
            try:
                result = session.execute(stmt)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Update of %s failed: %s", table, exc)
                raise DatabaseError(f"Update of {table} failed") from exc
            return int(result.rowcount or 0)
