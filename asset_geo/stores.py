"""
Storage seam between the consistency engine and persistence.

The synchronizer and propagator only ever talk to a Session:
  - session.store(category): one of the three asset stores
  - session.units:           the shared per-unit lookup rows

A Backend hands out sessions scoped to a set of unit names. Everything done
inside one session is atomic and serialized against any other session that
names an overlapping unit:
  - PostgresBackend: one connection, one transaction, advisory xact locks
  - MemoryBackend:   per-unit asyncio locks, undo journal on failure
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import asyncpg

from asset_geo import db
from asset_geo.models import AssetRecord, StoreCategory, UnitRecord

logger = logging.getLogger(__name__)


# ── Interfaces ────────────────────────────────────────────────────────

class AssetStore(ABC):
    category: StoreCategory

    @abstractmethod
    async def count_records_for_unit(self, unit_name: str) -> int: ...

    @abstractmethod
    async def list_records_for_unit(
        self,
        unit_name: str,
        *,
        differing_from: Optional[tuple[str, str]] = None,
        exclude_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AssetRecord]: ...

    @abstractmethod
    async def update_geography_for_unit(self, unit_name: str, province: str, city: str) -> int: ...

    @abstractmethod
    async def update_geography_for_ids(self, record_ids: list[str], province: str, city: str) -> int: ...

    @abstractmethod
    async def insert(self, record: AssetRecord) -> None: ...

    @abstractmethod
    async def get(self, record_id: str) -> Optional[AssetRecord]: ...

    @abstractmethod
    async def update(self, record: AssetRecord) -> bool: ...

    @abstractmethod
    async def delete(self, record_id: str) -> bool: ...

    @abstractmethod
    async def unit_names(self) -> list[str]: ...


class UnitRepository(ABC):
    @abstractmethod
    async def get(self, unit_name: str) -> Optional[UnitRecord]: ...

    @abstractmethod
    async def insert(self, unit: UnitRecord) -> None: ...

    @abstractmethod
    async def update(self, unit: UnitRecord) -> None: ...

    @abstractmethod
    async def delete(self, unit_name: str) -> bool: ...

    @abstractmethod
    async def list_orphaned(self) -> list[str]: ...

    @abstractmethod
    async def list_names(self) -> list[str]: ...


@dataclass
class Session:
    stores: dict[StoreCategory, AssetStore]
    units: UnitRepository

    def store(self, category: StoreCategory) -> AssetStore:
        return self.stores[category]

    async def presence(self, unit_name: str) -> dict[StoreCategory, bool]:
        """Ground truth: does each store hold at least one record for the unit?"""
        return {
            category: (await store.count_records_for_unit(unit_name)) > 0
            for category, store in self.stores.items()
        }


class Backend(ABC):
    @abstractmethod
    def session(self, *unit_names: str) -> "AsyncIterator[Session]":
        """Async context manager yielding a Session serialized on unit_names."""

    async def all_unit_names(self) -> list[str]:
        """Every unit name known to the lookup table or to any store."""
        async with self.session() as session:
            names = set(await session.units.list_names())
            for store in session.stores.values():
                names.update(await store.unit_names())
        return sorted(names)

    async def close(self) -> None:
        pass


# ── Postgres ──────────────────────────────────────────────────────────

class PostgresAssetStore(AssetStore):
    def __init__(self, conn: asyncpg.Connection, category: StoreCategory):
        self.conn = conn
        self.category = category

    async def count_records_for_unit(self, unit_name):
        return await db.count_records_for_unit(self.conn, self.category, unit_name)

    async def list_records_for_unit(self, unit_name, *, differing_from=None, exclude_id=None, limit=None):
        return await db.list_records_for_unit(
            self.conn, self.category, unit_name,
            differing_from=differing_from, exclude_id=exclude_id, limit=limit,
        )

    async def update_geography_for_unit(self, unit_name, province, city):
        return await db.update_geography_for_unit(self.conn, self.category, unit_name, province, city)

    async def update_geography_for_ids(self, record_ids, province, city):
        return await db.update_geography_for_ids(self.conn, self.category, record_ids, province, city)

    async def insert(self, record):
        await db.insert_record(self.conn, record)

    async def get(self, record_id):
        return await db.get_record(self.conn, self.category, record_id)

    async def update(self, record):
        return await db.update_record(self.conn, record)

    async def delete(self, record_id):
        return await db.delete_record(self.conn, self.category, record_id)

    async def unit_names(self):
        return await db.distinct_unit_names(self.conn, self.category)


class PostgresUnitRepository(UnitRepository):
    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def get(self, unit_name):
        return await db.get_unit(self.conn, unit_name)

    async def insert(self, unit):
        await db.insert_unit(self.conn, unit)

    async def update(self, unit):
        await db.update_unit(self.conn, unit)

    async def delete(self, unit_name):
        return await db.delete_unit(self.conn, unit_name)

    async def list_orphaned(self):
        return await db.list_orphaned_units(self.conn)

    async def list_names(self):
        return await db.list_unit_names(self.conn)


class PostgresBackend(Backend):
    """Sessions backed by the shared asyncpg pool."""

    @asynccontextmanager
    async def session(self, *unit_names: str) -> AsyncIterator[Session]:
        async with db.get_connection() as conn:
            async with conn.transaction():
                await db.lock_units(conn, unit_names)
                yield Session(
                    stores={c: PostgresAssetStore(conn, c) for c in StoreCategory},
                    units=PostgresUnitRepository(conn),
                )

    async def close(self) -> None:
        await db.close_pool()


# ── In-memory ─────────────────────────────────────────────────────────

_MISSING = object()


class _Journal:
    """Prior values of every key a session touched, replayed backwards on failure."""

    def __init__(self) -> None:
        self._entries: list[tuple[dict, str, object]] = []
        self._seen: set[tuple[int, str]] = set()

    def touch(self, table: dict, key: str) -> None:
        marker = (id(table), key)
        if marker in self._seen:
            return
        self._seen.add(marker)
        self._entries.append((table, key, table.get(key, _MISSING)))

    def rollback(self) -> None:
        for table, key, prior in reversed(self._entries):
            if prior is _MISSING:
                table.pop(key, None)
            else:
                table[key] = prior
        self._entries.clear()
        self._seen.clear()


class MemoryAssetStore(AssetStore):
    def __init__(self, rows: dict[str, AssetRecord], category: StoreCategory, journal: _Journal):
        self.rows = rows
        self.category = category
        self.journal = journal

    def _for_unit(self, unit_name: str) -> list[AssetRecord]:
        return [r for r in self.rows.values() if r.unit_name == unit_name]

    async def count_records_for_unit(self, unit_name):
        return len(self._for_unit(unit_name))

    async def list_records_for_unit(self, unit_name, *, differing_from=None, exclude_id=None, limit=None):
        out = []
        for r in self._for_unit(unit_name):
            if exclude_id is not None and r.id == exclude_id:
                continue
            if differing_from is not None and self.category.carries_geography:
                if (r.province, r.city) == differing_from:
                    continue
            out.append(r.model_copy())
            if limit is not None and len(out) >= limit:
                break
        return out

    async def update_geography_for_unit(self, unit_name, province, city):
        if not self.category.carries_geography:
            return 0
        ids = [r.id for r in self._for_unit(unit_name) if (r.province, r.city) != (province, city)]
        return await self.update_geography_for_ids(ids, province, city)

    async def update_geography_for_ids(self, record_ids, province, city):
        if not self.category.carries_geography:
            return 0
        changed = 0
        for record_id in record_ids:
            current = self.rows.get(record_id)
            if current is None:
                continue
            self.journal.touch(self.rows, record_id)
            self.rows[record_id] = current.model_copy(update={"province": province, "city": city})
            changed += 1
        return changed

    async def insert(self, record):
        if record.id in self.rows:
            raise KeyError(f"duplicate {self.category.value} record id {record.id}")
        self.journal.touch(self.rows, record.id)
        self.rows[record.id] = self._strip(record)

    async def get(self, record_id):
        record = self.rows.get(record_id)
        return record.model_copy() if record else None

    async def update(self, record):
        if record.id not in self.rows:
            return False
        self.journal.touch(self.rows, record.id)
        self.rows[record.id] = self._strip(record)
        return True

    async def delete(self, record_id):
        if record_id not in self.rows:
            return False
        self.journal.touch(self.rows, record_id)
        del self.rows[record_id]
        return True

    async def unit_names(self):
        return sorted({r.unit_name for r in self.rows.values()})

    def _strip(self, record: AssetRecord) -> AssetRecord:
        if self.category.carries_geography:
            return record.model_copy()
        return record.model_copy(update={"province": None, "city": None})


class MemoryUnitRepository(UnitRepository):
    def __init__(self, rows: dict[str, UnitRecord], journal: _Journal):
        self.rows = rows
        self.journal = journal

    async def get(self, unit_name):
        unit = self.rows.get(unit_name)
        return unit.model_copy() if unit else None

    async def insert(self, unit):
        if unit.unit_name in self.rows:
            return
        self.journal.touch(self.rows, unit.unit_name)
        self.rows[unit.unit_name] = unit.model_copy()

    async def update(self, unit):
        if unit.unit_name not in self.rows:
            return
        self.journal.touch(self.rows, unit.unit_name)
        self.rows[unit.unit_name] = unit.model_copy()

    async def delete(self, unit_name):
        if unit_name not in self.rows:
            return False
        self.journal.touch(self.rows, unit_name)
        del self.rows[unit_name]
        return True

    async def list_orphaned(self):
        return sorted(name for name, unit in self.rows.items() if unit.is_orphaned)

    async def list_names(self):
        return sorted(self.rows)


class MemoryBackend(Backend):
    """
    Process-local backend for tests and offline runs.
    Sessions over the same unit are serialized; the per-unit locks are not
    re-entrant, so a task must not open a nested session on a unit it holds.
    """

    def __init__(self) -> None:
        self.records: dict[StoreCategory, dict[str, AssetRecord]] = {c: {} for c in StoreCategory}
        self.units: dict[str, UnitRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def session(self, *unit_names: str) -> AsyncIterator[Session]:
        journal = _Journal()
        async with AsyncExitStack() as stack:
            for name in sorted(set(unit_names)):
                await stack.enter_async_context(self._unit_lock(name))
            session = Session(
                stores={c: MemoryAssetStore(self.records[c], c, journal) for c in StoreCategory},
                units=MemoryUnitRepository(self.units, journal),
            )
            try:
                yield session
            except BaseException:
                journal.rollback()
                raise

    @asynccontextmanager
    async def _unit_lock(self, name: str) -> AsyncIterator[None]:
        # A lock lives only while some session holds or waits on it.
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]

    def seed(self, *records: AssetRecord) -> None:
        """Put records straight into the stores, bypassing synchronization."""
        for record in records:
            self.records[record.category][record.id] = record.model_copy()
