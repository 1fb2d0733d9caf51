"""
Database connection management and query functions.
Uses asyncpg for async Postgres access with connection pooling.

Every query function takes the connection as its first argument so callers
can run several of them inside one transaction. Table names come from the
fixed category mapping below, never from user input.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

import asyncpg

from asset_geo.config import get_settings
from asset_geo.models import AssetRecord, StoreCategory, UnitRecord

logger = logging.getLogger(__name__)

ASSET_TABLES: dict[StoreCategory, str] = {
    StoreCategory.SOFTWARE: "software_asset",
    StoreCategory.CYBER: "cyber_asset",
    StoreCategory.DATA_CONTENT: "data_content_asset",
}

# ── Connection Pool ────────────────────────────────────────────────────

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.db.dsn,
            min_size=settings.db.min_pool_size,
            max_size=settings.db.max_pool_size,
        )
        logger.info("Database connection pool created (min=%d, max=%d)",
                    settings.db.min_pool_size, settings.db.max_pool_size)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database connection pool closed")


@asynccontextmanager
async def get_connection() -> AsyncIterator[asyncpg.Connection]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn


# ── Schema Initialization ─────────────────────────────────────────────

async def run_migrations() -> None:
    """Execute SQL migrations in order (idempotent)."""
    from pathlib import Path

    migrations_dir = Path(__file__).parent / "migrations"
    migration_paths = sorted(migrations_dir.glob("*.sql"))

    async with get_connection() as conn:
        for path in migration_paths:
            sql = path.read_text(encoding="utf-8")
            await conn.execute(sql)
            logger.info("Applied migration: %s", path.name)
    logger.info("Migrations applied successfully (%d files)", len(migration_paths))


# ── Locking ───────────────────────────────────────────────────────────

async def lock_units(conn: asyncpg.Connection, unit_names: Iterable[str]) -> None:
    """
    Take a transaction-scoped advisory lock per unit name.
    Names are locked in sorted order so two sessions over overlapping units
    cannot deadlock. Must be called inside a transaction.
    """
    for name in sorted(set(unit_names)):
        await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", name)


def _affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3"
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError):
        return 0


def _record_from_row(category: StoreCategory, row: asyncpg.Record) -> AssetRecord:
    attributes = row["attributes"]
    if isinstance(attributes, str):
        attributes = json.loads(attributes)
    return AssetRecord(
        id=row["id"],
        category=category,
        unit_name=row["unit_name"],
        province=row["province"] if category.carries_geography else None,
        city=row["city"] if category.carries_geography else None,
        asset_name=row["asset_name"],
        attributes=attributes or {},
    )


def _record_columns(category: StoreCategory) -> str:
    if category.carries_geography:
        return "id, unit_name, province, city, asset_name, attributes"
    return "id, unit_name, asset_name, attributes"


# ── Asset Stores ──────────────────────────────────────────────────────

async def count_records_for_unit(conn: asyncpg.Connection, category: StoreCategory, unit_name: str) -> int:
    table = ASSET_TABLES[category]
    return await conn.fetchval(f"SELECT COUNT(*) FROM {table} WHERE unit_name = $1", unit_name)


async def list_records_for_unit(
    conn: asyncpg.Connection,
    category: StoreCategory,
    unit_name: str,
    *,
    differing_from: Optional[tuple[str, str]] = None,
    exclude_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[AssetRecord]:
    """
    Records of one unit, oldest first.
    differing_from=(province, city) keeps only records whose geography differs.
    """
    table = ASSET_TABLES[category]
    clauses = ["unit_name = $1"]
    args: list = [unit_name]

    if differing_from is not None and category.carries_geography:
        args.extend(differing_from)
        clauses.append(f"(province IS DISTINCT FROM ${len(args) - 1} OR city IS DISTINCT FROM ${len(args)})")
    if exclude_id is not None:
        args.append(exclude_id)
        clauses.append(f"id <> ${len(args)}")

    sql = f"SELECT {_record_columns(category)} FROM {table} WHERE {' AND '.join(clauses)} ORDER BY created_at, id"
    if limit is not None:
        args.append(limit)
        sql += f" LIMIT ${len(args)}"

    rows = await conn.fetch(sql, *args)
    return [_record_from_row(category, r) for r in rows]


async def update_geography_for_unit(
    conn: asyncpg.Connection,
    category: StoreCategory,
    unit_name: str,
    province: str,
    city: str,
) -> int:
    """Bulk-set (province, city) on every differing record of the unit. Returns rows changed."""
    if not category.carries_geography:
        return 0
    table = ASSET_TABLES[category]
    status = await conn.execute(
        f"""
        UPDATE {table} SET province = $2, city = $3, updated_at = NOW()
        WHERE unit_name = $1
          AND (province IS DISTINCT FROM $2 OR city IS DISTINCT FROM $3)
        """,
        unit_name, province, city,
    )
    return _affected(status)


async def update_geography_for_ids(
    conn: asyncpg.Connection,
    category: StoreCategory,
    record_ids: list[str],
    province: str,
    city: str,
) -> int:
    if not category.carries_geography or not record_ids:
        return 0
    table = ASSET_TABLES[category]
    status = await conn.execute(
        f"UPDATE {table} SET province = $2, city = $3, updated_at = NOW() WHERE id = ANY($1::text[])",
        record_ids, province, city,
    )
    return _affected(status)


async def insert_record(conn: asyncpg.Connection, record: AssetRecord) -> None:
    table = ASSET_TABLES[record.category]
    attributes = json.dumps(record.attributes, ensure_ascii=False)
    if record.category.carries_geography:
        await conn.execute(
            f"""
            INSERT INTO {table} (id, unit_name, province, city, asset_name, attributes)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            """,
            record.id, record.unit_name, record.province, record.city, record.asset_name, attributes,
        )
    else:
        await conn.execute(
            f"INSERT INTO {table} (id, unit_name, asset_name, attributes) VALUES ($1, $2, $3, $4::jsonb)",
            record.id, record.unit_name, record.asset_name, attributes,
        )


async def get_record(conn: asyncpg.Connection, category: StoreCategory, record_id: str) -> Optional[AssetRecord]:
    table = ASSET_TABLES[category]
    row = await conn.fetchrow(f"SELECT {_record_columns(category)} FROM {table} WHERE id = $1", record_id)
    return _record_from_row(category, row) if row else None


async def update_record(conn: asyncpg.Connection, record: AssetRecord) -> bool:
    table = ASSET_TABLES[record.category]
    attributes = json.dumps(record.attributes, ensure_ascii=False)
    if record.category.carries_geography:
        status = await conn.execute(
            f"""
            UPDATE {table} SET
                unit_name = $2, province = $3, city = $4,
                asset_name = $5, attributes = $6::jsonb, updated_at = NOW()
            WHERE id = $1
            """,
            record.id, record.unit_name, record.province, record.city, record.asset_name, attributes,
        )
    else:
        status = await conn.execute(
            f"""
            UPDATE {table} SET
                unit_name = $2, asset_name = $3, attributes = $4::jsonb, updated_at = NOW()
            WHERE id = $1
            """,
            record.id, record.unit_name, record.asset_name, attributes,
        )
    return _affected(status) > 0


async def delete_record(conn: asyncpg.Connection, category: StoreCategory, record_id: str) -> bool:
    table = ASSET_TABLES[category]
    status = await conn.execute(f"DELETE FROM {table} WHERE id = $1", record_id)
    return _affected(status) > 0


async def distinct_unit_names(conn: asyncpg.Connection, category: StoreCategory) -> list[str]:
    table = ASSET_TABLES[category]
    rows = await conn.fetch(f"SELECT DISTINCT unit_name FROM {table} ORDER BY unit_name")
    return [r["unit_name"] for r in rows]


# ── Report Units ──────────────────────────────────────────────────────

def _unit_from_row(row: asyncpg.Record) -> UnitRecord:
    return UnitRecord(
        unit_name=row["unit_name"],
        province=row["province"],
        has_software=row["has_software"],
        has_cyber=row["has_cyber"],
        has_data_content=row["has_data_content"],
    )


async def get_unit(conn: asyncpg.Connection, unit_name: str) -> Optional[UnitRecord]:
    row = await conn.fetchrow(
        """
        SELECT unit_name, province, has_software, has_cyber, has_data_content
        FROM report_unit WHERE unit_name = $1
        """,
        unit_name,
    )
    return _unit_from_row(row) if row else None


async def insert_unit(conn: asyncpg.Connection, unit: UnitRecord) -> None:
    """Create the row unless it already exists."""
    await conn.execute(
        """
        INSERT INTO report_unit (unit_name, province, has_software, has_cyber, has_data_content)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (unit_name) DO NOTHING
        """,
        unit.unit_name, unit.province, unit.has_software, unit.has_cyber, unit.has_data_content,
    )


async def update_unit(conn: asyncpg.Connection, unit: UnitRecord) -> None:
    await conn.execute(
        """
        UPDATE report_unit SET
            province = $2,
            has_software = $3,
            has_cyber = $4,
            has_data_content = $5,
            updated_at = NOW()
        WHERE unit_name = $1
        """,
        unit.unit_name, unit.province, unit.has_software, unit.has_cyber, unit.has_data_content,
    )


async def delete_unit(conn: asyncpg.Connection, unit_name: str) -> bool:
    status = await conn.execute("DELETE FROM report_unit WHERE unit_name = $1", unit_name)
    return _affected(status) > 0


async def list_orphaned_units(conn: asyncpg.Connection) -> list[str]:
    rows = await conn.fetch(
        """
        SELECT unit_name FROM report_unit
        WHERE NOT has_software AND NOT has_cyber AND NOT has_data_content
        ORDER BY unit_name
        """
    )
    return [r["unit_name"] for r in rows]


async def list_unit_names(conn: asyncpg.Connection) -> list[str]:
    rows = await conn.fetch("SELECT unit_name FROM report_unit ORDER BY unit_name")
    return [r["unit_name"] for r in rows]
