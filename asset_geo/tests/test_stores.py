"""
Tests for the in-memory session contract: atomicity and per-unit serialization.
"""

from __future__ import annotations

import asyncio

import pytest

from asset_geo.models import AssetRecord, StoreCategory, UnitRecord

CYBER = StoreCategory.CYBER


class TestMemorySession:
    async def test_failed_session_rolls_back_every_write(self, backend):
        existing = AssetRecord(category=CYBER, unit_name="某部", province="江苏省", city="南京市")
        backend.seed(existing)
        backend.units["某部"] = UnitRecord(unit_name="某部", province="江苏省", has_cyber=True)

        with pytest.raises(RuntimeError):
            async with backend.session("某部") as session:
                store = session.store(CYBER)
                await store.insert(AssetRecord(category=CYBER, unit_name="某部"))
                await store.update_geography_for_unit("某部", "四川省", "成都市")
                await store.delete(existing.id)
                await session.units.delete("某部")
                raise RuntimeError("abort")

        assert list(backend.records[CYBER]) == [existing.id]
        assert backend.records[CYBER][existing.id].province == "江苏省"
        assert backend.units["某部"].has_cyber

    async def test_reads_return_copies(self, backend):
        record = AssetRecord(category=CYBER, unit_name="某部", province="江苏省", city="南京市")
        backend.seed(record)
        async with backend.session("某部") as session:
            fetched = await session.store(CYBER).get(record.id)
        fetched.province = "四川省"
        assert backend.records[CYBER][record.id].province == "江苏省"

    async def test_same_unit_sessions_serialized(self, backend):
        trace = []

        async def worker(tag):
            async with backend.session("某部"):
                trace.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                trace.append(f"{tag}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    async def test_different_units_interleave(self, backend):
        trace = []

        async def worker(unit):
            async with backend.session(unit):
                trace.append(f"{unit}-in")
                await asyncio.sleep(0.01)
                trace.append(f"{unit}-out")

        await asyncio.gather(worker("甲"), worker("乙"))
        assert trace[:2] == ["甲-in", "乙-in"]

    async def test_duplicate_names_do_not_deadlock(self, backend):
        async with backend.session("某部", "某部") as session:
            assert await session.units.get("某部") is None

    async def test_limit_and_filters(self, backend):
        records = [
            AssetRecord(category=CYBER, unit_name="某部", province="江苏省", city="南京市"),
            AssetRecord(category=CYBER, unit_name="某部", province="四川省", city="成都市"),
            AssetRecord(category=CYBER, unit_name="某部", province="四川省", city="成都市"),
        ]
        backend.seed(*records)
        async with backend.session("某部") as session:
            store = session.store(CYBER)
            differing = await store.list_records_for_unit("某部", differing_from=("江苏省", "南京市"))
            limited = await store.list_records_for_unit("某部", limit=1)
            excluded = await store.list_records_for_unit("某部", exclude_id=records[0].id)
        assert [r.id for r in differing] == [records[1].id, records[2].id]
        assert [r.id for r in limited] == [records[0].id]
        assert len(excluded) == 2

    async def test_all_unit_names(self, backend):
        backend.seed(AssetRecord(category=StoreCategory.SOFTWARE, unit_name="甲"))
        backend.units["乙"] = UnitRecord(unit_name="乙")
        assert await backend.all_unit_names() == ["甲", "乙"]

    async def test_idle_locks_released(self, backend):
        async def worker(unit):
            async with backend.session(unit):
                await asyncio.sleep(0)

        await asyncio.gather(worker("甲"), worker("甲"), worker("乙"))
        assert backend._locks == {}
