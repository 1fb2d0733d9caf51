"""
Tests for in-store alignment and cross-store propagation.
"""

from __future__ import annotations

import pytest

from asset_geo.cascade import CascadePropagator
from asset_geo.models import AssetRecord, Geography, StoreCategory

CYBER = StoreCategory.CYBER
DATA = StoreCategory.DATA_CONTENT
SOFTWARE = StoreCategory.SOFTWARE

NANJING = Geography(province="江苏省", city="南京市")
CHENGDU = Geography(province="四川省", city="成都市")


def rec(category, unit, geo=None):
    return AssetRecord(
        category=category,
        unit_name=unit,
        province=geo.province if geo else None,
        city=geo.city if geo else None,
    )


def geographies(backend, category, unit):
    return {(r.province, r.city) for r in backend.records[category].values() if r.unit_name == unit}


class TestAlignStore:
    async def test_all_records_converge_across_batches(self, backend, propagator):
        backend.seed(
            rec(CYBER, "某部", CHENGDU),
            rec(CYBER, "某部", CHENGDU),
            rec(CYBER, "某部", NANJING),
            rec(CYBER, "某部", Geography(province="未知")),
            rec(CYBER, "某部"),
            rec(CYBER, "别的单位", CHENGDU),
        )
        changed = await propagator.align_store(CYBER, "某部", NANJING)
        assert changed == 4
        assert geographies(backend, CYBER, "某部") == {("江苏省", "南京市")}
        assert geographies(backend, CYBER, "别的单位") == {("四川省", "成都市")}

    async def test_already_aligned_is_noop(self, backend, propagator):
        backend.seed(rec(CYBER, "某部", NANJING), rec(CYBER, "某部", NANJING))
        assert await propagator.align_store(CYBER, "某部", NANJING) == 0

    async def test_align_within_open_session(self, backend, propagator):
        backend.seed(*(rec(CYBER, "某部", CHENGDU) for _ in range(5)))
        async with backend.session("某部") as session:
            changed = await propagator.align_in_session(session, CYBER, "某部", NANJING)
        assert changed == 5
        assert geographies(backend, CYBER, "某部") == {("江苏省", "南京市")}

    async def test_alignment_rolls_back_with_session(self, backend, propagator):
        backend.seed(rec(CYBER, "某部", CHENGDU), rec(CYBER, "某部", CHENGDU))
        with pytest.raises(RuntimeError):
            async with backend.session("某部") as session:
                await propagator.align_in_session(session, CYBER, "某部", NANJING)
                raise RuntimeError("abort")
        assert geographies(backend, CYBER, "某部") == {("四川省", "成都市")}

    async def test_software_store_skipped(self, backend, propagator):
        backend.seed(rec(SOFTWARE, "某部"))
        assert await propagator.align_store(SOFTWARE, "某部", NANJING) == 0

    def test_batch_size_must_be_positive(self, backend):
        with pytest.raises(ValueError):
            CascadePropagator(backend, batch_size=0)


class TestPropagate:
    async def test_changed_geography_reaches_sibling(self, backend, propagator):
        backend.seed(
            rec(CYBER, "某部", NANJING),
            rec(CYBER, "某部", CHENGDU),
            rec(DATA, "某部", CHENGDU),
            rec(DATA, "某部", CHENGDU),
        )
        report = await propagator.propagate(CYBER, "某部", NANJING, previous=CHENGDU)
        assert report.aligned == 1
        assert report.sibling is DATA
        assert report.sibling_updated == 2
        assert geographies(backend, DATA, "某部") == {("江苏省", "南京市")}

    async def test_data_content_propagates_to_cyber(self, backend, propagator):
        backend.seed(rec(DATA, "某部", NANJING), rec(CYBER, "某部", CHENGDU))
        report = await propagator.propagate(DATA, "某部", NANJING, previous=CHENGDU)
        assert report.sibling is CYBER
        assert geographies(backend, CYBER, "某部") == {("江苏省", "南京市")}

    async def test_unchanged_geography_leaves_sibling(self, backend, propagator):
        backend.seed(rec(CYBER, "某部", NANJING), rec(DATA, "某部", CHENGDU))
        report = await propagator.propagate(CYBER, "某部", NANJING, previous=NANJING)
        assert report.sibling is None
        assert geographies(backend, DATA, "某部") == {("四川省", "成都市")}

    async def test_no_previous_geography_leaves_sibling(self, backend, propagator):
        backend.seed(rec(CYBER, "某部", NANJING), rec(DATA, "某部", CHENGDU))
        report = await propagator.propagate(CYBER, "某部", NANJING, previous=None)
        assert report.sibling is None
        assert geographies(backend, DATA, "某部") == {("四川省", "成都市")}

    async def test_sibling_without_records_untouched(self, backend, propagator):
        backend.seed(rec(CYBER, "某部", NANJING), rec(DATA, "别的单位", CHENGDU))
        report = await propagator.propagate(CYBER, "某部", NANJING, previous=CHENGDU)
        assert report.sibling is None
        assert report.sibling_updated == 0
        assert geographies(backend, DATA, "别的单位") == {("四川省", "成都市")}

    async def test_software_never_propagates(self, backend, propagator):
        backend.seed(rec(SOFTWARE, "某部"), rec(CYBER, "某部", CHENGDU))
        report = await propagator.propagate(SOFTWARE, "某部", NANJING, previous=CHENGDU)
        assert report.aligned == 0
        assert report.sibling is None
        assert geographies(backend, CYBER, "某部") == {("四川省", "成都市")}
