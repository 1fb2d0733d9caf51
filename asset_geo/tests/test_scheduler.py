"""
Tests for the periodic reconcile job.
"""

from __future__ import annotations

from asset_geo.models import AssetRecord, StoreCategory
from asset_geo.scheduler import _reconcile_job, create_scheduler


class _BrokenSynchronizer:
    async def reconcile_all(self):
        raise RuntimeError("database unavailable")


class TestReconcileJob:
    async def test_failure_logged_not_raised(self, caplog):
        assert await _reconcile_job(_BrokenSynchronizer()) is None
        assert "database unavailable" in caplog.text

    async def test_report_returned(self, backend, synchronizer):
        backend.seed(AssetRecord(category=StoreCategory.CYBER, unit_name="成都某部",
                                 province="四川省", city="成都市"))
        report = await _reconcile_job(synchronizer)
        assert report.succeeded == 1
        assert backend.units["成都某部"].has_cyber


class TestCreateScheduler:
    def test_single_instance_job(self, synchronizer):
        scheduler = create_scheduler(synchronizer)
        job = scheduler.get_job("asset_geo_reconcile")
        assert job is not None
        assert job.max_instances == 1
        assert job.args == (synchronizer,)
