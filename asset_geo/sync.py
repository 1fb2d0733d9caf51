"""
Keeps the shared report_unit lookup rows consistent with the three stores.

Each row caches (a) the unit's best-known province and (b) one presence flag
per store. Flags are always recomputed from the stores themselves, never
toggled for just the category that triggered the event, so the final state
depends only on what the stores hold and not on the order events arrived in.
A row whose three flags are all false is deleted.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from asset_geo.models import BatchSyncReport, StoreCategory, SyncRequest, UnitRecord
from asset_geo.resolver import Resolver
from asset_geo.stores import Backend, Session

logger = logging.getLogger(__name__)


def merge_requests(requests: Iterable[SyncRequest]) -> list[SyncRequest]:
    """
    Collapse a batch to one request per unit, in first-seen order.
    A delete replaces whatever was kept for its unit; otherwise the first
    non-delete request wins and later ones are dropped.
    """
    kept: dict[str, SyncRequest] = {}
    for req in requests:
        if req.is_delete or req.unit_name not in kept:
            kept[req.unit_name] = req
    return list(kept.values())


class ConsistencySynchronizer:
    def __init__(self, backend: Backend, resolver: Resolver, derive_missing_province: bool = True):
        self.backend = backend
        self.resolver = resolver
        self.derive_missing_province = derive_missing_province

    async def sync_unit(
        self,
        session: Session,
        unit_name: str,
        category: Optional[StoreCategory] = None,
        province: Optional[str] = None,
        is_delete: bool = False,
    ) -> Optional[UnitRecord]:
        """
        Bring one lookup row in line with the stores, inside the caller's session.
        Returns the persisted row, or None when the unit is gone everywhere.
        category only identifies the triggering store for logging; all three
        flags are recounted regardless.
        """
        unit = await session.units.get(unit_name)
        if unit is None:
            if is_delete and not any((await session.presence(unit_name)).values()):
                return None
            await session.units.insert(UnitRecord(unit_name=unit_name))
            unit = await session.units.get(unit_name)

        if not is_delete and province and province.strip():
            unit = unit.model_copy(update={"province": province.strip()})
        elif not is_delete and not self.resolver.is_valid_province(unit.province):
            derived = self._derived_province(unit_name)
            if derived:
                unit = unit.model_copy(update={"province": derived})

        unit = unit.with_presence(await session.presence(unit_name))
        await session.units.update(unit)

        if unit.is_orphaned:
            await session.units.delete(unit_name)
            logger.info("Unit %s no longer referenced by any store; lookup row removed", unit_name)
            return None

        logger.debug(
            "Synced unit %s (%s%s): province=%s software=%s cyber=%s data_content=%s",
            unit_name, category.value if category else "reconcile", ", delete" if is_delete else "",
            unit.province, unit.has_software, unit.has_cyber, unit.has_data_content,
        )
        return unit

    async def sync(
        self,
        unit_name: str,
        category: Optional[StoreCategory] = None,
        province: Optional[str] = None,
        is_delete: bool = False,
    ) -> Optional[UnitRecord]:
        """sync_unit in a session of its own."""
        async with self.backend.session(unit_name) as session:
            return await self.sync_unit(session, unit_name, category, province, is_delete)

    async def batch_sync(self, requests: Iterable[SyncRequest]) -> BatchSyncReport:
        requests = list(requests)
        merged = merge_requests(requests)
        report = BatchSyncReport(requested=len(requests), merged=len(merged))

        for req in merged:
            try:
                await self.sync(req.unit_name, req.category, req.province, req.is_delete)
                report.succeeded += 1
            except Exception as e:
                report.failed += 1
                report.failures.append(req.unit_name)
                logger.error("Sync failed for unit %s: %s", req.unit_name, e, exc_info=True)

        report.swept = await self.sweep()
        logger.info("Batch sync: %d requests merged to %d, %d ok, %d failed, %d swept",
                    report.requested, report.merged, report.succeeded, report.failed, report.swept)
        return report

    async def sweep(self) -> int:
        """
        Delete every lookup row whose flags are all false. Each candidate is
        rechecked against the stores under its own lock first; a row that
        turns out to be stale is repaired instead.
        """
        async with self.backend.session() as session:
            candidates = await session.units.list_orphaned()

        removed = 0
        for unit_name in candidates:
            try:
                async with self.backend.session(unit_name) as session:
                    unit = await session.units.get(unit_name)
                    if unit is None:
                        continue
                    unit = unit.with_presence(await session.presence(unit_name))
                    if unit.is_orphaned:
                        await session.units.delete(unit_name)
                        removed += 1
                    else:
                        await session.units.update(unit)
                        logger.warning("Unit %s had stale presence flags; repaired during sweep", unit_name)
            except Exception as e:
                logger.error("Sweep failed for unit %s: %s", unit_name, e, exc_info=True)

        if removed:
            logger.info("Sweep removed %d orphaned unit rows", removed)
        return removed

    async def reconcile_all(self) -> BatchSyncReport:
        """Recompute every lookup row, and every unit any store mentions, from scratch."""
        names = await self.backend.all_unit_names()
        report = BatchSyncReport(requested=len(names), merged=len(names))

        for unit_name in names:
            try:
                await self.sync(unit_name)
                report.succeeded += 1
            except Exception as e:
                report.failed += 1
                report.failures.append(unit_name)
                logger.error("Reconcile failed for unit %s: %s", unit_name, e, exc_info=True)

        report.swept = await self.sweep()
        logger.info("Reconciled %d units (%d failed, %d swept)", report.succeeded, report.failed, report.swept)
        return report

    def _derived_province(self, unit_name: str) -> Optional[str]:
        if not self.derive_missing_province:
            return None
        return self.resolver.derive_province(unit_name)
