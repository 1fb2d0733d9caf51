"""
Cascade propagation: once a record's geography is final, pull the unit's
other records into line.

  - in-store: every record of the unit in the same store gets the same pair,
    rewritten in bounded batches
  - cross-store: the sibling store (cyber <-> data_content) is updated only
    when the geography actually changed and the sibling holds the unit

Propagation runs inside the session that wrote the record, so the write, the
lookup-row sync and the cascade all happen under the unit's lock. Concurrent
writers to one unit therefore converge on the last writer's pair.

The software store has no geography columns and never takes part.
"""

from __future__ import annotations

import logging
from typing import Optional

from asset_geo.models import Geography, PropagationReport, StoreCategory
from asset_geo.stores import Backend, Session

logger = logging.getLogger(__name__)


class CascadePropagator:
    def __init__(self, backend: Backend, batch_size: int = 200):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.backend = backend
        self.batch_size = batch_size

    # ── Standalone entry points (own session) ─────────────────────────

    async def align_store(self, category: StoreCategory, unit_name: str, geography: Geography) -> int:
        """Rewrite every same-unit record whose pair differs. Returns records changed."""
        async with self.backend.session(unit_name) as session:
            return await self.align_in_session(session, category, unit_name, geography)

    async def propagate(
        self,
        category: StoreCategory,
        unit_name: str,
        geography: Geography,
        previous: Optional[Geography],
    ) -> PropagationReport:
        async with self.backend.session(unit_name) as session:
            return await self.propagate_in_session(session, category, unit_name, geography, previous)

    # ── Session-scoped work ───────────────────────────────────────────

    async def align_in_session(
        self,
        session: Session,
        category: StoreCategory,
        unit_name: str,
        geography: Geography,
    ) -> int:
        if not category.carries_geography:
            return 0

        store = session.store(category)
        target = (geography.province, geography.city)
        total = 0
        while True:
            batch = await store.list_records_for_unit(unit_name, differing_from=target, limit=self.batch_size)
            if not batch:
                break
            changed = await store.update_geography_for_ids([r.id for r in batch], *target)
            total += changed
            if len(batch) < self.batch_size or changed == 0:
                break

        if total:
            logger.info("Aligned %d %s records of unit %s to (%s, %s)",
                        total, category.value, unit_name, geography.province, geography.city)
        return total

    async def propagate_in_session(
        self,
        session: Session,
        category: StoreCategory,
        unit_name: str,
        geography: Geography,
        previous: Optional[Geography],
    ) -> PropagationReport:
        report = PropagationReport(unit_name=unit_name, category=category)
        if not category.carries_geography:
            return report

        report.aligned = await self.align_in_session(session, category, unit_name, geography)

        if previous is None or previous == geography:
            return report

        sibling = category.sibling
        if await session.store(sibling).count_records_for_unit(unit_name) < 1:
            return report

        report.sibling = sibling
        report.sibling_updated = await self.align_in_session(session, sibling, unit_name, geography)
        logger.info("Geography of unit %s changed %s/%s -> %s/%s; %d %s records updated",
                    unit_name, previous.province, previous.city, geography.province, geography.city,
                    report.sibling_updated, sibling.value)
        return report
