"""
Write path used by the CRUD and import layer.

Every unit-affecting write runs the same sequence:
  resolve geography -> write the record -> sync the lookup row
  -> propagate to the unit's other records

all inside one per-unit session.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from asset_geo.cascade import CascadePropagator
from asset_geo.config import Settings, get_settings
from asset_geo.dictionary import GeoDictionary, load_dictionary
from asset_geo.models import (
    AssetDraft,
    AssetEdit,
    AssetRecord,
    Geography,
    ImportReport,
    StoreCategory,
    SyncRequest,
)
from asset_geo.resolver import Resolver
from asset_geo.stores import Backend, PostgresBackend
from asset_geo.sync import ConsistencySynchronizer

logger = logging.getLogger(__name__)


class AssetGeoError(Exception):
    pass


class AssetNotFoundError(AssetGeoError):
    def __init__(self, category: StoreCategory, record_id: str):
        super().__init__(f"{category.value} record {record_id} not found")
        self.category = category
        self.record_id = record_id


def build_dictionary(settings: Optional[Settings] = None) -> GeoDictionary:
    settings = settings or get_settings()
    return load_dictionary(settings.dictionary.provinces_path, settings.dictionary.counties_path)


class AssetService:
    def __init__(
        self,
        backend: Backend,
        resolver: Resolver,
        synchronizer: ConsistencySynchronizer,
        propagator: CascadePropagator,
    ):
        self.backend = backend
        self.resolver = resolver
        self.synchronizer = synchronizer
        self.propagator = propagator

    # ── Single records ────────────────────────────────────────────────

    async def add_record(self, draft: AssetDraft) -> AssetRecord:
        record = self._new_record(draft)
        category = record.category
        previous: Optional[Geography] = None

        async with self.backend.session(record.unit_name) as session:
            store = session.store(category)
            if category.carries_geography:
                existing = await store.list_records_for_unit(record.unit_name, limit=1)
                previous = existing[0].geography if existing else None
            await store.insert(record)
            await self.synchronizer.sync_unit(session, record.unit_name, category, record.province)
            if category.carries_geography:
                await self.propagator.propagate_in_session(
                    session, category, record.unit_name, record.geography, previous,
                )

        logger.info("Added %s record %s for unit %s (%s, %s)",
                    category.value, record.id, record.unit_name, record.province, record.city)
        return record

    async def update_record(self, category: StoreCategory, record_id: str, edit: AssetEdit) -> AssetRecord:
        while True:
            current = await self._get(category, record_id)
            old_unit = current.unit_name
            new_unit = edit.unit_name or old_unit

            async with self.backend.session(old_unit, new_unit) as session:
                store = session.store(category)
                current = await store.get(record_id)
                if current is None:
                    raise AssetNotFoundError(category, record_id)
                if current.unit_name != old_unit:
                    # renamed concurrently; retry with the right locks
                    continue

                updates: dict = {"unit_name": new_unit}
                if edit.asset_name is not None:
                    updates["asset_name"] = edit.asset_name
                if edit.attributes is not None:
                    updates["attributes"] = edit.attributes

                previous = current.geography
                if category.carries_geography:
                    known = await session.units.get(new_unit) if new_unit != old_unit else None
                    resolution = self.resolver.reconcile_edit(
                        new_unit, old_unit, previous,
                        province=edit.province,
                        city=edit.city,
                        known_province=known.province if known else None,
                    )
                    updates["province"] = resolution.province
                    updates["city"] = resolution.city

                updated = current.model_copy(update=updates)
                await store.update(updated)

                if new_unit != old_unit:
                    await self.synchronizer.sync_unit(session, old_unit, category, is_delete=True)
                await self.synchronizer.sync_unit(session, new_unit, category, updated.province)
                if category.carries_geography:
                    await self.propagator.propagate_in_session(
                        session, category, new_unit, updated.geography, previous,
                    )
            break

        logger.info("Updated %s record %s (unit %s -> %s)", category.value, record_id, old_unit, new_unit)
        return updated

    async def remove_record(self, category: StoreCategory, record_id: str) -> AssetRecord:
        while True:
            current = await self._get(category, record_id)
            async with self.backend.session(current.unit_name) as session:
                store = session.store(category)
                locked = await store.get(record_id)
                if locked is None:
                    raise AssetNotFoundError(category, record_id)
                if locked.unit_name != current.unit_name:
                    continue
                await store.delete(record_id)
                await self.synchronizer.sync_unit(session, locked.unit_name, category, is_delete=True)
            break

        logger.info("Removed %s record %s of unit %s", category.value, record_id, locked.unit_name)
        return locked

    # ── Bulk import ───────────────────────────────────────────────────

    async def import_records(self, category: StoreCategory, drafts: Iterable[AssetDraft]) -> ImportReport:
        """
        Insert a batch of records. Each unit's records go in under one
        session, so a failing unit rolls back alone and the rest continue.
        """
        drafts = list(drafts)
        report = ImportReport(category=category, received=len(drafts))

        groups: dict[str, list[AssetRecord]] = {}
        for draft in drafts:
            if draft.category is not category:
                raise AssetGeoError(f"{draft.category.value} record submitted to the {category.value} import")
            record = self._new_record(draft)
            groups.setdefault(record.unit_name, []).append(record)
        report.units = len(groups)

        imported: dict[str, list[AssetRecord]] = {}
        for unit_name, records in groups.items():
            try:
                async with self.backend.session(unit_name) as session:
                    store = session.store(category)
                    for record in records:
                        await store.insert(record)
                    aligned = 0
                    if category.carries_geography:
                        aligned = await self.propagator.align_in_session(
                            session, category, unit_name, records[0].geography,
                        )
                imported[unit_name] = records
                report.inserted += len(records)
                report.aligned += aligned
            except Exception as e:
                report.failed_units.append(unit_name)
                logger.error("Import failed for unit %s (%d records): %s", unit_name, len(records), e,
                             exc_info=True)

        report.sync = await self.synchronizer.batch_sync(
            SyncRequest(unit_name=unit_name, category=category, province=records[0].province)
            for unit_name, records in imported.items()
        )

        logger.info("Imported %d/%d %s records across %d units (%d units failed)",
                    report.inserted, report.received, category.value, report.units, len(report.failed_units))
        return report

    # ── Helpers ───────────────────────────────────────────────────────

    def _new_record(self, draft: AssetDraft) -> AssetRecord:
        fields = {
            "category": draft.category,
            "unit_name": draft.unit_name,
            "asset_name": draft.asset_name,
            "attributes": draft.attributes,
        }
        if draft.id:
            fields["id"] = draft.id
        if draft.category.carries_geography:
            resolution = self.resolver.resolve(draft.unit_name, draft.province, draft.city)
            fields["province"] = resolution.province
            fields["city"] = resolution.city
        return AssetRecord(**fields)

    async def _get(self, category: StoreCategory, record_id: str) -> AssetRecord:
        async with self.backend.session() as session:
            record = await session.store(category).get(record_id)
        if record is None:
            raise AssetNotFoundError(category, record_id)
        return record


def create_service(settings: Optional[Settings] = None, backend: Optional[Backend] = None) -> AssetService:
    """Wire the engine together. The dictionary is loaded here, once."""
    settings = settings or get_settings()
    resolver = Resolver(build_dictionary(settings))
    backend = backend or PostgresBackend()
    return AssetService(
        backend=backend,
        resolver=resolver,
        synchronizer=ConsistencySynchronizer(
            backend, resolver, derive_missing_province=settings.sync.derive_missing_province,
        ),
        propagator=CascadePropagator(backend, batch_size=settings.sync.cascade_batch_size),
    )
