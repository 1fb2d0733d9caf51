"""
Pydantic models used across the engine for validation and serialization.
These are pure data objects with no database coupling.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

# Storable placeholder for a province that could not be resolved. The
# validity predicates reject it, so a record carrying it is re-derived on the
# next resolution instead of being trusted.
UNKNOWN_PROVINCE = "未知"
UNRESOLVED_CITY = ""


# ── Enums ──────────────────────────────────────────────────────────────

class StoreCategory(str, Enum):
    SOFTWARE = "software"
    CYBER = "cyber"
    DATA_CONTENT = "data_content"

    @property
    def carries_geography(self) -> bool:
        """Software records have no province/city columns."""
        return self is not StoreCategory.SOFTWARE

    @property
    def sibling(self) -> Optional["StoreCategory"]:
        """The other geography-bearing store, target of cross-store propagation."""
        if self is StoreCategory.CYBER:
            return StoreCategory.DATA_CONTENT
        if self is StoreCategory.DATA_CONTENT:
            return StoreCategory.CYBER
        return None


class Decision(str, Enum):
    """Outcome of the fill-gaps decision table."""
    KEEP = "keep"                              # valid, consistent pair
    CITY_FROM_CAPITAL = "city_from_capital"    # valid province, no usable city
    PROVINCE_FROM_CITY = "province_from_city"  # valid city, no usable province
    PROVINCE_TRUSTED = "province_trusted"      # both valid but the city lies elsewhere
    DERIVE = "derive"                          # nothing usable, fall back to the unit name


class MatchSource(str, Enum):
    """Where a resolved (province, city) pair came from."""
    GIVEN = "given"
    CAPITAL = "capital"
    CITY_OWNER = "city_owner"
    COUNTY = "county"
    CITY = "city"
    CITY_ABBREVIATION = "city_abbreviation"
    PROVINCE = "province"
    PROVINCE_ABBREVIATION = "province_abbreviation"
    MILITARY_REGION = "military_region"
    LOOKUP = "lookup"
    PREVIOUS = "previous"
    UNRESOLVED = "unresolved"


# ── Geography ─────────────────────────────────────────────────────────

class Geography(BaseModel):
    """A resolved (province, city) pair."""
    province: str
    city: str = UNRESOLVED_CITY

    model_config = {"frozen": True}

    @classmethod
    def unknown(cls) -> "Geography":
        return cls(province=UNKNOWN_PROVINCE, city=UNRESOLVED_CITY)

    @property
    def is_unknown(self) -> bool:
        return self.province == UNKNOWN_PROVINCE


class Resolution(BaseModel):
    """Result of resolving a unit's geography, with its provenance."""
    province: str
    city: str = UNRESOLVED_CITY
    source: MatchSource
    decision: Optional[Decision] = None
    # Dictionary name (or abbreviation) found in the unit name, when any
    matched: Optional[str] = None

    @property
    def geography(self) -> Geography:
        return Geography(province=self.province, city=self.city)

    @property
    def resolved(self) -> bool:
        return self.source is not MatchSource.UNRESOLVED and self.province != UNKNOWN_PROVINCE


# ── Asset records ─────────────────────────────────────────────────────

def _clean_unit_name(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip()
        if not v:
            raise ValueError("unit name must not be blank")
    return v


class AssetDraft(BaseModel):
    """An asset record as submitted by manual entry or bulk import."""
    category: StoreCategory
    unit_name: str
    province: Optional[str] = None
    city: Optional[str] = None
    asset_name: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None

    @field_validator("unit_name", mode="before")
    @classmethod
    def strip_unit_name(cls, v):
        return _clean_unit_name(v)


class AssetRecord(BaseModel):
    """A persisted asset record in one of the three category stores."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    category: StoreCategory
    unit_name: str
    province: Optional[str] = None
    city: Optional[str] = None
    asset_name: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("unit_name", mode="before")
    @classmethod
    def strip_unit_name(cls, v):
        return _clean_unit_name(v)

    @property
    def geography(self) -> Optional[Geography]:
        if self.province is None:
            return None
        return Geography(province=self.province, city=self.city or UNRESOLVED_CITY)


class AssetEdit(BaseModel):
    """Fields submitted by an edit. None means the field was left untouched."""
    unit_name: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    asset_name: Optional[str] = None
    attributes: Optional[dict[str, Any]] = None

    @field_validator("unit_name", mode="before")
    @classmethod
    def strip_unit_name(cls, v):
        return _clean_unit_name(v) if v is not None else v


# ── Shared lookup row ─────────────────────────────────────────────────

class UnitRecord(BaseModel):
    """Per-unit lookup row: best-known province plus one presence flag per store."""
    unit_name: str
    province: Optional[str] = None
    has_software: bool = False
    has_cyber: bool = False
    has_data_content: bool = False

    def flag(self, category: StoreCategory) -> bool:
        return {
            StoreCategory.SOFTWARE: self.has_software,
            StoreCategory.CYBER: self.has_cyber,
            StoreCategory.DATA_CONTENT: self.has_data_content,
        }[category]

    def with_presence(self, presence: dict[StoreCategory, bool]) -> "UnitRecord":
        return self.model_copy(update={
            "has_software": presence[StoreCategory.SOFTWARE],
            "has_cyber": presence[StoreCategory.CYBER],
            "has_data_content": presence[StoreCategory.DATA_CONTENT],
        })

    @property
    def is_orphaned(self) -> bool:
        """True once no store references the unit any more."""
        return not (self.has_software or self.has_cyber or self.has_data_content)


# ── Synchronization requests and reports ──────────────────────────────

class SyncRequest(BaseModel):
    unit_name: str
    category: StoreCategory
    province: Optional[str] = None
    is_delete: bool = False


class BatchSyncReport(BaseModel):
    requested: int = 0
    merged: int = 0
    succeeded: int = 0
    failed: int = 0
    swept: int = 0
    failures: list[str] = Field(default_factory=list)


class PropagationReport(BaseModel):
    unit_name: str
    category: StoreCategory
    aligned: int = 0
    sibling: Optional[StoreCategory] = None
    sibling_updated: int = 0


class ImportReport(BaseModel):
    category: StoreCategory
    received: int = 0
    inserted: int = 0
    units: int = 0
    aligned: int = 0
    failed_units: list[str] = Field(default_factory=list)
    sync: Optional[BatchSyncReport] = None
