"""
Static administrative-geography dictionary.

Built once at process start from two JSON documents and never mutated:
  - provinces.json: provinces, each with its capital and its prefecture-level cities
  - counties.json:  county names nested under province -> city

Design:
  - The dictionary is an immutable value object handed explicitly to the
    standardizer and resolver; there is no module-level instance.
  - Province, city and county names are kept sorted by descending length so a
    linear substring scan always tests "南京市" before anything it contains.
  - When the province document cannot be read, a small built-in dataset is
    used instead and a warning is logged; startup never fails on it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from pydantic import BaseModel, Field, TypeAdapter

logger = logging.getLogger(__name__)


# ── Source document models ────────────────────────────────────────────

class CityEntry(BaseModel):
    city_name: str = Field(..., alias="cityName")

    model_config = {"populate_by_name": True}


class ProvinceEntry(BaseModel):
    province_name: str = Field(..., alias="provinceName")
    capital_city: str = Field(..., alias="capitalCity")
    cities: list[CityEntry] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class CountyDocument(BaseModel):
    # province -> city -> [county, ...]
    county_mapping: dict[str, dict[str, list[str]]] = Field(default_factory=dict, alias="countyMapping")

    model_config = {"populate_by_name": True}


_PROVINCE_LIST = TypeAdapter(list[ProvinceEntry])


# ── Military regions ──────────────────────────────────────────────────

@dataclass(frozen=True)
class MilitaryRegion:
    """A fixed keyword mapped to a representative (province, city) pair."""
    keyword: str
    province: str
    city: str


# Full names precede the short forms so "东部战区" is reported rather than "东部".
MILITARY_REGIONS: tuple[MilitaryRegion, ...] = (
    MilitaryRegion("东部战区", "江苏省", "南京市"),
    MilitaryRegion("南部战区", "广东省", "广州市"),
    MilitaryRegion("西部战区", "四川省", "成都市"),
    MilitaryRegion("北部战区", "辽宁省", "沈阳市"),
    MilitaryRegion("中部战区", "北京市", "北京市"),
    MilitaryRegion("东部", "江苏省", "南京市"),
    MilitaryRegion("南部", "广东省", "广州市"),
    MilitaryRegion("西部", "四川省", "成都市"),
    MilitaryRegion("北部", "辽宁省", "沈阳市"),
    MilitaryRegion("中部", "北京市", "北京市"),
)

# (province, capital) pairs used when provinces.json is unavailable
DEFAULT_PROVINCES: tuple[tuple[str, str], ...] = (
    ("北京市", "北京市"),
    ("天津市", "天津市"),
    ("上海市", "上海市"),
    ("重庆市", "重庆市"),
    ("广东省", "广州市"),
    ("浙江省", "杭州市"),
    ("江苏省", "南京市"),
)


def _by_length(names: Iterable[str]) -> tuple[str, ...]:
    # sorted() is stable, so equal-length names keep document order
    return tuple(sorted(names, key=len, reverse=True))


# ── Dictionary ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GeoDictionary:
    provinces: tuple[str, ...]
    cities: tuple[str, ...]
    counties: tuple[str, ...]
    city_to_province: Mapping[str, str]
    province_to_capital: Mapping[str, str]
    county_to_location: Mapping[str, tuple[str, str]]
    military_regions: tuple[MilitaryRegion, ...] = MILITARY_REGIONS
    source: str = "file"
    _province_set: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_province_set", frozenset(self.provinces))

    @classmethod
    def build(
        cls,
        provinces: Iterable[ProvinceEntry],
        county_mapping: Optional[Mapping[str, Mapping[str, Iterable[str]]]] = None,
        source: str = "file",
    ) -> "GeoDictionary":
        """Assemble the lookup tables from parsed source entries."""
        province_to_capital: dict[str, str] = {}
        city_to_province: dict[str, str] = {}

        for entry in provinces:
            province = entry.province_name.strip()
            capital = entry.capital_city.strip()
            if not province or province in province_to_capital:
                logger.warning("Skipping empty or duplicate province entry: %r", province)
                continue
            province_to_capital[province] = capital

            names = [c.city_name.strip() for c in entry.cities]
            # A capital is always a city of its own province
            if capital and capital not in names:
                names.insert(0, capital)
            for city in names:
                if not city:
                    continue
                owner = city_to_province.setdefault(city, province)
                if owner != province:
                    logger.warning("City %s listed under both %s and %s; keeping %s",
                                   city, owner, province, owner)

        county_to_location: dict[str, tuple[str, str]] = {}
        for province, cities in (county_mapping or {}).items():
            for city, counties in cities.items():
                if city_to_province.get(city) != province:
                    logger.warning("County group %s/%s does not match the province table, skipped",
                                   province, city)
                    continue
                for county in counties:
                    county = county.strip()
                    if county and county not in county_to_location:
                        county_to_location[county] = (province, city)

        return cls(
            provinces=_by_length(province_to_capital),
            cities=_by_length(city_to_province),
            counties=_by_length(county_to_location),
            city_to_province=MappingProxyType(city_to_province),
            province_to_capital=MappingProxyType(province_to_capital),
            county_to_location=MappingProxyType(county_to_location),
            source=source,
        )

    @classmethod
    def default(cls) -> "GeoDictionary":
        """The built-in fallback dataset."""
        entries = [
            ProvinceEntry(province_name=p, capital_city=c, cities=[CityEntry(city_name=c)])
            for p, c in DEFAULT_PROVINCES
        ]
        return cls.build(entries, source="default")

    # ── Lookups ───────────────────────────────────────────────────────

    def is_province(self, name: Optional[str]) -> bool:
        return bool(name) and name in self._province_set

    def is_city(self, name: Optional[str]) -> bool:
        return bool(name) and name in self.city_to_province

    def province_of(self, city: Optional[str]) -> Optional[str]:
        if not city:
            return None
        return self.city_to_province.get(city.strip())

    def capital_of(self, province: Optional[str]) -> Optional[str]:
        if not province:
            return None
        return self.province_to_capital.get(province.strip()) or None

    def county_location(self, county: str) -> Optional[tuple[str, str]]:
        return self.county_to_location.get(county)

    def stats(self) -> dict:
        return {
            "source": self.source,
            "provinces": len(self.provinces),
            "cities": len(self.cities),
            "counties": len(self.counties),
            "military_regions": len(self.military_regions),
        }


# ── Loading ───────────────────────────────────────────────────────────

def load_dictionary(provinces_path: str | Path, counties_path: Optional[str | Path] = None) -> GeoDictionary:
    """
    Load the dictionary from its JSON documents.
    Falls back to the built-in dataset when the province document is missing
    or malformed; a broken county document only drops the county table.
    """
    try:
        raw = Path(provinces_path).read_text(encoding="utf-8")
        provinces = _PROVINCE_LIST.validate_json(raw)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load province dictionary from %s (%s); using built-in defaults",
                       provinces_path, e)
        return GeoDictionary.default()

    county_mapping: dict[str, dict[str, list[str]]] = {}
    if counties_path is not None:
        try:
            raw = Path(counties_path).read_text(encoding="utf-8")
            county_mapping = CountyDocument.model_validate(json.loads(raw)).county_mapping
        except (OSError, ValueError) as e:
            logger.warning("Failed to load county mapping from %s (%s); county matching disabled",
                           counties_path, e)

    dictionary = GeoDictionary.build(provinces, county_mapping)
    if not dictionary.provinces:
        logger.warning("Province dictionary at %s is empty; using built-in defaults", provinces_path)
        return GeoDictionary.default()

    logger.info("Geography dictionary loaded: %d provinces, %d cities, %d counties",
                len(dictionary.provinces), len(dictionary.cities), len(dictionary.counties))
    return dictionary
