"""
Geography resolution: turn a unit name plus whatever province/city the user
supplied into one definitive (province, city) pair.

Two modes:
  - fill-gaps (insert/import): user values are kept whenever usable; the
    decision table in decide() says which repair applies
  - re-derivation (the unit association changed): supplied values are
    discarded and the unit-name cascade runs

Unit-name cascade, first match wins, names tested longest first:
  1. county          -> the county's (province, city)
  2. city            -> full name, then conventional abbreviation
  3. province        -> full name, then abbreviation; city := capital
  4. military region -> fixed representative pair
  5. nothing         -> (UNKNOWN_PROVINCE, "")
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from asset_geo.dictionary import GeoDictionary
from asset_geo.models import (
    UNKNOWN_PROVINCE,
    UNRESOLVED_CITY,
    Decision,
    Geography,
    MatchSource,
    Resolution,
)
from asset_geo.standardize import Standardizer

logger = logging.getLogger(__name__)


def _spans(text: str, needle: str) -> Iterable[tuple[int, int]]:
    start = text.find(needle)
    while start != -1:
        yield start, start + len(needle)
        start = text.find(needle, start + 1)


class Resolver:
    def __init__(self, dictionary: GeoDictionary, standardizer: Optional[Standardizer] = None):
        self.dictionary = dictionary
        self.standardizer = standardizer or Standardizer(dictionary)
        # Full names an abbreviation hit may be nested inside
        self._full_names: tuple[str, ...] = tuple(
            sorted(
                set(dictionary.counties) | set(dictionary.cities) | set(dictionary.provinces),
                key=len,
                reverse=True,
            )
        )

    # ── Validity predicates ───────────────────────────────────────────

    def is_valid_province(self, name: Optional[str]) -> bool:
        # UNKNOWN_PROVINCE is never a dictionary entry, so it always fails here
        return self.dictionary.is_province(name)

    def is_valid_city(self, name: Optional[str]) -> bool:
        return self.dictionary.is_city(name)

    def is_consistent(self, province: Optional[str], city: Optional[str]) -> bool:
        return bool(province) and self.dictionary.province_of(city) == province

    # ── Decision table ────────────────────────────────────────────────

    def decide(self, province: Optional[str], city: Optional[str]) -> Decision:
        """
        Classify an already-standardized (province, city) pair.

            province  city    consistent  ->  decision
            valid     valid   yes             KEEP
            valid     valid   no              PROVINCE_TRUSTED
            valid     -       -               CITY_FROM_CAPITAL (DERIVE without a capital)
            -         valid   -               PROVINCE_FROM_CITY
            -         -       -               DERIVE
        """
        province_ok = self.is_valid_province(province)
        city_ok = self.is_valid_city(city)

        if province_ok and city_ok:
            return Decision.KEEP if self.is_consistent(province, city) else Decision.PROVINCE_TRUSTED
        if province_ok:
            return Decision.CITY_FROM_CAPITAL if self.dictionary.capital_of(province) else Decision.DERIVE
        if city_ok:
            return Decision.PROVINCE_FROM_CITY
        return Decision.DERIVE

    # ── Resolution ────────────────────────────────────────────────────

    def resolve(
        self,
        unit_name: Optional[str],
        province: Optional[str] = None,
        city: Optional[str] = None,
        *,
        rederive: bool = False,
    ) -> Resolution:
        """
        Fill gaps in a user-supplied pair, or re-derive from the unit name.

        For an inconsistent pair the province is always kept. The city is
        demoted to "" only when the unit name yields no city inside that
        province; otherwise the derived city is used.
        """
        if rederive:
            return self.derive(unit_name)

        province = self.standardizer.standardize_province(province)
        city = self.standardizer.standardize_city(city)
        decision = self.decide(province, city)
        logger.debug("Resolving %r with (%r, %r): %s", unit_name, province, city, decision.value)

        if decision is Decision.KEEP:
            return Resolution(province=province, city=city, source=MatchSource.GIVEN, decision=decision)

        if decision is Decision.CITY_FROM_CAPITAL:
            return Resolution(
                province=province,
                city=self.dictionary.capital_of(province),
                source=MatchSource.CAPITAL,
                decision=decision,
            )

        if decision is Decision.PROVINCE_FROM_CITY:
            return Resolution(
                province=self.dictionary.province_of(city),
                city=city,
                source=MatchSource.CITY_OWNER,
                decision=decision,
            )

        if decision is Decision.PROVINCE_TRUSTED:
            # The unit name may still pin down a city inside the given province
            derived = self.derive(unit_name)
            if derived.province == province and derived.city:
                return derived.model_copy(update={"decision": decision})
            return Resolution(
                province=province,
                city=UNRESOLVED_CITY,
                source=MatchSource.GIVEN,
                decision=decision,
            )

        return self.derive(unit_name).model_copy(update={"decision": decision})

    def derive(self, unit_name: Optional[str]) -> Resolution:
        """Run the unit-name cascade."""
        name = (unit_name or "").strip()
        if not name:
            return self._unresolved()

        d = self.dictionary

        for county in d.counties:
            if county in name:
                province, city = d.county_location(county)
                return self._hit(name, province, city, MatchSource.COUNTY, county)

        for city in d.cities:
            if city in name:
                return self._hit(name, d.province_of(city), city, MatchSource.CITY, city)

        for short, city in self.standardizer.city_abbreviations:
            if self._free_hit(name, short):
                return self._hit(name, d.province_of(city), city, MatchSource.CITY_ABBREVIATION, short)

        for province in d.provinces:
            if province in name:
                return self._hit(name, province, d.capital_of(province) or UNRESOLVED_CITY,
                                 MatchSource.PROVINCE, province)

        for short, province in self.standardizer.province_abbreviations:
            if self._free_hit(name, short):
                return self._hit(name, province, d.capital_of(province) or UNRESOLVED_CITY,
                                 MatchSource.PROVINCE_ABBREVIATION, short)

        for region in d.military_regions:
            if region.keyword in name:
                return self._hit(name, region.province, region.city, MatchSource.MILITARY_REGION,
                                 region.keyword)

        logger.debug("No geography found in unit name %r", name)
        return self._unresolved()

    def derive_province(self, unit_name: Optional[str]) -> str:
        return self.derive(unit_name).province

    # ── Edit reconciliation ───────────────────────────────────────────

    def validate(self, province: Optional[str], city: Optional[str]) -> Resolution:
        """
        Standardize and check a pair without consulting the unit name.
        Province wins over an inconsistent city, an invalid field is repaired
        from the other one, and anything left over degrades to the sentinel.
        """
        province = self.standardizer.standardize_province(province)
        city = self.standardizer.standardize_city(city)
        decision = self.decide(province, city)

        if decision is Decision.KEEP:
            return Resolution(province=province, city=city, source=MatchSource.GIVEN, decision=decision)
        if decision is Decision.PROVINCE_TRUSTED:
            return Resolution(province=province, city=UNRESOLVED_CITY, source=MatchSource.GIVEN,
                              decision=decision)
        if decision is Decision.CITY_FROM_CAPITAL:
            return Resolution(province=province, city=self.dictionary.capital_of(province),
                              source=MatchSource.CAPITAL, decision=decision)
        if decision is Decision.PROVINCE_FROM_CITY:
            return Resolution(province=self.dictionary.province_of(city), city=city,
                              source=MatchSource.CITY_OWNER, decision=decision)
        return self._unresolved()

    def reconcile_edit(
        self,
        unit_name: str,
        previous_unit: str,
        previous: Optional[Geography],
        province: Optional[str] = None,
        city: Optional[str] = None,
        known_province: Optional[str] = None,
    ) -> Resolution:
        """
        Work out the geography a record should carry after an edit.

        province/city are the submitted values, None meaning the user left the
        field alone. known_province is what the lookup row remembers for the
        new unit name, if anything.
        """
        unit_changed = unit_name != previous_unit
        prev_province = previous.province if previous else None
        prev_city = previous.city if previous else None

        if province is not None and city is not None:
            return self.validate(province, city)

        if province is not None:
            std = self.standardizer.standardize_province(province)
            if self.is_valid_province(std):
                capital = self.dictionary.capital_of(std)
                return Resolution(
                    province=std,
                    city=capital or prev_city or UNRESOLVED_CITY,
                    source=MatchSource.CAPITAL if capital else MatchSource.PREVIOUS,
                    decision=Decision.CITY_FROM_CAPITAL,
                )
            return self.validate(province, prev_city)

        if city is not None:
            std = self.standardizer.standardize_city(city)
            if self.is_valid_city(std):
                return Resolution(
                    province=self.dictionary.province_of(std),
                    city=std,
                    source=MatchSource.CITY_OWNER,
                    decision=Decision.PROVINCE_FROM_CITY,
                )
            return self.validate(prev_province, city)

        if unit_changed:
            known = self.standardizer.standardize_province(known_province)
            if self.is_valid_province(known):
                return Resolution(
                    province=known,
                    city=self.dictionary.capital_of(known) or UNRESOLVED_CITY,
                    source=MatchSource.LOOKUP,
                )
            return self.derive(unit_name)

        if previous is not None:
            return Resolution(province=previous.province, city=previous.city, source=MatchSource.PREVIOUS)
        return self.resolve(unit_name)

    # ── Helpers ───────────────────────────────────────────────────────

    def _free_hit(self, name: str, short: str) -> bool:
        """True if short occurs in name outside every longer full name found there."""
        for start, end in _spans(name, short):
            covered = False
            for full in self._full_names:
                if len(full) <= len(short):
                    break
                for f_start, f_end in _spans(name, full):
                    if f_start <= start and end <= f_end:
                        covered = True
                        break
                if covered:
                    break
            if not covered:
                return True
        return False

    def _hit(self, name: str, province: str, city: str, source: MatchSource, matched: str) -> Resolution:
        logger.debug("Unit %r resolved via %s match %r -> (%s, %s)", name, source.value, matched, province, city)
        return Resolution(province=province, city=city, source=source, matched=matched)

    @staticmethod
    def _unresolved() -> Resolution:
        return Resolution(province=UNKNOWN_PROVINCE, city=UNRESOLVED_CITY, source=MatchSource.UNRESOLVED)
