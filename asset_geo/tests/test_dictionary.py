"""
Tests for dictionary loading and lookups.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

import pytest

from asset_geo.dictionary import (
    DEFAULT_PROVINCES,
    GeoDictionary,
    ProvinceEntry,
    load_dictionary,
)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class TestPackagedDictionary:
    def test_all_provincial_divisions_loaded(self, dictionary):
        assert len(dictionary.provinces) == 34
        assert dictionary.source == "file"
        assert dictionary.is_province("江苏省")
        assert dictionary.is_province("新疆维吾尔自治区")
        assert dictionary.is_province("香港特别行政区")

    def test_city_lookups(self, dictionary):
        assert dictionary.province_of("南京市") == "江苏省"
        assert dictionary.province_of("大兴安岭地区") == "黑龙江省"
        assert dictionary.province_of("兴安盟") == "内蒙古自治区"
        assert dictionary.province_of("  成都市 ") == "四川省"
        assert dictionary.province_of("火星市") is None
        assert dictionary.province_of(None) is None

    def test_capitals(self, dictionary):
        assert dictionary.capital_of("四川省") == "成都市"
        assert dictionary.capital_of("内蒙古自治区") == "呼和浩特市"
        assert dictionary.capital_of("北京市") == "北京市"
        assert dictionary.capital_of("未知") is None
        assert dictionary.capital_of("") is None

    def test_every_capital_is_a_city_of_its_province(self, dictionary):
        for province in dictionary.provinces:
            capital = dictionary.capital_of(province)
            assert capital, province
            assert dictionary.province_of(capital) == province

    def test_county_lookup(self, dictionary):
        assert dictionary.county_location("涟水县") == ("江苏省", "淮安市")
        assert dictionary.county_location("格尔木市") == ("青海省", "海西蒙古族藏族自治州")
        assert dictionary.county_location("不存在县") is None

    def test_names_sorted_longest_first(self, dictionary):
        for names in (dictionary.provinces, dictionary.cities, dictionary.counties):
            lengths = [len(n) for n in names]
            assert lengths == sorted(lengths, reverse=True)

    def test_military_full_forms_precede_short_forms(self, dictionary):
        keywords = [r.keyword for r in dictionary.military_regions]
        for short in ("东部", "南部", "西部", "北部", "中部"):
            assert keywords.index(short + "战区") < keywords.index(short)

    def test_stats(self, dictionary):
        stats = dictionary.stats()
        assert stats["provinces"] == 34
        assert stats["cities"] == len(dictionary.cities)
        assert stats["military_regions"] == 10


class TestImmutability:
    def test_mappings_are_read_only(self, dictionary):
        with pytest.raises(TypeError):
            dictionary.city_to_province["火星市"] = "火星省"

    def test_fields_are_frozen(self, dictionary):
        with pytest.raises(dataclasses.FrozenInstanceError):
            dictionary.source = "patched"


class TestBuild:
    def test_capital_added_when_not_listed(self):
        d = GeoDictionary.build([ProvinceEntry(province_name="测试省", capital_city="甲城市", cities=[])])
        assert d.is_city("甲城市")
        assert d.province_of("甲城市") == "测试省"

    def test_duplicate_city_keeps_first_owner(self):
        d = GeoDictionary.build([
            ProvinceEntry.model_validate({"provinceName": "甲省", "capitalCity": "一市", "cities": [{"cityName": "一市"}]}),
            ProvinceEntry.model_validate({"provinceName": "乙省", "capitalCity": "二市", "cities": [{"cityName": "一市"}]}),
        ])
        assert d.province_of("一市") == "甲省"

    def test_county_group_with_unknown_city_skipped(self):
        d = GeoDictionary.build(
            [ProvinceEntry(province_name="江苏省", capital_city="南京市", cities=[])],
            {"江苏省": {"不存在市": ["某县"], "南京市": ["溧水区"]}},
        )
        assert d.county_location("某县") is None
        assert d.county_location("溧水区") == ("江苏省", "南京市")


class TestFallback:
    def test_missing_file_uses_defaults(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            d = load_dictionary(tmp_path / "missing.json", tmp_path / "missing_counties.json")
        assert d.source == "default"
        assert len(d.provinces) == len(DEFAULT_PROVINCES)
        assert d.capital_of("广东省") == "广州市"
        assert d.capital_of("江苏省") == "南京市"
        assert d.counties == ()
        assert "built-in defaults" in caplog.text

    def test_malformed_file_uses_defaults(self, tmp_path):
        path = tmp_path / "provinces.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_dictionary(path).source == "default"

    def test_undecodable_file_uses_defaults(self, tmp_path):
        path = tmp_path / "provinces.json"
        path.write_bytes(b'[{"provinceName": "\xff\xfe", "capitalCity": "x", "cities": []}]')
        assert load_dictionary(path).source == "default"

    def test_wrong_shape_uses_defaults(self, tmp_path):
        path = tmp_path / "provinces.json"
        path.write_text('[{"name": "江苏省"}]', encoding="utf-8")
        assert load_dictionary(path).source == "default"

    def test_empty_list_uses_defaults(self, tmp_path):
        path = tmp_path / "provinces.json"
        path.write_text("[]", encoding="utf-8")
        assert load_dictionary(path).source == "default"

    def test_broken_counties_keep_provinces(self, tmp_path):
        path = tmp_path / "counties.json"
        path.write_text("not json either", encoding="utf-8")
        d = load_dictionary(DATA_DIR / "provinces.json", path)
        assert d.source == "file"
        assert len(d.provinces) == 34
        assert d.counties == ()
