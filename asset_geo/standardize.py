"""
Name standardization: map abbreviated or variant province/city spellings onto
the dictionary's canonical names.

Nothing here raises. Input that cannot be standardized comes back trimmed but
otherwise unchanged, and the resolver's validity checks decide what to do
with it.
"""

from __future__ import annotations

import logging
from typing import Optional

from asset_geo.dictionary import GeoDictionary

logger = logging.getLogger(__name__)

# Longest first: "广西壮族自治区" must lose "壮族自治区", not just "自治区".
PROVINCE_SUFFIXES: tuple[str, ...] = (
    "壮族自治区",
    "维吾尔自治区",
    "回族自治区",
    "特别行政区",
    "自治区",
    "省",
    "市",
)

# Priority order; several of these overlap textually.
CITY_SUFFIXES: tuple[str, ...] = (
    "特别行政区",
    "自治州",
    "地区",
    "盟",
    "市",
)

PROVINCE_ABBREVIATIONS: dict[str, str] = {
    # municipalities, autonomous regions, SARs
    "北京": "北京市",
    "上海": "上海市",
    "天津": "天津市",
    "重庆": "重庆市",
    "新疆": "新疆维吾尔自治区",
    "广西": "广西壮族自治区",
    "宁夏": "宁夏回族自治区",
    "西藏": "西藏自治区",
    "内蒙古": "内蒙古自治区",
    "香港": "香港特别行政区",
    "澳门": "澳门特别行政区",
    # provinces
    "黑龙江": "黑龙江省",
    "吉林": "吉林省",
    "辽宁": "辽宁省",
    "河北": "河北省",
    "河南": "河南省",
    "山东": "山东省",
    "山西": "山西省",
    "江苏": "江苏省",
    "浙江": "浙江省",
    "安徽": "安徽省",
    "福建": "福建省",
    "江西": "江西省",
    "湖北": "湖北省",
    "湖南": "湖南省",
    "广东": "广东省",
    "海南": "海南省",
    "四川": "四川省",
    "贵州": "贵州省",
    "云南": "云南省",
    "陕西": "陕西省",
    "甘肃": "甘肃省",
    "青海": "青海省",
    "台湾": "台湾省",
}

# Conventional short forms of ethnic-autonomous prefectures. These are not
# reachable by suffix stripping, the ethnic designation sits in the middle.
AUTONOMOUS_PREFECTURE_SHORT_FORMS: dict[str, str] = {
    "湘西土家族苗族自治州": "湘西",
    "延边朝鲜族自治州": "延边",
    "恩施土家族苗族自治州": "恩施",
    "阿坝藏族羌族自治州": "阿坝",
    "甘孜藏族自治州": "甘孜",
    "凉山彝族自治州": "凉山",
    "黔西南布依族苗族自治州": "黔西南",
    "黔东南苗族侗族自治州": "黔东南",
    "黔南布依族苗族自治州": "黔南",
    "楚雄彝族自治州": "楚雄",
    "红河哈尼族彝族自治州": "红河",
    "文山壮族苗族自治州": "文山",
    "西双版纳傣族自治州": "西双版纳",
    "大理白族自治州": "大理",
    "德宏傣族景颇族自治州": "德宏",
    "怒江傈僳族自治州": "怒江",
    "迪庆藏族自治州": "迪庆",
    "临夏回族自治州": "临夏",
    "甘南藏族自治州": "甘南",
    "海北藏族自治州": "海北",
    "黄南藏族自治州": "黄南",
    "海南藏族自治州": "海南",
    "果洛藏族自治州": "果洛",
    "玉树藏族自治州": "玉树",
    "海西蒙古族藏族自治州": "海西",
    "伊犁哈萨克自治州": "伊犁",
    "昌吉回族自治州": "昌吉",
    "博尔塔拉蒙古自治州": "博尔塔拉",
    "巴音郭楞蒙古自治州": "巴音郭楞",
    "克孜勒苏柯尔克孜自治州": "克孜勒苏",
}

# Trailing characters that users sometimes type twice ("江苏省省").
_DOUBLED_SUFFIX_CHARS = ("省", "市", "区")


def _strip_suffix(name: str, suffixes: tuple[str, ...]) -> str:
    for suffix in suffixes:
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return name


def _collapse_doubled(name: str) -> str:
    while len(name) > 2 and name[-1] == name[-2] and name[-1] in _DOUBLED_SUFFIX_CHARS:
        name = name[:-1]
    return name


def province_abbreviation(province: str) -> str:
    """'江苏省' -> '江苏', '广西壮族自治区' -> '广西', '香港特别行政区' -> '香港'."""
    if not province:
        return province
    return _strip_suffix(province.strip(), PROVINCE_SUFFIXES)


def city_abbreviation(city: str) -> str:
    """'南京市' -> '南京', '湘西土家族苗族自治州' -> '湘西', '兴安盟' -> '兴安'."""
    if not city:
        return city
    city = city.strip()
    short = AUTONOMOUS_PREFECTURE_SHORT_FORMS.get(city)
    if short:
        return short
    return _strip_suffix(city, CITY_SUFFIXES)


class Standardizer:
    """Canonicalizes province and city names against one GeoDictionary."""

    def __init__(self, dictionary: GeoDictionary):
        self.dictionary = dictionary

        # abbreviation -> canonical province, restricted to what the dictionary knows
        province_abbr: dict[str, str] = {}
        for short, full in PROVINCE_ABBREVIATIONS.items():
            if dictionary.is_province(full):
                province_abbr[short] = full
        for full in dictionary.provinces:
            province_abbr.setdefault(province_abbreviation(full), full)
        self._province_by_abbr = province_abbr
        self._province_by_core = {province_abbreviation(p): p for p in dictionary.provinces}

        # abbreviation -> canonical city; dictionary.cities is length-descending,
        # so on a collision the longer full name wins
        city_abbr: dict[str, str] = {}
        for full in dictionary.cities:
            short = city_abbreviation(full)
            if short and short != full:
                city_abbr.setdefault(short, full)
        self._city_by_abbr = city_abbr

        # (abbreviation, canonical) pairs for substring scans, longest first
        self.province_abbreviations: tuple[tuple[str, str], ...] = tuple(
            sorted(
                ((a, p) for a, p in province_abbr.items() if len(a) >= 2 and a != p),
                key=lambda pair: len(pair[0]),
                reverse=True,
            )
        )
        # A city short form that reads as a province short form ("海南", "吉林")
        # is left to the province step.
        self.city_abbreviations: tuple[tuple[str, str], ...] = tuple(
            sorted(
                ((a, c) for a, c in city_abbr.items() if len(a) >= 2 and a not in province_abbr),
                key=lambda pair: len(pair[0]),
                reverse=True,
            )
        )

    def standardize_province(self, name: Optional[str]) -> Optional[str]:
        if name is None or not name.strip():
            return name
        name = name.strip()
        if self.dictionary.is_province(name):
            return name

        canonical = self._province_by_abbr.get(name)
        if canonical:
            logger.debug("Province abbreviation %r -> %r", name, canonical)
            return canonical

        core = province_abbreviation(_collapse_doubled(name))
        canonical = self._province_by_core.get(core)
        if canonical:
            logger.debug("Province suffix match %r -> %r", name, canonical)
            return canonical

        logger.debug("Province %r could not be standardized", name)
        return name

    def standardize_city(self, name: Optional[str]) -> Optional[str]:
        if name is None or not name.strip():
            return name
        name = name.strip()
        if self.dictionary.is_city(name):
            return name

        canonical = self._city_by_abbr.get(name)
        if canonical:
            logger.debug("City abbreviation %r -> %r", name, canonical)
            return canonical

        collapsed = _collapse_doubled(name)
        if self.dictionary.is_city(collapsed):
            return collapsed
        canonical = self._city_by_abbr.get(city_abbreviation(collapsed))
        if canonical:
            logger.debug("City suffix match %r -> %r", name, canonical)
            return canonical

        logger.debug("City %r could not be standardized", name)
        return name
