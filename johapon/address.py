"""
주소/동호수 표기 및 정규화 유틸
- 지번 기본 + (도로명) 표기
- 동일 조합원 매칭용 정규화
- 동/호수 정규화 (지하층 → B)
"""
from __future__ import annotations

import re
from typing import Optional

_PAREN_RE = re.compile(r"\([^)]*\)")
_JIBUN_STRIP_RE = re.compile(r"[^\w\s가-힣0-9-]")
_SPACES_RE = re.compile(r"\s+")
_ROAD_RE = re.compile(r"[로길대]\s*\d+")
_JIBUN_RE = re.compile(r"[동리읍면]\s+(?:산\s*)?\d+(?:-\d+)?")
_BASEMENT_PREFIX_RE = re.compile(r"^(비|지하|지(?=\d)|B)")
_PNU_RE = re.compile(r"^\d{19}$")
_DETAIL_DONG_HO_RE = re.compile(r"(?:(\S+?)\s*동)?\s*(\S+?)\s*호")


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def normalize_name(name: Optional[str]) -> str:
    if not _clean(name):
        return ""
    return _SPACES_RE.sub("", name).lower().strip()


def normalize_jibun_address(address: Optional[str]) -> str:
    if not _clean(address):
        return ""
    out = _PAREN_RE.sub("", address)
    out = _JIBUN_STRIP_RE.sub("", out)
    out = _SPACES_RE.sub(" ", out)
    return out.strip()


def user_matching_key(name: Optional[str], resident_address_jibun: Optional[str]) -> str:
    n = normalize_name(name)
    a = normalize_jibun_address(resident_address_jibun)
    if not n or not a:
        return ""
    return f"{n}|{a}"


def format_address_display(jibun: Optional[str], road: Optional[str]) -> str:
    jibun, road = _clean(jibun), _clean(road)
    if jibun and road:
        return f"{jibun} ({road})"
    return jibun or road


def format_property_address_display(
    jibun: Optional[str],
    road: Optional[str],
    dong: Optional[str] = None,
    ho: Optional[str] = None,
) -> str:
    jibun, road = _clean(jibun), _clean(road)
    dong_s, ho_s = _clean(dong), _clean(ho)

    unit = ""
    if dong_s and ho_s:
        unit = f"{dong_s}동 {ho_s}호"
    elif dong_s:
        unit = f"{dong_s}동"
    elif ho_s:
        unit = f"{ho_s}호"

    result = jibun
    if unit:
        result = f"{result} {unit}" if result else unit
    if road:
        result = f"{result} ({road})" if result else road
    return result


def detect_address_type(address: Optional[str]) -> str:
    text = _clean(address)
    if not text:
        return "unknown"
    if _ROAD_RE.search(text):
        return "road"
    if _JIBUN_RE.search(text):
        return "jibun"
    return "unknown"


def normalize_dong(dong: Optional[str]) -> Optional[str]:
    if not dong:
        return None
    out = re.sub(r"동$", "", dong.strip())
    return out.strip() or None


def normalize_ho(ho: Optional[str]) -> Optional[str]:
    if not ho:
        return None
    out = re.sub(r"호$", "", ho.strip())
    out = re.sub(r"^비", "B", out)
    out = re.sub(r"^지하", "B", out)
    out = re.sub(r"^지(?=\d)", "B", out)
    return out.strip() or None


def is_basement_ho(ho: Optional[str]) -> bool:
    if not ho:
        return False
    return bool(_BASEMENT_PREFIX_RE.match(ho.strip()))


def create_normalized_ho(is_basement: bool, ho: Optional[str]) -> Optional[str]:
    if not ho:
        return None
    out = re.sub(r"호$", "", ho.strip())
    out = _BASEMENT_PREFIX_RE.sub("", out, count=1)
    if not out:
        return None
    return f"B{out}" if is_basement else out


def parse_dong_ho(detail: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """'101동 1001호' 같은 상세주소에서 (동, 호) 추출"""
    text = _clean(detail)
    if not text:
        return None, None
    m = _DETAIL_DONG_HO_RE.search(text)
    if not m:
        return None, None
    return normalize_dong(m.group(1)), normalize_ho(m.group(2))


def is_valid_pnu(pnu: Optional[str]) -> bool:
    return bool(_PNU_RE.match(_clean(pnu)))


def phone_digits(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")
