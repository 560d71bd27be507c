"""
ISO-3166 country code normalization backed by pycountry
"""

from typing import Iterable, List, Optional
import logging

import pycountry

logger = logging.getLogger(__name__)


def to_alpha2(code: Optional[str]) -> Optional[str]:
    """
    Normalize a country code to ISO-3166 alpha-2.

    Accepts alpha-2 or alpha-3 in any case, surrounding whitespace ignored.
    Returns None when the code is not a known country.
    """
    if not code or not isinstance(code, str):
        return None

    code = code.strip().upper()

    if len(code) == 2:
        country = pycountry.countries.get(alpha_2=code)
    elif len(code) == 3:
        country = pycountry.countries.get(alpha_3=code)
    else:
        country = None

    return country.alpha_2 if country else None


def normalize_countries(codes: Iterable[Optional[str]], bundle_ref: str = "") -> List[str]:
    """
    Validate and normalize a list of country codes.

    Invalid codes are dropped and each drop is logged. The result is
    deduplicated with first-seen order preserved.
    """
    normalized: List[str] = []
    for raw in codes:
        iso2 = to_alpha2(raw)
        if iso2 is None:
            logger.warning(f"Invalid ISO code {raw!r} dropped from bundle {bundle_ref}")
            continue
        if iso2 not in normalized:
            normalized.append(iso2)
    return normalized
