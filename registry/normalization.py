"""
String normalization for provider names, addresses, phones and ZIP codes.

Every function here is pure and total: missing or unusable input returns an
empty string, which downstream scoring treats as "no signal" for that field.
"""

import re
from typing import Optional

# Legal suffixes and stopwords dropped from names
NAME_STOPWORDS = [
    "INC", "INCORPORATED", "LLC", "LTD", "LIMITED",
    "CORP", "CORPORATION", "CO", "COMPANY",
    "THE", "OF", "AND", "A", "AN",
]

# Domain synonyms (applied after whitespace is collapsed)
NAME_SYNONYMS = [
    (r"\b(CHILD CARE|DAY CARE|DAYCARE|CHILDCARE)\b", "CHILDCARE"),
    (r"\b(CENTRE|CTR|CENTER)\b", "CENTER"),
    (r"\b(PRE SCHOOL|PRESCHOOL)\b", "PRESCHOOL"),
    (r"\b(LEARNG|LEARNING)\b", "LEARNING"),
    (r"\b(ERALY|EARLY)\b", "EARLY"),
    (r"\b(FAM|FAMILY)\b", "FAMILY"),
]

_STOPWORD_PATTERN = re.compile(r"\b(" + "|".join(NAME_STOPWORDS) + r")\b")

# Street types, directionals and unit designators
ADDRESS_TOKENS = {
    "STREET": "ST", "STR": "ST",
    "AVENUE": "AVE", "AV": "AVE",
    "ROAD": "RD",
    "DRIVE": "DR",
    "LANE": "LN",
    "BOULEVARD": "BLVD",
    "COURT": "CT",
    "CIRCLE": "CIR",
    "PLACE": "PL",
    "PARKWAY": "PKWY",
    "HIGHWAY": "HWY",
    "TERRACE": "TER",
    "ROUTE": "RTE",
    "NORTH": "N", "SOUTH": "S", "EAST": "E", "WEST": "W",
    "NORTHEAST": "NE", "NORTHWEST": "NW",
    "SOUTHEAST": "SE", "SOUTHWEST": "SW",
    "APARTMENT": "APT",
    "SUITE": "STE",
    "UN": "UNIT",
}


def _collapse(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a provider/business name for comparison.

    - Uppercase
    - Punctuation becomes whitespace
    - Drop legal suffixes and stopwords (INC, LLC, THE, OF...)
    - Canonicalize childcare synonyms (DAY CARE -> CHILDCARE, CTR -> CENTER)
    - Collapse whitespace

    Normalizing an already-normalized name returns it unchanged.
    """
    if not name:
        return ""

    normalized = re.sub(r"[^\w\s]", " ", str(name).upper())
    normalized = _collapse(_STOPWORD_PATTERN.sub(" ", normalized))

    for pattern, replacement in NAME_SYNONYMS:
        normalized = re.sub(pattern, replacement, normalized)

    return _collapse(normalized)


def normalize_address(address: Optional[str]) -> str:
    """
    Normalize a street address for comparison.

    Periods and apostrophes are dropped ("N.W." -> "NW"), other punctuation
    splits tokens ("APT#4" -> "APT 4"), then each token is mapped to its
    USPS-style abbreviation.
    """
    if not address:
        return ""

    normalized = re.sub(r"['.]", "", str(address).upper())
    normalized = re.sub(r"[^\w\s]", " ", normalized)

    tokens = [ADDRESS_TOKENS.get(token, token) for token in normalized.split()]
    return " ".join(tokens)


def normalize_phone(phone: Optional[str]) -> str:
    """Normalize phone number to 10 digits ("" when not a US number)."""
    if not phone:
        return ""

    digits = re.sub(r"\D", "", str(phone))

    # 11-digit numbers with country code
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]

    return digits if len(digits) == 10 else ""


def normalize_zip(zip_code: Optional[str]) -> str:
    """Extract the first 5 digits of a ZIP code."""
    if not zip_code:
        return ""
    return re.sub(r"\D", "", str(zip_code))[:5]


def normalize_city(city: Optional[str]) -> str:
    """Uppercase a city name and collapse its whitespace."""
    if not city:
        return ""
    return _collapse(str(city).upper())
