"""Name matching heuristics used to decide whether two submissions are one provider.

Everything here is a pure function: no I/O, no state. Scores are floats in
``[0, 1]``; 1.0 is reserved for names that are identical once normalised.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Set

from rapidfuzz.distance import Levenshtein

from rekky.etl.normalize import (
    DEFAULT_PHONE_REGION,
    is_valid_email,
    normalize_email,
    normalize_phone_number,
    normalize_website,
)
from rekky.models import NameComparison, ValidationResult

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
VARIATION_MATCH_SCORE = 0.95
PARTIAL_MATCH_SCORE = 0.90
INITIALS_MATCH_SCORE = 0.90
NON_EXACT_CONFIDENCE_CAP = 0.95

MIN_NAME_LENGTH = 2
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15

# Surnames and given names that are routinely shortened to an initial.
COMMON_ABBREVIATIONS: Dict[str, List[str]] = {
    "kumar": ["k"],
    "singh": ["s"],
    "sharma": ["sh"],
    "patel": ["p"],
    "gupta": ["g"],
    "verma": ["v"],
    "jain": ["j"],
    "agarwal": ["a"],
    "reddy": ["r"],
    "rao": ["r"],
    "nair": ["n"],
    "iyer": ["i"],
    "iyengar": ["i"],
    "menon": ["m"],
    "pillai": ["p"],
    "nambiar": ["n"],
    "krishnan": ["k"],
    "raman": ["r"],
    "srinivasan": ["s"],
    "subramanian": ["s"],
    "venkatesh": ["v"],
    "ramesh": ["r"],
    "suresh": ["s"],
    "rajesh": ["r"],
    "mahesh": ["m"],
    "prakash": ["p"],
    "anand": ["a"],
    "arun": ["a"],
    "kiran": ["k"],
    "vijay": ["v"],
    "sanjay": ["s"],
    "ajay": ["a"],
    "vivek": ["v"],
    "rohit": ["r"],
    "amit": ["a"],
    "sumit": ["s"],
    "nitin": ["n"],
    "rahul": ["r"],
    "sachin": ["s"],
    "vishal": ["v"],
    "manish": ["m"],
    "sandeep": ["s"],
    "deepak": ["d"],
    "pradeep": ["p"],
    "naveen": ["n"],
    "vinod": ["v"],
}

# Keyword -> canonical service type. Scanned in insertion order; first hit wins.
SERVICE_TYPE_KEYWORDS: Dict[str, str] = {
    "painter": "painter",
    "painting": "painter",
    "paint": "painter",
    "plumber": "plumber",
    "plumbing": "plumber",
    "electrician": "electrician",
    "electrical": "electrician",
    "electric": "electrician",
    "carpenter": "carpenter",
    "carpentry": "carpenter",
    "mechanic": "mechanic",
    "automobile": "mechanic",
    "auto": "mechanic",
    "repair": "mechanic",
    "contractor": "contractor",
    "construction": "contractor",
    "builder": "contractor",
    "cleaner": "cleaner",
    "cleaning": "cleaner",
    "maid": "cleaner",
    "driver": "driver",
    "driving": "driver",
    "cook": "cook",
    "cooking": "cook",
    "chef": "cook",
    "gardener": "gardener",
    "gardening": "gardener",
    "security": "security",
    "guard": "security",
    "watchman": "security",
    "delivery": "delivery",
    "courier": "delivery",
    "transport": "transport",
    "taxi": "transport",
    "cab": "transport",
    "singer": "singer",
    "vocalist": "singer",
    "music": "singer",
    "musician": "singer",
    "band": "singer",
    "hair": "hair stylist",
    "stylist": "hair stylist",
    "salon": "hair stylist",
    "barber": "hair stylist",
    "property": "property dealer",
    "realtor": "property dealer",
    "broker": "property dealer",
    "estate": "property dealer",
    "makeup": "makeup artist",
    "artist": "makeup artist",
}

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name.lower().strip())


def get_initials(name: str) -> str:
    if not name:
        return ""
    return "".join(word[0].upper() for word in name.split() if word)


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    return Levenshtein.distance(a or "", b or "")


def calculate_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Return ``1 - distance / longest`` over lowercased, trimmed inputs."""
    if not a or not b:
        return 0.0

    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0

    max_len = max(len(s1), len(s2))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(s1, s2) / max_len


def are_names_similar(a: str, b: str, threshold: float = SIMILARITY_THRESHOLD) -> bool:
    if not a or not b:
        return False
    return calculate_similarity(a, b) >= threshold


def generate_name_variations(name: Optional[str]) -> Set[str]:
    """Expand a name into the spellings people commonly use for it.

    Two-token names also appear in reversed order, and any token found in
    ``COMMON_ABBREVIATIONS`` is swapped for its abbreviation, one at a time.
    """
    normalized = normalize_name(name)
    variations = {normalized}
    parts = normalized.split(" ")

    if len(parts) == 2:
        variations.add(f"{parts[1]} {parts[0]}")

    for part in parts:
        for abbreviation in COMMON_ABBREVIATIONS.get(part, ()):
            new_parts = list(parts)
            new_parts[new_parts.index(part)] = abbreviation
            variations.add(" ".join(new_parts))

    return variations


def _tokens_contained(a: str, b: str) -> bool:
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a or not tokens_b or tokens_a == tokens_b:
        return False
    shorter, longer = (tokens_a, tokens_b) if len(tokens_a) <= len(tokens_b) else (tokens_b, tokens_a)
    return shorter <= longer


def are_names_likely_same(a: Optional[str], b: Optional[str]) -> NameComparison:
    """Combine edit distance with naming-convention heuristics.

    Only an exact match (after normalisation) reports a confidence of 1.0;
    every other outcome is capped at 0.95.
    """
    if not a or not b:
        return NameComparison(False, 0.0, "One or both names are empty")

    normalized_a = normalize_name(a)
    normalized_b = normalize_name(b)
    if normalized_a == normalized_b:
        return NameComparison(True, 1.0, "Exact match")

    similarity = calculate_similarity(normalized_a, normalized_b)
    best = similarity
    reasoning = f"Similarity: {similarity * 100:.1f}%"

    if generate_name_variations(normalized_a) & generate_name_variations(normalized_b):
        best = max(best, VARIATION_MATCH_SCORE)
        reasoning = "Name variation match"
    elif _tokens_contained(normalized_a, normalized_b) and best < PARTIAL_MATCH_SCORE:
        best = PARTIAL_MATCH_SCORE
        reasoning = "Partial name match"

    if len(normalized_a) <= 3 and len(normalized_b) <= 3:
        initials_a = get_initials(normalized_a)
        if initials_a == get_initials(normalized_b) and len(initials_a) > 1:
            best = max(best, INITIALS_MATCH_SCORE)
            reasoning = "Initials match for short names"

    return NameComparison(
        is_similar=best >= SIMILARITY_THRESHOLD,
        confidence=min(best, NON_EXACT_CONFIDENCE_CAP),
        reasoning=reasoning,
    )


def extract_service_type(name: Optional[str], business_name: Optional[str] = None) -> Optional[str]:
    text = f"{name or ''} {business_name or ''}".lower()
    for keyword, service_type in SERVICE_TYPE_KEYWORDS.items():
        if keyword in text:
            return service_type
    return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_service_data(
    data: Mapping[str, Any], region: Optional[str] = DEFAULT_PHONE_REGION
) -> ValidationResult:
    """Validate a raw submission and return the cleaned fields alongside any errors."""
    errors: List[str] = []
    cleaned: Dict[str, Any] = {}

    name = _clean_text(data.get("name"))
    if not name or len(name) < MIN_NAME_LENGTH:
        errors.append("Name must be at least 2 characters long")
    else:
        cleaned["name"] = name

    raw_phone = data.get("phone_number") or data.get("phone")
    if raw_phone:
        phone = normalize_phone_number(str(raw_phone), region)
        if not MIN_PHONE_DIGITS <= len(phone) <= MAX_PHONE_DIGITS:
            errors.append("Phone number must be between 10 and 15 digits")
        else:
            cleaned["phone_number"] = phone

    raw_email = data.get("email")
    if raw_email:
        email = normalize_email(str(raw_email))
        if not is_valid_email(email):
            errors.append("Invalid email format")
        else:
            cleaned["email"] = email

    if not cleaned.get("phone_number") and not cleaned.get("email"):
        errors.append("Either phone number or email must be provided")

    for key in ("service_type", "business_name", "address"):
        value = _clean_text(data.get(key))
        if value:
            cleaned[key] = value

    website = normalize_website(data.get("website"))
    if website:
        cleaned["website"] = website

    metadata = data.get("metadata")
    if isinstance(metadata, Mapping) and metadata:
        cleaned["metadata"] = dict(metadata)

    return ValidationResult(is_valid=not errors, errors=errors, cleaned=cleaned)
