"""Normalisation helpers for the identifiers used to deduplicate services."""

import logging
import re
from typing import Optional
from urllib.parse import urlparse, urlunparse

import phonenumbers

logger = logging.getLogger(__name__)

DEFAULT_PHONE_REGION = "IN"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_DIGITS = re.compile(r"\D")


def digits_only(raw: Optional[str]) -> str:
    return _NON_DIGITS.sub("", str(raw)) if raw else ""


def normalize_phone_number(raw: Optional[str], region: Optional[str] = DEFAULT_PHONE_REGION) -> str:
    """Reduce a phone number to digits, folding in the region's country code.

    Numbers that belong to ``region`` collapse to their national significant
    number so that ``+91 98765-43210`` and ``098765 43210`` compare equal.
    Foreign numbers keep their country code in front. Anything phonenumbers
    cannot parse falls back to the bare digits.
    """
    digits = digits_only(raw)
    if not digits:
        return ""

    candidate = f"+{digits}" if str(raw).strip().startswith("+") else digits
    try:
        parsed = phonenumbers.parse(candidate, region or None)
    except phonenumbers.NumberParseException:
        logger.debug("phonenumbers could not parse %r; keeping raw digits", raw)
        return digits

    national = phonenumbers.national_significant_number(parsed)
    if not national:
        return digits
    if region and parsed.country_code == phonenumbers.country_code_for_region(region):
        return national
    return f"{parsed.country_code}{national}"


def normalize_email(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return str(raw).strip().lower()


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


def normalize_website(raw_url: Optional[str]) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""

    if not raw_url:
        return None

    url = str(raw_url).strip()
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    return urlunparse(parsed._replace(path=normalized_path, fragment=""))
