"""Utilities for turning enriched records into the text we embed."""

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)

_PRICE_LABELS = {1: "budget", 2: "moderate", 3: "higher-end", 4: "luxury"}
_PRICE_SYMBOLS = {1: "₹", 2: "₹₹", 3: "₹₹₹", 4: "₹₹₹₹"}

RECOMMENDATION_FIELDS = (
    "content_type",
    "title",
    "description",
    "labels",
    "rating",
    "place_name",
    "place_address",
    "service_name",
    "service_type",
    "business_name",
    "address",
    "user_name",
    "content_data",
    "metadata",
)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _join_list(values: Optional[Iterable[Any]]) -> str:
    return ", ".join(str(value) for value in values or [] if value is not None)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _flatten(record: Optional[Mapping[str, Any]], label: str) -> Optional[str]:
    if not record:
        return None
    entries = [
        f"{key}: {_stringify(value)}"
        for key, value in record.items()
        if value is not None and str(value).strip()
    ]
    if not entries:
        return None
    return f"{label}: {', '.join(entries)}"


def _price_summary(content_data: Mapping[str, Any]) -> Optional[str]:
    level = content_data.get("price_level") or content_data.get("priceLevel")
    price_label = content_data.get("price_label")
    price_text = content_data.get("price_text")
    if not (_is_number(level) or price_label or price_text):
        return None

    label = price_label or _PRICE_LABELS.get(level)
    symbol = price_text or _PRICE_SYMBOLS.get(level)
    parts: List[str] = []
    if symbol:
        parts.append(f"Price {symbol}")
    if label:
        parts.append(f"Pricing {label}")
    return " ".join(parts) or None


def build_recommendation_text(data: Mapping[str, Any]) -> str:
    """Compose the embedding input for a recommendation and its enrichment."""
    parts: List[str] = []

    if data.get("content_type"):
        parts.append(f"Type: {data['content_type']}")
    if data.get("title"):
        parts.append(f"Title: {data['title']}")
    if data.get("description"):
        parts.append(f"Description: {data['description']}")
    if data.get("labels"):
        parts.append(f"Tags: {_join_list(data['labels'])}")
    if _is_number(data.get("rating")):
        parts.append(f"Rating: {_format_number(data['rating'])}/5")

    if data.get("place_name"):
        parts.append(f"Place: {data['place_name']}")
    if data.get("place_address"):
        parts.append(f"Address: {data['place_address']}")

    if data.get("service_name"):
        parts.append(f"Service: {data['service_name']}")
    if data.get("service_type"):
        parts.append(f"Service Type: {data['service_type']}")
    if data.get("business_name"):
        parts.append(f"Business: {data['business_name']}")
    if data.get("address"):
        parts.append(f"Service Address: {data['address']}")

    if data.get("user_name"):
        parts.append(f"By: {data['user_name']}")

    content_data = data.get("content_data") or {}
    price = _price_summary(content_data)
    if price:
        parts.append(price)

    for record, label in ((content_data, "Details"), (data.get("metadata"), "Metadata")):
        flattened = _flatten(record, label)
        if flattened:
            parts.append(flattened)

    text = ". ".join(parts)
    if not text.strip():
        raise ValueError("No meaningful text content found in recommendation data")
    return text


def build_annotation_text(data: Mapping[str, Any]) -> str:
    """Compose the embedding input for an annotation (a place review)."""
    parts: List[str] = []

    if data.get("place_name"):
        parts.append(f"Place: {data['place_name']}")
    if data.get("place_address"):
        parts.append(f"Address: {data['place_address']}")
    if data.get("user_name"):
        parts.append(f"Reviewer: {data['user_name']}")
    if data.get("notes"):
        parts.append(f"Review: {data['notes']}")
    if data.get("labels"):
        parts.append(f"Tags: {_join_list(data['labels'])}")
    if data.get("went_with"):
        parts.append(f"Went with: {_join_list(data['went_with'])}")
    if data.get("rating"):
        parts.append(f"Rating: {_format_number(data['rating'])}/5 stars")
    if data.get("visit_date"):
        parts.append(f"Visited: {data['visit_date']}")

    metadata = data.get("metadata")
    if metadata:
        details = ", ".join(f"{key}: {value}" for key, value in metadata.items())
        if details:
            parts.append(f"Details: {details}")

    text = ". ".join(parts)
    if not text.strip():
        raise ValueError("No meaningful text content found in annotation data")
    return text


def recommendation_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep only the enriched fields that feed the recommendation text."""
    return {key: data.get(key) for key in RECOMMENDATION_FIELDS}
