"""Core data models shared by the identity resolver and the embedding queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_MERGED = "merged"
ACTION_FLAGGED = "flagged"

RECORD_KINDS = ("annotation", "recommendation")
PRIORITIES = ("high", "normal", "low")


@dataclass(slots=True)
class ServiceNameVariant:
    """One observed spelling of a service's name."""

    service_id: int
    name: str
    frequency: int = 1
    confidence: float = 1.0
    last_seen: Optional[datetime] = None

    @property
    def score(self) -> float:
        return self.frequency * self.confidence

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ServiceNameVariant":
        return cls(
            service_id=row["service_id"],
            name=row["name"],
            frequency=int(row.get("frequency") or 1),
            confidence=float(row.get("confidence") if row.get("confidence") is not None else 1.0),
            last_seen=row.get("last_seen"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "frequency": self.frequency,
            "confidence": self.confidence,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }


@dataclass(slots=True)
class Service:
    """A deduplicated real-world provider, identified by phone or email."""

    id: int
    name: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    service_type: Optional[str] = None
    business_name: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    names: List[ServiceNameVariant] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Service":
        return cls(
            id=row["id"],
            name=row["name"],
            phone_number=row.get("phone_number"),
            email=row.get("email"),
            service_type=row.get("service_type"),
            business_name=row.get("business_name"),
            address=row.get("address"),
            website=row.get("website"),
            metadata=dict(row.get("metadata") or {}),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone_number": self.phone_number,
            "email": self.email,
            "service_type": self.service_type,
            "business_name": self.business_name,
            "address": self.address,
            "website": self.website,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(slots=True)
class NameComparison:
    is_similar: bool
    confidence: float
    reasoning: str


@dataclass(slots=True)
class ValidationResult:
    is_valid: bool
    errors: List[str]
    cleaned: Dict[str, Any]


@dataclass(slots=True)
class UpsertResult:
    """Outcome of resolving a submission against known services."""

    service_id: int
    is_new: bool
    action: str
    confidence: float
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service_id": self.service_id,
            "is_new": self.is_new,
            "action": self.action,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass(slots=True)
class DuplicateReport:
    exact_matches: List[Service] = field(default_factory=list)
    similar_names: List[Service] = field(default_factory=list)
    similar_phones: List[Service] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exact_matches": [service.to_dict() for service in self.exact_matches],
            "similar_names": [service.to_dict() for service in self.similar_names],
            "similar_phones": [service.to_dict() for service in self.similar_phones],
        }


@dataclass(slots=True)
class MergeResult:
    success: bool
    merged_service_id: int
    message: str


@dataclass(slots=True)
class ServiceInfo:
    service: Service
    names: List[ServiceNameVariant]
    recommendations_count: int

    def to_dict(self) -> Dict[str, Any]:
        payload = self.service.to_dict()
        payload["names"] = [variant.to_dict() for variant in self.names]
        payload["recommendations_count"] = self.recommendations_count
        return payload


@dataclass(slots=True)
class EmbeddingTask:
    """In-memory work item asking for one record's embedding to be (re)built."""

    id: str
    kind: str
    record_id: Any
    data: Dict[str, Any] = field(default_factory=dict)
    retry_count: int = 0
    max_retries: int = 3
    priority: str = "normal"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class QueueStatus:
    queue_length: int
    processing: int
    is_processing: bool
    retrying: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "queue_length": self.queue_length,
            "processing": self.processing,
            "is_processing": self.is_processing,
            "retrying": self.retrying,
        }
