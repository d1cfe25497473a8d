"""Service identity resolution: decide whether a submission is a known provider.

Submissions are matched on normalised phone first, then email. A match with a
similar name is folded into the existing service (new name variant, empty
fields backfilled); a match with an unrelated name is linked at low
confidence, or parked for review when the conflict policy asks for it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from rekky.etl.name_similarity import are_names_likely_same, extract_service_type, validate_service_data
from rekky.etl.normalize import normalize_phone_number
from rekky.models import (
    ACTION_CREATED,
    ACTION_FLAGGED,
    ACTION_MERGED,
    ACTION_UPDATED,
    DuplicateReport,
    MergeResult,
    Service,
    ServiceInfo,
    UpsertResult,
)
from rekky.stores.services import ServiceStore

logger = logging.getLogger(__name__)

CONFLICT_CONFIDENCE = 0.3
EXACT_MATCH_CONFIDENCE = 0.95
PHONE_SUFFIX_LENGTH = 6
DUPLICATE_SEARCH_LIMIT = 20

BACKFILL_FIELDS = ("business_name", "address", "website", "phone_number", "email")


class ServiceValidationError(ValueError):
    """Raised when a submission cannot identify a service."""

    def __init__(self, errors) -> None:
        self.errors = list(errors)
        super().__init__(f"Invalid service data: {', '.join(self.errors)}")


class ServiceNotFoundError(LookupError):
    """Raised when a service id does not resolve to a stored service."""


class ServiceIdentityResolver:
    def __init__(self, store: ServiceStore, *, conflict_policy: str = "auto-merge") -> None:
        self.store = store
        self.conflict_policy = conflict_policy

    @property
    def phone_region(self) -> Optional[str]:
        return getattr(self.store, "phone_region", None)

    def upsert_service(self, raw_data: Mapping[str, Any]) -> UpsertResult:
        """Create, update or merge a service from a raw submission.

        Raises ``ServiceValidationError`` before touching the database when the
        submission is unusable. Every write happens inside one transaction; a
        database error rolls all of it back and propagates unchanged.
        """
        logger.debug(
            "upsert_service input: name=%s phone=%s email=%s service_type=%s",
            raw_data.get("name"),
            raw_data.get("phone_number") or raw_data.get("phone"),
            raw_data.get("email"),
            raw_data.get("service_type"),
        )
        validation = validate_service_data(raw_data, self.phone_region)
        if not validation.is_valid:
            logger.warning("Service validation failed: %s", validation.errors)
            raise ServiceValidationError(validation.errors)
        cleaned = validation.cleaned

        with self.store.transaction() as tx:
            existing: Optional[Service] = None
            lookup_method = ""
            if cleaned.get("phone_number"):
                existing = tx.get_service_by_phone(cleaned["phone_number"])
                lookup_method = "phone"
            if existing is None and cleaned.get("email"):
                existing = tx.get_service_by_email(cleaned["email"])
                lookup_method = "email"

            if existing is None:
                result = self._create(tx, cleaned)
            else:
                result = self._resolve_existing(tx, existing, cleaned, lookup_method)

        logger.info(
            "Resolved service submission %r -> service %s (%s, confidence=%.2f)",
            cleaned["name"],
            result.service_id,
            result.action,
            result.confidence,
        )
        return result

    def _create(self, tx: ServiceStore, cleaned: Dict[str, Any]) -> UpsertResult:
        data = dict(cleaned)
        if not data.get("service_type"):
            inferred = extract_service_type(data["name"], data.get("business_name"))
            if inferred:
                data["service_type"] = inferred

        service_id = tx.create_service(data)
        return UpsertResult(
            service_id=service_id,
            is_new=True,
            action=ACTION_CREATED,
            confidence=1.0,
            reasoning="Created new service entity",
        )

    def _resolve_existing(
        self, tx: ServiceStore, existing: Service, cleaned: Dict[str, Any], lookup_method: str
    ) -> UpsertResult:
        service_id = existing.id
        if tx.get_service_with_names(service_id) is None:
            raise ServiceNotFoundError(f"Service {service_id} not found after lookup")

        comparison = are_names_likely_same(cleaned["name"], existing.name)
        reasoning = f"Found existing service by {lookup_method}. {comparison.reasoning}"

        if not comparison.is_similar:
            return self._handle_conflict(tx, existing, cleaned, lookup_method, reasoning)

        if cleaned["name"].lower() != existing.name.lower():
            tx.add_service_name(service_id, cleaned["name"], comparison.confidence)
            tx.update_canonical_name(service_id)

        updates = self._backfill(existing, cleaned)
        if updates:
            logger.info("Backfilling service %s with %s", service_id, sorted(updates))
            tx.update_service(service_id, updates)
            action = ACTION_UPDATED
            reasoning += ". Updated service information."
        else:
            action = ACTION_MERGED
            reasoning += ". No new information to add."

        return UpsertResult(
            service_id=service_id,
            is_new=False,
            action=action,
            confidence=comparison.confidence,
            reasoning=reasoning,
        )

    def _handle_conflict(
        self,
        tx: ServiceStore,
        existing: Service,
        cleaned: Dict[str, Any],
        lookup_method: str,
        reasoning: str,
    ) -> UpsertResult:
        reasoning += f" Warning: possible conflict - different name for same identifier ({lookup_method})."
        logger.warning(
            "Service %s matched by %s but name %r differs from %r",
            existing.id,
            lookup_method,
            cleaned["name"],
            existing.name,
        )

        if self.conflict_policy == "flag-for-review":
            tx.flag_conflict(existing.id, cleaned["name"], cleaned, reasoning)
            action = ACTION_FLAGGED
            reasoning += " Flagged for manual review."
        else:
            tx.add_service_name(existing.id, cleaned["name"], CONFLICT_CONFIDENCE)
            action = ACTION_MERGED

        return UpsertResult(
            service_id=existing.id,
            is_new=False,
            action=action,
            confidence=CONFLICT_CONFIDENCE,
            reasoning=reasoning,
        )

    @staticmethod
    def _backfill(existing: Service, cleaned: Mapping[str, Any]) -> Dict[str, Any]:
        """Fields the submission can fill in; populated fields are never overwritten."""
        updates: Dict[str, Any] = {}
        if not existing.service_type:
            service_type = cleaned.get("service_type") or extract_service_type(
                cleaned["name"], cleaned.get("business_name")
            )
            if service_type:
                updates["service_type"] = service_type

        for field_name in BACKFILL_FIELDS:
            value = cleaned.get(field_name)
            if value and not getattr(existing, field_name):
                updates[field_name] = value
        return updates

    def find_potential_duplicates(self, service_data: Mapping[str, Any]) -> DuplicateReport:
        """Collect services that may duplicate ``service_data``, for manual review."""
        report = DuplicateReport()

        name = service_data.get("name")
        if name:
            for service in self.store.search_services_by_name(name, DUPLICATE_SEARCH_LIMIT):
                comparison = are_names_likely_same(name, service.name)
                if not comparison.is_similar:
                    continue
                if comparison.confidence > EXACT_MATCH_CONFIDENCE:
                    report.exact_matches.append(service)
                else:
                    report.similar_names.append(service)

        raw_phone = service_data.get("phone_number") or service_data.get("phone")
        if raw_phone:
            phone = normalize_phone_number(str(raw_phone), self.phone_region)
            if len(phone) >= PHONE_SUFFIX_LENGTH:
                report.similar_phones.extend(
                    self.store.find_services_by_phone_suffix(phone[-PHONE_SUFFIX_LENGTH:], exclude_phone=phone)
                )

        return report

    def merge_services(self, primary_id: int, secondary_id: int) -> MergeResult:
        """Fold ``secondary_id`` into ``primary_id`` and delete it, atomically."""
        if primary_id == secondary_id:
            raise ValueError("Cannot merge a service into itself")

        with self.store.transaction() as tx:
            primary = tx.get_service_with_names(primary_id)
            secondary = tx.get_service_with_names(secondary_id)
            if primary is None or secondary is None:
                raise ServiceNotFoundError("One or both services not found")

            tx.reassign_service_names(secondary_id, primary_id)
            tx.reassign_service_references(secondary_id, primary_id)
            tx.update_canonical_name(primary_id)
            tx.delete_service(secondary_id)

        message = f"Successfully merged service {secondary_id} into {primary_id}"
        logger.info(message)
        return MergeResult(success=True, merged_service_id=primary_id, message=message)

    def get_service_info(self, service_id: int) -> ServiceInfo:
        service = self.store.get_service_with_names(service_id)
        if service is None:
            raise ServiceNotFoundError(f"Service {service_id} not found")
        return ServiceInfo(
            service=service,
            names=list(service.names),
            recommendations_count=self.store.count_recommendations(service_id),
        )
