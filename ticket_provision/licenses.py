"""Seat checks and license assignment for newly created users."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .m365_client import M365ClientError
from .models import (
    REASON_EXHAUSTED,
    REASON_NOT_SUBSCRIBED,
    LicenseDecision,
    ProvisioningResult,
    SkuAvailability,
    _unique_preserve,
)

logger = logging.getLogger(__name__)


def sku_availability(sku: Dict[str, Any]) -> SkuAvailability:
    """Build a :class:`SkuAvailability` from a ``subscribedSkus`` entry."""

    prepaid = sku.get("prepaidUnits") or {}
    total = int(prepaid.get("enabled") or 0)
    consumed = int(sku.get("consumedUnits") or 0)
    return SkuAvailability(
        sku_id=str(sku.get("skuId") or ""),
        sku_part_number=str(sku.get("skuPartNumber") or ""),
        available=max(total - consumed, 0),
        total=total,
    )


class LicenseAllocator:
    """Check current seat counts and assign the licenses a user needs."""

    def __init__(self, client: Any, labeler: Optional[Callable[[str], str]] = None) -> None:
        self.client = client
        self.labeler = labeler or (lambda part_number: part_number)

    def availability(self) -> Dict[str, SkuAvailability]:
        skus = self.client.list_subscribed_skus()
        return {entry.sku_part_number: entry for entry in map(sku_availability, skus)}

    def decide(self, required: Iterable[str]) -> LicenseDecision:
        required_set = set(_unique_preserve(list(required)))
        if not required_set:
            return LicenseDecision(required_skus=set(), availability={})
        tenant = self.availability()
        return LicenseDecision(
            required_skus=required_set,
            availability={code: tenant[code] for code in required_set if code in tenant},
        )

    def allocate(
        self, user_id: str, required: Iterable[str], result: ProvisioningResult
    ) -> Optional[LicenseDecision]:
        """Assign every allocatable SKU in ``required``; record one outcome per SKU."""

        ordered = _unique_preserve(list(required))
        if not ordered:
            logger.info("No license policy matched; skipping license assignment.")
            result.license_policy_matched = False
            return None
        result.license_policy_matched = True

        decision = self.decide(ordered)
        plan: List[Tuple[str, Optional[str]]] = []
        for code in ordered:
            entry = decision.availability.get(code)
            if entry is None:
                logger.warning("License %s is not subscribed in this tenant.", code)
                plan.append((code, REASON_NOT_SUBSCRIBED))
            elif not entry.allocatable:
                logger.warning("License %s has no available seats (%s total).", code, entry.total)
                plan.append((code, REASON_EXHAUSTED))
            else:
                plan.append((code, None))

        assign_error = ""
        to_assign = decision.allocatable
        if to_assign:
            try:
                self.client.assign_licenses(user_id, [entry.sku_id for entry in to_assign])
            except M365ClientError as exc:
                logger.warning("License assignment for %s failed: %s", user_id, exc)
                assign_error = str(exc) or exc.__class__.__name__

        for code, reason in plan:
            label = self.labeler(code)
            if reason is not None:
                result.record_license(label, False, reason)
            elif assign_error:
                result.record_license(label, False, assign_error)
            else:
                logger.info("Assigned license %s to %s.", code, user_id)
                result.record_license(label, True)
        return decision


__all__ = ["LicenseAllocator", "sku_availability"]
