"""Classify requested groups and add the new user to the eligible ones."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from .m365_client import M365ClientError
from .models import (
    REASON_AMBIGUOUS,
    REASON_DISTRIBUTION_LIST,
    REASON_MAIL_ENABLED_SECURITY,
    REASON_NOT_FOUND,
    GroupClassification,
    GroupKind,
    ProvisioningResult,
)

logger = logging.getLogger(__name__)


def group_kind(group: Dict[str, Any]) -> GroupKind:
    """Derive the group kind from Graph's ``groupTypes`` and mail/security flags."""

    if group.get("groupTypes"):
        return GroupKind.UNIFIED
    if not group.get("mailEnabled"):
        return GroupKind.SECURITY_GROUP
    if group.get("securityEnabled"):
        return GroupKind.MAIL_ENABLED_SECURITY_GROUP
    return GroupKind.DISTRIBUTION_LIST


def classify_mail_group(group: Dict[str, Any]) -> GroupClassification:
    kind = group_kind(group)
    group_id = str(group.get("id") or "")
    if kind is GroupKind.DISTRIBUTION_LIST:
        return GroupClassification(True, kind, group_id, addable=False, reason=REASON_DISTRIBUTION_LIST)
    if kind is GroupKind.MAIL_ENABLED_SECURITY_GROUP:
        return GroupClassification(
            True, kind, group_id, addable=False, reason=REASON_MAIL_ENABLED_SECURITY
        )
    return GroupClassification(True, kind, group_id, addable=True)


class GroupResolver:
    """Resolve group names against the directory and add memberships."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def classify(self, name: str) -> GroupClassification:
        cleaned = (name or "").strip()
        if "@" in cleaned:
            matches = self.client.find_groups_by_mail(cleaned)
            if not matches:
                return GroupClassification(False, reason=REASON_NOT_FOUND)
            return classify_mail_group(matches[0])

        matches = self.client.find_groups_by_display_name(cleaned)
        if len(matches) == 1:
            match = matches[0]
            return GroupClassification(
                True, group_kind(match), str(match.get("id") or ""), addable=True
            )
        if not matches:
            return GroupClassification(False, reason=REASON_NOT_FOUND)
        return GroupClassification(False, reason=REASON_AMBIGUOUS)

    def add_user_to_groups(
        self, user_id: str, names: Iterable[str], result: ProvisioningResult
    ) -> List[GroupClassification]:
        """Attempt every group once, recording one outcome per name."""

        classifications: List[GroupClassification] = []
        for name in names:
            try:
                classification = self.classify(name)
            except M365ClientError as exc:
                logger.warning("Group lookup failed for %s: %s", name, exc)
                result.record_group(name, False, f"lookup failed: {exc}")
                continue
            classifications.append(classification)

            if not classification.addable:
                logger.info("Skipping group %s: %s", name, classification.reason)
                result.record_group(name, False, classification.reason)
                continue

            try:
                self.client.add_group_member(classification.directory_id, user_id)
            except M365ClientError as exc:
                logger.warning("Adding user %s to group %s failed: %s", user_id, name, exc)
                result.record_group(name, False, f"add failed: {exc}")
                continue
            logger.info("Added user %s to group %s.", user_id, name)
            result.record_group(name, True)
        return classifications


__all__ = ["GroupResolver", "classify_mail_group", "group_kind"]
