"""Organisation policy: default group memberships and license eligibility."""
from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .models import UserRecord, _unique_preserve

logger = logging.getLogger(__name__)

_MATCHABLE_ATTRIBUTES = {
    "first_name",
    "last_name",
    "manager_name",
    "title",
    "division",
    "office",
    "department",
}


class PolicyError(RuntimeError):
    """Raised when the policy file is malformed."""


@dataclass
class PolicyRule:
    """Values granted to every record whose attributes match ``match``."""

    match: Dict[str, str] = field(default_factory=dict)
    values: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], key: str) -> "PolicyRule":
        raw_match = data.get("match") or {}
        if not isinstance(raw_match, dict):
            raise PolicyError("Policy rule 'match' must be a mapping.")
        unknown = set(raw_match) - _MATCHABLE_ATTRIBUTES
        if unknown:
            raise PolicyError(f"Unknown policy match attribute(s): {', '.join(sorted(unknown))}.")
        values = data.get(key) or []
        if isinstance(values, str):
            values = [values]
        return cls(
            match={str(name): str(pattern) for name, pattern in raw_match.items()},
            values=_unique_preserve(values),
        )

    def matches(self, record: UserRecord) -> bool:
        for attribute, pattern in self.match.items():
            actual = str(getattr(record, attribute, "") or "").lower()
            if not fnmatch.fnmatchcase(actual, pattern.lower()):
                return False
        return True


@dataclass
class OrgPolicy:
    group_rules: List[PolicyRule] = field(default_factory=list)
    license_rules: List[PolicyRule] = field(default_factory=list)
    sku_labels: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrgPolicy":
        return cls(
            group_rules=[PolicyRule.from_dict(entry, "groups") for entry in data.get("groups") or []],
            license_rules=[
                PolicyRule.from_dict(entry, "skus") for entry in data.get("licenses") or []
            ],
            sku_labels={str(k): str(v) for k, v in (data.get("sku_labels") or {}).items()},
        )

    def extend_groups(self, record: UserRecord) -> List[str]:
        """Append policy groups to ``record.requested_groups``; return the additions."""

        before = list(record.requested_groups)
        for rule in self.group_rules:
            if rule.matches(record):
                record.add_groups(rule.values)
        added = [name for name in record.requested_groups if name not in before]
        if added:
            logger.info("Policy added groups: %s", ", ".join(added))
        return added

    def required_skus(self, record: UserRecord) -> List[str]:
        skus: List[str] = []
        for rule in self.license_rules:
            if rule.matches(record):
                skus.extend(rule.values)
        return _unique_preserve(skus)

    def sku_label(self, part_number: str) -> str:
        return self.sku_labels.get(part_number, part_number)


def load_policy(path: Path) -> OrgPolicy:
    """Load the organisation policy from a YAML file."""

    if not path.exists():
        logger.warning("Policy file '%s' not found; no default groups or licenses apply.", path)
        return OrgPolicy()

    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise PolicyError(f"Policy file '{path}' must contain a mapping.")
    return OrgPolicy.from_dict(payload)


__all__ = ["OrgPolicy", "PolicyError", "PolicyRule", "load_policy"]
