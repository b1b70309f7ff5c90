"""Data models for parsed tickets and provisioning outcomes."""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

from .text import strip_diacritics

LIST_SEPARATOR = " | "
FIELD_TERMINATOR = ": "

REASON_NOT_FOUND = "not found"
REASON_AMBIGUOUS = "ambiguous match"
REASON_DISTRIBUTION_LIST = "distribution list"
REASON_MAIL_ENABLED_SECURITY = "mail-enabled security group"
REASON_EXHAUSTED = "no available seats"
REASON_NOT_SUBSCRIBED = "not subscribed in tenant"
REASON_NOT_PROVIDED = "not provided in ticket"


def _unique_preserve(values: Sequence[str]) -> List[str]:
    seen: set[str] = set()
    result: List[str] = []
    for value in values:
        cleaned = str(value or "").strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            result.append(cleaned)
    return result


@dataclass
class RawField:
    """A ticket field as split out of the raw text, before interpretation."""

    name: str
    lines: List[str] = field(default_factory=list)

    @property
    def header(self) -> str:
        return f"{self.name}{FIELD_TERMINATOR}"

    @property
    def raw_value(self) -> str:
        return LIST_SEPARATOR.join(self.lines)

    def render(self) -> str:
        return f"{self.header}{self.raw_value}"


@dataclass
class UserRecord:
    """Structured user details extracted from a ticket."""

    first_name: str = ""
    last_name: str = ""
    manager_name: str = ""
    title: str = ""
    division: str = ""
    office: str = ""
    department: str = ""
    personal_phone: str = ""
    additional_notes: str = ""
    requested_groups: List[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def local_part(self, suffix: str = "") -> str:
        first = strip_diacritics(self.first_name)
        last = strip_diacritics(self.last_name)
        return f"{first}.{last}{suffix}"

    def principal_name(self, domain: str, suffix: str = "") -> str:
        return f"{self.local_part(suffix)}@{domain}"

    def add_groups(self, groups: Sequence[str]) -> None:
        self.requested_groups = _unique_preserve([*self.requested_groups, *groups])

    def to_dict(self) -> Dict[str, Any]:
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["requested_groups"] = list(self.requested_groups)
        return payload


class GroupKind(str, Enum):
    UNIFIED = "Unified"
    SECURITY_GROUP = "SecurityGroup"
    MAIL_ENABLED_SECURITY_GROUP = "MailEnabledSecurityGroup"
    DISTRIBUTION_LIST = "DistributionList"


@dataclass(frozen=True)
class GroupClassification:
    exists: bool
    kind: Optional[GroupKind] = None
    directory_id: str = ""
    addable: bool = False
    reason: str = ""


@dataclass(frozen=True)
class SkuAvailability:
    sku_id: str
    sku_part_number: str
    available: int
    total: int

    @property
    def allocatable(self) -> bool:
        return self.available > 0


@dataclass(frozen=True)
class LicenseDecision:
    required_skus: Set[str]
    availability: Dict[str, SkuAvailability]

    @property
    def allocatable(self) -> List[SkuAvailability]:
        return [
            self.availability[code]
            for code in sorted(self.required_skus)
            if code in self.availability and self.availability[code].allocatable
        ]


@dataclass(frozen=True)
class GroupOutcome:
    group_name: str
    succeeded: bool
    reason: str = ""


@dataclass(frozen=True)
class LicenseOutcome:
    sku_label: str
    succeeded: bool
    reason: str = ""


@dataclass(frozen=True)
class StepOutcome:
    step: str
    succeeded: bool
    detail: str = ""


class ResultFrozenError(RuntimeError):
    """Raised when a finished provisioning result is modified."""


@dataclass
class ProvisioningResult:
    """Everything the orchestrator learned while provisioning one ticket."""

    directory_id: str = ""
    display_name: str = ""
    user_principal_name: str = ""
    office_location: str = ""
    assigned_auth_phone: str = ""
    manager_display_name: str = ""
    group_outcomes: List[GroupOutcome] = field(default_factory=list)
    license_outcomes: List[LicenseOutcome] = field(default_factory=list)
    step_outcomes: List[StepOutcome] = field(default_factory=list)
    license_policy_matched: Optional[bool] = None
    frozen: bool = field(default=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "frozen", False):
            raise ResultFrozenError(f"Cannot set '{name}' on a finished provisioning result.")
        super().__setattr__(name, value)

    def record_group(self, group_name: str, succeeded: bool, reason: str = "") -> None:
        self._ensure_open()
        self.group_outcomes.append(GroupOutcome(group_name, succeeded, reason))

    def record_license(self, sku_label: str, succeeded: bool, reason: str = "") -> None:
        self._ensure_open()
        self.license_outcomes.append(LicenseOutcome(sku_label, succeeded, reason))

    def record_step(self, step: str, succeeded: bool, detail: str = "") -> None:
        self._ensure_open()
        self.step_outcomes.append(StepOutcome(step, succeeded, detail))

    def freeze(self) -> "ProvisioningResult":
        if self.frozen:
            return self
        self.group_outcomes = tuple(self.group_outcomes)  # type: ignore[assignment]
        self.license_outcomes = tuple(self.license_outcomes)  # type: ignore[assignment]
        self.step_outcomes = tuple(self.step_outcomes)  # type: ignore[assignment]
        self.frozen = True
        return self

    @property
    def is_empty(self) -> bool:
        return not (
            self.directory_id
            or self.user_principal_name
            or self.group_outcomes
            or self.license_outcomes
            or self.step_outcomes
        )

    @property
    def failures(self) -> List[str]:
        messages = [f"{item.step}: {item.detail}" for item in self.step_outcomes if not item.succeeded]
        messages.extend(
            f"group {item.group_name}: {item.reason}" for item in self.group_outcomes if not item.succeeded
        )
        messages.extend(
            f"license {item.sku_label}: {item.reason}"
            for item in self.license_outcomes
            if not item.succeeded
        )
        if self.license_policy_matched is False:
            messages.append("license: no license policy matched")
        return messages

    def _ensure_open(self) -> None:
        if self.frozen:
            raise ResultFrozenError("Cannot record outcomes on a finished provisioning result.")


__all__ = [
    "FIELD_TERMINATOR",
    "GroupClassification",
    "GroupKind",
    "GroupOutcome",
    "LIST_SEPARATOR",
    "LicenseDecision",
    "LicenseOutcome",
    "ProvisioningResult",
    "RawField",
    "REASON_AMBIGUOUS",
    "REASON_DISTRIBUTION_LIST",
    "REASON_EXHAUSTED",
    "REASON_MAIL_ENABLED_SECURITY",
    "REASON_NOT_FOUND",
    "REASON_NOT_PROVIDED",
    "REASON_NOT_SUBSCRIBED",
    "ResultFrozenError",
    "SkuAvailability",
    "StepOutcome",
    "UserRecord",
]
