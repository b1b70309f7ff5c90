"""Sequence account creation and the follow-up attachment steps for one ticket."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .config import ProvisioningConfig
from .groups import GroupResolver
from .licenses import LicenseAllocator
from .m365_client import M365ClientError
from .models import (
    REASON_AMBIGUOUS,
    REASON_NOT_FOUND,
    REASON_NOT_PROVIDED,
    ProvisioningResult,
    UserRecord,
)
from .policy import OrgPolicy
from .text import normalize_phone

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str, List[Dict[str, Any]]], bool]

STEP_PHONE = "phone"
STEP_MANAGER = "manager"
STEP_GROUPS = "groups"
STEP_LICENSE = "license"


class ProvisioningState(str, Enum):
    SEARCHING = "Searching"
    NOT_FOUND = "NotFound"
    FOUND = "Found"
    AWAITING_DECISION = "AwaitingDecision"
    ABORTED = "Aborted"
    RETRYING_ALT_NAME = "RetryingAltName"
    CREATING = "Creating"
    CREATED = "Created"
    ATTACHING_PHONE = "AttachingPhone"
    ATTACHING_MANAGER = "AttachingManager"
    ATTACHING_GROUPS = "AttachingGroups"
    ATTACHING_LICENSE = "AttachingLicense"
    COMPLETE = "Complete"
    FATAL = "Fatal"


class ProvisioningError(RuntimeError):
    """Base class for errors that stop a provisioning run."""


class DuplicateIdentityError(ProvisioningError):
    """Raised when the principal name is taken and nobody can approve an alternate."""

    def __init__(self, principal_name: str) -> None:
        super().__init__(f"A user with principal name '{principal_name}' already exists.")
        self.principal_name = principal_name


class UnresolvableIdentityError(ProvisioningError):
    """Raised when the alternate principal name is also taken."""

    def __init__(self, principal_name: str, alternate: str) -> None:
        super().__init__(
            f"Both '{principal_name}' and the alternate '{alternate}' are already in use; "
            "choose a principal name manually."
        )
        self.principal_name = principal_name
        self.alternate = alternate


@dataclass
class DelayPolicy:
    """Waits inserted between remote calls.

    ``propagation_seconds`` is the read-after-write allowance before the phone
    step. ``pacing_seconds`` only spaces out steps for someone watching the run.
    """

    propagation_seconds: float = 30.0
    pacing_seconds: float = 0.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def none(cls) -> "DelayPolicy":
        return cls(propagation_seconds=0.0, pacing_seconds=0.0)

    @classmethod
    def from_config(cls, config: ProvisioningConfig, interactive: bool = True) -> "DelayPolicy":
        return cls(
            propagation_seconds=max(config.propagation_wait_seconds, 0.0),
            pacing_seconds=max(config.pacing_seconds, 0.0) if interactive else 0.0,
        )

    def wait_for_propagation(self) -> None:
        if self.propagation_seconds > 0:
            logger.info("Waiting %.0f seconds for directory propagation.", self.propagation_seconds)
            self.sleep(self.propagation_seconds)

    def pace(self) -> None:
        if self.pacing_seconds > 0:
            self.sleep(self.pacing_seconds)


class ProvisioningOrchestrator:
    """Provision one user record end to end.

    Only the uniqueness check and the create call can end the run early.
    Every attachment step runs once and records its own outcome.
    """

    def __init__(
        self,
        client: Any,
        config: ProvisioningConfig,
        policy: Optional[OrgPolicy] = None,
        confirm: Optional[ConfirmCallback] = None,
        delays: Optional[DelayPolicy] = None,
        usage_location: Optional[str] = None,
    ) -> None:
        self.client = client
        self.config = config
        self.policy = policy or OrgPolicy()
        self.confirm = confirm
        self.delays = delays or DelayPolicy.from_config(config)
        self.usage_location = usage_location
        self.groups = GroupResolver(client)
        self.licenses = LicenseAllocator(client, labeler=self.policy.sku_label)
        self.state = ProvisioningState.SEARCHING
        self.history: List[ProvisioningState] = []

    # ------------------------------------------------------------------ #
    # State handling                                                     #
    # ------------------------------------------------------------------ #
    def _transition(self, state: ProvisioningState) -> None:
        logger.debug("Provisioning state %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def run(self, record: UserRecord) -> ProvisioningResult:
        result = ProvisioningResult()
        self.history = []
        self._transition(ProvisioningState.SEARCHING)

        try:
            principal_name = self._choose_principal_name(record)
        except (ProvisioningError, M365ClientError):
            self._transition(ProvisioningState.FATAL)
            raise
        if principal_name is None:
            self._transition(ProvisioningState.ABORTED)
            return result.freeze()

        self._transition(ProvisioningState.CREATING)
        try:
            created = self.client.create_user(self.build_user_payload(record, principal_name))
        except M365ClientError:
            logger.error("Creating %s failed; nothing was provisioned.", principal_name)
            self._transition(ProvisioningState.FATAL)
            raise
        self._transition(ProvisioningState.CREATED)

        result.directory_id = str(created.get("id") or "")
        result.display_name = str(created.get("displayName") or record.display_name)
        result.user_principal_name = str(created.get("userPrincipalName") or principal_name)
        result.office_location = str(created.get("officeLocation") or "")
        logger.info("Created %s (%s).", result.user_principal_name, result.directory_id)

        self._transition(ProvisioningState.ATTACHING_PHONE)
        self.delays.wait_for_propagation()
        self._attach_phone(record, result)

        self._transition(ProvisioningState.ATTACHING_MANAGER)
        self.delays.pace()
        self._attach_manager(record, result)

        self._transition(ProvisioningState.ATTACHING_GROUPS)
        self.delays.pace()
        self._attach_groups(record, result)

        self._transition(ProvisioningState.ATTACHING_LICENSE)
        self.delays.pace()
        self._attach_license(record, result)

        self._transition(ProvisioningState.COMPLETE)
        return result.freeze()

    # ------------------------------------------------------------------ #
    # Uniqueness                                                         #
    # ------------------------------------------------------------------ #
    def _choose_principal_name(self, record: UserRecord) -> Optional[str]:
        domain = self.config.domain
        principal_name = record.principal_name(domain)
        matches = self.client.find_users_by_principal_name(principal_name)
        if not matches:
            self._transition(ProvisioningState.NOT_FOUND)
            return principal_name

        self._transition(ProvisioningState.FOUND)
        logger.warning("Principal name %s is already in use.", principal_name)
        if self.confirm is None:
            raise DuplicateIdentityError(principal_name)

        self._transition(ProvisioningState.AWAITING_DECISION)
        if not self.confirm(principal_name, matches):
            logger.info("Operator declined to continue with an alternate name.")
            return None

        self._transition(ProvisioningState.RETRYING_ALT_NAME)
        alternate = record.principal_name(domain, suffix=self.config.alternate_suffix)
        if self.client.find_users_by_principal_name(alternate):
            raise UnresolvableIdentityError(principal_name, alternate)
        self._transition(ProvisioningState.NOT_FOUND)
        return alternate

    def build_user_payload(self, record: UserRecord, principal_name: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "accountEnabled": True,
            "givenName": record.first_name,
            "surname": record.last_name,
            "displayName": record.display_name,
            "mailNickname": principal_name.split("@", 1)[0],
            "userPrincipalName": principal_name,
            "passwordProfile": {
                "password": self.config.initial_password,
                "forceChangePasswordNextSignIn": self.config.force_change_password,
            },
        }
        optional = {
            "officeLocation": record.office,
            "department": record.department,
            "jobTitle": record.title,
            "usageLocation": self.usage_location,
        }
        # Graph rejects empty strings for these properties.
        payload.update({key: value for key, value in optional.items() if value})
        return payload

    # ------------------------------------------------------------------ #
    # Attachment steps                                                   #
    # ------------------------------------------------------------------ #
    def _attach_phone(self, record: UserRecord, result: ProvisioningResult) -> None:
        phone = normalize_phone(record.personal_phone, self.config.phone_country_code)
        if not phone:
            result.record_step(STEP_PHONE, False, REASON_NOT_PROVIDED)
            return
        try:
            confirmation = self.client.add_phone_method(result.directory_id, phone)
        except M365ClientError as exc:
            logger.warning("Adding authentication phone failed: %s", exc)
            result.record_step(STEP_PHONE, False, str(exc))
            return
        result.assigned_auth_phone = str(confirmation.get("phoneNumber") or phone)
        result.record_step(STEP_PHONE, True, result.assigned_auth_phone)

    def _attach_manager(self, record: UserRecord, result: ProvisioningResult) -> None:
        name = record.manager_name
        if not name:
            result.record_step(STEP_MANAGER, False, REASON_NOT_PROVIDED)
            return
        try:
            matches = self.client.find_users_by_display_name(name)
            if len(matches) != 1:
                reason = REASON_NOT_FOUND if not matches else REASON_AMBIGUOUS
                logger.warning("Manager %s could not be resolved: %s", name, reason)
                result.record_step(STEP_MANAGER, False, f"{name}: {reason}")
                return
            manager = matches[0]
            self.client.set_manager(result.directory_id, str(manager.get("id")))
        except M365ClientError as exc:
            logger.warning("Setting manager %s failed: %s", name, exc)
            result.record_step(STEP_MANAGER, False, str(exc))
            return
        result.manager_display_name = str(manager.get("displayName") or name)
        result.record_step(STEP_MANAGER, True, result.manager_display_name)

    def _attach_groups(self, record: UserRecord, result: ProvisioningResult) -> None:
        if not record.requested_groups:
            logger.info("No groups requested.")
            result.record_step(STEP_GROUPS, False, REASON_NOT_PROVIDED)
            return
        self.groups.add_user_to_groups(result.directory_id, record.requested_groups, result)

    def _attach_license(self, record: UserRecord, result: ProvisioningResult) -> None:
        required = self.policy.required_skus(record)
        try:
            self.licenses.allocate(result.directory_id, required, result)
        except M365ClientError as exc:
            logger.warning("Reading license availability failed: %s", exc)
            result.record_step(STEP_LICENSE, False, str(exc))
            return


__all__ = [
    "DelayPolicy",
    "DuplicateIdentityError",
    "ProvisioningError",
    "ProvisioningOrchestrator",
    "ProvisioningState",
    "UnresolvableIdentityError",
]
