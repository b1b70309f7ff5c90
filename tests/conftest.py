from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from ticket_provision.config import ProvisioningConfig
from ticket_provision.m365_client import M365GraphError


class FakeDirectory:
    """In-memory stand-in for the Graph client used by the provisioning steps."""

    def __init__(self) -> None:
        self.users: List[Dict[str, Any]] = []
        self.groups: List[Dict[str, Any]] = []
        self.skus: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.memberships: Dict[str, List[str]] = {}
        self.managers: Dict[str, str] = {}
        self.phones: Dict[str, str] = {}
        self.assigned: Dict[str, List[str]] = {}

    def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def add_user(self, upn: str, display_name: Optional[str] = None, user_id: Optional[str] = None) -> Dict[str, Any]:
        user = {
            "id": user_id or f"user-{len(self.users) + 1}",
            "userPrincipalName": upn,
            "displayName": display_name or upn.split("@")[0],
        }
        self.users.append(user)
        return user

    def add_group(self, **group: Any) -> Dict[str, Any]:
        group.setdefault("id", f"group-{len(self.groups) + 1}")
        group.setdefault("groupTypes", [])
        group.setdefault("mailEnabled", False)
        group.setdefault("securityEnabled", True)
        self.groups.append(group)
        return group

    def add_sku(self, part_number: str, consumed: int, enabled: int) -> Dict[str, Any]:
        sku = {
            "skuId": f"sku-{part_number.lower()}",
            "skuPartNumber": part_number,
            "consumedUnits": consumed,
            "prepaidUnits": {"enabled": enabled},
        }
        self.skus.append(sku)
        return sku

    # -- client surface -------------------------------------------------
    def find_users_by_principal_name(self, principal_name: str) -> List[Dict[str, Any]]:
        self._call("find_users_by_principal_name", principal_name)
        return [u for u in self.users if u["userPrincipalName"].lower() == principal_name.lower()]

    def find_users_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        self._call("find_users_by_display_name", display_name)
        return [u for u in self.users if u.get("displayName") == display_name]

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._call("create_user", payload)
        user = self.add_user(payload["userPrincipalName"], payload["displayName"], user_id="new-user")
        user["officeLocation"] = payload.get("officeLocation")
        return dict(user)

    def add_phone_method(self, user_id: str, phone_number: str) -> Dict[str, Any]:
        self._call("add_phone_method", user_id, phone_number)
        self.phones[user_id] = phone_number
        return {"phoneNumber": phone_number, "phoneType": "mobile"}

    def set_manager(self, user_id: str, manager_id: str) -> None:
        self._call("set_manager", user_id, manager_id)
        self.managers[user_id] = manager_id

    def find_groups_by_mail(self, address: str) -> List[Dict[str, Any]]:
        self._call("find_groups_by_mail", address)
        return [g for g in self.groups if (g.get("mail") or "").lower() == address.lower()]

    def find_groups_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        self._call("find_groups_by_display_name", display_name)
        return [g for g in self.groups if g.get("displayName") == display_name]

    def add_group_member(self, group_id: str, user_id: str) -> None:
        self._call("add_group_member", group_id, user_id)
        members = self.memberships.setdefault(group_id, [])
        if user_id not in members:
            members.append(user_id)

    def list_subscribed_skus(self) -> List[Dict[str, Any]]:
        self._call("list_subscribed_skus")
        return [dict(sku) for sku in self.skus]

    def assign_licenses(self, user_id: str, sku_ids: List[str]) -> Dict[str, Any]:
        sku_ids = list(sku_ids)
        self._call("assign_licenses", user_id, sku_ids)
        self.assigned.setdefault(user_id, []).extend(sku_ids)
        return {"id": user_id}


def graph_error(status: int = 500, message: str = "boom") -> M365GraphError:
    return M365GraphError(status, "ServiceError", message)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def provisioning_config() -> ProvisioningConfig:
    return ProvisioningConfig(
        domain="contoso.com",
        initial_password="Temp-Password-1!",
        propagation_wait_seconds=0,
        pacing_seconds=0,
    )


SAMPLE_TICKET = """\
New hire request, please see below.
### First Name
John
### Last Name
Doe
### Job Title
CNC Machinist
### Manager
Jane Doe <jane@x.com>
### Division
Manufacturing
### Personal Phone Number
(555) 123-4567
### Department
Other
> Field Engineering
### Office Location
Plant 2
### Groups / Distribution Lists
Engineering Team, CNC Group
### Additional Notes
Needs a badge.
Starts Monday.
"""


@pytest.fixture
def sample_ticket() -> str:
    return SAMPLE_TICKET
