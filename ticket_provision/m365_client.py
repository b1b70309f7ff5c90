"""Microsoft Graph client for user, group and license provisioning."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

import msal
import requests

from .config import M365Config


GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
AUTHORITY_BASE_URL = "https://login.microsoftonline.com"
GROUP_SELECT = "id,displayName,mail,groupTypes,mailEnabled,securityEnabled"
USER_SELECT = "id,displayName,userPrincipalName,officeLocation,mail"

logger = logging.getLogger(__name__)


class M365ClientError(RuntimeError):
    """Any failure talking to Microsoft Graph."""


class M365ConfigurationError(M365ClientError):
    """Raised when the app registration settings are incomplete."""


class M365TransportError(M365ClientError):
    """Raised when a Graph request cannot be completed at the HTTP level."""


class M365GraphError(M365ClientError):
    """Raised when Graph answers with an error status or refuses a token."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        self.status_code = status_code
        self.error = error
        self.description = description
        super().__init__(f"{error} ({status_code}): {description}")


def odata_literal(value: str) -> str:
    """Quote a value for use inside an OData ``$filter`` expression."""

    escaped = (value or "").strip().replace("'", "''")
    return f"'{escaped}'"


def _is_existing_member_error(exc: M365GraphError) -> bool:
    return exc.status_code == 400 and "already exist" in exc.description.lower()


def _error_from_response(response: Any) -> M365GraphError:
    """Decode Graph's ``{"error": {"code", "message"}}`` body, falling back to raw text."""

    try:
        body = response.json()
    except ValueError:
        return M365GraphError(response.status_code, "GraphError", response.text or "No error body.")
    details = (body.get("error") or {}) if isinstance(body, dict) else {}
    return M365GraphError(
        response.status_code,
        details.get("code") or "GraphError",
        details.get("message") or response.text or "No error message.",
    )


class M365Client:
    """Graph calls needed to create a user and attach phone, manager, groups and licenses."""

    def __init__(self, config: M365Config) -> None:
        if not config.has_credentials:
            raise M365ConfigurationError(
                "Graph credentials are missing; set m365.tenant_id, m365.client_id "
                "and m365.client_secret."
            )

        self._config = config
        self._app = msal.ConfidentialClientApplication(
            client_id=config.client_id,
            client_credential=config.client_secret,
            authority=f"{AUTHORITY_BASE_URL}/{config.tenant_id}",
        )
        self._token_lock = threading.Lock()
        self._session = requests.Session()

    # ------------------------------------------------------------------ #
    # Transport                                                          #
    # ------------------------------------------------------------------ #
    def _acquire_token(self) -> str:
        with self._token_lock:
            token = self._app.acquire_token_silent(GRAPH_SCOPE, account=None) or (
                self._app.acquire_token_for_client(scopes=GRAPH_SCOPE)
            )

        if "access_token" not in token:
            raise M365GraphError(
                0,
                token.get("error") or "token_error",
                token.get("error_description") or "Graph did not issue an access token.",
            )
        return str(token["access_token"])

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._acquire_token()}",
            "Accept": "application/json",
        }
        if "json" in kwargs:
            headers["Content-Type"] = "application/json"

        logger.debug("Graph %s %s", method, path)
        try:
            response = self._session.request(
                method,
                GRAPH_BASE_URL + path,
                headers=headers,
                timeout=self._config.request_timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise M365TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_from_response(response)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _list(self, path: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        return list(self._request("GET", path, params=params).get("value") or [])

    # ------------------------------------------------------------------ #
    # Users                                                              #
    # ------------------------------------------------------------------ #
    def find_users_by_principal_name(self, principal_name: str) -> List[Dict[str, Any]]:
        return self._list(
            "/users",
            {
                "$filter": f"userPrincipalName eq {odata_literal(principal_name)}",
                "$select": USER_SELECT,
            },
        )

    def find_users_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        return self._list(
            "/users",
            {
                "$filter": f"displayName eq {odata_literal(display_name)}",
                "$select": USER_SELECT,
            },
        )

    def create_user(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/users", json=payload)

    def add_phone_method(self, user_id: str, phone_number: str) -> Dict[str, Any]:
        payload = {"phoneNumber": phone_number, "phoneType": "mobile"}
        return self._request("POST", f"/users/{user_id}/authentication/phoneMethods", json=payload)

    def set_manager(self, user_id: str, manager_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_BASE_URL}/users/{manager_id}"}
        self._request("PUT", f"/users/{user_id}/manager/$ref", json=payload)

    # ------------------------------------------------------------------ #
    # Groups                                                             #
    # ------------------------------------------------------------------ #
    def find_groups_by_mail(self, address: str) -> List[Dict[str, Any]]:
        return self._list(
            "/groups",
            {"$filter": f"mail eq {odata_literal(address)}", "$select": GROUP_SELECT},
        )

    def find_groups_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        # requests percent-encodes '&' inside query parameters.
        return self._list(
            "/groups",
            {"$filter": f"displayName eq {odata_literal(display_name)}", "$select": GROUP_SELECT},
        )

    def add_group_member(self, group_id: str, user_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/{user_id}"}
        try:
            self._request("POST", f"/groups/{group_id}/members/$ref", json=payload)
        except M365GraphError as exc:
            if _is_existing_member_error(exc):
                logger.info("User %s is already a member of group %s.", user_id, group_id)
                return
            raise

    # ------------------------------------------------------------------ #
    # Licenses                                                           #
    # ------------------------------------------------------------------ #
    def list_subscribed_skus(self) -> List[Dict[str, Any]]:
        return self._list(
            "/subscribedSkus",
            {"$select": "skuId,skuPartNumber,capabilityStatus,consumedUnits,prepaidUnits"},
        )

    def assign_licenses(
        self,
        user_id: str,
        sku_ids: Iterable[str],
        remove_skus: Optional[Iterable[str]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "addLicenses": [{"skuId": sku_id, "disabledPlans": []} for sku_id in sku_ids],
            "removeLicenses": list(remove_skus or []),
        }
        return self._request("POST", f"/users/{user_id}/microsoft.graph.assignLicense", json=payload)


__all__ = [
    "GRAPH_BASE_URL",
    "M365Client",
    "M365ClientError",
    "M365ConfigurationError",
    "M365GraphError",
    "M365TransportError",
    "odata_literal",
]
