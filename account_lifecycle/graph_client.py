"""Microsoft Graph directory client used by the lifecycle workflow."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

import msal
import requests

from .config import GraphConfig, TenantConfig


GRAPH_APP_SCOPE = ["https://graph.microsoft.com/.default"]
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 30
PAGE_SIZE = 999

logger = logging.getLogger(__name__)


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""


class DirectoryConnectionError(GraphClientError):
    """Raised when signing in to the directory service fails."""


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description


class DirectoryClient(Protocol):
    """Capability interface the workflow needs from a connected directory."""

    def create_user(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def list_users(self, select: Sequence[str]) -> List[Dict[str, Any]]:
        ...

    def get_license_catalog(self) -> List[Dict[str, Any]]:
        ...

    def get_user_licenses(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    def assign_licenses(
        self, user_id: str, add: Iterable[str], remove: Iterable[str]
    ) -> Dict[str, Any]:
        ...

    def delete_user(self, user_id: str) -> None:
        ...


TokenProvider = Callable[[], str]


class GraphClient:
    """Builds the msal application for a tenant and hands out sessions."""

    def __init__(
        self,
        config: GraphConfig,
        tenant: TenantConfig,
        prompt: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._config = config
        self._tenant = tenant
        self._prompt = prompt or (lambda message: logger.info("%s", message))
        self._authority = f"https://login.microsoftonline.com/{tenant.tenant_id}"
        self._token_lock = threading.Lock()
        if config.app_only:
            self._app: Any = msal.ConfidentialClientApplication(
                client_id=config.client_id,
                client_credential=config.client_secret,
                authority=self._authority,
            )
        else:
            self._app = msal.PublicClientApplication(
                client_id=config.client_id,
                authority=self._authority,
            )

    @property
    def scopes(self) -> List[str]:
        if self._config.app_only:
            return list(GRAPH_APP_SCOPE)
        return list(self._config.scopes)

    def connect(self, scopes: Optional[Sequence[str]] = None) -> "GraphSession":
        """Sign in and return a session bound to the acquired credentials."""

        requested = list(scopes) if scopes else self.scopes
        logger.info(
            "Connecting to Microsoft Graph for tenant %s (%s sign-in).",
            self._tenant.tenant_id,
            "app-only" if self._config.app_only else "delegated",
        )
        if self._config.app_only:
            result = self._app.acquire_token_for_client(scopes=requested)
        else:
            result = self._acquire_delegated(requested)
        self._check_token(result)
        logger.info("Connected to Microsoft Graph.")
        return GraphSession(lambda: self._refresh_token(requested))

    # ------------------------------------------------------------------ #
    # Token handling                                                     #
    # ------------------------------------------------------------------ #
    def _acquire_delegated(self, scopes: List[str]) -> Dict[str, Any]:
        accounts = self._app.get_accounts()
        if accounts:
            cached = self._app.acquire_token_silent(scopes, account=accounts[0])
            if cached:
                return cached
        flow = self._app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise DirectoryConnectionError(
                "Unable to start device code sign-in: "
                f"{flow.get('error_description') or flow.get('error') or 'unknown error'}"
            )
        self._prompt(str(flow.get("message", "")))
        return self._app.acquire_token_by_device_flow(flow)

    def _refresh_token(self, scopes: List[str]) -> str:
        with self._token_lock:
            try:
                if self._config.app_only:
                    result = self._app.acquire_token_silent(scopes, account=None)
                    if not result:
                        result = self._app.acquire_token_for_client(scopes=scopes)
                else:
                    accounts = self._app.get_accounts()
                    result = (
                        self._app.acquire_token_silent(scopes, account=accounts[0])
                        if accounts
                        else None
                    )
            except requests.RequestException as exc:
                logger.error("Microsoft Graph token refresh failed: %s", exc)
                raise DirectoryConnectionError(f"Unable to refresh Graph token: {exc}") from exc
            if not result and not self._config.app_only:
                raise DirectoryConnectionError(
                    "Microsoft Graph session expired; connect again."
                )
        return self._check_token(result)

    @staticmethod
    def _check_token(result: Optional[Dict[str, Any]]) -> str:
        if not result or "access_token" not in result:
            result = result or {}
            error = result.get("error", "token_error")
            description = result.get("error_description", "Unable to acquire Graph token.")
            logger.error("Microsoft Graph sign-in failed: %s - %s", error, description)
            raise DirectoryConnectionError(f"{error}: {description}")
        return str(result["access_token"])


class GraphSession:
    """Authenticated Microsoft Graph session implementing :class:`DirectoryClient`."""

    def __init__(
        self,
        token_provider: TokenProvider,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._token_provider = token_provider
        self._http = http or requests.Session()

    # ------------------------------------------------------------------ #
    # HTTP helpers                                                       #
    # ------------------------------------------------------------------ #
    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith("https://") else GRAPH_BASE_URL + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        try:
            headers.setdefault("Authorization", f"Bearer {self._token_provider()}")
            response = self._http.request(
                method,
                url,
                timeout=REQUEST_TIMEOUT,
                headers=headers,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GraphError(0, "TransportError", str(exc)) from exc

        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        return response.json()

    def _collect(self, path: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        result = self._request("GET", path, params=params)
        items.extend(result.get("value", []))
        next_link = result.get("@odata.nextLink")
        while next_link:
            result = self._request("GET", next_link)
            items.extend(result.get("value", []))
            next_link = result.get("@odata.nextLink")
        return items

    # ------------------------------------------------------------------ #
    # Users                                                              #
    # ------------------------------------------------------------------ #
    def create_user(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/users", json=attributes)

    def list_users(self, select: Sequence[str]) -> List[Dict[str, Any]]:
        params = {"$select": ",".join(select), "$top": str(PAGE_SIZE)}
        return self._collect("/users", params=params)

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/users/{user_id}")

    # ------------------------------------------------------------------ #
    # Licences                                                           #
    # ------------------------------------------------------------------ #
    def get_license_catalog(self) -> List[Dict[str, Any]]:
        return self._collect(
            "/subscribedSkus",
            params={"$select": "skuId,skuPartNumber,prepaidUnits,consumedUnits,capabilityStatus"},
        )

    def get_user_licenses(self, user_id: str) -> List[Dict[str, Any]]:
        return self._collect(f"/users/{user_id}/licenseDetails")

    def assign_licenses(
        self, user_id: str, add: Iterable[str], remove: Iterable[str]
    ) -> Dict[str, Any]:
        payload = {
            "addLicenses": [{"skuId": sku_id, "disabledPlans": []} for sku_id in add],
            "removeLicenses": list(remove),
        }
        return self._request("POST", f"/users/{user_id}/assignLicense", json=payload)


__all__ = [
    "DirectoryClient",
    "DirectoryConnectionError",
    "GraphClient",
    "GraphClientError",
    "GraphError",
    "GraphSession",
]
