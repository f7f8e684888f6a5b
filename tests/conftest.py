"""Shared fixtures: an in-memory directory standing in for Microsoft Graph."""

from typing import Any, Dict, Iterable, List, Optional, Sequence

import pytest

from account_lifecycle.config import TenantConfig
from account_lifecycle.graph_client import GraphClientError, GraphError


TENANT_ID = "8f1d2c3b-4a5e-4f60-9a7b-1c2d3e4f5a6b"
BASE_SKU_ID = "05e9a617-0261-4cee-bb44-138d3ef5d965"
ADDON_SKU_ID = "639dec6b-bb19-468b-871c-c5c441c4b0cb"


class FakeDirectory:
    """Records every call and fails on demand."""

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.licenses: Dict[str, List[str]] = {}
        self.catalog: List[Dict[str, Any]] = [
            sku_entry(BASE_SKU_ID, "SPE_E3", 10, 4),
            sku_entry(ADDON_SKU_ID, "Microsoft_365_Copilot", 5, 1),
        ]
        self.calls: List[tuple] = []
        self.failures: Dict[str, Dict[Optional[str], GraphError]] = {}
        self._next_id = 1

    def fail(self, operation: str, error: GraphClientError, user_id: Optional[str] = None) -> None:
        self.failures.setdefault(operation, {})[user_id] = error

    def _maybe_fail(self, operation: str, user_id: Optional[str] = None) -> None:
        errors = self.failures.get(operation, {})
        if user_id in errors:
            raise errors[user_id]
        if None in errors:
            raise errors[None]

    def create_user(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create_user", attributes["userPrincipalName"]))
        self._maybe_fail("create_user")
        principal = attributes["userPrincipalName"]
        if any(user["userPrincipalName"] == principal for user in self.users.values()):
            raise GraphError(400, "Request_BadRequest", "Another object with the same value for property userPrincipalName already exists.")
        user_id = f"user-{self._next_id}"
        self._next_id += 1
        record = dict(attributes, id=user_id)
        self.users[user_id] = record
        return record

    def list_users(self, select: Sequence[str]) -> List[Dict[str, Any]]:
        self.calls.append(("list_users", tuple(select)))
        self._maybe_fail("list_users")
        return [dict(user) for user in self.users.values()]

    def get_license_catalog(self) -> List[Dict[str, Any]]:
        self.calls.append(("get_license_catalog",))
        self._maybe_fail("get_license_catalog")
        return [dict(entry) for entry in self.catalog]

    def get_user_licenses(self, user_id: str) -> List[Dict[str, Any]]:
        self.calls.append(("get_user_licenses", user_id))
        self._maybe_fail("get_user_licenses", user_id)
        return [{"skuId": sku_id} for sku_id in self.licenses.get(user_id, [])]

    def assign_licenses(self, user_id: str, add: Iterable[str], remove: Iterable[str]) -> Dict[str, Any]:
        add, remove = list(add), list(remove)
        self.calls.append(("assign_licenses", user_id, add, remove))
        self._maybe_fail("assign_licenses", user_id)
        current = [sku for sku in self.licenses.get(user_id, []) if sku not in remove]
        self.licenses[user_id] = current + add
        return {"id": user_id}

    def delete_user(self, user_id: str) -> None:
        self.calls.append(("delete_user", user_id))
        self._maybe_fail("delete_user", user_id)
        self.users.pop(user_id, None)

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


def sku_entry(sku_id: str, part_number: str, enabled: int, consumed: int) -> Dict[str, Any]:
    return {
        "skuId": sku_id,
        "skuPartNumber": part_number,
        "prepaidUnits": {"enabled": enabled, "suspended": 0, "warning": 0},
        "consumedUnits": consumed,
    }


@pytest.fixture
def tenant_config():
    return TenantConfig(
        tenant_id=TENANT_ID,
        domain="contoso.onmicrosoft.com",
        required_license_skus=("SPE_E3", "Microsoft_365_Copilot"),
    )


@pytest.fixture
def directory():
    return FakeDirectory()
