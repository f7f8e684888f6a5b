"""Data models for provisioned accounts, licences and deprovisioning results."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LicenseStatus(str, Enum):
    ENABLED = "Enabled"
    PENDING = "Pending"


class AccountState(str, Enum):
    """Progress of a single account through deprovisioning."""

    SELECTED = "Selected"
    LICENSES_CHECKED = "LicensesChecked"
    LICENSES_REMOVED = "LicensesRemoved"
    DELETED = "Deleted"
    FAILED = "Failed"


@dataclass(frozen=True)
class UserAttributes:
    """Input collected for a new account."""

    first_name: str
    last_name: str
    username: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def mail_nickname(self) -> str:
        return self.username

    def user_principal_name(self, domain: str) -> str:
        return f"{self.username}@{domain}"


@dataclass(frozen=True)
class ProvisionedAccount:
    """Result of a successful provisioning call.

    The temporary password is only held here; it cannot be read back from the
    directory, so callers must surface it once and drop the object.
    """

    id: str
    user_principal_name: str
    display_name: str
    temporary_password: str = field(repr=False)
    license_status: LicenseStatus = LicenseStatus.PENDING


@dataclass(frozen=True)
class LicenseSku:
    """One subscribed SKU from the tenant licence catalog."""

    sku_id: str
    part_number: str
    total_units: int = 0
    consumed_units: int = 0

    @property
    def available_units(self) -> int:
        return max(0, self.total_units - self.consumed_units)

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "LicenseSku":
        prepaid = data.get("prepaidUnits") or {}
        return cls(
            sku_id=str(data.get("skuId") or ""),
            part_number=str(data.get("skuPartNumber") or ""),
            total_units=int(prepaid.get("enabled") or 0),
            consumed_units=int(data.get("consumedUnits") or 0),
        )


@dataclass(frozen=True)
class AccountSummary:
    id: str
    display_name: str
    user_principal_name: str
    license_summary: str
    account_enabled: Optional[bool] = None


@dataclass(frozen=True)
class AccountOutcome:
    """Final state of one account, plus the last step it completed."""

    account_id: str
    succeeded: bool
    error_detail: Optional[str] = None
    error_kind: Optional[str] = None
    state: AccountState = AccountState.DELETED
    last_completed: AccountState = AccountState.DELETED
    failed_stage: Optional[str] = None


@dataclass
class DeprovisionResult:
    """Tally of a bulk deprovisioning run, one outcome per requested account."""

    success_count: int = 0
    failure_count: int = 0
    outcomes: List[AccountOutcome] = field(default_factory=list)

    def record(self, outcome: AccountOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.succeeded:
            self.success_count += 1
        else:
            self.failure_count += 1

    @property
    def failed(self) -> List[AccountOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]


__all__ = [
    "AccountOutcome",
    "AccountState",
    "AccountSummary",
    "DeprovisionResult",
    "LicenseSku",
    "LicenseStatus",
    "ProvisionedAccount",
    "UserAttributes",
]
