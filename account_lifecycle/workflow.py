"""Account lifecycle workflow: provision, license, list and deprovision users."""
from __future__ import annotations

import logging
import secrets
import string
from typing import Any, Dict, Iterable, List, Optional

from .config import TenantConfig
from .graph_client import DirectoryClient, GraphClientError, GraphError
from .models import (
    AccountOutcome,
    AccountState,
    AccountSummary,
    DeprovisionResult,
    LicenseSku,
    LicenseStatus,
    ProvisionedAccount,
    UserAttributes,
)


PASSWORD_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
PASSWORD_LENGTH = 12
PASSWORD_SUFFIX = "!"

GUEST_MARKER = "#EXT#"
USER_PROJECTION = ("id", "displayName", "userPrincipalName", "accountEnabled", "assignedLicenses")
NO_LICENSES = "No licenses"
LICENSE_LOOKUP_ERROR = "Error retrieving licenses"

logger = logging.getLogger(__name__)


class LifecycleError(RuntimeError):
    """Base exception for lifecycle workflow failures."""


class AccountCreationError(LifecycleError):
    """Raised when the directory rejects a new account."""


class LicensingError(LifecycleError):
    """Licence lookup or assignment failed; never escapes the workflow."""


class MissingIdentifierError(LifecycleError):
    """A deprovisioning target carries no account identifier."""


class PerAccountRemoteError(LifecycleError):
    """A remote call failed while deprovisioning one account."""

    def __init__(self, account_id: str, stage: str, detail: str) -> None:
        super().__init__(detail)
        self.account_id = account_id
        self.stage = stage
        self.detail = detail


def generate_temporary_password() -> str:
    body = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(PASSWORD_LENGTH))
    return body + PASSWORD_SUFFIX


class AccountLifecycleWorkflow:
    """Orchestrates account provisioning and removal against a connected directory.

    The workflow holds no UI state. Every call blocks on the directory client
    and accounts are processed strictly one after another so log output follows
    processing order.
    """

    def __init__(self, config: TenantConfig, directory: DirectoryClient) -> None:
        self.config = config.validate()
        self.directory = directory

    # ------------------------------------------------------------------ #
    # Provisioning                                                       #
    # ------------------------------------------------------------------ #
    def provision_account(self, attrs: UserAttributes) -> ProvisionedAccount:
        """Create the account, then attempt licensing without failing on it."""

        principal = attrs.user_principal_name(self.config.domain)
        password = generate_temporary_password()
        payload: Dict[str, Any] = {
            "accountEnabled": True,
            "displayName": attrs.display_name,
            "givenName": attrs.first_name,
            "surname": attrs.last_name,
            "mailNickname": attrs.mail_nickname,
            "userPrincipalName": principal,
            "passwordProfile": {
                "forceChangePasswordNextSignIn": True,
                "password": password,
            },
        }
        if self.config.usage_location:
            payload["usageLocation"] = self.config.usage_location

        logger.info("Creating account %s (%s).", principal, attrs.display_name)
        try:
            created = self.directory.create_user(payload)
        except GraphError as exc:
            logger.error("Account creation failed for %s: %s", principal, exc)
            raise AccountCreationError(f"Unable to create {principal}: {exc}") from exc

        user_id = str(created.get("id") or "")
        if not user_id:
            logger.error("Directory returned no identifier for %s.", principal)
            raise AccountCreationError(f"Directory returned no identifier for {principal}.")
        logger.info("Created account %s with id %s.", principal, user_id)

        status = self.assign_entitlements(user_id)
        return ProvisionedAccount(
            id=user_id,
            user_principal_name=str(created.get("userPrincipalName") or principal),
            display_name=str(created.get("displayName") or attrs.display_name),
            temporary_password=password,
            license_status=status,
        )

    def assign_entitlements(self, user_id: str) -> LicenseStatus:
        """Assign every configured SKU in one call, or none of them."""

        required = self.config.required_license_skus
        try:
            catalog = self._license_catalog()
        except LicensingError as exc:
            logger.warning("Licensing deferred for %s: %s", user_id, exc)
            return LicenseStatus.PENDING

        by_part_number = {sku.part_number: sku for sku in catalog}
        missing = [part for part in required if part not in by_part_number]
        if missing:
            logger.warning(
                "Licensing deferred for %s: SKU(s) %s not found in the tenant catalog.",
                user_id,
                ", ".join(missing),
            )
            return LicenseStatus.PENDING

        matched = [by_part_number[part] for part in required]
        exhausted = [sku.part_number for sku in matched if sku.available_units <= 0]
        if exhausted:
            logger.warning(
                "Licensing deferred for %s: no seats available for %s.",
                user_id,
                ", ".join(exhausted),
            )
            return LicenseStatus.PENDING

        logger.info(
            "Assigning licences %s to %s.",
            ", ".join(sku.part_number for sku in matched),
            user_id,
        )
        try:
            self.directory.assign_licenses(user_id, add=[sku.sku_id for sku in matched], remove=[])
        except GraphClientError as exc:
            logger.warning("Licensing deferred for %s: assignment failed: %s", user_id, exc)
            return LicenseStatus.PENDING

        logger.info("Licences enabled for %s.", user_id)
        return LicenseStatus.ENABLED

    def license_availability(self) -> List[LicenseSku]:
        """Return the configured SKUs found in the catalog, in configured order."""

        raw = self.directory.get_license_catalog()
        catalog = {sku.part_number: sku for sku in map(LicenseSku.from_graph, raw)}
        return [catalog[part] for part in self.config.required_license_skus if part in catalog]

    # ------------------------------------------------------------------ #
    # Listing                                                            #
    # ------------------------------------------------------------------ #
    def list_accounts(self) -> List[AccountSummary]:
        logger.info("Listing directory accounts.")
        try:
            users = self.directory.list_users(USER_PROJECTION)
        except GraphClientError as exc:
            logger.error("Unable to list accounts: %s", exc)
            raise

        candidates = [user for user in users if _is_managed_account(user)]
        logger.info(
            "Fetched %d account(s); %d excluded as guests or incomplete records.",
            len(users),
            len(users) - len(candidates),
        )
        candidates.sort(key=lambda user: str(user["displayName"]).lower())

        names: Optional[Dict[str, str]]
        try:
            names = {sku.sku_id: sku.part_number for sku in self._license_catalog()}
        except LicensingError as exc:
            logger.warning("Licence names unavailable for listing: %s", exc)
            names = None

        summaries: List[AccountSummary] = []
        for user in candidates:
            summaries.append(
                AccountSummary(
                    id=str(user["id"]),
                    display_name=str(user["displayName"]),
                    user_principal_name=str(user.get("userPrincipalName") or ""),
                    license_summary=_license_summary(user, names),
                    account_enabled=user.get("accountEnabled"),
                )
            )
        return summaries

    # ------------------------------------------------------------------ #
    # Deprovisioning                                                     #
    # ------------------------------------------------------------------ #
    def deprovision_accounts(self, account_ids: Iterable[Optional[str]]) -> DeprovisionResult:
        """Remove licences then delete each account; failures never stop the run."""

        result = DeprovisionResult()
        for account_id in account_ids:
            result.record(self._deprovision_one(account_id))
        logger.info(
            "Deprovisioning finished: %d succeeded, %d failed.",
            result.success_count,
            result.failure_count,
        )
        return result

    def _deprovision_one(self, account_id: Optional[str]) -> AccountOutcome:
        identifier = (account_id or "").strip()
        reached = AccountState.SELECTED
        try:
            if not identifier:
                raise MissingIdentifierError("Account identifier is missing.")
            sku_ids = self._assigned_licenses(identifier)
            reached = AccountState.LICENSES_CHECKED
            self._remove_licenses(identifier, sku_ids)
            reached = AccountState.LICENSES_REMOVED
            logger.info("Deleting account %s.", identifier)
            try:
                self.directory.delete_user(identifier)
            except GraphClientError as exc:
                raise PerAccountRemoteError(identifier, "deletion", str(exc)) from exc
        except (MissingIdentifierError, PerAccountRemoteError) as exc:
            stage = getattr(exc, "stage", None)
            if stage:
                logger.error("Deprovisioning %s failed during %s: %s", identifier, stage, exc)
            else:
                logger.error("Skipping deprovisioning entry %r: %s", account_id, exc)
            return AccountOutcome(
                account_id=account_id or "",
                succeeded=False,
                error_detail=str(exc),
                error_kind=type(exc).__name__,
                state=AccountState.FAILED,
                last_completed=reached,
                failed_stage=stage,
            )

        logger.info("Account %s deleted.", identifier)
        return AccountOutcome(account_id=account_id or "", succeeded=True)

    def _assigned_licenses(self, user_id: str) -> List[str]:
        try:
            assigned = self.directory.get_user_licenses(user_id)
        except GraphClientError as exc:
            raise PerAccountRemoteError(user_id, "licence lookup", str(exc)) from exc
        return [str(entry["skuId"]) for entry in assigned if entry.get("skuId")]

    def _remove_licenses(self, user_id: str, sku_ids: List[str]) -> None:
        if not sku_ids:
            logger.info("Account %s has no licences to remove.", user_id)
            return

        logger.info("Removing %d licence(s) from %s.", len(sku_ids), user_id)
        try:
            self.directory.assign_licenses(user_id, add=[], remove=sku_ids)
        except GraphClientError as exc:
            raise PerAccountRemoteError(user_id, "licence removal", str(exc)) from exc

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #
    def _license_catalog(self) -> List[LicenseSku]:
        try:
            raw = self.directory.get_license_catalog()
        except GraphClientError as exc:
            raise LicensingError(f"licence catalog lookup failed: {exc}") from exc
        try:
            return [LicenseSku.from_graph(entry) for entry in raw]
        except (TypeError, ValueError, AttributeError) as exc:
            raise LicensingError(f"licence catalog is malformed: {exc}") from exc


def _is_managed_account(user: Dict[str, Any]) -> bool:
    if not user.get("id") or not user.get("displayName"):
        return False
    return GUEST_MARKER not in str(user.get("userPrincipalName") or "").upper()


def _license_summary(user: Dict[str, Any], names: Optional[Dict[str, str]]) -> str:
    if names is None:
        return LICENSE_LOOKUP_ERROR
    try:
        assigned = [str(entry["skuId"]) for entry in user.get("assignedLicenses") or []]
    except (KeyError, TypeError) as exc:
        logger.warning("Unreadable licence data for %s: %s", user.get("id"), exc)
        return LICENSE_LOOKUP_ERROR
    if not assigned:
        return NO_LICENSES
    return ", ".join(names.get(sku_id, sku_id) for sku_id in assigned)


__all__ = [
    "AccountCreationError",
    "AccountLifecycleWorkflow",
    "LICENSE_LOOKUP_ERROR",
    "LicensingError",
    "LifecycleError",
    "MissingIdentifierError",
    "NO_LICENSES",
    "PerAccountRemoteError",
    "generate_temporary_password",
]
