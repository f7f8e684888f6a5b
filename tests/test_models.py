"""Tests for the data model helpers."""

from account_lifecycle.models import (
    AccountOutcome,
    AccountState,
    DeprovisionResult,
    LicenseSku,
    UserAttributes,
)

from conftest import BASE_SKU_ID, sku_entry


def test_user_attributes_derive_names():
    attrs = UserAttributes(first_name="Jane", last_name="Doe", username="jdoe")

    assert attrs.display_name == "Jane Doe"
    assert attrs.mail_nickname == "jdoe"
    assert attrs.user_principal_name("contoso.onmicrosoft.com") == "jdoe@contoso.onmicrosoft.com"


def test_license_sku_from_graph():
    sku = LicenseSku.from_graph(sku_entry(BASE_SKU_ID, "SPE_E3", 25, 20))

    assert sku.sku_id == BASE_SKU_ID
    assert sku.part_number == "SPE_E3"
    assert sku.available_units == 5


def test_license_sku_tolerates_missing_units():
    sku = LicenseSku.from_graph({"skuId": "x", "skuPartNumber": "TRIAL"})

    assert sku.total_units == 0
    assert sku.available_units == 0


def test_deprovision_result_tallies():
    result = DeprovisionResult()
    result.record(AccountOutcome(account_id="a", succeeded=True))
    result.record(AccountOutcome(account_id="b", succeeded=False, error_detail="boom", state=AccountState.FAILED))

    assert (result.success_count, result.failure_count) == (1, 1)
    assert [outcome.account_id for outcome in result.failed] == ["b"]
