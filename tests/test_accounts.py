import json
import logging

import pytest

from ledger_categorizer.accounts import AccountRegistry, supported_jurisdictions
from ledger_categorizer.errors import UnknownJurisdiction
from ledger_categorizer.models import AccountType


def test_supported_jurisdictions():
    assert supported_jurisdictions() == ("AB", "BC", "ON")


def test_load_ontario(accounts):
    assert accounts.jurisdiction == "ON"
    assert accounts.name == "Ontario"
    assert len(accounts) == 74
    assert accounts.exists("200")
    assert not accounts.exists("999")
    assert not accounts.exists(None)
    assert accounts.get("200").type is AccountType.REVENUE
    assert accounts.get("310").type is AccountType.DIRECT_COST
    assert accounts.get("877").type is AccountType.TRANSFER
    assert accounts.get("999") is None


def test_all_is_sorted_and_unique(accounts):
    codes = [account.code for account in accounts.all()]
    assert codes == sorted(codes)
    assert len(codes) == len(set(codes))


def test_roles(accounts):
    assert accounts.revenue_code == "200"
    assert accounts.interest_income_code == "270"
    assert accounts.direct_cost_code == "310"
    assert accounts.bank_fee_code == "404"
    assert accounts.vehicle_code == "449"
    assert accounts.expense_code == "453"
    assert accounts.transfer_code == "877"
    assert accounts.resolve_code("@bank_fee") == "404"
    assert accounts.resolve_code("420") == "420"
    with pytest.raises(KeyError):
        accounts.role("nonexistent")


def test_by_type(accounts):
    transfers = accounts.by_type(AccountType.TRANSFER)
    assert "877" in [account.code for account in transfers]
    assert all(account.type is AccountType.TRANSFER for account in transfers)


def test_jurisdictions_differ_in_tax_codes(registry):
    ontario = registry.load("ON").get("200")
    alberta = registry.load("ab").get("200")
    assert ontario.tax_code.startswith("ON")
    assert alberta.tax_code.startswith("AB")
    assert registry.load("bc").name == "British Columbia"


def test_load_is_memoized(registry):
    assert registry.load("ON") is registry.load("on")
    assert registry.loaded() == ("ON",)


def test_unknown_jurisdiction_raises(registry):
    with pytest.raises(UnknownJurisdiction) as excinfo:
        registry.load("QC")
    assert excinfo.value.jurisdiction == "QC"
    assert "ON" in excinfo.value.supported


def test_resolve_falls_back_to_default(registry, caplog):
    with caplog.at_level(logging.WARNING):
        account_set = registry.resolve("QC")
    assert account_set.jurisdiction == "ON"
    assert "[REGISTRY]" in caplog.text
    assert registry.resolve(None).jurisdiction == "ON"


def test_invalid_default_rejected():
    with pytest.raises(ValueError):
        AccountRegistry(default_jurisdiction="QC")


def _write_table(path, accounts, roles):
    path.write_text(json.dumps({"jurisdiction": "XX", "name": "Test", "roles": roles, "accounts": accounts}))


ROLES = {
    "revenue": "200",
    "interest_income": "200",
    "direct_cost": "300",
    "bank_fee": "400",
    "vehicle": "400",
    "expense": "400",
    "transfer": "800",
}


def test_table_with_missing_role_account_rejected(tmp_path):
    accounts = [
        {"code": "200", "name": "Sales", "type": "Revenue"},
        {"code": "300", "name": "COGS", "type": "Direct Cost"},
        {"code": "400", "name": "Fees", "type": "Expense"},
    ]
    _write_table(tmp_path / "XX.json", accounts, ROLES)
    registry = AccountRegistry(default_jurisdiction="XX", accounts_dir=str(tmp_path))
    with pytest.raises(ValueError, match="transfer"):
        registry.load("XX")


def test_table_with_duplicate_code_rejected(tmp_path):
    accounts = [
        {"code": "200", "name": "Sales", "type": "Revenue"},
        {"code": "200", "name": "Other Sales", "type": "Revenue"},
        {"code": "300", "name": "COGS", "type": "Direct Cost"},
        {"code": "400", "name": "Fees", "type": "Expense"},
        {"code": "800", "name": "Transfers", "type": "Transfer"},
    ]
    _write_table(tmp_path / "XX.json", accounts, ROLES)
    registry = AccountRegistry(default_jurisdiction="XX", accounts_dir=str(tmp_path))
    with pytest.raises(ValueError, match="duplicate"):
        registry.load("XX")
