import json
from decimal import Decimal

import pytest

from ledger_categorizer.classifiers.patterns import ExactPatternClassifier
from ledger_categorizer.models import ResultSource, Transaction


@pytest.fixture(scope="module")
def classifier() -> ExactPatternClassifier:
    return ExactPatternClassifier()


def tx(description: str, amount: str = "-10.00") -> Transaction:
    return Transaction(description=description, amount=Decimal(amount))


@pytest.mark.parametrize(
    ("description", "amount", "code"),
    [
        ("SEND E-TFR FEE", "-4.99", "404"),
        ("RCV E-TFR FEE", "-1.50", "404"),
        ("INTERAC E-TRANSFER FEE", "-1.00", "404"),
        ("WIRE TRANSFER FEE", "-15.00", "404"),
        ("INCOMING WIRE TRANSFER", "5000.00", "877"),
        ("WIRE TRANSFER TO ACME", "-5000.00", "877"),
        ("MONTHLY ACCOUNT FEE", "-12.95", "404"),
        ("SEND E-TFR ***abc JOHN", "-200.00", "877"),
        ("E-TFR JOHN SMITH", "200.00", "877"),
        ("E-TFR JOHN SMITH", "-200.00", "877"),
        ("MB-TRANSFER TO 1234", "-500.00", "877"),
        ("FEDERAL PAYMENT CANADA", "2500.00", "200"),
        ("FEDERAL PAYMENT CANADA INTEREST CREDIT", "12.00", "270"),
        ("MB-BILL PAYMENT ROGERS", "-95.00", "489"),
        ("MB-BILL PAYMENT MASTERCARD", "-400.00", "800"),
        ("INTEREST CHARGE", "-3.00", "437"),
    ],
)
def test_system_patterns(classifier, accounts, description, amount, code):
    result = classifier.classify(tx(description, amount), accounts)
    assert result is not None
    assert result.account_code == code
    assert result.source is ResultSource.EXACT_RULE
    assert result.confidence >= 85


def test_fee_wording_never_maps_to_transfer(classifier, accounts):
    result = classifier.classify(tx("SEND E-TFR FEE", "-4.99"), accounts)
    assert result.account_code == accounts.bank_fee_code
    assert result.confidence == 100
    assert result.flow == "outflow"


def test_etransfer_override_confidence(classifier, accounts):
    result = classifier.classify(tx("INTERAC ETFR PAYMENT", "-50.00"), accounts)
    assert result.account_code == accounts.transfer_code
    assert result.confidence == 98


def test_no_match(classifier, accounts):
    assert classifier.classify(tx("ZZYZX VENTURES 8812"), accounts) is None


def test_patterns_sorted_by_priority(classifier):
    priorities = [pattern.priority for pattern in classifier.patterns]
    assert priorities == sorted(priorities, reverse=True)


def test_stats_counts_groups(classifier):
    stats = classifier.stats()
    assert stats["fee"] > 0
    assert stats["transfer"] > 0
    assert sum(stats.values()) == len(classifier.patterns)


def test_codes_absent_from_jurisdiction_are_skipped(tmp_path, accounts):
    path = tmp_path / "system_rules.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "patterns": [
                    {"id": "ghost", "pattern": "widget", "account": "999", "priority": 10},
                    {"id": "real", "pattern": "widget", "account": "@expense", "priority": 5},
                ],
            }
        )
    )
    classifier = ExactPatternClassifier(str(path))
    result = classifier.classify(tx("WIDGET WORLD"), accounts)
    assert result.account_code == "453"
