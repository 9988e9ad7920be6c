from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from ledger_categorizer.app import create_app
from ledger_categorizer.services.categorization import CategorizationEngine

from conftest import make_result


@pytest.fixture
def client(engine: CategorizationEngine) -> Generator[TestClient, None, None]:
    with TestClient(create_app(engine=engine)) as test_client:
        yield test_client


def test_categorize(client):
    response = client.post("/categorize", json={"description": "SEND E-TFR FEE", "amount": "-4.99"})
    assert response.status_code == 200
    body = response.json()
    assert body["account_code"] == "404"
    assert body["source"] == "exact-rule"
    assert body["flow"] == "outflow"


def test_categorize_accepts_camel_case(client, remote):
    remote.classify.return_value = make_result("455", 90)
    response = client.post(
        "/categorize",
        json={"description": "ZZYZX VENTURES 8812", "amount": "-50", "forceRemote": True, "jurisdiction": "AB"},
    )
    assert response.status_code == 200
    assert response.json()["account_code"] == "455"
    remote.classify.assert_awaited_once()


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": "-1.00"},
        {"description": "   ", "amount": "-1.00"},
        {"description": "COFFEE", "amount": "abc"},
        {"description": "COFFEE"},
    ],
)
def test_categorize_rejects_invalid_payloads(client, payload):
    assert client.post("/categorize", json=payload).status_code == 422


def test_categorize_batch(client, remote):
    remote.is_ready = False
    response = client.post(
        "/categorize/batch",
        json={
            "requests": [
                {"description": "SEND E-TFR FEE", "amount": "-4.99"},
                {"description": "FEDERAL PAYMENT CANADA", "amount": "2500"},
            ]
        },
    )
    assert response.status_code == 200
    assert [item["account_code"] for item in response.json()] == ["404", "200"]


def test_list_accounts(client):
    response = client.get("/accounts/bc")
    assert response.status_code == 200
    body = response.json()
    assert body["jurisdiction"] == "BC"
    assert body["name"] == "British Columbia"
    codes = [account["code"] for account in body["accounts"]]
    assert codes == sorted(codes)
    assert "877" in codes


def test_list_accounts_unknown_jurisdiction(client):
    assert client.get("/accounts/QC").status_code == 404


def test_learn(client):
    response = client.post("/learn", json={"description": "VALLEY VARIETY 0042", "account_code": "455"})
    assert response.status_code == 200
    assert response.json()["pattern"] == "valley variety"

    categorized = client.post("/categorize", json={"description": "VALLEY VARIETY 0077", "amount": "-8"})
    assert categorized.json()["source"] == "learned"


def test_learn_rejects_unknown_code(client):
    response = client.post("/learn", json={"description": "VALLEY VARIETY", "account_code": "999"})
    assert response.status_code == 400


def test_clear_cache(client):
    client.post("/categorize", json={"description": "SEND E-TFR FEE", "amount": "-4.99"})
    response = client.delete("/cache")
    assert response.status_code == 200
    assert response.json()["cleared"] >= 1


def test_stats(client):
    response = client.get("/stats")
    assert response.status_code == 200
    assert response.json()["remote"] == "ready"


def test_keyword_rule_lifecycle(client):
    created = client.post("/rules/keywords", json={"keyword": "Brock White", "account_code": "310"})
    assert created.status_code == 201
    rule = created.json()
    assert rule["keyword"] == "brock white"

    updated = client.patch(f"/rules/keywords/{rule['id']}", json={"confidence": 75})
    assert updated.status_code == 200
    assert updated.json()["confidence"] == 75

    listing = client.get("/rules").json()
    assert [item["id"] for item in listing["keywords"]] == [rule["id"]]

    assert client.delete(f"/rules/{rule['id']}").status_code == 204
    assert client.delete(f"/rules/{rule['id']}").status_code == 404


def test_multi_rule_lifecycle(client):
    created = client.post("/rules/multi", json={"keywords": ["Home", "Depot"], "account_code": "310"})
    assert created.status_code == 201
    rule = created.json()
    assert rule["keywords"] == ["depot", "home"]

    updated = client.patch(f"/rules/multi/{rule['id']}", json={"account_code": "455"})
    assert updated.json()["account_code"] == "455"

    assert client.patch("/rules/multi/missing", json={"confidence": 10}).status_code == 404
    assert client.patch("/rules/keywords/missing", json={"confidence": 10}).status_code == 404


def test_rules_export_and_import(client):
    client.post("/rules/keywords", json={"keyword": "coffee", "account_code": "420"})
    exported = client.get("/rules/export").json()
    assert exported["version"] == 1

    exported["keywords"][0]["confidence"] = 60
    report = client.post("/rules/import", json=exported)
    assert report.status_code == 200
    assert report.json()["updated"] == 1

    rejected = client.post("/rules/import", json={"version": 9})
    assert rejected.status_code == 400


def test_missing_engine_returns_500():
    bare = TestClient(create_app())
    response = bare.get("/stats")
    assert response.status_code == 500


def test_ask(client, remote):
    remote.ask.return_value = "Printer ink goes to 453."
    response = client.post("/ask", json={"question": "Where does printer ink go?"})
    assert response.status_code == 200
    assert response.json() == {"answer": "Printer ink goes to 453."}


def test_ask_provider_unavailable(client, remote):
    remote.is_ready = False
    assert client.post("/ask", json={"question": "Where does printer ink go?"}).status_code == 503
    assert client.post("/ask", json={"question": "  "}).status_code == 422
