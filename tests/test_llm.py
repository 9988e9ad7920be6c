import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from ledger_categorizer.classifiers.llm import ProviderState, RemoteClassifier
from ledger_categorizer.errors import RemoteUnavailable
from ledger_categorizer.models import ResultSource, Transaction
from ledger_categorizer.prompts import build_categorization_prompt, load_business_rules, parse_reply

REPLY = "ACCOUNT_CODE: 420\nCONFIDENCE: 88\nREASONING: Coffee shop purchase\nKEYWORD: tim hortons"
REQUEST = httpx.Request("POST", "https://api.openai.com/v1/responses")


@pytest.fixture
def client() -> MagicMock:
    mock = MagicMock()
    mock.responses.create = AsyncMock(return_value=SimpleNamespace(output_text=REPLY))
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def remote(client: MagicMock) -> RemoteClassifier:
    return RemoteClassifier(model="gpt-4o-mini", client=client)


@pytest.fixture
def transaction() -> Transaction:
    return Transaction(description="TIM HORTONS #1234", amount=Decimal("-4.50"))


def test_parse_reply():
    reply = parse_reply(REPLY)
    assert reply.account_code == "420"
    assert reply.confidence == 88
    assert reply.reasoning == "Coffee shop purchase"
    assert reply.keyword == "tim hortons"


def test_parse_reply_is_lenient_about_formatting():
    reply = parse_reply(
        "Sure, here you go.\n"
        "account_code: [420 - Entertainment]\n"
        "Confidence: 150%\n"
        "Reasoning:\n"
        "Keyword: NONE\n"
    )
    assert reply.account_code == "420"
    assert reply.confidence == 100
    assert reply.reasoning == "No reasoning given."
    assert reply.keyword is None


@pytest.mark.parametrize(
    "text",
    [
        "ACCOUNT_CODE: 420\nCONFIDENCE: 88\nREASONING: ok",
        "ACCOUNT_CODE: Entertainment\nCONFIDENCE: 88\nREASONING: ok\nKEYWORD: x",
        "ACCOUNT_CODE: 420\nCONFIDENCE: high\nREASONING: ok\nKEYWORD: x",
        "I think this is entertainment.",
    ],
)
def test_parse_reply_rejects_malformed_text(text):
    with pytest.raises(RemoteUnavailable) as excinfo:
        parse_reply(text)
    assert excinfo.value.reason == "malformed reply"


def test_prompt_contents(accounts, transaction):
    prompt = build_categorization_prompt(transaction, accounts, load_business_rules())
    assert "Description: TIM HORTONS #1234" in prompt
    assert "Amount: -4.50" in prompt
    assert "Direction: OUTFLOW" in prompt
    assert "Jurisdiction: Ontario (ON)" in prompt
    assert "404 - Bank Fees (Expense)" in prompt
    assert "877 - Tracking Transfers (Transfer)" in prompt
    assert prompt.rstrip().endswith("KEYWORD: [short keyword that identifies similar transactions, or NONE]")


def test_prompt_lists_only_the_requested_jurisdiction(registry, transaction):
    prompt = build_categorization_prompt(transaction, registry.load("BC"))
    assert "Jurisdiction: British Columbia (BC)" in prompt
    assert "Ontario" not in prompt


@pytest.mark.anyio
async def test_classify(remote, client, accounts, transaction):
    result = await remote.classify(transaction, accounts)

    assert result.account_code == "420"
    assert result.confidence == 88
    assert result.source is ResultSource.REMOTE
    assert result.suggested_keyword == "tim hortons"
    assert result.flow == "outflow"

    kwargs = client.responses.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.1
    assert "TIM HORTONS #1234" in kwargs["input"]


@pytest.mark.anyio
async def test_timeout_raises_remote_unavailable(remote, client, accounts, transaction):
    async def slow(**kwargs):
        await asyncio.sleep(1)

    client.responses.create.side_effect = slow
    with pytest.raises(RemoteUnavailable) as excinfo:
        await remote.classify(transaction, accounts, timeout=0.01)
    assert excinfo.value.reason == "timeout"
    assert remote.state is ProviderState.READY


@pytest.mark.anyio
async def test_rejected_key_disables_provider(remote, client, accounts, transaction):
    client.responses.create.side_effect = openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=REQUEST), body=None
    )
    with pytest.raises(RemoteUnavailable) as excinfo:
        await remote.classify(transaction, accounts)

    assert excinfo.value.reason == "invalid api key"
    assert remote.state is ProviderState.KEY_INVALID
    assert not remote.is_ready

    client.responses.create.reset_mock(side_effect=True)
    with pytest.raises(RemoteUnavailable):
        await remote.classify(transaction, accounts)
    client.responses.create.assert_not_awaited()


@pytest.mark.anyio
async def test_provider_errors_are_wrapped(remote, client, accounts, transaction):
    client.responses.create.side_effect = openai.APIConnectionError(request=REQUEST)
    with pytest.raises(RemoteUnavailable) as excinfo:
        await remote.classify(transaction, accounts)
    assert excinfo.value.reason == "provider error"


@pytest.mark.anyio
async def test_empty_reply(remote, client, accounts, transaction):
    client.responses.create.return_value = SimpleNamespace(output_text="", output=[])
    with pytest.raises(RemoteUnavailable) as excinfo:
        await remote.classify(transaction, accounts)
    assert excinfo.value.reason == "empty reply"


@pytest.mark.anyio
async def test_ask_uses_chat_timeout(remote, client):
    client.responses.create.return_value = SimpleNamespace(output_text="Office supplies go to 453.")
    answer = await remote.ask("Where do printer refills go?")
    assert answer == "Office supplies go to 453."
    assert client.responses.create.await_args.kwargs["input"] == "Where do printer refills go?"


def test_missing_key_leaves_provider_uninitialized(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    remote = RemoteClassifier(api_key=None)
    assert remote.state is ProviderState.UNINITIALIZED
    assert not remote.is_ready


@pytest.mark.anyio
async def test_refresh_builds_client(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    remote = RemoteClassifier(api_key=None)
    assert remote.refresh(api_key="sk-test") is ProviderState.READY
    assert remote.is_ready
    await remote.aclose()


def test_extract_output_text_from_output_blocks():
    response = SimpleNamespace(
        output_text=None,
        output=[
            SimpleNamespace(
                content=[
                    SimpleNamespace(type="output_text", text="ACCOUNT_CODE: "),
                    SimpleNamespace(type="refusal", text="ignored"),
                ]
            ),
            SimpleNamespace(content=[SimpleNamespace(type="text", text="420")]),
        ],
    )
    assert RemoteClassifier._extract_output_text(response) == "ACCOUNT_CODE: 420"
    assert RemoteClassifier._extract_output_text(SimpleNamespace()) is None
