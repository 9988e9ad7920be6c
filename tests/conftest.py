from unittest.mock import AsyncMock, MagicMock

import pytest

from ledger_categorizer.accounts import AccountRegistry, AccountSet
from ledger_categorizer.classifiers.llm import ProviderState
from ledger_categorizer.core.configuration import EngineConfig
from ledger_categorizer.models import CategorizationResult, ResultSource
from ledger_categorizer.rules.store import RuleStore
from ledger_categorizer.services.categorization import CategorizationEngine


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def registry() -> AccountRegistry:
    return AccountRegistry(default_jurisdiction="ON")


@pytest.fixture
def accounts(registry: AccountRegistry) -> AccountSet:
    return registry.load("ON")


@pytest.fixture
def rule_store(tmp_path) -> RuleStore:
    return RuleStore(data_path=str(tmp_path / "rules.json"))


@pytest.fixture
def remote() -> MagicMock:
    mock = MagicMock()
    mock.is_ready = True
    mock.state = ProviderState.READY
    mock.classify = AsyncMock()
    mock.aclose = AsyncMock()
    mock.ask = AsyncMock()
    return mock


@pytest.fixture
def engine(registry: AccountRegistry, rule_store: RuleStore, remote: MagicMock) -> CategorizationEngine:
    return CategorizationEngine(registry, rule_store, remote, EngineConfig())


def make_result(
    code: str,
    confidence: int,
    source: ResultSource = ResultSource.REMOTE,
    reasoning: str = "test",
) -> CategorizationResult:
    return CategorizationResult(account_code=code, confidence=confidence, reasoning=reasoning, source=source)


@pytest.fixture
def result_factory():
    return make_result
