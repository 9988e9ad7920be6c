import asyncio
import os
import re
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from ledger_categorizer.accounts import AccountRegistry, AccountSet
from ledger_categorizer.cache import LRUCache, fingerprint
from ledger_categorizer.classifiers.fuzzy import MERCHANTS_PATH, FuzzyMerchantMatcher
from ledger_categorizer.classifiers.keywords import KeywordClassifier
from ledger_categorizer.classifiers.llm import RemoteClassifier
from ledger_categorizer.classifiers.memory import LearnedCorrectionMatcher
from ledger_categorizer.classifiers.patterns import SYSTEM_RULES_PATH, ExactPatternClassifier
from ledger_categorizer.core.configuration import EngineConfig
from ledger_categorizer.domain.text import extract_merchant
from ledger_categorizer.errors import InvalidAccountCode, RemoteUnavailable
from ledger_categorizer.logger import get_logger
from ledger_categorizer.manager import CascadeOutcome, MatchingCascade
from ledger_categorizer.models import (
    CategorizationResult,
    ClassificationRequest,
    LearnedCorrection,
    ResultSource,
    Transaction,
)
from ledger_categorizer.rules.store import DEFAULT_CORRECTION_CONFIDENCE, RuleStore
from ledger_categorizer.validation import Validator

logger = get_logger(__name__)

FALLBACK_CONFIDENCE = 25
ERROR_CONFIDENCE = 0

_TRANSFER_WORDS = re.compile(r"\b(transfer|memo)\b", re.IGNORECASE)


def smart_fallback(
    transaction: Transaction,
    accounts: AccountSet,
    large_expense_threshold: float = 1000.0,
) -> CategorizationResult:
    """Best guess from the amount and a few words when nothing matched."""
    if transaction.is_inflow:
        code, reasoning = accounts.revenue_code, "Unmatched inflow; recorded as revenue."
    elif _TRANSFER_WORDS.search(transaction.description):
        code, reasoning = accounts.transfer_code, "Transfer or memo wording; recorded as a tracking transfer."
    elif abs(transaction.amount) > Decimal(str(large_expense_threshold)):
        code, reasoning = accounts.direct_cost_code, "Large unmatched outflow; recorded as a direct cost."
    else:
        code, reasoning = accounts.expense_code, "Unmatched outflow; recorded as a general expense."
    return CategorizationResult(
        account_code=code,
        confidence=FALLBACK_CONFIDENCE,
        reasoning=reasoning,
        source=ResultSource.FALLBACK,
        merchant=extract_merchant(transaction.description),
        flow=transaction.flow,
    )


class CategorizationEngine:
    def __init__(
        self,
        registry: AccountRegistry,
        rules: RuleStore,
        remote: RemoteClassifier | None = None,
        config: EngineConfig | None = None,
        *,
        system_rules_path: str = SYSTEM_RULES_PATH,
        merchants_path: str = MERCHANTS_PATH,
    ) -> None:
        self.config = config or EngineConfig()
        self.registry = registry
        self.rules = rules
        self.remote = remote
        self.result_cache: LRUCache[CategorizationResult] = LRUCache(
            self.config.result_cache_size,
            self.config.cache_ttl_seconds,
            name="results",
        )
        self.pattern_cache: LRUCache[CascadeOutcome] = LRUCache(
            self.config.pattern_cache_size,
            self.config.cache_ttl_seconds,
            name="patterns",
        )
        self.patterns = ExactPatternClassifier(system_rules_path)
        self.cascade = MatchingCascade(
            [
                self.patterns,
                KeywordClassifier(rules),
                LearnedCorrectionMatcher(rules),
                FuzzyMerchantMatcher(merchants_path, threshold=self.config.fuzzy_threshold),
            ],
            floors=self.config.stage_floors,
            cache=self.pattern_cache,
        )
        self.validator = Validator(self.config.correction_penalty, self.config.min_confidence)
        self._initialized = False
        self._init_lock = asyncio.Lock()
        rules.subscribe(self.invalidate_caches)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "CategorizationEngine":
        registry = AccountRegistry(default_jurisdiction=config.default_jurisdiction)
        rules = RuleStore(os.path.join(config.data_dir, "rules.json"))
        remote = RemoteClassifier(
            api_key=config.openai_api_key,
            model=config.openai_model,
            base_url=config.openai_base_url,
            timeout=config.remote_timeout,
        )
        return cls(registry, rules, remote, config)

    async def initialize(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if not self._initialized:
                await asyncio.to_thread(self.registry.load, self.registry.default_jurisdiction)
                self._initialized = True
                logger.info("[ENGINE] Ready (default jurisdiction %s).", self.registry.default_jurisdiction)

    async def aclose(self) -> None:
        if self.remote is not None:
            await self.remote.aclose()

    @property
    def remote_ready(self) -> bool:
        return self.remote is not None and self.remote.is_ready

    async def categorize(self, request: ClassificationRequest) -> CategorizationResult:
        await self.initialize()
        accounts = self.registry.resolve(request.jurisdiction)
        transaction = request.to_transaction()
        try:
            if request.force_remote:
                return await self._categorize_forced(transaction, accounts)
            return await self._categorize(request, transaction, accounts)
        except Exception:
            logger.exception("[ENGINE] Categorization failed for '%s'", transaction.description[:50])
            fallback = smart_fallback(transaction, accounts, self.config.large_expense_threshold)
            return fallback.model_copy(
                update={
                    "confidence": ERROR_CONFIDENCE,
                    "reasoning": f"Categorization failed; needs review. {fallback.reasoning}",
                }
            )

    async def _categorize(
        self,
        request: ClassificationRequest,
        transaction: Transaction,
        accounts: AccountSet,
    ) -> CategorizationResult:
        key = fingerprint(
            transaction.description,
            transaction.amount,
            transaction.date,
            accounts.jurisdiction,
            request.user_id or self.config.engine_user_id,
        )
        generation = self.cascade.generation
        if not request.bypass_cache:
            cached = self.result_cache.get(key)
            if cached is not None:
                logger.debug("[ENGINE] Cache hit for '%s'", transaction.description[:50])
                return cached

        outcome = await asyncio.to_thread(self.cascade.run, transaction, accounts)
        if outcome.result is not None:
            result = self.validator.validate(outcome.result, transaction, accounts).result
        else:
            result = await self._resolve_unmatched(transaction, accounts, outcome, local_only=request.local_only)

        if generation == self.cascade.generation:
            self.result_cache.set(key, result)
        else:
            logger.debug(
                "[ENGINE] Rules changed while categorizing '%s'; result not cached.",
                transaction.description[:50],
            )
        return result

    async def _resolve_unmatched(
        self,
        transaction: Transaction,
        accounts: AccountSet,
        outcome: CascadeOutcome,
        *,
        local_only: bool,
    ) -> CategorizationResult:
        if not local_only and self.remote_ready:
            try:
                remote_result = await self.remote.classify(transaction, accounts)
            except RemoteUnavailable as exc:
                logger.warning("[REMOTE] %s; using local result.", exc)
            else:
                if remote_result.confidence >= self.config.remote_min_confidence:
                    try:
                        return self.validator.validate(remote_result, transaction, accounts).result
                    except InvalidAccountCode as exc:
                        logger.warning("[VALIDATOR] %s; using local result.", exc)
                else:
                    logger.info(
                        "[REMOTE] Confidence %d below %d for '%s'; using local result.",
                        remote_result.confidence,
                        self.config.remote_min_confidence,
                        transaction.description[:50],
                    )
        return self._local_result(transaction, accounts, outcome)

    def _local_result(
        self,
        transaction: Transaction,
        accounts: AccountSet,
        outcome: CascadeOutcome,
    ) -> CategorizationResult:
        candidate = outcome.result or outcome.best_candidate
        if candidate is None:
            candidate = smart_fallback(transaction, accounts, self.config.large_expense_threshold)
        return self.validator.validate(candidate, transaction, accounts).result

    async def _categorize_forced(self, transaction: Transaction, accounts: AccountSet) -> CategorizationResult:
        try:
            if not self.remote_ready:
                raise RemoteUnavailable("provider not ready")
            remote_result = await self.remote.classify(transaction, accounts)
            return self.validator.validate(remote_result, transaction, accounts).result
        except (RemoteUnavailable, InvalidAccountCode) as exc:
            logger.warning("[ENGINE] Forced remote categorization failed (%s); using local matching.", exc)

        outcome = await asyncio.to_thread(self.cascade.run, transaction, accounts)
        return self._local_result(transaction, accounts, outcome)

    async def categorize_batch(self, requests: Sequence[ClassificationRequest]) -> list[CategorizationResult]:
        semaphore = asyncio.Semaphore(self.config.batch_concurrency)

        async def worker(request: ClassificationRequest) -> CategorizationResult:
            async with semaphore:
                return await self.categorize(request)

        results = await asyncio.gather(*(worker(request) for request in requests))
        return list(results)

    def record_correction(
        self,
        description: str,
        account_code: str,
        jurisdiction: str | None = None,
        confidence: int = DEFAULT_CORRECTION_CONFIDENCE,
    ) -> LearnedCorrection:
        accounts = self.registry.resolve(jurisdiction)
        if not accounts.exists(account_code):
            raise InvalidAccountCode(account_code, accounts.jurisdiction)
        # The store notifies invalidate_caches once the correction is saved.
        return self.rules.learn(description, account_code, confidence)

    async def ask(self, question: str) -> str:
        if not self.remote_ready:
            raise RemoteUnavailable("provider not ready")
        return await self.remote.ask(question)

    def invalidate_caches(self) -> int:
        cleared = self.cascade.invalidate() + self.result_cache.clear()
        logger.debug("[ENGINE] Cleared %d cached entries.", cleared)
        return cleared

    def stats(self) -> dict[str, Any]:
        return {
            "jurisdictions": {
                "supported": list(self.registry.supported),
                "loaded": list(self.registry.loaded()),
                "default": self.registry.default_jurisdiction,
            },
            "caches": {
                "results": self.result_cache.stats(),
                "patterns": self.pattern_cache.stats(),
            },
            "rules": self.rules.stats(),
            "system_patterns": self.patterns.stats(),
            "remote": self.remote.state.value if self.remote is not None else "disabled",
        }
