from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.cache import LRUCache
from ledger_categorizer.classifiers.base import Classifier
from ledger_categorizer.domain.text import normalize_text
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import CategorizationResult, ResultSource, Transaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class CascadeOutcome:
    result: CategorizationResult | None = None
    best_candidate: CategorizationResult | None = None

    @property
    def matched(self) -> bool:
        return self.result is not None


class MatchingCascade:
    """Run local classifiers in priority order and stop at the first
    result that clears its stage floor.

    Results under their floor are remembered; the strongest one is handed
    back as ``best_candidate`` for the caller to fall back on.
    """

    def __init__(
        self,
        classifiers: Sequence[Classifier],
        floors: Mapping[ResultSource, int] | None = None,
        cache: LRUCache[CascadeOutcome] | None = None,
    ) -> None:
        self.classifiers = list(classifiers)
        self.floors = dict(floors or {})
        self.cache = cache
        # Bumped on every rule change; outcomes computed across a bump are not cached.
        self.generation = 0

    @staticmethod
    def cache_key(transaction: Transaction, accounts: AccountSet) -> str:
        sign = "+" if transaction.amount > 0 else "-" if transaction.amount < 0 else "0"
        return f"{accounts.jurisdiction}|{sign}|{normalize_text(transaction.description)}"

    def run(self, transaction: Transaction, accounts: AccountSet) -> CascadeOutcome:
        key = self.cache_key(transaction, accounts)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        generation = self.generation
        outcome = self._run_stages(transaction, accounts)
        if self.cache is not None and generation == self.generation:
            self.cache.set(key, outcome)
        return outcome

    def invalidate(self) -> int:
        self.generation += 1
        return self.cache.clear() if self.cache is not None else 0

    def _run_stages(self, transaction: Transaction, accounts: AccountSet) -> CascadeOutcome:
        best: CategorizationResult | None = None
        for classifier in self.classifiers:
            logger.debug("Trying %s for: '%s'", classifier.name, transaction.description[:50])
            result = classifier.classify(transaction, accounts)
            if result is None:
                continue

            if not accounts.exists(result.account_code):
                logger.warning(
                    "[CASCADE] %s returned %s, unknown in %s; skipping.",
                    classifier.name,
                    result.account_code,
                    accounts.jurisdiction,
                )
                continue

            floor = self.floors.get(result.source, 0)
            if result.confidence >= floor:
                logger.debug(
                    "%s returned %s (confidence: %d)",
                    classifier.name,
                    result.account_code,
                    result.confidence,
                )
                return CascadeOutcome(result=result, best_candidate=best)

            logger.debug(
                "%s returned %s below floor %d (confidence: %d)",
                classifier.name,
                result.account_code,
                floor,
                result.confidence,
            )
            if best is None or result.confidence > best.confidence:
                best = result

        logger.debug("No local match for: '%s'", transaction.description[:50])
        return CascadeOutcome(best_candidate=best)
