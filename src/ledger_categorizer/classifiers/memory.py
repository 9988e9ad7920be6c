from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.models import CategorizationResult, ResultSource, Transaction
from ledger_categorizer.rules.store import RuleStore

from .base import Classifier

# Partial matches lose a little confidence against exact ones.
PARTIAL_MATCH_FACTOR = 0.95


class LearnedCorrectionMatcher(Classifier):
    source = ResultSource.LEARNED

    def __init__(self, store: RuleStore) -> None:
        self.store = store

    def classify(self, transaction: Transaction, accounts: AccountSet) -> CategorizationResult | None:
        found = self.store.find_correction(transaction.description)
        if found is None:
            return None
        correction, exact = found

        if exact:
            return self.build_result(
                transaction,
                correction.account_code,
                correction.confidence,
                f"Matched learned correction '{correction.pattern}'.",
            )
        return self.build_result(
            transaction,
            correction.account_code,
            round(correction.confidence * PARTIAL_MATCH_FACTOR),
            f"Description contains learned pattern '{correction.pattern}'.",
        )
