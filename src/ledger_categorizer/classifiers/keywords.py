from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.models import CategorizationResult, KeywordRule, ResultSource, Transaction
from ledger_categorizer.rules.store import RuleStore

from .base import Classifier


class KeywordClassifier(Classifier):
    source = ResultSource.KEYWORD_RULE

    def __init__(self, store: RuleStore) -> None:
        self.store = store

    def classify(self, transaction: Transaction, accounts: AccountSet) -> CategorizationResult | None:
        match = self.store.find_match(transaction.description)
        if match is None:
            return None

        if isinstance(match.rule, KeywordRule):
            reasoning = f"Matched custom keyword '{match.rule.keyword}'."
        else:
            reasoning = f"Matched custom rule requiring {', '.join(repr(k) for k in match.matched)}."
        return self.build_result(
            transaction,
            match.account_code,
            match.confidence,
            reasoning,
            suggested_keyword=max(match.matched, key=len),
        )
