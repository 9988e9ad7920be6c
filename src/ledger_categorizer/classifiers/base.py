from abc import ABC, abstractmethod

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.domain.text import extract_merchant
from ledger_categorizer.models import CategorizationResult, ResultSource, Transaction


class Classifier(ABC):
    source: ResultSource

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def classify(self, transaction: Transaction, accounts: AccountSet) -> CategorizationResult | None:
        """Attempt to categorize the transaction."""
        pass

    def build_result(
        self,
        transaction: Transaction,
        account_code: str,
        confidence: int,
        reasoning: str,
        *,
        suggested_keyword: str | None = None,
        merchant: str | None = None,
    ) -> CategorizationResult:
        return CategorizationResult(
            account_code=account_code,
            confidence=max(0, min(100, int(confidence))),
            reasoning=reasoning,
            source=self.source,
            suggested_keyword=suggested_keyword,
            merchant=merchant or extract_merchant(transaction.description),
            flow=transaction.flow,
        )
