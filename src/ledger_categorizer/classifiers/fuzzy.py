import json
import os
from dataclasses import dataclass

from rapidfuzz import fuzz, process, utils

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import CategorizationResult, ResultSource, Transaction

from .base import Classifier

logger = get_logger(__name__)

MERCHANTS_PATH = os.path.join(os.path.dirname(__file__), os.pardir, "data", "merchants.json")


@dataclass(frozen=True)
class Merchant:
    name: str
    account: str
    confidence: int


def load_merchants(path: str = MERCHANTS_PATH) -> list[Merchant]:
    with open(path, encoding="utf-8") as handle:
        payload = json.load(handle)
    return [
        Merchant(name=item["name"], account=item["account"], confidence=int(item.get("confidence", 90)))
        for item in payload["merchants"]
    ]


class FuzzyMerchantMatcher(Classifier):
    """Match descriptions against known merchant names with rapidfuzz.

    ``WRatio`` tolerates store numbers and city suffixes around the name.
    The merchant's own confidence is scaled by the similarity score.
    """

    source = ResultSource.FUZZY

    def __init__(self, data_path: str = MERCHANTS_PATH, threshold: float = 85.0) -> None:
        self.data_path = data_path
        self.threshold = threshold
        self.merchants = load_merchants(data_path)
        self._choices = [merchant.name for merchant in self.merchants]

    def classify(self, transaction: Transaction, accounts: AccountSet) -> CategorizationResult | None:
        if not self._choices:
            return None

        result = process.extractOne(
            transaction.description,
            self._choices,
            scorer=fuzz.WRatio,
            processor=utils.default_process,
            score_cutoff=self.threshold,
        )
        if result is None:
            return None

        _, score, index = result
        merchant = self.merchants[index]
        if not accounts.exists(merchant.account):
            logger.debug("Merchant %s maps to %s, absent from %s", merchant.name, merchant.account, accounts.jurisdiction)
            return None
        return self.build_result(
            transaction,
            merchant.account,
            round(merchant.confidence * score / 100),
            f"Description resembles known merchant '{merchant.name}' ({score:.0f}% similar).",
            merchant=merchant.name,
        )
