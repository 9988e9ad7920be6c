import json
import os
import re
from dataclasses import dataclass

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import CategorizationResult, ResultSource, Transaction

from .base import Classifier

logger = get_logger(__name__)

SYSTEM_RULES_PATH = os.path.join(os.path.dirname(__file__), os.pardir, "data", "system_rules.json")

# E-transfer wording that is not a fee always lands on the transfer account.
ETRANSFER_PATTERN = re.compile(
    r"\b(?:e[\-\s]*transfer|e[\-\s]*tfr|etfr)(?!\s*fee)",
    re.IGNORECASE,
)
ETRANSFER_CONFIDENCE = 98


@dataclass(frozen=True)
class SystemPattern:
    id: str
    regex: re.Pattern[str]
    account: str
    merchant: str
    confidence: int
    priority: int
    group: str


def load_system_patterns(path: str = SYSTEM_RULES_PATH) -> list[SystemPattern]:
    with open(path, encoding="utf-8") as handle:
        payload = json.load(handle)
    patterns = [
        SystemPattern(
            id=item["id"],
            regex=re.compile(item["pattern"], re.IGNORECASE),
            account=item["account"],
            merchant=item.get("merchant", item["id"]),
            confidence=int(item.get("confidence", 95)),
            priority=int(item.get("priority", 0)),
            group=item.get("group", "general"),
        )
        for item in payload["patterns"]
    ]
    # Stable sort keeps file order within a priority.
    patterns.sort(key=lambda pattern: pattern.priority, reverse=True)
    return patterns


class ExactPatternClassifier(Classifier):
    source = ResultSource.EXACT_RULE

    def __init__(self, data_path: str = SYSTEM_RULES_PATH) -> None:
        self.data_path = data_path
        self.patterns = load_system_patterns(data_path)
        logger.debug("Loaded %d system patterns from %s", len(self.patterns), data_path)

    def classify(self, transaction: Transaction, accounts: AccountSet) -> CategorizationResult | None:
        description = transaction.description
        for pattern in self.patterns:
            if not pattern.regex.search(description):
                continue

            if pattern.group != "fee" and ETRANSFER_PATTERN.search(description):
                return self.build_result(
                    transaction,
                    accounts.transfer_code,
                    ETRANSFER_CONFIDENCE,
                    "E-transfer between accounts; recorded as a tracking transfer.",
                    merchant="E-Transfer",
                )

            code = accounts.resolve_code(pattern.account)
            if not accounts.exists(code):
                logger.debug("Pattern %s maps to %s, absent from %s", pattern.id, code, accounts.jurisdiction)
                continue
            return self.build_result(
                transaction,
                code,
                pattern.confidence,
                f"Matched {pattern.group} pattern '{pattern.merchant}'.",
                merchant=pattern.merchant,
            )
        return None

    def stats(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for pattern in self.patterns:
            counts[pattern.group] = counts.get(pattern.group, 0) + 1
        return counts
