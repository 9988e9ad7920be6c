import re
from dataclasses import dataclass
from enum import Enum

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.errors import InvalidAccountCode, SignMismatch
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import AccountType, CategorizationResult, Transaction

logger = get_logger(__name__)

DEFAULT_PENALTY = 20
DEFAULT_MIN_CONFIDENCE = 10

# Wording used to pick a replacement for revenue codes on outflows.
FEE_WORDS = re.compile(r"\b(fees?|service\s+charge|charges?|nsf|overdraft)\b", re.IGNORECASE)
FUEL_WORDS = re.compile(
    r"\b(gas|fuel|petro|esso|shell|husky|chevron|sunoco|ultramar|co-?op\s+gas|fas\s+gas)\b",
    re.IGNORECASE,
)

_EXPENSE_TYPES = (AccountType.EXPENSE, AccountType.DIRECT_COST)


class ValidationState(str, Enum):
    VALID = "valid"
    CORRECTED = "corrected"


@dataclass(frozen=True)
class ValidationOutcome:
    state: ValidationState
    result: CategorizationResult
    mismatch: SignMismatch | None = None

    @property
    def corrected(self) -> bool:
        return self.state is ValidationState.CORRECTED


class Validator:
    """Keep results consistent with the amount sign and the chart of accounts."""

    def __init__(self, penalty: int = DEFAULT_PENALTY, min_confidence: int = DEFAULT_MIN_CONFIDENCE) -> None:
        self.penalty = penalty
        self.min_confidence = min_confidence

    def validate(
        self,
        result: CategorizationResult,
        transaction: Transaction,
        accounts: AccountSet,
    ) -> ValidationOutcome:
        account = accounts.get(result.account_code)
        if account is None:
            raise InvalidAccountCode(result.account_code, accounts.jurisdiction)

        if account.type is AccountType.TRANSFER or transaction.amount == 0:
            return ValidationOutcome(ValidationState.VALID, result)

        if transaction.is_outflow and account.type is AccountType.REVENUE:
            replacement = self.expense_replacement(transaction, accounts)
            note = f"Outflow cannot use revenue account {account.code}; moved to {replacement}."
        elif transaction.is_inflow and account.type in _EXPENSE_TYPES:
            replacement = accounts.revenue_code
            note = f"Inflow cannot use {account.type.value.lower()} account {account.code}; moved to {replacement}."
        else:
            return ValidationOutcome(ValidationState.VALID, result)

        mismatch = SignMismatch(account.code, account.type.value, transaction.amount, replacement)
        logger.warning("[VALIDATOR] %s ('%s')", mismatch, transaction.description[:50])
        corrected = result.model_copy(
            update={
                "account_code": replacement,
                "confidence": max(min(self.min_confidence, result.confidence), result.confidence - self.penalty),
                "source": result.source.corrected(),
                "reasoning": f"{result.reasoning} [Auto-corrected: {note}]",
                "flow": transaction.flow,
            }
        )
        return ValidationOutcome(ValidationState.CORRECTED, corrected, mismatch)

    @staticmethod
    def expense_replacement(transaction: Transaction, accounts: AccountSet) -> str:
        description = transaction.description
        if FEE_WORDS.search(description):
            return accounts.bank_fee_code
        if FUEL_WORDS.search(description):
            return accounts.vehicle_code
        return accounts.expense_code
