from datetime import date as CalendarDate
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from ledger_categorizer.domain.text import normalize_text

Flow = Literal["inflow", "outflow"]
NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Amount = Annotated[Decimal, Field(allow_inf_nan=False)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


class AccountType(str, Enum):
    REVENUE = "Revenue"
    DIRECT_COST = "Direct Cost"
    EXPENSE = "Expense"
    ASSET_LIABILITY = "Asset/Liability"
    TAX = "Tax"
    TRANSFER = "Transfer"
    EQUITY = "Equity"


class ResultSource(str, Enum):
    EXACT_RULE = "exact-rule"
    KEYWORD_RULE = "keyword-rule"
    LEARNED = "learned"
    FUZZY = "fuzzy"
    REMOTE = "remote"
    FALLBACK = "fallback"
    EXACT_RULE_CORRECTED = "exact-rule-corrected"
    KEYWORD_RULE_CORRECTED = "keyword-rule-corrected"
    LEARNED_CORRECTED = "learned-corrected"
    FUZZY_CORRECTED = "fuzzy-corrected"
    REMOTE_CORRECTED = "remote-corrected"
    FALLBACK_CORRECTED = "fallback-corrected"

    @property
    def is_corrected(self) -> bool:
        return self.value.endswith("-corrected")

    def corrected(self) -> "ResultSource":
        if self.is_corrected:
            return self
        return ResultSource(f"{self.value}-corrected")


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    description: NonBlankStr
    original_description: str | None = None
    amount: Amount
    date: CalendarDate | None = None
    account_code: str | None = None

    @property
    def is_outflow(self) -> bool:
        return self.amount < 0

    @property
    def is_inflow(self) -> bool:
        return self.amount > 0

    @property
    def flow(self) -> Flow:
        return "inflow" if self.amount > 0 else "outflow"


class Account(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: NonBlankStr
    name: str
    type: AccountType
    tax_code: str = ""
    description: str = ""


class CategorizationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_code: str
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    source: ResultSource
    suggested_keyword: str | None = None
    merchant: str | None = None
    flow: Flow | None = None


class KeywordRule(BaseModel):
    id: str = Field(default_factory=new_id)
    keyword: NonBlankStr
    account_code: NonBlankStr
    confidence: int = Field(default=90, ge=0, le=100)
    note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sequence: int = 0

    @field_validator("keyword")
    @classmethod
    def _normalize_keyword(cls, value: str) -> str:
        return normalize_text(value)


class MultiKeywordRule(BaseModel):
    id: str = Field(default_factory=new_id)
    keywords: frozenset[str] = Field(min_length=1)
    account_code: NonBlankStr
    confidence: int = Field(default=90, ge=0, le=100)
    note: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sequence: int = 0

    @field_validator("keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: object) -> object:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple, set, frozenset)):
            return value
        keywords = frozenset(normalize_text(str(item)) for item in value)
        if "" in keywords:
            raise ValueError("keywords must not be blank")
        return keywords

    @field_serializer("keywords")
    def _serialize_keywords(self, keywords: frozenset[str]) -> list[str]:
        return sorted(keywords)

    @property
    def specificity(self) -> int:
        return sum(len(keyword) for keyword in self.keywords)


class LearnedCorrection(BaseModel):
    id: str = Field(default_factory=new_id)
    pattern: NonBlankStr
    account_code: NonBlankStr
    confidence: int = Field(default=90, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)
    last_used: datetime | None = None
    usage_count: int = Field(default=0, ge=0)
    sequence: int = 0


class RuleSnapshot(BaseModel):
    version: int
    exported_at: datetime
    keywords: list[KeywordRule] = []
    rules: list[MultiKeywordRule] = []
    corrections: list[LearnedCorrection] = []


class ImportReport(BaseModel):
    added: int = 0
    updated: int = 0
    rejected: int = 0
    errors: list[str] = []


class ClassificationRequest(BaseModel):
    """Inbound request; accepts snake_case or camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None = None
    description: NonBlankStr
    amount: Amount
    date: CalendarDate | None = None
    jurisdiction: str | None = None
    force_remote: bool = False
    bypass_cache: bool = False
    local_only: bool = False
    user_id: str | None = None

    def to_transaction(self) -> Transaction:
        return Transaction(
            id=self.id,
            description=self.description,
            original_description=self.description,
            amount=self.amount,
            date=self.date,
        )
