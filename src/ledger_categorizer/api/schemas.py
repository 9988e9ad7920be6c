from pydantic import BaseModel, Field

from ledger_categorizer.models import (
    Account,
    ClassificationRequest,
    KeywordRule,
    LearnedCorrection,
    MultiKeywordRule,
    NonBlankStr,
)


class BatchRequest(BaseModel):
    requests: list[ClassificationRequest] = Field(max_length=1000)


class LearnRequest(BaseModel):
    description: NonBlankStr
    account_code: NonBlankStr
    jurisdiction: str | None = None
    confidence: int = Field(default=90, ge=0, le=100)


class AccountList(BaseModel):
    jurisdiction: str
    name: str
    accounts: list[Account]


class KeywordCreate(BaseModel):
    keyword: NonBlankStr
    account_code: NonBlankStr
    confidence: int = Field(default=90, ge=0, le=100)
    note: str | None = None


class KeywordUpdate(BaseModel):
    keyword: NonBlankStr | None = None
    account_code: NonBlankStr | None = None
    confidence: int | None = Field(default=None, ge=0, le=100)
    note: str | None = None


class MultiRuleCreate(BaseModel):
    keywords: list[NonBlankStr] = Field(min_length=1)
    account_code: NonBlankStr
    confidence: int = Field(default=90, ge=0, le=100)
    note: str | None = None


class MultiRuleUpdate(BaseModel):
    keywords: list[NonBlankStr] | None = Field(default=None, min_length=1)
    account_code: NonBlankStr | None = None
    confidence: int | None = Field(default=None, ge=0, le=100)
    note: str | None = None


class RuleListing(BaseModel):
    keywords: list[KeywordRule]
    rules: list[MultiKeywordRule]
    corrections: list[LearnedCorrection]


class CacheCleared(BaseModel):
    cleared: int


class AskRequest(BaseModel):
    question: NonBlankStr = Field(max_length=2000)


class AskResponse(BaseModel):
    answer: str
