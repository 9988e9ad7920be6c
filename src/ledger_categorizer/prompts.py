"""Prompt construction and reply parsing for the remote classifier.

The provider is asked for exactly four labelled lines::

    ACCOUNT_CODE: 420
    CONFIDENCE: 85
    REASONING: Coffee shop purchase
    KEYWORD: tim hortons

Anything else is treated as a failed call.
"""

import json
import os
import re
from dataclasses import dataclass, field

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.errors import RemoteUnavailable
from ledger_categorizer.models import Transaction

BUSINESS_RULES_PATH = os.path.join(os.path.dirname(__file__), "data", "business_rules.json")

SYSTEM_INSTRUCTIONS = (
    "You are a bookkeeping assistant that assigns bank transactions to a chart of accounts. "
    "Only use account codes from the list you are given and answer in the requested format."
)

REPLY_LABELS = ("ACCOUNT_CODE", "CONFIDENCE", "REASONING", "KEYWORD")

_LINE_PATTERN = re.compile(r"^\s*(ACCOUNT_CODE|CONFIDENCE|REASONING|KEYWORD)\s*:\s*(.*?)\s*$", re.IGNORECASE)
_CODE_PATTERN = re.compile(r"^\[?\s*(\d{2,})\b")
_CONFIDENCE_PATTERN = re.compile(r"^\[?\s*(\d{1,3})(?:\.\d+)?\s*%?")
_EMPTY_KEYWORDS = {"", "none", "n/a", "na", "null", "-"}


@dataclass(frozen=True)
class BusinessRules:
    context: str = ""
    merchant_consistency: tuple[str, ...] = ()
    decision_tree: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParsedReply:
    account_code: str
    confidence: int
    reasoning: str
    keyword: str | None = None
    raw: str = field(default="", repr=False)


def load_business_rules(path: str = BUSINESS_RULES_PATH) -> BusinessRules:
    with open(path, encoding="utf-8") as handle:
        payload = json.load(handle)
    return BusinessRules(
        context=payload.get("context", ""),
        merchant_consistency=tuple(payload.get("merchant_consistency", ())),
        decision_tree=tuple(payload.get("decision_tree", ())),
        categories=tuple(payload.get("categories", ())),
    )


def _bullets(lines: tuple[str, ...]) -> str:
    return "\n".join(f"- {line}" for line in lines)


def build_categorization_prompt(
    transaction: Transaction,
    accounts: AccountSet,
    rules: BusinessRules | None = None,
) -> str:
    rules = rules or BusinessRules()
    amount = transaction.amount
    if amount < 0:
        flow_label = "OUTFLOW (money leaving the account: an expense, purchase or payment)"
    elif amount > 0:
        flow_label = "INFLOW (money received: revenue, refund or transfer in)"
    else:
        flow_label = "ZERO AMOUNT"
    account_lines = "\n".join(
        f"{account.code} - {account.name} ({account.type.value})" for account in accounts.all()
    )

    sections = [
        "Categorize this bank transaction.",
        "",
        "TRANSACTION DETAILS:",
        f"Description: {transaction.description}",
        f"Amount: {amount:+.2f}",
        f"Direction: {flow_label}",
    ]
    if transaction.date:
        sections.append(f"Date: {transaction.date.isoformat()}")
    sections += [
        f"Jurisdiction: {accounts.name} ({accounts.jurisdiction})",
        "",
        "BUSINESS CONTEXT:",
        rules.context or "General small business.",
    ]
    if rules.merchant_consistency:
        sections += ["", "MERCHANT CONSISTENCY (always use these codes):", _bullets(rules.merchant_consistency)]
    if rules.decision_tree:
        sections += ["", "MATERIALS DECISION TREE:", _bullets(rules.decision_tree)]
    if rules.categories:
        sections += ["", "OTHER CATEGORIES:", _bullets(rules.categories)]
    sections += [
        "",
        "SIGN RULES:",
        "- Outflows are never revenue accounts.",
        "- Inflows are never expense or cost-of-sales accounts.",
        "",
        "AVAILABLE ACCOUNTS:",
        account_lines,
        "",
        "Respond with exactly these four lines:",
        "ACCOUNT_CODE: [code from the list above]",
        "CONFIDENCE: [0-100]",
        "REASONING: [one sentence]",
        "KEYWORD: [short keyword that identifies similar transactions, or NONE]",
    ]
    return "\n".join(sections)


def parse_reply(text: str) -> ParsedReply:
    fields: dict[str, str] = {}
    for line in text.splitlines():
        match = _LINE_PATTERN.match(line)
        if match:
            fields.setdefault(match.group(1).upper(), match.group(2))

    missing = [label for label in REPLY_LABELS if label not in fields]
    if missing:
        raise RemoteUnavailable("malformed reply", detail=f"missing {', '.join(missing)}")

    code_match = _CODE_PATTERN.match(fields["ACCOUNT_CODE"])
    if not code_match:
        raise RemoteUnavailable("malformed reply", detail=f"unrecognised account code {fields['ACCOUNT_CODE']!r}")

    confidence_match = _CONFIDENCE_PATTERN.match(fields["CONFIDENCE"])
    if not confidence_match:
        raise RemoteUnavailable("malformed reply", detail=f"non-numeric confidence {fields['CONFIDENCE']!r}")

    keyword = fields["KEYWORD"].strip("[]\"' ").lower()
    return ParsedReply(
        account_code=code_match.group(1),
        confidence=max(0, min(100, int(confidence_match.group(1)))),
        reasoning=fields["REASONING"] or "No reasoning given.",
        keyword=None if keyword in _EMPTY_KEYWORDS else keyword,
        raw=text,
    )
