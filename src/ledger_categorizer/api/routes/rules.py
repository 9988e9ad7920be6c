from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, HTTPException

from ledger_categorizer.api.dependencies import get_rules
from ledger_categorizer.api.schemas import (
    KeywordCreate,
    KeywordUpdate,
    MultiRuleCreate,
    MultiRuleUpdate,
    RuleListing,
)
from ledger_categorizer.errors import RuleImportError, RuleNotFound
from ledger_categorizer.models import ImportReport, KeywordRule, MultiKeywordRule
from ledger_categorizer.rules.store import RuleStore

router = APIRouter(prefix="/rules")

RulesDep = Annotated[RuleStore, Depends(get_rules)]


@router.get("", response_model=RuleListing)
async def list_rules(rules: RulesDep) -> RuleListing:
    return RuleListing(keywords=rules.keywords(), rules=rules.rules(), corrections=rules.corrections())


@router.post("/keywords", response_model=KeywordRule, status_code=201)
async def add_keyword(req: KeywordCreate, rules: RulesDep) -> KeywordRule:
    return rules.add_keyword(req.keyword, req.account_code, req.confidence, req.note)


@router.post("/multi", response_model=MultiKeywordRule, status_code=201)
async def add_rule(req: MultiRuleCreate, rules: RulesDep) -> MultiKeywordRule:
    return rules.add_rule(req.keywords, req.account_code, req.confidence, req.note)


@router.patch("/keywords/{rule_id}", response_model=KeywordRule)
async def update_keyword(rule_id: str, req: KeywordUpdate, rules: RulesDep) -> KeywordRule:
    try:
        return rules.update_keyword(rule_id, **req.model_dump(exclude_unset=True))
    except RuleNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.patch("/multi/{rule_id}", response_model=MultiKeywordRule)
async def update_rule(rule_id: str, req: MultiRuleUpdate, rules: RulesDep) -> MultiKeywordRule:
    try:
        return rules.update_rule(rule_id, **req.model_dump(exclude_unset=True))
    except RuleNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, rules: RulesDep) -> None:
    try:
        rules.remove(rule_id)
    except RuleNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/export")
async def export_rules(rules: RulesDep) -> dict[str, Any]:
    return rules.export_snapshot()


@router.post("/import", response_model=ImportReport)
async def import_rules(rules: RulesDep, snapshot: Annotated[dict[str, Any], Body()]) -> ImportReport:
    try:
        return rules.import_snapshot(snapshot)
    except RuleImportError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
