from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from ledger_categorizer.api.dependencies import get_engine
from ledger_categorizer.api.schemas import (
    AccountList,
    AskRequest,
    AskResponse,
    BatchRequest,
    CacheCleared,
    LearnRequest,
)
from ledger_categorizer.errors import InvalidAccountCode, RemoteUnavailable, UnknownJurisdiction
from ledger_categorizer.models import CategorizationResult, ClassificationRequest, LearnedCorrection
from ledger_categorizer.services.categorization import CategorizationEngine

router = APIRouter()

EngineDep = Annotated[CategorizationEngine, Depends(get_engine)]


@router.post("/categorize", response_model=CategorizationResult)
async def categorize_transaction(req: ClassificationRequest, engine: EngineDep) -> CategorizationResult:
    return await engine.categorize(req)


@router.post("/categorize/batch", response_model=list[CategorizationResult])
async def categorize_batch(req: BatchRequest, engine: EngineDep) -> list[CategorizationResult]:
    return await engine.categorize_batch(req.requests)


@router.get("/accounts/{jurisdiction}", response_model=AccountList)
async def list_accounts(jurisdiction: str, engine: EngineDep) -> AccountList:
    try:
        accounts = engine.registry.load(jurisdiction)
    except UnknownJurisdiction as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return AccountList(jurisdiction=accounts.jurisdiction, name=accounts.name, accounts=accounts.all())


@router.post("/learn", response_model=LearnedCorrection)
async def learn(req: LearnRequest, engine: EngineDep) -> LearnedCorrection:
    try:
        return engine.record_correction(req.description, req.account_code, req.jurisdiction, req.confidence)
    except InvalidAccountCode as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.delete("/cache", response_model=CacheCleared)
async def clear_cache(engine: EngineDep) -> CacheCleared:
    return CacheCleared(cleared=engine.invalidate_caches())


@router.get("/stats")
async def stats(engine: EngineDep) -> dict[str, Any]:
    return engine.stats()


@router.post("/ask", response_model=AskResponse)
async def ask(req: AskRequest, engine: EngineDep) -> AskResponse:
    try:
        answer = await engine.ask(req.question)
    except RemoteUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AskResponse(answer=answer)
