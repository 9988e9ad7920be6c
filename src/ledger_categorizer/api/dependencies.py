from fastapi import HTTPException, Request

from ledger_categorizer.rules.store import RuleStore
from ledger_categorizer.services.categorization import CategorizationEngine


def get_engine(request: Request) -> CategorizationEngine:
    engine = getattr(request.app.state, "engine", None)
    if not engine:
        raise HTTPException(status_code=500, detail="Engine not initialized")
    return engine


def get_rules(request: Request) -> RuleStore:
    return get_engine(request).rules
