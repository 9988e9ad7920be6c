from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ledger_categorizer.api.routes import categorize, rules
from ledger_categorizer.core import settings
from ledger_categorizer.core.configuration import load_engine_config
from ledger_categorizer.logger import get_logger, setup_logging
from ledger_categorizer.services.categorization import CategorizationEngine

logger = get_logger(__name__)


def create_app(engine: CategorizationEngine | None = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing engine...")
        settings.log_environment()

        active = engine
        if active is None:
            active = CategorizationEngine.from_config(load_engine_config())
        await active.initialize()
        app.state.engine = active

        logger.info("Engine initialized.")
        yield
        logger.info("Engine shutting down.")
        await active.aclose()

    app = FastAPI(title="Ledger Categorizer", lifespan=lifespan)
    app.include_router(categorize.router)
    app.include_router(rules.router)
    return app


app = create_app()
