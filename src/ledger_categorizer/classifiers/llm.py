import asyncio
import os
from enum import Enum

import openai
from openai import AsyncOpenAI

from ledger_categorizer.accounts import AccountSet
from ledger_categorizer.domain.text import extract_merchant
from ledger_categorizer.errors import RemoteUnavailable
from ledger_categorizer.logger import get_logger
from ledger_categorizer.models import CategorizationResult, ResultSource, Transaction
from ledger_categorizer.prompts import (
    SYSTEM_INSTRUCTIONS,
    BusinessRules,
    build_categorization_prompt,
    load_business_rules,
    parse_reply,
)

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
CATEGORIZATION_TIMEOUT = 30.0
CHAT_TIMEOUT = 10.0

CHAT_INSTRUCTIONS = "You are a helpful bookkeeping assistant. Answer briefly."


class ProviderState(str, Enum):
    READY = "ready"
    KEY_INVALID = "key-invalid"
    UNINITIALIZED = "uninitialized"


class RemoteClassifier:
    source = ResultSource.REMOTE

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        base_url: str | None = None,
        timeout: float = CATEGORIZATION_TIMEOUT,
        *,
        client: AsyncOpenAI | None = None,
        business_rules: BusinessRules | None = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.business_rules = business_rules or load_business_rules()
        self.state = ProviderState.UNINITIALIZED
        self.client: AsyncOpenAI | None = None
        if client is not None:
            self.client = client
            self.state = ProviderState.READY
        else:
            self.refresh(api_key=api_key, base_url=base_url)

    @property
    def is_ready(self) -> bool:
        return self.state is ProviderState.READY and self.client is not None

    def refresh(self, api_key: str | None = None, base_url: str | None = None) -> ProviderState:
        """Rebuild the client from the given or current settings."""
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            self.client = None
            self.state = ProviderState.UNINITIALIZED
            logger.warning("[REMOTE] OPENAI_API_KEY not set. Remote classification disabled.")
            return self.state

        self.client = AsyncOpenAI(
            api_key=key,
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
            max_retries=0,
        )
        self.state = ProviderState.READY
        logger.info("[REMOTE] Client ready: model=%s", self.model)
        return self.state

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()

    async def complete(self, prompt: str, *, instructions: str, timeout: float) -> str:
        if not self.is_ready:
            raise RemoteUnavailable("provider not ready", detail=self.state.value)

        try:
            response = await asyncio.wait_for(
                self.client.responses.create(
                    model=self.model,
                    instructions=instructions,
                    input=prompt,
                    temperature=0.1,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise RemoteUnavailable("timeout", detail=f"no reply within {timeout:.0f}s") from None
        except openai.AuthenticationError as exc:
            self.state = ProviderState.KEY_INVALID
            logger.error("[REMOTE] API key rejected; remote classification disabled until refresh.")
            raise RemoteUnavailable("invalid api key") from exc
        except openai.APIError as exc:
            raise RemoteUnavailable("provider error", detail=str(exc)) from exc

        text = self._extract_output_text(response)
        if not text:
            raise RemoteUnavailable("empty reply")
        return text

    async def classify(
        self,
        transaction: Transaction,
        accounts: AccountSet,
        timeout: float | None = None,
    ) -> CategorizationResult:
        prompt = build_categorization_prompt(transaction, accounts, self.business_rules)
        text = await self.complete(
            prompt,
            instructions=SYSTEM_INSTRUCTIONS,
            timeout=timeout if timeout is not None else self.timeout,
        )
        reply = parse_reply(text)
        logger.debug("[REMOTE] %s -> %s (%d)", transaction.description[:50], reply.account_code, reply.confidence)
        return CategorizationResult(
            account_code=reply.account_code,
            confidence=reply.confidence,
            reasoning=reply.reasoning,
            source=self.source,
            suggested_keyword=reply.keyword,
            merchant=extract_merchant(transaction.description),
            flow=transaction.flow,
        )

    async def ask(self, question: str, timeout: float = CHAT_TIMEOUT) -> str:
        """Free-form question about the books, with the short chat timeout."""
        return await self.complete(question, instructions=CHAT_INSTRUCTIONS, timeout=timeout)

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if output_text:
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            for block in getattr(item, "content", None) or ():
                if getattr(block, "type", None) in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)
        return "".join(parts) or None
