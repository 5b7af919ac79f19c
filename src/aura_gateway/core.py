import logging
import os
from typing import Any, Dict, List

import structlog
import tiktoken
from pydantic import BaseModel, Field, field_validator

from . import ContextOverflowError, GatewayError

# Share of the budget the system prompt may take; the rest is for the chat.
SYSTEM_PROMPT_SHARE = 0.6
TRIM_START = 0.9
TRIM_TARGET = 0.8
STATE_ENTRY_TOKENS = 10


def configure_logging(level: str | None = None) -> None:
    """JSON structlog output on top of stdlib logging."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger("aura_gateway")


class ContextSchema(BaseModel):
    """Advisor conversation: system prompt, history and portfolio state."""

    history: List[Dict[str, str]] = Field(default_factory=list)
    system_prompt: str = ""
    state: Dict[str, Any] = Field(
        default_factory=dict, description="Per-conversation facts such as the wallet address."
    )
    max_tokens: int = Field(default=8192, gt=0, description="Prompt plus history budget.")
    completion_max_tokens: int = Field(default=800, gt=0)

    @field_validator("history")
    def validate_history(cls, v):
        for msg in v:
            if "role" not in msg or "content" not in msg:
                raise ValueError("History messages must have 'role' and 'content'.")
        return v


class ContextManager:
    """Keeps one advisor conversation inside its token budget.

    The oldest turns are dropped once the context passes 90% of the budget,
    until it is back under 80%. If the latest turn alone still does not fit,
    ``ContextOverflowError`` is raised instead of sending a truncated request.
    """

    def __init__(
        self,
        max_tokens: int = 8192,
        completion_max_tokens: int = 800,
        encoding_name: str = "o200k_base",
    ):
        self.schema = ContextSchema(
            max_tokens=max_tokens, completion_max_tokens=completion_max_tokens
        )
        self.encoding = tiktoken.get_encoding(encoding_name)
        self.logger = logger.bind(component="ContextManager")
        self.adapters: Dict[str, Any] = {}

    def register_adapter(self, name: str, adapter: Any) -> None:
        self.adapters[name] = adapter
        self.logger.debug("Adapter registered", name=name)

    def update_state(self, key: str, value: Any) -> None:
        self.schema.state[key] = value

    def set_system_prompt(self, prompt: str) -> None:
        budget = int(self.schema.max_tokens * SYSTEM_PROMPT_SHARE)
        tokens = self.encoding.encode(prompt)
        if len(tokens) > budget:
            # Portfolio dumps can be huge.
            prompt = self.encoding.decode(tokens[:budget])
            self.logger.warning("System prompt truncated", tokens=budget, original=len(tokens))
        self.schema.system_prompt = prompt

    def count_tokens(self) -> int:
        prompt = len(self.encoding.encode(self.schema.system_prompt))
        history = sum(len(self.encoding.encode(m["content"])) for m in self.schema.history)
        return prompt + history + len(self.schema.state) * STATE_ENTRY_TOKENS

    async def append_to_history(self, role: str, content: str) -> None:
        self.schema.history.append({"role": role, "content": content})
        self._trim()

    def _trim(self) -> None:
        budget = self.schema.max_tokens
        count = self.count_tokens()
        if count <= budget * TRIM_START:
            return
        while count > budget * TRIM_TARGET and len(self.schema.history) > 1:
            removed = self.schema.history.pop(0)
            count = self.count_tokens()
            self.logger.debug("Trimmed message", removed=removed["role"])
        if count > budget:
            raise ContextOverflowError(f"Context overflow after trim: {count} tokens")

    async def generate_response(self, user_message: str, adapter_name: str = "openai") -> str:
        """Append the user turn, call the adapter and record its reply."""
        adapter = self.adapters.get(adapter_name)
        if adapter is None:
            raise GatewayError(f"Adapter {adapter_name} not registered")

        await self.append_to_history("user", user_message)
        reply = await adapter.call(self.schema)
        await self.append_to_history("assistant", reply)
        self.logger.info("Response generated", tokens=self.count_tokens())
        return reply
