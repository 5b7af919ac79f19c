"""Portfolio advice over OpenAI chat completions."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional

from . import GatewayError, UpstreamError
from .config import get_context_budget
from .core import ContextManager, logger

DEFAULT_QUESTION = "Explain the recommended strategies in simple terms."

SYSTEM_PROMPT = """You are an expert crypto portfolio advisor specializing in DeFi strategies and blockchain analytics.

CONTEXT:
1. Portfolio Data: {portfolio}
2. AURA Suggested Strategies: {strategies}

GUIDELINES:
- Analyze the portfolio composition and risk profile first
- Explain strategies in simple terms while keeping technical accuracy
- Highlight risks and rewards for each recommendation
- Consider gas fees and network conditions
- Give actionable steps and approximate APY where available
- Mention relevant security considerations

FORMAT YOUR RESPONSES AS:
1. Portfolio Overview
2. Risk Analysis
3. Recommended Strategies
4. Action Steps
5. Additional Considerations

Be conservative with user funds and prioritize security and risk management."""


class PortfolioAdvisor:
    def __init__(
        self,
        aura_client: Any,
        llm_adapter: Any,
        *,
        context_factory: Optional[Callable[[], ContextManager]] = None,
    ):
        self.aura = aura_client
        self.llm = llm_adapter
        self.context_factory = context_factory or (lambda: ContextManager(**get_context_budget()))
        self.logger = logger.bind(component="PortfolioAdvisor")

    async def chat(self, address: str, message: Optional[str] = None) -> Dict[str, Any]:
        aura_data = await self.aura.get_strategies(address)
        if self.llm is None:
            raise UpstreamError("OpenAI is not configured: set OPENAI_API_KEY")

        ctx = self.context_factory()
        ctx.register_adapter("openai", self.llm)
        ctx.update_state("address", address)
        ctx.set_system_prompt(
            SYSTEM_PROMPT.format(
                portfolio=json.dumps(aura_data.get("portfolio")),
                strategies=json.dumps(aura_data.get("strategies")),
            )
        )
        try:
            answer = await ctx.generate_response(message or DEFAULT_QUESTION)
        except GatewayError:
            raise
        except Exception as exc:
            self.logger.error("Advisor completion failed", address=address, error=str(exc))
            raise UpstreamError(f"OpenAI request failed: {exc}") from exc
        return {"aura": aura_data, "chatAnswer": answer or "(No response)"}
