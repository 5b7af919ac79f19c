from typing import Optional

from openai import AsyncOpenAI

from ..config import get_openai_model
from ..core import ContextSchema


class OpenAIAdapter:
    """Adapter for OpenAI chat completions (async)."""

    def __init__(self, api_key: str, model: Optional[str] = None, client: AsyncOpenAI | None = None):
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model or get_openai_model()

    async def call(self, context: ContextSchema) -> str:
        messages = [{"role": "system", "content": context.system_prompt}] + context.history
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=context.completion_max_tokens,
            temperature=0.7,
        )
        if not response.choices:
            return "(No response)"
        return response.choices[0].message.content or "(No response)"
