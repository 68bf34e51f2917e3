from __future__ import annotations

from typing import Any, AsyncGenerator

from adcopy_planner.config import settings
from adcopy_planner.exceptions import UpstreamAPIError
from adcopy_planner.logging_config import get_logger

logger = get_logger(__name__)


class OpenAITextProvider:
    name = "openai"

    def __init__(self, api_key: str, model: str | None = None) -> None:
        import openai  # type: ignore

        self._openai = openai
        self.client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model or settings.openai_text_model

    def _build_messages(self, system: str | None, messages: list[dict[str, str]]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        if system:
            out.append({"role": "system", "content": system})
        for m in messages:
            role = m.get("role", "user")
            out.append({"role": role if role in ("user", "assistant") else "user", "content": m.get("content", "")})
        return out

    def _wrap_error(self, exc: Exception) -> UpstreamAPIError:
        status = getattr(exc, "status_code", None)
        logger.error("OpenAI request failed (status=%s): %s", status, exc)
        return UpstreamAPIError(self.name, str(exc), status_code=status)

    async def complete(
        self,
        system: str | None,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> str:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(system, messages),
                max_tokens=max_tokens,
            )
        except self._openai.APIError as exc:
            raise self._wrap_error(exc) from exc

        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""

    async def stream(
        self,
        system: str | None,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> AsyncGenerator[str, None]:
        """Yield text deltas as they arrive."""
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(system, messages),
                max_tokens=max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except self._openai.APIError as exc:
            raise self._wrap_error(exc) from exc
