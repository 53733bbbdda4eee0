"""OpenAI provider (chat completions, text and vision)."""

from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from ..config import get_settings
from .base import BaseProvider, GenerateRequest, ProviderError, ProviderOutput, Usage

settings = get_settings()


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_concurrent: Optional[int] = None,
        default_model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(
            max_concurrent=max_concurrent or settings.OPENAI_MAX_CONCURRENT,
            timeout_s=timeout_s or settings.OPENAI_TIMEOUT_S,
        )
        self.api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        self.default_model = default_model or settings.OPENAI_DEFAULT_MODEL
        self._client = client

    def is_available(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout_s)
        return self._client

    def _messages(self, request: GenerateRequest) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if request.options.system_instruction:
            messages.append({"role": "system", "content": request.options.system_instruction})

        if request.image:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": request.prompt},
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:{request.image_mime_type};base64,{request.image}",
                            "detail": "high",
                        },
                    },
                ],
            })
        else:
            messages.append({"role": "user", "content": request.prompt})
        return messages

    async def _call(self, request: GenerateRequest, model: str) -> ProviderOutput:
        kwargs: Dict[str, Any] = {"model": model, "messages": self._messages(request)}
        if request.options.temperature is not None:
            kwargs["temperature"] = request.options.temperature
        if request.options.max_tokens:
            kwargs["max_tokens"] = request.options.max_tokens
        if request.options.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except Exception as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        text = response.choices[0].message.content if response.choices else None
        usage = response.usage
        return ProviderOutput(
            text=text or "",
            model=response.model or model,
            usage=Usage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
        )
