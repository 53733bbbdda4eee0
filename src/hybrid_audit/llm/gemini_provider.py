"""Gemini provider (google-genai), with Google Search and URL Context tools."""

import base64
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types

from ..config import get_settings
from .base import BaseProvider, GenerateRequest, ProviderError, ProviderOutput, Usage

settings = get_settings()


class GeminiProvider(BaseProvider):
    name = "gemini"
    supports_tools = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        max_concurrent: Optional[int] = None,
        default_model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[genai.Client] = None,
    ):
        super().__init__(
            max_concurrent=max_concurrent or settings.GEMINI_MAX_CONCURRENT,
            timeout_s=timeout_s or settings.GEMINI_TIMEOUT_S,
        )
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.default_model = default_model or settings.GEMINI_DEFAULT_MODEL
        self._client = client

    def is_available(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _config(self, request: GenerateRequest) -> types.GenerateContentConfig:
        opts = request.options
        tools: List[types.Tool] = []
        if request.tools.google_search:
            tools.append(types.Tool(google_search=types.GoogleSearch()))
        if request.tools.url_context:
            tools.append(types.Tool(url_context=types.UrlContext()))

        config: Dict[str, Any] = {}
        if opts.system_instruction:
            config["system_instruction"] = opts.system_instruction
        if opts.temperature is not None:
            config["temperature"] = opts.temperature
        if opts.max_tokens:
            config["max_output_tokens"] = opts.max_tokens
        if tools:
            config["tools"] = tools
        elif opts.response_format == "json":
            # The API rejects a JSON mime type combined with tools
            config["response_mime_type"] = "application/json"
            if opts.response_schema:
                config["response_schema"] = opts.response_schema
        return types.GenerateContentConfig(**config)

    def _contents(self, request: GenerateRequest) -> List[Any]:
        if not request.image:
            return [request.prompt]
        image = types.Part.from_bytes(data=base64.b64decode(request.image), mime_type=request.image_mime_type)
        return [request.prompt, image]

    @staticmethod
    def _url_context_metadata(response: Any) -> Optional[List[Dict[str, Any]]]:
        candidates = getattr(response, "candidates", None) or []
        metadata = getattr(candidates[0], "url_context_metadata", None) if candidates else None
        url_metadata = getattr(metadata, "url_metadata", None) if metadata else None
        if not url_metadata:
            return None
        return [
            {
                "retrieved_url": getattr(m, "retrieved_url", None),
                "status": str(getattr(m, "url_retrieval_status", "")),
            }
            for m in url_metadata
        ]

    async def _call(self, request: GenerateRequest, model: str) -> ProviderOutput:
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=self._contents(request),
                config=self._config(request),
            )
        except Exception as e:
            raise ProviderError(f"Gemini request failed: {e}") from e

        usage = getattr(response, "usage_metadata", None)
        prompt_tokens = (usage.prompt_token_count or 0) if usage else 0
        completion_tokens = (usage.candidates_token_count or 0) if usage else 0
        return ProviderOutput(
            text=response.text or "",
            model=model,
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=(usage.total_token_count or 0) if usage else prompt_tokens + completion_tokens,
            ),
            url_context_metadata=self._url_context_metadata(response),
        )
