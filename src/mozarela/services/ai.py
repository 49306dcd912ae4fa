"""Text-generation provider client (OpenAI-compatible API)."""

import asyncio
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import openai
from cachetools import TTLCache
from openai import AsyncOpenAI

from mozarela.config import settings
from mozarela.exceptions import ProviderFailure, ProviderNotConfigured, ProviderOverloaded

logger = logging.getLogger(__name__)

# provider model catalogue, refreshed every 10 minutes
_models_cache = TTLCache(maxsize=4, ttl=600)


@dataclass
class FilePart:
    """A binary attachment sent ahead of the prompt."""

    data: bytes
    mime_type: str
    filename: str = "attachment"

    def to_content(self) -> dict[str, Any]:
        encoded = base64.b64encode(self.data).decode("ascii")
        data_url = f"data:{self.mime_type};base64,{encoded}"
        if self.mime_type.startswith("image/"):
            return {"type": "image_url", "image_url": {"url": data_url}}
        return {"type": "file", "file": {"filename": self.filename, "file_data": data_url}}


def is_overloaded(error: Exception) -> bool:
    """True for the provider's transient 'overloaded' condition."""
    if isinstance(error, openai.APIStatusError) and error.status_code == 503:
        return True
    text = str(error)
    return "503" in text or "Service Unavailable" in text or "overloaded" in text.lower()


def parse_json_text(text: Optional[str]) -> Optional[Any]:
    """Parse model output as JSON, tolerating markdown code fences. None if it isn't JSON."""
    if not text:
        return None
    clean = text.strip()
    if "```" in clean:
        start = clean.find("{")
        end = clean.rfind("}")
        if start != -1 and end != -1:
            clean = clean[start:end + 1]
    try:
        return json.loads(clean)
    except ValueError:
        return None


class AIClient:
    """
    Sends content parts to the provider.
    On an overloaded primary model the call is retried once on the fallback
    model; nothing else is retried.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        primary_model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Any = None,
    ):
        self.api_key = api_key if api_key is not None else settings.ai_api_key
        self.base_url = base_url or settings.ai_base_url
        self.primary_model = primary_model or settings.ai_primary_model
        self.fallback_model = fallback_model or settings.ai_fallback_model
        self.timeout = timeout or settings.ai_timeout_seconds
        self._openai_client = client

    @property
    def configured(self) -> bool:
        return self._openai_client is not None or bool(self.api_key)

    @property
    def openai_client(self) -> Any:
        if self._openai_client is None:
            if not self.api_key:
                raise ProviderNotConfigured("Server AI key not configured")
            self._openai_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=0,
            )
        return self._openai_client

    async def _complete(self, model: str, content: list[dict], json_mode: bool, timeout: float) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": content}],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await asyncio.wait_for(
            self.openai_client.chat.completions.create(**kwargs),
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    async def generate(
        self,
        prompt: str,
        files: Optional[list[FilePart]] = None,
        model: Optional[str] = None,
        json_mode: bool = True,
        timeout: Optional[float] = None,
    ) -> str:
        """Attachments first, then the prompt text. Returns the generated text."""
        content = [f.to_content() for f in files or []]
        content.append({"type": "text", "text": prompt})
        primary = model or self.primary_model
        timeout = timeout or self.timeout

        try:
            logger.info("AI request: model=%s parts=%d", primary, len(content))
            return await self._complete(primary, content, json_mode, timeout)
        except ProviderNotConfigured:
            raise
        except asyncio.TimeoutError as e:
            raise ProviderFailure(f"AI provider timed out after {timeout:.0f}s") from e
        except Exception as e:
            if not is_overloaded(e):
                logger.error("AI request failed on %s: %s", primary, e)
                raise ProviderFailure(f"AI provider error: {e}") from e
            logger.warning("Model %s overloaded, retrying once on %s", primary, self.fallback_model)

        try:
            return await self._complete(self.fallback_model, content, json_mode, timeout)
        except asyncio.TimeoutError as e:
            raise ProviderFailure(f"AI provider timed out after {timeout:.0f}s") from e
        except Exception as e:
            logger.error("Fallback model %s also failed: %s", self.fallback_model, e)
            if is_overloaded(e):
                raise ProviderOverloaded(
                    "The AI model is temporarily overloaded. Please try again in a few moments."
                ) from e
            raise ProviderFailure(f"AI provider error: {e}") from e

    async def list_models(self) -> list[dict[str, Any]]:
        """Models available to the configured key (cached)."""
        if "models" in _models_cache:
            return _models_cache["models"]
        try:
            page = await self.openai_client.models.list()
        except ProviderNotConfigured:
            raise
        except Exception as e:
            raise ProviderFailure(f"Could not list models: {e}") from e
        models = [{"name": m.id, "ownedBy": getattr(m, "owned_by", None)} for m in page.data]
        _models_cache["models"] = models
        return models


def clear_models_cache() -> None:
    _models_cache.clear()


ai_client = AIClient()
