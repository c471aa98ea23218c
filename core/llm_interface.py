# core/llm_interface.py
"""
Handles all direct interactions with the text generation provider.
Includes the HTTP call, overload detection, response cleaning and
token estimation for providers that do not report usage.
"""

# Standard library imports
import asyncio
import functools
import re
from typing import Any

import httpx
import structlog
import tiktoken

# Local imports
from config import settings
from core.errors import (
    GenerationError,
    GeneratorOverloadedError,
    GeneratorUnavailableError,
)
from core.usage import TokenUsage

logger = structlog.get_logger(__name__)

OVERLOAD_MARKERS = ("overloaded", "Overloaded", "overloaded_error")
OVERLOAD_STATUS_CODES = frozenset({429, 503, 529})


def is_overload_message(text: str) -> bool:
    """Return ``True`` when ``text`` carries a provider overload marker."""
    return any(marker in text for marker in OVERLOAD_MARKERS)


# --- Tokenizer Cache and Utility Functions (Module Level) ---
@functools.lru_cache(maxsize=8)
def _get_tokenizer(encoding_name: str) -> tiktoken.Encoding | None:
    try:
        return tiktoken.get_encoding(encoding_name)
    except (KeyError, ValueError, OSError):
        logger.error(
            f"tiktoken encoding '{encoding_name}' not found. "
            "Token counting will fall back to character-based heuristic."
        )
        return None


def count_tokens(text: str) -> int:
    """Estimate the number of tokens in ``text``."""
    if not text:
        return 0
    encoder = _get_tokenizer(settings.TIKTOKEN_DEFAULT_ENCODING)
    if encoder:
        return len(encoder.encode(text, allowed_special="all"))
    return int(len(text) / settings.FALLBACK_CHARS_PER_TOKEN)


def clean_model_response(text: str) -> str:
    """Strip reasoning blocks, code fences and blank-line runs from a response.

    Chapter and scene headings are left alone; the outline parser needs them.
    """
    if not isinstance(text, str):
        logger.warning(
            f"clean_model_response received non-string input: {type(text)}. Returning empty string."
        )
        return ""

    cleaned_text = text
    for tag_name in ("think", "thinking", "reasoning", "analysis"):
        cleaned_text = re.sub(
            rf"<\s*{tag_name}\s*>.*?<\s*/\s*{tag_name}\s*>",
            "",
            cleaned_text,
            flags=re.DOTALL | re.IGNORECASE,
        )
        cleaned_text = re.sub(
            rf"<\s*/?\s*{tag_name}\s*/?\s*>", "", cleaned_text, flags=re.IGNORECASE
        )

    fenced = re.fullmatch(
        r"\s*```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```\s*", cleaned_text, flags=re.DOTALL
    )
    if fenced:
        cleaned_text = fenced.group(1)

    cleaned_text = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", cleaned_text)
    return cleaned_text.strip()


class GeneratorClient:
    """Thin adapter over the provider HTTP API.

    ``generate`` returns the cleaned text plus token usage. Overload
    responses raise :class:`GeneratorOverloadedError`; the string sniffing
    for provider-specific overload messages lives only here.
    """

    def __init__(
        self,
        provider: str | None = None,
        api_base: str | None = None,
        api_key: str | None = None,
        timeout: float = settings.HTTPX_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider = provider or settings.GENERATOR_PROVIDER
        self.api_base = (api_base or settings.api_base).rstrip("/")
        self.api_key = api_key or settings.require_api_key()
        # Use a single async client for all requests to reuse connections
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._semaphore = asyncio.Semaphore(settings.MAX_CONCURRENT_GENERATOR_CALLS)
        self.request_count = 0
        logger.info(
            f"GeneratorClient initialized for provider '{self.provider}' at {self.api_base}."
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if self.provider == "anthropic":
            return {
                "x-api-key": self.api_key,
                "anthropic-version": settings.ANTHROPIC_VERSION,
                "content-type": "application/json",
            }
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, model_id: str, prompt: str) -> tuple[str, dict[str, Any]]:
        if self.provider == "anthropic":
            return f"{self.api_base}/messages", {
                "model": model_id,
                "max_tokens": settings.MAX_GENERATION_TOKENS,
                "temperature": settings.TEMPERATURE_DEFAULT,
                "messages": [{"role": "user", "content": prompt}],
            }
        return f"{self.api_base}/chat/completions", {
            "model": model_id,
            "max_tokens": settings.MAX_GENERATION_TOKENS,
            "temperature": settings.TEMPERATURE_DEFAULT,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }

    def _extract_text(self, data: dict[str, Any]) -> str:
        if self.provider == "anthropic":
            blocks = data.get("content") or []
            return "".join(
                block.get("text", "")
                for block in blocks
                if isinstance(block, dict) and block.get("type") == "text"
            )
        choices = data.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            return message.get("content") or ""
        return ""

    @staticmethod
    def _raise_for_overload(response: httpx.Response) -> None:
        body = response.text
        if response.status_code in OVERLOAD_STATUS_CODES or (
            response.status_code >= 400 and is_overload_message(body)
        ):
            raise GeneratorOverloadedError(
                f"Provider overloaded (HTTP {response.status_code}): {body[:200]}",
                status_code=response.status_code,
            )

    async def generate(self, model_id: str, prompt: str) -> tuple[str, TokenUsage | None]:
        """Send ``prompt`` to ``model_id`` and return ``(text, usage)``."""
        if not prompt or not prompt.strip():
            raise GenerationError("Refusing to send an empty prompt.")

        url, payload = self._payload(model_id, prompt)
        async with self._semaphore:
            self.request_count += 1
            logger.debug(
                f"Calling generator '{model_id}'. Prompt tokens (est.): {count_tokens(prompt)}."
            )
            try:
                response = await self._client.post(url, json=payload, headers=self._headers())
            except httpx.TimeoutException as e:
                raise GeneratorUnavailableError(f"Generator request timed out: {e}") from e
            except httpx.RequestError as e:
                if is_overload_message(str(e)):
                    raise GeneratorOverloadedError(str(e)) from e
                raise GeneratorUnavailableError(f"Generator request failed: {e}") from e

        self._raise_for_overload(response)
        if response.status_code >= 400:
            raise GenerationError(
                f"Generator returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError(f"Generator returned invalid JSON: {e}") from e

        if isinstance(data, dict) and data.get("type") == "error":
            error = data.get("error") or {}
            message = f"{error.get('type', '')}: {error.get('message', '')}"
            if is_overload_message(message):
                raise GeneratorOverloadedError(message)
            raise GenerationError(message)

        text = clean_model_response(self._extract_text(data))
        usage = self._usage_from(data, prompt, text)
        self._log_usage(model_id, usage)
        return text, usage

    @staticmethod
    def _usage_from(data: dict[str, Any], prompt: str, text: str) -> TokenUsage:
        reported = data.get("usage")
        usage = TokenUsage()
        if isinstance(reported, dict):
            usage.add(reported)
        if not usage:
            usage = TokenUsage(count_tokens(prompt), count_tokens(text))
            logger.debug("Provider omitted usage; using tiktoken estimate.")
        return usage

    @staticmethod
    def _log_usage(model_name: str, usage: TokenUsage | None) -> None:
        if usage:
            logger.info(
                f"Generator ('{model_name}') Usage - Prompt: {usage.prompt_tokens} tk, "
                f"Comp: {usage.completion_tokens} tk, Total: {usage.total_tokens} tk"
            )

    async def ping(self) -> bool | None:
        """Probe the provider's model listing.

        Returns ``True`` when reachable (200 or 401), ``False`` when
        overloaded and ``None`` when the probe itself failed.
        """
        try:
            response = await self._client.get(
                f"{self.api_base}/models", headers=self._headers(), timeout=10.0
            )
        except httpx.HTTPError as e:
            logger.warning("Availability probe failed.", error=str(e))
            return None
        if response.status_code in (200, 401):
            return True
        if response.status_code in OVERLOAD_STATUS_CODES:
            return False
        logger.warning(
            "Availability probe returned unexpected status.",
            status_code=response.status_code,
        )
        return None
