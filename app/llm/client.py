"""
LLM Client
==========
Unified asynchronous client wrapper for LLM providers.
Supports Gemini (Google REST API) and OpenAI-compatible endpoints
(Groq, OpenRouter).

Provider Fallback:
    - Providers are tried in the order the router hands out
    - Fallback triggers on: HTTP error, timeout, rate limit, empty response
    - Each provider has independent retry logic (max_retries per provider)
    - HTTP 429 skips straight to the next provider

Structured Output:
    - The client only returns raw text
    - ``parse_json_object`` strips markdown fences and extracts the first
      JSON object; callers validate it against their pydantic schema
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.llm.router import LLMRouter, ProviderConfig

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?|\n?```\s*$")


# ---------------------------------------------------------------------------
# LLM Response
# ---------------------------------------------------------------------------
@dataclass
class LLMResponse:
    """Raw text response from an LLM provider."""
    text: str
    provider_name: str
    success: bool = True
    error: str = ""


# ---------------------------------------------------------------------------
# Response Parsing
# ---------------------------------------------------------------------------
def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```lang ... ``` fence, if any."""
    cleaned = (raw or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_RE.sub("", cleaned).strip()
    return cleaned


def parse_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """
    Extract a JSON object from an LLM reply.

    Tries the whole (fence-stripped) reply first, then the outermost
    ``{ ... }`` span. Returns None when no object can be decoded.
    """
    cleaned = strip_code_fences(raw)
    if not cleaned:
        return None

    try:
        data = json.loads(cleaned)
        return data if isinstance(data, dict) else None
    except (json.JSONDecodeError, ValueError):
        pass

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(cleaned[start:end + 1])
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------
class LLMClient:
    """
    Async HTTP client for calling LLM providers.

    Usage:
        client = LLMClient()
        response = await client.complete("Fix this code...", "You are...")
        await client.close()
    """

    def __init__(self, router: Optional[LLMRouter] = None) -> None:
        self.router = router or LLMRouter()
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def complete(self, user_prompt: str, system_prompt: str) -> LLMResponse:
        """
        Send a prompt with automatic provider fallback.

        Returns
        -------
        LLMResponse
            Text from whichever provider succeeded, or success=False.
        """
        tried = []
        for provider in self.router.candidates():
            tried.append(provider.name)
            response = await self.call(user_prompt, system_prompt, provider)
            if response.success and response.text.strip():
                self.router.report_success(provider.name)
                return response
            self.router.report_failure(provider.name)

        return LLMResponse(
            text="",
            provider_name=tried[0] if tried else "",
            success=False,
            error="All providers failed" if tried else "No LLM provider configured",
        )

    async def call(
        self,
        user_prompt: str,
        system_prompt: str,
        provider: ProviderConfig,
    ) -> LLMResponse:
        """Send a prompt to one provider, retrying up to ``provider.max_retries``."""
        for attempt in range(1, provider.max_retries + 1):
            try:
                if provider.name == "gemini":
                    raw = await self._call_gemini(user_prompt, system_prompt, provider)
                else:
                    raw = await self._call_openai_compatible(user_prompt, system_prompt, provider)

                if raw and raw.strip():
                    return LLMResponse(text=raw, provider_name=provider.name)

                logger.warning("Provider %s attempt %d: empty response", provider.name, attempt)

            except httpx.TimeoutException:
                logger.warning("Provider %s attempt %d: timeout", provider.name, attempt)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("Provider %s attempt %d: HTTP %d", provider.name, attempt, status)
                if status == 429:
                    break
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Provider %s attempt %d: %s", provider.name, attempt, e)

        return LLMResponse(
            text="",
            provider_name=provider.name,
            success=False,
            error=f"All {provider.max_retries} retries exhausted for {provider.name}",
        )

    async def _call_gemini(
        self,
        user_prompt: str,
        system_prompt: str,
        provider: ProviderConfig,
    ) -> str:
        """Call Gemini REST API."""
        http = await self._get_http()
        url = f"{provider.base_url}/models/{provider.model}:generateContent"
        payload = {
            "system_instruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": 0.1,
                "topP": 0.9,
                "maxOutputTokens": 8192,
            },
        }
        resp = await http.post(
            url,
            json=payload,
            headers={"x-goog-api-key": provider.api_key},
            timeout=provider.timeout_seconds,
        )
        resp.raise_for_status()
        data = resp.json()

        try:
            candidates = data.get("candidates", [])
            if candidates:
                parts = candidates[0].get("content", {}).get("parts", [])
                if parts:
                    return parts[0].get("text", "")
        except (IndexError, KeyError, TypeError, AttributeError):
            pass
        return ""

    async def _call_openai_compatible(
        self,
        user_prompt: str,
        system_prompt: str,
        provider: ProviderConfig,
    ) -> str:
        """Call OpenAI-compatible API (Groq, OpenRouter)."""
        http = await self._get_http()
        url = f"{provider.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": provider.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0.1,
            "max_tokens": 8192,
        }
        resp = await http.post(url, json=payload, headers=headers, timeout=provider.timeout_seconds)
        resp.raise_for_status()
        data = resp.json()

        try:
            choices = data.get("choices", [])
            if choices:
                return choices[0].get("message", {}).get("content", "") or ""
        except (IndexError, KeyError, TypeError, AttributeError):
            pass
        return ""
