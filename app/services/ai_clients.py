"""
HTTP clients for the hosted LLM providers Hermes talks to.

* ``PerplexityClient`` – web-grounded ``sonar`` / ``sonar-pro`` completions.
  Every request waits a fixed base delay first and is retried with
  exponential backoff, since the API rate-limits aggressively.
* ``GatewayClient``    – Gemini through an OpenAI-compatible gateway.
* ``AnthropicClient``  – Claude through the Messages API.

All three expose the same surface:

    text = await client.complete(messages, temperature=0.3, max_tokens=2000)
    ok, data = await client.complete_json(messages, expect="object")

``complete`` raises ``AIProviderError`` on any provider failure.
``complete_json`` additionally runs the reply through a tolerant JSON parser
that copes with code fences, trailing commas and surrounding prose.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class AIProviderError(Exception):
    """Raised when an AI provider cannot produce a usable completion."""

    def __init__(self, message: str, status_code: Optional[int] = None, provider: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------

class ChatCompletionClient:
    """
    Minimal client for ``POST {base_url}/chat/completions``.

    The httpx transport can be injected so tests can answer requests with
    ``httpx.MockTransport`` instead of the network.
    """

    provider: str = "gateway"
    DEFAULT_TEMPERATURE: float = 0.3

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = float(settings.LLM_TIMEOUT),
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **extra: Any,
    ) -> str:
        """Return the assistant text for *messages*; raise AIProviderError on failure."""
        if not self.configured:
            raise AIProviderError(
                f"{self.provider} API key is not configured", provider=self.provider
            )

        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": self.DEFAULT_TEMPERATURE if temperature is None else temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        payload.update({k: v for k, v in extra.items() if v is not None})

        data = await self._post(payload)
        return self._extract_content(data)

    async def complete_json(
        self,
        messages: List[Message],
        expect: str = "object",
        **kwargs: Any,
    ) -> Tuple[bool, Any]:
        """
        Call :meth:`complete` and parse the reply as JSON.

        Returns ``(success, parsed_value)``.  Provider errors propagate; a
        reply that cannot be parsed yields ``(False, None)``.
        """
        text = await self.complete(messages, **kwargs)
        return self.parse_json_robust(text, expect=expect)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.post(self._endpoint(), headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            logger.error("%s request failed: %s", self.provider, exc)
            raise AIProviderError(f"{self.provider} request failed: {exc}", provider=self.provider)

        if resp.status_code != 200:
            logger.error(
                "%s returned HTTP %d: %s", self.provider, resp.status_code, resp.text[:300]
            )
            raise AIProviderError(
                f"{self.provider} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                provider=self.provider,
            )

        try:
            return resp.json()
        except ValueError:
            raise AIProviderError(f"{self.provider} returned a non-JSON body", provider=self.provider)

    def _extract_content(self, data: Dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise AIProviderError(
                f"Invalid {self.provider} response structure", provider=self.provider
            )
        if not content:
            raise AIProviderError(f"Empty {self.provider} response", provider=self.provider)
        return content

    # ------------------------------------------------------------------
    # Robust JSON parsing
    # ------------------------------------------------------------------

    @classmethod
    def parse_json_robust(cls, response: str, expect: str = "object") -> Tuple[bool, Any]:
        """
        Try multiple strategies to parse JSON from potentially messy LLM output.

        Handles:
        - Markdown code fences (```json … ```, ``` … ```)
        - Trailing commas before ] or }
        - Python-style True / False / None and ``//`` comments
        - Surrounding prose: finds the first balanced {...} or [...] block,
          looking for the *expect*-ed kind first
        - Missing closing bracket (adds one and retries)

        Returns ``(success, parsed_value)``.
        """
        if not response:
            return False, None

        text = response.strip()

        # Strategy 1: direct parse
        ok, val = cls._try_json(text)
        if ok:
            return True, val

        # Strategy 2: strip markdown code fences
        stripped = cls._strip_code_fences(text)
        if stripped != text:
            ok, val = cls._try_json(stripped)
            if ok:
                return True, val
            text = stripped

        # Strategy 3: fix common JSON mangling
        fixed = cls._fix_json_issues(text)
        ok, val = cls._try_json(fixed)
        if ok:
            return True, val

        # Strategy 4: extract JSON structure from surrounding prose
        pairs = [("{", "}"), ("[", "]")]
        if expect == "array":
            pairs.reverse()
        for bracket_pair in pairs:
            fragment = cls._extract_json_structure(text, *bracket_pair)
            if fragment:
                ok, val = cls._try_json(fragment)
                if ok:
                    return True, val
                ok, val = cls._try_json(cls._fix_json_issues(fragment))
                if ok:
                    return True, val

        # Strategy 5: attempt to close a truncated array / object
        for suffix in ("]", "}", "}]", "]}"):
            ok, val = cls._try_json(fixed + suffix)
            if ok:
                logger.debug("parse_json_robust: recovered with suffix %r", suffix)
                return True, val

        logger.warning("parse_json_robust: all strategies failed. Preview: %s", response[:400])
        return False, None

    @staticmethod
    def _try_json(text: str) -> Tuple[bool, Any]:
        try:
            return True, json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return False, None

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        """Remove ```json / ```html / ``` delimiters that LLMs often wrap output in."""
        text = re.sub(r"^```(?:json|html|javascript|text)?\s*\n?", "", text, flags=re.IGNORECASE)
        text = re.sub(r"\n?```\s*$", "", text)
        return text.strip()

    @staticmethod
    def _fix_json_issues(text: str) -> str:
        """Repair the most common JSON mangling patterns from LLMs."""
        text = re.sub(r",(\s*[}\]])", r"\1", text)
        text = re.sub(r"\bTrue\b", "true", text)
        text = re.sub(r"\bFalse\b", "false", text)
        text = re.sub(r"\bNone\b", "null", text)
        # Strip line comments, but leave "https://..." inside strings alone
        text = re.sub(r"(?<![:\"'])//[^\n]*", "", text)
        return text.strip()

    @staticmethod
    def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
        """
        Find the first complete balanced open_b … close_b structure in *text*.
        Returns the matched fragment, or empty string if not found.
        """
        start = text.find(open_b)
        if start == -1:
            return ""

        depth = 0
        in_string = False
        escape_next = False

        for i, ch in enumerate(text[start:], start=start):
            if escape_next:
                escape_next = False
                continue
            if ch == "\\" and in_string:
                escape_next = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == open_b:
                depth += 1
            elif ch == close_b:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        return ""

    @staticmethod
    def strip_code_fences(text: str) -> str:
        return ChatCompletionClient._strip_code_fences(text.strip())


class GatewayClient(ChatCompletionClient):
    """Gemini served through the OpenAI-compatible AI gateway."""

    provider = "gateway"

    @classmethod
    def from_settings(cls) -> "GatewayClient":
        return cls(
            api_key=settings.AI_GATEWAY_API_KEY,
            base_url=settings.AI_GATEWAY_BASE_URL,
            model=settings.AI_GATEWAY_MODEL,
        )


# ---------------------------------------------------------------------------
# Perplexity (throttled + retried)
# ---------------------------------------------------------------------------

class PerplexityClient(ChatCompletionClient):
    """
    Perplexity chat completions with client-side throttling.

    Each call sleeps ``rate_limit_delay`` seconds before the first attempt.
    Failed attempts (HTTP 429, other non-200 statuses, non-JSON bodies,
    transport errors) are retried up to ``max_retries`` times, waiting
    ``rate_limit_delay * 2 ** (attempt - 1)`` between attempts.
    """

    provider = "perplexity"

    def __init__(
        self,
        api_key: str,
        base_url: str = settings.PERPLEXITY_BASE_URL,
        model: str = settings.PERPLEXITY_MODEL,
        timeout: float = float(settings.LLM_TIMEOUT),
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limit_delay: float = settings.PERPLEXITY_RATE_LIMIT_DELAY,
        max_retries: int = settings.PERPLEXITY_MAX_RETRIES,
    ) -> None:
        super().__init__(api_key, base_url, model, timeout=timeout, transport=transport)
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max(1, max_retries)
        self.fast_model = settings.PERPLEXITY_FAST_MODEL

    @classmethod
    def from_settings(cls) -> "PerplexityClient":
        return cls(api_key=settings.PERPLEXITY_API_KEY)

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.rate_limit_delay > 0:
            await asyncio.sleep(self.rate_limit_delay)

        last_error: Optional[AIProviderError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                async with self._client() as client:
                    resp = await client.post(
                        self._endpoint(), headers=self._headers(), json=payload
                    )

                if resp.status_code == 429:
                    last_error = AIProviderError(
                        "Perplexity rate limit exceeded", status_code=429, provider=self.provider
                    )
                    logger.warning(
                        "Perplexity rate limited (attempt %d/%d)", attempt, self.max_retries
                    )
                elif resp.status_code != 200:
                    logger.error(
                        "Perplexity returned HTTP %d: %s", resp.status_code, resp.text[:300]
                    )
                    last_error = AIProviderError(
                        f"Perplexity API error: {resp.status_code}",
                        status_code=resp.status_code,
                        provider=self.provider,
                    )
                elif "application/json" not in resp.headers.get("content-type", ""):
                    logger.error("Perplexity returned non-JSON content: %s", resp.text[:200])
                    last_error = AIProviderError(
                        "Perplexity returned non-JSON response", provider=self.provider
                    )
                else:
                    data = resp.json()
                    self._extract_content(data)  # validate structure before accepting
                    return data

            except AIProviderError as exc:
                last_error = exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "Perplexity attempt %d/%d failed: %s", attempt, self.max_retries, exc
                )
                last_error = AIProviderError(f"Perplexity request failed: {exc}", provider=self.provider)

            if attempt < self.max_retries:
                backoff = self.rate_limit_delay * (2 ** (attempt - 1))
                logger.info("Perplexity retrying in %.1f s", backoff)
                if backoff > 0:
                    await asyncio.sleep(backoff)

        raise last_error or AIProviderError("Perplexity request failed", provider=self.provider)


# ---------------------------------------------------------------------------
# Anthropic Messages API
# ---------------------------------------------------------------------------

class AnthropicClient(ChatCompletionClient):
    """Claude via ``POST {base_url}/v1/messages``."""

    provider = "anthropic"
    DEFAULT_MAX_TOKENS: int = 1024

    def __init__(
        self,
        api_key: str,
        base_url: str = settings.ANTHROPIC_BASE_URL,
        model: str = settings.ANTHROPIC_MODEL,
        timeout: float = float(settings.LLM_TIMEOUT),
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_version: str = settings.ANTHROPIC_VERSION,
    ) -> None:
        super().__init__(api_key, base_url, model, timeout=timeout, transport=transport)
        self.api_version = api_version

    @classmethod
    def from_settings(cls) -> "AnthropicClient":
        return cls(api_key=settings.ANTHROPIC_API_KEY)

    async def complete(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **extra: Any,
    ) -> str:
        if not self.configured:
            raise AIProviderError("anthropic API key is not configured", provider=self.provider)

        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens or self.DEFAULT_MAX_TOKENS,
            "messages": [m for m in messages if m.get("role") != "system"],
        }
        if system:
            payload["system"] = system
        if temperature is not None:
            payload["temperature"] = temperature

        data = await self._post(payload)
        return self._extract_content(data)

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1/messages"

    def _extract_content(self, data: Dict[str, Any]) -> str:
        try:
            content = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise AIProviderError("Invalid anthropic response structure", provider=self.provider)
        if not content:
            raise AIProviderError("Empty anthropic response", provider=self.provider)
        return content
