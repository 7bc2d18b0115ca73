"""Language-model fallback extraction.

Used only when the stored selector no longer finds a price. The model gets a
cleaned, truncated copy of the page and must answer with JSON matching a
strict schema, including a CSS selector for the price so the listing can go
back to the cheap selector path on the next run.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError
from scrapy import Selector

from price_watch.config import Settings
from price_watch.errors import ConfigurationError, LLMTimeout, StructuredExtractionError
from price_watch.models import AIExtraction, Currency, TokenUsage

logger = logging.getLogger(__name__)


MIN_CONFIDENCE = 0.8
MAX_HTML_CHARS = 50_000
RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})

PRICE_SCHEMA: Dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "price_extraction",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "price": {"type": "number"},
                "currency": {"type": "string", "enum": [c.value for c in Currency]},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "selector": {"type": "string"},
                "city": {"type": "string"},
                "title": {"type": "string"},
                "imageUrl": {"type": "string"},
            },
            "required": ["price", "currency", "confidence", "selector", "city", "title", "imageUrl"],
            "additionalProperties": False,
        },
    },
}

SYSTEM_PROMPT = """You are a web scraping expert. Extract the asking price of the listing from the HTML.
Return a JSON object with:
- price: number (just the number, no currency symbols or spaces)
- currency: string (PLN, EUR, USD or GBP)
- confidence: number (0-1, how confident you are that the price is correct)
- selector: string (CSS selector that can be used to extract this price in the future)
- city: string (city of the listing, empty if not found)
- title: string (title of the listing)
- imageUrl: string (main image URL, empty if not found)

If you cannot find the price, return confidence: 0."""

_NOISE_NODES = "//script | //style | //noscript | //svg | //iframe | //template | //comment()"
_NOISY_ATTRS = frozenset({"class", "id", "style"})
_WHITESPACE = re.compile(r"\s+")


def clean_html(html: str, max_chars: int = MAX_HTML_CHARS) -> str:
    """Strip markup noise that costs tokens without helping extraction.

    Works on the parsed tree, so attribute-like page text survives and an
    unterminated ``<script>`` is dropped along with its content.
    """
    sel = Selector(text=html or "<html></html>")
    for node in sel.xpath(_NOISE_NODES):
        node.drop()
    for el in sel.root.iter():
        if not isinstance(el.tag, str):
            continue
        for name in list(el.attrib):
            if name.lower() in _NOISY_ATTRS or name.lower().startswith("on"):
                del el.attrib[name]
    text = _WHITESPACE.sub(" ", sel.get()).strip()
    return text[:max_chars]


def validate_confidence(result: AIExtraction) -> bool:
    return result.confidence >= MIN_CONFIDENCE


@dataclass
class OpenRouterConfig:
    api_key: str
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-4o-mini"
    timeout_secs: float = 30.0
    max_retries: int = 2
    backoff_secs: float = 1.0


@dataclass
class StructuredCompletion:
    data: Dict[str, Any]
    usage: TokenUsage


class OpenRouterClient:
    """Thin client for an OpenRouter-compatible chat-completions API.

    - Authentication: ``Authorization: Bearer <key>``.
    - Retries 408/429/5xx responses with exponential backoff; timeouts are
      raised immediately so the caller can fall back.
    """

    def __init__(self, config: OpenRouterConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        response_format: Dict[str, Any],
        temperature: float = 0.1,
        max_tokens: int = 500,
    ) -> StructuredCompletion:
        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": response_format,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        attempt = 0
        while True:
            try:
                resp = self.session.post(
                    url, json=payload, headers=self._headers(), timeout=self.config.timeout_secs
                )
            except requests.Timeout as e:
                raise LLMTimeout(f"LLM request timeout ({self.config.timeout_secs:g}s)") from e
            except requests.RequestException as e:
                raise StructuredExtractionError(f"LLM request failed: {e}") from e

            if resp.status_code in RETRYABLE_STATUS and attempt < self.config.max_retries:
                attempt += 1
                delay = self.config.backoff_secs * (2 ** (attempt - 1))
                logger.warning("LLM returned HTTP %d, retry %d in %.1fs", resp.status_code, attempt, delay)
                time.sleep(delay)
                continue
            if resp.status_code >= 400:
                raise StructuredExtractionError(f"LLM HTTP {resp.status_code}: {resp.text[:200]}")
            break

        try:
            body = resp.json()
            content = body["choices"][0]["message"]["content"]
            data = json.loads(content) if isinstance(content, str) else content
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise StructuredExtractionError(f"Malformed LLM response: {e}") from e
        if not isinstance(data, dict):
            raise StructuredExtractionError("LLM response is not a JSON object")

        raw_usage = body.get("usage") or {}
        usage = TokenUsage(
            prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
            completion_tokens=int(raw_usage.get("completion_tokens") or 0),
            total_tokens=int(raw_usage.get("total_tokens") or 0),
            model=body.get("model") or self.config.model,
        )
        return StructuredCompletion(data=data, usage=usage)


class StructuredExtractor:
    def __init__(self, client: OpenRouterClient) -> None:
        self.client = client

    def extract(self, html: str, url: str) -> AIExtraction:
        user_prompt = f"Extract the price from this listing page:\nURL: {url}\n\nHTML:\n{clean_html(html)}"
        completion = self.client.complete_json(SYSTEM_PROMPT, user_prompt, PRICE_SCHEMA)
        try:
            result = AIExtraction.model_validate(completion.data)
        except ValidationError as e:
            raise StructuredExtractionError(f"LLM response violates schema: {e}") from e
        result.usage = completion.usage
        logger.info(
            "LLM extraction for %s: %s %s (confidence %.2f, selector %r, %d tokens)",
            url,
            result.price,
            result.currency.value,
            result.confidence,
            result.selector,
            completion.usage.total_tokens,
        )
        return result

    def validate_confidence(self, result: AIExtraction) -> bool:
        return validate_confidence(result)


def get_extractor(settings: Settings, session: Optional[requests.Session] = None) -> Optional[StructuredExtractor]:
    """Build the AI extractor from settings, or ``None`` when no backend is configured."""
    provider = settings.llm_provider or ("openrouter" if settings.openrouter_api_key else None)
    if provider is None:
        return None
    if provider != "openrouter":
        raise ConfigurationError(f"Unsupported LLM provider: {provider}")
    if not settings.openrouter_api_key:
        raise ConfigurationError("OpenRouter API key not configured for AI extraction")
    config = OpenRouterConfig(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        model=settings.openrouter_model,
        timeout_secs=settings.llm_timeout_secs,
    )
    return StructuredExtractor(OpenRouterClient(config, session=session))
