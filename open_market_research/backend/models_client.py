"""
Chat completion client for GitHub Models with model fallback.

This module wraps the OpenAI client so that it talks to the GitHub
Models inference endpoint (or any other OpenAI compatible base URL).
Individual models on the shared endpoint are frequently rate limited,
missing or unavailable for a given token, so :class:`ModelsClient`
walks an ordered list of candidate models and returns the first
successful completion:

* HTTP 429 – honour ``retry-after`` (capped at 10 seconds) and retry
  the same model up to the configured retry ceiling, then move on.
* HTTP 401/404/422 – skip to the next candidate immediately.
* Network errors and timeouts – retry the same model after a short
  fixed backoff, then move on.
* Any other HTTP error – raise :class:`ModelsClientError`.

Configuration is read from the environment once, when the client is
constructed.  ``GITHUB_MODELS_BASE_URL`` overrides the endpoint,
``MYCONTEXT_GITHUB_TOKEN`` (or ``GITHUB_TOKEN``) provides the bearer
token, ``MYCONTEXT_MODEL`` and ``MYCONTEXT_MODEL_CANDIDATES`` choose
the models and ``MYCONTEXT_GITHUB_RETRIES`` sets the retry ceiling.
"""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    NotFoundError,
    OpenAI,
    RateLimitError,
    UnprocessableEntityError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://models.github.ai/inference"
DEFAULT_MODEL = "grok-3"
SYSTEM_PROMPT = "You are a concise, expert product/dev assistant."

GENERATION_TIMEOUT = 30.0
HEALTH_TIMEOUT = 15.0
DISCOVERY_TIMEOUT = 5.0
NETWORK_BACKOFF_SECONDS = 1.5
DEFAULT_RETRY_AFTER_SECONDS = 5
MAX_RETRY_AFTER_SECONDS = 10

CURATED_MODELS: List[str] = [
    "openai/gpt-4o",
    "openai/gpt-4o-mini",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-haiku-20241022",
    "deepseek/DeepSeek-V3-0324",
    "deepseek/DeepSeek-Coder-V2",
    "meta/Llama-4-Scout-17B-16E-Instruct",
    "meta/llama-3.1-8b-instruct",
    "meta/llama-3.1-70b-instruct",
    "mistral-ai/Codestral-2501",
    "mistral-ai/Mistral-7B-Instruct-v0.3",
    "nvidia/llama-3.1-nemotron-70b-instruct",
    "qwen/qwen2.5-coder-32b-instruct",
    "qwen/qwen2.5-coder-7b-instruct",
    "google/gemini-2.0-flash",
    "google/gemini-1.5-pro",
    "microsoft/Phi-3.5-mini-instruct",
    "microsoft/Phi-3-medium-128k-instruct",
]


class ModelsClientError(Exception):
    """Raised when the provider returns an error that fallback cannot fix."""


class ModelsExhaustedError(ModelsClientError):
    """Raised when every candidate model failed."""


def _resolve_token() -> Optional[str]:
    """Resolve the GitHub token from environment variables."""
    for name in ('MYCONTEXT_GITHUB_TOKEN', 'GITHUB_TOKEN'):
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


def _resolve_candidates() -> List[str]:
    raw = os.getenv('MYCONTEXT_MODEL_CANDIDATES', '')
    return [c.strip() for c in raw.split(',') if c.strip()]


def _resolve_retries() -> int:
    raw = os.getenv('MYCONTEXT_GITHUB_RETRIES', '1')
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning(f"Ignoring invalid MYCONTEXT_GITHUB_RETRIES value: {raw!r}")
        return 1


def parse_retry_after(value: Optional[str]) -> int:
    """Return the number of seconds to wait for a ``retry-after`` header.

    Only the leading integer of the header is used.  Missing or
    unparseable values fall back to 5 seconds and the result is capped
    at 10 seconds.
    """
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    match = re.match(r"\s*(-?\d+)", value)
    if not match:
        return DEFAULT_RETRY_AFTER_SECONDS
    return max(0, min(int(match.group(1)), MAX_RETRY_AFTER_SECONDS))


def normalize_model_list(payload: Any) -> List[str]:
    """Flatten the various ``/models`` response shapes into identifiers.

    Supported shapes are ``{"data": [...]}``, ``{"models": [...]}`` and
    a bare list.  Items can be strings or objects exposing ``id``,
    ``name`` or ``model_id``.
    """
    if isinstance(payload, dict):
        if isinstance(payload.get('data'), list):
            items = payload['data']
        elif isinstance(payload.get('models'), list):
            items = payload['models']
        else:
            return []
    elif isinstance(payload, list):
        items = payload
    else:
        return []
    models: List[str] = []
    for item in items:
        if isinstance(item, str):
            identifier = item
        elif isinstance(item, dict):
            identifier = item.get('id') or item.get('name') or item.get('model_id')
        else:
            identifier = None
        if identifier and isinstance(identifier, str):
            models.append(identifier)
    return models


def _dedupe(models: List[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for model in models:
        if model and model not in seen:
            seen[model] = None
    return list(seen)


class ModelsClient:
    """OpenAI style chat client that falls back across candidate models.

    Args:
        base_url: Inference endpoint.  Defaults to ``GITHUB_MODELS_BASE_URL``
            or the public GitHub Models endpoint.
        token: Bearer token.  Defaults to the environment.
        default_model: Model tried first when a call does not name one.
        model_candidates: Models tried after the primary one.
        max_retries: Retries per model for rate limits and network errors.
        http_client: Optional ``httpx.Client`` shared by the OpenAI client
            and model discovery.  Tests inject one backed by a mock
            transport.
        sleep: Function used to wait between retries.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        default_model: Optional[str] = None,
        model_candidates: Optional[List[str]] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = (base_url or os.getenv('GITHUB_MODELS_BASE_URL') or DEFAULT_BASE_URL).rstrip('/')
        self.token = token if token is not None else _resolve_token()
        self.default_model = default_model or os.getenv('MYCONTEXT_MODEL') or DEFAULT_MODEL
        self.model_candidates = model_candidates if model_candidates is not None else _resolve_candidates()
        self.max_retries = max_retries if max_retries is not None else _resolve_retries()
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client()
        self._sleep = sleep
        self._client: Optional[OpenAI] = None
        if self.token:
            self._client = OpenAI(
                api_key=self.token,
                base_url=self.base_url,
                max_retries=0,
                timeout=GENERATION_TIMEOUT,
                http_client=self._http,
            )

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "ModelsClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def has_api_key(self) -> bool:
        return bool(self.token)

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def check_connection(self) -> bool:
        """Probe the endpoint and report whether generation can be attempted.

        Without a token this is always ``False``.  With a token the ping
        result is only logged: a reachable endpoint and a configured
        token are both enough to let the caller try a real request.
        """
        if not self._client:
            logger.info("No GitHub Models token configured; service unavailable")
            return False
        try:
            self._client.chat.completions.create(
                model=self.default_model,
                messages=[
                    {'role': 'system', 'content': 'ping'},
                    {'role': 'user', 'content': 'ping'},
                ],
                max_completion_tokens=1,
                timeout=HEALTH_TIMEOUT,
            )
            logger.info("GitHub Models health probe succeeded")
        except APIStatusError as e:
            logger.info(f"GitHub Models health probe returned HTTP {e.status_code}")
        except Exception as e:
            logger.warning(f"GitHub Models health probe failed: {e}")
        return self.has_api_key()

    def list_models(self) -> List[str]:
        """Discover available models, falling back to a curated list."""
        candidates = [
            f"{self.base_url}/models",
            f"{self.base_url}/v1/models",
            f"{self.base_url}/v1/models?per_page=100",
            f"{self.base_url}/models?per_page=100",
        ]
        for url in candidates:
            try:
                res = self._http.get(url, headers=self._headers(), timeout=DISCOVERY_TIMEOUT)
                if not res.is_success:
                    logger.info(f"Endpoint {url} returned {res.status_code}")
                    continue
                models = normalize_model_list(res.json())
            except (httpx.HTTPError, ValueError) as e:
                logger.info(f"Endpoint {url} failed: {e}")
                continue
            if models:
                logger.info(f"Found {len(models)} available models from {url}")
                return models
        logger.info("No models endpoint found, using curated set")
        return _dedupe([self.default_model, *CURATED_MODELS])

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        model_candidates: Optional[List[str]] = None,
        temperature: float = 0.2,
        max_tokens: int = 1024,
    ) -> str:
        """Return the first successful completion for ``prompt``.

        Raises:
            ModelsClientError: No token is configured, or a model returned
                an HTTP error outside the fallback set.
            ModelsExhaustedError: Every candidate failed.
        """
        if not self._client:
            raise ModelsClientError("GitHub Models token is not configured")
        messages = [
            {'role': 'system', 'content': SYSTEM_PROMPT},
            {'role': 'user', 'content': prompt},
        ]
        candidates = model_candidates if model_candidates is not None else self.model_candidates
        discovered = self.list_models()
        models_to_try = _dedupe([model or self.default_model, *candidates, *discovered])
        preview = ', '.join(models_to_try[:5]) + ('...' if len(models_to_try) > 5 else '')
        logger.info(f"Trying {len(models_to_try)} models: {preview}")

        for model_name in models_to_try:
            attempt = 0
            while attempt <= self.max_retries:
                try:
                    completion = self._client.chat.completions.create(
                        model=model_name,
                        messages=messages,
                        temperature=temperature,
                        max_completion_tokens=max_tokens,
                        timeout=GENERATION_TIMEOUT,
                    )
                except RateLimitError as e:
                    wait_seconds = parse_retry_after(e.response.headers.get('retry-after'))
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.info(f"Model {model_name} still rate limited. Trying next candidate...")
                        break
                    logger.info(
                        f"Rate limited on {model_name}. Waiting {wait_seconds}s "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    self._sleep(wait_seconds)
                    continue
                except (AuthenticationError, NotFoundError, UnprocessableEntityError) as e:
                    logger.info(f"Model {model_name} failed (HTTP {e.status_code}). Trying next candidate...")
                    break
                except APIStatusError as e:
                    raise ModelsClientError(f"HTTP {e.status_code}: {e.message}") from e
                except APIConnectionError as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.info(f"Model {model_name} error after retries ({e}). Trying next candidate...")
                        break
                    logger.info(f"Error: {e}. Retrying ({attempt}/{self.max_retries})...")
                    self._sleep(NETWORK_BACKOFF_SECONDS)
                    continue
                choices = completion.choices or []
                content = choices[0].message.content if choices and choices[0].message else None
                logger.info(f"Model {model_name} returned a completion")
                return str(content or '').strip()
        raise ModelsExhaustedError("All GitHub Models candidates failed")
