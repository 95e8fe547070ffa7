from __future__ import annotations

import importlib
import json
import logging
import os
import random
import time
import urllib.error
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from profix.config import ModelConfig
from profix.errors import ModelError
from profix.prompts import PromptRequest

logger = logging.getLogger(__name__)

_RETRY_BACKOFF_BASE_SECONDS = 0.5
_RETRY_BACKOFF_CAP_SECONDS = 8.0


@runtime_checkable
class ModelClient(Protocol):
    """The model collaborator: one prompt in, one raw text reply out."""

    def generate(self, request: PromptRequest) -> str: ...


def _is_retryable_http_status(code: int) -> bool:
    return code == 429 or 500 <= code < 600


def _retry_sleep_seconds(attempt: int) -> float:
    """
    Compute an exponential backoff delay with jitter.

    attempt=0 is the first retry after the initial failure.
    """

    upper = min(_RETRY_BACKOFF_CAP_SECONDS, _RETRY_BACKOFF_BASE_SECONDS * (2**attempt))
    # "Equal jitter": sleep in [upper/2, upper]
    return float((upper / 2.0) + random.uniform(0.0, upper / 2.0))


def _sleep_before_retry(attempt: int) -> None:
    time.sleep(_retry_sleep_seconds(attempt))


def _post_json_with_retry(req: urllib.request.Request, *, timeout: int, max_attempts: int) -> Any:
    """
    POST a JSON request and decode the JSON reply, retrying transient failures.

    Generation requests have no side effects, so retrying them is safe.
    """

    for attempt in range(max_attempts):
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                raw = resp.read()
            return json.loads(raw.decode("utf-8"))
        except urllib.error.HTTPError as exc:
            try:
                exc.close()
            except OSError:
                pass
            if _is_retryable_http_status(int(exc.code)) and attempt < max_attempts - 1:
                logger.debug("model endpoint returned HTTP %s, retrying", exc.code)
                _sleep_before_retry(attempt)
                continue
            raise ModelError(f"Model request failed with HTTP {exc.code}.") from exc
        except (urllib.error.URLError, TimeoutError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            if attempt < max_attempts - 1:
                logger.debug("model request failed (%s), retrying", exc)
                _sleep_before_retry(attempt)
                continue
            raise ModelError(f"Model request failed: {exc}") from exc
    raise ModelError("Model request failed: no attempts were made.")


def _api_key(env_name: str | None, environ: Mapping[str, str]) -> str:
    if not env_name:
        raise ModelError("No API key environment variable configured.")
    key = environ.get(env_name, "").strip()
    if not key:
        raise ModelError(f"{env_name} not set")
    return key


@dataclass
class GeminiClient:
    model: str
    api_key_env: str
    base_url: str
    timeout: int = 60
    max_attempts: int = 3
    temperature: float = 0.0
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    def generate(self, request: PromptRequest) -> str:
        api_key = _api_key(self.api_key_env, self.environ)
        body = {
            "contents": [{"parts": [{"text": request.text}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "responseMimeType": request.response_mime_type,
            },
        }
        req = urllib.request.Request(
            f"{self.base_url.rstrip('/')}/v1beta/models/{self.model}:generateContent",
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
            method="POST",
        )
        payload = _post_json_with_retry(req, timeout=self.timeout, max_attempts=self.max_attempts)
        try:
            parts = payload["candidates"][0]["content"]["parts"]
            return "".join(str(part.get("text", "")) for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ModelError("Unexpected Gemini response shape.") from exc


@dataclass
class OpenAIClient:
    model: str
    api_key_env: str
    base_url: str
    timeout: int = 60
    max_attempts: int = 3
    temperature: float = 0.0
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    def generate(self, request: PromptRequest) -> str:
        api_key = _api_key(self.api_key_env, self.environ)
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": "Return ONLY a JSON array. No prose."},
                {"role": "user", "content": request.text},
            ],
        }
        req = urllib.request.Request(
            f"{self.base_url.rstrip('/')}/chat/completions",
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            method="POST",
        )
        payload = _post_json_with_retry(req, timeout=self.timeout, max_attempts=self.max_attempts)
        try:
            return str(payload["choices"][0]["message"]["content"])
        except (KeyError, IndexError, TypeError) as exc:
            raise ModelError("Unexpected OpenAI response shape.") from exc


@dataclass
class StaticClient:
    """Deterministic offline client returning a canned reply."""

    reply: str = "[]"
    requests: list[PromptRequest] = field(default_factory=list)

    def generate(self, request: PromptRequest) -> str:
        self.requests.append(request)
        return self.reply


def load_client(config: ModelConfig, *, environ: Mapping[str, str] | None = None) -> ModelClient:
    env = os.environ if environ is None else environ
    provider = config.provider.strip()
    if ":" in provider:
        return _load_plugin_client(provider, config)

    normalized = provider.lower()
    if normalized == "static":
        return StaticClient()
    if normalized not in {"gemini", "openai"}:
        raise ModelError(f"Unknown model provider {provider!r}. Use: gemini, openai, static, or module:attr.")

    kwargs: dict[str, Any] = {
        "model": config.resolved("name"),
        "api_key_env": config.resolved("api_key_env"),
        "base_url": config.resolved("base_url"),
        "timeout": config.timeout,
        "max_attempts": config.max_attempts,
        "temperature": config.temperature,
        "environ": env,
    }
    if normalized == "gemini":
        return GeminiClient(**kwargs)
    return OpenAIClient(**kwargs)


def _load_plugin_client(spec: str, config: ModelConfig) -> ModelClient:
    module_name, _sep, attr = spec.partition(":")
    try:
        module = importlib.import_module(module_name)
    except Exception as exc:  # noqa: BLE001
        raise ModelError(f"Failed to import model client module {module_name!r}: {exc}") from exc

    try:
        obj: Any = getattr(module, attr)
    except AttributeError as exc:
        raise ModelError(f"Model client module {module_name!r} has no attribute {attr!r}") from exc

    # Classes expose `generate` too, so they count as factories here.
    if isinstance(obj, type) or (not isinstance(obj, ModelClient) and callable(obj)):
        obj = obj(config)
    if not isinstance(obj, ModelClient):
        raise ModelError(f"{spec!r} did not produce an object with a generate(request) method.")
    return obj
