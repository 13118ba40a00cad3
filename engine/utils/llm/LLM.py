"""Centralised LLM helper utilities.

This module exposes a single interface for calling the hosted language models
the quote tools rely on. It abstracts client creation, retries, usage logging
and error classification behind one small provider contract.

## Key Features

- `BaseLLMProvider.complete(prompt, max_tokens)` returns plain text. Used for
quote extraction and for quote comparison.

- `BaseLLMProvider.complete_with_document(data, mime_type, prompt)` sends raw
document bytes next to the prompt. Used as the OCR fallback for scanned PDFs.

- Providers: Anthropic (Claude), Google Gemini (`google-genai`) and OpenAI.
The active one is picked from Vault/env (`llm_provider`, `llm_model`).

- Applies Tenacity-backed exponential retries for transient faults
(rate-limits, 5xx, timeouts, empty completions) and re-raises on persistent
failure types.

- Providers are plain objects. Callers construct one per request with
`get_provider()` and pass it down, so tests can hand in a scripted double.

Import pattern for tools:
```python
from utils.llm.LLM import BaseLLMProvider, get_provider
```
"""

from __future__ import annotations

import time
import base64
import httpx
import tenacity
import anthropic
import openai
from abc import ABC, abstractmethod
from typing import Any, Optional, Mapping

from google import genai
from google.genai import types
from google.genai.types import Part
from google.genai import errors as gerrors

from utils.vault import secrets
from utils.core.log import get_logger


__all__ = [
    "BaseLLMProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAIProvider",
    "EmptyLLMResponseError",
    "get_provider",
]

# Configuration

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MAX_TOKENS = 32_000
MODEL_DEFAULTS = {
    "anthropic": "claude-sonnet-4-5",
    "gemini": "gemini-2.5-flash",
    "openai": "gpt-4.1",
}
REQUEST_TIMEOUT_S = 600.0
_RETRIABLE_CLIENT_CODES = {429, 499}
_TRANSIENT_KEYWORDS = (
    "504",
    "503",
    "529",
    "overloaded",
    "deadline",
    "timed out",
    "timeout",
    "unavailable",
    "resource exhausted",
    "rate limit",
    "connection reset",
)


def _make_preview(text: str, max_chars: int = 120) -> str:
    s = " ".join((text or "").split())
    return (s[:max_chars] + "...") if len(s) > max_chars else s


def _debug_merge(meta: Optional[Mapping[str, str]], fallback_preview: str) -> dict:
    meta = dict(meta or {})
    meta.setdefault("caller", "unknown")
    meta.setdefault("preview", fallback_preview or "")
    return meta


class EmptyLLMResponseError(Exception):
    """Raised when LLM returns empty output (e.g. max tokens hit)."""
    pass


def _is_retriable(exc: Exception) -> bool:
    """Return True only for transient faults we want to retry."""
    if isinstance(exc, EmptyLLMResponseError):
        return True
    if isinstance(exc, gerrors.ServerError):  # 5xx
        return True
    if isinstance(exc, gerrors.ClientError):  # 4xx
        return getattr(exc, "code", None) in _RETRIABLE_CLIENT_CODES
    if isinstance(
        exc,
        (
            anthropic.RateLimitError,
            anthropic.InternalServerError,
            anthropic.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
            openai.APIConnectionError,
        ),
    ):
        # APITimeoutError subclasses APIConnectionError in both SDKs
        return True
    if isinstance(exc, (anthropic.APIStatusError, openai.APIStatusError)):
        return getattr(exc, "status_code", None) in _RETRIABLE_CLIENT_CODES
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    msg = str(exc).lower()
    return any(kw in msg for kw in _TRANSIENT_KEYWORDS)


_retry_policy = tenacity.retry(
    retry=tenacity.retry_if_exception(_is_retriable),
    wait=tenacity.wait_exponential(multiplier=1, min=1, max=8),
    stop=tenacity.stop_after_attempt(3),
    reraise=True,
)


def _usage_tokens(resp: Any) -> tuple[int, int, str]:
    """(prompt_tokens, total_tokens, finish) across the three SDK response shapes."""
    # Gemini
    usage = getattr(resp, "usage_metadata", None)
    if usage is not None:
        prompt_tok = getattr(usage, "prompt_token_count", -1) or -1
        total_tok = getattr(usage, "total_token_count", -1) or -1
        finish = "FINISH"
        candidates = getattr(resp, "candidates", None) or []
        if candidates:
            reason = getattr(candidates[0], "finish_reason", None)
            finish = str(getattr(reason, "name", reason) or "STOP")
            finish = "FINISH" if finish == "STOP" else finish
        return prompt_tok, total_tok, finish

    usage = getattr(resp, "usage", None)
    # Anthropic
    if usage is not None and hasattr(usage, "input_tokens"):
        prompt_tok = getattr(usage, "input_tokens", -1)
        total_tok = prompt_tok + getattr(usage, "output_tokens", 0)
        stop = getattr(resp, "stop_reason", None) or "end_turn"
        return prompt_tok, total_tok, "FINISH" if stop == "end_turn" else str(stop)
    # OpenAI
    if usage is not None and hasattr(usage, "prompt_tokens"):
        choices = getattr(resp, "choices", None) or []
        finish = getattr(choices[0], "finish_reason", "stop") if choices else "stop"
        return (
            getattr(usage, "prompt_tokens", -1),
            getattr(usage, "total_tokens", -1),
            "FINISH" if finish == "stop" else str(finish),
        )
    return -1, -1, "FINISH"


def _wrap_sdk_call(fn, *args, _log_model=None, _debug_meta: dict | None = None, **kwargs):
    """Run an SDK call, classify errors, and emit structured logs."""
    logger = get_logger()
    t0 = time.perf_counter()
    meta = _debug_meta or {}
    caller = meta.get("caller", "unknown")
    preview = meta.get("preview", "")
    callee = getattr(fn, "__name__", repr(fn))

    try:
        resp = fn(*args, **kwargs)
        latency_ms = int((time.perf_counter() - t0) * 1000)
        prompt_tok, total_tok, finish = _usage_tokens(resp)

        base_msg = (
            f"LLM Call OK | model={_log_model} | latency={latency_ms}ms | "
            f"prompt_tokens={prompt_tok} | total_tokens={total_tok}"
        )
        if finish.upper() != "FINISH":  # safety-stop, max-tokens, etc.
            logger.warning(base_msg + f" | finish_reason={finish}")
        else:
            logger.debug(base_msg)
        return resp

    except (gerrors.ClientError, anthropic.APIStatusError, openai.APIStatusError) as e:
        code = getattr(e, "code", None) or getattr(e, "status_code", None)
        logger.error("LLM ClientError | caller=%s | callee=%s | model=%s | code=%s | err=%s | preview='%s'",
                     caller, callee, _log_model, code, e, preview, exc_info=True,)
        raise
    except gerrors.ServerError as e:
        logger.error("LLM ServerError | caller=%s | callee=%s | model=%s | err=%s | preview='%s'",
                     caller, callee, _log_model, e, preview, exc_info=True,)
        raise
    except Exception as e:
        logger.exception("LLM UnexpectedError | caller=%s | callee=%s | model=%s | err=%s | preview='%s'",
                         caller, callee, _log_model, e, preview)
        raise


class BaseLLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Subclasses implement `_generate`; the public methods add retries and the
    empty-response guard.
    """

    name = "base"

    def __init__(self, model: str, max_tokens: int = DEFAULT_MAX_TOKENS):
        self.model = model
        self.max_tokens = max_tokens

    @abstractmethod
    def _generate(
        self,
        prompt: str,
        max_tokens: int,
        document: tuple[bytes, str] | None = None,
        caller: str | None = None,
    ) -> str:
        """Send one request and return the response text."""

    def _checked(self, text: str | None) -> str:
        if text is None or not str(text).strip():
            raise EmptyLLMResponseError("LLM returned empty text")
        return str(text)

    @_retry_policy
    def complete(self, prompt: str, max_tokens: int | None = None, *, caller: str | None = None) -> str:
        return self._checked(
            self._generate(prompt, max_tokens or self.max_tokens, None, caller)
        )

    @_retry_policy
    def complete_with_document(
        self,
        data: bytes,
        mime_type: str,
        prompt: str,
        max_tokens: int | None = None,
        *,
        caller: str | None = None,
    ) -> str:
        return self._checked(
            self._generate(prompt, max_tokens or self.max_tokens, (data, mime_type), caller)
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"


class AnthropicProvider(BaseLLMProvider):
    """Anthropic Claude provider."""

    name = "anthropic"

    def __init__(self, model: str, max_tokens: int = DEFAULT_MAX_TOKENS, api_key: str | None = None):
        super().__init__(model, max_tokens)
        api_key = api_key or secrets.get("anthropic_api_key", default="")
        if not api_key:
            raise EnvironmentError("anthropic_api_key is not configured")
        self.client = anthropic.Anthropic(api_key=api_key, timeout=REQUEST_TIMEOUT_S)

    def _stream_final(self, **kwargs):
        # long max_tokens budgets require the streaming endpoint
        with self.client.messages.stream(**kwargs) as stream:
            return stream.get_final_message()

    def _generate(self, prompt, max_tokens, document=None, caller=None) -> str:
        if document is not None:
            data, mime_type = document
            content: Any = [
                {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": mime_type,
                        "data": base64.standard_b64encode(data).decode("ascii"),
                    },
                },
                {"type": "text", "text": prompt},
            ]
        else:
            content = prompt

        meta = _debug_merge({"caller": caller}, _make_preview(prompt))
        message = _wrap_sdk_call(
            self._stream_final,
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": content}],
            _log_model=self.model,
            _debug_meta=meta,
        )
        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )


class GeminiProvider(BaseLLMProvider):
    """Google Gemini provider (google-genai SDK)."""

    name = "gemini"

    def __init__(self, model: str, max_tokens: int = DEFAULT_MAX_TOKENS, api_key: str | None = None):
        super().__init__(model, max_tokens)
        api_key = api_key or secrets.get("google_api_key", default="")
        if not api_key:
            raise EnvironmentError("google_api_key is not configured")
        self.client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(REQUEST_TIMEOUT_S * 1000)),
        )

    def _generate(self, prompt, max_tokens, document=None, caller=None) -> str:
        contents: list[Part] = []
        if document is not None:
            data, mime_type = document
            contents.append(Part.from_bytes(data=data, mime_type=mime_type))
        contents.append(Part.from_text(text=prompt))

        meta = _debug_merge({"caller": caller}, _make_preview(prompt))
        resp = _wrap_sdk_call(
            self.client.models.generate_content,
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                temperature=0.1, max_output_tokens=max_tokens
            ),
            _log_model=self.model,
            _debug_meta=meta,
        )
        return resp.text or ""


class OpenAIProvider(BaseLLMProvider):
    """OpenAI GPT provider."""

    name = "openai"

    def __init__(self, model: str, max_tokens: int = DEFAULT_MAX_TOKENS, api_key: str | None = None):
        super().__init__(model, max_tokens)
        api_key = api_key or secrets.get("openai_api_key", default="")
        if not api_key:
            raise EnvironmentError("openai_api_key is not configured")
        self.client = openai.OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT_S)

    def _generate(self, prompt, max_tokens, document=None, caller=None) -> str:
        if document is not None:
            data, mime_type = document
            encoded = base64.standard_b64encode(data).decode("ascii")
            content: Any = [
                {
                    "type": "file",
                    "file": {
                        "filename": "document.pdf",
                        "file_data": f"data:{mime_type};base64,{encoded}",
                    },
                },
                {"type": "text", "text": prompt},
            ]
        else:
            content = prompt

        meta = _debug_merge({"caller": caller}, _make_preview(prompt))
        resp = _wrap_sdk_call(
            self.client.chat.completions.create,
            model=self.model,
            messages=[{"role": "user", "content": content}],
            max_completion_tokens=max_tokens,
            _log_model=self.model,
            _debug_meta=meta,
        )
        return resp.choices[0].message.content or ""


PROVIDERS = {
    "anthropic": AnthropicProvider,
    "claude": AnthropicProvider,
    "gemini": GeminiProvider,
    "google": GeminiProvider,
    "openai": OpenAIProvider,
}


def get_provider(
    name: str | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> BaseLLMProvider:
    """
    Build the configured provider.

    Args:
        name: provider key; defaults to `llm_provider` from Vault/env
        model: model id; defaults to `llm_model`, then the provider default
        max_tokens: response budget; defaults to `llm_max_tokens`

    Raises:
        ValueError: unknown provider name
        EnvironmentError: provider API key missing
    """
    name = (name or secrets.get("llm_provider", default=DEFAULT_PROVIDER)).strip().lower()
    if name not in PROVIDERS:
        raise ValueError(
            f"Unknown provider: {name}. Supported: {sorted(set(PROVIDERS))}"
        )
    provider_class = PROVIDERS[name]
    model = model or secrets.get("llm_model", default="") or MODEL_DEFAULTS[provider_class.name]
    max_tokens = max_tokens or secrets.get_int("llm_max_tokens", DEFAULT_MAX_TOKENS)
    return provider_class(model=model, max_tokens=max_tokens)


def main() -> bool:
    from utils.core.log import scope_tool_logger, set_logger

    logger = scope_tool_logger("system_check", "llm_test")
    set_logger(logger)

    print("LLM TEST START")

    try:
        provider = get_provider()
        response = provider.complete("Say hello.", max_tokens=64, caller="llm_main")
        if not isinstance(response, str) or not response.strip():
            raise ValueError("Invalid LLM response.")
        print("LLM TEST OK")
        return True

    except Exception:
        print("LLM TEST ERROR")
        raise


if __name__ == "__main__":
    main()
