"""
Local generation adapter backed by an Ollama runtime.

Intent:
    Send one chat call per `GenerationRequest` to a vision-capable model:
      - a system message carrying the formatting instructions,
      - a user message carrying the text segment and the base64 images.
    Map client failures onto the transient/permanent taxonomy so callers can
    decide whether to retry.

Notes:
    - We import `ollama` lazily inside the call so test monkeypatching works.
    - Responses may be dicts (older clients) or subscriptable models.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from backend.archive.adapters.ports import (
    GenerationPermanentError,
    GenerationRequest,
    GenerationTransientError,
)

LOG = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 425, 429, 500, 502, 503, 504}


def _response_text(response: Any) -> str:
    """Extract message content from dict-like or attribute-style responses."""
    message: Any = None
    if isinstance(response, dict):
        message = response.get("message")
    else:
        message = getattr(response, "message", None)
    if isinstance(message, dict):
        content = message.get("content")
    else:
        content = getattr(message, "content", None)
    text = str(content or "").strip()
    if text.startswith("```") and text.endswith("```"):
        lines = text.splitlines()
        if len(lines) >= 3 and lines[-1].strip() == "```":
            text = "\n".join(lines[1:-1]).strip()
    return text


class _LocalGenerationAdapter:
    """Generation adapter calling `ollama.AsyncClient.chat`."""

    def __init__(self, *, model: Optional[str] = None) -> None:
        self._model = model or os.getenv("AI_REPORT_MODEL", "qwen2.5vl:7b")
        raw_base_url = os.getenv("OLLAMA_BASE_URL")
        self._base_url = (raw_base_url or "").strip() or "http://ollama:11434"
        self._timeout = int(os.getenv("AI_TIMEOUT_REPORT", "120"))
        self._temperature = float(os.getenv("AI_REPORT_TEMPERATURE", "0.7"))

    async def generate(self, request: GenerationRequest) -> str:
        """Run one chat completion and return its text.

        Behavior:
            - Timeouts, connection errors, rate limits and 5xx responses raise
              GenerationTransientError.
            - Other client errors (unknown model, bad request) raise
              GenerationPermanentError.
            - An empty answer is transient; the caller may retry.
        """
        try:
            import ollama  # type: ignore
        except Exception as exc:  # pragma: no cover
            raise GenerationTransientError(f"ollama client unavailable: {exc}")

        user_message: Dict[str, Any] = {"role": "user", "content": request.text}
        if request.images:
            user_message["images"] = [part.data_b64 for part in request.images]
        messages = [
            {"role": "system", "content": request.system_prompt},
            user_message,
        ]
        options = {"num_predict": int(request.max_tokens), "temperature": self._temperature}

        response_error = getattr(ollama, "ResponseError", None)
        try:
            client = ollama.AsyncClient(host=self._base_url, timeout=self._timeout)
            response = await client.chat(model=self._model, messages=messages, options=options)
        except TimeoutError as exc:
            raise GenerationTransientError(f"timeout: {exc}")
        except ConnectionError as exc:
            raise GenerationTransientError(f"connection: {exc}")
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            if response_error is not None and isinstance(exc, response_error) and status is not None:
                if int(status) in _TRANSIENT_STATUS:
                    raise GenerationTransientError(f"http {status}: {exc}")
                raise GenerationPermanentError(f"http {status}: {exc}")
            raise GenerationTransientError(str(exc) or type(exc).__name__)

        text = _response_text(response)
        if not text:
            raise GenerationTransientError("empty response")
        LOG.debug(
            "archive.generation action=completed model=%s images=%s chars=%s",
            self._model,
            len(request.images),
            len(text),
        )
        return text


def build(*, model: Optional[str] = None) -> _LocalGenerationAdapter:
    """Factory used by the worker to instantiate the adapter."""
    return _LocalGenerationAdapter(model=model)
