"""
Ports for archive generation adapters: request types, protocol, and errors.

Intent:
    Provide framework-agnostic contracts between the pipelines (report
    generation, text extraction) and concrete generation backends (local
    Ollama, stub). Keeping these definitions in a dedicated module avoids
    circular imports and clarifies boundaries.

Design:
    - Request dataclasses: ImagePart, GenerationRequest
    - Protocol: GenerationAdapterProtocol
    - Error taxonomy: transient vs. permanent generation failures
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence


# ----------------------------- Request types --------------------------------


@dataclass(frozen=True)
class ImagePart:
    """Base64-encoded image with its MIME type."""

    data_b64: str
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class GenerationRequest:
    """One call to the generation service.

    Parameters:
        system_prompt: Instruction framing tone, depth and heading structure.
        images: Ordered image parts sent before the text segment.
        text: User message text (instructions, extracted text, exhibit bounds).
        max_tokens: Token budget for the answer.
        first_exhibit/last_exhibit: Exhibit bounds covered by the call, when
            the call is part of a report.
    """

    system_prompt: str
    images: Sequence[ImagePart]
    text: str
    max_tokens: int
    first_exhibit: Optional[int] = None
    last_exhibit: Optional[int] = None


# ----------------------------- Protocols ------------------------------------


class GenerationAdapterProtocol(Protocol):
    """Generation adapter turns images plus instructions into text."""

    async def generate(self, request: GenerationRequest) -> str:
        ...


# ------------------------------ Errors --------------------------------------


class GenerationError(Exception):
    """Base class for generation adapter failures."""


class GenerationTransientError(GenerationError):
    """Recoverable failure (timeouts, rate limits, empty output)."""


class GenerationPermanentError(GenerationError):
    """Non-recoverable failure (rejected request, unknown model)."""


__all__ = [
    "ImagePart",
    "GenerationRequest",
    "GenerationAdapterProtocol",
    "GenerationError",
    "GenerationTransientError",
    "GenerationPermanentError",
]
