"""
Deterministic generation adapter for local development and tests.

Intent:
    Provide a minimal implementation that adheres to
    `GenerationAdapterProtocol` without requiring external AI services.

Behavior:
    - Report calls (exhibit bounds set) yield one formatted block per exhibit.
    - Extraction calls yield a placeholder line so the pipeline continues.
"""

from __future__ import annotations

from backend.archive.adapters.ports import GenerationRequest


class StubGenerationAdapter:
    """Return deterministic Markdown shaped like a real report."""

    async def generate(self, request: GenerationRequest) -> str:
        if request.first_exhibit is None or request.last_exhibit is None:
            return "No text detected"
        blocks = []
        for number in range(request.first_exhibit, request.last_exhibit + 1):
            blocks.append(
                f"**EXHIBIT {number}**\n\n"
                f"**Title:** Exhibit {number}\n\n"
                "**Historical Significance**\n\n"
                "**Significance:** _Stub analysis; no model was called._"
            )
        return "\n\n".join(blocks)


def build(*, model: str | None = None) -> StubGenerationAdapter:
    """Factory used by the worker to instantiate the adapter (model is ignored)."""
    return StubGenerationAdapter()
