"""Adapter factory helpers for the archive worker.

Intent:
    Keep runtime adapters discoverable via dotted paths so the worker can load
    them dynamically (see `AI_BACKEND` / `ARCHIVE_GENERATION_ADAPTER`).

Exports:
    The individual modules expose a `build()` function returning an object that
    implements `GenerationAdapterProtocol`.
"""

__all__ = ["local_generation", "stub_generation"]
